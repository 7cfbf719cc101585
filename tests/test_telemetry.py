"""Tests for coral_agent.telemetry."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from coral_agent.api import TelemetryTarget
from coral_agent.errors import (
    ApiError,
    EmptyMessagesError,
    EmptyTargetsError,
    TelemetryRequestError,
)
from coral_agent.messages import AssistantMessage, Audio, Text, UserMessage, user_text
from coral_agent.telemetry import (
    TelemetryMode,
    TelemetryRequest,
    find_telemetry_targets,
    format_messages,
)
from coral_agent.toolset import Document

from fakes import send_message_output

TARGET = TelemetryTarget(message_id="msg-1", thread_id="thread-1")


def _request(**overrides) -> TelemetryRequest:
    client = MagicMock()
    client.add_telemetry = AsyncMock()
    fields = dict(
        targets=[TARGET],
        session_id="session1",
        client=client,
        messages=[user_text("hi"), AssistantMessage(content=[Text(text="hello")])],
        mode=TelemetryMode.OPENAI,
        model_description="gpt-4.1-mini",
        preamble="Be brief.",
        resources=[Document("coral://state", "idle")],
        tools=[Document("search", "{}")],
        temperature=0.3,
        max_tokens=64,
    )
    fields.update(overrides)
    return TelemetryRequest(**fields)


class TestFindTargets:
    def test_send_message_success(self):
        targets = find_telemetry_targets("coral_send_message", send_message_output("m9", "t9"))
        assert targets == [TelemetryTarget(message_id="m9", thread_id="t9")]

    def test_other_tools_ignored(self):
        assert find_telemetry_targets("coral_create_thread", send_message_output()) == []

    def test_unreadable_output_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="coral_agent"):
            assert find_telemetry_targets("coral_send_message", "Error: thread closed") == []
        assert "no telemetry target" in caplog.text

    def test_other_result_kind(self):
        output = '{"type": "send_message_failure", "message": {"id": "m", "threadId": "t"}}'
        assert find_telemetry_targets("coral_send_message", output) == []


class TestFormatMessages:
    def test_openai_shape(self):
        formatted = format_messages([user_text("hi")], TelemetryMode.OPENAI)
        assert formatted.format == "OpenAI"
        assert formatted.data == [{"role": "user", "content": "hi"}]

    def test_falls_back_to_generic(self):
        history = [UserMessage(content=[Audio(data="AAAA", format="base64")])]
        formatted = format_messages(history, TelemetryMode.OPENAI)
        assert formatted.format == "Generic"
        assert formatted.data[0]["content"][0]["type"] == "audio"

    def test_generic_shape(self):
        assert format_messages([user_text("hi")], TelemetryMode.GENERIC).format == "Generic"


class TestSend:
    @pytest.mark.asyncio
    async def test_posts_once(self):
        request = _request()
        await request.send()
        request.client.add_telemetry.assert_awaited_once()
        session_id, post = request.client.add_telemetry.await_args.args
        assert session_id == "session1"
        assert post.targets == [TARGET]
        assert post.data.model_description == "gpt-4.1-mini"
        assert post.data.preamble == "Be brief."
        assert [d.id for d in post.data.resources] == ["coral://state"]
        assert [d.id for d in post.data.tools] == ["search"]
        assert post.data.temperature == 0.3
        assert post.data.max_tokens == 64

    @pytest.mark.asyncio
    async def test_empty_targets(self):
        request = _request(targets=[])
        with pytest.raises(EmptyTargetsError):
            await request.send()
        request.client.add_telemetry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_messages(self):
        request = _request(messages=[])
        with pytest.raises(EmptyMessagesError):
            await request.send()
        request.client.add_telemetry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_mode_is_a_programming_error(self):
        with pytest.raises(ValueError):
            await _request(mode=TelemetryMode.NONE).send()

    @pytest.mark.asyncio
    async def test_remote_failure(self):
        request = _request()
        request.client.add_telemetry.side_effect = ApiError("bad gateway", status_code=502)
        with pytest.raises(TelemetryRequestError) as exc_info:
            await request.send()
        assert isinstance(exc_info.value.original, ApiError)

    def test_unserializable_params_are_stringified(self):
        post = _request(additional_params={"stop": object()}).build()
        assert isinstance(post.data.additional_params["stop"], str)
