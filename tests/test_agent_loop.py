"""Tests for coral_agent.prompt_sources and coral_agent.agent_loop."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from coral_agent.agent import Agent
from coral_agent.agent_loop import DEFAULT_ITERATION_TOOL_QUOTA, AgentLoop
from coral_agent.errors import BudgetExhaustedError, ConnectivityError, ToolExecutionError
from coral_agent.messages import user_text
from coral_agent.prompt import EvaluatedPrompt
from coral_agent.prompt_sources import (
    PromptSource,
    RepeatingPromptSource,
    SequencePromptSource,
    repeating_prompt_stream,
)

from fakes import make_connection, make_model, text_response, tool_call, tools_response


async def _drain(source: PromptSource) -> list[str]:
    prompts = []
    while (prompt := await source.next_prompt()) is not None:
        prompts.append(await prompt.evaluate())
    return prompts


# ---------------------------------------------------------------------------
# Prompt sources
# ---------------------------------------------------------------------------


class TestRepeatingPromptSource:
    @pytest.mark.asyncio
    async def test_repeats_max_reps_times(self):
        source = repeating_prompt_stream("tick", max_reps=3)
        assert isinstance(source, RepeatingPromptSource)
        assert await _drain(source) == ["tick\n"] * 3
        assert await source.is_finished()

    @pytest.mark.asyncio
    async def test_delay_before_every_prompt_but_first(self):
        source = RepeatingPromptSource("tick", delay=2.5, max_reps=3)
        with patch("coral_agent.prompt_sources.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await _drain(source)
        assert sleep.await_count == 2
        sleep.assert_awaited_with(2.5)

    @pytest.mark.asyncio
    async def test_not_finished_until_last(self):
        source = RepeatingPromptSource("tick", max_reps=2)
        await source.next_prompt()
        assert not await source.is_finished()
        await source.next_prompt()
        assert await source.is_finished()

    def test_negative_reps(self):
        with pytest.raises(ValueError):
            RepeatingPromptSource("tick", max_reps=-1)


class TestSequencePromptSource:
    @pytest.mark.asyncio
    async def test_sync_iterable(self):
        source = SequencePromptSource(["a", EvaluatedPrompt.from_string("b")])
        assert await _drain(source) == ["a\n", "b\n"]
        assert await source.is_finished()

    @pytest.mark.asyncio
    async def test_async_iterable(self):
        async def prompts():
            yield "x"
            yield "y"

        source = SequencePromptSource(prompts())
        assert await _drain(source) == ["x\n", "y\n"]

    @pytest.mark.asyncio
    async def test_is_finished_peeks_without_losing_prompt(self):
        source = SequencePromptSource(iter(["a", "b"]))
        await source.next_prompt()
        assert not await source.is_finished()
        assert await (await source.next_prompt()).evaluate() == "b\n"
        assert await source.is_finished()

    @pytest.mark.asyncio
    async def test_lazy(self):
        produced = []

        def prompts():
            for i in range(1000):
                produced.append(i)
                yield str(i)

        source = SequencePromptSource(prompts())
        await source.next_prompt()
        assert produced == [0]


# ---------------------------------------------------------------------------
# AgentLoop
# ---------------------------------------------------------------------------


def _always_tools(name: str = "t"):
    async def complete(prompt, history, **kwargs):
        return tools_response(tool_call(name, id=f"call_{len(history)}"))

    model = make_model()
    model.complete.side_effect = complete
    return model


class TestAgentLoop:
    def test_default_quota(self):
        loop = AgentLoop(Agent(make_model()), repeating_prompt_stream("p"))
        assert loop.iteration_tool_quota == DEFAULT_ITERATION_TOOL_QUOTA == 64

    def test_unlimited_quota_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="coral_agent"):
            AgentLoop(Agent(make_model()), repeating_prompt_stream("p"), iteration_tool_quota=None)
        assert "unlimited" in caplog.text

    def test_invalid_quota(self):
        with pytest.raises(ValueError):
            AgentLoop(Agent(make_model()), repeating_prompt_stream("p"), iteration_tool_quota=0)

    @pytest.mark.asyncio
    async def test_prompt_ends_when_no_tools_used(self):
        conn = make_connection(tools=["a", "b"])
        model = make_model(
            tools_response(tool_call("a", id="1"), tool_call("b", id="2")),
            text_response("done"),
        )
        agent = Agent(model, connections=[conn])

        history = await AgentLoop(agent, repeating_prompt_stream("work", max_reps=1)).execute()

        assert model.complete.await_count == 2
        # prompt, assistant, 2 results, assistant
        assert len(history) == 5
        assert history[0] == user_text("work\n")

    @pytest.mark.asyncio
    async def test_quota_reached_moves_to_next_prompt(self, caplog):
        conn = make_connection(tools=["t"])
        model = _always_tools()
        agent = Agent(model, connections=[conn])
        loop = AgentLoop(agent, repeating_prompt_stream("p", max_reps=2), iteration_tool_quota=3)

        with caplog.at_level(logging.INFO, logger="coral_agent"):
            await loop.execute()

        assert model.complete.await_count == 6
        quota_warnings = [r for r in caplog.records if "tool quota reached" in r.getMessage()]
        assert len(quota_warnings) == 2
        assert all(r.levelno == logging.WARNING for r in quota_warnings)

    @pytest.mark.asyncio
    async def test_history_carries_across_prompts(self):
        model = make_model(text_response("one"), text_response("two"))
        history = await AgentLoop(Agent(model), SequencePromptSource(["a", "b"])).execute()
        assert [m.role for m in history] == ["user", "assistant", "user", "assistant"]

    @pytest.mark.asyncio
    async def test_stops_when_source_finished(self):
        source = MagicMock(spec=PromptSource)
        source.next_prompt = AsyncMock(return_value=EvaluatedPrompt.from_string("forever"))
        source.is_finished = AsyncMock(side_effect=[False, False, True])
        model = make_model()
        await AgentLoop(Agent(model), source).execute()
        assert model.complete.await_count == 3

    @pytest.mark.asyncio
    async def test_iteration_claims(self):
        conn = make_connection(tools=["t"])
        model = make_model(tools_response(tool_call("t")), tools_response(tool_call("t", id="2")), text_response("ok"))
        agent = Agent(model, connections=[conn])
        agent.claim_iteration = AsyncMock()
        agent.claim_tool_iteration = AsyncMock()

        await AgentLoop(agent, repeating_prompt_stream("p")).execute()

        assert agent.claim_tool_iteration.await_count == 2
        assert agent.claim_iteration.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            ToolExecutionError("boom", tool="t"),
            BudgetExhaustedError(0, 10),
        ],
    )
    async def test_round_error_ends_loop(self, error):
        model = make_model()
        model.complete.side_effect = error
        source = repeating_prompt_stream("p", max_reps=5)
        with pytest.raises(type(error)):
            await AgentLoop(Agent(model), source).execute()
        assert model.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_prompt_evaluation_failure_ends_loop(self):
        conn = make_connection(resources={})
        prompt = EvaluatedPrompt().resource(conn, "coral://missing")
        model = make_model()
        with pytest.raises(ConnectivityError):
            await AgentLoop(Agent(model), repeating_prompt_stream(prompt)).execute()
        model.complete.assert_not_awaited()
