"""Telemetry attached to Coral messages.

After a round in which the agent sent Coral messages, the full context of the
completion (preamble, resources, tools, history) is posted to the server and
attached to each of those messages.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from coral_agent.api import (
    CoralApiClient,
    McpToolName,
    SendMessageSuccess,
    Telemetry,
    TelemetryDocument,
    TelemetryMessages,
    TelemetryPost,
    TelemetryTarget,
)
from coral_agent.errors import (
    ApiError,
    EmptyMessagesError,
    EmptyTargetsError,
    TelemetryRequestError,
)
from coral_agent.messages import (
    AssistantMessage,
    MessageConversionError,
    UserMessage,
    to_generic,
    to_openai,
)
from coral_agent.toolset import Document

logger = logging.getLogger(__name__)


class TelemetryMode(str, Enum):
    """How telemetry messages are formatted, or NONE to disable telemetry."""

    NONE = "none"
    OPENAI = "openai"
    GENERIC = "generic"


def find_telemetry_targets(name: str, output: str) -> list[TelemetryTarget]:
    """Telemetry targets from one tool call.

    Only a successful ``coral_send_message`` produces a target: the message it
    created. Anything else produces none.
    """
    if name != McpToolName.CORAL_SEND_MESSAGE.value:
        return []
    try:
        result = SendMessageSuccess.model_validate_json(output)
    except ValidationError as e:
        logger.warning("could not read %s output, no telemetry target: %s", name, e)
        return []
    return [TelemetryTarget(message_id=result.message.id, thread_id=result.message.thread_id)]


def _documents(documents: list[Document]) -> list[TelemetryDocument]:
    return [TelemetryDocument(id=d.id, text=d.text) for d in documents]


def format_messages(
    messages: list[UserMessage | AssistantMessage], mode: TelemetryMode,
) -> TelemetryMessages:
    """Format a history for the wire.

    OPENAI falls back to the generic shape when any message has no OpenAI form.
    """
    if mode is TelemetryMode.OPENAI:
        try:
            return TelemetryMessages(format="OpenAI", data=to_openai(messages))
        except MessageConversionError as e:
            logger.debug("OpenAI telemetry format unavailable, using Generic: %s", e)
    return TelemetryMessages(format="Generic", data=to_generic(messages))


@dataclass
class TelemetryRequest:
    targets: list[TelemetryTarget]
    session_id: str
    client: CoralApiClient
    messages: list[UserMessage | AssistantMessage]
    mode: TelemetryMode
    model_description: str
    preamble: str | None = None
    resources: list[Document] = field(default_factory=list)
    tools: list[Document] = field(default_factory=list)
    temperature: float | None = None
    max_tokens: int | None = None
    additional_params: dict[str, Any] = field(default_factory=dict)

    def build(self) -> TelemetryPost:
        """Raises:
            EmptyTargetsError: If there are no targets
            EmptyMessagesError: If there are no messages
            ValueError: If the mode is NONE
        """
        if not self.targets:
            raise EmptyTargetsError()
        if not self.messages:
            raise EmptyMessagesError()
        if self.mode is TelemetryMode.NONE:
            raise ValueError("telemetry request built with TelemetryMode.NONE")

        additional = self.additional_params
        try:
            json.dumps(additional)
        except (TypeError, ValueError):
            additional = {k: str(v) for k, v in additional.items()}

        return TelemetryPost(
            targets=self.targets,
            data=Telemetry(
                model_description=self.model_description,
                preamble=self.preamble,
                resources=_documents(self.resources),
                tools=_documents(self.tools),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                additional_params=additional,
                messages=format_messages(self.messages, self.mode),
            ),
        )

    async def send(self) -> None:
        """Post the telemetry.

        Raises:
            EmptyTargetsError / EmptyMessagesError: Caller bugs, before any request
            TelemetryRequestError: If the post failed
        """
        post = self.build()
        try:
            await self.client.add_telemetry(self.session_id, post)
        except ApiError as e:
            raise TelemetryRequestError(f"telemetry request failed: {e}", original=e) from e
        logger.info("sent telemetry for %d messages", len(self.targets))
