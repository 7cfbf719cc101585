"""One completion round: refresh, complete, run tools, report.

Usage:
    coral = await McpConnectionBuilder.from_coral_env(config).connect()
    agent = Agent(
        LiteLLMCompletionModel("gpt-4.1-mini", preamble="You are a Coral agent."),
        connections=[coral],
        claim_manager=ClaimManager(claim_config, config),
        telemetry=TelemetryMode.OPENAI,
        config=config,
    )
    result = await agent.run_completion([user_text("Say hello on Coral")])
    print(result.texts, result.tools_used)

A round never retries. Completion, tool and claim failures propagate to the
caller unchanged; telemetry failures are logged and swallowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from coral_agent.api import CoralApiClient, TelemetryTarget
from coral_agent.claims import ClaimManager
from coral_agent.completion import CompletionModel
from coral_agent.config import PACKAGE_NAME, PACKAGE_VERSION, CoralConfig
from coral_agent.errors import TelemetryError
from coral_agent.mcp_server import McpServerConnection
from coral_agent.messages import AssistantMessage, Text, ToolCall, UserMessage, tool_result
from coral_agent.prompt import EvaluatedPrompt
from coral_agent.telemetry import TelemetryMode, TelemetryRequest, find_telemetry_targets
from coral_agent.validation import ValidationCache

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    """Outcome of one round.

    Attributes:
        messages: The history passed in, plus the prompt, the assistant turn
            and one tool-result turn per tool call
        texts: Text items from the assistant turn, in order
        tools_used: Number of tool calls executed
    """

    messages: list[UserMessage | AssistantMessage]
    texts: list[str] = field(default_factory=list)
    tools_used: int = 0


class Agent:
    """Runs completion rounds against a model and a set of MCP connections."""

    def __init__(
        self,
        model: CompletionModel,
        *,
        connections: Iterable[McpServerConnection] = (),
        claim_manager: ClaimManager | None = None,
        telemetry: TelemetryMode = TelemetryMode.NONE,
        config: CoralConfig | None = None,
        dynamic_preamble: EvaluatedPrompt | str | None = None,
        api: CoralApiClient | None = None,
    ):
        self.model = model
        self.validation = ValidationCache(connections)
        self.claim_manager = claim_manager
        self.telemetry = telemetry
        self.dynamic_preamble = (
            EvaluatedPrompt.coerce(dynamic_preamble) if dynamic_preamble is not None else None
        )

        self.config = config
        self.api = api
        if telemetry is not TelemetryMode.NONE:
            if self.config is None:
                self.config = CoralConfig.from_env()
            self.config.require_telemetry()
            if self.api is None:
                # Share the claim client's connection pool when there is one
                self.api = (
                    claim_manager.api if claim_manager is not None
                    else CoralApiClient(self.config.api_url)  # type: ignore[arg-type]
                )

        self.agent_name = self.config.agent_name if self.config else PACKAGE_NAME
        self.agent_version = self.config.agent_version if self.config else PACKAGE_VERSION

    def add_connection(self, connection: McpServerConnection) -> None:
        self.validation.add_connection(connection)

    @property
    def tools(self):
        return self.validation.tools

    @property
    def resources(self):
        return self.validation.resources

    async def close(self) -> None:
        """Close the REST client. Connections belong to the caller."""
        if self.api is not None:
            await self.api.close()

    # -- claims ------------------------------------------------------------

    async def claim_iteration(self) -> None:
        if self.claim_manager is not None:
            await self.claim_manager.claim_iteration()

    async def claim_tool_iteration(self) -> None:
        if self.claim_manager is not None:
            await self.claim_manager.claim_tool_iteration()

    # -- round -------------------------------------------------------------

    async def run_completion(
        self, messages: list[UserMessage | AssistantMessage],
    ) -> CompletionResult:
        """Run one round on ``messages``.

        The last message is sent as the prompt and the rest as history.

        Raises:
            ValueError: If ``messages`` is empty
            ConnectivityError: If a provider or resource could not be fetched
            CompletionError: If the completion request failed
            ToolExecutionError: If a tool call failed
            BudgetExhaustedError / ApiError: From a claim
        """
        if not messages:
            raise ValueError("run_completion requires a non-empty message history")

        await self.validation.refresh_tools()
        if self.dynamic_preamble is not None:
            # The preamble carries the live resources
            preamble: str | None = await self.dynamic_preamble.evaluate()
            documents = []
        else:
            await self.validation.refresh_resources()
            preamble = None
            documents = list(self.validation.resources)

        history = list(messages)
        prompt = history.pop()

        response = await self.model.complete(
            prompt,
            history,
            preamble=preamble,
            documents=documents,
            tools=self.validation.tools,
        )
        if self.claim_manager is not None:
            await self.claim_manager.claim_tokens(response.usage)

        history.append(prompt)
        history.append(AssistantMessage(content=response.content))

        texts: list[str] = []
        tools_used = 0
        targets: list[TelemetryTarget] = []
        for item in response.content:
            if isinstance(item, ToolCall):
                name = item.function.name
                output = await self.validation.tools.call(name, item.function.arguments)
                tools_used += 1
                if self.claim_manager is not None:
                    await self.claim_manager.claim_tool_call(name)
                history.append(tool_result(item.id, output, call_id=item.call_id))
                targets.extend(find_telemetry_targets(name, output))
            elif isinstance(item, Text):
                texts.append(item.text)

        if targets and self.telemetry is not TelemetryMode.NONE:
            await self._send_telemetry(targets, history, preamble, documents)

        return CompletionResult(messages=history, texts=texts, tools_used=tools_used)

    async def _send_telemetry(
        self,
        targets: list[TelemetryTarget],
        history: list[UserMessage | AssistantMessage],
        preamble: str | None,
        documents: list,
    ) -> None:
        request = TelemetryRequest(
            targets=targets,
            session_id=self.config.session_id,  # type: ignore[union-attr,arg-type]
            client=self.api,  # type: ignore[arg-type]
            messages=history,
            mode=self.telemetry,
            model_description=self.model.description(),
            preamble=preamble if preamble is not None else getattr(self.model, "preamble", None),
            resources=documents,
            tools=self.validation.tools.documents(),
            temperature=getattr(self.model, "temperature", None),
            max_tokens=getattr(self.model, "max_tokens", None),
            additional_params=getattr(self.model, "additional_params", None) or {},
        )
        try:
            await request.send()
        except TelemetryError as e:
            logger.warning("failed to send telemetry: %s", e)
