"""Completion model backed by litellm.

Swap any model by changing the model string:

    model = LiteLLMCompletionModel(
        "gpt-4.1-mini",
        preamble="You are a Coral agent.",
        temperature=0.97,
        max_tokens=512,
    )

One ``complete()`` call is one ``litellm.acompletion`` request. There is no
retry or fallback here; a failure surfaces as CompletionError and ends the
round.
"""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import litellm

from coral_agent.errors import wrap_completion_error
from coral_agent.messages import (
    AssistantContent,
    AssistantMessage,
    Text,
    ToolCall,
    ToolFunction,
    UserMessage,
    to_openai,
)
from coral_agent.toolset import Document, ToolSet

logger = logging.getLogger(__name__)

# Silence litellm's noisy default logging
litellm.suppress_debug_info = True


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Usage:
    """Token usage for one completion. Providers may report only a total."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResponse:
    """Assistant content items and usage for one completion request.

    Attributes:
        content: Text and tool-call items, in the order the model produced them
        usage: Token counts
        cost: Cost in USD as estimated by litellm (0.0 if unavailable)
        raw_response: The full litellm response object. Excluded from repr.
    """

    content: list[AssistantContent]
    usage: Usage = field(default_factory=Usage)
    cost: float = 0.0
    raw_response: Any = field(default=None, repr=False)


@runtime_checkable
class CompletionModel(Protocol):
    """Anything that turns (prompt, history, context) into assistant output."""

    preamble: str
    temperature: float | None
    max_tokens: int | None
    additional_params: dict[str, Any]

    def description(self) -> str: ...

    async def complete(
        self,
        prompt: UserMessage | AssistantMessage,
        history: list[UserMessage | AssistantMessage],
        *,
        preamble: str | None = None,
        documents: list[Document] | None = None,
        tools: ToolSet | None = None,
    ) -> CompletionResponse: ...


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _extract_usage(response: Any) -> Usage:
    """Extract token usage from a litellm response. Missing fields become 0."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return Usage()
    inp = getattr(usage, "prompt_tokens", None) or 0
    out = getattr(usage, "completion_tokens", None) or 0
    total = getattr(usage, "total_tokens", None) or 0
    return Usage(input_tokens=int(inp), output_tokens=int(out), total_tokens=int(total))


def _compute_cost(response: Any) -> float:
    """Cost via litellm.completion_cost; 0.0 when litellm has no price for the model."""
    try:
        return float(litellm.completion_cost(completion_response=response))
    except Exception as e:
        logger.debug("completion_cost unavailable: %s", e)
        return 0.0


def _parse_arguments(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            return _json.loads(raw) if raw.strip() else {}
        except _json.JSONDecodeError:
            # keep the raw string; the tool call will fail with a clear error
            return raw
    return raw if raw is not None else {}


def _extract_content(message: Any) -> list[AssistantContent]:
    """Convert a litellm response message into assistant content items."""
    items: list[AssistantContent] = []
    text = getattr(message, "content", None)
    if isinstance(text, str) and text:
        items.append(Text(text=text))
    for tc in getattr(message, "tool_calls", None) or []:
        items.append(ToolCall(
            id=tc.id,
            function=ToolFunction(
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            ),
        ))
    return items


def build_system_prompt(preamble: str, documents: list[Document]) -> str:
    """Preamble followed by every context document."""
    sections = [preamble] if preamble else []
    sections.extend(doc.render() for doc in documents)
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# litellm model
# ---------------------------------------------------------------------------


class LiteLLMCompletionModel:
    """CompletionModel over ``litellm.acompletion``."""

    def __init__(
        self,
        model: str,
        *,
        preamble: str = "",
        temperature: float | None = None,
        max_tokens: int | None = None,
        additional_params: dict[str, Any] | None = None,
        api_base: str | None = None,
        timeout: int = 60,
    ):
        self.model = model
        self.preamble = preamble
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.additional_params = dict(additional_params or {})
        self.api_base = api_base
        self.timeout = timeout

    def description(self) -> str:
        return self.model

    def _call_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: ToolSet | None,
    ) -> dict[str, Any]:
        call_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "timeout": self.timeout,
            **self.additional_params,
        }
        if self.temperature is not None:
            call_kwargs["temperature"] = self.temperature
        if self.max_tokens is not None:
            call_kwargs["max_tokens"] = self.max_tokens
        if self.api_base is not None:
            call_kwargs["api_base"] = self.api_base
        if tools is not None and len(tools):
            call_kwargs["tools"] = tools.openai_tools()
        return call_kwargs

    async def complete(
        self,
        prompt: UserMessage | AssistantMessage,
        history: list[UserMessage | AssistantMessage],
        *,
        preamble: str | None = None,
        documents: list[Document] | None = None,
        tools: ToolSet | None = None,
    ) -> CompletionResponse:
        """Issue one completion request.

        Raises:
            CompletionError: If the request fails or the response cannot be read
        """
        system = build_system_prompt(
            self.preamble if preamble is None else preamble, documents or [],
        )
        try:
            messages = ([{"role": "system", "content": system}] if system else []) + to_openai(
                [*history, prompt]
            )
            response = await litellm.acompletion(**self._call_kwargs(messages, tools))
            choice = response.choices[0]
            content = _extract_content(choice.message)
        except Exception as e:
            raise wrap_completion_error(e) from e

        usage = _extract_usage(response)
        cost = _compute_cost(response)
        logger.debug(
            "LLM call: model=%s tokens=%d cost=$%.6f finish=%s",
            self.model,
            usage.total_tokens,
            cost,
            getattr(choice, "finish_reason", ""),
        )
        return CompletionResponse(content=content, usage=usage, cost=cost, raw_response=response)
