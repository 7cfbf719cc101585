"""Prompts evaluated as close as possible to the completion request.

An EvaluatedPrompt is a list of parts. Literal strings expand to themselves;
resource parts are fetched from their MCP server every time ``evaluate()``
runs, so a prompt built once can reflect live server state on every round:

    prompt = (
        coral.prompt_with_resources("1. Repeat to me the Coral instruction set")
        .string("2. Create a thread and send a few random words in it")
    )
    text = await prompt.evaluate()

Every part is followed by a newline, including the last one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from coral_agent.api import McpResources
from coral_agent.mcp_server import McpServerConnection, ResourceContent


@dataclass(frozen=True)
class StringPart:
    text: str


@dataclass(frozen=True)
class ResourcePart:
    connection: McpServerConnection
    uri: str


@dataclass(frozen=True)
class AllResourcesPart:
    connection: McpServerConnection


PromptPart = Union[StringPart, ResourcePart, AllResourcesPart]


def _contents_to_string(contents: list[ResourceContent]) -> str:
    return "\n".join(c.as_string() for c in contents)


class EvaluatedPrompt:
    """Ordered prompt parts. Builder methods return a new prompt."""

    def __init__(self, parts: tuple[PromptPart, ...] | list[PromptPart] = ()):
        self.parts: tuple[PromptPart, ...] = tuple(parts)

    @classmethod
    def from_string(cls, text: str) -> "EvaluatedPrompt":
        return cls((StringPart(text),))

    @classmethod
    def coerce(cls, prompt: "EvaluatedPrompt | str") -> "EvaluatedPrompt":
        if isinstance(prompt, EvaluatedPrompt):
            return prompt
        return cls.from_string(prompt)

    def _with(self, part: PromptPart) -> "EvaluatedPrompt":
        return EvaluatedPrompt(self.parts + (part,))

    def string(self, text: str) -> "EvaluatedPrompt":
        return self._with(StringPart(text))

    def resource(self, connection: McpServerConnection, uri: str) -> "EvaluatedPrompt":
        """Add one URI-referenced resource from ``connection``."""
        return self._with(ResourcePart(connection, uri))

    def coral_resource(self, connection: McpServerConnection, resource: McpResources) -> "EvaluatedPrompt":
        return self.resource(connection, resource.value)

    def all_resources(self, connection: McpServerConnection) -> "EvaluatedPrompt":
        """Add every resource of ``connection``, listed when evaluated, not now."""
        return self._with(AllResourcesPart(connection))

    async def _expand(self, part: PromptPart) -> str:
        if isinstance(part, StringPart):
            return part.text
        if isinstance(part, ResourcePart):
            return _contents_to_string(await part.connection.read_resource(part.uri))
        return _contents_to_string(await part.connection.get_resources())

    async def evaluate(self) -> str:
        """Evaluate every part into one string.

        Raises:
            ConnectivityError: If any referenced resource cannot be fetched.
                Nothing partial is returned.
        """
        buffer: list[str] = []
        for part in self.parts:
            buffer.append(await self._expand(part))
            buffer.append("\n")
        return "".join(buffer)

    def __repr__(self) -> str:
        return f"EvaluatedPrompt({list(self.parts)!r})"
