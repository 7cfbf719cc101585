"""Merged tool and resource sets exposed to the completion model."""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from coral_agent.errors import ToolExecutionError
from coral_agent.mcp_server import McpTool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    """A resource placed in the model's context. ``id`` is the resource URI.

    ``source`` names the connection the resource was read from, if any.
    """

    id: str
    text: str
    additional_props: dict[str, str] = field(default_factory=dict)
    source: str | None = field(default=None, compare=False)

    def render(self) -> str:
        attrs = "".join(f" {k}={v!r}" for k, v in sorted(self.additional_props.items()))
        return f"<file id: {self.id}{attrs}>\n{self.text}\n</file>"


class ToolSet:
    """Tool name -> handle. At most one handle per name."""

    def __init__(self, tools: Iterable[McpTool] = ()):
        self._tools: dict[str, McpTool] = {}
        for tool in tools:
            self.add(tool)

    def add(self, tool: McpTool) -> None:
        existing = self._tools.get(tool.name)
        if existing is not None and existing.connection.identifier != tool.connection.identifier:
            logger.warning(
                "Duplicate tool %r from server %r replaces the one from %r",
                tool.name, tool.connection.identifier, existing.connection.identifier,
            )
        self._tools[tool.name] = tool

    def delete(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> McpTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[McpTool]:
        return iter(list(self._tools.values()))

    async def call(self, name: str, arguments: str | dict[str, Any]) -> str:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolExecutionError(f"tool error: unknown tool {name!r}", tool=name)
        return await tool.call(arguments)

    def openai_tools(self) -> list[dict[str, Any]]:
        return [tool.openai_schema() for tool in self._tools.values()]

    def documents(self) -> list[Document]:
        """Tool definitions as documents, for telemetry."""
        return [
            Document(id=tool.name, text=_json.dumps(tool.openai_schema()["function"]))
            for tool in self._tools.values()
        ]


class ResourceSet:
    """Ordered documents; ids are resource URIs."""

    def __init__(self, documents: Iterable[Document] = ()):
        self._documents: list[Document] = list(documents)

    def extend(self, documents: Iterable[Document]) -> None:
        self._documents.extend(documents)

    def remove_ids(self, ids: set[str], source: str | None = None) -> None:
        """Drop documents whose id is in ``ids``; with ``source``, only that connection's."""
        if ids:
            self._documents = [
                d for d in self._documents
                if d.id not in ids or (source is not None and d.source != source)
            ]

    def ids(self) -> list[str]:
        return [d.id for d in self._documents]

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[Document]:
        return iter(list(self._documents))
