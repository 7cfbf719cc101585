"""Per-connection validation of tools and resources.

Before every completion request the agent calls ``refresh_tools()`` and
``refresh_resources()``. For each connection and category:

1. skip flag set -> nothing is fetched, nothing from it ever enters the sets
2. validated and not always-revalidate -> cached entries stay as they are
3. otherwise the full list is fetched and merged; fetch errors propagate

Connections flagged always-revalidate record what they contributed. At the
start of the next refresh those entries are evicted and the connection's
validated flag is cleared, so an entry never outlives the round after the
one that fetched it and is never duplicated across rounds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from coral_agent.mcp_server import McpServerConnection
from coral_agent.toolset import Document, ResourceSet, ToolSet

logger = logging.getLogger(__name__)


@dataclass
class ValidationState:
    connection: McpServerConnection
    tools_validated: bool = False
    resources_validated: bool = False


class ValidationCache:
    """Validation flags per connection plus pending evictions keyed by connection id."""

    def __init__(
        self,
        connections: Iterable[McpServerConnection] = (),
        tools: ToolSet | None = None,
        resources: ResourceSet | None = None,
    ):
        self.states: list[ValidationState] = []
        self.tools = tools if tools is not None else ToolSet()
        self.resources = resources if resources is not None else ResourceSet()
        self._pending_tools: dict[str, set[str]] = {}
        self._pending_resources: dict[str, set[str]] = {}
        for connection in connections:
            self.add_connection(connection)

    def add_connection(self, connection: McpServerConnection) -> None:
        self.states.append(ValidationState(connection))

    def state_for(self, identifier: str) -> ValidationState | None:
        for state in self.states:
            if state.connection.identifier == identifier:
                return state
        return None

    # -- tools -------------------------------------------------------------

    def _evict_tools(self) -> dict[str, set[str]]:
        evicted = self._pending_tools
        self._pending_tools = {}
        for identifier, names in evicted.items():
            for name in names:
                tool = self.tools.get(name)
                if tool is not None and tool.connection.identifier == identifier:
                    self.tools.delete(name)
            state = self.state_for(identifier)
            if state is not None:
                state.tools_validated = False
        return evicted

    async def refresh_tools(self) -> None:
        """Make the merged ToolSet current for this round."""
        previous = self._evict_tools()

        for state in self.states:
            connection = state.connection
            policy = connection.policy
            if policy.skip_tools:
                continue
            if state.tools_validated and not policy.revalidate_tools:
                continue

            tools = await connection.list_tools()
            known = previous.get(connection.identifier, set())
            for tool in tools:
                if tool.name not in known:
                    logger.info(
                        'adding tool "%s" from mcp server "%s"', tool.name, connection.identifier,
                    )
            state.tools_validated = True

            if policy.revalidate_tools:
                self._pending_tools[connection.identifier] = {t.name for t in tools}
            for tool in tools:
                self.tools.add(tool)

    # -- resources ---------------------------------------------------------

    def _evict_resources(self) -> None:
        evicted = self._pending_resources
        self._pending_resources = {}
        for identifier, ids in evicted.items():
            self.resources.remove_ids(ids, source=identifier)
            state = self.state_for(identifier)
            if state is not None:
                state.resources_validated = False

    async def refresh_resources(self) -> None:
        """Make the merged ResourceSet current for this round."""
        self._evict_resources()

        for state in self.states:
            connection = state.connection
            policy = connection.policy
            if policy.skip_resources:
                continue
            if state.resources_validated and not policy.revalidate_resources:
                continue

            logger.info("validating resources for MCP server %s", connection.identifier)
            documents = [
                Document(
                    id=content.uri,
                    text=content.text,
                    additional_props={"mime_type": content.mime_type} if content.mime_type else {},
                    source=connection.identifier,
                )
                for content in await connection.get_resources()
                if content.text is not None
            ]
            state.resources_validated = True

            if policy.revalidate_resources:
                self._pending_resources[connection.identifier] = {d.id for d in documents}
            self.resources.extend(documents)

    async def refresh(self) -> None:
        await self.refresh_tools()
        await self.refresh_resources()
