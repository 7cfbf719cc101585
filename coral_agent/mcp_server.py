"""Connections to MCP servers (tool and resource providers).

A connection is opened once, shared by reference between the agent, its
prompts and the validation cache, and closed by the host when the run ends:

    config = CoralConfig.from_env()
    async with await McpConnectionBuilder.from_coral_env(config).connect() as coral:
        agent = Agent(model, connections=[coral])
        ...

Each connection carries an immutable ConnectionPolicy that tells the
validation cache whether to skip or always revalidate its tools and its
resources.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json as _json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from coral_agent.config import PACKAGE_NAME, PACKAGE_VERSION, CoralConfig
from coral_agent.errors import ConnectivityError, ToolExecutionError

if TYPE_CHECKING:
    from coral_agent.prompt import EvaluatedPrompt

logger = logging.getLogger(__name__)

DEFAULT_MCP_INIT_TIMEOUT: float = 30.0
"""Seconds to wait for a session to initialize."""


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionPolicy:
    """Per-connection validation flags, independent for tools and resources.

    skip_*: never fetch this category (servers that do not support it).
    revalidate_*: re-fetch this category before every completion request.
    """

    skip_tools: bool = False
    revalidate_tools: bool = False
    skip_resources: bool = False
    revalidate_resources: bool = False


@dataclass(frozen=True)
class ResourceContent:
    """One item of a read_resource result. Exactly one of text/blob is set."""

    uri: str
    mime_type: str | None = None
    text: str | None = None
    blob: str | None = None

    def as_string(self) -> str:
        return self.text if self.text is not None else (self.blob or "")


def _import_mcp() -> tuple[Any, ...]:
    """Lazily import mcp client components.

    Returns:
        (ClientSession, Implementation, sse_client, stdio_client, StdioServerParameters)
    """
    try:
        from mcp import ClientSession, StdioServerParameters
        from mcp.client.sse import sse_client
        from mcp.client.stdio import stdio_client
        from mcp.types import Implementation
    except ImportError:
        raise ImportError(
            "mcp package is required for MCP connections. "
            "Install with: pip install coral-agent"
        ) from None
    return ClientSession, Implementation, sse_client, stdio_client, StdioServerParameters


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class McpTool:
    """A tool advertised by one connection, callable through that connection."""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any] | None,
        connection: "McpServerConnection",
    ):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self.connection = connection

    @classmethod
    def from_mcp(cls, tool: Any, connection: "McpServerConnection") -> "McpTool":
        return cls(tool.name, tool.description or "", tool.inputSchema, connection)

    def openai_schema(self) -> dict[str, Any]:
        """Tool definition in OpenAI function-calling format.

        MCP: {"name": "foo", "description": "...", "inputSchema": {...}}
        OpenAI: {"type": "function", "function": {"name": "foo", "description": "...", "parameters": {...}}}
        """
        parameters = dict(self.input_schema or {"type": "object", "properties": {}})
        parameters.setdefault("type", "object")
        if not isinstance(parameters.get("properties"), dict):
            parameters["properties"] = {}
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

    async def call(self, arguments: str | dict[str, Any]) -> str:
        """Invoke the tool with a JSON argument payload and return its text output."""
        if isinstance(arguments, str):
            try:
                parsed = _json.loads(arguments) if arguments.strip() else {}
            except _json.JSONDecodeError as e:
                raise ToolExecutionError(
                    f"tool error: invalid JSON arguments for {self.name}: {e}",
                    tool=self.name,
                    original=e,
                ) from e
        else:
            parsed = arguments
        if parsed is None:
            parsed = {}
        if not isinstance(parsed, dict):
            raise ToolExecutionError(
                f"tool error: arguments for {self.name} must be a JSON object, got {type(parsed).__name__}",
                tool=self.name,
            )
        return await self.connection.call_tool(self.name, parsed)

    def __repr__(self) -> str:
        return f"McpTool({self.name!r}, connection={self.connection.identifier!r})"


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class McpServerConnection:
    """A live session with one MCP server.

    Copies made with ``with_policy`` share the session; only the connection
    that opened the session owns (and closes) it.
    """

    def __init__(
        self,
        identifier: str,
        session: Any,
        policy: ConnectionPolicy | None = None,
        stack: AsyncExitStack | None = None,
    ):
        self.identifier = identifier
        self.session = session
        self.policy = policy or ConnectionPolicy()
        self._stack = stack

    def with_policy(self, **changes: bool) -> "McpServerConnection":
        """A connection sharing this session with some policy flags changed."""
        return McpServerConnection(
            self.identifier,
            self.session,
            dataclasses.replace(self.policy, **changes),
        )

    async def close(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None

    async def __aenter__(self) -> "McpServerConnection":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _connectivity_error(self, action: str, e: Exception) -> ConnectivityError:
        return ConnectivityError(
            f"mcp error: {action} on {self.identifier!r} failed: {e}",
            connection=self.identifier,
            original=e,
        )

    async def list_tools(self) -> list[McpTool]:
        """Every tool this server advertises (all pages)."""
        tools: list[McpTool] = []
        try:
            result = await self.session.list_tools()
            while True:
                tools.extend(McpTool.from_mcp(t, self) for t in result.tools or [])
                cursor = getattr(result, "nextCursor", None)
                if not isinstance(cursor, str) or not cursor:
                    break
                result = await self.session.list_tools(cursor=cursor)
        except Exception as e:
            raise self._connectivity_error("list_tools", e) from e
        return tools

    async def list_resources(self) -> list[Any]:
        """Every resource descriptor this server advertises (all pages)."""
        resources: list[Any] = []
        try:
            result = await self.session.list_resources()
            while True:
                resources.extend(result.resources or [])
                cursor = getattr(result, "nextCursor", None)
                if not isinstance(cursor, str) or not cursor:
                    break
                result = await self.session.list_resources(cursor=cursor)
        except Exception as e:
            raise self._connectivity_error("list_resources", e) from e
        return resources

    async def read_resource(self, uri: str) -> list[ResourceContent]:
        """Read one URI-referenced resource."""
        try:
            result = await self.session.read_resource(uri)
        except Exception as e:
            raise self._connectivity_error(f"read_resource({uri})", e) from e
        return [
            ResourceContent(
                uri=str(getattr(c, "uri", uri)),
                mime_type=getattr(c, "mimeType", None),
                text=getattr(c, "text", None),
                blob=getattr(c, "blob", None),
            )
            for c in result.contents or []
        ]

    async def get_resources(self) -> list[ResourceContent]:
        """List every resource, then read each one. Always a live fetch."""
        contents: list[ResourceContent] = []
        for resource in await self.list_resources():
            contents.extend(await self.read_resource(str(resource.uri)))
        return contents

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Call a tool and return its text output (text items joined by newline)."""
        try:
            result = await self.session.call_tool(name, arguments)
        except Exception as e:
            raise ToolExecutionError(
                f"tool error: {name} on {self.identifier!r} failed: {e}",
                tool=name,
                original=e,
            ) from e

        parts: list[str] = []
        for item in result.content or []:
            if hasattr(item, "text"):
                parts.append(item.text)
            else:
                parts.append(str(item))
        output = "\n".join(parts)

        if result.isError:
            raise ToolExecutionError(f"tool error: {name} returned an error: {output}", tool=name)
        return output

    def prompt_with_resources(self, text: str | None = None) -> "EvaluatedPrompt":
        """A prompt of ``text`` (if given) followed by every resource of this server.

        The resource list is resolved on every evaluation, which is what Coral
        connections need: their resources describe live session state.
        """
        from coral_agent.prompt import EvaluatedPrompt

        prompt = EvaluatedPrompt.from_string(text) if text is not None else EvaluatedPrompt()
        return prompt.all_resources(self)

    def __repr__(self) -> str:
        return f"McpServerConnection({self.identifier!r}, {self.policy})"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class McpConnectionBuilder:
    """Immutable description of how to open a connection.

    Use ``sse``, ``stdio`` or ``from_coral_env`` and adjust with
    ``dataclasses.replace`` semantics via ``with_options``.
    """

    identifier: str
    url: str | None = None
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] | None = None
    policy: ConnectionPolicy = ConnectionPolicy()
    client_name: str = PACKAGE_NAME
    client_version: str = PACKAGE_VERSION
    init_timeout: float = DEFAULT_MCP_INIT_TIMEOUT

    @classmethod
    def sse(cls, url: str, **options: Any) -> "McpConnectionBuilder":
        """Connection over an SSE transport. The URL is the identifier."""
        return cls(identifier=url, url=url, **options)

    @classmethod
    def stdio(
        cls,
        command: str,
        args: list[str] | tuple[str, ...],
        identifier: str,
        **options: Any,
    ) -> "McpConnectionBuilder":
        """Connection to a child process over stdio."""
        return cls(identifier=identifier, command=command, args=tuple(args), **options)

    @classmethod
    def from_coral_env(cls, config: CoralConfig, **options: Any) -> "McpConnectionBuilder":
        """Connection to the Coral server the orchestrator started this agent for.

        Raises:
            ConfigurationError: If CORAL_CONNECTION_URL was not set
        """
        config.require_connection()
        options.setdefault("client_name", config.agent_name)
        options.setdefault("client_version", config.agent_version)
        return cls.sse(config.connection_url, **options)  # type: ignore[arg-type]

    def with_options(self, **changes: Any) -> "McpConnectionBuilder":
        policy_fields = {f.name for f in dataclasses.fields(ConnectionPolicy)}
        policy_changes = {k: changes.pop(k) for k in list(changes) if k in policy_fields}
        builder = dataclasses.replace(self, **changes)
        if policy_changes:
            builder = dataclasses.replace(
                builder, policy=dataclasses.replace(builder.policy, **policy_changes),
            )
        return builder

    async def connect(self) -> McpServerConnection:
        """Open the transport, initialize the session and return the connection.

        Raises:
            ConnectivityError: If the transport or the session could not start
        """
        ClientSession, Implementation, sse_client, stdio_client, StdioServerParameters = _import_mcp()

        stack = AsyncExitStack()
        try:
            if self.url is not None:
                read_stream, write_stream = await stack.enter_async_context(sse_client(self.url))
            else:
                params = StdioServerParameters(
                    command=self.command,
                    args=list(self.args),
                    env=self.env,
                )
                read_stream, write_stream = await stack.enter_async_context(stdio_client(params))

            session = await stack.enter_async_context(
                ClientSession(
                    read_stream,
                    write_stream,
                    client_info=Implementation(name=self.client_name, version=self.client_version),
                )
            )
            await asyncio.wait_for(session.initialize(), timeout=self.init_timeout)
        except Exception as e:
            await stack.aclose()
            raise ConnectivityError(
                f"mcp error: could not connect to {self.identifier!r}: {e}",
                connection=self.identifier,
                original=e,
            ) from e

        logger.info("Connected to MCP server %r", self.identifier)
        return McpServerConnection(self.identifier, session, self.policy, stack)
