"""Execution engine for Coral agents.

Drives a litellm-backed model through rounds of "complete, call tools,
observe" against MCP servers, claiming budget and attaching telemetry along
the way.

Usage:
    from coral_agent import (
        Agent, AgentLoop, CoralConfig, LiteLLMCompletionModel,
        McpConnectionBuilder, init_logging, repeating_prompt_stream,
    )

    config = CoralConfig.from_env()
    init_logging(config)

    coral = await McpConnectionBuilder.from_coral_env(config).connect()
    agent = Agent(
        LiteLLMCompletionModel("gpt-4.1-mini", preamble="You are a Coral agent."),
        connections=[coral],
    )
    prompt = coral.prompt_with_resources().string("Wait for mentions and answer them")
    await AgentLoop(agent, repeating_prompt_stream(prompt, max_reps=20)).execute()
"""

from coral_agent.agent import Agent, CompletionResult
from coral_agent.agent_loop import DEFAULT_ITERATION_TOOL_QUOTA, AgentLoop
from coral_agent.api import (
    ClaimAmount,
    ClaimUnit,
    CoralApiClient,
    McpResources,
    McpToolName,
    RemainingBudget,
    TelemetryTarget,
)
from coral_agent.claims import ClaimConfig, ClaimManager, per_million
from coral_agent.completion import (
    CompletionModel,
    CompletionResponse,
    LiteLLMCompletionModel,
    Usage,
)
from coral_agent.config import CoralConfig
from coral_agent.errors import (
    ApiError,
    BudgetExhaustedError,
    CompletionError,
    ConfigurationError,
    ConnectivityError,
    CoralError,
    EmptyMessagesError,
    EmptyTargetsError,
    OptionError,
    TelemetryError,
    TelemetryRequestError,
    ToolExecutionError,
)
from coral_agent.logging_setup import init_logging
from coral_agent.mcp_server import (
    ConnectionPolicy,
    McpConnectionBuilder,
    McpServerConnection,
    McpTool,
)
from coral_agent.messages import (
    AssistantMessage,
    Message,
    Text,
    ToolCall,
    ToolResult,
    UserMessage,
    tool_result,
    user_text,
)
from coral_agent.options import get_option, get_options
from coral_agent.prompt import EvaluatedPrompt
from coral_agent.prompt_sources import (
    PromptSource,
    RepeatingPromptSource,
    SequencePromptSource,
    repeating_prompt_stream,
)
from coral_agent.telemetry import TelemetryMode, TelemetryRequest, find_telemetry_targets
from coral_agent.toolset import Document, ResourceSet, ToolSet
from coral_agent.validation import ValidationCache

__all__ = [
    # engine
    "Agent",
    "AgentLoop",
    "CompletionResult",
    "DEFAULT_ITERATION_TOOL_QUOTA",
    "ValidationCache",
    # prompts
    "EvaluatedPrompt",
    "PromptSource",
    "RepeatingPromptSource",
    "SequencePromptSource",
    "repeating_prompt_stream",
    # models
    "CompletionModel",
    "CompletionResponse",
    "LiteLLMCompletionModel",
    "Usage",
    # mcp
    "ConnectionPolicy",
    "Document",
    "McpConnectionBuilder",
    "McpResources",
    "McpServerConnection",
    "McpTool",
    "McpToolName",
    "ResourceSet",
    "ToolSet",
    # messages
    "AssistantMessage",
    "Message",
    "Text",
    "ToolCall",
    "ToolResult",
    "UserMessage",
    "tool_result",
    "user_text",
    # claims and telemetry
    "ClaimAmount",
    "ClaimConfig",
    "ClaimManager",
    "ClaimUnit",
    "CoralApiClient",
    "RemainingBudget",
    "TelemetryMode",
    "TelemetryRequest",
    "TelemetryTarget",
    "find_telemetry_targets",
    "per_million",
    # config
    "CoralConfig",
    "get_option",
    "get_options",
    "init_logging",
    # errors
    "ApiError",
    "BudgetExhaustedError",
    "CompletionError",
    "ConfigurationError",
    "ConnectivityError",
    "CoralError",
    "EmptyMessagesError",
    "EmptyTargetsError",
    "OptionError",
    "TelemetryError",
    "TelemetryRequestError",
    "ToolExecutionError",
]
