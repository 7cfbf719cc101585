"""Structured error types for coral_agent.

Every fatal condition raised by the engine is a CoralError subtype, so a host
program can decide what to do per kind:

    from coral_agent.errors import BudgetExhaustedError, ConnectivityError

    try:
        await AgentLoop(agent, prompts).execute()
    except BudgetExhaustedError:
        # Remote budget is spent - exiting is the only sensible option
        ...
    except ConnectivityError:
        # Provider went away - host may reconnect and start a new loop
        ...

Nothing in the engine retries. The original exception is kept on
``.original`` and chained as ``__cause__``.
"""

from __future__ import annotations

from typing import Any


class CoralError(Exception):
    """Base for all coral_agent errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class ConnectivityError(CoralError):
    """Provider unreachable, session init failed, or a session RPC failed."""

    def __init__(
        self,
        message: str,
        *,
        connection: str | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.connection = connection


class CompletionError(CoralError):
    """The completion model call failed.

    ``kind`` is a coarse classification (see classify_completion_error) kept
    for logging and host-side policy; it never changes propagation.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str = "unknown",
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.kind = kind


class ToolExecutionError(CoralError):
    """A called tool failed or does not exist."""

    def __init__(
        self,
        message: str,
        *,
        tool: str,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.tool = tool


class BudgetExhaustedError(CoralError):
    """Remaining remote budget is at or below the configured floor."""

    def __init__(self, remaining_budget: int, min_budget_micro: int) -> None:
        super().__init__(
            f"budget exhausted: remaining {remaining_budget} <= minimum {min_budget_micro} micro-coral"
        )
        self.remaining_budget = remaining_budget
        self.min_budget_micro = min_budget_micro


class ApiError(CoralError):
    """A call to the Coral REST API failed (transport error or non-2xx)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.status_code = status_code


class TelemetryError(CoralError):
    """Telemetry could not be formatted or sent. Logged, never fatal."""


class EmptyTargetsError(TelemetryError):
    """Telemetry was sent with no targets."""

    def __init__(self) -> None:
        super().__init__("no targets provided")


class EmptyMessagesError(TelemetryError):
    """Telemetry was sent with no messages."""

    def __init__(self) -> None:
        super().__init__("no messages provided")


class TelemetryRequestError(TelemetryError):
    """The telemetry POST itself failed."""


class ConfigurationError(CoralError):
    """One or more required settings are missing. Raised at construction."""

    def __init__(self, missing: list[str], message: str | None = None) -> None:
        self.missing = list(missing)
        super().__init__(message or f"missing required configuration: {', '.join(self.missing)}")


class OptionError(ConfigurationError):
    """An agent option is missing or has a value that cannot be parsed."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__([name], message)
        self.name = name


# ---------------------------------------------------------------------------
# Completion error classification
# ---------------------------------------------------------------------------

_QUOTA_PATTERNS = [
    "quota",
    "billing",
    "insufficient",
    "exceeded your current",
]


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def classify_completion_error(error: Exception) -> str:
    """Classify a completion failure into a coarse kind label.

    Uses litellm exception types when available, falls back to string matching.
    """
    import litellm as _lt

    auth_types = _litellm_error_types(_lt, ("AuthenticationError", "PermissionDeniedError"))
    if auth_types and isinstance(error, auth_types):
        return "auth"

    not_found_types = _litellm_error_types(_lt, ("NotFoundError",))
    if not_found_types and isinstance(error, not_found_types):
        return "not_found"

    content_types = _litellm_error_types(_lt, ("ContentPolicyViolationError",))
    if content_types and isinstance(error, content_types):
        return "content_filter"

    rate_types = _litellm_error_types(_lt, ("RateLimitError",))
    if rate_types and isinstance(error, rate_types):
        if any(p in str(error).lower() for p in _QUOTA_PATTERNS):
            return "quota"
        return "rate_limit"

    transient_types = _litellm_error_types(
        _lt,
        (
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "Timeout",
        ),
    )
    if transient_types and isinstance(error, transient_types):
        return "transient"

    # Fallback: string pattern matching
    error_str = str(error).lower()
    if any(p in error_str for p in _QUOTA_PATTERNS):
        return "quota"
    if "401" in error_str or "unauthorized" in error_str or "403" in error_str:
        return "auth"
    if "rate" in error_str and "limit" in error_str:
        return "rate_limit"
    if any(p in error_str for p in ("timeout", "timed out", "connection", "502", "503")):
        return "transient"
    return "unknown"


def wrap_completion_error(error: Exception) -> CompletionError:
    """Wrap an exception from the model call in a CompletionError.

    If the error is already a CompletionError, returns it unchanged.
    """
    if isinstance(error, CompletionError):
        return error
    return CompletionError(
        f"completion error: {error}",
        kind=classify_completion_error(error),
        original=error,
    )
