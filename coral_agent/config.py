"""Typed runtime configuration for coral_agent.

``CoralConfig.from_env()`` is the only place the engine reads process
environment for its own settings. Everything else receives the resolved
config explicitly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields

from coral_agent.errors import ConfigurationError

logger = logging.getLogger(__name__)

PACKAGE_NAME = "coral-agent"
PACKAGE_VERSION = "0.1.0"

CONNECTION_URL_ENV = "CORAL_CONNECTION_URL"
SESSION_ID_ENV = "CORAL_SESSION_ID"
API_URL_ENV = "CORAL_API_URL"
SEND_CLAIMS_ENV = "CORAL_SEND_CLAIMS"
ORCHESTRATION_RUNTIME_ENV = "CORAL_ORCHESTRATION_RUNTIME"
AGENT_NAME_ENV = "CORAL_AGENT_NAME"
AGENT_VERSION_ENV = "CORAL_AGENT_VERSION"

# field name -> environment variable, used to name missing settings
_FIELD_ENV: dict[str, str] = {
    "connection_url": CONNECTION_URL_ENV,
    "session_id": SESSION_ID_ENV,
    "api_url": API_URL_ENV,
}


@dataclass(frozen=True)
class CoralConfig:
    """Engine settings resolved once and passed explicitly to constructors."""

    connection_url: str | None = None
    session_id: str | None = None
    api_url: str | None = None
    send_claims: bool = False
    orchestrated: bool = False
    agent_name: str = PACKAGE_NAME
    agent_version: str = PACKAGE_VERSION

    @classmethod
    def from_env(cls) -> "CoralConfig":
        """Build typed config from environment variables."""
        send_raw = os.environ.get(SEND_CLAIMS_ENV)
        # Only the exact value "1" enables claims; anything else is local mode
        send_claims = send_raw == "1"
        if send_raw not in (None, "", "0", "1"):
            logger.warning(
                "Invalid %s=%r; claims are only sent when it is exactly '1'.",
                SEND_CLAIMS_ENV,
                send_raw,
            )

        return cls(
            connection_url=os.environ.get(CONNECTION_URL_ENV) or None,
            session_id=os.environ.get(SESSION_ID_ENV) or None,
            api_url=os.environ.get(API_URL_ENV) or None,
            send_claims=send_claims,
            orchestrated=ORCHESTRATION_RUNTIME_ENV in os.environ,
            agent_name=os.environ.get(AGENT_NAME_ENV) or PACKAGE_NAME,
            agent_version=os.environ.get(AGENT_VERSION_ENV) or PACKAGE_VERSION,
        )

    def require(self, *names: str) -> None:
        """Raise one ConfigurationError naming every unset field in ``names``."""
        known = {f.name for f in fields(self)}
        missing: list[str] = []
        for name in names:
            if name not in known:
                raise ValueError(f"unknown config field: {name}")
            if not getattr(self, name):
                missing.append(_FIELD_ENV.get(name, name))
        if missing:
            raise ConfigurationError(missing)

    def require_connection(self) -> None:
        self.require("connection_url")

    def require_telemetry(self) -> None:
        self.require("api_url", "session_id")

    def require_claims(self) -> None:
        self.require("api_url", "session_id")
