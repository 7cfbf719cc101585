from __future__ import annotations

import logging

import pytest

from coral_agent.config import CoralConfig


@pytest.fixture
def session_config() -> CoralConfig:
    """Config of an agent running in a remote session with claims enabled."""
    return CoralConfig(
        connection_url="http://localhost:5555/sse/v1/devmode/app/priv/session1/agent",
        session_id="session1",
        api_url="http://localhost:5555",
        send_claims=True,
    )


@pytest.fixture(autouse=True)
def _clean_coral_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CORAL_CONNECTION_URL",
        "CORAL_SESSION_ID",
        "CORAL_API_URL",
        "CORAL_SEND_CLAIMS",
        "CORAL_ORCHESTRATION_RUNTIME",
        "CORAL_AGENT_NAME",
        "CORAL_AGENT_VERSION",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def info_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    caplog.set_level(logging.INFO, logger="coral_agent")
    return caplog
