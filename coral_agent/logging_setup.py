"""Console logging for agent host programs.

INFO goes to stdout, WARNING and above to stderr. When the agent runs under
the Coral orchestration runtime, the server already prefixes every line with
time and agent identity, so the local format is reduced to the bare message.

    from coral_agent import CoralConfig, init_logging

    config = CoralConfig.from_env()
    init_logging(config)
"""

from __future__ import annotations

import logging
import sys

import litellm

from coral_agent.config import CoralConfig

DEV_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ORCHESTRATED_FORMAT = "%(message)s"

_HANDLER_MARKER = "_coral_agent_handler"


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int) -> None:
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def init_logging(config: CoralConfig | None = None, level: int = logging.INFO) -> bool:
    """Install the stdout/stderr handler pair on the root logger.

    Returns False (and does nothing) if handlers were already installed.
    """
    root = logging.getLogger()
    if any(getattr(h, _HANDLER_MARKER, False) for h in root.handlers):
        return False

    orchestrated = bool(config and config.orchestrated)
    formatter = logging.Formatter(ORCHESTRATED_FORMAT if orchestrated else DEV_FORMAT)

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setLevel(level)
    stdout.addFilter(_MaxLevelFilter(logging.WARNING))
    stdout.setFormatter(formatter)

    stderr = logging.StreamHandler(sys.stderr)
    stderr.setLevel(logging.WARNING)
    stderr.setFormatter(formatter)

    for handler in (stdout, stderr):
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)
    root.setLevel(min(level, logging.WARNING))

    # Silence litellm's noisy default logging
    litellm.suppress_debug_info = True
    return True
