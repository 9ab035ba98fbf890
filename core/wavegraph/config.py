"""Shared wavegraph configuration utilities.

Reads ``~/.wavegraph/configuration.json`` (or the file named by
``WAVEGRAPH_CONFIG``) once per lookup so that the CLI and embedding
applications agree on engine defaults. Individual settings can be
overridden with ``WAVEGRAPH_*`` environment variables.

Example configuration file::

    {
      "executor": {
        "max_steps": 20,
        "retry_base_delay": 0.5,
        "backoff": "exponential",
        "conflict_strategy": "error"
      }
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_STEPS = 12
DEFAULT_RETRY_BASE_DELAY = 0.2
DEFAULT_BACKOFF = "linear"
DEFAULT_CONFLICT_STRATEGY = "last_wins"

BACKOFF_STRATEGIES = ("linear", "exponential")
CONFLICT_STRATEGIES = ("last_wins", "first_wins", "error")

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

WAVEGRAPH_CONFIG_FILE = Path.home() / ".wavegraph" / "configuration.json"


def get_config_path() -> Path:
    """Return the configuration file path, honouring WAVEGRAPH_CONFIG."""
    override = os.environ.get("WAVEGRAPH_CONFIG")
    return Path(override) if override else WAVEGRAPH_CONFIG_FILE


def get_wavegraph_config() -> dict[str, Any]:
    """Load the configuration file. Missing or unreadable files yield {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _executor_setting(name: str, env_var: str, default: Any, cast: type) -> Any:
    raw = os.environ.get(env_var)
    if raw is None:
        section = get_wavegraph_config().get("executor")
        raw = section.get(name) if isinstance(section, dict) else None
    if raw is None:
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for {name}: {raw!r}, using default {default!r}")
        return default


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_max_steps() -> int:
    """Return the configured step budget."""
    return _executor_setting("max_steps", "WAVEGRAPH_MAX_STEPS", DEFAULT_MAX_STEPS, int)


def get_retry_base_delay() -> float:
    """Return the base delay in seconds between retry attempts."""
    return _executor_setting(
        "retry_base_delay", "WAVEGRAPH_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY, float
    )


def get_backoff() -> str:
    return _executor_setting("backoff", "WAVEGRAPH_BACKOFF", DEFAULT_BACKOFF, str)


def get_conflict_strategy() -> str:
    return _executor_setting(
        "conflict_strategy",
        "WAVEGRAPH_CONFLICT_STRATEGY",
        DEFAULT_CONFLICT_STRATEGY,
        str,
    )


# ---------------------------------------------------------------------------
# ExecutorConfig
# ---------------------------------------------------------------------------


@dataclass
class ExecutorConfig:
    """Scheduler settings, defaulting from the configuration file and env."""

    max_steps: int = field(default_factory=get_max_steps)
    retry_base_delay: float = field(default_factory=get_retry_base_delay)
    backoff: str = field(default_factory=get_backoff)
    # Policy for sibling nodes writing the same state key in one superstep
    conflict_strategy: str = field(default_factory=get_conflict_strategy)
    # Optional whole-run deadline in seconds
    run_timeout: float | None = None
    trace_enabled: bool = True

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {self.max_steps}")
        if self.retry_base_delay < 0:
            raise ValueError(f"retry_base_delay must be >= 0, got {self.retry_base_delay}")
        if self.backoff not in BACKOFF_STRATEGIES:
            raise ValueError(f"backoff must be one of {BACKOFF_STRATEGIES}, got {self.backoff!r}")
        if self.conflict_strategy not in CONFLICT_STRATEGIES:
            raise ValueError(
                f"conflict_strategy must be one of {CONFLICT_STRATEGIES}, "
                f"got {self.conflict_strategy!r}"
            )
        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ValueError(f"run_timeout must be positive, got {self.run_timeout}")
