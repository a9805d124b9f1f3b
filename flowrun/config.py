"""Shared flowrun configuration.

Reads ~/.flowrun/configuration.json once per call so the CLI and library
callers resolve metadata directories and router budgets the same way.

Example file:
    {
        "prompts_dir": "~/promptspec/prompts",
        "compositions_dir": "~/promptspec/compositions",
        "router": {"token_budget": 4000, "latency_budget_ms": 5000},
        "log_level": "DEBUG"
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from flowrun.graph.hybrid import DEFAULT_LATENCY_BUDGET_MS, DEFAULT_TOKEN_BUDGET

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWRUN_CONFIG_FILE = Path.home() / ".flowrun" / "configuration.json"

PROMPTS_DIR_ENV = "FLOWRUN_PROMPTS_DIR"
COMPOSITIONS_DIR_ENV = "FLOWRUN_COMPOSITIONS_DIR"


def get_flowrun_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.flowrun/configuration.json (or ``path``)."""
    config_file = path or FLOWRUN_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"⚠ Ignoring unreadable config {config_file}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _directory(env_var: str, config: dict[str, Any], key: str) -> Path | None:
    value = os.environ.get(env_var) or config.get(key)
    if not value:
        return None
    return Path(value).expanduser()


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return default
    return value


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Runtime settings: metadata locations, router budgets and log level."""

    prompts_dir: Path | None = None
    compositions_dir: Path | None = None
    token_budget: int = DEFAULT_TOKEN_BUDGET
    latency_budget_ms: int = DEFAULT_LATENCY_BUDGET_MS
    log_level: str = "INFO"
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path | None = None) -> "RuntimeConfig":
        """Build from the config file, with environment overrides for directories."""
        config = get_flowrun_config(path)
        router = config.get("router") if isinstance(config.get("router"), dict) else {}
        known = {"prompts_dir", "compositions_dir", "router", "log_level"}
        return cls(
            prompts_dir=_directory(PROMPTS_DIR_ENV, config, "prompts_dir"),
            compositions_dir=_directory(COMPOSITIONS_DIR_ENV, config, "compositions_dir"),
            token_budget=_positive_int(router.get("token_budget"), DEFAULT_TOKEN_BUDGET),
            latency_budget_ms=_positive_int(
                router.get("latency_budget_ms"), DEFAULT_LATENCY_BUDGET_MS
            ),
            log_level=str(config.get("log_level") or "INFO").upper(),
            extra={k: v for k, v in config.items() if k not in known},
        )
