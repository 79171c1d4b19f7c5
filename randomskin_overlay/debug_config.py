"""Dev-mode switch and troubleshooting flags for the overlay client."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from randomskin_overlay.version import DEV_MODE_ENV_VAR, __version__ as OVERLAY_VERSION, is_dev_build

DEBUG_CONFIG_ENABLED = is_dev_build(OVERLAY_VERSION)
CLIENT_LOG_RETENTION_MIN = 1
CLIENT_LOG_RETENTION_MAX = 20

__all__ = [
    "CLIENT_LOG_RETENTION_MAX",
    "CLIENT_LOG_RETENTION_MIN",
    "DEBUG_CONFIG_ENABLED",
    "DEV_MODE_ENV_VAR",
    "TroubleshootingConfig",
    "load_troubleshooting_config",
]


@dataclass(frozen=True)
class TroubleshootingConfig:
    overlay_logs_to_keep: Optional[int] = None


def _coerce_log_retention(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return None
    if numeric <= 0:
        return CLIENT_LOG_RETENTION_MIN
    if numeric > CLIENT_LOG_RETENTION_MAX:
        return CLIENT_LOG_RETENTION_MAX
    return numeric


def load_troubleshooting_config(path: Path, *, enabled: bool = DEBUG_CONFIG_ENABLED) -> TroubleshootingConfig:
    """Read troubleshooting flags from debug.json; ignored outside dev mode."""

    if not enabled:
        return TroubleshootingConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, OSError, json.JSONDecodeError):
        data = {}
    if not isinstance(data, dict):
        return TroubleshootingConfig()
    return TroubleshootingConfig(
        overlay_logs_to_keep=_coerce_log_retention(data.get("overlay_logs_to_keep")),
    )
