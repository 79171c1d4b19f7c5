from __future__ import annotations

import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from randomskin_overlay.debug_config import DEBUG_CONFIG_ENABLED

LOGGER_ROOT = "RandomSkin.Overlay"
LOG_FILENAME = "randomskin-overlay.log"
PROPAGATE_ENV_VAR = "RANDOMSKIN_OVERLAY_PROPAGATE_LOGS"
LOG_DIR_ENV_VAR = "RANDOMSKIN_OVERLAY_LOG_DIR"


class ReleaseLogLevelFilter(logging.Filter):
    """Promote debug logs to INFO in release builds so diagnostics stay visible."""

    def __init__(self, release_mode: bool) -> None:
        super().__init__()
        self._release_mode = release_mode

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging shim
        if self._release_mode and record.levelno == logging.DEBUG:
            record.levelno = logging.INFO
            record.levelname = "INFO"
        return True


def _propagation_requested() -> bool:
    return os.environ.get(PROPAGATE_ENV_VAR, "").strip().lower() in {"1", "true", "yes", "on"}


def get_logger(suffix: Optional[str] = None) -> logging.Logger:
    """Return a logger under the overlay namespace.

    The namespace root carries level and propagation settings; children inherit
    them and get their own release filter, since logger filters do not propagate.
    """
    root = logging.getLogger(LOGGER_ROOT)
    if not getattr(root, "_randomskin_configured", False):
        root.setLevel(resolve_log_level(DEBUG_CONFIG_ENABLED))
        root.propagate = _propagation_requested()
        root.addFilter(ReleaseLogLevelFilter(release_mode=not DEBUG_CONFIG_ENABLED))
        root._randomskin_configured = True  # type: ignore[attr-defined]
    if not suffix:
        return root
    logger = logging.getLogger(f"{LOGGER_ROOT}.{suffix}")
    if not any(isinstance(existing, ReleaseLogLevelFilter) for existing in logger.filters):
        logger.addFilter(ReleaseLogLevelFilter(release_mode=not DEBUG_CONFIG_ENABLED))
    return logger


def resolve_logs_dir(base_path: Path, log_dir_name: str = "RandomSkinOverlay") -> Path:
    """
    Resolve the directory to store overlay logs.

    Strategy:
    - Use RANDOMSKIN_OVERLAY_LOG_DIR if set.
    - Fall back to XDG state/cache locations, then `cwd/logs/<log_dir_name>`.
    - Final fallback: tempdir/<log_dir_name>.
    The package directory is intentionally avoided so logs never land in the install tree.
    """
    candidates = []

    env_override = os.environ.get(LOG_DIR_ENV_VAR)
    if env_override:
        candidates.append(Path(env_override).expanduser())

    state_home = Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state"))
    cache_home = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    candidates.append(state_home / "logs")
    candidates.append(cache_home / "logs")
    candidates.append(Path.cwd() / "logs")

    for base in candidates:
        try:
            target = base / log_dir_name
            target.mkdir(parents=True, exist_ok=True)
            return target
        except OSError:
            continue

    temp_fallback = Path(tempfile.gettempdir()) / log_dir_name
    temp_fallback.mkdir(parents=True, exist_ok=True)
    return temp_fallback


def build_rotating_file_handler(
    log_dir: Path,
    filename: str = LOG_FILENAME,
    *,
    retention: int = 5,
    max_bytes: int = 512 * 1024,
    formatter: Optional[logging.Formatter] = None,
) -> logging.Handler:
    """Construct a rotating file handler with sane defaults."""
    retention = max(1, retention)
    backup_count = max(0, retention - 1)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    if formatter is None:
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    handler.setFormatter(formatter)
    return handler


def resolve_log_level(debug_enabled: bool) -> int:
    """Return a log level consistent with dev-mode behavior."""
    return logging.DEBUG if debug_enabled else logging.INFO
