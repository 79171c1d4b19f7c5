from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from randomskin_overlay.bridge_channel import CHANNEL_LOGGER_NAME
from randomskin_overlay.messages import log_message

SendFn = Callable[[Mapping[str, Any]], object]

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


class BridgeLogHandler(logging.Handler):
    """Forwards overlay log records to the controller as ``log`` messages.

    Records from the channel's own logger are never forwarded, which keeps a
    send-failure log line from producing another send.
    """

    def __init__(self, send: SendFn, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._send = send
        self._emitting = False

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name == CHANNEL_LOGGER_NAME or name.startswith(CHANNEL_LOGGER_NAME + "."):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        if self._emitting:
            return
        self._emitting = True
        try:
            data: Optional[Mapping[str, Any]] = getattr(record, "bridge_data", None)
            if record.exc_info and record.exc_info[1] is not None:
                data = dict(data or {})
                data["error"] = str(record.exc_info[1])
            level = _LEVEL_NAMES.get(record.levelno, "info")
            self._send(log_message(level, record.getMessage(), data))
        except Exception:
            self.handleError(record)
        finally:
            self._emitting = False
