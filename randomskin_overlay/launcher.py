from __future__ import annotations

import argparse
import importlib
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

from PyQt6.QtWidgets import QApplication, QWidget

from randomskin_overlay.bridge_channel import Transport
from randomskin_overlay.bridge_logging import BridgeLogHandler
from randomskin_overlay.client_config import OverlaySettings, load_settings, resolve_settings_path
from randomskin_overlay.debug_config import DEBUG_CONFIG_ENABLED, DEV_MODE_ENV_VAR, load_troubleshooting_config
from randomskin_overlay.logging_utils import build_rotating_file_handler, get_logger, resolve_logs_dir
from randomskin_overlay.overlay_core import OverlayCore
from randomskin_overlay.qt_host import QtHostTree, qt_after
from randomskin_overlay.version import __version__
from randomskin_overlay.websocket_transport import WebSocketTransport

_LOGGER = get_logger()


def configure_file_logging(settings: OverlaySettings, debug_path: Optional[Path] = None) -> Optional[logging.Handler]:
    retention = settings.client_log_retention
    if debug_path is not None:
        troubleshooting = load_troubleshooting_config(debug_path)
        if troubleshooting.overlay_logs_to_keep is not None:
            retention = troubleshooting.overlay_logs_to_keep
    try:
        handler = build_rotating_file_handler(resolve_logs_dir(Path(__file__).parent), retention=retention)
    except OSError as exc:
        _LOGGER.warning("File logging unavailable: %s", exc)
        return None
    _LOGGER.addHandler(handler)
    return handler


def install(
    root: QWidget,
    *,
    settings: Optional[OverlaySettings] = None,
    transport: Optional[Transport] = None,
) -> OverlayCore:
    """Attach the overlay to a live widget tree and start talking to the controller."""
    settings = settings or load_settings(resolve_settings_path(None))
    tree = QtHostTree(root)
    core = OverlayCore(tree, transport or WebSocketTransport(), after=qt_after, settings=settings)
    if settings.forward_logs:
        _LOGGER.addHandler(BridgeLogHandler(core.channel.send))
    core.start()
    return core


def load_host_factory(target: str) -> Callable[[], QWidget]:
    """Resolve ``module:callable`` to a factory that builds the host window."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"host factory must look like 'package.module:callable', got {target!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"{target!r} is not callable")
    return factory


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Random skin overlay client")
    parser.add_argument("--host", required=True, help="Host window factory as package.module:callable")
    parser.add_argument("--settings", help="Path to overlay_settings.json")
    parser.add_argument("--bridge-url", help="Controller WebSocket URL (overrides settings)")
    args = parser.parse_args(argv)

    settings_path = resolve_settings_path(args.settings)
    settings = load_settings(settings_path)
    if args.bridge_url:
        settings = replace(settings, bridge_url=args.bridge_url.strip())
    configure_file_logging(settings, settings_path.with_name("debug.json"))
    if not DEBUG_CONFIG_ENABLED:
        _LOGGER.debug("debug.json ignored (release mode). Export %s=1 to enable troubleshooting flags.", DEV_MODE_ENV_VAR)
    _LOGGER.info("Starting random skin overlay v%s (pid=%s)", __version__, os.getpid())
    _LOGGER.debug("Resolved settings path to %s; bridge=%s", settings_path, settings.bridge_url)

    try:
        factory = load_host_factory(args.host)
    except (ImportError, ValueError) as exc:
        _LOGGER.error("Cannot load host window: %s", exc)
        return 2

    app = QApplication.instance() or QApplication(sys.argv)
    root = factory()
    root.show()
    transport = WebSocketTransport()
    core = install(root, settings=settings, transport=transport)

    def _shutdown() -> None:
        core.stop()
        transport.shutdown()

    app.aboutToQuit.connect(_shutdown)
    exit_code = app.exec()
    _LOGGER.info("Overlay exiting with code %s", exit_code)
    return int(exit_code)
