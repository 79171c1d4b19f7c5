from __future__ import annotations

import json
import logging

import pytest

from randomskin_overlay import debug_config, logging_utils, version


@pytest.mark.parametrize(
    "env_value, version_label, expected",
    [
        (None, "1.2.0", False),
        (None, "1.3.0-dev", True),
        ("1", "1.2.0", True),
        ("off", "1.3.0-dev", False),
    ],
)
def test_is_dev_build(monkeypatch, env_value, version_label, expected):
    if env_value is None:
        monkeypatch.delenv(version.DEV_MODE_ENV_VAR, raising=False)
    else:
        monkeypatch.setenv(version.DEV_MODE_ENV_VAR, env_value)
    assert version.is_dev_build(version_label) is expected


def test_troubleshooting_disabled_returns_defaults(tmp_path):
    path = tmp_path / "debug.json"
    path.write_text(json.dumps({"overlay_logs_to_keep": 7}), encoding="utf-8")
    cfg = debug_config.load_troubleshooting_config(path, enabled=False)
    assert cfg.overlay_logs_to_keep is None


@pytest.mark.parametrize("raw, expected", [(7, 7), (0, 1), (99, 20), ("x", None)])
def test_troubleshooting_clamps_log_retention(tmp_path, raw, expected):
    path = tmp_path / "debug.json"
    path.write_text(json.dumps({"overlay_logs_to_keep": raw}), encoding="utf-8")
    cfg = debug_config.load_troubleshooting_config(path, enabled=True)
    assert cfg.overlay_logs_to_keep == expected


def test_child_loggers_live_under_namespace():
    logger = logging_utils.get_logger("Bridge")
    assert logger.name == "RandomSkin.Overlay.Bridge"
    assert logging_utils.get_logger().name == logging_utils.LOGGER_ROOT
    assert any(isinstance(f, logging_utils.ReleaseLogLevelFilter) for f in logger.filters)


def test_release_filter_promotes_debug_records():
    record = logging.LogRecord("x", logging.DEBUG, __file__, 1, "hello", None, None)
    logging_utils.ReleaseLogLevelFilter(release_mode=True).filter(record)
    assert record.levelno == logging.INFO
    untouched = logging.LogRecord("x", logging.DEBUG, __file__, 1, "hello", None, None)
    logging_utils.ReleaseLogLevelFilter(release_mode=False).filter(untouched)
    assert untouched.levelno == logging.DEBUG


def test_resolve_logs_dir_prefers_env(monkeypatch, tmp_path):
    monkeypatch.setenv(logging_utils.LOG_DIR_ENV_VAR, str(tmp_path / "custom"))
    target = logging_utils.resolve_logs_dir(tmp_path)
    assert target == tmp_path / "custom" / "RandomSkinOverlay"
    assert target.is_dir()


def test_rotating_handler_keeps_retention_minus_one_backups(tmp_path):
    handler = logging_utils.build_rotating_file_handler(tmp_path, retention=4)
    try:
        assert handler.backupCount == 3
        assert handler.baseFilename.endswith(logging_utils.LOG_FILENAME)
    finally:
        handler.close()


def test_log_level_follows_dev_mode():
    assert logging_utils.resolve_log_level(True) == logging.DEBUG
    assert logging_utils.resolve_log_level(False) == logging.INFO
