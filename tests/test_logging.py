from __future__ import annotations

import logging
import logging.handlers

import pytest

from vaultchat import app
from vaultchat.services.settings import Settings
from vaultchat.utils.logging import LOG_FILE_NAME, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _owned(root: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in root.handlers if getattr(handler, "_vaultchat_owned", False)]


def test_setup_writes_to_rotating_file_and_quiets_clients(tmp_path, root_logger) -> None:
    log_path = setup_logging(logging.DEBUG, tmp_path / "logs", console=False)

    logging.getLogger("vaultchat.test").info("hello log")
    for handler in _owned(root_logger):
        handler.flush()

    assert log_path == tmp_path / "logs" / LOG_FILE_NAME
    assert "hello log" in log_path.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert [type(handler) for handler in _owned(root_logger)] == [logging.handlers.RotatingFileHandler]


def test_reconfiguring_replaces_only_owned_handlers(tmp_path, root_logger) -> None:
    foreign = logging.NullHandler()
    root_logger.addHandler(foreign)

    setup_logging(logging.WARNING, tmp_path / "first")
    setup_logging(logging.DEBUG, tmp_path / "second", console=True)

    owned = _owned(root_logger)
    assert len(owned) == 2
    assert owned[0].baseFilename == str(tmp_path / "second" / LOG_FILE_NAME)  # type: ignore[attr-defined]
    assert all(handler.level == logging.DEBUG for handler in owned)
    assert foreign in root_logger.handlers


def test_cli_logging_follows_settings(tmp_path, root_logger) -> None:
    settings = Settings(log_dir=str(tmp_path / "cli-logs"), log_to_console=False)

    log_path = app.configure_logging(settings, debug=True)

    assert log_path == tmp_path / "cli-logs" / LOG_FILE_NAME
    assert root_logger.level == logging.DEBUG
    assert len(_owned(root_logger)) == 1
