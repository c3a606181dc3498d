"""Tests for the logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from wordloom.utils import logging as logging_utils


@pytest.fixture
def restore_root_logging(monkeypatch: pytest.MonkeyPatch):
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    monkeypatch.setattr(logging_utils, "_CONFIGURED", False)
    monkeypatch.setattr(logging_utils, "_LOG_PATH", None)
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_creates_rotating_file(tmp_path: Path, restore_root_logging) -> None:
    log_dir = tmp_path / "logs"

    log_path = logging_utils.setup_logging(level=logging.INFO, log_dir=log_dir, console=False, force=True)

    logger = logging_utils.get_logger("wordloom.tests")
    logger.info("Logging smoke test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == log_dir / "wordloom.log"
    assert "Logging smoke test" in log_path.read_text(encoding="utf-8")
    assert logging_utils.get_log_path() == log_path
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_is_idempotent_without_force(tmp_path: Path, restore_root_logging) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)

    assert second == first
    assert not (tmp_path / "b").exists()


def test_log_dir_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, restore_root_logging) -> None:
    monkeypatch.setenv("WORDLOOM_LOG_DIR", str(tmp_path / "env-logs"))

    log_path = logging_utils.setup_logging(console=False, force=True)

    assert log_path.parent == tmp_path / "env-logs"


def test_records_carry_bound_request_id(tmp_path: Path, restore_root_logging) -> None:
    log_path = logging_utils.setup_logging(log_dir=tmp_path, console=False, force=True)
    logger = logging_utils.get_logger("wordloom.tests")

    logger.info("outside")
    with logging_utils.bound_request("req-42"):
        assert logging_utils.current_request_id() == "req-42"
        logger.info("inside")
    for handler in logging.getLogger().handlers:
        handler.flush()

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert any(line.endswith("[-] outside") for line in lines)
    assert any(line.endswith("[req-42] inside") for line in lines)
    assert logging_utils.current_request_id() is None


def test_registered_secrets_are_masked(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logging_utils, "_SECRETS", set())
    logging_utils.register_secret("sk-live-abcdef")
    logging_utils.register_secret("abc")
    record = logging.LogRecord("wordloom.tests", logging.INFO, __file__, 1, "key=%s short=%s", ("sk-live-abcdef", "abc"), None)

    assert logging_utils.SecretMaskingFilter().filter(record)

    assert record.getMessage() == "key=**** short=abc"


def test_request_filter_keeps_explicit_request_id() -> None:
    record = logging.LogRecord("wordloom.tests", logging.INFO, __file__, 1, "msg", None, None)
    record.request_id = "explicit"

    with logging_utils.bound_request("bound"):
        logging_utils.RequestContextFilter().filter(record)

    assert record.request_id == "explicit"
