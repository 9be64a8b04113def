"""Tests for logging setup."""

import importlib
import logging
from pathlib import Path

import pytest

import paperpilot
from paperpilot.logger import configure_logging, get_logger

PACKAGE_DIR = Path(paperpilot.__file__).parent

LOGGING_MODULES = [
    "paperpilot.config",
    "paperpilot.db",
    "paperpilot.jobs",
    "paperpilot.pipeline.ocr",
    "paperpilot.pipeline.suggest",
    "paperpilot.server",
    "paperpilot.services",
    "paperpilot.sources.paperless",
    "paperpilot.workflows",
]


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_plain_handler_and_level(restore_root_logger) -> None:
    configure_logging("debug", rich=False)

    assert restore_root_logger.level == logging.DEBUG
    assert len(restore_root_logger.handlers) == 1
    assert isinstance(restore_root_logger.handlers[0], logging.StreamHandler)
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_unknown_level_falls_back_to_info(restore_root_logger) -> None:
    configure_logging("chatty", rich=False)
    assert restore_root_logger.level == logging.INFO


@pytest.mark.parametrize("module_name", LOGGING_MODULES)
def test_module_loggers_come_from_get_logger(module_name) -> None:
    module = importlib.import_module(module_name)
    assert module.logger is get_logger(module_name)


def test_no_module_bypasses_get_logger() -> None:
    offenders = [
        str(path.relative_to(PACKAGE_DIR))
        for path in PACKAGE_DIR.rglob("*.py")
        if path.name != "logger.py" and "logging.getLogger" in path.read_text(encoding="utf-8")
    ]
    assert offenders == []
