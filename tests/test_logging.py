import logging
import logging.handlers

import pytest

from timetable.core import logging as log_setup


def _ours(root):
    return [h for h in root.handlers if getattr(h, "_timetable", False)]


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    scheduler = logging.getLogger(log_setup.SCHEDULER_LOGGER)
    saved = (list(root.handlers), root.level, scheduler.level)
    for handler in _ours(root):
        root.removeHandler(handler)
    yield root
    for handler in _ours(root):
        root.removeHandler(handler)
        handler.close()
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])
    scheduler.setLevel(saved[2])


def test_development_logs_to_console_once(root_logger):
    log_setup.setup_logging(environment="development")
    log_setup.setup_logging(environment="development")

    handlers = _ours(root_logger)
    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.StreamHandler)
    assert root_logger.level == logging.DEBUG


def test_scheduler_level_is_separate(root_logger):
    log_setup.setup_logging(environment="development", level="info", scheduler_level="warning")

    assert root_logger.level == logging.INFO
    assert logging.getLogger("timetable.services.scheduler.allocator").getEffectiveLevel() == logging.WARNING


def test_production_writes_a_rotating_file(root_logger, tmp_path, monkeypatch):
    monkeypatch.setattr(log_setup, "LOGS_DIR", tmp_path / "logs")

    log_setup.setup_logging(environment="production", filename="engine.log")

    files = [h for h in _ours(root_logger) if isinstance(h, logging.handlers.RotatingFileHandler)]
    assert len(files) == 1
    assert files[0].baseFilename == str(tmp_path / "logs" / "engine.log")
    assert root_logger.level == logging.INFO


def test_unknown_level_is_rejected(root_logger):
    with pytest.raises(ValueError, match="verbose"):
        log_setup.setup_logging(environment="development", level="verbose")
