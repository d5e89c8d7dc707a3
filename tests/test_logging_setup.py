import json
import logging
import sys

import pytest

from logging_setup import JsonFormatter, LOG_FILENAME, setup_logger


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield root
    for h in list(root.handlers):
        if h not in saved_handlers:
            root.removeHandler(h)
            h.close()
    root.setLevel(saved_level)


def test_formatter_emits_one_json_object():
    record = logging.LogRecord("clinic_desk.csv_importer", logging.WARNING, __file__, 1, "[import_patients] %s", ("Asha ✓",), None)
    entry = json.loads(JsonFormatter().format(record))

    assert entry["level"] == "WARNING"
    assert entry["logger"] == "clinic_desk.csv_importer"
    assert entry["message"] == "[import_patients] Asha ✓"
    assert "exception" not in entry


def test_formatter_includes_exception():
    try:
        raise RuntimeError("backend down")
    except RuntimeError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    entry = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: backend down" in entry["exception"]


def test_setup_logger_is_idempotent(root_logger, tmp_path):
    setup_logger(str(tmp_path))
    count = len(root_logger.handlers)
    setup_logger(str(tmp_path), level=logging.DEBUG)

    assert len(root_logger.handlers) == count
    assert root_logger.level == logging.DEBUG
    assert (tmp_path / LOG_FILENAME).exists()
