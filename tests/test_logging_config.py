"""Tests for logging setup."""

import json
import logging

import pytest

from catalog_sync.logging_config import get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_run_id_lands_in_json_log(tmp_path, restore_root_logger):
    setup_logging(base_dir=tmp_path, level="DEBUG")

    get_logger("catalog_sync.tests", run_id="0123456789abcdef").info("Imported 3 listings")
    logging.getLogger("catalog_sync.tests").error("Catalog write failed")
    for handler in logging.getLogger().handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "app.log").read_text().splitlines()
    records = [r for r in map(json.loads, lines) if r["logger"] == "catalog_sync.tests"]
    assert records[0]["message"] == "Imported 3 listings"
    assert records[0]["run_id"] == "0123456789abcdef"
    assert records[0]["level"] == "INFO"
    assert "run_id" not in records[1]

    errors = (tmp_path / "logs" / "error.log").read_text().splitlines()
    assert len(errors) == 1
    assert json.loads(errors[0])["message"] == "Catalog write failed"


def test_httpx_request_logs_are_quiet(tmp_path, restore_root_logger):
    setup_logging(base_dir=tmp_path)
    assert logging.getLogger("httpx").level == logging.WARNING
