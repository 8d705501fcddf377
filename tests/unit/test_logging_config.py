"""Unit tests for structured JSON logging."""

import json
import logging
import sys

from formextract.core.logging_config import StructuredFormatter, configure_structured_logging


def _record(**extra):
    record = logging.LogRecord(
        name="formextract.orchestrator",
        level=logging.WARNING,
        pathname=__file__,
        lineno=10,
        msg="Batch %d failed",
        args=(2,),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_standard_fields(self):
        data = json.loads(StructuredFormatter().format(_record()))
        assert data["level"] == "WARNING"
        assert data["logger"] == "formextract.orchestrator"
        assert data["message"] == "Batch 2 failed"
        assert data["timestamp"].endswith("Z")

    def test_known_extra_keys_included(self):
        data = json.loads(StructuredFormatter().format(_record(run_id="r1", batch_index=2, unrelated="x")))
        assert data["run_id"] == "r1"
        assert data["batch_index"] == 2
        assert "unrelated" not in data

    def test_exception_block(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        data = json.loads(StructuredFormatter().format(record))
        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad"


class TestConfigure:
    def test_installs_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_structured_logging(level="debug", json_format=True)
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
