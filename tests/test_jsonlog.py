# tests/test_jsonlog.py
import json
import logging
import sys

import pytest

from prerecord.core.jsonlog import JsonFormatter, configure_root_logger


def make_record(msg="Segment evicted", exc_info=None, **extra):
    record = logging.LogRecord(
        "prerecord.buffer", logging.INFO, __file__, 10, msg, (), exc_info
    )
    record.__dict__.update(extra)
    return record


def test_record_becomes_one_json_line():
    line = JsonFormatter({"recorder_id": "porch"}).format(make_record(position=42))
    assert "\n" not in line
    body = json.loads(line)
    assert body["event"] == "Segment evicted"
    assert body["level"] == "INFO"
    assert body["logger"] == "prerecord.buffer"
    assert body["recorder_id"] == "porch"
    assert body["position"] == 42
    assert body["time"].endswith("Z")
    assert "lineno" not in body and "args" not in body


def test_unserialisable_extra_is_stringified(tmp_path):
    body = json.loads(JsonFormatter().format(make_record(path=tmp_path)))
    assert body["path"] == str(tmp_path)


def test_exception_traceback_included():
    try:
        raise OSError("disk gone")
    except OSError:
        record = make_record(exc_info=sys.exc_info())
    body = json.loads(JsonFormatter().format(record))
    assert "OSError: disk gone" in body["traceback"]


def test_configure_root_logger_accepts_level_names():
    root = logging.getLogger()
    previous = root.level
    try:
        assert configure_root_logger("warning") is root
        assert root.level == logging.WARNING
        with pytest.raises(ValueError):
            configure_root_logger("LOUD")
    finally:
        root.setLevel(previous)
