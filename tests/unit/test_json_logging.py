"""
Unit tests for the JSON log formatter.
"""
import json
import logging

import pytest

from mediaportal.lib.logging import JSONFormatter, set_correlation_id


def make_record(**extra):
    record = logging.LogRecord("mediaportal.jobs", logging.INFO, __file__, 1, "Job finished", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
def test_formatter_includes_extra_fields():
    data = json.loads(JSONFormatter().format(make_record(job="library-scan", duration_ms=120)))

    assert data["message"] == "Job finished"
    assert data["level"] == "INFO"
    assert data["job"] == "library-scan"
    assert data["duration_ms"] == 120
    assert "correlation_id" not in data


@pytest.mark.unit
def test_formatter_includes_correlation_id():
    set_correlation_id("req-123")
    try:
        data = json.loads(JSONFormatter().format(make_record()))
    finally:
        set_correlation_id(None)

    assert data["correlation_id"] == "req-123"
