import logging

import pytest
from pydantic import ValidationError

from medanswer import config
from medanswer.logging import QueryIdFilter, configure_logging, query_id_var


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("medanswer", logging.INFO, __file__, 1, "message", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_settings_defaults_and_cache():
    settings = config.get_settings()
    second = config.get_settings()

    assert settings is second
    assert settings.retrieval_top_k == 10
    assert settings.retrieval_cache_ttl_seconds == 300.0
    assert settings.count_critical_threshold == 2
    assert settings.suppress_invalid_citations is False


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("MEDANSWER_PIPELINE_TIMEOUT_MS", "2500")

    assert config.Settings().pipeline_timeout_ms == 2500


def test_settings_reject_inverted_count_thresholds():
    with pytest.raises(ValidationError):
        config.Settings(count_warning_threshold=3, count_critical_threshold=2)


def test_query_id_filter_stamps_current_query():
    token = query_id_var.set("q-123")
    try:
        record = _record()
        assert QueryIdFilter().filter(record)
    finally:
        query_id_var.reset(token)

    assert record.query_id == "q-123"


def test_query_id_filter_defaults_and_keeps_explicit_value():
    bare = _record()
    explicit = _record(query_id="from-extra")

    QueryIdFilter().filter(bare)
    QueryIdFilter().filter(explicit)

    assert bare.query_id == "-"
    assert explicit.query_id == "from-extra"


def test_configure_logging_attaches_filter_once():
    root_logger = logging.getLogger()
    handler = logging.StreamHandler()
    root_logger.addHandler(handler)
    try:
        configure_logging("DEBUG")
        configure_logging("DEBUG")
        filters = [f for f in handler.filters if isinstance(f, QueryIdFilter)]
        assert len(filters) == 1
    finally:
        root_logger.removeHandler(handler)
        for existing in root_logger.handlers:
            for log_filter in list(existing.filters):
                if isinstance(log_filter, QueryIdFilter):
                    existing.removeFilter(log_filter)
