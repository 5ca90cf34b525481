import json
import logging

from jfroffload.logging_setup import ContextEnricherFilter, JsonLineFormatter, correlation_context, get_correlation_id


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("jfroffload.test", logging.INFO, __file__, 1, "Uploaded path=%s", ("/x",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_enricher_stamps_correlation_id_and_default_category() -> None:
    record = _record(category="NOT_A_CATEGORY")
    with correlation_context("cid-1"):
        ContextEnricherFilter().filter(record)
    assert record.correlation_id == "cid-1"
    assert record.category == "CONFIG"
    assert get_correlation_id() == "-"


def test_enricher_keeps_known_category() -> None:
    record = _record(category="UPLOAD")
    ContextEnricherFilter().filter(record)
    assert record.category == "UPLOAD"


def test_json_formatter_emits_one_object_per_record() -> None:
    record = _record(category="UPLOAD", correlation_id="abc")
    payload = json.loads(JsonLineFormatter().format(record))
    assert payload["message"] == "Uploaded path=/x"
    assert payload["level"] == "info"
    assert payload["category"] == "UPLOAD"
    assert payload["correlation_id"] == "abc"
