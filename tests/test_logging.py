"""
Tests for the structured logging setup.
"""

import logging

import orjson

from gridfleet.core.json_utils import dumps
from gridfleet.infra.logging_cfg import CRITICAL_SAFETY, JsonFormatter, ThrottledFilter, build_logger, log_event


def record(msg: str, level: int = logging.WARNING) -> logging.LogRecord:
    return logging.LogRecord("gridfleet", level, __file__, 1, msg, None, None)


class TestThrottledFilter:
    def test_repeats_of_throttled_event_are_dropped(self):
        f = ThrottledFilter(cooldown_sec=60)
        msg = dumps({"event": "price_fallback", "symbol": "ETH"})
        assert f.filter(record(msg))
        assert not f.filter(record(msg))

    def test_keys_include_wallet(self):
        f = ThrottledFilter(cooldown_sec=60)
        assert f.filter(record(dumps({"event": "venue_fetch_failed", "wallet": "0xa"})))
        assert f.filter(record(dumps({"event": "venue_fetch_failed", "wallet": "0xb"})))

    def test_missing_venue_order_is_throttled_by_default(self):
        f = ThrottledFilter(cooldown_sec=60)
        msg = dumps({"event": "venue_order_missing", "wallet": "0xa", "order_id": 7})
        assert f.filter(record(msg, logging.DEBUG))
        assert not f.filter(record(msg, logging.DEBUG))

    def test_other_messages_pass(self):
        f = ThrottledFilter(cooldown_sec=60)
        msg = dumps({"event": "order_placed"})
        assert f.filter(record(msg)) and f.filter(record(msg))
        assert f.filter(record("plain text"))
        assert f.filter(record("{not json"))


def test_json_formatter():
    payload = orjson.loads(JsonFormatter().format(record("hello", logging.ERROR)))
    assert payload["level"] == "ERROR"
    assert payload["msg"] == "hello"
    assert payload["name"] == "gridfleet"


def test_build_logger_writes_json_file(tmp_path):
    path = tmp_path / "fleet.log"
    logger = build_logger("gridfleet.test_file", level="debug", file_path=str(path), async_file=False)
    try:
        log_event(logger, "ledger_inconsistency", level=CRITICAL_SAFETY, wallet="0xabc")
        for h in logger.handlers:
            h.flush()

        line = orjson.loads(path.read_text().splitlines()[-1])
        assert line["level"] == "CRITICAL"
        assert orjson.loads(line["msg"]) == {"event": "ledger_inconsistency", "wallet": "0xabc"}
        assert logger.level == logging.DEBUG
        assert not logger.propagate

        # second call only adjusts levels
        again = build_logger("gridfleet.test_file", level="WARNING", file_path=str(path))
        assert again is logger
        assert len(logger.handlers) == 2
        assert all(h.level == logging.WARNING for h in logger.handlers)
    finally:
        for h in list(logger.handlers):
            h.close()
            logger.removeHandler(h)
