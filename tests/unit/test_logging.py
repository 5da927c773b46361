"""
Unit tests for structured logging: reserved extra keys, JSON output and
bound command context.
"""

import json
import logging

import pytest

from tinglebot.core.logging.logger import (
    CommandContextFilter,
    JSONFormatter,
    LogContext,
    get_logger,
    safe_extra,
)


def make_record(logger: logging.Logger, extra: dict) -> logging.LogRecord:
    return logger.makeRecord(logger.name, logging.INFO, __file__, 1, "Table created", (), None, extra=extra)


@pytest.mark.unit
class TestSafeExtra:
    """Test that extra fields never clash with LogRecord attributes."""

    def test_record_attributes_are_prefixed(self):
        fields = {"name": "Loot", "message": "hi", "module": "raid", "village": "Rudania"}

        assert safe_extra(fields) == {
            "field_name": "Loot",
            "field_message": "hi",
            "field_module": "raid",
            "village": "Rudania",
        }

    def test_unprefixed_name_cannot_build_a_record(self):
        logger = get_logger("tests.logging")

        with pytest.raises(KeyError):
            make_record(logger, {"name": "Loot"})

    def test_prefixed_name_builds_a_record(self):
        logger = get_logger("tests.logging")

        record = make_record(logger, safe_extra({"name": "Loot", "entry_count": 2}))

        assert record.name == "tests.logging"
        assert record.field_name == "Loot"
        assert record.entry_count == 2


@pytest.mark.unit
class TestStructuredOutput:
    """Test JSON formatting and context binding."""

    def test_json_formatter_splits_context_and_extra(self):
        logger = get_logger("tinglebot.raid")
        record = make_record(logger, {"raid_id": "R123456", "village": "Rudania"})

        payload = json.loads(JSONFormatter().format(record))

        assert payload["msg"] == "Table created"
        assert payload["level"] == "INFO"
        assert payload["raid_id"] == "R123456"
        assert payload["extra"] == {"village": "Rudania"}

    def test_log_context_is_stamped_on_records(self):
        logger = get_logger("tinglebot.quest")
        record = make_record(logger, {})

        with LogContext(quest_id="Q100001", user_id="1"):
            CommandContextFilter().filter(record)

        assert record.quest_id == "Q100001"
        assert record.user_id == "1"
