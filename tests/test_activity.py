"""Tests for the activity feed."""

from __future__ import annotations

import logging

from localai.activity import ActivityLog, LogEntry


class TestActivityLog:
    def test_records_in_order(self):
        log = ActivityLog(clock=lambda: "12:00:00")
        log.info("Sent message: hi")
        log.error("Error: boom")
        assert log.entries() == [
            LogEntry("Sent message: hi", False, "12:00:00"),
            LogEntry("Error: boom", True, "12:00:00"),
        ]

    def test_capacity_drops_oldest(self):
        log = ActivityLog(capacity=2)
        for i in range(3):
            log.info(f"m{i}")
        assert [e.message for e in log.entries()] == ["m1", "m2"]
        assert len(log) == 2

    def test_default_timestamp_format(self):
        entry = ActivityLog().info("x")
        assert len(entry.timestamp) == 8
        assert entry.timestamp.count(":") == 2
        assert str(entry).endswith("] x")

    def test_mirrors_to_logger(self, caplog):
        with caplog.at_level(logging.INFO, logger="localai.activity"):
            ActivityLog().error("Connection failed: nope")
        assert "Connection failed: nope" in caplog.text

    def test_clear(self):
        log = ActivityLog()
        log.info("x")
        log.clear()
        assert log.entries() == []
