"""
Jigu Backend: Log Writer Tests
==============================

What:  Tests for LogWriter's sink fan-out and failure isolation.
How:   Mock collection for the database sink, tmp_path for the file sink,
       caplog for the console sink.

What we test:
    ✅ Only the sinks in the policy are written
    ✅ A failing sink never stops the others and never raises
    ✅ File sink appends one JSON line per entry to {date}-{type}.log
    ✅ Concurrent appends to one file do not interleave
    ✅ One file lock per log type, however many dates are written
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timedelta, timezone

import pytest

from jigu.models.log_entry import LogEntry, LogLevel, LogType, Sink, StoragePolicy
from jigu.services.log_writer import LogWriter


def make_entry(message="hello", level=LogLevel.INFO, log_type=LogType.APP, **extra):
    return LogEntry(
        level=level,
        type=log_type,
        message=message,
        service="jigu-test",
        environment="test",
        **extra,
    )


class TestLogWriterSinks:
    @pytest.mark.asyncio
    async def test_console_db_policy_skips_file(self, mock_collection, log_dir):
        writer = LogWriter(lambda: mock_collection, log_dir)
        entry = make_entry(level=LogLevel.WARN)

        outcome = await writer.write(entry, StoragePolicy.CONSOLE_DB)

        assert outcome == {Sink.CONSOLE: True, Sink.DATABASE: True}
        mock_collection.insert_one.assert_awaited_once()
        assert not os.path.exists(log_dir)

    @pytest.mark.asyncio
    async def test_database_document_uses_string_enums(self, mock_collection, log_dir):
        writer = LogWriter(lambda: mock_collection, log_dir)
        entry = make_entry(level=LogLevel.ERROR, log_type=LogType.DB, metadata={"op": "find"})

        await writer.write(entry, StoragePolicy.DATABASE_ONLY)

        doc = mock_collection.insert_one.await_args.args[0]
        assert doc["level"] == "error"
        assert doc["type"] == "db"
        assert doc["id"] == entry.id
        assert doc["metadata"] == {"op": "find"}
        assert "stack" not in doc

    @pytest.mark.asyncio
    async def test_console_sink_uses_mapped_level(self, mock_collection, log_dir, caplog):
        writer = LogWriter(lambda: mock_collection, log_dir)
        entry = make_entry("disk almost full", level=LogLevel.FATAL, log_type=LogType.SYSTEM)

        with caplog.at_level(logging.DEBUG, logger="jigu.console"):
            await writer.write(entry, StoragePolicy.CONSOLE_ONLY)

        records = [r for r in caplog.records if r.name == "jigu.console"]
        assert len(records) == 1
        assert records[0].levelno == logging.CRITICAL
        assert "[SYSTEM] disk almost full" in records[0].getMessage()

    @pytest.mark.asyncio
    async def test_file_sink_appends_json_lines(self, mock_collection, log_dir):
        writer = LogWriter(lambda: mock_collection, log_dir)
        ts = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
        first = make_entry("first", log_type=LogType.AUTH, timestamp=ts)
        second = make_entry("second", log_type=LogType.AUTH, timestamp=ts)

        await writer.write(first, StoragePolicy.FILE_ONLY)
        await writer.write(second, StoragePolicy.FILE_ONLY)

        path = os.path.join(log_dir, "2025-01-15-auth.log")
        assert writer.file_path_for(first) == path
        with open(path, encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["first", "second"]
        assert json.loads(lines[0])["type"] == "auth"


class TestLogWriterIsolation:
    @pytest.mark.asyncio
    async def test_database_failure_does_not_stop_other_sinks(self, mock_collection, log_dir):
        mock_collection.insert_one.side_effect = RuntimeError("connection reset")
        writer = LogWriter(lambda: mock_collection, log_dir)
        entry = make_entry(level=LogLevel.ERROR)

        outcome = await writer.write(entry, StoragePolicy.ALL)

        assert outcome == {Sink.CONSOLE: True, Sink.DATABASE: False, Sink.FILE: True}
        assert os.path.exists(writer.file_path_for(entry))

    @pytest.mark.asyncio
    async def test_unavailable_collection_is_a_sink_failure(self, log_dir):
        def no_database():
            raise RuntimeError("not connected")

        writer = LogWriter(no_database, log_dir)
        outcome = await writer.write(make_entry(), StoragePolicy.CONSOLE_DB)

        assert outcome == {Sink.CONSOLE: True, Sink.DATABASE: False}

    @pytest.mark.asyncio
    async def test_file_failure_is_reported_not_raised(self, mock_collection, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        writer = LogWriter(lambda: mock_collection, str(blocker))

        outcome = await writer.write(make_entry(), StoragePolicy.CONSOLE_FILE)

        assert outcome == {Sink.CONSOLE: True, Sink.FILE: False}

    @pytest.mark.asyncio
    async def test_concurrent_appends_do_not_interleave(self, mock_collection, log_dir):
        writer = LogWriter(lambda: mock_collection, log_dir)
        ts = datetime(2025, 1, 15, tzinfo=timezone.utc)
        entries = [make_entry(f"line {i} " + "x" * 500, timestamp=ts) for i in range(50)]

        await asyncio.gather(*(writer.write(e, StoragePolicy.FILE_ONLY) for e in entries))

        with open(os.path.join(log_dir, "2025-01-15-app.log"), encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert len(lines) == 50
        assert {json.loads(line)["id"] for line in lines} == {e.id for e in entries}

    @pytest.mark.asyncio
    async def test_file_locks_do_not_grow_with_dates(self, mock_collection, log_dir):
        writer = LogWriter(lambda: mock_collection, log_dir)
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for day in range(30):
            await writer.write(make_entry(timestamp=start + timedelta(days=day)), StoragePolicy.FILE_ONLY)
        await writer.write(make_entry(log_type=LogType.HTTP, timestamp=start), StoragePolicy.FILE_ONLY)

        assert len(os.listdir(log_dir)) == 31
        assert set(writer._file_locks) == {LogType.APP, LogType.HTTP}
