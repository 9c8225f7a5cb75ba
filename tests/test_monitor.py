"""Freshness cache and poll outcomes of the connection monitor."""
from __future__ import annotations

import csv
import os
import tempfile
import unittest
from pathlib import Path
from typing import List

from prospectwatch.lines import LogUnavailableError, read_all
from prospectwatch.locator import TRAVEL_MARKER
from prospectwatch.metrics import MetricsLogger
from prospectwatch.models import ConnectionRecord, NotFoundReason, PollOutcome
from prospectwatch.monitor import CacheState, ConnectionMonitor

BASE_NS = 1_700_000_000 * 1_000_000_000


def travel(address: str, session: str = "abc123", region: str = "EastUs") -> str:
    return (
        f"[2025.03.01-18.22.04:512][431]LogYTravel: {TRAVEL_MARKER} "
        f"[FYMatchConnectionData | addr [{address}] sessionId [{session}] "
        f"serverId [srv-9] region [{region}] connectSinglePlayer [0] m_isMatch [1]]"
    )


class _LockableSource:
    """Counts reads and can simulate the game holding an exclusive lock."""

    def __init__(self) -> None:
        self.reads = 0
        self.locked = False
        self.explode = False

    def __call__(self, path) -> List[str]:
        self.reads += 1
        if self.explode:
            raise RuntimeError("disk on fire")
        if self.locked:
            raise LogUnavailableError(path, "The process cannot access the file")
        return read_all(path)


class ConnectionMonitorTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.path = self.dir / "Prospect.log"
        self.source = _LockableSource()
        self.monitor = ConnectionMonitor(line_source=self.source)
        self._mtime = BASE_NS

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write(self, *lines: str, bump: bool = True) -> None:
        self.path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        if bump:
            self._mtime += 1_000_000_000
        os.utime(self.path, ns=(self._mtime, self._mtime))

    def test_missing_file_reports_missing_and_leaves_cache(self) -> None:
        record = ConnectionRecord("EastUs", "srv", "sess", "1.2.3.4:5")
        self.monitor.cache = CacheState(last_modified=42, last_record=record)

        result = self.monitor.poll(self.path)

        self.assertEqual(result.outcome, PollOutcome.FILE_MISSING)
        self.assertEqual(result.status, "file_missing")
        self.assertIn(str(self.path), result.message)
        self.assertEqual(self.monitor.cache, CacheState(last_modified=42, last_record=record))
        self.assertEqual(self.source.reads, 0)

    def test_found_then_cached_without_reading(self) -> None:
        self.write("boot", travel("203.0.113.5:7777"))

        first = self.monitor.poll(self.path)
        self.assertEqual(first.outcome, PollOutcome.FOUND)
        self.assertFalse(first.from_cache)
        self.assertEqual(
            first.record,
            ConnectionRecord(
                region="EastUs",
                server_id="srv-9",
                session_id="abc123",
                server_address="203.0.113.5:7777",
            ),
        )
        self.assertEqual(first.message, "Connected to EastUs")
        self.assertEqual(self.source.reads, 1)

        second = self.monitor.poll(self.path)
        self.assertTrue(second.from_cache)
        self.assertEqual(second.record, first.record)
        self.assertEqual(second.message, "Connected to EastUs (cached)")
        self.assertEqual(self.source.reads, 1)

    def test_unchanged_file_polls_are_idempotent(self) -> None:
        self.write(travel("203.0.113.5:7777"))
        self.monitor.poll(self.path)
        results = [self.monitor.poll(self.path) for _ in range(5)]
        self.assertEqual(self.source.reads, 1)
        self.assertTrue(all(result == results[0] for result in results))

    def test_newer_file_is_reread(self) -> None:
        self.write(travel("203.0.113.5:7777", session="one"))
        self.monitor.poll(self.path)

        self.write(travel("203.0.113.5:7777", session="one"), travel("198.51.100.1:7001", session="two"))
        result = self.monitor.poll(self.path)

        self.assertEqual(self.source.reads, 2)
        self.assertFalse(result.from_cache)
        self.assertEqual(result.record.session_id, "two")
        self.assertEqual(self.monitor.cache.last_record.session_id, "two")
        self.assertEqual(self.monitor.cache.last_modified, self._mtime)

    def test_contention_is_unavailable_and_keeps_cache(self) -> None:
        self.write(travel("203.0.113.5:7777", session="one"))
        found = self.monitor.poll(self.path)
        cached_mtime = self.monitor.cache.last_modified

        self.write(travel("203.0.113.5:7777", session="one"), travel("198.51.100.1:7001", session="two"))
        self.source.locked = True
        locked = self.monitor.poll(self.path)

        self.assertEqual(locked.outcome, PollOutcome.UNAVAILABLE)
        self.assertEqual(locked.message, "Waiting for log file access...")
        self.assertEqual(locked.last_known, found.record)
        self.assertEqual(self.monitor.cache.last_modified, cached_mtime)
        self.assertEqual(self.monitor.cache.last_record, found.record)

        # mtime was not advanced, so the next poll retries the read
        self.source.locked = False
        recovered = self.monitor.poll(self.path)
        self.assertEqual(recovered.outcome, PollOutcome.FOUND)
        self.assertFalse(recovered.from_cache)
        self.assertEqual(recovered.record.session_id, "two")

    def test_contention_clears_into_cached_record(self) -> None:
        self.write(travel("203.0.113.5:7777"))
        found = self.monitor.poll(self.path)

        self.write(travel("203.0.113.5:7777"))
        self.source.locked = True
        self.assertEqual(self.monitor.poll(self.path).outcome, PollOutcome.UNAVAILABLE)
        self.source.locked = False

        # restore the original timestamp: the cached record is served again
        os.utime(self.path, ns=(BASE_NS + 1_000_000_000,) * 2)
        reads = self.source.reads
        cached = self.monitor.poll(self.path)
        self.assertTrue(cached.from_cache)
        self.assertEqual(cached.record, found.record)
        self.assertEqual(self.source.reads, reads)

    def test_no_event_keeps_last_record_and_stays_not_found(self) -> None:
        self.write(travel("203.0.113.5:7777"))
        found = self.monitor.poll(self.path)

        self.write("log rotated", "menu loaded")
        not_found = self.monitor.poll(self.path)

        self.assertEqual(not_found.outcome, PollOutcome.NOT_FOUND)
        self.assertEqual(not_found.reason, NotFoundReason.NO_EVENT)
        self.assertEqual(not_found.message, "No server connection found in logs")
        self.assertIsNone(not_found.record)
        self.assertEqual(not_found.last_known, found.record)
        self.assertEqual(self.monitor.cache.last_record, found.record)
        self.assertEqual(self.monitor.cache.last_modified, self._mtime)

        reads = self.source.reads
        again = self.monitor.poll(self.path)
        self.assertEqual(self.source.reads, reads)
        self.assertTrue(again.from_cache)
        self.assertEqual(again.outcome, PollOutcome.NOT_FOUND)
        self.assertEqual(again.message, "No server connection found in logs")
        self.assertIsNone(again.record)
        self.assertEqual(again.last_known, found.record)

    def test_unchanged_malformed_file_stays_not_found(self) -> None:
        self.write(travel("203.0.113.5:7777"))
        found = self.monitor.poll(self.path)

        self.write(f"{TRAVEL_MARKER} [FYMatchConnectionData | addr [203.0.113.5:7777] region [EastUs]]")
        first = self.monitor.poll(self.path)
        reads = self.source.reads
        results = [self.monitor.poll(self.path) for _ in range(3)]

        self.assertEqual(
            [(r.status, r.from_cache) for r in [first, *results]],
            [("not_found", False), ("not_found", True), ("not_found", True), ("not_found", True)],
        )
        self.assertEqual(self.source.reads, reads)
        self.assertTrue(all(r == results[0] for r in results))
        self.assertEqual(results[0].reason, NotFoundReason.MALFORMED_EVENT)
        self.assertEqual(results[0].detail, first.detail)
        self.assertEqual(results[0].last_known, found.record)
        self.assertEqual(self.monitor.cache.last_record, found.record)

    def test_no_event_without_history_is_served_from_cache(self) -> None:
        self.write("nothing", "to", "see")
        first = self.monitor.poll(self.path)
        results = [self.monitor.poll(self.path) for _ in range(3)]
        self.assertEqual(self.source.reads, 1)
        self.assertEqual(first.outcome, PollOutcome.NOT_FOUND)
        self.assertTrue(all(r == results[0] for r in results))
        self.assertEqual(results[0].outcome, PollOutcome.NOT_FOUND)
        self.assertEqual(results[0].message, first.message)
        self.assertIsNone(self.monitor.cache.last_record)

    def test_malformed_line_is_distinct_from_no_event(self) -> None:
        broken = f"{TRAVEL_MARKER} [FYMatchConnectionData | addr [203.0.113.5:7777] sessionId [abc123] region [EastUs]]"
        self.write(broken)

        result = self.monitor.poll(self.path)

        self.assertEqual(result.outcome, PollOutcome.NOT_FOUND)
        self.assertEqual(result.reason, NotFoundReason.MALFORMED_EVENT)
        self.assertIsNone(result.record)
        self.assertIn("sessionId [abc123]", result.detail)
        self.assertIsNone(self.monitor.cache.last_record)

    def test_loopback_connections_are_skipped(self) -> None:
        self.write(travel("203.0.113.5:7777", session="remote"), travel("127.0.0.1", session="local"))
        result = self.monitor.poll(self.path)
        self.assertEqual(result.record.session_id, "remote")

    def test_read_budget_limits_the_search(self) -> None:
        monitor = ConnectionMonitor(read_budget=3, line_source=self.source)
        self.write(travel("203.0.113.5:7777"), "a", "b", "c")
        self.assertEqual(monitor.poll(self.path).reason, NotFoundReason.NO_EVENT)

        monitor = ConnectionMonitor(read_budget=4, line_source=self.source)
        self.assertEqual(monitor.poll(self.path).outcome, PollOutcome.FOUND)

    def test_unexpected_errors_never_escape(self) -> None:
        self.write(travel("203.0.113.5:7777"))
        self.source.explode = True
        with self.assertLogs("prospectwatch.monitor", level="ERROR"):
            result = self.monitor.poll(self.path)
        self.assertEqual(result.outcome, PollOutcome.UNAVAILABLE)
        self.assertEqual(self.monitor.cache, CacheState())

    def test_reset_clears_cache(self) -> None:
        self.write(travel("203.0.113.5:7777"))
        self.monitor.poll(self.path)
        self.monitor.reset()
        self.assertEqual(self.monitor.cache, CacheState())

    def test_rejects_invalid_budget(self) -> None:
        for budget in (0, -5, True):
            with self.assertRaises(ValueError):
                ConnectionMonitor(read_budget=budget)

    def test_default_source_reads_real_file(self) -> None:
        self.write(travel("203.0.113.5:7777"))
        result = ConnectionMonitor().poll(str(self.path))
        self.assertEqual(result.record.server_address, "203.0.113.5:7777")

    def test_polls_are_journaled_except_cache_hits(self) -> None:
        journal = self.dir / "metrics.csv"
        monitor = ConnectionMonitor(metrics=MetricsLogger(journal), line_source=self.source)
        monitor.poll(self.path)
        self.write(travel("203.0.113.5:7777"))
        monitor.poll(self.path)
        monitor.poll(self.path)

        with journal.open("r", encoding="utf-8", newline="") as handle:
            rows = list(csv.DictReader(handle))

        self.assertEqual([row["outcome"] for row in rows], ["file_missing", "found"])
        self.assertEqual(rows[1]["region"], "EastUs")
        self.assertEqual(rows[1]["server_address"], "203.0.113.5:7777")
        self.assertEqual(rows[1]["from_cache"], "0")


if __name__ == "__main__":
    unittest.main()
