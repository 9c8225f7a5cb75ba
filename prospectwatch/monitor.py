"""Connection monitor: freshness cache around read → locate → parse."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence

from prospectwatch.extractor import FIELD_MATCHERS, FieldMatcher, parse
from prospectwatch.lines import LogMissingError, LogUnavailableError, PathLike, read_all
from prospectwatch.locator import (
    DEFAULT_EXCLUSIONS,
    DEFAULT_READ_BUDGET,
    TRAVEL_MARKER,
    ExclusionPredicate,
    find_latest,
)
from prospectwatch.metrics import MetricsLogger
from prospectwatch.models import ConnectionRecord, NotFoundReason, PollResult

logger = logging.getLogger(__name__)

LineSource = Callable[[PathLike], List[str]]


@dataclass(slots=True)
class CacheState:
    """What the last successful read observed.

    ``last_modified`` is the file's mtime in nanoseconds at that read;
    ``last_result`` is what that read produced and is replayed while the
    file stays unchanged; ``last_record`` is the newest record ever parsed
    and survives later NOT_FOUND polls.
    """

    last_modified: Optional[int] = None
    last_record: Optional[ConnectionRecord] = None
    last_result: Optional[PollResult] = None

    def is_fresh(self, modified: int) -> bool:
        return (
            self.last_result is not None
            and self.last_modified is not None
            and modified <= self.last_modified
        )


class ConnectionMonitor:
    """Poll a log file for the current server connection.

    One instance owns one :class:`CacheState`; it is not synchronized, so the
    caller must not run two polls at once.
    """

    def __init__(
        self,
        *,
        read_budget: int = DEFAULT_READ_BUDGET,
        marker: str = TRAVEL_MARKER,
        exclusions: Sequence[ExclusionPredicate] = DEFAULT_EXCLUSIONS,
        matchers: Sequence[FieldMatcher] = FIELD_MATCHERS,
        metrics: Optional[MetricsLogger] = None,
        line_source: Optional[LineSource] = None,
    ) -> None:
        if isinstance(read_budget, bool) or not isinstance(read_budget, int) or read_budget <= 0:
            raise ValueError(f"read_budget must be a positive integer, got {read_budget!r}")
        self.read_budget = read_budget
        self.marker = marker
        self.exclusions = tuple(exclusions)
        self.matchers = tuple(matchers)
        self.metrics = metrics
        self.cache = CacheState()
        self._line_source: LineSource = line_source or read_all

    def reset(self) -> None:
        self.cache = CacheState()

    def poll(self, path: PathLike) -> PollResult:
        """Return the current connection state for ``path``. Never raises."""
        target = os.fspath(path)
        try:
            result = self._poll(target)
        except Exception as exc:
            logger.exception("Unexpected error polling %s", target)
            result = PollResult.unavailable(str(exc), path=target, last_known=self.cache.last_record)
        if not result.from_cache:
            self._record_metrics(result)
        return result

    def _poll(self, target: str) -> PollResult:
        cache = self.cache
        if not os.path.isfile(target):
            logger.debug("Log file does not exist: %s", target)
            return PollResult.file_missing(target, last_known=cache.last_record)

        try:
            modified = os.stat(target).st_mtime_ns
        except FileNotFoundError:
            return PollResult.file_missing(target, last_known=cache.last_record)
        except OSError as exc:
            logger.debug("Stat failed for %s: %s", target, exc)
            return PollResult.unavailable(exc.strerror or str(exc), path=target, last_known=cache.last_record)

        cached = cache.last_result
        if cached is not None and cache.is_fresh(modified):
            logger.debug("File unchanged, replaying last %s result", cached.status)
            return replace(cached, from_cache=True)

        try:
            lines = self._line_source(target)
        except LogMissingError:
            return PollResult.file_missing(target, last_known=cache.last_record)
        except LogUnavailableError as exc:
            logger.info("Log file locked, will retry on next poll: %s", exc.reason)
            return PollResult.unavailable(exc.reason, path=target, last_known=cache.last_record)

        result = self._evaluate(target, lines)
        cache.last_modified = modified
        cache.last_result = result
        return result

    def _evaluate(self, target: str, lines: List[str]) -> PollResult:
        cache = self.cache
        line = find_latest(lines, self.read_budget, self.marker, self.exclusions)
        if line is None:
            return PollResult.not_found(
                NotFoundReason.NO_EVENT,
                path=target,
                detail=f"searched last {min(len(lines), self.read_budget)} of {len(lines)} lines",
                last_known=cache.last_record,
            )

        record = parse(line, self.matchers)
        if record is None:
            snippet = line if len(line) <= 200 else line[:200] + "..."
            logger.warning("Travel line did not match any field pattern: %s", snippet)
            return PollResult.not_found(
                NotFoundReason.MALFORMED_EVENT,
                path=target,
                detail=snippet,
                last_known=cache.last_record,
            )

        cache.last_record = record
        logger.info("Connected to %s (%s)", record.region, record.server_address)
        return PollResult.found(record, path=target)

    def _record_metrics(self, result: PollResult) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.log_result(result)
        except Exception:  # pragma: no cover - journal must not break polling
            logger.debug("Metrics logging failed for %s", result.path, exc_info=True)


__all__ = ["CacheState", "ConnectionMonitor", "LineSource"]
