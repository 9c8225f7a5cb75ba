"""CSV journal of poll outcomes."""
from __future__ import annotations

import csv
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from prospectwatch.models import PollResult


DEFAULT_FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "outcome",
    "from_cache",
    "region",
    "server_address",
    "message",
    "extra",
)

def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _normalize_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
    except (TypeError, ValueError):
        return repr(extra)


@dataclass(slots=True)
class PollRow:
    """One CSV row."""

    timestamp: str
    event: str
    outcome: Optional[str] = None
    from_cache: Optional[bool] = None
    region: Optional[str] = None
    server_address: Optional[str] = None
    message: Optional[str] = None
    extra: str = ""

    def as_row(self, fields: Sequence[str]) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "event": self.event,
            "outcome": self.outcome or "",
            "from_cache": "" if self.from_cache is None else int(self.from_cache),
            "region": self.region or "",
            "server_address": self.server_address or "",
            "message": self.message or "",
            "extra": self.extra,
        }
        return {key: row.get(key, "") for key in fields}


class MetricsLogger:
    """Append-only CSV log of what each poll observed.

    Rows are written synchronously and flushed so the journal itself can be
    tailed while the watcher runs.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        fields: Sequence[str] | None = None,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.fields: Sequence[str] = tuple(fields) if fields is not None else DEFAULT_FIELDS
        if not self.fields:
            raise ValueError("fields must contain at least one column")

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._static_extra: Dict[str, Any] = dict(static_extra or {})
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._ensure_header()

    def _ensure_header(self) -> None:
        if self.path.exists() and self.path.stat().st_size > 0:
            return
        with self._lock:
            with self.path.open("w", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=self.fields, extrasaction="ignore")
                writer.writeheader()
                handle.flush()

    def log(
        self,
        event: str,
        *,
        outcome: Optional[str] = None,
        from_cache: Optional[bool] = None,
        region: Optional[str] = None,
        server_address: Optional[str] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        row = PollRow(
            timestamp=self._timestamp(),
            event=event,
            outcome=outcome,
            from_cache=from_cache,
            region=region,
            server_address=server_address,
            message=message,
            extra=_normalize_extra(self._combined_extra(extra)),
        )
        self._write_row(row)

    def log_result(self, result: PollResult, *, event: str = "poll", **extra: Any) -> None:
        record = result.record
        payload: Dict[str, Any] = dict(extra)
        if result.reason is not None:
            payload["reason"] = result.reason.value
        if result.detail:
            payload["detail"] = result.detail
        self.log(
            event,
            outcome=result.status,
            from_cache=result.from_cache,
            region=record.region if record else None,
            server_address=record.server_address if record else None,
            message=result.message,
            extra=payload,
        )

    def _write_row(self, row: PollRow) -> None:
        data = row.as_row(self.fields)
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=self.fields, extrasaction="ignore")
                writer.writerow(data)
                handle.flush()

    def _timestamp(self) -> str:
        try:
            dt = self._clock()
        except Exception:  # pragma: no cover - guard against faulty clock
            dt = datetime.now(timezone.utc)
        if not isinstance(dt, datetime):
            return str(dt)
        return _ensure_utc(dt).isoformat(timespec="milliseconds")

    def _combined_extra(self, extra: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
        payload: Dict[str, Any] = dict(self._static_extra)
        if extra:
            payload.update(extra)
        return payload


__all__ = [
    "MetricsLogger",
    "PollRow",
    "DEFAULT_FIELDS",
]
