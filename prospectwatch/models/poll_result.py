"""Tagged result returned by every connection poll."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .connection_record import ConnectionRecord


class PollOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    FILE_MISSING = "file_missing"


class NotFoundReason(str, Enum):
    NO_EVENT = "no_event"
    MALFORMED_EVENT = "malformed_event"


@dataclass(frozen=True, slots=True)
class PollResult:
    """Outcome of one :meth:`ConnectionMonitor.poll` call.

    ``record`` is only set for FOUND results. ``last_known`` carries whatever
    record the monitor still holds so that sinks can keep showing it while the
    log is locked or holds no fresh event.
    """

    outcome: PollOutcome
    path: str = ""
    record: Optional[ConnectionRecord] = None
    from_cache: bool = False
    reason: Optional[NotFoundReason] = None
    detail: Optional[str] = None
    last_known: Optional[ConnectionRecord] = None

    @classmethod
    def found(cls, record: ConnectionRecord, *, path: str = "", from_cache: bool = False) -> "PollResult":
        return cls(PollOutcome.FOUND, path=path, record=record, from_cache=from_cache, last_known=record)

    @classmethod
    def not_found(
        cls,
        reason: NotFoundReason,
        *,
        path: str = "",
        detail: Optional[str] = None,
        last_known: Optional[ConnectionRecord] = None,
    ) -> "PollResult":
        return cls(PollOutcome.NOT_FOUND, path=path, reason=reason, detail=detail, last_known=last_known)

    @classmethod
    def unavailable(
        cls,
        detail: str,
        *,
        path: str = "",
        last_known: Optional[ConnectionRecord] = None,
    ) -> "PollResult":
        return cls(PollOutcome.UNAVAILABLE, path=path, detail=detail, last_known=last_known)

    @classmethod
    def file_missing(cls, path: str, *, last_known: Optional[ConnectionRecord] = None) -> "PollResult":
        return cls(PollOutcome.FILE_MISSING, path=path, last_known=last_known)

    @property
    def status(self) -> str:
        return self.outcome.value

    @property
    def ok(self) -> bool:
        return self.outcome is PollOutcome.FOUND

    @property
    def message(self) -> str:
        """On-screen text for the status line."""
        if self.outcome is PollOutcome.FOUND and self.record is not None:
            suffix = " (cached)" if self.from_cache else ""
            return f"Connected to {self.record.region}{suffix}"
        if self.outcome is PollOutcome.FILE_MISSING:
            return f"Log file not found: {self.path}"
        if self.outcome is PollOutcome.UNAVAILABLE:
            return "Waiting for log file access..."
        if self.reason is NotFoundReason.MALFORMED_EVENT:
            return "Server connection line could not be parsed"
        return "No server connection found in logs"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "path": self.path,
            "from_cache": self.from_cache,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "record": self.record.to_dict() if self.record else None,
            "last_known": self.last_known.to_dict() if self.last_known else None,
        }


__all__ = ["PollOutcome", "NotFoundReason", "PollResult"]
