"""Overlay view model fed by poll results."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from prospectwatch.models import ConnectionRecord, PollOutcome, PollResult

logger = logging.getLogger(__name__)

MONITORING_TEXT = "Monitoring logs..."
WAITING_FOR_FILE_TEXT = "Waiting for log file"
WAITING_FOR_MATCH_TEXT = "Waiting for match..."

FIELD_NAMES: Sequence[str] = ("region", "server_id", "session_id", "server_address")

ChangeListener = Callable[["StatusBoard", List[str]], None]


class StatusBoard:
    """The four server fields plus a status line, as the overlay shows them.

    Listeners are called with the names of the fields that changed after each
    :meth:`apply`. A NOT_FOUND or UNAVAILABLE result never wipes values that
    came from an earlier connection.
    """

    def __init__(self) -> None:
        self.region = MONITORING_TEXT
        self.server_id = MONITORING_TEXT
        self.session_id = MONITORING_TEXT
        self.server_address = MONITORING_TEXT
        self.status = "Initializing..."
        self.debug_info = ""
        self._has_record = False
        self._listeners: List[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def has_record(self) -> bool:
        return self._has_record

    def apply(self, result: PollResult) -> List[str]:
        before = self.snapshot()

        if result.outcome is PollOutcome.FOUND and result.record is not None:
            self._show_record(result.record)
        elif result.outcome is PollOutcome.FILE_MISSING:
            self._fill(WAITING_FOR_FILE_TEXT)
            self._has_record = False
        elif result.outcome is PollOutcome.NOT_FOUND:
            if result.last_known is not None:
                self._show_record(result.last_known)
            elif not self._has_record:
                self._fill(WAITING_FOR_MATCH_TEXT)
        self.status = result.message
        self.debug_info = result.detail or ""

        after = self.snapshot()
        changed = [name for name, value in after.items() if before[name] != value]
        if changed:
            self._notify(changed)
        return changed

    def snapshot(self) -> Dict[str, Any]:
        return {
            "region": self.region,
            "server_id": self.server_id,
            "session_id": self.session_id,
            "server_address": self.server_address,
            "status": self.status,
            "debug_info": self.debug_info,
        }

    def _show_record(self, record: ConnectionRecord) -> None:
        for name in FIELD_NAMES:
            setattr(self, name, getattr(record, name))
        self._has_record = True

    def _fill(self, text: str) -> None:
        for name in FIELD_NAMES:
            setattr(self, name, text)

    def _notify(self, changed: List[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, changed)
            except Exception:  # pragma: no cover - listener failure
                logger.exception("Status board listener raised")


def describe(result: PollResult, board: Optional[StatusBoard] = None) -> str:
    """One-line summary used by the CLI."""
    target = board or StatusBoard()
    if board is None:
        target.apply(result)
    if result.outcome is PollOutcome.FOUND or target.has_record:
        return (
            f"{target.status} | region={target.region} server={target.server_address} "
            f"serverId={target.server_id} session={target.session_id}"
        )
    return target.status


__all__ = ["StatusBoard", "ChangeListener", "describe", "FIELD_NAMES"]
