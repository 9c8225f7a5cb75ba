"""Value types shared by the log monitor and its sinks."""
from .connection_record import ConnectionRecord
from .poll_result import NotFoundReason, PollOutcome, PollResult

__all__ = [
    "ConnectionRecord",
    "NotFoundReason",
    "PollOutcome",
    "PollResult",
]
