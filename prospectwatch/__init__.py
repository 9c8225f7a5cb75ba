"""Live server-connection monitor for the Prospect game log."""
from prospectwatch.models import ConnectionRecord, NotFoundReason, PollOutcome, PollResult
from prospectwatch.monitor import CacheState, ConnectionMonitor

__version__ = "0.1.0"

__all__ = [
    "CacheState",
    "ConnectionMonitor",
    "ConnectionRecord",
    "NotFoundReason",
    "PollOutcome",
    "PollResult",
]
