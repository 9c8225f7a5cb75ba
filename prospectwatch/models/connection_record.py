from __future__ import annotations
from dataclasses import asdict, dataclass
from typing import Dict


@dataclass(frozen=True, slots=True)
class ConnectionRecord:
    """Server connection extracted from a single travel log line."""
    region: str
    server_id: str
    session_id: str
    server_address: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)
