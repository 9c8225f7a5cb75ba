"""Field extraction for server-travel log lines.

A travel line carries four bracketed tokens, e.g.::

    [FYMatchConnectionData | addr [203.0.113.5:7777] sessionId [abc123]
     serverId [srv-9] region [EastUs] connectSinglePlayer [0] m_isMatch [1]]

The game has shipped a few spacing variants of this payload over time, so the
line is offered to an ordered tuple of matchers and the first one that
succeeds wins.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Optional, Sequence

from prospectwatch.models import ConnectionRecord

logger = logging.getLogger(__name__)

FieldMatcher = Callable[[str], Optional[ConnectionRecord]]


def regex_matcher(pattern: str) -> FieldMatcher:
    """Build a matcher from a pattern whose groups are address, session, server, region."""
    compiled = re.compile(pattern)

    def _match(line: str) -> Optional[ConnectionRecord]:
        match = compiled.search(line)
        if match is None:
            return None
        address, session_id, server_id, region = match.group(1, 2, 3, 4)
        return ConnectionRecord(
            region=region,
            server_id=server_id,
            session_id=session_id,
            server_address=address,
        )

    _match.pattern = compiled.pattern  # type: ignore[attr-defined]
    return _match


FIELD_MATCHERS: tuple[FieldMatcher, ...] = (
    regex_matcher(r"addr \[([^\]]+)\]\s+sessionId \[([^\]]+)\]\s+serverId \[([^\]]+)\]\s+region \[([^\]]+)\]"),
    regex_matcher(r"addr\s*\[([^\]]+)\]\s*sessionId\s*\[([^\]]+)\]\s*serverId\s*\[([^\]]+)\]\s*region\s*\[([^\]]+)\]"),
    regex_matcher(r"addr\[([^\]]+)\] sessionId\[([^\]]+)\] serverId\[([^\]]+)\] region\[([^\]]+)\]"),
)


def parse(line: str, matchers: Sequence[FieldMatcher] = FIELD_MATCHERS) -> Optional[ConnectionRecord]:
    """Return the record from the first matcher that accepts ``line``, else ``None``."""
    for index, matcher in enumerate(matchers, start=1):
        record = matcher(line)
        if record is not None:
            logger.debug(
                "Pattern %d matched: region=%s server=%s",
                index,
                record.region,
                record.server_address,
            )
            return record
    logger.debug("All %d patterns failed on line: %.200s", len(matchers), line)
    return None


__all__ = ["FIELD_MATCHERS", "FieldMatcher", "parse", "regex_matcher"]
