"""Find the newest server-travel line in the tail of the log."""
from __future__ import annotations

import logging
from typing import Callable, Iterator, Optional, Sequence

logger = logging.getLogger(__name__)

TRAVEL_MARKER = "UYControllerTravelComponent::TravelToServer"
DEFAULT_READ_BUDGET = 5000
LOOPBACK_HOST = "127.0.0.1"

ExclusionPredicate = Callable[[str], bool]

LOOPBACK_FIELD = f"addr [{LOOPBACK_HOST}]"


def is_loopback(line: str) -> bool:
	"""True when the line carries the bare loopback address ``addr [127.0.0.1]``."""
	return LOOPBACK_FIELD in line


DEFAULT_EXCLUSIONS: tuple[ExclusionPredicate, ...] = (is_loopback,)


def _check_budget(budget: int) -> int:
	if isinstance(budget, bool) or not isinstance(budget, int) or budget <= 0:
		raise ValueError(f"read budget must be a positive integer, got {budget!r}")
	return budget


def tail_window(lines: Sequence[str], budget: int = DEFAULT_READ_BUDGET) -> Iterator[str]:
	"""Yield the last ``budget`` lines, newest first."""
	budget = _check_budget(budget)
	start = max(0, len(lines) - budget)
	for index in range(len(lines) - 1, start - 1, -1):
		yield lines[index]


def find_latest(
	lines: Sequence[str],
	budget: int = DEFAULT_READ_BUDGET,
	marker: str = TRAVEL_MARKER,
	exclusions: Sequence[ExclusionPredicate] = DEFAULT_EXCLUSIONS,
) -> Optional[str]:
	"""Return the newest marker line inside the tail window that no exclusion rejects.

	Lines older than the window are never inspected, even if they would match.
	Returns ``None`` when the window holds no qualifying line.
	"""
	seen = 0
	skipped = 0
	for line in tail_window(lines, budget):
		if marker not in line:
			continue
		seen += 1
		if any(predicate(line) for predicate in exclusions):
			skipped += 1
			logger.debug("Skipping excluded travel line #%d", seen)
			continue
		logger.debug("Found travel line #%d: %.150s", seen, line)
		return line

	logger.debug(
		"No usable travel line in the last %d lines (%d marker lines, %d excluded)",
		budget,
		seen,
		skipped,
	)
	return None


__all__ = [
	"TRAVEL_MARKER",
	"DEFAULT_READ_BUDGET",
	"DEFAULT_EXCLUSIONS",
	"ExclusionPredicate",
	"find_latest",
	"is_loopback",
	"tail_window",
]
