"""Shared-read access to a log file that another process keeps open."""
from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class LogReadError(Exception):
	"""Base class for failures reading the game log."""

	def __init__(self, path: PathLike, reason: str) -> None:
		super().__init__(f"{path}: {reason}")
		self.path = str(path)
		self.reason = reason


class LogMissingError(LogReadError):
	"""The log file does not exist."""


class LogUnavailableError(LogReadError):
	"""The log file exists but cannot be read right now (locked or denied)."""


def read_all(path: PathLike, *, encoding: str = "utf-8") -> List[str]:
	"""Return every line currently in ``path``, oldest first, without terminators.

	The file is opened read-only without any sharing restrictions so the
	writer keeps its handle. Universal newlines apply, so ``\\r\\n`` and bare
	``\\r`` split lines the same way ``\\n`` does.
	"""
	target = Path(path)
	try:
		with target.open("r", encoding=encoding, errors="replace", newline=None) as handle:
			lines = [line.rstrip("\n") for line in handle]
	except FileNotFoundError as exc:
		raise LogMissingError(target, exc.strerror or "file not found") from exc
	except PermissionError as exc:
		logger.debug("Log file locked: %s (%s)", target, exc)
		raise LogUnavailableError(target, exc.strerror or "permission denied") from exc
	except OSError as exc:
		# ENOENT can also surface as a bare OSError on some network shares.
		if exc.errno == errno.ENOENT:
			raise LogMissingError(target, exc.strerror or "file not found") from exc
		logger.debug("Log file access failed: %s (%s)", target, exc)
		raise LogUnavailableError(target, exc.strerror or str(exc)) from exc

	logger.debug("Log file has %d total lines", len(lines))
	return lines


__all__ = [
	"LogReadError",
	"LogMissingError",
	"LogUnavailableError",
	"read_all",
]
