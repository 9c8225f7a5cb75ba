"""Runtime settings: appsettings.json plus PROSPECTWATCH_* environment overrides."""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from prospectwatch.locator import DEFAULT_READ_BUDGET

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROSPECTWATCH_"
DEFAULT_UPDATE_INTERVAL = 5.0
DEFAULT_DEBOUNCE = 0.1
DEFAULT_CONFIG_FILE = "appsettings.json"

_WINDOWS_VAR = re.compile(r"%([^%]+)%")
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def expand_path(raw: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Expand ``%VAR%``, ``$VAR`` and ``~`` in a configured path.

    Unknown ``%VAR%`` references are left untouched.
    """
    env = os.environ if environ is None else environ

    def _sub(match: re.Match[str]) -> str:
        return env.get(match.group(1), match.group(0))

    expanded = _WINDOWS_VAR.sub(_sub, raw)
    if environ is None:
        expanded = os.path.expandvars(expanded)
    return os.path.expanduser(expanded)


def default_log_path(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    local_app_data = env.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    return str(Path(local_app_data, "Prospect", "Saved", "Logs", "Prospect.log"))


@dataclass(slots=True)
class MonitorSettings:
    log_file_path: str
    max_log_lines: int = DEFAULT_READ_BUDGET
    update_interval: float = DEFAULT_UPDATE_INTERVAL
    debounce: float = DEFAULT_DEBOUNCE
    debug: bool = False
    metrics_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_log_lines <= 0:
            raise ValueError("max_log_lines must be positive")
        if self.update_interval <= 0:
            raise ValueError("update_interval must be positive")
        if self.debounce < 0:
            raise ValueError("debounce must not be negative")


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{name} must be a JSON object")
    return value


def _as_bool(raw: Any, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ValueError(f"invalid boolean for {name}: {raw!r}")


def _as_int(raw: Any, name: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid integer for {name}: {raw!r}") from exc


def _as_float(raw: Any, name: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid number for {name}: {raw!r}") from exc


def _read_config_file(config_file: Path) -> Mapping[str, Any]:
    try:
        with config_file.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid settings JSON in {config_file}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{config_file} must contain a JSON object")
    return data


def load_settings(
    config_file: str | Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> MonitorSettings:
    """Build settings from an optional JSON file, then apply environment overrides.

    A missing ``config_file`` is not an error; the defaults apply.
    """
    env = os.environ if environ is None else environ
    data: Mapping[str, Any] = {}
    if config_file is not None:
        path = Path(config_file)
        if path.is_file():
            data = _read_config_file(path)
            logger.debug("Configuration loaded from %s", path)
        else:
            logger.debug("No configuration file at %s, using defaults", path)

    log_settings = _section(data, "LogSettings")
    overlay_settings = _section(data, "OverlaySettings")

    raw_path = env.get(f"{ENV_PREFIX}LOG_PATH") or log_settings.get("LogFilePath") or ""
    if raw_path:
        log_file_path = expand_path(str(raw_path), environ)
        logger.debug("Using configured log path: %s -> %s", raw_path, log_file_path)
    else:
        log_file_path = default_log_path(environ)
        logger.debug("Using default log path: %s", log_file_path)

    max_lines = env.get(f"{ENV_PREFIX}MAX_LINES", log_settings.get("MaxLogLinesToRead", DEFAULT_READ_BUDGET))
    interval = env.get(f"{ENV_PREFIX}INTERVAL", overlay_settings.get("UpdateIntervalSeconds", DEFAULT_UPDATE_INTERVAL))
    debounce = env.get(f"{ENV_PREFIX}DEBOUNCE", DEFAULT_DEBOUNCE)
    debug = env.get(f"{ENV_PREFIX}DEBUG", overlay_settings.get("DebugVisible", False))
    metrics_path = env.get(f"{ENV_PREFIX}METRICS") or None

    return MonitorSettings(
        log_file_path=log_file_path,
        max_log_lines=_as_int(max_lines, "max log lines"),
        update_interval=_as_float(interval, "update interval"),
        debounce=_as_float(debounce, "debounce"),
        debug=_as_bool(debug, "debug"),
        metrics_path=metrics_path,
    )


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_DEBOUNCE",
    "DEFAULT_UPDATE_INTERVAL",
    "ENV_PREFIX",
    "MonitorSettings",
    "default_log_path",
    "expand_path",
    "load_settings",
]
