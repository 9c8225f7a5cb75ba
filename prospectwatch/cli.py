"""prospectwatch command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import subprocess
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from prospectwatch.display import StatusBoard, describe
from prospectwatch.logging_config import setup_logging
from prospectwatch.metrics import MetricsLogger
from prospectwatch.models import PollResult
from prospectwatch.monitor import ConnectionMonitor
from prospectwatch.settings import DEFAULT_CONFIG_FILE, MonitorSettings, load_settings
from prospectwatch.watcher import LogWatcher


def _settings_from_args(args: argparse.Namespace) -> MonitorSettings:
	settings = load_settings(args.config)
	if getattr(args, "log", None):
		settings.log_file_path = args.log
	if getattr(args, "max_lines", None) is not None:
		if args.max_lines <= 0:
			raise ValueError("--max-lines must be positive")
		settings.max_log_lines = args.max_lines
	if getattr(args, "interval", None) is not None:
		settings.update_interval = args.interval
	if getattr(args, "debounce", None) is not None:
		settings.debounce = args.debounce
	if getattr(args, "metrics", None):
		settings.metrics_path = args.metrics
	if args.debug:
		settings.debug = True
	return settings


def _build_monitor(settings: MonitorSettings) -> ConnectionMonitor:
	metrics = MetricsLogger(settings.metrics_path, static_extra={"log": settings.log_file_path}) if settings.metrics_path else None
	return ConnectionMonitor(read_budget=settings.max_log_lines, metrics=metrics)


def _render_table(console: Console, result: PollResult) -> None:
	board = StatusBoard()
	board.apply(result)
	table = Table(title="Prospect Server Connection", show_header=False, show_lines=False)
	table.add_column("field")
	table.add_column("value")
	for label, value in (
		("Status", board.status),
		("Region", board.region),
		("Server", board.server_address),
		("Server ID", board.server_id),
		("Session", board.session_id),
	):
		table.add_row(label, str(value))
	if board.debug_info:
		table.add_row("Detail", board.debug_info)
	console.print(table)


async def _cmd_poll(args: argparse.Namespace) -> int:
	settings = _settings_from_args(args)
	setup_logging(settings.debug)
	monitor = _build_monitor(settings)
	result = await asyncio.to_thread(monitor.poll, settings.log_file_path)
	if args.json:
		json.dump(result.to_dict(), sys.stdout, indent=2)
		sys.stdout.write("\n")
	else:
		_render_table(Console(), result)
	return 0 if result.ok else 1


async def _cmd_watch(args: argparse.Namespace) -> int:
	settings = _settings_from_args(args)
	setup_logging(settings.debug)
	console = Console()
	board = StatusBoard()

	def _print_change(result: PollResult) -> None:
		if board.apply(result):
			console.print(describe(result, board))

	watcher = LogWatcher(
		settings.log_file_path,
		_build_monitor(settings),
		interval=settings.update_interval,
		debounce=settings.debounce,
		use_file_events=not args.no_file_events,
		sinks=[_print_change],
	)
	console.print(f"Monitoring: {settings.log_file_path}")

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, watcher.request_stop)

	try:
		await watcher.run(runtime=args.runtime)
	except KeyboardInterrupt:
		watcher.request_stop()
	return 0


async def _cmd_serve(args: argparse.Namespace) -> int:
	cmd = [
		sys.executable,
		"-m",
		"uvicorn",
		"prospectwatch.api:app",
		"--host",
		args.host,
		"--port",
		str(args.port),
	]
	if args.reload:
		cmd.append("--reload")
	if args.debug:
		cmd.extend(["--log-level", "debug"])
	completed = await asyncio.to_thread(subprocess.run, cmd, check=False)
	return completed.returncode


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Prospect server connection monitor")
	parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="Path to appsettings.json")
	parser.add_argument("--debug", action="store_true", help="Verbose logging to console and debug.log")
	sub = parser.add_subparsers(dest="command", required=True)

	poll = sub.add_parser("poll", help="Read the log once and report the current server")
	poll.add_argument("--log", help="Path to Prospect.log")
	poll.add_argument("--max-lines", type=int, help="Trailing lines to scan")
	poll.add_argument("--metrics", help="Append the poll outcome to this CSV")
	poll.add_argument("--json", action="store_true", help="Output JSON")
	poll.set_defaults(handler=_cmd_poll)

	watch = sub.add_parser("watch", help="Follow the log and print connection changes")
	watch.add_argument("--log", help="Path to Prospect.log")
	watch.add_argument("--max-lines", type=int, help="Trailing lines to scan")
	watch.add_argument("--interval", type=float, help="Timer poll interval seconds")
	watch.add_argument("--debounce", type=float, help="Quiet period after a file change, seconds")
	watch.add_argument("--runtime", type=float, help="Optional watch duration seconds")
	watch.add_argument("--no-file-events", action="store_true", help="Poll on the timer only")
	watch.add_argument("--metrics", help="Path to poll metrics CSV")
	watch.set_defaults(handler=_cmd_watch)

	serve = sub.add_parser("serve", help="Run the HTTP/websocket API")
	serve.add_argument("--host", default="127.0.0.1")
	serve.add_argument("--port", type=int, default=8000)
	serve.add_argument("--reload", action="store_true", help="Enable auto-reload")
	serve.set_defaults(handler=_cmd_serve)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	try:
		return asyncio.run(args.handler(args))
	except ValueError as exc:
		parser.error(str(exc))
	return 2  # pragma: no cover - parser.error exits


if __name__ == "__main__":
	sys.exit(main())
