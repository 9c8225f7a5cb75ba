"""Scheduler that drives :class:`ConnectionMonitor` from a timer and file events."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path
from time import monotonic
from typing import Any, Awaitable, Callable, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from prospectwatch.models import PollResult
from prospectwatch.monitor import ConnectionMonitor
from prospectwatch.settings import DEFAULT_DEBOUNCE, DEFAULT_UPDATE_INTERVAL

logger = logging.getLogger(__name__)

ResultSink = Callable[[PollResult], Union[None, Awaitable[None]]]


class _LogChangeHandler(FileSystemEventHandler):
    """Forward watchdog events for one file name to a thread-safe callback."""

    def __init__(self, file_name: str, callback: Callable[[], None]) -> None:
        self.file_name = os.path.normcase(file_name)
        self.callback = callback

    def _matches(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path, getattr(event, "dest_path", "")]
        return any(
            path and os.path.normcase(os.path.basename(os.fsdecode(path))) == self.file_name
            for path in paths
        )

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            self.callback()

    def on_created(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            self.callback()

    def on_moved(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            self.callback()

    def on_deleted(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            self.callback()


class LogWatcher:
    """Poll one log file on a timer and whenever it changes.

    File-change notifications arrive on watchdog's observer thread and are
    coalesced: a poll runs only after ``debounce`` seconds without a further
    change. Polls never overlap and run in a worker thread so the event loop
    stays responsive.
    """

    def __init__(
        self,
        path: Union[str, Path],
        monitor: Optional[ConnectionMonitor] = None,
        *,
        interval: float = DEFAULT_UPDATE_INTERVAL,
        debounce: float = DEFAULT_DEBOUNCE,
        use_file_events: bool = True,
        sinks: Optional[List[ResultSink]] = None,
    ) -> None:
        self.path = Path(path)
        self.monitor = monitor or ConnectionMonitor()
        self.interval = max(0.05, interval)
        self.debounce = max(0.0, debounce)
        self.use_file_events = use_file_events
        self._sinks: List[ResultSink] = list(sinks or [])

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._poll_lock = asyncio.Lock()
        self._observer: Optional[Any] = None
        self._latest: Optional[PollResult] = None
        self.poll_count = 0

    @property
    def latest(self) -> Optional[PollResult]:
        return self._latest

    @property
    def running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def add_sink(self, sink: ResultSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: ResultSink) -> None:
        with contextlib.suppress(ValueError):
            self._sinks.remove(sink)

    async def run(self, runtime: Optional[float] = None) -> None:
        """Poll until :meth:`request_stop` is called or ``runtime`` elapses."""
        self._loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        wakeup = asyncio.Event()
        self._stop_event = stop_event
        self._wakeup = wakeup
        deadline = monotonic() + runtime if runtime else None

        logger.info("Watching %s (interval %.1fs)", self.path, self.interval)
        self._start_observer()
        try:
            while not stop_event.is_set():
                await self.poll_once()
                if deadline and monotonic() >= deadline:
                    break
                await self._wait_for_trigger(stop_event, wakeup, deadline)
                wakeup.clear()
        finally:
            stop_event.set()
            self._cancel_debounce()
            self._stop_observer()
            logger.info("Stopped watching %s", self.path)

    def request_stop(self) -> None:
        if self._stop_event is None:
            return
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._stop_event.set)
        else:
            self._stop_event.set()

    def poke(self) -> None:
        """Signal that the log changed. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        # The loop may close between the check and the call.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(self._schedule_debounced_poll)

    async def poll_once(self) -> PollResult:
        async with self._poll_lock:
            result = await asyncio.to_thread(self.monitor.poll, self.path)
            self.poll_count += 1
            self._latest = result
        await self._dispatch(result)
        return result

    async def _wait_for_trigger(
        self,
        stop_event: asyncio.Event,
        wakeup: asyncio.Event,
        deadline: Optional[float],
    ) -> None:
        wait_time = self.interval
        if deadline:
            wait_time = min(wait_time, max(0.0, deadline - monotonic()))
        stop_wait = asyncio.ensure_future(stop_event.wait())
        wake_wait = asyncio.ensure_future(wakeup.wait())
        try:
            await asyncio.wait({stop_wait, wake_wait}, timeout=wait_time, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (stop_wait, wake_wait):
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    def _schedule_debounced_poll(self) -> None:
        if self._loop is None or self._wakeup is None:
            return
        self._cancel_debounce()
        self._debounce_handle = self._loop.call_later(self.debounce, self._wakeup.set)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    async def _dispatch(self, result: PollResult) -> None:
        for sink in list(self._sinks):
            try:
                outcome = sink(result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception("Result sink raised for %s", self.path)

    def _start_observer(self) -> None:
        if not self.use_file_events:
            return
        directory = self.path.parent
        if not directory.is_dir():
            logger.warning("Log directory %s does not exist, relying on timer", directory)
            return
        try:
            observer = Observer()
            observer.schedule(_LogChangeHandler(self.path.name, self.poke), str(directory), recursive=False)
            observer.start()
        except OSError as exc:
            logger.warning("Failed to set up file watcher, relying on timer: %s", exc)
            return
        self._observer = observer

    def _stop_observer(self) -> None:
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        observer.join(timeout=5.0)


__all__ = ["LogWatcher", "ResultSink"]
