from __future__ import annotations
import asyncio, logging, time
from collections import OrderedDict
from typing import Any, Dict, Optional
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Query, HTTPException

from prospectwatch.models import PollResult
from prospectwatch.monitor import ConnectionMonitor
from prospectwatch.settings import load_settings
from prospectwatch.watcher import LogWatcher

logger = logging.getLogger(__name__)

app = FastAPI(title="Prospect Server Watch API", version="0.1.0")

MAX_MONITORS = 8

_monitors: OrderedDict[tuple, ConnectionMonitor] = OrderedDict()
_watch_task: Optional[asyncio.Task] = None
_watcher: Optional[LogWatcher] = None


def _monitor_for(path: str, max_lines: int) -> ConnectionMonitor:
    # One monitor (and so one cache) per path and budget, least recently used evicted.
    key = (path, max_lines)
    monitor = _monitors.get(key)
    if monitor is None:
        monitor = ConnectionMonitor(read_budget=max_lines)
        _monitors[key] = monitor
        while len(_monitors) > MAX_MONITORS:
            _monitors.popitem(last=False)
    else:
        _monitors.move_to_end(key)
    return monitor


def _resolve(log: Optional[str], max_lines: Optional[int]) -> tuple[str, int]:
    try:
        settings = load_settings()
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=f"Invalid settings: {exc}")
    return log or settings.log_file_path, max_lines or settings.max_log_lines


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time()}


@app.get("/status")
async def status(
    log: Optional[str] = Query(None, description="Log file path (defaults to configured path)"),
    max_lines: Optional[int] = Query(None, ge=1, description="Trailing lines to scan"),
):
    """Poll the log once and return the tagged result."""
    path, budget = _resolve(log, max_lines)
    monitor = _monitor_for(path, budget)
    result = await asyncio.to_thread(monitor.poll, path)
    return result.to_dict()


@app.post("/watch/start")
async def start(
    log: Optional[str] = Query(None, description="Log file path (defaults to configured path)"),
    max_lines: Optional[int] = Query(None, ge=1, description="Trailing lines to scan"),
    interval: float = Query(5.0, ge=0.1, description="Timer poll interval seconds"),
    debounce: float = Query(0.1, ge=0.0, description="Quiet period after a file change"),
    runtime: Optional[float] = Query(None, ge=0.1, description="Optional watch duration"),
    file_events: bool = Query(True, description="React to file-change notifications"),
):
    global _watch_task, _watcher
    if _watch_task and not _watch_task.done():
        return {"status": "already-running", "log": str(_watcher.path) if _watcher else None}

    path, budget = _resolve(log, max_lines)
    _watcher = LogWatcher(
        path,
        ConnectionMonitor(read_budget=budget),
        interval=interval,
        debounce=debounce,
        use_file_events=file_events,
    )
    _watch_task = asyncio.create_task(_watcher.run(runtime=runtime))
    return {
        "status": "started",
        "log": path,
        "max_lines": budget,
        "interval": interval,
        "runtime": runtime,
    }


@app.post("/watch/stop")
async def stop():
    global _watch_task
    if _watch_task:
        if _watcher:
            _watcher.request_stop()
        _watch_task.cancel()
        try:
            await _watch_task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("watch stop encountered error")
        _watch_task = None
        return {"status": "stopped"}
    return {"status": "idle"}


@app.get("/watch/status")
async def watch_status():
    if not _watch_task or _watch_task.done() or _watcher is None:
        return {"status": "idle"}
    latest = _watcher.latest
    payload: Dict[str, Any] = {
        "status": "running",
        "log": str(_watcher.path),
        "polls": _watcher.poll_count,
        "latest": latest.to_dict() if latest else None,
    }
    return payload


async def _until_disconnect(ws: WebSocket) -> None:
    while True:
        message = await ws.receive()
        if message["type"] == "websocket.disconnect":
            return


@app.websocket("/events")
async def events(ws: WebSocket):
    await ws.accept()
    queue: asyncio.Queue[PollResult] = asyncio.Queue(maxsize=100)
    watcher = _watcher

    def _enqueue(result: PollResult) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(result)

    def _follow(current: Optional[LogWatcher]) -> Optional[LogWatcher]:
        if current is _watcher:
            return current
        if current is not None:
            current.remove_sink(_enqueue)
        if _watcher is not None:
            _watcher.add_sink(_enqueue)
            if _watcher.latest is not None:
                _enqueue(_watcher.latest)
        return _watcher

    if watcher is not None:
        watcher.add_sink(_enqueue)
        if watcher.latest is not None:
            _enqueue(watcher.latest)

    closed = asyncio.create_task(_until_disconnect(ws))
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, closed}, timeout=0.5, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
            if closed in done:
                return
            if getter in done:
                await ws.send_json(getter.result().to_dict())
            else:
                watcher = _follow(watcher)
    except WebSocketDisconnect:
        return
    finally:
        closed.cancel()
        if watcher is not None:
            watcher.remove_sink(_enqueue)
