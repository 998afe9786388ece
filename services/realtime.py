"""
Real-time updates for the dashboard.

Firestore delivers change notifications for `packages` on its own watch
thread. Each notification recomputes the KPI counters and is handed to every
connected browser (server-sent events) through its event loop.
"""
import asyncio
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Set, Tuple

from services.devices import DeviceLabels
from services.kpi import fetch_kpi_data

logger = logging.getLogger(__name__)

PACKAGES = "packages"
HEARTBEAT_SECONDS = 15.0


def sse_message(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


class PackageChangeFeed:
    def __init__(self, db, labels: Optional[DeviceLabels] = None, tz_name: str = "UTC"):
        self.db = db
        self.labels = labels
        self.tz_name = tz_name

        self.version = 0
        self.latest: Optional[Dict[str, Any]] = None

        self._watch = None
        self._initial = True
        self._lock = threading.Lock()
        self._subscribers: Set[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = set()

    # ---- lifecycle ----

    def start(self) -> None:
        if self._watch is not None:
            return
        self._watch = self.db.collection(PACKAGES).on_snapshot(self._on_snapshot)
        logger.info("listening for changes on %s", PACKAGES)

    def stop(self) -> None:
        if self._watch is None:
            return
        self._watch.unsubscribe()
        self._watch = None
        logger.info("stopped listening on %s", PACKAGES)

    # ---- subscribers ----

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._subscribers.add((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers = {(loop, q) for loop, q in self._subscribers if q is not queue}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Dict[str, Any]) -> None:
        with self._lock:
            self.latest = event
            targets = list(self._subscribers)

        for loop, queue in targets:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(queue.put_nowait, event)

    # ---- firestore callback ----

    def _register_new_devices(self, changes: List[Any]) -> None:
        if self.labels is None:
            return
        for change in changes:
            if change.type.name != "ADDED":
                continue
            device_id = (change.document.to_dict() or {}).get("deviceId")
            if not device_id:
                continue
            try:
                self.labels.register(device_id)
            except Exception as e:
                logger.error("device registration failed for %s: %r", device_id, e)

    def _on_snapshot(self, docs, changes, read_time) -> None:
        try:
            # the first snapshot replays the whole collection as ADDED
            if self._initial:
                self._initial = False
            else:
                self._register_new_devices(changes)

            kpi = fetch_kpi_data(self.db, tz_name=self.tz_name)
            self.version += 1
            self.publish({
                "type": "packages_changed",
                "version": self.version,
                "changes": len(changes),
                "kpi": kpi.model_dump(),
            })
        except Exception as e:
            logger.error("error processing package change notification: %r", e)


async def event_stream(request, feed: PackageChangeFeed, heartbeat: float = HEARTBEAT_SECONDS):
    """SSE body for one browser; ends when the client disconnects."""
    queue = feed.subscribe()
    try:
        if feed.latest is not None:
            yield sse_message(feed.latest)

        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            yield sse_message(event)
    finally:
        feed.unsubscribe(queue)
