from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Optional

from clipmerge.domain.events import (
    MergeCompleted,
    MergeFailed,
    MergeProgressUpdated,
    MergeStageChanged,
    SessionEvent,
)
from clipmerge.infrastructure.event_bus import EventBus

logger = logging.getLogger(__name__)


class ProgressHub:
    """
    In-memory pubsub delivering merge progress to websocket subscribers.

    Keyed by the caller-chosen subscriber id. Payloads:
      {"percent": float, "stage": str, "message": str, ...}

    Publishing never blocks: a full queue drops its oldest payload, and a
    subscriber id nobody listens on drops the payload entirely.
    """

    def __init__(self, maxsize: int = 32) -> None:
        self._maxsize = maxsize
        self._lock = asyncio.Lock()
        self._subscribers: dict[str, set[asyncio.Queue[dict[str, Any]]]] = defaultdict(set)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def subscribe(self, subscriber_id: str) -> asyncio.Queue[dict[str, Any]]:
        q: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._maxsize)
        async with self._lock:
            self._subscribers[subscriber_id].add(q)
        return q

    async def unsubscribe(self, subscriber_id: str, q: asyncio.Queue[dict[str, Any]]) -> None:
        async with self._lock:
            subs = self._subscribers.get(subscriber_id)
            if not subs:
                return
            subs.discard(q)
            if not subs:
                self._subscribers.pop(subscriber_id, None)

    def _deliver(self, subscriber_id: str, payload: dict[str, Any]) -> None:
        # Runs on the loop thread only, so it needs no lock to read the table
        for q in list(self._subscribers.get(subscriber_id, ())):
            if q.full():
                try:
                    _ = q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                pass

    # -- bridge from the (threaded) event bus ---------------------------------

    def attach(self, bus: EventBus, loop: asyncio.AbstractEventLoop) -> None:
        """Forwards session events from worker threads into `loop`."""
        self._loop = loop
        bus.subscribe(MergeProgressUpdated, self._on_event)
        bus.subscribe(MergeStageChanged, self._on_event)
        bus.subscribe(MergeCompleted, self._on_event)
        bus.subscribe(MergeFailed, self._on_event)

    def detach(self, bus: EventBus) -> None:
        for event_type in (MergeProgressUpdated, MergeStageChanged, MergeCompleted, MergeFailed):
            bus.unsubscribe(event_type, self._on_event)
        self._loop = None

    def publish_threadsafe(self, subscriber_id: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget from any thread; silently dropped without a loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._deliver, subscriber_id, payload)

    def _on_event(self, event: SessionEvent) -> None:
        if not event.subscriber_id:
            return
        payload = event_payload(event)
        if payload is not None:
            self.publish_threadsafe(event.subscriber_id, payload)


def event_payload(event: SessionEvent) -> Optional[dict[str, Any]]:
    if isinstance(event, MergeProgressUpdated):
        return event.payload()
    if isinstance(event, MergeStageChanged):
        return {"percent": 0.0, "stage": event.state.value.lower(), "message": event.message or event.state.value}
    if isinstance(event, MergeCompleted):
        return {
            "percent": 100.0,
            "stage": "done",
            "message": "Merge complete",
            "output": f"/videos/{event.output_path.name}",
            "duration": event.duration_seconds,
            "size": event.size_bytes,
        }
    if isinstance(event, MergeFailed):
        return {"percent": 0.0, "stage": "error", "message": event.error_message}
    logger.debug("No payload mapping for %s", type(event).__name__)
    return None
