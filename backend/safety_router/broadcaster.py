from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

from .logging_utils import log_event
from .settings import settings

SNAPSHOT_EVENT = "hazard_snapshot"


@dataclass(frozen=True)
class BroadcastMessage:
    event: str
    data: dict[str, Any]
    sequence: int

    def as_dict(self) -> dict[str, Any]:
        return {"event": self.event, "data": self.data, "sequence": self.sequence}


class Observer:
    """Handle for one subscriber: a bounded queue drained by its connection."""

    def __init__(self, observer_id: int, *, queue_size: int) -> None:
        self.id = observer_id
        self._queue: asyncio.Queue[BroadcastMessage | None] = asyncio.Queue(maxsize=max(1, queue_size))
        self.closed = False

    def offer(self, message: BroadcastMessage) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Make room for the end-of-stream marker.
        while True:
            try:
                self._queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    async def next(self) -> BroadcastMessage | None:
        """Next message, or None once the observer has been closed."""
        return await self._queue.get()

    def drain(self) -> list[BroadcastMessage]:
        out: list[BroadcastMessage] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return out
            if item is not None:
                out.append(item)

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class Broadcaster:
    """Best-effort fan-out of hazard notifications.

    `publish` never waits on an observer: a full queue drops that observer
    and delivery to the others carries on. New observers get the current
    snapshot queued inside the same critical section that registers them, so
    they never start from a stale view. Call from the event loop thread.
    """

    def __init__(
        self,
        *,
        snapshot_provider: Callable[[], dict[str, Any]],
        queue_size: int | None = None,
    ) -> None:
        self._snapshot_provider = snapshot_provider
        self._queue_size = int(queue_size or settings.broadcast_queue_size)
        self._lock = Lock()
        self._observers: dict[int, Observer] = {}
        self._ids = itertools.count(1)
        self._sequence = 0
        self._dropped = 0

    def _next_message(self, event: str, data: dict[str, Any]) -> BroadcastMessage:
        self._sequence += 1
        return BroadcastMessage(event=event, data=data, sequence=self._sequence)

    def subscribe(self) -> Observer:
        with self._lock:
            observer = Observer(next(self._ids), queue_size=self._queue_size)
            observer.offer(self._next_message(SNAPSHOT_EVENT, self._snapshot_provider()))
            self._observers[observer.id] = observer
            count = len(self._observers)
        log_event("observer_subscribed", observer_id=observer.id, observer_count=count)
        return observer

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            removed = self._observers.pop(observer.id, None)
            count = len(self._observers)
        observer.close()
        if removed is not None:
            log_event("observer_unsubscribed", observer_id=observer.id, observer_count=count)

    def publish(self, event: str, data: dict[str, Any]) -> int:
        """Queue `event` for every live observer; returns how many accepted it."""
        dropped: list[Observer] = []
        with self._lock:
            message = self._next_message(event, data)
            delivered = 0
            for observer in list(self._observers.values()):
                if observer.offer(message):
                    delivered += 1
                else:
                    self._observers.pop(observer.id, None)
                    dropped.append(observer)
            self._dropped += len(dropped)

        for observer in dropped:
            observer.close()
            log_event(
                "observer_dropped",
                level=logging.WARNING,
                observer_id=observer.id,
                broadcast_event=event,
            )
        return delivered

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "observer_count": len(self._observers),
                "last_sequence": self._sequence,
                "observers_dropped": self._dropped,
            }
