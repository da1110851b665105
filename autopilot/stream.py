# autopilot/stream.py
"""
Progress channel with replay-last-known-value semantics.

- publish() clamps percent so the stream never goes backwards
- subscribe() hands the latest event to the new listener before any live
  update, so a late subscriber sees no gap
- the terminal event closes the channel; later subscribers only get it
  replayed
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import AsyncIterator, Callable, Optional

from autopilot.models import ProgressEvent
from checkout.errors import AlreadyTerminalError
from checkout.events import Subscription

_logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Fan-out of one task's progress events."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        self._last: Optional[ProgressEvent] = None
        self._listeners: dict[int, ProgressListener] = {}
        self._next_id = 0
        self._closed = False

    @property
    def last(self) -> Optional[ProgressEvent]:
        return self._last

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: ProgressEvent) -> ProgressEvent:
        """
        Record and deliver an event.

        Returns the event as delivered (percent possibly clamped).

        Raises:
            AlreadyTerminalError: channel already closed
        """
        if self._closed:
            status = self._last.status.value if self._last and self._last.status else "closed"
            raise AlreadyTerminalError(status, self.task_id)

        floor = self._last.percent if self._last else 0
        percent = max(floor, min(100, event.percent))
        if percent != event.percent:
            event = replace(event, percent=percent)

        self._last = event
        if event.is_terminal:
            self._closed = True

        for listener in list(self._listeners.values()):
            self._deliver(listener, event)

        if self._closed:
            self._listeners.clear()
        return event

    def subscribe(self, listener: ProgressListener) -> Subscription:
        """
        Attach a listener. The last known event (if any) is delivered
        immediately, then live events in order.
        """
        if self._last is not None:
            self._deliver(listener, self._last)
        if self._closed:
            return Subscription()

        key = self._next_id
        self._next_id += 1
        self._listeners[key] = listener
        return Subscription(lambda: self._listeners.pop(key, None))

    async def updates(self) -> AsyncIterator[ProgressEvent]:
        """Async iteration over the stream, ending after the terminal event."""
        queue: asyncio.Queue = asyncio.Queue()
        subscription = self.subscribe(queue.put_nowait)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.is_terminal:
                    return
        finally:
            subscription.cancel()

    def listener_count(self) -> int:
        return len(self._listeners)

    def _deliver(self, listener: ProgressListener, event: ProgressEvent) -> None:
        try:
            listener(event)
        except Exception as e:
            _logger.warning(f"Progress listener failed for task {self.task_id}: {e}")
