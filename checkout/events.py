# checkout/events.py
"""
Structured domain events emitted by CheckoutController.

Presentation layers subscribe to these and map them to their own
notification mechanism (toasts, SSE, analytics). The tracking listener
replaces ad-hoc console tracking with INFO logs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Type

_logger = logging.getLogger(__name__)


class Subscription:
    """
    Handle returned by every subscribe() call.

    cancel() is idempotent. Usable as a context manager so a consumer
    cannot leak a listener across retries.
    """

    def __init__(self, unsubscribe: Optional[Callable[[], None]] = None):
        self._unsubscribe = unsubscribe
        self._active = unsubscribe is not None

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.cancel()


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (tuple, list, frozenset, set)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class DomainEvent:
    """Base event. Every event is scoped to one project."""

    project_id: str
    occurred_at: datetime

    name = "domain_event"

    def to_dict(self) -> dict:
        data = {"event": self.name}
        for f in fields(self):
            data[f.name] = _jsonable(getattr(self, f.name))
        return data


@dataclass(frozen=True)
class StateChanged(DomainEvent):
    previous: str = ""
    current: str = ""

    name = "state_changed"


@dataclass(frozen=True)
class EstimateUpdated(DomainEvent):
    price_min: Decimal = Decimal(0)
    price_max: Decimal = Decimal(0)
    verify_level: str = ""

    name = "estimate_updated"


@dataclass(frozen=True)
class LockAcquired(DomainEvent):
    lock_id: str = ""
    value: Decimal = Decimal(0)
    currency: str = "CNY"
    expires_at: Optional[datetime] = None

    name = "lock_acquired"


@dataclass(frozen=True)
class LockInvalidated(DomainEvent):
    lock_id: str = ""
    # expired | selection_changed | superseded
    reason: str = ""

    name = "lock_invalidated"


@dataclass(frozen=True)
class PaymentIntentCreated(DomainEvent):
    intent_id: str = ""
    amount: Decimal = Decimal(0)

    name = "payment_intent_created"


@dataclass(frozen=True)
class PaymentSucceeded(DomainEvent):
    intent_id: str = ""
    amount: Decimal = Decimal(0)

    name = "payment_succeeded"


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    intent_id: str = ""
    reason: str = ""

    name = "payment_failed"


@dataclass(frozen=True)
class AutopilotStarted(DomainEvent):
    task_id: str = ""
    verify_level: str = ""
    addons: tuple = ()

    name = "autopilot_started"


@dataclass(frozen=True)
class AutopilotProgress(DomainEvent):
    task_id: str = ""
    percent: int = 0
    step: Optional[str] = None
    note: Optional[str] = None

    name = "autopilot_progress"


@dataclass(frozen=True)
class AutopilotPaused(DomainEvent):
    task_id: str = ""

    name = "autopilot_paused"


@dataclass(frozen=True)
class AutopilotResumed(DomainEvent):
    task_id: str = ""

    name = "autopilot_resumed"


@dataclass(frozen=True)
class AutopilotCompleted(DomainEvent):
    task_id: str = ""
    doc_id: str = ""

    name = "autopilot_completed"


@dataclass(frozen=True)
class AutopilotFailed(DomainEvent):
    task_id: str = ""
    reason: str = ""
    retryable: bool = False

    name = "autopilot_failed"


@dataclass(frozen=True)
class AutopilotCancelled(DomainEvent):
    task_id: str = ""

    name = "autopilot_cancelled"


Listener = Callable[[DomainEvent], None]


class EventBus:
    """
    Synchronous in-process publisher.

    Listeners run in publish order on the caller's thread. A failing
    listener is logged and skipped so it cannot break the state machine.
    """

    def __init__(self):
        self._listeners: dict[int, tuple[Listener, tuple[Type[DomainEvent], ...]]] = {}
        self._next_id = 0

    def subscribe(self, listener: Listener, *event_types: Type[DomainEvent]) -> Subscription:
        """
        Register a listener, optionally filtered to specific event types.

        Returns:
            Subscription handle; cancel() removes the listener.
        """
        key = self._next_id
        self._next_id += 1
        self._listeners[key] = (listener, event_types)
        return Subscription(lambda: self._listeners.pop(key, None))

    def publish(self, event: DomainEvent) -> None:
        for listener, event_types in list(self._listeners.values()):
            if event_types and not isinstance(event, event_types):
                continue
            try:
                listener(event)
            except Exception as e:
                _logger.warning(f"Event listener failed on {event.name}: {e}")

    def listener_count(self) -> int:
        return len(self._listeners)

    def clear(self) -> None:
        self._listeners.clear()


def tracking_listener(event: DomainEvent) -> None:
    """Log every domain event for analytics pipelines."""
    if isinstance(event, AutopilotProgress):
        _logger.debug(f"[TRACK] {event.name}", extra={"project_id": event.project_id})
        return
    _logger.info(
        f"[TRACK] {event.name}",
        extra={"project_id": event.project_id, "event_data": event.to_dict()},
    )
