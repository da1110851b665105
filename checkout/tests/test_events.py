# checkout/tests/test_events.py
"""Tests for domain events, the event bus and tracking."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

from checkout.events import (
    EventBus,
    LockAcquired,
    LockInvalidated,
    StateChanged,
    Subscription,
    tracking_listener,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def lock_acquired() -> LockAcquired:
    return LockAcquired(
        project_id="proj_1",
        occurred_at=NOW,
        lock_id="lock_1",
        value=Decimal("115.00"),
        currency="CNY",
        expires_at=NOW,
    )


class TestDomainEvents:
    """Tests for event serialization."""

    def test_to_dict_is_json_ready(self):
        data = lock_acquired().to_dict()

        assert data["event"] == "lock_acquired"
        assert data["value"] == "115.00"
        assert data["occurred_at"] == NOW.isoformat()
        json.dumps(data)


class TestEventBus:
    """Tests for publish / subscribe."""

    def test_listener_receives_events(self):
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)

        bus.publish(lock_acquired())
        assert [e.name for e in seen] == ["lock_acquired"]

    def test_type_filter(self):
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append, LockInvalidated, StateChanged)

        bus.publish(lock_acquired())
        bus.publish(LockInvalidated(project_id="proj_1", occurred_at=NOW, lock_id="lock_1", reason="expired"))

        assert [e.name for e in seen] == ["lock_invalidated"]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        subscription = bus.subscribe(seen.append)
        subscription.cancel()

        bus.publish(lock_acquired())
        assert seen == []
        assert bus.listener_count() == 0

    def test_subscription_as_context_manager(self):
        bus = EventBus()
        with bus.subscribe(lambda e: None) as subscription:
            assert subscription.active
            assert bus.listener_count() == 1
        assert bus.listener_count() == 0

    def test_failing_listener_is_isolated(self, caplog):
        bus = EventBus()
        seen = []

        def broken(event):
            raise ValueError("boom")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        with caplog.at_level(logging.WARNING, logger="checkout.events"):
            bus.publish(lock_acquired())

        assert len(seen) == 1
        assert "Event listener failed on lock_acquired" in caplog.text

    def test_empty_subscription_is_inactive(self):
        subscription = Subscription()
        assert subscription.active is False
        subscription.cancel()


class TestTracking:
    """Tests for the [TRACK] logging listener."""

    def test_tracking_logs_event_name(self, caplog):
        with caplog.at_level(logging.INFO, logger="checkout.events"):
            tracking_listener(lock_acquired())

        assert "[TRACK] lock_acquired" in caplog.text
        record = caplog.records[-1]
        assert record.project_id == "proj_1"
        assert record.event_data["lock_id"] == "lock_1"
