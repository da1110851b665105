# billing/tests/test_payment_gate.py
"""
Tests for the payment gate.

Tests:
- Intent creation from payable locks only
- Idempotent confirmation (stored outcome, shared in-flight call)
- Lock consumption on success
- Provider errors recorded as failures
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from billing.gate import PaymentGate
from billing.models import PaymentStatus
from billing.providers import MockPaymentProvider
from checkout.clock import ManualClock
from checkout.errors import (
    ExpiredLockError,
    InvalidAmountError,
    InvalidTransitionError,
    PaymentFailedError,
)
from pricing.lock import PriceLockManager
from pricing.models import Estimate, VerifyLevel


def make_estimate(low="100", high="150") -> Estimate:
    return Estimate(
        price_range=(Decimal(low), Decimal(high)),
        eta_minutes=(5, 8),
        cites_range=(4, 8),
        verify_level=VerifyLevel.STANDARD,
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def locks(clock):
    return PriceLockManager(clock=clock)


def make_gate(locks, clock, **provider_kwargs):
    provider = MockPaymentProvider(**provider_kwargs)
    return PaymentGate(provider, locks, clock), provider


class TestCreateIntent:
    """Tests for creating intents."""

    def test_intent_carries_lock_amount(self, locks, clock):
        gate, provider = make_gate(locks, clock)
        lock = locks.acquire(make_estimate(), Decimal("15"))

        intent = asyncio.run(gate.create_intent(lock))

        assert intent.amount == Decimal("115.00")
        assert intent.lock_id == lock.lock_id
        assert intent.status is PaymentStatus.PENDING
        assert provider.intents[intent.intent_id] == Decimal("115.00")

    def test_same_pending_lock_returns_same_intent(self, locks, clock):
        """Double submit never produces two intents."""
        gate, provider = make_gate(locks, clock)
        lock = locks.acquire(make_estimate())

        first = asyncio.run(gate.create_intent(lock))
        second = asyncio.run(gate.create_intent(lock))

        assert first.intent_id == second.intent_id
        assert len(provider.intents) == 1

    def test_expired_lock_rejected(self, locks, clock):
        gate, _ = make_gate(locks, clock)
        lock = locks.acquire(make_estimate())
        clock.advance(minutes=15)

        with pytest.raises(ExpiredLockError):
            asyncio.run(gate.create_intent(lock))

    def test_zero_value_rejected(self, locks, clock):
        gate, _ = make_gate(locks, clock)
        lock = locks.acquire(make_estimate(low="0", high="0"))

        with pytest.raises(InvalidAmountError):
            asyncio.run(gate.create_intent(lock))

    def test_provider_error_becomes_payment_failed(self, locks, clock):
        provider = MagicMock()
        provider.create_intent = AsyncMock(side_effect=RuntimeError("network down"))
        provider.source_name = "broken"
        gate = PaymentGate(provider, locks, clock)

        with pytest.raises(PaymentFailedError) as exc_info:
            asyncio.run(gate.create_intent(locks.acquire(make_estimate())))
        assert "network down" in exc_info.value.reason

    def test_lock_checked_before_provider_call(self, locks, clock):
        provider = MagicMock()
        provider.create_intent = AsyncMock(return_value="pi_1")
        gate = PaymentGate(provider, locks, clock)
        lock = locks.acquire(make_estimate())
        clock.advance(minutes=15)

        with pytest.raises(ExpiredLockError):
            gate.check_lock(lock)
        with pytest.raises(ExpiredLockError):
            asyncio.run(gate.create_intent(lock))
        provider.create_intent.assert_not_called()

    def test_concurrent_creates_share_one_request(self, locks, clock):
        gate, provider = make_gate(locks, clock)
        lock = locks.acquire(make_estimate())

        async def run():
            return await asyncio.gather(gate.create_intent(lock), gate.create_intent(lock))

        first, second = asyncio.run(run())

        assert first.intent_id == second.intent_id
        assert len(provider.idempotency_keys) == 1


class TestConfirm:
    """Tests for confirming intents."""

    def test_success_consumes_lock(self, locks, clock):
        gate, _ = make_gate(locks, clock)
        lock = locks.acquire(make_estimate())
        intent = asyncio.run(gate.create_intent(lock))

        outcome = asyncio.run(gate.confirm(intent.intent_id))

        assert outcome.succeeded
        assert outcome.amount == Decimal("100.00")
        assert locks.is_spent(lock)
        with pytest.raises(ExpiredLockError) as exc_info:
            asyncio.run(gate.create_intent(lock))
        assert exc_info.value.reason == "spent"

    def test_confirm_twice_returns_stored_outcome(self, locks, clock):
        """The provider is called once; the second confirm replays the outcome."""
        gate, provider = make_gate(locks, clock)
        intent = asyncio.run(gate.create_intent(locks.acquire(make_estimate())))

        async def run():
            first = await gate.confirm(intent.intent_id)
            second = await gate.confirm(intent.intent_id)
            return first, second

        first, second = asyncio.run(run())

        assert first == second
        assert provider.confirm_calls == [intent.intent_id]
        assert gate.get_outcome(intent.intent_id) == first

    def test_concurrent_confirms_share_one_call(self, locks, clock):
        gate, provider = make_gate(locks, clock, latency_ms=20)
        intent = asyncio.run(gate.create_intent(locks.acquire(make_estimate())))

        async def run():
            return await asyncio.gather(
                gate.confirm(intent.intent_id),
                gate.confirm(intent.intent_id),
            )

        first, second = asyncio.run(run())

        assert first == second
        assert len(provider.confirm_calls) == 1

    def test_decline_keeps_lock_payable(self, locks, clock):
        """After a decline a new intent may be created for the same lock."""
        gate, provider = make_gate(locks, clock, outcomes=["failed:insufficient_funds"])
        lock = locks.acquire(make_estimate())
        failed_intent = asyncio.run(gate.create_intent(lock))

        outcome = asyncio.run(gate.confirm(failed_intent.intent_id))

        assert outcome.status is PaymentStatus.FAILED
        assert outcome.reason == "insufficient_funds"
        assert gate.get_intent(failed_intent.intent_id).status is PaymentStatus.FAILED

        retry_intent = asyncio.run(gate.create_intent(lock))
        assert retry_intent.intent_id != failed_intent.intent_id
        assert asyncio.run(gate.confirm(retry_intent.intent_id)).succeeded

    def test_provider_exception_recorded_as_failure(self, locks, clock):
        gate, provider = make_gate(locks, clock)
        intent = asyncio.run(gate.create_intent(locks.acquire(make_estimate())))

        async def boom(intent_id):
            raise RuntimeError("timeout")

        provider.confirm = boom
        outcome = asyncio.run(gate.confirm(intent.intent_id))

        assert outcome.status is PaymentStatus.FAILED
        assert outcome.reason == "provider_error: timeout"

    def test_unknown_intent_rejected(self, locks, clock):
        gate, _ = make_gate(locks, clock)
        with pytest.raises(InvalidTransitionError):
            asyncio.run(gate.confirm("pi_missing"))
