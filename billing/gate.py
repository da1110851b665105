# billing/gate.py
"""
Payment gate: price lock -> payment intent -> confirmed outcome.

Guarantees:
- intents are only created from a payable lock (current, unspent, unexpired)
- confirm() on a terminal intent returns the stored outcome without
  calling the provider again
- concurrent create_intent() calls for one lock share one provider call
- concurrent confirm() calls on a pending intent share one provider call
- a successful payment consumes the lock so it cannot back a second intent
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from billing.models import PaymentIntent, PaymentOutcome, PaymentStatus, ProviderResult
from billing.providers import PaymentProvider
from checkout.clock import Clock
from checkout.errors import InvalidAmountError, InvalidTransitionError, PaymentFailedError
from pricing.lock import PriceLockManager
from pricing.models import PriceLock

_logger = logging.getLogger(__name__)


class PaymentGate:
    """Turns locked prices into confirmed payments for one project."""

    def __init__(
        self,
        provider: PaymentProvider,
        locks: PriceLockManager,
        clock: Optional[Clock] = None,
    ):
        self._provider = provider
        self._locks = locks
        self._clock = clock or Clock()
        self._intents: dict[str, PaymentIntent] = {}
        self._locks_by_intent: dict[str, PriceLock] = {}
        self._outcomes: dict[str, PaymentOutcome] = {}
        self._creating: dict[str, asyncio.Future] = {}
        self._inflight: dict[str, asyncio.Future] = {}
        self._attempts: dict[str, int] = {}

    @property
    def provider(self) -> PaymentProvider:
        return self._provider

    def get_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        return self._intents.get(intent_id)

    def get_outcome(self, intent_id: str) -> Optional[PaymentOutcome]:
        return self._outcomes.get(intent_id)

    def check_lock(self, lock: Optional[PriceLock]) -> None:
        """
        Raise unless the lock can back a new intent.

        Raises:
            ExpiredLockError: lock expired, superseded, spent or missing
            InvalidAmountError: lock value is not positive
        """
        self._locks.check_payable(lock, self._clock.now())
        if lock.value <= 0:
            raise InvalidAmountError(f"Lock {lock.lock_id} has non-positive value {lock.value}")

    async def create_intent(self, lock: Optional[PriceLock]) -> PaymentIntent:
        """
        Create a payment intent for a lock.

        A pending intent already backed by the same lock is returned as is,
        and concurrent calls for one lock share a single provider request,
        so a re-submitted "pay" click never produces two intents.

        Raises:
            ExpiredLockError: lock expired, superseded, spent or missing
            InvalidAmountError: lock value is not positive
            PaymentFailedError: provider could not create the intent
        """
        self.check_lock(lock)

        for intent in self._intents.values():
            if intent.lock_id == lock.lock_id and intent.status is PaymentStatus.PENDING:
                return intent

        creating = self._creating.get(lock.lock_id)
        if creating is None:
            creating = asyncio.ensure_future(self._register(lock))
            self._creating[lock.lock_id] = creating
        return await asyncio.shield(creating)

    async def _register(self, lock: PriceLock) -> PaymentIntent:
        attempt = self._attempts.get(lock.lock_id, 0) + 1
        self._attempts[lock.lock_id] = attempt
        try:
            intent_id = await self._provider.create_intent(
                lock.value, lock.currency, idempotency_key=f"{lock.lock_id}:{attempt}"
            )
        except Exception as e:
            _logger.error(f"Payment provider error creating intent for {lock.lock_id}: {e}")
            raise PaymentFailedError(f"provider_error: {e}") from e
        finally:
            self._creating.pop(lock.lock_id, None)
        intent = PaymentIntent(
            intent_id=intent_id,
            amount=lock.value,
            lock_id=lock.lock_id,
            currency=lock.currency,
            created_at=self._clock.now(),
        )
        self._intents[intent_id] = intent
        self._locks_by_intent[intent_id] = lock
        _logger.info(
            f"Created payment intent {intent_id} for {lock.value} {lock.currency}",
            extra={"lock_id": lock.lock_id, "provider": self._provider.source_name},
        )
        return intent

    async def confirm(self, intent_id: str) -> PaymentOutcome:
        """
        Confirm an intent with the provider.

        Idempotent: a terminal intent returns its stored outcome and a
        pending one in flight is awaited rather than resubmitted. Once
        submitted the provider call runs to completion even if the caller
        stops waiting.

        Raises:
            InvalidTransitionError: unknown intent id
        """
        outcome = self._outcomes.get(intent_id)
        if outcome is not None:
            return outcome

        intent = self._intents.get(intent_id)
        if intent is None:
            raise InvalidTransitionError("no intent", "confirm", f"unknown intent {intent_id}")

        inflight = self._inflight.get(intent_id)
        if inflight is None:
            inflight = asyncio.ensure_future(self._submit(intent))
            self._inflight[intent_id] = inflight
        return await asyncio.shield(inflight)

    async def _submit(self, intent: PaymentIntent) -> PaymentOutcome:
        try:
            result = await self._provider.confirm(intent.intent_id)
        except Exception as e:
            _logger.error(f"Payment provider error confirming {intent.intent_id}: {e}")
            result = ProviderResult(PaymentStatus.FAILED, reason=f"provider_error: {e}")
        finally:
            self._inflight.pop(intent.intent_id, None)
        return self._finalize(intent, result)

    def _finalize(self, intent: PaymentIntent, result: ProviderResult) -> PaymentOutcome:
        status = result.status if result.status.is_terminal else PaymentStatus.FAILED
        reason = None if status is PaymentStatus.SUCCEEDED else (result.reason or "unknown")

        self._intents[intent.intent_id] = replace(intent, status=status, reason=reason)
        outcome = PaymentOutcome(
            intent_id=intent.intent_id,
            status=status,
            amount=intent.amount,
            reason=reason,
        )
        self._outcomes[intent.intent_id] = outcome

        if status is PaymentStatus.SUCCEEDED:
            self._locks.consume(self._locks_by_intent[intent.intent_id])
            _logger.info(f"Payment {intent.intent_id} succeeded", extra={"amount": str(intent.amount)})
        else:
            _logger.warning(f"Payment {intent.intent_id} failed: {reason}")
        return outcome
