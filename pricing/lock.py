# pricing/lock.py
"""
Price locks.

A lock turns an estimate into a binding, time-boxed price:
- value = bound picked from estimate.price_range by LockPolicy + addon total
- expires_at = issued_at + TTL
- at most one current lock; acquiring supersedes the previous one
- a lock consumed by a successful payment is spent and cannot back another

Expiry is passive: nothing fires at expires_at. Callers compare against
the clock when they read state or attempt a transition.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional
from uuid import uuid4

from checkout.clock import Clock
from checkout.errors import ExpiredLockError
from pricing.models import CENT, Estimate, PriceLock, to_money

_logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = timedelta(minutes=15)


class LockPolicy(str, Enum):
    """Which point of the estimate range a lock commits to."""

    LOWER = "lower"
    MIDPOINT = "midpoint"
    UPPER = "upper"

    def pick(self, price_range: tuple) -> Decimal:
        low, high = price_range
        if self is LockPolicy.LOWER:
            return to_money(low)
        if self is LockPolicy.UPPER:
            return to_money(high)
        return ((Decimal(low) + Decimal(high)) / 2).quantize(CENT, rounding=ROUND_HALF_UP)


def is_valid(lock: PriceLock, now: datetime) -> bool:
    """A lock is valid strictly before expires_at."""
    return now < lock.expires_at


def remaining(lock: PriceLock, now: datetime) -> timedelta:
    """Time left on the lock, clamped to zero. For countdown display only."""
    return max(lock.expires_at - now, timedelta(0))


class PriceLockManager:
    """Owns the current lock for one project."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_LOCK_TTL,
        policy: LockPolicy = LockPolicy.LOWER,
        clock: Optional[Clock] = None,
    ):
        if ttl <= timedelta(0):
            raise ValueError("Lock TTL must be positive")
        self._ttl = ttl
        self._policy = LockPolicy(policy)
        self._clock = clock or Clock()
        self._current: Optional[PriceLock] = None
        self._spent: set[str] = set()

    @property
    def current(self) -> Optional[PriceLock]:
        return self._current

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def policy(self) -> LockPolicy:
        return self._policy

    def acquire(
        self,
        estimate: Estimate,
        addons_total: Decimal = Decimal(0),
        addons: Iterable[str] = (),
    ) -> PriceLock:
        """
        Issue a new lock from an estimate plus the addon total.

        Supersedes any lock held so far.
        """
        issued_at = self._clock.now()
        lock = PriceLock(
            lock_id=f"lock_{uuid4().hex[:16]}",
            value=self._policy.pick(estimate.price_range) + to_money(addons_total),
            issued_at=issued_at,
            expires_at=issued_at + self._ttl,
            verify_level=estimate.verify_level,
            addons=frozenset(addons),
        )
        previous, self._current = self._current, lock
        if previous is not None:
            _logger.info(
                f"Lock {previous.lock_id} superseded by {lock.lock_id}",
                extra={"lock_id": lock.lock_id},
            )
        _logger.info(
            f"Acquired price lock {lock.value} {lock.currency}",
            extra={"lock_id": lock.lock_id, "expires_at": lock.expires_at.isoformat()},
        )
        return lock

    def is_valid(self, lock: PriceLock, now: Optional[datetime] = None) -> bool:
        return is_valid(lock, now or self._clock.now())

    def remaining(self, lock: PriceLock, now: Optional[datetime] = None) -> timedelta:
        return remaining(lock, now or self._clock.now())

    def is_spent(self, lock: PriceLock) -> bool:
        return lock.lock_id in self._spent

    def check_payable(self, lock: Optional[PriceLock], now: Optional[datetime] = None) -> None:
        """
        Raise ExpiredLockError unless the lock can back a payment.

        Payable means: current (not superseded or invalidated), unspent,
        and not expired.
        """
        if lock is None:
            raise ExpiredLockError("No price lock held", reason="missing")
        if self.is_spent(lock):
            raise ExpiredLockError(
                f"Lock {lock.lock_id} was already used for a payment",
                reason="spent",
                lock_id=lock.lock_id,
            )
        if self._current is None or self._current.lock_id != lock.lock_id:
            raise ExpiredLockError(
                f"Lock {lock.lock_id} is no longer current",
                reason="superseded",
                lock_id=lock.lock_id,
            )
        if not self.is_valid(lock, now):
            raise ExpiredLockError(
                f"Lock {lock.lock_id} expired at {lock.expires_at.isoformat()}",
                reason="expired",
                lock_id=lock.lock_id,
            )

    def invalidate(self, reason: str = "invalidated") -> Optional[PriceLock]:
        """Drop the current lock. Returns it, or None if none was held."""
        lock, self._current = self._current, None
        if lock is not None:
            _logger.info(f"Lock {lock.lock_id} invalidated: {reason}", extra={"lock_id": lock.lock_id})
        return lock

    def consume(self, lock: PriceLock) -> None:
        """Mark the lock spent after a successful payment."""
        self._spent.add(lock.lock_id)
        if self._current is not None and self._current.lock_id == lock.lock_id:
            self._current = None
        _logger.info(f"Lock {lock.lock_id} consumed", extra={"lock_id": lock.lock_id})
