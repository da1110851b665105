# billing/models.py
"""
Payment data models.

PaymentIntent moves NoIntent -> pending -> {succeeded | failed} and is
immutable once terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


@dataclass(frozen=True)
class PaymentIntent:
    """A request to charge one price lock."""

    intent_id: str
    amount: Decimal
    lock_id: str
    created_at: datetime
    currency: str = "CNY"
    status: PaymentStatus = PaymentStatus.PENDING
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "lock_id": self.lock_id,
            "status": self.status.value,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ProviderResult:
    """Raw answer from a payment provider."""

    status: PaymentStatus
    reason: Optional[str] = None


@dataclass(frozen=True)
class PaymentOutcome:
    """Terminal result of confirming an intent."""

    intent_id: str
    status: PaymentStatus
    amount: Decimal
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is PaymentStatus.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "status": self.status.value,
            "amount": str(self.amount),
            "reason": self.reason,
        }
