# billing/providers.py
"""
Payment provider interface.

Both calls are coroutines; blocking SDKs run them in a worker thread.
Implementations must honour the idempotency key so a retried create
never produces a second charge.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import uuid4

from billing.models import PaymentStatus, ProviderResult

_logger = logging.getLogger(__name__)


class PaymentProvider(ABC):
    """
    Abstract base class for payment providers.

    Each provider:
    1. Registers an intent for an exact amount
    2. Confirms it, resolving to succeeded or failed
    """

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Provider identifier (e.g., 'mock', 'stripe')."""
        ...

    @abstractmethod
    async def create_intent(self, amount: Decimal, currency: str, idempotency_key: str) -> str:
        """
        Register a payment intent.

        Returns:
            Provider intent id
        """
        ...

    @abstractmethod
    async def confirm(self, intent_id: str) -> ProviderResult:
        """
        Submit the intent for capture.

        Once submitted the charge cannot be withdrawn; the call always
        resolves to succeeded or failed. Raising is reserved for
        transport problems, which the gate records as a failure.
        """
        ...


class MockPaymentProvider(PaymentProvider):
    """
    In-memory provider for development and tests.

    Outcomes are scripted: each confirm() pops the next entry of
    `outcomes` ("succeeded", "failed" or "failed:<reason>") and falls
    back to `default` once the script is exhausted.
    """

    def __init__(
        self,
        outcomes: Optional[Iterable[str]] = None,
        default: str = "succeeded",
        latency_ms: int = 0,
    ):
        self._outcomes: List[str] = list(outcomes or [])
        self._default = default
        self.latency_ms = latency_ms
        self.intents: dict[str, Decimal] = {}
        self.idempotency_keys: dict[str, str] = {}
        self.confirm_calls: List[str] = []

    @property
    def source_name(self) -> str:
        return "mock"

    async def create_intent(self, amount: Decimal, currency: str, idempotency_key: str) -> str:
        await asyncio.sleep(0)
        existing = self.idempotency_keys.get(idempotency_key)
        if existing:
            return existing
        intent_id = f"pi_{uuid4().hex[:20]}"
        self.intents[intent_id] = amount
        self.idempotency_keys[idempotency_key] = intent_id
        return intent_id

    async def confirm(self, intent_id: str) -> ProviderResult:
        self.confirm_calls.append(intent_id)
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)
        else:
            await asyncio.sleep(0)

        scripted = self._outcomes.pop(0) if self._outcomes else self._default
        status, _, reason = scripted.partition(":")
        if status == PaymentStatus.SUCCEEDED.value:
            return ProviderResult(PaymentStatus.SUCCEEDED)
        return ProviderResult(PaymentStatus.FAILED, reason=reason or "card_declined")
