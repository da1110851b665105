# billing/stripe_provider.py
"""
Stripe PaymentIntents provider.

Stripe calls are blocking, so both run in a worker thread.
Card declines map to a failed result; any other Stripe error is raised
and recorded by the gate as a provider failure.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Optional

import stripe

from billing.models import PaymentStatus, ProviderResult
from billing.providers import PaymentProvider
from billing.stripe_client import get_payment_method, get_stripe, to_minor_units

_logger = logging.getLogger(__name__)


class StripePaymentProvider(PaymentProvider):
    """Charges locks through Stripe PaymentIntents."""

    def __init__(self, payment_method: Optional[str] = None):
        self._payment_method = payment_method or get_payment_method()

    @property
    def source_name(self) -> str:
        return "stripe"

    async def create_intent(self, amount: Decimal, currency: str, idempotency_key: str) -> str:
        client = get_stripe()
        intent = await asyncio.to_thread(
            client.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency.lower(),
            payment_method_types=["card"],
            metadata={"idempotency_key": idempotency_key},
            idempotency_key=idempotency_key,
        )
        _logger.info(f"Created Stripe payment intent {intent.id}", extra={"amount": str(amount)})
        return intent.id

    async def confirm(self, intent_id: str) -> ProviderResult:
        client = get_stripe()
        try:
            intent = await asyncio.to_thread(
                client.PaymentIntent.confirm,
                intent_id,
                payment_method=self._payment_method,
            )
        except stripe.CardError as e:
            _logger.info(f"Stripe declined {intent_id}: {e.user_message}")
            return ProviderResult(PaymentStatus.FAILED, reason=e.code or "card_declined")

        if intent.status == "succeeded":
            return ProviderResult(PaymentStatus.SUCCEEDED)

        error = getattr(intent, "last_payment_error", None)
        reason = getattr(error, "code", None) or intent.status
        return ProviderResult(PaymentStatus.FAILED, reason=reason)
