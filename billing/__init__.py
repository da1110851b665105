# billing/__init__.py
"""
Billing: payment intents for locked prices.

Provides:
- PaymentGate (lock -> intent -> confirmed outcome)
- PaymentProvider interface with mock and Stripe implementations
"""

from billing.gate import PaymentGate
from billing.models import PaymentIntent, PaymentOutcome, PaymentStatus, ProviderResult
from billing.providers import MockPaymentProvider, PaymentProvider

__all__ = [
    "PaymentGate",
    "PaymentIntent",
    "PaymentOutcome",
    "PaymentStatus",
    "ProviderResult",
    "MockPaymentProvider",
    "PaymentProvider",
]
