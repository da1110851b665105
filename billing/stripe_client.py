# billing/stripe_client.py
"""
Stripe SDK initialization and configuration.

Environment variables:
- STRIPE_SECRET_KEY: Stripe API secret key (required for the stripe provider)
- STRIPE_PAYMENT_METHOD: Payment method used for server-side confirmation
- STRIPE_TEST_MODE: Set to "true" to use test mode (default: true)
"""

from __future__ import annotations

import logging
import os
from decimal import ROUND_HALF_UP, Decimal

import stripe

_logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2024-06-20"


def get_stripe_key() -> str:
    """Get Stripe secret key from environment."""
    return os.environ.get("STRIPE_SECRET_KEY", "")


def get_payment_method() -> str:
    """Payment method for server-side confirmation (test card by default)."""
    return os.environ.get("STRIPE_PAYMENT_METHOD", "pm_card_visa")


def is_test_mode() -> bool:
    """Check if running in Stripe test mode."""
    return os.environ.get("STRIPE_TEST_MODE", "true").lower() == "true"


def is_stripe_enabled() -> bool:
    """Stripe is usable once a plausible secret key is configured."""
    key = get_stripe_key()
    return bool(key and len(key) > 10)


def init_stripe() -> bool:
    """
    Initialize Stripe SDK with API key.

    Returns:
        True if initialized successfully, False otherwise
    """
    if not is_stripe_enabled():
        _logger.warning("STRIPE_SECRET_KEY not set. Stripe provider disabled.")
        return False

    stripe.api_key = get_stripe_key()
    stripe.api_version = STRIPE_API_VERSION

    mode = "test" if is_test_mode() else "live"
    _logger.info(f"Stripe initialized in {mode} mode")
    return True


def get_stripe():
    """
    Get initialized Stripe module.

    Raises:
        RuntimeError: If Stripe is not initialized
    """
    if not stripe.api_key:
        if not init_stripe():
            raise RuntimeError("Stripe not initialized. Check STRIPE_SECRET_KEY.")
    return stripe


def to_minor_units(amount: Decimal) -> int:
    """CNY yuan -> fen, as Stripe expects integer minor units."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
