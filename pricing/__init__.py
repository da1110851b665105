# pricing/__init__.py
"""
Pricing: quote estimates, addon ledger and price locks.
"""

from pricing.addons import ADDON_CATALOG, Addon, AddonLedger, get_addon
from pricing.lock import DEFAULT_LOCK_TTL, LockPolicy, PriceLockManager, is_valid, remaining
from pricing.models import (
    CURRENCY,
    CitationFormat,
    Estimate,
    LanguageLevel,
    PriceLock,
    ProjectParams,
    VerifyLevel,
    to_money,
)
from pricing.quote import QuoteEngine

__all__ = [
    "ADDON_CATALOG",
    "Addon",
    "AddonLedger",
    "get_addon",
    "DEFAULT_LOCK_TTL",
    "LockPolicy",
    "PriceLockManager",
    "is_valid",
    "remaining",
    "CURRENCY",
    "CitationFormat",
    "Estimate",
    "LanguageLevel",
    "PriceLock",
    "ProjectParams",
    "VerifyLevel",
    "to_money",
    "QuoteEngine",
]
