# pricing/models.py
"""
Pricing data models.

Money is a Decimal in CNY. Every range is a (min, max) tuple and
min <= max is enforced at construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import FrozenSet, Tuple

CURRENCY = "CNY"
CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Normalize a number to a two-decimal Money value."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class VerifyLevel(str, Enum):
    """Citation verification level. Ordered Basic < Standard < Pro."""

    BASIC = "Basic"
    STANDARD = "Standard"
    PRO = "Pro"

    @property
    def rank(self) -> int:
        return _VERIFY_RANK[self]


_VERIFY_RANK = {VerifyLevel.BASIC: 0, VerifyLevel.STANDARD: 1, VerifyLevel.PRO: 2}


class LanguageLevel(str, Enum):
    UG = "UG"
    PG = "PG"
    ESL = "ESL"
    PRO = "Pro"


class CitationFormat(str, Enum):
    APA = "APA"
    MLA = "MLA"
    CHICAGO = "Chicago"
    IEEE = "IEEE"
    GBT = "GBT"


@dataclass(frozen=True)
class ProjectParams:
    """Inputs to the quote engine."""

    word_count: int
    verify_level: VerifyLevel = VerifyLevel.STANDARD
    addons: FrozenSet[str] = frozenset()
    level: LanguageLevel = LanguageLevel.UG
    citation_format: CitationFormat = CitationFormat.APA
    resources: int = 1
    has_style_samples: bool = False
    allow_preprint: bool = True

    def __post_init__(self):
        # Coercion rejects unknown values before any estimate is produced
        object.__setattr__(self, "verify_level", VerifyLevel(self.verify_level))
        object.__setattr__(self, "level", LanguageLevel(self.level))
        object.__setattr__(self, "citation_format", CitationFormat(self.citation_format))
        object.__setattr__(self, "addons", frozenset(self.addons))
        if self.word_count < 0:
            raise ValueError(f"word_count must be >= 0, got {self.word_count}")
        if self.resources < 0:
            raise ValueError(f"resources must be >= 0, got {self.resources}")


def _check_range(name: str, value: tuple) -> None:
    low, high = value
    if low > high:
        raise ValueError(f"{name} min {low} exceeds max {high}")


@dataclass(frozen=True)
class Estimate:
    """Non-binding quote. Recomputed on every selection change, never persisted."""

    price_range: Tuple[Decimal, Decimal]
    eta_minutes: Tuple[int, int]
    cites_range: Tuple[int, int]
    verify_level: VerifyLevel
    verification_rate: float = 0.0
    assumptions: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(
            self, "price_range", (to_money(self.price_range[0]), to_money(self.price_range[1]))
        )
        object.__setattr__(self, "verify_level", VerifyLevel(self.verify_level))
        _check_range("price_range", self.price_range)
        _check_range("eta_minutes", self.eta_minutes)
        _check_range("cites_range", self.cites_range)

    def to_dict(self) -> dict:
        return {
            "price_range": [str(self.price_range[0]), str(self.price_range[1])],
            "eta_minutes": list(self.eta_minutes),
            "cites_range": list(self.cites_range),
            "verify_level": self.verify_level.value,
            "verification_rate": self.verification_rate,
            "assumptions": list(self.assumptions),
        }


@dataclass(frozen=True)
class PriceLock:
    """Time-boxed binding price. Valid iff now < expires_at."""

    lock_id: str
    value: Decimal
    issued_at: datetime
    expires_at: datetime
    currency: str = CURRENCY
    verify_level: VerifyLevel = VerifyLevel.STANDARD
    addons: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "value", to_money(self.value))
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")

    def to_dict(self) -> dict:
        return {
            "lock_id": self.lock_id,
            "value": str(self.value),
            "currency": self.currency,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "verify_level": self.verify_level.value,
            "addons": sorted(self.addons),
        }
