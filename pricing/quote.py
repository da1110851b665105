# pricing/quote.py
"""
Quote engine: project parameters -> price / time / citation estimate.

Pure and deterministic. Price and verification rate are monotonic in
verification level (Pro >= Standard >= Basic) for identical inputs.
The backend is authoritative for billing; this estimate drives the
outcome panel and the price lock.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from pricing.models import (
    CitationFormat,
    Estimate,
    LanguageLevel,
    ProjectParams,
    VerifyLevel,
)

MIN_WORDS = 300
MAX_WORDS = 20000

# CNY per 100 words
BASE_RATE_PER_100_WORDS = Decimal("2.5")

VERIFY_MULTIPLIER = {
    VerifyLevel.BASIC: Decimal("1.00"),
    VerifyLevel.STANDARD: Decimal("1.12"),
    VerifyLevel.PRO: Decimal("1.25"),
}

VERIFICATION_RATE = {
    VerifyLevel.BASIC: 0.80,
    VerifyLevel.STANDARD: 0.90,
    VerifyLevel.PRO: 0.98,
}

LEVEL_SURCHARGE = {
    LanguageLevel.UG: Decimal("0"),
    LanguageLevel.PG: Decimal("0.06"),
    LanguageLevel.ESL: Decimal("0.05"),
    LanguageLevel.PRO: Decimal("0.12"),
}

FORMAT_SURCHARGE = {
    CitationFormat.APA: Decimal("0"),
    CitationFormat.MLA: Decimal("0"),
    CitationFormat.CHICAGO: Decimal("0.02"),
    CitationFormat.IEEE: Decimal("0.03"),
    CitationFormat.GBT: Decimal("0.05"),
}

RESOURCE_SURCHARGE = Decimal("0.03")
STYLE_MULTIPLIER = Decimal("1.03")

# +/- 8% around the point estimate
RANGE_LOW = Decimal("0.92")
RANGE_HIGH = Decimal("1.08")

MIN_CITES = 6
MAX_CITES = 40
ADDON_ETA_MINUTES = 2


def _round(value) -> int:
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _pct(value: Decimal) -> str:
    return f"{(value * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP)}%"


class QuoteEngine:
    """Computes estimates. Stateless; safe to share between controllers."""

    def estimate(self, params: ProjectParams) -> Estimate:
        wc = max(MIN_WORDS, min(MAX_WORDS, params.word_count))
        base = math.ceil(wc / 100) * BASE_RATE_PER_100_WORDS

        k_level = LEVEL_SURCHARGE[params.level]
        k_format = FORMAT_SURCHARGE[params.citation_format]
        k_verify = VERIFY_MULTIPLIER[params.verify_level]
        k_resources = 1 + RESOURCE_SURCHARGE * params.resources
        k_style = STYLE_MULTIPLIER if params.has_style_samples else Decimal("1")

        value = _round(base * (1 + k_level + k_format) * k_verify * k_resources * k_style)
        price_range = (
            Decimal(_round(value * RANGE_LOW)),
            Decimal(_round(value * RANGE_HIGH)),
        )

        cites = max(MIN_CITES, min(MAX_CITES, _round(Decimal(wc) / 250)))
        addon_minutes = ADDON_ETA_MINUTES * len(params.addons)
        eta = (
            _round(Decimal(wc) / 200) + addon_minutes,
            _round(Decimal(wc) / 120) + addon_minutes,
        )

        assumptions = []
        if k_level > 0:
            assumptions.append(f"Language level {params.level.value} +{_pct(k_level)}")
        if k_format > 0:
            assumptions.append(f"Citation format {params.citation_format.value} +{_pct(k_format)}")
        if k_verify > 1:
            assumptions.append(f"{params.verify_level.value} verification +{_pct(k_verify - 1)}")
        if k_resources > 1:
            assumptions.append(f"Multiple resource types +{_pct(k_resources - 1)}")
        if k_style > 1:
            assumptions.append(f"Style sample alignment +{_pct(k_style - 1)}")

        return Estimate(
            price_range=price_range,
            eta_minutes=eta,
            cites_range=(cites - 2, cites + 2),
            verify_level=params.verify_level,
            verification_rate=VERIFICATION_RATE[params.verify_level],
            assumptions=tuple(assumptions),
        )


def estimate(params: ProjectParams) -> Estimate:
    """Convenience wrapper around a default QuoteEngine."""
    return QuoteEngine().estimate(params)
