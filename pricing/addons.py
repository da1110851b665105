# pricing/addons.py
"""
Addon catalog and ledger.

The catalog is closed: any id outside it is a programmer error and
raises UnknownAddonError immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping, Optional

from checkout.errors import UnknownAddonError
from pricing.models import to_money


@dataclass(frozen=True)
class Addon:
    """Optional paid deliverable with a fixed price."""

    addon_id: str
    label: str
    price: Decimal

    def to_dict(self) -> dict:
        return {"addon_id": self.addon_id, "label": self.label, "price": str(self.price)}


ADDON_CATALOG: Mapping[str, Addon] = MappingProxyType(
    {
        "evidencePack": Addon("evidencePack", "Evidence package", to_money(15)),
        "defenseCard": Addon("defenseCard", "Defense cue cards", to_money(25)),
        "latex": Addon("latex", "LaTeX export", to_money(10)),
        "aiCheck": Addon("aiCheck", "AI detection report", to_money(20)),
        "plagiarism": Addon("plagiarism", "Plagiarism report", to_money(30)),
        "shareLink": Addon("shareLink", "Share link", to_money(5)),
    }
)


def get_addon(addon_id: str, catalog: Mapping[str, Addon] = ADDON_CATALOG) -> Addon:
    """Look up an addon, raising UnknownAddonError for ids outside the catalog."""
    addon = catalog.get(addon_id)
    if addon is None:
        raise UnknownAddonError(addon_id)
    return addon


class AddonLedger:
    """Tracks the selected addons for one project."""

    def __init__(
        self,
        catalog: Mapping[str, Addon] = ADDON_CATALOG,
        selected: Iterable[str] = (),
    ):
        self._catalog = catalog
        self._selected: FrozenSet[str] = frozenset()
        for addon_id in selected:
            self.toggle(addon_id, True)

    @property
    def selection(self) -> FrozenSet[str]:
        return self._selected

    @property
    def catalog(self) -> Mapping[str, Addon]:
        return self._catalog

    def toggle(self, addon_id: str, on: bool) -> FrozenSet[str]:
        """
        Add or remove an addon.

        Idempotent: adding a present addon or removing an absent one is a
        no-op. The id is validated either way.
        """
        get_addon(addon_id, self._catalog)
        if on:
            self._selected = self._selected | {addon_id}
        else:
            self._selected = self._selected - {addon_id}
        return self._selected

    def total(self, selection: Optional[Iterable[str]] = None) -> Decimal:
        """Sum of catalog prices for the selection (current one by default)."""
        ids = self._selected if selection is None else selection
        return to_money(sum((get_addon(a, self._catalog).price for a in ids), Decimal(0)))
