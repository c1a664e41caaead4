# src/beacon/contracts/consent.py
"""Consent record contract.

One ConsentRecord exists per installation. The "necessary" category is
fixed to granted; ``granted`` is derived as the OR of the mutable
categories and is never stored independently of them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from beacon.contracts.enums import MUTABLE_CONSENT_CATEGORIES, ConsentCategory


@dataclass(frozen=True, slots=True)
class ConsentCategories:
    """Per-category consent decisions."""

    analytics: bool = False
    marketing: bool = False
    personalization: bool = False

    @property
    def necessary(self) -> bool:
        """Necessary processing is always permitted."""
        return True

    @classmethod
    def all_granted(cls) -> ConsentCategories:
        return cls(analytics=True, marketing=True, personalization=True)

    @classmethod
    def from_mapping(cls, values: Mapping[ConsentCategory | str, bool]) -> ConsentCategories:
        """Build from a category->bool mapping; unknown keys are ignored.

        A ``necessary`` entry is accepted but has no effect.
        """
        normalized = {ConsentCategory(str(key)): bool(value) for key, value in values.items() if str(key) in _KNOWN}
        return cls(
            analytics=normalized.get(ConsentCategory.ANALYTICS, False),
            marketing=normalized.get(ConsentCategory.MARKETING, False),
            personalization=normalized.get(ConsentCategory.PERSONALIZATION, False),
        )

    def get(self, category: ConsentCategory) -> bool:
        if category is ConsentCategory.NECESSARY:
            return True
        return bool(getattr(self, category.value))

    @property
    def any_granted(self) -> bool:
        return any(self.get(category) for category in MUTABLE_CONSENT_CATEGORIES)

    def to_dict(self) -> dict[str, bool]:
        return {
            ConsentCategory.NECESSARY.value: True,
            ConsentCategory.ANALYTICS.value: self.analytics,
            ConsentCategory.MARKETING.value: self.marketing,
            ConsentCategory.PERSONALIZATION.value: self.personalization,
        }


_KNOWN = frozenset(category.value for category in ConsentCategory)


@dataclass(frozen=True, slots=True)
class ConsentRecord:
    """The user's consent decision at a point in time.

    Attributes:
        categories: Per-category decisions
        timestamp_ms: When the decision was made (epoch milliseconds)
        version: Consent policy version the user answered
    """

    categories: ConsentCategories
    timestamp_ms: int
    version: str

    @property
    def granted(self) -> bool:
        """True when any mutable category is granted."""
        return self.categories.any_granted

    @classmethod
    def opt_out(cls, *, version: str, timestamp_ms: int) -> ConsentRecord:
        """Privacy-by-default record: only necessary processing allowed."""
        return cls(categories=ConsentCategories(), timestamp_ms=timestamp_ms, version=version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "granted": self.granted,
            "timestamp_ms": self.timestamp_ms,
            "version": self.version,
            "categories": self.categories.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConsentRecord:
        """Restore a persisted record.

        ``granted`` in the stored data is ignored and re-derived from the
        categories.

        Raises:
            KeyError: If required fields are missing
            ValueError: If field values have the wrong shape
        """
        categories = data["categories"]
        if not isinstance(categories, Mapping):
            raise ValueError(f"categories must be a mapping, got {type(categories).__name__}")
        return cls(
            categories=ConsentCategories.from_mapping(categories),
            timestamp_ms=int(data["timestamp_ms"]),
            version=str(data["version"]),
        )
