"""Pure age rules shared by every allocation path."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional


def age_of(birth_date: date, as_of: Optional[date] = None) -> int:
    """Whole calendar years between ``birth_date`` and ``as_of`` (default today)."""
    reference = as_of or date.today()
    age = reference.year - birth_date.year
    if (reference.month, reference.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def age_span(ages: Iterable[int]) -> Optional[tuple[int, int]]:
    """Return ``(min, max)`` of ``ages`` or ``None`` when empty."""
    values = list(ages)
    if not values:
        return None
    return min(values), max(values)


def is_age_compatible(
    existing_ages: Iterable[int],
    candidate_age: int,
    max_gap: int,
) -> bool:
    existing = list(existing_ages)
    if not existing:
        return True
    combined = existing + [candidate_age]
    return max(combined) - min(combined) <= max_gap


def is_band_compatible(
    existing_ages: Iterable[int],
    band_min: int,
    band_max: int,
    max_gap: int,
) -> bool:
    """Whether a whole age band can share a room with ``existing_ages``.

    Empty rooms accept any band.
    """
    existing = list(existing_ages)
    if not existing:
        return True
    return max(max(existing), band_max) - min(min(existing), band_min) <= max_gap
