"""Domain-level validation rules for accommodation allocation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class AllocationConfig:
    max_age_gap: int
    supported_genders: tuple[str, ...]
    age_range_years: Optional[int] = None
    max_age_range_years: int = 50


def validate_max_age_gap(max_age_gap: int, limit: int) -> None:
    if isinstance(max_age_gap, bool) or not isinstance(max_age_gap, int):
        raise ValueError("max_age_gap must be an integer")
    if not 1 <= max_age_gap <= limit:
        raise ValueError(f"max_age_gap must be between 1 and {limit} years")


def validate_age_range_years(age_range_years: int, limit: int) -> None:
    if isinstance(age_range_years, bool) or not isinstance(age_range_years, int):
        raise ValueError("age_range_years must be an integer")
    if age_range_years < 1:
        raise ValueError("age_range_years must be a positive number")
    if age_range_years > limit:
        raise ValueError(f"age_range_years must be <= {limit}")


def validate_gender(gender: str, supported_genders: Sequence[str]) -> None:
    if gender not in supported_genders:
        choices = " or ".join(supported_genders)
        raise ValueError(f"gender must be one of {choices}")


def validate_allocation_config(config: AllocationConfig) -> None:
    if config.max_age_gap < 1:
        raise ValueError("max_age_gap must be >= 1")
    if not config.supported_genders:
        raise ValueError("supported_genders must not be empty")
    if len(set(config.supported_genders)) != len(config.supported_genders):
        raise ValueError("supported_genders must be unique")
    if config.age_range_years is not None:
        validate_age_range_years(config.age_range_years, config.max_age_range_years)
