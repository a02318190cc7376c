"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return _env_int(name, 0)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings.

    Tests derive variants with ``dataclasses.replace`` instead of mutating
    process environment.
    """

    app_name: str = "Accommodation Allocation Engine"
    app_version: str = "1.0.0"

    database_path: Path = Path("data/accommodation.db")
    database_timeout_seconds: float = 10.0

    log_level: str = "INFO"
    log_format: str = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

    admin_token: Optional[str] = None
    default_operator: str = "system"

    supported_genders: tuple[str, ...] = ("Female", "Male")
    accommodation_default_max_age_gap: int = 5
    accommodation_max_age_gap_limit: int = 20
    accommodation_max_age_range_years: int = 50
    accommodation_age_gap_config_key: str = "accommodation_max_age_gap"

    random_allocation_seed: Optional[int] = None

    synthetic_seed_enabled: bool = False
    synthetic_random_seed: int = 42
    synthetic_room_count: int = 8
    synthetic_registrant_count: int = 40


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings from environment variables once per process."""
    return Settings(
        app_name=_env_str("APP_NAME", Settings.app_name),
        app_version=_env_str("APP_VERSION", Settings.app_version),
        database_path=Path(_env_str("DATABASE_PATH", str(Settings.database_path))),
        database_timeout_seconds=float(
            _env_int("DATABASE_TIMEOUT_SECONDS", int(Settings.database_timeout_seconds))
        ),
        log_level=_env_str("LOG_LEVEL", Settings.log_level),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        default_operator=_env_str("DEFAULT_OPERATOR", Settings.default_operator),
        accommodation_default_max_age_gap=_env_int(
            "ACCOMMODATION_DEFAULT_MAX_AGE_GAP",
            Settings.accommodation_default_max_age_gap,
        ),
        accommodation_max_age_gap_limit=_env_int(
            "ACCOMMODATION_MAX_AGE_GAP_LIMIT",
            Settings.accommodation_max_age_gap_limit,
        ),
        random_allocation_seed=_env_optional_int("RANDOM_ALLOCATION_SEED"),
        synthetic_seed_enabled=_env_bool("SEED_SYNTHETIC_DATA", Settings.synthetic_seed_enabled),
        synthetic_random_seed=_env_int("SYNTHETIC_RANDOM_SEED", Settings.synthetic_random_seed),
    )
