"""Runtime accommodation settings persisted in SystemConfig."""

from __future__ import annotations

from typing import Optional

from backend.domain.constraints import validate_max_age_gap
from backend.repository.data_repository import DataRepository
from backend.services.errors import AllocationValidationError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AccommodationConfigService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def get_max_age_gap(self) -> int:
        """Return the stored age gap, or the default when unset, unreadable or out of range."""
        default = self._settings.accommodation_default_max_age_gap
        raw_value = self._repository.get_config_value(
            self._settings.accommodation_age_gap_config_key
        )
        if raw_value is None:
            return default
        try:
            max_age_gap = int(raw_value)
            validate_max_age_gap(max_age_gap, self._settings.accommodation_max_age_gap_limit)
        except ValueError:
            logger.warning(
                "Ignoring invalid age gap config | value=%r | default=%s",
                raw_value,
                default,
            )
            return default
        return max_age_gap

    def set_max_age_gap(self, max_age_gap: int) -> int:
        try:
            validate_max_age_gap(max_age_gap, self._settings.accommodation_max_age_gap_limit)
        except ValueError as exc:
            raise AllocationValidationError(str(exc)) from exc
        self._repository.set_config_value(
            self._settings.accommodation_age_gap_config_key,
            str(max_age_gap),
            description="Maximum age gap allowed in accommodation rooms",
        )
        logger.info("Age gap configuration updated | max_age_gap=%s", max_age_gap)
        return max_age_gap
