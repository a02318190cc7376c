"""Operator-driven single assignment and unassignment."""

from __future__ import annotations

from datetime import date
from typing import Optional

from backend.domain.models import Allocation, Room
from backend.repository.data_repository import DataRepository
from backend.services.accommodation_config_service import AccommodationConfigService
from backend.services.allocation_writer import AllocationWriter
from backend.services.errors import AllocationNotFoundError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class ManualAllocationService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        config_service: Optional[AccommodationConfigService] = None,
        writer: Optional[AllocationWriter] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._config_service = config_service or AccommodationConfigService(
            self._repository, self._settings
        )
        self._writer = writer or AllocationWriter(self._repository, self._settings)

    def allocate(
        self,
        *,
        registrant_id: int,
        room_id: int,
        allocated_by: Optional[str],
        as_of: Optional[date] = None,
    ) -> Allocation:
        """Assign one registrant to one room.

        Raises ``AllocationRejectedError`` with the first failing rule:
        registrant checks, then room checks, then gender, then age gap.
        """
        allocation = self._writer.create_one(
            registrant_id,
            room_id,
            allocated_by=allocated_by,
            max_age_gap=self._config_service.get_max_age_gap(),
            as_of=as_of,
        )
        logger.info(
            "Manual allocation created | registrant_id=%s | room_id=%s | allocated_by=%s",
            registrant_id,
            room_id,
            allocated_by,
        )
        return allocation

    def unassign(self, *, registrant_id: int) -> Allocation:
        return self._writer.delete_one(registrant_id)

    def get_allocation(self, registrant_id: int) -> tuple[Allocation, Room]:
        allocation = self._repository.get_allocation_by_registrant(registrant_id)
        if allocation is None:
            raise AllocationNotFoundError(
                f"No allocation found for registrant {registrant_id}"
            )
        room = self._repository.get_room(allocation.room_id)
        if room is None:  # pragma: no cover - prevented by foreign key
            raise AllocationNotFoundError(f"Room {allocation.room_id} no longer exists")
        return allocation, room
