"""Accommodation workflow facade used by the HTTP layer."""

from __future__ import annotations

from datetime import date
from typing import Optional

import numpy as np

from backend.domain.constraints import validate_gender
from backend.domain.models import (
    AccommodationOverview,
    Allocation,
    BatchAllocationReport,
    EmptyRoomsResult,
    Room,
)
from backend.repository.data_repository import DataRepository
from backend.services.accommodation_config_service import AccommodationConfigService
from backend.services.allocation_writer import AllocationWriter
from backend.services.candidate_pool import CandidatePool
from backend.services.errors import AllocationValidationError
from backend.services.grouped_allocation_service import AgeGroupedAllocationService
from backend.services.manual_allocation_service import ManualAllocationService
from backend.services.random_allocation_service import RandomAllocationService
from backend.services.room_state_service import RoomStateService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AccommodationService:
    """Wires every allocation component around one shared writer.

    Sharing the writer means batch and manual requests in this process
    contend on the same per-room locks.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._room_state = RoomStateService(self._repository, self._settings)
        self._candidate_pool = CandidatePool(self._repository, self._settings)
        self._config_service = AccommodationConfigService(self._repository, self._settings)
        self._writer = AllocationWriter(self._repository, self._settings)
        self._grouped = AgeGroupedAllocationService(
            repository=self._repository,
            settings=self._settings,
            candidate_pool=self._candidate_pool,
            room_state=self._room_state,
            config_service=self._config_service,
            writer=self._writer,
        )
        self._random = RandomAllocationService(
            repository=self._repository,
            settings=self._settings,
            candidate_pool=self._candidate_pool,
            room_state=self._room_state,
            writer=self._writer,
            rng=rng,
        )
        self._manual = ManualAllocationService(
            repository=self._repository,
            settings=self._settings,
            config_service=self._config_service,
            writer=self._writer,
        )

    @property
    def room_state(self) -> RoomStateService:
        return self._room_state

    @property
    def candidate_pool(self) -> CandidatePool:
        return self._candidate_pool

    def allocate_by_age_group(
        self,
        *,
        age_range_years: int,
        allocated_by: Optional[str],
        as_of: Optional[date] = None,
    ) -> BatchAllocationReport:
        return self._grouped.allocate(
            age_range_years=age_range_years,
            allocated_by=allocated_by,
            as_of=as_of,
        )

    def allocate_randomly(
        self,
        *,
        allocated_by: Optional[str],
        as_of: Optional[date] = None,
    ) -> BatchAllocationReport:
        return self._random.allocate(allocated_by=allocated_by, as_of=as_of)

    def manual_allocate(
        self,
        *,
        registrant_id: int,
        room_id: int,
        allocated_by: Optional[str],
        as_of: Optional[date] = None,
    ) -> Allocation:
        return self._manual.allocate(
            registrant_id=registrant_id,
            room_id=room_id,
            allocated_by=allocated_by,
            as_of=as_of,
        )

    def unassign(self, *, registrant_id: int) -> Allocation:
        return self._manual.unassign(registrant_id=registrant_id)

    def get_allocation(self, registrant_id: int) -> tuple[Allocation, Room]:
        return self._manual.get_allocation(registrant_id)

    def empty_rooms(self, *, gender: str) -> EmptyRoomsResult:
        """Return every occupant of active ``gender`` rooms to the candidate pool."""
        try:
            validate_gender(gender, self._settings.supported_genders)
        except ValueError as exc:
            raise AllocationValidationError(str(exc)) from exc

        rooms = self._repository.list_rooms([gender], active_only=True)
        removed, affected_rooms = self._writer.delete_in_rooms([room.room_id for room in rooms])
        logger.info(
            "Rooms emptied | gender=%s | removed_allocations=%s | affected_rooms=%s",
            gender,
            removed,
            affected_rooms,
        )
        return EmptyRoomsResult(
            gender=gender,
            removed_allocations=removed,
            affected_rooms=affected_rooms,
            total_rooms=len(rooms),
        )

    def get_max_age_gap(self) -> int:
        return self._config_service.get_max_age_gap()

    def set_max_age_gap(self, max_age_gap: int) -> int:
        return self._config_service.set_max_age_gap(max_age_gap)

    def overview(self, *, as_of: Optional[date] = None) -> AccommodationOverview:
        counts = self._repository.get_accommodation_counts()
        occupied = counts["allocated_registrants"]
        total_capacity = counts["total_capacity"]
        return AccommodationOverview(
            total_registrants=counts["total_registrants"],
            verified_registrants=counts["verified_registrants"],
            allocated_registrants=occupied,
            verified_unallocated=len(self._candidate_pool.candidates(as_of=as_of)),
            total_rooms=counts["total_rooms"],
            active_rooms=counts["active_rooms"],
            total_capacity=total_capacity,
            occupied_spaces=occupied,
            occupancy_rate=round(occupied / total_capacity * 100) if total_capacity else 0,
            rooms_by_gender={
                gender: self._room_state.room_snapshots(gender, as_of=as_of)
                for gender in self._settings.supported_genders
            },
        )
