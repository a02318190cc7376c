"""Deterministic age-band room allocation.

Candidates are bucketed into fixed-width age bands per gender. Bands are
processed youngest first so younger participants get first pick of rooms.
Within a band, empty rooms are preferred, then rooms with the most free
space, and members are placed youngest first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from backend.domain.compatibility import is_age_compatible, is_band_compatible
from backend.domain.constraints import AllocationConfig, validate_allocation_config
from backend.domain.models import (
    AgeBand,
    AllocationStrategy,
    BatchAllocationReport,
    Candidate,
    GroupPlan,
    GroupResult,
    ProposedAllocation,
    RoomSnapshot,
)
from backend.repository.data_repository import DataRepository
from backend.services.accommodation_config_service import AccommodationConfigService
from backend.services.allocation_writer import AllocationWriter
from backend.services.candidate_pool import NO_CANDIDATES_MESSAGE, CandidateOrder, CandidatePool
from backend.services.errors import AllocationValidationError
from backend.services.room_state_service import RoomStateService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

NO_COMPATIBLE_ROOM_REASON = "no age-compatible room available"
INSUFFICIENT_CAPACITY_REASON = "insufficient capacity in age-compatible rooms"


@dataclass
class _PlannedRoom:
    """Mutable working copy of a room while a plan is being built."""

    snapshot: RoomSnapshot
    ages: list[int] = field(default_factory=list)
    available: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: RoomSnapshot) -> "_PlannedRoom":
        return cls(
            snapshot=snapshot,
            ages=list(snapshot.occupant_ages),
            available=snapshot.available_slots,
        )

    @property
    def room_id(self) -> int:
        return self.snapshot.room_id

    @property
    def is_empty(self) -> bool:
        return not self.ages

    def place(self, candidate: Candidate) -> ProposedAllocation:
        self.ages.append(candidate.age)
        self.available -= 1
        return ProposedAllocation(
            registrant_id=candidate.registrant_id,
            room_id=self.room_id,
            age=candidate.age,
        )


def band_for_age(gender: str, age: int, age_range_years: int) -> AgeBand:
    lower = (age // age_range_years) * age_range_years
    return AgeBand(gender=gender, min_age=lower, max_age=lower + age_range_years - 1)


def bucket_candidates(
    candidates: Sequence[Candidate],
    age_range_years: int,
    gender_order: Sequence[str],
) -> list[tuple[AgeBand, list[Candidate]]]:
    """Group candidates by (gender, age band) in processing order."""
    buckets: dict[AgeBand, list[Candidate]] = {}
    for candidate in candidates:
        band = band_for_age(candidate.gender, candidate.age, age_range_years)
        buckets.setdefault(band, []).append(candidate)

    gender_rank = {gender: index for index, gender in enumerate(gender_order)}
    ordered = sorted(
        buckets.items(),
        key=lambda item: (gender_rank.get(item[0].gender, len(gender_rank)), item[0].min_age),
    )
    return [
        (band, sorted(members, key=lambda member: (member.age, member.registrant_id)))
        for band, members in ordered
    ]


def rank_rooms(rooms: Sequence[_PlannedRoom]) -> list[_PlannedRoom]:
    # sorted() is stable: equal ranks keep storage order.
    return sorted(rooms, key=lambda room: (0 if room.is_empty else 1, -room.available))


def plan_age_grouped_allocation(
    *,
    candidates: Sequence[Candidate],
    rooms_by_gender: dict[str, list[RoomSnapshot]],
    config: AllocationConfig,
) -> list[GroupPlan]:
    """Compute proposals for every band without touching storage."""
    validate_allocation_config(config)
    if config.age_range_years is None:
        raise ValueError("age_range_years is required for age-grouped allocation")

    planned_rooms = {
        gender: [_PlannedRoom.from_snapshot(snapshot) for snapshot in snapshots]
        for gender, snapshots in rooms_by_gender.items()
    }

    plans: list[GroupPlan] = []
    for band, members in bucket_candidates(
        candidates,
        config.age_range_years,
        config.supported_genders,
    ):
        plan = GroupPlan(group=band.label, gender=band.gender, candidates=list(members))
        plans.append(plan)

        eligible = [room for room in planned_rooms.get(band.gender, []) if room.available > 0]
        suitable = [
            room
            for room in eligible
            if is_band_compatible(room.ages, band.min_age, band.max_age, config.max_age_gap)
        ]
        if not suitable:
            plan.reason = NO_COMPATIBLE_ROOM_REASON
            logger.debug(
                "No suitable room for band | group=%s | eligible_rooms=%s",
                band.label,
                len(eligible),
            )
            continue

        index = 0
        for room in rank_rooms(suitable):
            while index < len(members) and room.available > 0:
                member = members[index]
                # Members only get older from here, so one misfit closes this room.
                if not is_age_compatible(room.ages, member.age, config.max_age_gap):
                    break
                plan.proposals.append(room.place(member))
                index += 1
            if index >= len(members):
                break

        if index < len(members):
            plan.reason = INSUFFICIENT_CAPACITY_REASON if plan.proposals else NO_COMPATIBLE_ROOM_REASON
    return plans


class AgeGroupedAllocationService:
    """Runs the age-band strategy against current storage and commits per band."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        candidate_pool: Optional[CandidatePool] = None,
        room_state: Optional[RoomStateService] = None,
        config_service: Optional[AccommodationConfigService] = None,
        writer: Optional[AllocationWriter] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._candidate_pool = candidate_pool or CandidatePool(self._repository, self._settings)
        self._room_state = room_state or RoomStateService(self._repository, self._settings)
        self._config_service = config_service or AccommodationConfigService(
            self._repository, self._settings
        )
        self._writer = writer or AllocationWriter(self._repository, self._settings)

    def allocate(
        self,
        *,
        age_range_years: int,
        allocated_by: Optional[str],
        as_of: Optional[date] = None,
    ) -> BatchAllocationReport:
        config = AllocationConfig(
            max_age_gap=self._config_service.get_max_age_gap(),
            supported_genders=self._settings.supported_genders,
            age_range_years=age_range_years,
            max_age_range_years=self._settings.accommodation_max_age_range_years,
        )
        try:
            validate_allocation_config(config)
        except ValueError as exc:
            raise AllocationValidationError(str(exc)) from exc

        candidates = self._candidate_pool.candidates(
            order=CandidateOrder.AGE_ASCENDING,
            as_of=as_of,
        )
        if not candidates:
            logger.info("Age-grouped allocation skipped | reason=no candidates")
            return BatchAllocationReport(
                strategy=AllocationStrategy.AGE_GROUPED,
                total_processed=0,
                total_allocated=0,
                groups=[],
                message=NO_CANDIDATES_MESSAGE,
                age_range_years=age_range_years,
                max_age_gap=config.max_age_gap,
            )

        rooms_by_gender = {
            gender: self._room_state.available_rooms(gender, as_of=as_of)
            for gender in self._settings.supported_genders
        }
        plans = plan_age_grouped_allocation(
            candidates=candidates,
            rooms_by_gender=rooms_by_gender,
            config=config,
        )

        results: list[GroupResult] = [
            self._writer.commit_group(
                plan,
                allocated_by=allocated_by,
                max_age_gap=config.max_age_gap,
                as_of=as_of,
            )
            for plan in plans
        ]
        gender_rank = {gender: index for index, gender in enumerate(self._settings.supported_genders)}
        results.sort(key=lambda result: (gender_rank[result.gender], result.average_age or 0))

        total_allocated = sum(result.allocated for result in results)
        logger.info(
            (
                "Age-grouped allocation completed | age_range_years=%s | max_age_gap=%s | "
                "processed=%s | allocated=%s | groups=%s"
            ),
            age_range_years,
            config.max_age_gap,
            len(candidates),
            total_allocated,
            len(results),
        )
        return BatchAllocationReport(
            strategy=AllocationStrategy.AGE_GROUPED,
            total_processed=len(candidates),
            total_allocated=total_allocated,
            groups=results,
            message=f"Successfully allocated {total_allocated} registrations",
            age_range_years=age_range_years,
            max_age_gap=config.max_age_gap,
        )
