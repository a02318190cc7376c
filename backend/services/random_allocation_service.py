"""Randomised room allocation per gender.

This strategy checks capacity and gender only; it does not apply the age-gap
rule enforced by the age-grouped and manual paths.

Genders with no candidates are left out of the report. A gender that has
candidates but no open slot is still reported, as a `failed` group with
reason "no available room slots", so operators can see who was not placed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

import numpy as np

from backend.domain.models import (
    AllocationStrategy,
    BatchAllocationReport,
    Candidate,
    GroupPlan,
    GroupResult,
    ProposedAllocation,
    RoomSnapshot,
)
from backend.repository.data_repository import DataRepository
from backend.services.allocation_writer import AllocationWriter
from backend.services.candidate_pool import NO_CANDIDATES_MESSAGE, CandidateOrder, CandidatePool
from backend.services.room_state_service import RoomStateService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

NO_SLOTS_REASON = "no available room slots"
SLOTS_EXHAUSTED_REASON = "not enough available room slots"


@dataclass
class _Slot:
    room_id: int
    remaining: int = 1


def shuffled(items: Sequence, rng: np.random.Generator) -> list:
    """Uniformly random permutation of ``items`` drawn from ``rng``."""
    return [items[index] for index in rng.permutation(len(items))]


def build_slots(rooms: Sequence[RoomSnapshot]) -> list[_Slot]:
    """One slot per unit of free capacity."""
    return [
        _Slot(room_id=snapshot.room_id)
        for snapshot in rooms
        for _ in range(snapshot.available_slots)
    ]


def _next_open_slot(slots: list[_Slot], start: int) -> Optional[_Slot]:
    for offset in range(len(slots)):
        slot = slots[(start + offset) % len(slots)]
        if slot.remaining > 0:
            return slot
    return None


def plan_random_allocation(
    *,
    gender: str,
    candidates: Sequence[Candidate],
    rooms: Sequence[RoomSnapshot],
    rng: np.random.Generator,
) -> GroupPlan:
    plan = GroupPlan(group=f"{gender} Participants", gender=gender, candidates=list(candidates))
    slots = shuffled(build_slots(rooms), rng)
    ordered_candidates = shuffled(list(candidates), rng)
    if not slots:
        if candidates:
            plan.reason = NO_SLOTS_REASON
        return plan

    for position, candidate in enumerate(ordered_candidates):
        preferred = position % len(slots)
        slot = slots[preferred] if slots[preferred].remaining > 0 else _next_open_slot(slots, preferred)
        if slot is None:
            break
        slot.remaining -= 1
        plan.proposals.append(
            ProposedAllocation(
                registrant_id=candidate.registrant_id,
                room_id=slot.room_id,
                age=candidate.age,
            )
        )

    if len(plan.proposals) < len(plan.candidates):
        plan.reason = SLOTS_EXHAUSTED_REASON
    return plan


class RandomAllocationService:
    """Shuffles candidates and open slots per gender, then commits per gender."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        candidate_pool: Optional[CandidatePool] = None,
        room_state: Optional[RoomStateService] = None,
        writer: Optional[AllocationWriter] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._candidate_pool = candidate_pool or CandidatePool(self._repository, self._settings)
        self._room_state = room_state or RoomStateService(self._repository, self._settings)
        self._writer = writer or AllocationWriter(self._repository, self._settings)
        self._rng = rng if rng is not None else np.random.default_rng(
            self._settings.random_allocation_seed
        )

    def allocate(
        self,
        *,
        allocated_by: Optional[str],
        as_of: Optional[date] = None,
    ) -> BatchAllocationReport:
        candidates_by_gender = self._candidate_pool.partitioned(
            order=CandidateOrder.REGISTRATION,
            as_of=as_of,
        )
        total_processed = sum(len(members) for members in candidates_by_gender.values())

        results: list[GroupResult] = []
        for gender, candidates in candidates_by_gender.items():
            if not candidates:
                continue
            plan = plan_random_allocation(
                gender=gender,
                candidates=candidates,
                rooms=self._room_state.available_rooms(gender, as_of=as_of),
                rng=self._rng,
            )
            results.append(
                self._writer.commit_group(
                    plan,
                    allocated_by=allocated_by,
                    max_age_gap=None,
                    as_of=as_of,
                )
            )

        total_allocated = sum(result.allocated for result in results)
        logger.info(
            "Random allocation completed | processed=%s | allocated=%s | groups=%s",
            total_processed,
            total_allocated,
            len(results),
        )
        if total_processed == 0:
            message = NO_CANDIDATES_MESSAGE
        else:
            message = f"Successfully allocated {total_allocated} registrations randomly"
        return BatchAllocationReport(
            strategy=AllocationStrategy.RANDOM,
            total_processed=total_processed,
            total_allocated=total_allocated,
            groups=results,
            message=message,
        )
