"""Single write path for room allocation records.

Every insert re-validates the target room against committed state inside a
``BEGIN IMMEDIATE`` transaction while holding the in-process lock for that
room. Batch strategies hand their proposals here one group at a time; a group
is committed or rolled back as a unit, independently of other groups.
"""

from __future__ import annotations

import sqlite3
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import date
from threading import Lock
from typing import Iterable, Iterator, Optional, Sequence

from backend.domain.compatibility import age_of, age_span, is_age_compatible
from backend.domain.models import (
    Allocation,
    AllocationStatus,
    GroupPlan,
    GroupResult,
    ProposedAllocation,
    Registrant,
    Room,
)
from backend.repository.data_repository import DataRepository
from backend.services.errors import (
    AllocationNotFoundError,
    AllocationRejectedError,
    RejectionReason,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

COMMIT_FAILED_REASON = "allocation commit failed"


@dataclass(frozen=True)
class PairRejection:
    registrant_id: int
    room_id: int
    reason: RejectionReason
    message: str


@dataclass(frozen=True)
class CommitOutcome:
    committed: list[Allocation] = field(default_factory=list)
    rejected: list[PairRejection] = field(default_factory=list)
    error: Optional[str] = None


class AllocationWriter:
    """Serialises allocation inserts and deletes per room."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._registry_lock = Lock()
        self._room_locks: dict[int, Lock] = {}

    def _lock_for(self, room_id: int) -> Lock:
        with self._registry_lock:
            lock = self._room_locks.get(room_id)
            if lock is None:
                lock = Lock()
                self._room_locks[room_id] = lock
            return lock

    @contextmanager
    def _locked_rooms(self, room_ids: Iterable[int]) -> Iterator[None]:
        # Sorted acquisition keeps two batches touching the same rooms deadlock-free.
        with ExitStack() as stack:
            for room_id in sorted(set(room_ids)):
                stack.enter_context(self._lock_for(room_id))
            yield

    def _validate_pair(
        self,
        conn: sqlite3.Connection,
        registrant_id: int,
        room_id: int,
        *,
        max_age_gap: Optional[int],
        as_of: Optional[date],
    ) -> tuple[Registrant, Room]:
        """Check one assignment against committed state, failing fast in rule order."""
        registrant = self._repository.get_registrant(registrant_id, conn=conn)
        if registrant is None:
            raise AllocationRejectedError(
                RejectionReason.REGISTRANT_NOT_FOUND,
                f"Registrant {registrant_id} not found",
                {"registrant_id": registrant_id},
            )
        if not registrant.is_verified:
            raise AllocationRejectedError(
                RejectionReason.NOT_VERIFIED,
                "Registrant must be verified before room allocation",
                {"registrant_id": registrant_id},
            )
        existing = self._repository.get_allocation_by_registrant(registrant_id, conn=conn)
        if existing is not None:
            raise AllocationRejectedError(
                RejectionReason.ALREADY_ALLOCATED,
                "Registrant is already allocated to a room",
                {"registrant_id": registrant_id, "room_id": existing.room_id},
            )

        room = self._repository.get_room(room_id, conn=conn)
        if room is None:
            raise AllocationRejectedError(
                RejectionReason.ROOM_NOT_FOUND,
                f"Room {room_id} not found",
                {"room_id": room_id},
            )
        if not room.is_active:
            raise AllocationRejectedError(
                RejectionReason.ROOM_INACTIVE,
                f"Room {room.name} is not active",
                {"room_id": room_id},
            )
        occupants = self._repository.list_room_occupants([room_id], conn=conn)[room_id]
        if len(occupants) >= room.capacity:
            raise AllocationRejectedError(
                RejectionReason.ROOM_FULL,
                f"Room {room.name} is at full capacity",
                {"room_id": room_id, "capacity": room.capacity},
            )

        if registrant.gender != room.gender:
            raise AllocationRejectedError(
                RejectionReason.GENDER_MISMATCH,
                (
                    f"Cannot allocate {registrant.gender.lower()} registrant "
                    f"to {room.gender.lower()} room"
                ),
                {"registrant_gender": registrant.gender, "room_gender": room.gender},
            )

        if max_age_gap is not None and occupants:
            candidate_age = age_of(registrant.date_of_birth, as_of)
            existing_ages = [age_of(occupant.date_of_birth, as_of) for occupant in occupants]
            if not is_age_compatible(existing_ages, candidate_age, max_age_gap):
                existing_min, existing_max = age_span(existing_ages)
                resulting_min = min(existing_min, candidate_age)
                resulting_max = max(existing_max, candidate_age)
                resulting_range = resulting_max - resulting_min
                raise AllocationRejectedError(
                    RejectionReason.AGE_GAP_EXCEEDED,
                    (
                        f"Adding person aged {candidate_age} would create an age range of "
                        f"{resulting_range} years ({resulting_min}-{resulting_max}). "
                        f"Maximum allowed age range is {max_age_gap} years. "
                        f"Current room occupants are aged {existing_min}-{existing_max}."
                    ),
                    {
                        "candidate_age": candidate_age,
                        "existing_min_age": existing_min,
                        "existing_max_age": existing_max,
                        "resulting_min_age": resulting_min,
                        "resulting_max_age": resulting_max,
                        "resulting_range": resulting_range,
                        "max_age_gap": max_age_gap,
                    },
                )
        return registrant, room

    def create_one(
        self,
        registrant_id: int,
        room_id: int,
        *,
        allocated_by: Optional[str],
        max_age_gap: Optional[int],
        as_of: Optional[date] = None,
    ) -> Allocation:
        """Validate and insert a single allocation, raising on any rejection."""
        with self._locked_rooms([room_id]):
            try:
                with self._repository.transaction() as conn:
                    self._validate_pair(
                        conn,
                        registrant_id,
                        room_id,
                        max_age_gap=max_age_gap,
                        as_of=as_of,
                    )
                    return self._repository.insert_allocation(
                        conn, registrant_id, room_id, allocated_by
                    )
            except sqlite3.IntegrityError as exc:
                # Only reachable when another process bypassed this writer.
                raise AllocationRejectedError(
                    RejectionReason.ALREADY_ALLOCATED,
                    "Registrant is already allocated to a room",
                    {"registrant_id": registrant_id},
                ) from exc

    def create_many(
        self,
        proposals: Sequence[ProposedAllocation],
        *,
        allocated_by: Optional[str],
        max_age_gap: Optional[int],
        as_of: Optional[date] = None,
    ) -> CommitOutcome:
        """Commit a group of proposals in one transaction.

        Proposals that no longer fit the current state are skipped and
        reported; a storage failure rolls the whole group back.
        """
        if not proposals:
            return CommitOutcome()

        committed: list[Allocation] = []
        rejected: list[PairRejection] = []
        with self._locked_rooms(proposal.room_id for proposal in proposals):
            try:
                with self._repository.transaction() as conn:
                    for proposal in proposals:
                        try:
                            self._validate_pair(
                                conn,
                                proposal.registrant_id,
                                proposal.room_id,
                                max_age_gap=max_age_gap,
                                as_of=as_of,
                            )
                        except AllocationRejectedError as exc:
                            logger.warning(
                                "Proposal rejected at write time | registrant_id=%s | room_id=%s | reason=%s",
                                proposal.registrant_id,
                                proposal.room_id,
                                exc.reason.value,
                            )
                            rejected.append(
                                PairRejection(
                                    registrant_id=proposal.registrant_id,
                                    room_id=proposal.room_id,
                                    reason=exc.reason,
                                    message=exc.message,
                                )
                            )
                            continue
                        committed.append(
                            self._repository.insert_allocation(
                                conn,
                                proposal.registrant_id,
                                proposal.room_id,
                                allocated_by,
                            )
                        )
            except sqlite3.Error as exc:
                logger.exception(
                    "Allocation group commit failed | proposals=%s",
                    len(proposals),
                )
                return CommitOutcome(error=str(exc))
        return CommitOutcome(committed=committed, rejected=rejected)

    def commit_group(
        self,
        plan: GroupPlan,
        *,
        allocated_by: Optional[str],
        max_age_gap: Optional[int],
        as_of: Optional[date] = None,
    ) -> GroupResult:
        """Persist one planned group and turn the outcome into a report row."""
        count = len(plan.candidates)
        if not plan.proposals:
            return GroupResult(
                group=plan.group,
                gender=plan.gender,
                count=count,
                allocated=0,
                remaining=count,
                status=AllocationStatus.from_counts(0, count),
                reason=plan.reason,
                average_age=plan.average_age,
            )

        outcome = self.create_many(
            plan.proposals,
            allocated_by=allocated_by,
            max_age_gap=max_age_gap,
            as_of=as_of,
        )
        if outcome.error is not None:
            return GroupResult(
                group=plan.group,
                gender=plan.gender,
                count=count,
                allocated=0,
                remaining=count,
                status=AllocationStatus.FAILED,
                reason=COMMIT_FAILED_REASON,
                average_age=plan.average_age,
                commit_error=outcome.error,
            )

        allocated = len(outcome.committed)
        remaining = count - allocated
        reason = plan.reason
        if outcome.rejected and reason is None:
            reason = f"{len(outcome.rejected)} allocation(s) rejected at write time"
        return GroupResult(
            group=plan.group,
            gender=plan.gender,
            count=count,
            allocated=allocated,
            remaining=remaining,
            status=AllocationStatus.from_counts(allocated, remaining),
            reason=reason if remaining else None,
            average_age=plan.average_age,
            allocations=tuple(outcome.committed),
        )

    def delete_one(self, registrant_id: int) -> Allocation:
        """Remove the allocation held by ``registrant_id`` and return it."""
        with self._repository.transaction() as conn:
            allocation = self._repository.get_allocation_by_registrant(registrant_id, conn=conn)
            if allocation is None:
                raise AllocationNotFoundError(
                    f"No allocation found for registrant {registrant_id}"
                )
            self._repository.delete_allocation_by_registrant(registrant_id, conn=conn)
        logger.info(
            "Allocation removed | registrant_id=%s | room_id=%s",
            registrant_id,
            allocation.room_id,
        )
        return allocation

    def delete_in_rooms(self, room_ids: Sequence[int]) -> tuple[int, int]:
        """Remove every allocation held in ``room_ids`` atomically.

        Returns ``(removed_allocations, affected_rooms)``.
        """
        if not room_ids:
            return 0, 0
        with self._locked_rooms(room_ids):
            with self._repository.transaction() as conn:
                occupants = self._repository.list_room_occupants(room_ids, conn=conn)
                affected_rooms = sum(1 for members in occupants.values() if members)
                removed = self._repository.delete_allocations_in_rooms(room_ids, conn=conn)
        return removed, affected_rooms
