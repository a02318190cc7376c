"""Verified, not-yet-allocated registrants eligible for a room."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from backend.domain.compatibility import age_of
from backend.domain.models import Candidate
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings


NO_CANDIDATES_MESSAGE = (
    "No unallocated verified registrations found. "
    "Only verified attendees can be allocated to rooms."
)


class CandidateOrder(str, Enum):
    REGISTRATION = "registration"
    AGE_ASCENDING = "age_ascending"


class CandidatePool:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def candidates(
        self,
        *,
        order: CandidateOrder = CandidateOrder.REGISTRATION,
        as_of: Optional[date] = None,
    ) -> list[Candidate]:
        registrants = self._repository.list_unallocated_verified_registrants(
            self._settings.supported_genders
        )
        candidates = [
            Candidate(registrant=registrant, age=age_of(registrant.date_of_birth, as_of))
            for registrant in registrants
        ]
        if order is CandidateOrder.AGE_ASCENDING:
            gender_rank = {gender: index for index, gender in enumerate(self._settings.supported_genders)}
            candidates.sort(
                key=lambda candidate: (
                    gender_rank[candidate.gender],
                    candidate.age,
                    candidate.registrant_id,
                )
            )
        return candidates

    def partitioned(
        self,
        *,
        order: CandidateOrder = CandidateOrder.REGISTRATION,
        as_of: Optional[date] = None,
    ) -> dict[str, list[Candidate]]:
        """Candidates keyed by gender, in canonical gender order."""
        partitions: dict[str, list[Candidate]] = {
            gender: [] for gender in self._settings.supported_genders
        }
        for candidate in self.candidates(order=order, as_of=as_of):
            partitions[candidate.gender].append(candidate)
        return partitions
