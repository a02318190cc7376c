"""Domain models for registrants, rooms, and room allocations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class AllocationStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @classmethod
    def from_counts(cls, allocated: int, remaining: int) -> "AllocationStatus":
        if remaining == 0:
            return cls.SUCCESS
        if allocated > 0:
            return cls.PARTIAL
        return cls.FAILED


class AllocationStrategy(str, Enum):
    AGE_GROUPED = "age_grouped"
    RANDOM = "random"
    MANUAL = "manual"


@dataclass(frozen=True)
class Registrant:
    registrant_id: int
    full_name: str
    gender: str
    date_of_birth: date
    is_verified: bool


@dataclass(frozen=True)
class Room:
    room_id: int
    name: str
    gender: str
    capacity: int
    is_active: bool


@dataclass(frozen=True)
class Occupant:
    registrant_id: int
    age: int


@dataclass(frozen=True)
class RoomSnapshot:
    """Read-model of one room and whoever currently holds a bed in it."""

    room: Room
    occupants: tuple[Occupant, ...] = ()

    @property
    def room_id(self) -> int:
        return self.room.room_id

    @property
    def occupant_count(self) -> int:
        return len(self.occupants)

    @property
    def available_slots(self) -> int:
        return max(0, self.room.capacity - len(self.occupants))

    @property
    def occupant_ages(self) -> list[int]:
        return [occupant.age for occupant in self.occupants]

    @property
    def is_empty(self) -> bool:
        return not self.occupants


@dataclass(frozen=True)
class Candidate:
    registrant: Registrant
    age: int

    @property
    def registrant_id(self) -> int:
        return self.registrant.registrant_id

    @property
    def gender(self) -> str:
        return self.registrant.gender


@dataclass(frozen=True)
class Allocation:
    allocation_id: int
    registrant_id: int
    room_id: int
    allocated_at: str
    allocated_by: Optional[str]


@dataclass(frozen=True)
class ProposedAllocation:
    registrant_id: int
    room_id: int
    age: int


@dataclass(frozen=True)
class AgeBand:
    gender: str
    min_age: int
    max_age: int

    @property
    def label(self) -> str:
        return f"{self.gender} ({self.min_age}-{self.max_age} years)"


@dataclass
class GroupPlan:
    """Proposals computed for one gender/age-band group before commit."""

    group: str
    gender: str
    candidates: list[Candidate]
    proposals: list[ProposedAllocation] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def average_age(self) -> Optional[int]:
        if not self.candidates:
            return None
        return round(sum(candidate.age for candidate in self.candidates) / len(self.candidates))


@dataclass(frozen=True)
class GroupResult:
    group: str
    gender: str
    count: int
    allocated: int
    remaining: int
    status: AllocationStatus
    reason: Optional[str] = None
    average_age: Optional[int] = None
    commit_error: Optional[str] = None
    allocations: tuple[Allocation, ...] = ()


@dataclass(frozen=True)
class BatchAllocationReport:
    strategy: AllocationStrategy
    total_processed: int
    total_allocated: int
    groups: list[GroupResult]
    message: str
    age_range_years: Optional[int] = None
    max_age_gap: Optional[int] = None

    @property
    def total_remaining(self) -> int:
        return self.total_processed - self.total_allocated

    @property
    def status(self) -> AllocationStatus:
        return AllocationStatus.from_counts(self.total_allocated, self.total_remaining)


@dataclass(frozen=True)
class EmptyRoomsResult:
    gender: str
    removed_allocations: int
    affected_rooms: int
    total_rooms: int


@dataclass(frozen=True)
class AccommodationOverview:
    total_registrants: int
    verified_registrants: int
    allocated_registrants: int
    verified_unallocated: int
    total_rooms: int
    active_rooms: int
    total_capacity: int
    occupied_spaces: int
    occupancy_rate: int
    rooms_by_gender: dict[str, list[RoomSnapshot]]
