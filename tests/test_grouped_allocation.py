from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from backend.domain.constraints import AllocationConfig
from backend.domain.models import AllocationStatus, Candidate, Registrant, Room, RoomSnapshot
from backend.repository.data_repository import DataRepository
from backend.services.accommodation_service import AccommodationService
from backend.services.errors import AllocationValidationError
from backend.services.grouped_allocation_service import (
    INSUFFICIENT_CAPACITY_REASON,
    NO_COMPATIBLE_ROOM_REASON,
    bucket_candidates,
    plan_age_grouped_allocation,
)
from backend.utils.config import get_settings


AS_OF = date(2026, 6, 15)


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        accommodation_default_max_age_gap=5,
        admin_token=None,
    )


def _build_service(tmp_path, filename: str) -> tuple[AccommodationService, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    return AccommodationService(repository=repository, settings=settings), repository


def _birth_date(age: int) -> date:
    return date(AS_OF.year - age, 1, 1)


def _add_registrant(repository: DataRepository, gender: str, age: int, verified: bool = True) -> int:
    return repository.create_registrant(
        f"{gender} {age}",
        gender,
        _birth_date(age),
        is_verified=verified,
    )


def _room_of(repository: DataRepository, registrant_id: int) -> int | None:
    allocation = repository.get_allocation_by_registrant(registrant_id)
    return allocation.room_id if allocation is not None else None


def _candidate(registrant_id: int, gender: str, age: int) -> Candidate:
    registrant = Registrant(
        registrant_id=registrant_id,
        full_name=f"Candidate {registrant_id}",
        gender=gender,
        date_of_birth=_birth_date(age),
        is_verified=True,
    )
    return Candidate(registrant=registrant, age=age)


def test_close_ages_in_adjacent_bands_share_one_room(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_shared.db")
    room_id = repository.create_room("Room A", "Male", 2)
    first = _add_registrant(repository, "Male", 14)
    second = _add_registrant(repository, "Male", 16)

    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert report.total_processed == 2
    assert report.total_allocated == 2
    assert report.status is AllocationStatus.SUCCESS
    assert _room_of(repository, first) == room_id
    assert _room_of(repository, second) == room_id
    assert [group.group for group in report.groups] == [
        "Male (10-14 years)",
        "Male (15-19 years)",
    ]


def test_distant_band_is_excluded_from_occupied_room(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_excluded.db")
    repository.create_room("Room A", "Male", 2)
    younger = _add_registrant(repository, "Male", 12)
    older = _add_registrant(repository, "Male", 19)

    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert report.total_allocated == 1
    assert report.total_remaining == 1
    assert report.status is AllocationStatus.PARTIAL
    assert _room_of(repository, younger) is not None
    assert _room_of(repository, older) is None

    excluded = report.groups[1]
    assert excluded.group == "Male (15-19 years)"
    assert excluded.status is AllocationStatus.FAILED
    assert excluded.remaining == 1
    assert excluded.reason == NO_COMPATIBLE_ROOM_REASON


def test_capacity_matching_band_size_is_success(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_exact.db")
    repository.create_room("Room A", "Female", 3)
    for age in (20, 21, 22):
        _add_registrant(repository, "Female", age)

    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert len(report.groups) == 1
    assert report.groups[0].status is AllocationStatus.SUCCESS
    assert report.groups[0].count == 3
    assert report.groups[0].remaining == 0


def test_band_without_rooms_fails_without_error(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_no_rooms.db")
    repository.create_room("Room A", "Male", 4)
    _add_registrant(repository, "Female", 17)
    _add_registrant(repository, "Male", 17)

    report = service.allocate_by_age_group(age_range_years=3, allocated_by="tester", as_of=AS_OF)

    female, male = report.groups
    assert female.gender == "Female"
    assert female.status is AllocationStatus.FAILED
    assert female.reason == NO_COMPATIBLE_ROOM_REASON
    assert male.status is AllocationStatus.SUCCESS


def test_empty_rooms_ranked_first_then_by_free_space(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_ranking.db")
    occupied_room = repository.create_room("Room A", "Male", 2)
    repository.create_room("Room B", "Male", 3)
    largest_room = repository.create_room("Room C", "Male", 4)
    resident = _add_registrant(repository, "Male", 15)
    service.manual_allocate(
        registrant_id=resident,
        room_id=occupied_room,
        allocated_by="tester",
        as_of=AS_OF,
    )
    members = [_add_registrant(repository, "Male", age) for age in (15, 15, 16)]

    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert report.total_allocated == 3
    assert {_room_of(repository, member) for member in members} == {largest_room}


def test_equal_rooms_keep_storage_order(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_ties.db")
    first_room = repository.create_room("Room A", "Female", 2)
    repository.create_room("Room B", "Female", 2)
    members = [_add_registrant(repository, "Female", age) for age in (30, 31)]

    service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert {_room_of(repository, member) for member in members} == {first_room}


def test_band_overflows_into_next_ranked_room(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_overflow.db")
    big_room = repository.create_room("Room A", "Male", 2)
    small_room = repository.create_room("Room B", "Male", 1)
    youngest, middle, oldest = (
        _add_registrant(repository, "Male", age) for age in (20, 21, 22)
    )

    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert report.status is AllocationStatus.SUCCESS
    assert _room_of(repository, youngest) == big_room
    assert _room_of(repository, middle) == big_room
    assert _room_of(repository, oldest) == small_room


def test_wide_band_still_respects_max_age_gap(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_wide_band.db")
    repository.create_room("Room A", "Male", 3)
    for age in (10, 12, 18):
        _add_registrant(repository, "Male", age)

    report = service.allocate_by_age_group(age_range_years=10, allocated_by="tester", as_of=AS_OF)

    group = report.groups[0]
    assert group.group == "Male (10-19 years)"
    assert group.allocated == 2
    assert group.status is AllocationStatus.PARTIAL
    assert group.reason == INSUFFICIENT_CAPACITY_REASON
    snapshot = service.room_state.room_snapshots("Male", as_of=AS_OF)[0]
    assert max(snapshot.occupant_ages) - min(snapshot.occupant_ages) <= 5


def test_unverified_registrants_are_not_allocated(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_unverified.db")
    repository.create_room("Room A", "Female", 4)
    verified = _add_registrant(repository, "Female", 16)
    unverified = _add_registrant(repository, "Female", 16, verified=False)

    report = service.allocate_by_age_group(age_range_years=2, allocated_by="tester", as_of=AS_OF)

    assert report.total_processed == 1
    assert _room_of(repository, verified) is not None
    assert _room_of(repository, unverified) is None


def test_inactive_rooms_are_skipped(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_inactive.db")
    inactive_room = repository.create_room("Room A", "Female", 4, is_active=False)
    active_room = repository.create_room("Room B", "Female", 1)
    registrant = _add_registrant(repository, "Female", 16)

    service.allocate_by_age_group(age_range_years=2, allocated_by="tester", as_of=AS_OF)

    assert _room_of(repository, registrant) == active_room
    assert repository.list_allocations_by_room(inactive_room) == []


def test_allocations_record_operator(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_operator.db")
    repository.create_room("Room A", "Male", 1)
    registrant = _add_registrant(repository, "Male", 16)

    service.allocate_by_age_group(age_range_years=2, allocated_by="ops@example.org", as_of=AS_OF)

    assert repository.get_allocation_by_registrant(registrant).allocated_by == "ops@example.org"


def test_grouped_allocation_is_deterministic(tmp_path):
    def run(filename: str) -> set[tuple[int, int]]:
        service, repository = _build_service(tmp_path, filename)
        for name, gender, capacity in (
            ("Room A", "Male", 2),
            ("Room B", "Male", 3),
            ("Room C", "Female", 2),
            ("Room D", "Female", 2),
        ):
            repository.create_room(name, gender, capacity)
        registrants = [
            _add_registrant(repository, gender, age)
            for gender, age in (
                ("Male", 11),
                ("Male", 13),
                ("Male", 17),
                ("Male", 18),
                ("Male", 24),
                ("Female", 12),
                ("Female", 15),
                ("Female", 16),
            )
        ]
        service.allocate_by_age_group(age_range_years=3, allocated_by="tester", as_of=AS_OF)
        return {(registrant, _room_of(repository, registrant)) for registrant in registrants}

    assert run("deterministic_first.db") == run("deterministic_second.db")


def test_no_candidates_returns_empty_report(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_empty.db")
    repository.create_room("Room A", "Male", 2)

    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert report.groups == []
    assert report.total_processed == 0
    assert "No unallocated verified registrations" in report.message


@pytest.mark.parametrize("age_range_years", [0, -1, 51])
def test_invalid_age_range_writes_nothing(tmp_path, age_range_years):
    service, repository = _build_service(tmp_path, f"grouped_invalid_{age_range_years + 1}.db")
    repository.create_room("Room A", "Male", 2)
    _add_registrant(repository, "Male", 16)

    with pytest.raises(AllocationValidationError):
        service.allocate_by_age_group(
            age_range_years=age_range_years,
            allocated_by="tester",
            as_of=AS_OF,
        )
    assert repository.count_allocations() == 0


def test_configured_age_gap_is_used(tmp_path):
    service, repository = _build_service(tmp_path, "grouped_config_gap.db")
    repository.create_room("Room A", "Male", 2)
    _add_registrant(repository, "Male", 12)
    _add_registrant(repository, "Male", 19)
    service.set_max_age_gap(10)

    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)

    assert report.max_age_gap == 10
    assert report.total_allocated == 2


# --- pure planning ---

def test_bucket_candidates_orders_gender_then_band() -> None:
    candidates = [
        _candidate(1, "Male", 17),
        _candidate(2, "Female", 21),
        _candidate(3, "Male", 11),
        _candidate(4, "Female", 14),
        _candidate(5, "Male", 16),
    ]

    buckets = bucket_candidates(candidates, 5, ("Female", "Male"))

    assert [band.label for band, _ in buckets] == [
        "Female (10-14 years)",
        "Female (20-24 years)",
        "Male (10-14 years)",
        "Male (15-19 years)",
    ]
    assert [member.age for member in buckets[3][1]] == [16, 17]


def test_plan_tracks_placements_across_bands() -> None:
    room = Room(room_id=7, name="Room A", gender="Male", capacity=3, is_active=True)
    plans = plan_age_grouped_allocation(
        candidates=[_candidate(1, "Male", 14), _candidate(2, "Male", 20)],
        rooms_by_gender={"Male": [RoomSnapshot(room=room)], "Female": []},
        config=AllocationConfig(
            max_age_gap=5,
            supported_genders=("Female", "Male"),
            age_range_years=5,
        ),
    )

    assert [len(plan.proposals) for plan in plans] == [1, 0]
    assert plans[1].reason == NO_COMPATIBLE_ROOM_REASON
