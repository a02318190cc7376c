from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from backend.repository.data_repository import DataRepository
from backend.services.accommodation_service import AccommodationService
from backend.services.errors import (
    AllocationNotFoundError,
    AllocationRejectedError,
    AllocationValidationError,
    RejectionReason,
)
from backend.utils.config import get_settings


AS_OF = date(2026, 6, 15)


@pytest.fixture
def setup(tmp_path):
    settings = replace(
        get_settings(),
        database_path=tmp_path / "manual.db",
        accommodation_default_max_age_gap=5,
        admin_token=None,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    service = AccommodationService(repository=repository, settings=settings)
    return service, repository


def _add_registrant(repository: DataRepository, gender: str, age: int, verified: bool = True) -> int:
    return repository.create_registrant(
        f"{gender} {age}",
        gender,
        date(AS_OF.year - age, 1, 1),
        is_verified=verified,
    )


def _assign(service: AccommodationService, registrant_id: int, room_id: int):
    return service.manual_allocate(
        registrant_id=registrant_id,
        room_id=room_id,
        allocated_by="tester",
        as_of=AS_OF,
    )


def test_manual_allocation_succeeds(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Female", 2)
    registrant_id = _add_registrant(repository, "Female", 21)

    allocation = _assign(service, registrant_id, room_id)

    assert allocation.registrant_id == registrant_id
    assert allocation.room_id == room_id
    assert allocation.allocated_by == "tester"
    assert allocation.allocated_at
    assert service.room_state.occupant_ages(room_id, as_of=AS_OF) == [21]


def test_full_room_is_rejected(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Male", 1)
    _assign(service, _add_registrant(repository, "Male", 20), room_id)

    with pytest.raises(AllocationRejectedError) as exc_info:
        _assign(service, _add_registrant(repository, "Male", 20), room_id)

    assert exc_info.value.reason is RejectionReason.ROOM_FULL
    assert len(repository.list_allocations_by_room(room_id)) == 1


def test_gender_mismatch_is_rejected(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Female", 2)
    registrant_id = _add_registrant(repository, "Male", 20)

    with pytest.raises(AllocationRejectedError) as exc_info:
        _assign(service, registrant_id, room_id)

    assert exc_info.value.reason is RejectionReason.GENDER_MISMATCH
    assert "male registrant to female room" in exc_info.value.message
    assert repository.count_allocations() == 0


def test_unverified_check_precedes_room_checks(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Male", 1)
    _assign(service, _add_registrant(repository, "Male", 20), room_id)
    unverified = _add_registrant(repository, "Female", 20, verified=False)

    with pytest.raises(AllocationRejectedError) as exc_info:
        _assign(service, unverified, room_id)

    assert exc_info.value.reason is RejectionReason.NOT_VERIFIED


def test_second_allocation_for_same_registrant_is_rejected(setup):
    service, repository = setup
    first_room = repository.create_room("Room A", "Male", 2)
    second_room = repository.create_room("Room B", "Male", 2)
    registrant_id = _add_registrant(repository, "Male", 20)
    _assign(service, registrant_id, first_room)

    with pytest.raises(AllocationRejectedError) as exc_info:
        _assign(service, registrant_id, second_room)

    assert exc_info.value.reason is RejectionReason.ALREADY_ALLOCATED
    assert exc_info.value.detail["room_id"] == first_room
    assert repository.count_allocations() == 1


def test_inactive_room_is_rejected(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Male", 2)
    repository.set_room_active(room_id, False)

    with pytest.raises(AllocationRejectedError) as exc_info:
        _assign(service, _add_registrant(repository, "Male", 20), room_id)

    assert exc_info.value.reason is RejectionReason.ROOM_INACTIVE


def test_missing_registrant_and_room_are_not_found(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Male", 2)
    registrant_id = _add_registrant(repository, "Male", 20)

    with pytest.raises(AllocationRejectedError) as missing_registrant:
        _assign(service, 9999, room_id)
    with pytest.raises(AllocationRejectedError) as missing_room:
        _assign(service, registrant_id, 9999)

    assert missing_registrant.value.reason is RejectionReason.REGISTRANT_NOT_FOUND
    assert missing_registrant.value.is_not_found
    assert missing_room.value.reason is RejectionReason.ROOM_NOT_FOUND
    assert missing_room.value.is_not_found


def test_age_gap_rejection_reports_resulting_range(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Male", 4)
    _assign(service, _add_registrant(repository, "Male", 14), room_id)
    _assign(service, _add_registrant(repository, "Male", 16), room_id)
    older = _add_registrant(repository, "Male", 22)

    with pytest.raises(AllocationRejectedError) as exc_info:
        _assign(service, older, room_id)

    error = exc_info.value
    assert error.reason is RejectionReason.AGE_GAP_EXCEEDED
    assert error.detail == {
        "candidate_age": 22,
        "existing_min_age": 14,
        "existing_max_age": 16,
        "resulting_min_age": 14,
        "resulting_max_age": 22,
        "resulting_range": 8,
        "max_age_gap": 5,
    }
    assert error.to_dict()["reason"] == "age gap exceeded"

    service.set_max_age_gap(10)
    allocation = _assign(service, older, room_id)
    assert allocation.room_id == room_id


def test_unassign_returns_registrant_to_pool(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Female", 2)
    registrant_id = _add_registrant(repository, "Female", 25)
    _assign(service, registrant_id, room_id)

    removed = service.unassign(registrant_id=registrant_id)

    assert removed.room_id == room_id
    assert repository.get_allocation_by_registrant(registrant_id) is None
    assert [candidate.registrant_id for candidate in service.candidate_pool.candidates(as_of=AS_OF)] == [
        registrant_id
    ]


def test_unassign_without_allocation_raises(setup):
    service, repository = setup
    registrant_id = _add_registrant(repository, "Female", 25)

    with pytest.raises(AllocationNotFoundError):
        service.unassign(registrant_id=registrant_id)


def test_get_allocation_returns_room(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Female", 2)
    registrant_id = _add_registrant(repository, "Female", 25)
    _assign(service, registrant_id, room_id)

    allocation, room = service.get_allocation(registrant_id)

    assert allocation.registrant_id == registrant_id
    assert room.name == "Room A"
    with pytest.raises(AllocationNotFoundError):
        service.get_allocation(9999)


# --- empty rooms ---

def test_empty_rooms_only_touches_requested_gender(setup):
    service, repository = setup
    female_rooms = [repository.create_room(name, "Female", 2) for name in ("Room A", "Room B")]
    male_room = repository.create_room("Room C", "Male", 2)
    female_registrants = [_add_registrant(repository, "Female", age) for age in (20, 21, 22)]
    male_registrant = _add_registrant(repository, "Male", 20)
    _assign(service, female_registrants[0], female_rooms[0])
    _assign(service, female_registrants[1], female_rooms[0])
    _assign(service, female_registrants[2], female_rooms[1])
    _assign(service, male_registrant, male_room)

    result = service.empty_rooms(gender="Female")

    assert result.removed_allocations == 3
    assert result.affected_rooms == 2
    assert result.total_rooms == 2
    assert repository.get_allocation_by_registrant(male_registrant) is not None
    assert all(repository.get_allocation_by_registrant(r) is None for r in female_registrants)


def test_empty_rooms_with_nothing_allocated(setup):
    service, repository = setup
    repository.create_room("Room A", "Male", 2)

    result = service.empty_rooms(gender="Male")

    assert result.removed_allocations == 0
    assert result.affected_rooms == 0
    assert result.total_rooms == 1


def test_empty_rooms_rejects_unknown_gender(setup):
    service, _ = setup

    with pytest.raises(AllocationValidationError):
        service.empty_rooms(gender="Other")


# --- age gap config ---

def test_age_gap_config_defaults_and_updates(setup):
    service, _ = setup

    assert service.get_max_age_gap() == 5
    assert service.set_max_age_gap(8) == 8
    assert service.get_max_age_gap() == 8


@pytest.mark.parametrize("value", [0, 21, True])
def test_age_gap_config_rejects_invalid_values(setup, value):
    service, _ = setup

    with pytest.raises(AllocationValidationError):
        service.set_max_age_gap(value)
    assert service.get_max_age_gap() == 5


def test_unreadable_stored_age_gap_falls_back_to_default(setup):
    service, repository = setup
    repository.set_config_value("accommodation_max_age_gap", "wide")

    assert service.get_max_age_gap() == 5


@pytest.mark.parametrize("stored", ["-3", "0", "21"])
def test_out_of_range_stored_age_gap_falls_back_to_default(setup, stored):
    service, repository = setup
    repository.set_config_value("accommodation_max_age_gap", stored)
    room_id = repository.create_room("Room A", "Male", 3)
    _assign(service, _add_registrant(repository, "Male", 15), room_id)

    assert service.get_max_age_gap() == 5
    allocation = _assign(service, _add_registrant(repository, "Male", 15), room_id)
    assert allocation.room_id == room_id

    repository.create_room("Room B", "Female", 2)
    _add_registrant(repository, "Female", 16)
    report = service.allocate_by_age_group(age_range_years=5, allocated_by="tester", as_of=AS_OF)
    assert report.max_age_gap == 5
    assert report.total_allocated == 1


# --- overview ---

def test_overview_counts_and_occupancy(setup):
    service, repository = setup
    room_id = repository.create_room("Room A", "Female", 3)
    repository.create_room("Room B", "Male", 1)
    repository.create_room("Room C", "Male", 4, is_active=False)
    allocated = _add_registrant(repository, "Female", 20)
    _add_registrant(repository, "Female", 21)
    _add_registrant(repository, "Male", 21, verified=False)
    _assign(service, allocated, room_id)

    overview = service.overview(as_of=AS_OF)

    assert overview.total_registrants == 3
    assert overview.verified_registrants == 2
    assert overview.allocated_registrants == 1
    assert overview.verified_unallocated == 1
    assert overview.total_rooms == 3
    assert overview.active_rooms == 2
    assert overview.total_capacity == 4
    assert overview.occupancy_rate == 25
    assert [snapshot.room.name for snapshot in overview.rooms_by_gender["Female"]] == ["Room A"]
    assert overview.rooms_by_gender["Female"][0].occupant_ages == [20]
    assert [snapshot.room.name for snapshot in overview.rooms_by_gender["Male"]] == ["Room B"]
