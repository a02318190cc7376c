"""HTTP controller layer for room allocation."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import get_accommodation_service, require_operator
from backend.domain.models import Allocation, BatchAllocationReport, Room, RoomSnapshot
from backend.services.accommodation_service import AccommodationService
from backend.services.errors import (
    AllocationNotFoundError,
    AllocationRejectedError,
    AllocationValidationError,
)
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

# Handlers are sync: sqlite calls block, so they must run in the threadpool.
router = APIRouter(prefix="/accommodations", tags=["accommodations"])


class AgeGroupedAllocateRequest(BaseModel):
    age_range_years: int = Field(gt=0, le=settings.accommodation_max_age_range_years, strict=True)


class GroupResultResponse(BaseModel):
    group: str
    gender: str
    count: int = Field(ge=0)
    allocated: int = Field(ge=0)
    remaining: int = Field(ge=0)
    status: str
    reason: Optional[str] = None
    average_age: Optional[int] = None
    commit_error: Optional[str] = None


class BatchAllocationResponse(BaseModel):
    success: bool = True
    strategy: str
    status: str
    message: str
    total_processed: int = Field(ge=0)
    total_allocated: int = Field(ge=0)
    total_remaining: int = Field(ge=0)
    groups: list[GroupResultResponse]
    age_range_years: Optional[int] = None
    max_age_gap: Optional[int] = None


class ManualAllocateRequest(BaseModel):
    registrant_id: int = Field(gt=0)
    room_id: int = Field(gt=0)


class AllocationResponse(BaseModel):
    allocation_id: int = Field(gt=0)
    registrant_id: int = Field(gt=0)
    room_id: int = Field(gt=0)
    allocated_at: str
    allocated_by: Optional[str] = None


class ManualAllocateResponse(BaseModel):
    success: bool = True
    message: str
    allocation: AllocationResponse


class UnassignResponse(BaseModel):
    success: bool = True
    message: str
    registrant_id: int
    room_id: int


class RoomResponse(BaseModel):
    room_id: int
    name: str
    gender: str
    capacity: int = Field(ge=1)
    is_active: bool


class AllocationDetailResponse(BaseModel):
    allocation: AllocationResponse
    room: RoomResponse


class EmptyRoomsRequest(BaseModel):
    gender: str


class EmptyRoomsResponse(BaseModel):
    success: bool = True
    message: str
    gender: str
    removed_allocations: int = Field(ge=0)
    affected_rooms: int = Field(ge=0)
    total_rooms: int = Field(ge=0)


class AgeGapConfigRequest(BaseModel):
    age_gap: int


class AgeGapConfigResponse(BaseModel):
    age_gap: int


class OccupantResponse(BaseModel):
    registrant_id: int
    age: int


class RoomStateResponse(RoomResponse):
    occupant_count: int = Field(ge=0)
    available_slots: int = Field(ge=0)
    occupants: list[OccupantResponse]


class OverviewResponse(BaseModel):
    total_registrants: int = Field(ge=0)
    verified_registrants: int = Field(ge=0)
    allocated_registrants: int = Field(ge=0)
    verified_unallocated: int = Field(ge=0)
    total_rooms: int = Field(ge=0)
    active_rooms: int = Field(ge=0)
    total_capacity: int = Field(ge=0)
    occupied_spaces: int = Field(ge=0)
    occupancy_rate: int = Field(ge=0)
    rooms_by_gender: dict[str, list[RoomStateResponse]]


def _allocation_response(allocation: Allocation) -> AllocationResponse:
    return AllocationResponse(
        allocation_id=allocation.allocation_id,
        registrant_id=allocation.registrant_id,
        room_id=allocation.room_id,
        allocated_at=allocation.allocated_at,
        allocated_by=allocation.allocated_by,
    )


def _room_response(room: Room) -> RoomResponse:
    return RoomResponse(
        room_id=room.room_id,
        name=room.name,
        gender=room.gender,
        capacity=room.capacity,
        is_active=room.is_active,
    )


def _room_state_response(snapshot: RoomSnapshot) -> RoomStateResponse:
    room = snapshot.room
    return RoomStateResponse(
        room_id=room.room_id,
        name=room.name,
        gender=room.gender,
        capacity=room.capacity,
        is_active=room.is_active,
        occupant_count=snapshot.occupant_count,
        available_slots=snapshot.available_slots,
        occupants=[
            OccupantResponse(registrant_id=occupant.registrant_id, age=occupant.age)
            for occupant in snapshot.occupants
        ],
    )


def _batch_response(report: BatchAllocationReport) -> BatchAllocationResponse:
    return BatchAllocationResponse(
        strategy=report.strategy.value,
        status=report.status.value,
        message=report.message,
        total_processed=report.total_processed,
        total_allocated=report.total_allocated,
        total_remaining=report.total_remaining,
        groups=[
            GroupResultResponse(
                group=result.group,
                gender=result.gender,
                count=result.count,
                allocated=result.allocated,
                remaining=result.remaining,
                status=result.status.value,
                reason=result.reason,
                average_age=result.average_age,
                commit_error=result.commit_error,
            )
            for result in report.groups
        ],
        age_range_years=report.age_range_years,
        max_age_gap=report.max_age_gap,
    )


def _rejection_to_http(exc: AllocationRejectedError) -> HTTPException:
    return HTTPException(
        status_code=(
            status.HTTP_404_NOT_FOUND if exc.is_not_found else status.HTTP_400_BAD_REQUEST
        ),
        detail=exc.to_dict(),
    )


def _not_found_to_http(exc: AllocationNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"reason": AllocationNotFoundError.reason, "message": str(exc)},
    )


@router.get(
    "",
    response_model=OverviewResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_operator)],
)
def get_overview(
    service: AccommodationService = Depends(get_accommodation_service),
) -> OverviewResponse:
    try:
        overview = service.overview()
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected overview failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load accommodations",
        ) from exc
    return OverviewResponse(
        total_registrants=overview.total_registrants,
        verified_registrants=overview.verified_registrants,
        allocated_registrants=overview.allocated_registrants,
        verified_unallocated=overview.verified_unallocated,
        total_rooms=overview.total_rooms,
        active_rooms=overview.active_rooms,
        total_capacity=overview.total_capacity,
        occupied_spaces=overview.occupied_spaces,
        occupancy_rate=overview.occupancy_rate,
        rooms_by_gender={
            gender: [_room_state_response(snapshot) for snapshot in snapshots]
            for gender, snapshots in overview.rooms_by_gender.items()
        },
    )


@router.post(
    "/allocate",
    response_model=BatchAllocationResponse,
    status_code=status.HTTP_200_OK,
)
def allocate_by_age_group(
    payload: AgeGroupedAllocateRequest,
    operator: str = Depends(require_operator),
    service: AccommodationService = Depends(get_accommodation_service),
) -> BatchAllocationResponse:
    """Allocate every verified, unallocated registrant in age bands."""
    try:
        report = service.allocate_by_age_group(
            age_range_years=payload.age_range_years,
            allocated_by=operator,
        )
        return _batch_response(report)
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected age-grouped allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate rooms",
        ) from exc


@router.post(
    "/random-allocate",
    response_model=BatchAllocationResponse,
    status_code=status.HTTP_200_OK,
)
def allocate_randomly(
    operator: str = Depends(require_operator),
    service: AccommodationService = Depends(get_accommodation_service),
) -> BatchAllocationResponse:
    try:
        return _batch_response(service.allocate_randomly(allocated_by=operator))
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected random allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to perform random allocation",
        ) from exc


@router.post(
    "/manual-allocate",
    response_model=ManualAllocateResponse,
    status_code=status.HTTP_200_OK,
)
def manual_allocate(
    payload: ManualAllocateRequest,
    operator: str = Depends(require_operator),
    service: AccommodationService = Depends(get_accommodation_service),
) -> ManualAllocateResponse:
    try:
        allocation = service.manual_allocate(
            registrant_id=payload.registrant_id,
            room_id=payload.room_id,
            allocated_by=operator,
        )
        return ManualAllocateResponse(
            message="Registration allocated successfully",
            allocation=_allocation_response(allocation),
        )
    except AllocationRejectedError as exc:
        raise _rejection_to_http(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected manual allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate registration",
        ) from exc


@router.delete(
    "/manual-allocate",
    response_model=UnassignResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_operator)],
)
def unassign(
    registrant_id: int = Query(gt=0),
    service: AccommodationService = Depends(get_accommodation_service),
) -> UnassignResponse:
    try:
        removed = service.unassign(registrant_id=registrant_id)
        return UnassignResponse(
            message="Allocation removed successfully",
            registrant_id=removed.registrant_id,
            room_id=removed.room_id,
        )
    except AllocationNotFoundError as exc:
        raise _not_found_to_http(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected unassign failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to remove allocation",
        ) from exc


@router.get(
    "/allocation/{registrant_id}",
    response_model=AllocationDetailResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_operator)],
)
def get_allocation(
    registrant_id: int,
    service: AccommodationService = Depends(get_accommodation_service),
) -> AllocationDetailResponse:
    try:
        allocation, room = service.get_allocation(registrant_id)
        return AllocationDetailResponse(
            allocation=_allocation_response(allocation),
            room=_room_response(room),
        )
    except AllocationNotFoundError as exc:
        raise _not_found_to_http(exc) from exc


@router.post(
    "/empty-all",
    response_model=EmptyRoomsResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_operator)],
)
def empty_all_rooms(
    payload: EmptyRoomsRequest,
    service: AccommodationService = Depends(get_accommodation_service),
) -> EmptyRoomsResponse:
    try:
        result = service.empty_rooms(gender=payload.gender)
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected empty-all failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to empty all rooms",
        ) from exc

    if result.removed_allocations:
        message = f"Successfully emptied all {result.gender.lower()} rooms"
    else:
        message = f"All {result.gender.lower()} rooms are already empty"
    return EmptyRoomsResponse(
        message=message,
        gender=result.gender,
        removed_allocations=result.removed_allocations,
        affected_rooms=result.affected_rooms,
        total_rooms=result.total_rooms,
    )


@router.get(
    "/age-gap-config",
    response_model=AgeGapConfigResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_operator)],
)
def get_age_gap_config(
    service: AccommodationService = Depends(get_accommodation_service),
) -> AgeGapConfigResponse:
    return AgeGapConfigResponse(age_gap=service.get_max_age_gap())


@router.post(
    "/age-gap-config",
    response_model=AgeGapConfigResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_operator)],
)
def update_age_gap_config(
    payload: AgeGapConfigRequest,
    service: AccommodationService = Depends(get_accommodation_service),
) -> AgeGapConfigResponse:
    try:
        return AgeGapConfigResponse(age_gap=service.set_max_age_gap(payload.age_gap))
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
