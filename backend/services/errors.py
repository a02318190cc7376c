"""Exceptions shared by the allocation services."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class RejectionReason(str, Enum):
    REGISTRANT_NOT_FOUND = "registrant not found"
    NOT_VERIFIED = "not verified"
    ALREADY_ALLOCATED = "already allocated"
    ROOM_NOT_FOUND = "room not found"
    ROOM_INACTIVE = "room inactive"
    ROOM_FULL = "room full"
    GENDER_MISMATCH = "gender mismatch"
    AGE_GAP_EXCEEDED = "age gap exceeded"


class AllocationError(Exception):
    """Base exception for accommodation allocation failures."""


class AllocationValidationError(AllocationError):
    """Raised when request inputs are missing or malformed; nothing is written."""


class AllocationRejectedError(AllocationError):
    """Raised when current state forbids a single assignment."""

    def __init__(
        self,
        reason: RejectionReason,
        message: str,
        detail: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.detail = dict(detail or {})

    @property
    def is_not_found(self) -> bool:
        return self.reason in (
            RejectionReason.REGISTRANT_NOT_FOUND,
            RejectionReason.ROOM_NOT_FOUND,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"reason": self.reason.value, "message": self.message, **self.detail}


class AllocationNotFoundError(AllocationError):
    """Raised when a registrant holds no allocation."""

    reason = "not found"
