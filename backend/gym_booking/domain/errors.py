from __future__ import annotations

from enum import StrEnum
from typing import Any


class ReasonCode(StrEnum):
    INVALID_REFERENCE = "invalid_reference"
    DATE_OUT_OF_RANGE = "date_out_of_range"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    CONSECUTIVE_LIMIT_EXCEEDED = "consecutive_limit_exceeded"
    EQUIPMENT_UNAVAILABLE = "equipment_unavailable"
    CONFLICT = "conflict"


class DomainError(Exception):
    pass


class BookingRejectedError(DomainError):
    """A booking request that cannot be committed.

    ``reason`` is the machine-readable code, ``detail`` names what was
    rejected (slot id, date, ...) so callers can explain it to a member.
    """

    reason: ReasonCode

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def as_dict(self) -> dict[str, Any]:
        return {"reason": self.reason.value, "message": self.message, **self.detail}


class BookingValidationError(BookingRejectedError):
    pass


class InvalidReferenceError(BookingValidationError):
    reason = ReasonCode.INVALID_REFERENCE


class DateOutOfRangeError(BookingValidationError):
    reason = ReasonCode.DATE_OUT_OF_RANGE


class DailyLimitExceededError(BookingValidationError):
    reason = ReasonCode.DAILY_LIMIT_EXCEEDED


class ConsecutiveLimitExceededError(BookingValidationError):
    reason = ReasonCode.CONSECUTIVE_LIMIT_EXCEEDED


class EquipmentUnavailableError(BookingValidationError):
    reason = ReasonCode.EQUIPMENT_UNAVAILABLE


class ReservationConflictError(BookingRejectedError):
    """The unique slot-claim constraint rejected the insert (a lost race)."""

    reason = ReasonCode.CONFLICT


class ReservationNotFoundError(DomainError):
    def __init__(self, reservation_id: int) -> None:
        super().__init__(f"reservation {reservation_id} not found")
        self.reservation_id = reservation_id


class StorageError(DomainError):
    """Persistence kept failing after the configured number of attempts."""


class CommitOutcomeUnknownError(StorageError):
    """The commit failed in flight; the write may or may not be durable."""
