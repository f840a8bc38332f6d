from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Sequence

from ..config import Settings
from ..models import TimeSlot
from .catalog import TimeSlotCatalog
from .errors import (
    ConsecutiveLimitExceededError,
    DailyLimitExceededError,
    DateOutOfRangeError,
    EquipmentUnavailableError,
    InvalidReferenceError,
)

MAX_SLOTS_PER_RESERVATION = 2


@dataclass(frozen=True)
class BookingPolicy:
    booking_window_days: int = 7
    daily_slot_limit: int = 4
    consecutive_slot_limit: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingPolicy":
        return cls(
            booking_window_days=settings.booking_window_days,
            daily_slot_limit=settings.daily_slot_limit,
            consecutive_slot_limit=settings.consecutive_slot_limit,
        )


DEFAULT_POLICY = BookingPolicy()


@dataclass(frozen=True)
class BookingRequest:
    member_id: int
    equipment_id: int
    date: date
    slot_ids: tuple[int, ...]


@dataclass(frozen=True)
class BookingSnapshot:
    """Everything the rules need, read from storage at one point in time."""

    member_exists: bool
    equipment_exists: bool
    daily_slot_count: int
    same_day_slot_ids: frozenset[int]
    unavailable_slot_ids: frozenset[int]


def resolve_requested_slots(catalog: TimeSlotCatalog, slot_ids: Sequence[int]) -> list[TimeSlot]:
    """Map requested ids onto catalog slots, ordered by start time.

    A request names one slot or two distinct adjacent slots.
    """
    if not 1 <= len(slot_ids) <= MAX_SLOTS_PER_RESERVATION:
        raise InvalidReferenceError(
            f"a reservation holds 1 to {MAX_SLOTS_PER_RESERVATION} time slots",
            slot_ids=list(slot_ids),
        )
    if len(set(slot_ids)) != len(slot_ids):
        raise InvalidReferenceError("time slot requested more than once", slot_ids=list(slot_ids))

    slots: list[TimeSlot] = []
    for slot_id in slot_ids:
        slot = catalog.get(slot_id)
        if slot is None:
            raise InvalidReferenceError(f"time slot {slot_id} does not exist", slot_id=slot_id)
        slots.append(slot)
    slots.sort(key=lambda s: s.start_time)

    if len(slots) == 2 and not catalog.are_adjacent(slots[0], slots[1]):
        raise InvalidReferenceError(
            "requested time slots are not adjacent",
            slot_ids=[s.id for s in slots],
        )
    return slots


def consecutive_runs(slot_ids: Iterable[int], catalog: TimeSlotCatalog) -> list[list[int]]:
    """Split slot ids into maximal runs of consecutive ids that also touch in time.

    Slot ids are assumed to be allocated in ascending time order; the
    ``end == start`` check keeps a reconfigured catalog from chaining slots
    that are not actually back to back.
    """
    runs: list[list[int]] = []
    for slot_id in sorted(set(slot_ids)):
        if runs and _follows(runs[-1][-1], slot_id, catalog):
            runs[-1].append(slot_id)
        else:
            runs.append([slot_id])
    return runs


def _follows(previous_id: int, slot_id: int, catalog: TimeSlotCatalog) -> bool:
    if slot_id != previous_id + 1:
        return False
    previous, current = catalog.get(previous_id), catalog.get(slot_id)
    if previous is None or current is None:
        return False
    return previous.end_time == current.start_time


def validate_booking(
    snapshot: BookingSnapshot,
    *,
    request: BookingRequest,
    catalog: TimeSlotCatalog,
    today: date,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> list[TimeSlot]:
    """
    Pure validation of a booking request against a snapshot.
    Rules run in a fixed order and the first failure is raised.
    Returns the requested slots ordered by start time if OK.
    """
    if not snapshot.member_exists:
        raise InvalidReferenceError(f"member {request.member_id} does not exist", member_id=request.member_id)
    if not snapshot.equipment_exists:
        raise InvalidReferenceError(
            f"equipment {request.equipment_id} does not exist",
            equipment_id=request.equipment_id,
        )
    slots = resolve_requested_slots(catalog, request.slot_ids)

    last_day = today + timedelta(days=policy.booking_window_days)
    if request.date < today:
        raise DateOutOfRangeError("cannot reserve a date in the past", date=request.date.isoformat())
    if request.date > last_day:
        raise DateOutOfRangeError(
            f"cannot reserve more than {policy.booking_window_days} days ahead",
            date=request.date.isoformat(),
            last_bookable_date=last_day.isoformat(),
        )

    if snapshot.daily_slot_count + len(slots) > policy.daily_slot_limit:
        raise DailyLimitExceededError(
            f"at most {policy.daily_slot_limit} time slots per day",
            date=request.date.isoformat(),
            held=snapshot.daily_slot_count,
            requested=len(slots),
        )

    requested_ids = {slot.id for slot in slots}
    for run in consecutive_runs(snapshot.same_day_slot_ids | requested_ids, catalog):
        if len(run) > policy.consecutive_slot_limit and requested_ids.intersection(run):
            raise ConsecutiveLimitExceededError(
                f"at most {policy.consecutive_slot_limit} consecutive time slots per day",
                date=request.date.isoformat(),
                slot_ids=run,
            )

    for slot in slots:
        if slot.id in snapshot.unavailable_slot_ids:
            raise EquipmentUnavailableError(
                f"equipment {request.equipment_id} is already reserved for time slot {slot.id}",
                equipment_id=request.equipment_id,
                slot_id=slot.id,
                date=request.date.isoformat(),
            )
    return slots
