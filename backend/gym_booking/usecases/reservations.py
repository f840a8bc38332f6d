import logging
from datetime import date
from typing import Sequence

from ..domain.catalog import TimeSlotCatalog
from ..domain.errors import (
    BookingValidationError,
    CommitOutcomeUnknownError,
    InvalidReferenceError,
    ReservationConflictError,
    ReservationNotFoundError,
)
from ..domain.repositories import AvailabilityIndex, EquipmentCatalog, MemberDirectory, ReservationStore
from ..domain.services import (
    DEFAULT_POLICY,
    BookingPolicy,
    BookingRequest,
    BookingSnapshot,
    validate_booking,
)
from ..models import Reservation

logger = logging.getLogger(__name__)


def build_request(
    catalog: TimeSlotCatalog,
    *,
    member_id: int,
    equipment_id: int,
    on: date,
    slot_ids: Sequence[int],
    include_next_slot: bool = False,
) -> BookingRequest:
    """Turn the outward create payload into a request for one or two slots."""
    requested = tuple(slot_ids)
    if include_next_slot:
        if len(requested) != 1:
            raise InvalidReferenceError(
                "include_next_slot needs exactly one requested time slot",
                slot_ids=list(requested),
            )
        slot = catalog.get(requested[0])
        if slot is None:
            raise InvalidReferenceError(f"time slot {requested[0]} does not exist", slot_id=requested[0])
        following = catalog.next_consecutive(slot)
        if following is None:
            raise InvalidReferenceError(f"time slot {slot.id} has no following time slot", slot_id=slot.id)
        requested = (slot.id, following.id)
    return BookingRequest(member_id=member_id, equipment_id=equipment_id, date=on, slot_ids=requested)


async def take_snapshot(
    availability: AvailabilityIndex,
    members: MemberDirectory,
    equipment: EquipmentCatalog,
    *,
    catalog: TimeSlotCatalog,
    request: BookingRequest,
) -> BookingSnapshot:
    unavailable: set[int] = set()
    for slot_id in request.slot_ids:
        if slot_id in catalog and not await availability.is_available(request.equipment_id, slot_id, request.date):
            unavailable.add(slot_id)
    return BookingSnapshot(
        member_exists=await members.exists(request.member_id),
        equipment_exists=await equipment.exists(request.equipment_id),
        daily_slot_count=await availability.daily_reservation_count(request.member_id, request.date),
        same_day_slot_ids=frozenset(await availability.same_day_slots(request.member_id, request.date)),
        unavailable_slot_ids=frozenset(unavailable),
    )


async def create_reservation(
    store: ReservationStore,
    availability: AvailabilityIndex,
    members: MemberDirectory,
    equipment: EquipmentCatalog,
    *,
    catalog: TimeSlotCatalog,
    request: BookingRequest,
    today: date,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> Reservation:
    """Validate and commit a booking as a single reservation owning every requested slot.

    A lost race at commit time is re-validated against fresh state once; a
    second lost race is surfaced as ``ReservationConflictError``. When the
    commit itself broke, the store is re-queried first: a booking that did
    land is returned as is, otherwise the request goes through full
    validation again before a second insert.
    """
    try:
        return await _validate_and_insert(
            store, availability, members, equipment, catalog=catalog, request=request, today=today, policy=policy
        )
    except ReservationConflictError:
        logger.info(
            "lost booking race for equipment %s on %s, slots %s; re-validating",
            request.equipment_id,
            request.date,
            list(request.slot_ids),
        )
    except CommitOutcomeUnknownError:
        existing = await store.find_matching(
            member_id=request.member_id,
            equipment_id=request.equipment_id,
            on=request.date,
            slot_ids=request.slot_ids,
        )
        if existing is not None:
            logger.info("booking %s was committed despite the commit error", existing.id)
            return existing
        logger.warning(
            "booking for member %s was not committed; re-validating before retry", request.member_id
        )
    return await _validate_and_insert(
        store, availability, members, equipment, catalog=catalog, request=request, today=today, policy=policy
    )


async def _validate_and_insert(
    store: ReservationStore,
    availability: AvailabilityIndex,
    members: MemberDirectory,
    equipment: EquipmentCatalog,
    *,
    catalog: TimeSlotCatalog,
    request: BookingRequest,
    today: date,
    policy: BookingPolicy,
) -> Reservation:
    snapshot = await take_snapshot(availability, members, equipment, catalog=catalog, request=request)
    try:
        slots = validate_booking(snapshot, request=request, catalog=catalog, today=today, policy=policy)
    except BookingValidationError as exc:
        logger.info("booking rejected for member %s: %s %s", request.member_id, exc.reason.value, exc.detail)
        raise
    return await store.add_atomic(
        member_id=request.member_id,
        equipment_id=request.equipment_id,
        on=request.date,
        slot_ids=[slot.id for slot in slots],
    )


async def preview_reservation(
    availability: AvailabilityIndex,
    members: MemberDirectory,
    equipment: EquipmentCatalog,
    *,
    catalog: TimeSlotCatalog,
    request: BookingRequest,
    today: date,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> BookingValidationError | None:
    """Run every booking rule without writing. Returns the rejection, or None if bookable."""
    snapshot = await take_snapshot(availability, members, equipment, catalog=catalog, request=request)
    try:
        validate_booking(snapshot, request=request, catalog=catalog, today=today, policy=policy)
    except BookingValidationError as exc:
        return exc
    return None


async def cancel_reservation(
    store: ReservationStore,
    *,
    reservation_id: int,
) -> Reservation:
    reservation = await store.get_by_id(reservation_id)
    if reservation is None:
        logger.warning("attempted to cancel missing reservation %s", reservation_id)
        raise ReservationNotFoundError(reservation_id)
    try:
        deleted = await store.delete_by_id(reservation_id)
    except CommitOutcomeUnknownError:
        # The delete may have landed; only a still-present row means it did not.
        if await store.get_by_id(reservation_id) is not None:
            raise
        return reservation
    # Another request may have cancelled it between the lookup and the delete.
    if not deleted:
        raise ReservationNotFoundError(reservation_id)
    return reservation


async def get_reservation(
    store: ReservationStore,
    *,
    reservation_id: int,
) -> Reservation | None:
    return await store.get_by_id(reservation_id)


async def list_member_reservations(
    store: ReservationStore,
    *,
    member_id: int,
) -> list[Reservation]:
    return await store.get_by_member(member_id)


async def list_future_reservations(
    store: ReservationStore,
    *,
    equipment_id: int,
    today: date,
) -> list[Reservation]:
    return await store.list_future_for_equipment(equipment_id, since=today)


async def list_reservations_on_date(
    store: ReservationStore,
    *,
    on: date,
) -> list[Reservation]:
    return await store.list_on_date(on)
