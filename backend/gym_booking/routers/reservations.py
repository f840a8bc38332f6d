from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..deps import get_catalog, get_policy, get_session, get_today
from ..domain.catalog import TimeSlotCatalog
from ..domain.errors import BookingRejectedError, ReasonCode, ReservationNotFoundError, StorageError
from ..domain.services import BookingPolicy
from ..infrastructure.repositories import (
    SqlAlchemyAvailabilityIndex,
    SqlAlchemyEquipmentCatalog,
    SqlAlchemyMemberDirectory,
    SqlAlchemyReservationStore,
)
from ..models import Reservation
from ..schemas import ReservationCreate, ReservationPreview, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="", tags=["reservations"])

_REJECTION_STATUS = {
    ReasonCode.INVALID_REFERENCE: status.HTTP_404_NOT_FOUND,
    ReasonCode.DATE_OUT_OF_RANGE: status.HTTP_400_BAD_REQUEST,
    ReasonCode.DAILY_LIMIT_EXCEEDED: status.HTTP_409_CONFLICT,
    ReasonCode.CONSECUTIVE_LIMIT_EXCEEDED: status.HTTP_409_CONFLICT,
    ReasonCode.EQUIPMENT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    ReasonCode.CONFLICT: status.HTTP_409_CONFLICT,
}


def rejection_to_http(exc: BookingRejectedError) -> HTTPException:
    return HTTPException(status_code=_REJECTION_STATUS[exc.reason], detail=exc.as_dict())


async def _render(
    rows: List[Reservation],
    *,
    equipment: SqlAlchemyEquipmentCatalog,
    catalog: TimeSlotCatalog,
) -> list[ReservationRead]:
    labels = await equipment.labels(res.equipment_id for res in rows)
    return [
        ReservationRead.from_db(reservation=res, catalog=catalog, equipment_label=labels.get(res.equipment_id))
        for res in rows
    ]


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
    today: date = Depends(get_today),
    policy: BookingPolicy = Depends(get_policy),
    settings: Settings = Depends(get_settings),
) -> ReservationRead:
    store = SqlAlchemyReservationStore(session, retry_attempts=settings.storage_retry_attempts)
    equipment = SqlAlchemyEquipmentCatalog(session)
    try:
        request = reservation_usecase.build_request(
            catalog,
            member_id=payload.member_id,
            equipment_id=payload.equipment_id,
            on=payload.date,
            slot_ids=payload.slot_ids,
            include_next_slot=payload.include_next_slot,
        )
        reservation = await reservation_usecase.create_reservation(
            store,
            SqlAlchemyAvailabilityIndex(session),
            SqlAlchemyMemberDirectory(session),
            equipment,
            catalog=catalog,
            request=request,
            today=today,
            policy=policy,
        )
    except BookingRejectedError as exc:
        raise rejection_to_http(exc) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage unavailable") from exc

    try:
        emit_audit_log(
            action="reservation.created",
            initiator="member",
            reservation_id=reservation.id,
            member_id=reservation.member_id,
            equipment_id=reservation.equipment_id,
            reserved_on=reservation.date,
            slot_ids=reservation.slot_ids,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed") from exc

    equipment_label = await equipment.label(reservation.equipment_id)
    return ReservationRead.from_db(reservation=reservation, catalog=catalog, equipment_label=equipment_label)


@router.post("/reservations/preview", response_model=ReservationPreview)
async def preview_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
    today: date = Depends(get_today),
    policy: BookingPolicy = Depends(get_policy),
) -> ReservationPreview:
    try:
        request = reservation_usecase.build_request(
            catalog,
            member_id=payload.member_id,
            equipment_id=payload.equipment_id,
            on=payload.date,
            slot_ids=payload.slot_ids,
            include_next_slot=payload.include_next_slot,
        )
    except BookingRejectedError as exc:
        return ReservationPreview.from_rejection(exc)
    try:
        rejection = await reservation_usecase.preview_reservation(
            SqlAlchemyAvailabilityIndex(session),
            SqlAlchemyMemberDirectory(session),
            SqlAlchemyEquipmentCatalog(session),
            catalog=catalog,
            request=request,
            today=today,
            policy=policy,
        )
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage unavailable") from exc
    return ReservationPreview.from_rejection(rejection)


@router.get("/reservations", response_model=List[ReservationRead])
async def list_reservations_on_date(
    on: date = Query(..., alias="date", description="Calendar day (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
) -> list[ReservationRead]:
    store = SqlAlchemyReservationStore(session)
    rows = await reservation_usecase.list_reservations_on_date(store, on=on)
    return await _render(rows, equipment=SqlAlchemyEquipmentCatalog(session), catalog=catalog)


@router.get("/reservations/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
) -> ReservationRead:
    store = SqlAlchemyReservationStore(session)
    reservation = await reservation_usecase.get_reservation(store, reservation_id=reservation_id)
    if reservation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    equipment_label = await SqlAlchemyEquipmentCatalog(session).label(reservation.equipment_id)
    return ReservationRead.from_db(reservation=reservation, catalog=catalog, equipment_label=equipment_label)


@router.delete("/reservations/{reservation_id}", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
) -> ReservationRead:
    store = SqlAlchemyReservationStore(session, retry_attempts=settings.storage_retry_attempts)
    try:
        cancelled = await reservation_usecase.cancel_reservation(store, reservation_id=reservation_id)
    except ReservationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found") from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage unavailable") from exc

    try:
        emit_audit_log(
            action="reservation.cancelled",
            initiator="member",
            reservation_id=cancelled.id,
            member_id=cancelled.member_id,
            equipment_id=cancelled.equipment_id,
            reserved_on=cancelled.date,
            slot_ids=cancelled.slot_ids,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed") from exc

    equipment_label = await SqlAlchemyEquipmentCatalog(session).label(cancelled.equipment_id)
    return ReservationRead.from_db(reservation=cancelled, catalog=catalog, equipment_label=equipment_label)


@router.get("/members/{member_id}/reservations", response_model=List[ReservationRead])
async def list_member_reservations(
    member_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
) -> list[ReservationRead]:
    store = SqlAlchemyReservationStore(session)
    rows = await reservation_usecase.list_member_reservations(store, member_id=member_id)
    return await _render(rows, equipment=SqlAlchemyEquipmentCatalog(session), catalog=catalog)


@router.get("/equipment/{equipment_id}/reservations/future", response_model=List[ReservationRead])
async def list_future_reservations(
    equipment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
    today: date = Depends(get_today),
) -> list[ReservationRead]:
    store = SqlAlchemyReservationStore(session)
    rows = await reservation_usecase.list_future_reservations(store, equipment_id=equipment_id, today=today)
    return await _render(rows, equipment=SqlAlchemyEquipmentCatalog(session), catalog=catalog)
