from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_catalog, get_session
from ..domain.catalog import TimeSlotCatalog
from ..domain.errors import InvalidReferenceError, StorageError
from ..infrastructure.repositories import SqlAlchemyAvailabilityIndex, SqlAlchemyEquipmentCatalog
from ..schemas import AvailabilityRead, EquipmentRead
from ..usecases import equipment as equipment_usecase

router = APIRouter(prefix="/equipment", tags=["equipment"])


@router.get("", response_model=List[EquipmentRead])
async def list_equipment(session: AsyncSession = Depends(get_session)) -> list[EquipmentRead]:
    rows = await equipment_usecase.list_equipment(SqlAlchemyEquipmentCatalog(session))
    return [EquipmentRead.from_db(equipment=item) for item in rows]


@router.get("/type/{device_type}", response_model=List[EquipmentRead])
async def list_equipment_by_type(
    device_type: str,
    session: AsyncSession = Depends(get_session),
) -> list[EquipmentRead]:
    rows = await equipment_usecase.list_equipment(SqlAlchemyEquipmentCatalog(session), device_type=device_type)
    return [EquipmentRead.from_db(equipment=item) for item in rows]


@router.get("/available", response_model=List[EquipmentRead])
async def list_available_equipment(
    time_slot_id: int = Query(..., ge=1),
    on: date = Query(..., alias="date", description="Calendar day (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
) -> list[EquipmentRead]:
    try:
        rows = await equipment_usecase.list_available_equipment(
            SqlAlchemyEquipmentCatalog(session),
            SqlAlchemyAvailabilityIndex(session),
            catalog=catalog,
            slot_id=time_slot_id,
            on=on,
        )
    except InvalidReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.as_dict()) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage unavailable") from exc
    return [EquipmentRead.from_db(equipment=item) for item in rows]


@router.get("/{equipment_id}/availability", response_model=AvailabilityRead)
async def check_availability(
    equipment_id: int = Path(..., ge=1),
    time_slot_id: int = Query(..., ge=1),
    on: date = Query(..., alias="date", description="Calendar day (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
) -> AvailabilityRead:
    try:
        available = await equipment_usecase.check_availability(
            SqlAlchemyEquipmentCatalog(session),
            SqlAlchemyAvailabilityIndex(session),
            catalog=catalog,
            equipment_id=equipment_id,
            slot_id=time_slot_id,
            on=on,
        )
    except InvalidReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.as_dict()) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage unavailable") from exc
    return AvailabilityRead(equipment_id=equipment_id, time_slot_id=time_slot_id, date=on, available=available)
