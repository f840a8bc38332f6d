from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_catalog, get_session
from ..domain.catalog import TimeSlotCatalog
from ..domain.errors import InvalidReferenceError, StorageError
from ..infrastructure.repositories import SqlAlchemyAvailabilityIndex, SqlAlchemyEquipmentCatalog
from ..schemas import TimeSlotRead
from ..usecases import slots as slot_usecase

router = APIRouter(prefix="/timeslots", tags=["timeslots"])


@router.get("", response_model=List[TimeSlotRead])
async def list_time_slots(catalog: TimeSlotCatalog = Depends(get_catalog)) -> list[TimeSlotRead]:
    return [TimeSlotRead.from_db(slot=slot) for slot in slot_usecase.list_time_slots(catalog)]


@router.get("/part-of-day/{part_of_day}", response_model=List[TimeSlotRead])
async def list_time_slots_for_part_of_day(
    part_of_day: str,
    catalog: TimeSlotCatalog = Depends(get_catalog),
) -> list[TimeSlotRead]:
    slots = slot_usecase.list_time_slots(catalog, part_of_day=part_of_day)
    return [TimeSlotRead.from_db(slot=slot) for slot in slots]


@router.get("/available", response_model=List[TimeSlotRead])
async def list_available_time_slots(
    on: date = Query(..., alias="date", description="Calendar day (YYYY-MM-DD)"),
    equipment_id: int = Query(..., ge=1),
    session: AsyncSession = Depends(get_session),
    catalog: TimeSlotCatalog = Depends(get_catalog),
) -> list[TimeSlotRead]:
    try:
        slots = await slot_usecase.list_available_slots(
            SqlAlchemyAvailabilityIndex(session),
            SqlAlchemyEquipmentCatalog(session),
            catalog=catalog,
            equipment_id=equipment_id,
            on=on,
        )
    except InvalidReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.as_dict()) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage unavailable") from exc
    return [TimeSlotRead.from_db(slot=slot) for slot in slots]
