from datetime import date
from typing import List

from ..domain.catalog import TimeSlotCatalog
from ..domain.errors import InvalidReferenceError
from ..domain.repositories import AvailabilityIndex, EquipmentCatalog, TimeSlotRepository
from ..models import TimeSlot
from ..utils.time import is_valid_hhmm


def list_time_slots(catalog: TimeSlotCatalog, *, part_of_day: str | None = None) -> List[TimeSlot]:
    if part_of_day is None:
        return list(catalog.all_slots())
    return list(catalog.slots_for_part_of_day(part_of_day))


async def list_available_slots(
    availability: AvailabilityIndex,
    equipment: EquipmentCatalog,
    *,
    catalog: TimeSlotCatalog,
    equipment_id: int,
    on: date,
) -> List[TimeSlot]:
    if not await equipment.exists(equipment_id):
        raise InvalidReferenceError(f"equipment {equipment_id} does not exist", equipment_id=equipment_id)
    claimed = await availability.claimed_slot_ids(equipment_id, on)
    return [slot for slot in catalog.all_slots() if slot.id not in claimed]


async def create_time_slot(
    slot_repo: TimeSlotRepository,
    *,
    start_time: int,
    end_time: int,
    part_of_day: str,
) -> TimeSlot:
    if not (is_valid_hhmm(start_time) and is_valid_hhmm(end_time)):
        raise ValueError("start_time and end_time must be HHMM values")
    if start_time >= end_time:
        raise ValueError("start_time must be earlier than end_time")
    if not part_of_day.strip():
        raise ValueError("part_of_day must not be empty")
    return await slot_repo.create(start_time=start_time, end_time=end_time, part_of_day=part_of_day.strip())
