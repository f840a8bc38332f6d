from datetime import date
from typing import List

from ..domain.catalog import TimeSlotCatalog
from ..domain.errors import InvalidReferenceError
from ..domain.repositories import AvailabilityIndex, EquipmentCatalog
from ..models import Equipment


async def list_equipment(
    equipment: EquipmentCatalog,
    *,
    device_type: str | None = None,
) -> List[Equipment]:
    if device_type is None:
        return await equipment.list_all()
    return await equipment.list_by_type(device_type)


async def list_available_equipment(
    equipment: EquipmentCatalog,
    availability: AvailabilityIndex,
    *,
    catalog: TimeSlotCatalog,
    slot_id: int,
    on: date,
) -> List[Equipment]:
    if slot_id not in catalog:
        raise InvalidReferenceError(f"time slot {slot_id} does not exist", slot_id=slot_id)
    claimed = await availability.claimed_equipment_ids(slot_id, on)
    return [item for item in await equipment.list_all() if item.id not in claimed]


async def check_availability(
    equipment: EquipmentCatalog,
    availability: AvailabilityIndex,
    *,
    catalog: TimeSlotCatalog,
    equipment_id: int,
    slot_id: int,
    on: date,
) -> bool:
    if slot_id not in catalog:
        raise InvalidReferenceError(f"time slot {slot_id} does not exist", slot_id=slot_id)
    if not await equipment.exists(equipment_id):
        raise InvalidReferenceError(f"equipment {equipment_id} does not exist", equipment_id=equipment_id)
    return await availability.is_available(equipment_id, slot_id, on)
