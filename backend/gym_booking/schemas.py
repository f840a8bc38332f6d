import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .domain.catalog import TimeSlotCatalog
from .domain.errors import BookingRejectedError
from .models import Equipment, Reservation, TimeSlot


class TimeSlotRead(BaseModel):
    time_slot_id: int
    start_time: int
    end_time: int
    part_of_day: str
    label: str

    @classmethod
    def from_db(cls, *, slot: TimeSlot) -> "TimeSlotRead":
        return cls(
            time_slot_id=slot.id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            part_of_day=slot.part_of_day,
            label=TimeSlotCatalog.format_label(slot),
        )


class EquipmentRead(BaseModel):
    equipment_id: int
    device_type: str

    @classmethod
    def from_db(cls, *, equipment: Equipment) -> "EquipmentRead":
        return cls(equipment_id=equipment.id, device_type=equipment.device_type)


class AvailabilityRead(BaseModel):
    equipment_id: int
    time_slot_id: int
    date: dt.date
    available: bool


class ReservationCreate(BaseModel):
    member_id: int = Field(ge=1)
    equipment_id: int = Field(ge=1)
    date: dt.date
    slot_ids: List[int]
    include_next_slot: bool = False


class ReservationPreview(BaseModel):
    bookable: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_rejection(cls, rejection: Optional[BookingRejectedError]) -> "ReservationPreview":
        if rejection is None:
            return cls(bookable=True)
        return cls(
            bookable=False,
            reason=rejection.reason.value,
            message=rejection.message,
            detail=rejection.detail,
        )


class ReservationRead(BaseModel):
    reservation_id: int
    member_id: int
    equipment_id: int
    date: dt.date
    equipment_label: str
    slot_ids: List[int]
    slot_labels: List[str]

    @classmethod
    def from_db(
        cls,
        *,
        reservation: Reservation,
        catalog: TimeSlotCatalog,
        equipment_label: Optional[str] = None,
    ) -> "ReservationRead":
        slot_ids = sorted(
            reservation.slot_ids,
            key=lambda slot_id: (getattr(catalog.get(slot_id), "start_time", 0), slot_id),
        )
        return cls(
            reservation_id=reservation.id,
            member_id=reservation.member_id,
            equipment_id=reservation.equipment_id,
            date=reservation.date,
            equipment_label=equipment_label or "Unknown Equipment",
            slot_ids=slot_ids,
            slot_labels=catalog.labels_for(slot_ids),
        )
