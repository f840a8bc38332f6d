from __future__ import annotations

from datetime import date
from typing import Iterable, Protocol, Sequence

from ..models import Equipment, Reservation, TimeSlot


class MemberDirectory(Protocol):
    async def exists(self, member_id: int) -> bool: ...


class EquipmentCatalog(Protocol):
    async def exists(self, equipment_id: int) -> bool: ...

    async def label(self, equipment_id: int) -> str | None: ...

    async def labels(self, equipment_ids: Iterable[int]) -> dict[int, str]: ...

    async def list_all(self) -> list[Equipment]: ...

    async def list_by_type(self, device_type: str) -> list[Equipment]: ...


class TimeSlotRepository(Protocol):
    async def list_all(self) -> list[TimeSlot]: ...

    async def create(self, *, start_time: int, end_time: int, part_of_day: str) -> TimeSlot: ...


class AvailabilityIndex(Protocol):
    async def is_available(self, equipment_id: int, slot_id: int, on: date) -> bool: ...

    async def daily_reservation_count(self, member_id: int, on: date) -> int: ...

    async def same_day_slots(self, member_id: int, on: date) -> set[int]: ...

    async def claimed_slot_ids(self, equipment_id: int, on: date) -> set[int]: ...

    async def claimed_equipment_ids(self, slot_id: int, on: date) -> set[int]: ...


class ReservationStore(Protocol):
    async def add_atomic(
        self,
        *,
        member_id: int,
        equipment_id: int,
        on: date,
        slot_ids: Sequence[int],
    ) -> Reservation: ...

    async def get_by_id(self, reservation_id: int) -> Reservation | None: ...

    async def get_by_member(self, member_id: int) -> list[Reservation]: ...

    async def delete_by_id(self, reservation_id: int) -> bool: ...

    async def list_future_for_equipment(self, equipment_id: int, since: date) -> list[Reservation]: ...

    async def list_on_date(self, on: date) -> list[Reservation]: ...

    async def find_matching(
        self,
        *,
        member_id: int,
        equipment_id: int,
        on: date,
        slot_ids: Sequence[int],
    ) -> Reservation | None: ...
