from __future__ import annotations

from typing import Iterable

from ..models import TimeSlot
from ..utils.time import format_hhmm


class TimeSlotCatalog:
    """Immutable, start-ordered view of the bookable time slots.

    Built once per request from configuration data and never mutated by the
    booking engine.
    """

    def __init__(self, slots: Iterable[TimeSlot]) -> None:
        self._slots: tuple[TimeSlot, ...] = tuple(sorted(slots, key=lambda s: (s.start_time, s.id)))
        self._by_id: dict[int, TimeSlot] = {slot.id: slot for slot in self._slots}
        self._by_start: dict[int, TimeSlot] = {}
        for slot in self._slots:
            self._by_start.setdefault(slot.start_time, slot)

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, slot_id: object) -> bool:
        return slot_id in self._by_id

    def all_slots(self) -> tuple[TimeSlot, ...]:
        return self._slots

    def slots_for_part_of_day(self, label: str) -> tuple[TimeSlot, ...]:
        wanted = label.casefold()
        return tuple(slot for slot in self._slots if slot.part_of_day.casefold() == wanted)

    def get(self, slot_id: int) -> TimeSlot | None:
        return self._by_id.get(slot_id)

    def next_consecutive(self, slot: TimeSlot) -> TimeSlot | None:
        return self._by_start.get(slot.end_time)

    @staticmethod
    def are_adjacent(first: TimeSlot, second: TimeSlot) -> bool:
        return first.end_time == second.start_time or second.end_time == first.start_time

    @staticmethod
    def format_label(slot: TimeSlot) -> str:
        return f"{format_hhmm(slot.start_time)}–{format_hhmm(slot.end_time)} ({slot.part_of_day})"

    def labels_for(self, slot_ids: Iterable[int]) -> list[str]:
        labels: list[str] = []
        for slot_id in slot_ids:
            slot = self._by_id.get(slot_id)
            labels.append(self.format_label(slot) if slot is not None else f"unknown slot {slot_id}")
        return labels
