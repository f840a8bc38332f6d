from __future__ import annotations

import logging
from datetime import date
from typing import Any, Awaitable, Callable, Iterable, List, Sequence, TypeVar

from sqlalchemy import Select, delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.catalog import TimeSlotCatalog
from ..domain.errors import CommitOutcomeUnknownError, ReservationConflictError, StorageError
from ..domain.repositories import (
    AvailabilityIndex,
    EquipmentCatalog,
    MemberDirectory,
    ReservationStore,
    TimeSlotRepository,
)
from ..models import Equipment, Member, Reservation, ReservationSlot, TimeSlot
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _GuardedReads:
    """Session reads that surface driver failures as ``StorageError``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _scalar(self, stmt: Any) -> Any:
        try:
            return await self.session.scalar(stmt)
        except OperationalError as exc:
            raise StorageError("storage read failed") from exc

    async def _scalars(self, stmt: Any) -> Any:
        try:
            return await self.session.scalars(stmt)
        except OperationalError as exc:
            raise StorageError("storage read failed") from exc

    async def _execute(self, stmt: Any) -> Any:
        try:
            return await self.session.execute(stmt)
        except OperationalError as exc:
            raise StorageError("storage read failed") from exc


class SqlAlchemyMemberDirectory(_GuardedReads, MemberDirectory):
    async def exists(self, member_id: int) -> bool:
        return await self._scalar(select(Member.id).where(Member.id == member_id)) is not None


class SqlAlchemyEquipmentCatalog(_GuardedReads, EquipmentCatalog):
    async def exists(self, equipment_id: int) -> bool:
        return await self._scalar(select(Equipment.id).where(Equipment.id == equipment_id)) is not None

    async def label(self, equipment_id: int) -> str | None:
        return await self._scalar(select(Equipment.device_type).where(Equipment.id == equipment_id))

    async def labels(self, equipment_ids: Iterable[int]) -> dict[int, str]:
        ids = set(equipment_ids)
        if not ids:
            return {}
        rows = await self._execute(
            select(Equipment.id, Equipment.device_type).where(Equipment.id.in_(ids))
        )
        return {equipment_id: device_type for equipment_id, device_type in rows.all()}

    async def list_all(self) -> List[Equipment]:
        rows = await self._scalars(select(Equipment).order_by(Equipment.id))
        return list(rows.all())

    async def list_by_type(self, device_type: str) -> List[Equipment]:
        rows = await self._scalars(
            select(Equipment).where(Equipment.device_type == device_type).order_by(Equipment.id)
        )
        return list(rows.all())


class SqlAlchemyTimeSlotRepository(_GuardedReads, TimeSlotRepository):
    async def list_all(self) -> List[TimeSlot]:
        rows = await self._scalars(select(TimeSlot).order_by(TimeSlot.start_time, TimeSlot.id))
        return list(rows.all())

    async def load_catalog(self) -> TimeSlotCatalog:
        slots = await self.list_all()
        # Detached so a rollback later in the request cannot expire them.
        for slot in slots:
            self.session.expunge(slot)
        return TimeSlotCatalog(slots)

    async def create(self, *, start_time: int, end_time: int, part_of_day: str) -> TimeSlot:
        slot = TimeSlot(start_time=start_time, end_time=end_time, part_of_day=part_of_day)
        self.session.add(slot)
        await self.session.flush()
        return slot


class SqlAlchemyAvailabilityIndex(_GuardedReads, AvailabilityIndex):
    """Read-only queries over the committed slot claims."""

    async def is_available(self, equipment_id: int, slot_id: int, on: date) -> bool:
        stmt = (
            select(ReservationSlot.id)
            .where(
                ReservationSlot.equipment_id == equipment_id,
                ReservationSlot.date == on,
                ReservationSlot.time_slot_id == slot_id,
            )
            .limit(1)
        )
        return await self._scalar(stmt) is None

    async def daily_reservation_count(self, member_id: int, on: date) -> int:
        stmt = (
            select(func.count(ReservationSlot.id))
            .join(Reservation, ReservationSlot.reservation_id == Reservation.id)
            .where(Reservation.member_id == member_id, Reservation.date == on)
        )
        return int(await self._scalar(stmt) or 0)

    async def same_day_slots(self, member_id: int, on: date) -> set[int]:
        stmt = (
            select(ReservationSlot.time_slot_id)
            .join(Reservation, ReservationSlot.reservation_id == Reservation.id)
            .where(Reservation.member_id == member_id, Reservation.date == on)
        )
        rows = await self._scalars(stmt)
        return set(rows.all())

    async def claimed_slot_ids(self, equipment_id: int, on: date) -> set[int]:
        rows = await self._scalars(
            select(ReservationSlot.time_slot_id).where(
                ReservationSlot.equipment_id == equipment_id,
                ReservationSlot.date == on,
            )
        )
        return set(rows.all())

    async def claimed_equipment_ids(self, slot_id: int, on: date) -> set[int]:
        rows = await self._scalars(
            select(ReservationSlot.equipment_id).where(
                ReservationSlot.time_slot_id == slot_id,
                ReservationSlot.date == on,
            )
        )
        return set(rows.all())


class SqlAlchemyReservationStore(_GuardedReads, ReservationStore):
    """Sole writer of reservations.

    Each write commits its own transaction. The ``uq_reservation_slots_claim``
    constraint decides races between concurrent inserts.
    """

    def __init__(self, session: AsyncSession, *, retry_attempts: int = 3) -> None:
        super().__init__(session)
        self.retry_attempts = retry_attempts

    async def add_atomic(
        self,
        *,
        member_id: int,
        equipment_id: int,
        on: date,
        slot_ids: Sequence[int],
    ) -> Reservation:
        async def insert() -> Reservation:
            reservation = Reservation(
                member_id=member_id,
                equipment_id=equipment_id,
                date=on,
                created_at=utc_now_naive(),
                slots=[
                    ReservationSlot(equipment_id=equipment_id, date=on, time_slot_id=slot_id)
                    for slot_id in slot_ids
                ],
            )
            self.session.add(reservation)
            await self.session.flush()
            return reservation

        try:
            return await self._commit_with_retry(insert, action="reservation insert")
        except IntegrityError as exc:
            raise ReservationConflictError(
                f"equipment {equipment_id} was claimed concurrently",
                equipment_id=equipment_id,
                date=on.isoformat(),
                slot_ids=list(slot_ids),
            ) from exc

    async def get_by_id(self, reservation_id: int) -> Reservation | None:
        result = await self._scalar(select(Reservation).where(Reservation.id == reservation_id))
        if not isinstance(result, Reservation):
            return None
        # Reservations are immutable; hand out a detached copy that survives rollbacks.
        self.session.expunge(result)
        return result

    async def get_by_member(self, member_id: int) -> List[Reservation]:
        return await self._list_ordered(Reservation.member_id == member_id)

    async def list_future_for_equipment(self, equipment_id: int, since: date) -> List[Reservation]:
        return await self._list_ordered(Reservation.equipment_id == equipment_id, Reservation.date >= since)

    async def list_on_date(self, on: date) -> List[Reservation]:
        return await self._list_ordered(Reservation.date == on)

    async def find_matching(
        self,
        *,
        member_id: int,
        equipment_id: int,
        on: date,
        slot_ids: Sequence[int],
    ) -> Reservation | None:
        """Return the member's reservation holding exactly ``slot_ids`` on that equipment and day."""
        wanted = set(slot_ids)
        for reservation in await self._list_ordered(
            Reservation.member_id == member_id,
            Reservation.equipment_id == equipment_id,
            Reservation.date == on,
        ):
            if set(reservation.slot_ids) == wanted:
                return reservation
        return None

    async def delete_by_id(self, reservation_id: int) -> bool:
        async def remove() -> bool:
            await self.session.execute(
                delete(ReservationSlot).where(ReservationSlot.reservation_id == reservation_id)
            )
            result = await self.session.execute(delete(Reservation).where(Reservation.id == reservation_id))
            return bool(result.rowcount)

        return await self._commit_with_retry(remove, action="reservation delete")

    async def _list_ordered(self, *criteria: Any) -> List[Reservation]:
        first_start = (
            select(
                ReservationSlot.reservation_id,
                func.min(TimeSlot.start_time).label("first_start"),
            )
            .join(TimeSlot, ReservationSlot.time_slot_id == TimeSlot.id)
            .group_by(ReservationSlot.reservation_id)
            .subquery()
        )
        stmt: Select[tuple[Reservation]] = (
            select(Reservation)
            .join(first_start, first_start.c.reservation_id == Reservation.id)
            .where(*criteria)
            .order_by(Reservation.date, first_start.c.first_start, Reservation.id)
        )
        rows = await self._scalars(stmt)
        return list(rows.all())

    async def _commit_with_retry(self, operation: Callable[[], Awaitable[T]], *, action: str) -> T:
        """Run ``operation`` (which flushes) and commit it.

        Failures while flushing leave nothing durable, so they are retried.
        A failure during COMMIT is not: the server may have applied it before
        the connection broke, and the caller has to look before writing again.
        """
        last_error: OperationalError | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                result = await operation()
            except IntegrityError:
                await self.session.rollback()
                raise
            except OperationalError as exc:
                await self.session.rollback()
                last_error = exc
                logger.warning("%s failed (attempt %d/%d): %s", action, attempt, self.retry_attempts, exc)
                continue
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                raise
            except OperationalError as exc:
                await self.session.rollback()
                logger.error("%s commit failed, outcome unknown: %s", action, exc)
                raise CommitOutcomeUnknownError(f"{action} commit outcome unknown") from exc
            return result
        raise StorageError(f"{action} failed after {self.retry_attempts} attempts") from last_error
