from datetime import date, timedelta
from typing import AsyncIterator

import pytest
import pytest_asyncio
from gym_booking.domain.errors import CommitOutcomeUnknownError, ReservationConflictError, StorageError
from gym_booking.infrastructure.repositories import (
    SqlAlchemyAvailabilityIndex,
    SqlAlchemyEquipmentCatalog,
    SqlAlchemyMemberDirectory,
    SqlAlchemyReservationStore,
    SqlAlchemyTimeSlotRepository,
)
from gym_booking.models import Base, Equipment, Member, Reservation, ReservationSlot, TimeSlot
from gym_booking.usecases import reservations as reservation_usecase
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

ON = date(2026, 10, 20)


@pytest_asyncio.fixture
async def session() -> AsyncIterator[AsyncSession]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as db:
        db.add_all(
            [
                Member(id=1, first_name="Ada", last_name="Peeters"),
                Member(id=2, first_name="Bram", last_name="Claes"),
                Equipment(id=5, device_type="Treadmill"),
                Equipment(id=6, device_type="Bike"),
                TimeSlot(id=1, start_time=800, end_time=900, part_of_day="morning"),
                TimeSlot(id=2, start_time=900, end_time=1000, part_of_day="morning"),
                TimeSlot(id=3, start_time=1000, end_time=1100, part_of_day="morning"),
                # registered late but earliest in the day
                TimeSlot(id=4, start_time=700, end_time=800, part_of_day="morning"),
            ]
        )
        await db.commit()
        yield db
    await engine.dispose()


async def _count(session: AsyncSession, model: type[Base]) -> int:
    return int(await session.scalar(select(func.count()).select_from(model)) or 0)


@pytest.mark.asyncio
async def test_add_atomic_persists_reservation_with_its_claims(session: AsyncSession) -> None:
    store = SqlAlchemyReservationStore(session)
    created = await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[1, 2])

    assert created.id is not None
    assert created.slot_ids == [1, 2]

    fetched = await store.get_by_id(created.id)
    assert fetched is not None
    assert (fetched.member_id, fetched.equipment_id, fetched.date) == (1, 5, ON)
    assert fetched.slot_ids == [1, 2]
    assert await _count(session, ReservationSlot) == 2


@pytest.mark.asyncio
async def test_add_atomic_rejects_claim_already_taken(session: AsyncSession) -> None:
    store = SqlAlchemyReservationStore(session)
    await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[1])

    with pytest.raises(ReservationConflictError) as excinfo:
        await store.add_atomic(member_id=2, equipment_id=5, on=ON, slot_ids=[1])

    assert excinfo.value.detail["equipment_id"] == 5
    assert await _count(session, Reservation) == 1
    # same slot on other equipment or another day is still free
    await store.add_atomic(member_id=2, equipment_id=6, on=ON, slot_ids=[1])
    await store.add_atomic(member_id=2, equipment_id=5, on=ON + timedelta(days=1), slot_ids=[1])


@pytest.mark.asyncio
async def test_partial_conflict_leaves_no_rows_behind(session: AsyncSession) -> None:
    store = SqlAlchemyReservationStore(session)
    await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[2])

    with pytest.raises(ReservationConflictError):
        await store.add_atomic(member_id=2, equipment_id=5, on=ON, slot_ids=[1, 2])

    availability = SqlAlchemyAvailabilityIndex(session)
    assert await availability.is_available(5, 1, ON) is True
    assert await availability.claimed_slot_ids(5, ON) == {2}
    assert await _count(session, Reservation) == 1
    assert await _count(session, ReservationSlot) == 1


@pytest.mark.asyncio
async def test_delete_by_id_frees_the_claims(session: AsyncSession) -> None:
    store = SqlAlchemyReservationStore(session)
    created = await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[1, 2])

    assert await store.delete_by_id(created.id) is True
    assert await store.get_by_id(created.id) is None
    assert await _count(session, ReservationSlot) == 0
    assert await store.delete_by_id(created.id) is False

    again = await store.add_atomic(member_id=2, equipment_id=5, on=ON, slot_ids=[1])
    assert again.slot_ids == [1]


@pytest.mark.asyncio
async def test_listings_are_ordered_by_date_then_earliest_start(session: AsyncSession) -> None:
    store = SqlAlchemyReservationStore(session)
    later_day = await store.add_atomic(member_id=1, equipment_id=5, on=ON + timedelta(days=1), slot_ids=[1])
    mid_morning = await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[3])
    early = await store.add_atomic(member_id=1, equipment_id=6, on=ON, slot_ids=[4])
    past = await store.add_atomic(member_id=1, equipment_id=5, on=ON - timedelta(days=3), slot_ids=[2])
    await store.add_atomic(member_id=2, equipment_id=6, on=ON, slot_ids=[1])

    member_rows = await store.get_by_member(1)
    assert [res.id for res in member_rows] == [past.id, early.id, mid_morning.id, later_day.id]

    future = await store.list_future_for_equipment(5, ON)
    assert [res.id for res in future] == [mid_morning.id, later_day.id]

    on_date = await store.list_on_date(ON)
    assert [(res.member_id, res.slot_ids) for res in on_date] == [(1, [4]), (2, [1]), (1, [3])]

    assert await store.get_by_member(99) == []


@pytest.mark.asyncio
async def test_availability_index_counts_slot_units(session: AsyncSession) -> None:
    store = SqlAlchemyReservationStore(session)
    await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[1, 2])
    await store.add_atomic(member_id=1, equipment_id=6, on=ON, slot_ids=[4])
    await store.add_atomic(member_id=2, equipment_id=6, on=ON, slot_ids=[1])

    availability = SqlAlchemyAvailabilityIndex(session)
    assert await availability.daily_reservation_count(1, ON) == 3
    assert await availability.daily_reservation_count(1, ON + timedelta(days=1)) == 0
    assert await availability.same_day_slots(1, ON) == {1, 2, 4}
    assert await availability.claimed_equipment_ids(1, ON) == {5, 6}
    assert await availability.claimed_slot_ids(6, ON) == {1, 4}
    assert await availability.is_available(6, 2, ON) is True


@pytest.mark.asyncio
async def test_write_gives_up_after_repeated_flush_errors(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    attempts = 0

    async def failing_flush(*args: object, **kwargs: object) -> None:
        nonlocal attempts
        attempts += 1
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "flush", failing_flush)
    store = SqlAlchemyReservationStore(session, retry_attempts=2)

    with pytest.raises(StorageError) as excinfo:
        await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[1])

    assert not isinstance(excinfo.value, CommitOutcomeUnknownError)
    assert attempts == 2
    monkeypatch.undo()
    assert await _count(session, Reservation) == 0


@pytest.mark.asyncio
async def test_write_recovers_from_a_transient_flush_error(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    real_flush = session.flush
    attempts = 0

    async def flaky_flush(*args: object, **kwargs: object) -> None:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise OperationalError("INSERT", {}, Exception("deadlock found"))
        await real_flush()

    monkeypatch.setattr(session, "flush", flaky_flush)
    store = SqlAlchemyReservationStore(session)

    created = await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[1])

    assert attempts == 2
    assert created.slot_ids == [1]
    assert await _count(session, Reservation) == 1


@pytest.mark.asyncio
async def test_commit_error_is_not_retried_by_the_store(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    attempts = 0

    async def failing_commit() -> None:
        nonlocal attempts
        attempts += 1
        raise OperationalError("COMMIT", {}, Exception("Lost connection to server during query"))

    monkeypatch.setattr(session, "commit", failing_commit)
    store = SqlAlchemyReservationStore(session, retry_attempts=3)

    with pytest.raises(CommitOutcomeUnknownError):
        await store.add_atomic(member_id=1, equipment_id=5, on=ON, slot_ids=[1])
    assert attempts == 1


def _drop_connection_on_first_commit(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch, *, applied: bool
) -> list[int]:
    real_commit = session.commit
    calls: list[int] = []

    async def commit() -> None:
        calls.append(1)
        if len(calls) == 1:
            if applied:
                await real_commit()
            raise OperationalError("COMMIT", {}, Exception("Lost connection to server during query"))
        await real_commit()

    monkeypatch.setattr(session, "commit", commit)
    return calls


async def _book_slot_three(session: AsyncSession) -> Reservation:
    catalog = await SqlAlchemyTimeSlotRepository(session).load_catalog()
    request = reservation_usecase.build_request(catalog, member_id=1, equipment_id=5, on=ON, slot_ids=[3])
    return await reservation_usecase.create_reservation(
        SqlAlchemyReservationStore(session),
        SqlAlchemyAvailabilityIndex(session),
        SqlAlchemyMemberDirectory(session),
        SqlAlchemyEquipmentCatalog(session),
        catalog=catalog,
        request=request,
        today=ON - timedelta(days=1),
    )


@pytest.mark.asyncio
async def test_booking_that_landed_before_the_commit_error_is_reported_as_created(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls = _drop_connection_on_first_commit(session, monkeypatch, applied=True)

    booked = await _book_slot_three(session)

    assert len(calls) == 1
    assert (booked.member_id, booked.equipment_id, booked.date, booked.slot_ids) == (1, 5, ON, [3])
    assert await _count(session, Reservation) == 1
    assert await _count(session, ReservationSlot) == 1


@pytest.mark.asyncio
async def test_booking_lost_with_the_commit_error_is_revalidated_and_inserted(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls = _drop_connection_on_first_commit(session, monkeypatch, applied=False)

    booked = await _book_slot_three(session)

    assert len(calls) == 2
    assert booked.slot_ids == [3]
    assert await _count(session, Reservation) == 1


@pytest.mark.asyncio
async def test_read_failures_surface_as_storage_errors(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def failing_read(*args: object, **kwargs: object) -> None:
        raise OperationalError("SELECT", {}, Exception("server has gone away"))

    monkeypatch.setattr(session, "scalar", failing_read)
    monkeypatch.setattr(session, "scalars", failing_read)

    with pytest.raises(StorageError):
        await SqlAlchemyMemberDirectory(session).exists(1)
    with pytest.raises(StorageError):
        await SqlAlchemyAvailabilityIndex(session).same_day_slots(1, ON)



@pytest.mark.asyncio
async def test_catalog_loads_ordered_by_start_and_survives_rollback(session: AsyncSession) -> None:
    catalog = await SqlAlchemyTimeSlotRepository(session).load_catalog()
    await session.rollback()

    assert [slot.id for slot in catalog.all_slots()] == [4, 1, 2, 3]
    assert catalog.format_label(catalog.get(4)) == "07:00–08:00 (morning)"  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_directory_and_equipment_lookups(session: AsyncSession) -> None:
    members = SqlAlchemyMemberDirectory(session)
    equipment = SqlAlchemyEquipmentCatalog(session)

    assert await members.exists(1) is True
    assert await members.exists(99) is False
    assert await equipment.exists(6) is True
    assert await equipment.label(5) == "Treadmill"
    assert await equipment.label(99) is None
    assert await equipment.labels([5, 6, 99]) == {5: "Treadmill", 6: "Bike"}
    assert [item.id for item in await equipment.list_by_type("Bike")] == [6]
    assert [item.id for item in await equipment.list_all()] == [5, 6]
