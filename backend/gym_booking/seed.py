"""
Idempotent seed script.

    python -m gym_booking.seed          # create missing tables and the default time slots
    python -m gym_booking.seed --demo   # also add demo members and equipment

Time slots are inserted in start order so their ids ascend with time, which the
consecutive-slot rule relies on.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .database import async_session, engine
from .infrastructure.repositories import SqlAlchemyTimeSlotRepository
from .models import Base, Equipment, Member
from .usecases import slots as slot_usecase

logger = logging.getLogger(__name__)

DEFAULT_TIME_SLOTS: list[tuple[int, int, str]] = [
    (700, 800, "morning"),
    (800, 900, "morning"),
    (900, 1000, "morning"),
    (1000, 1100, "morning"),
    (1100, 1200, "morning"),
    (1200, 1300, "afternoon"),
    (1300, 1400, "afternoon"),
    (1400, 1500, "afternoon"),
    (1500, 1600, "afternoon"),
    (1600, 1700, "afternoon"),
    (1700, 1800, "evening"),
    (1800, 1900, "evening"),
    (1900, 2000, "evening"),
    (2000, 2100, "evening"),
    (2100, 2200, "evening"),
]

DEMO_EQUIPMENT = ["Treadmill", "Treadmill", "Bike", "Bike", "Rowing machine"]
DEMO_MEMBERS = [("Ann", "Peeters", "ann.peeters@example.com"), ("Tom", "Janssens", "tom.janssens@example.com")]


async def seed_time_slots(session: AsyncSession, slots: Sequence[tuple[int, int, str]] = DEFAULT_TIME_SLOTS) -> int:
    repo = SqlAlchemyTimeSlotRepository(session)
    existing = {(slot.start_time, slot.end_time) for slot in await repo.list_all()}
    created = 0
    for start_time, end_time, part_of_day in sorted(slots):
        if (start_time, end_time) in existing:
            continue
        await slot_usecase.create_time_slot(repo, start_time=start_time, end_time=end_time, part_of_day=part_of_day)
        created += 1
    return created


async def seed_demo_data(session: AsyncSession) -> None:
    if not await session.scalar(select(func.count(Equipment.id))):
        session.add_all([Equipment(device_type=device_type) for device_type in DEMO_EQUIPMENT])
    if not await session.scalar(select(func.count(Member.id))):
        session.add_all(
            [Member(first_name=first, last_name=last, email=email) for first, last, email in DEMO_MEMBERS]
        )
    await session.flush()


async def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create tables and seed reference data.")
    parser.add_argument("--demo", action="store_true", help="add demo members and equipment")
    args = parser.parse_args(argv)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        created = await seed_time_slots(session)
        if args.demo:
            await seed_demo_data(session)
        await session.commit()
    await engine.dispose()
    logger.info("seed finished: %d time slots created", created)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
