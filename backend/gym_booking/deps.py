from datetime import date
from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .domain.catalog import TimeSlotCatalog
from .domain.services import BookingPolicy
from .infrastructure.repositories import SqlAlchemyTimeSlotRepository
from .utils.time import facility_zone, today_in


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_policy(settings: Settings = Depends(get_settings)) -> BookingPolicy:
    return BookingPolicy.from_settings(settings)


def get_today(settings: Settings = Depends(get_settings)) -> date:
    return today_in(facility_zone(settings.facility_timezone))


async def get_catalog(session: AsyncSession = Depends(get_session)) -> TimeSlotCatalog:
    return await SqlAlchemyTimeSlotRepository(session).load_catalog()
