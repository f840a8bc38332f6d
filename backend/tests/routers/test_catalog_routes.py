from datetime import date
from typing import AsyncIterator, Iterator, List

import pytest
from fastapi import FastAPI
from gym_booking.deps import get_catalog, get_session
from gym_booking.domain.catalog import TimeSlotCatalog
from gym_booking.main import app as gym_app
from gym_booking.models import Equipment, TimeSlot
from gym_booking.routers import equipment as equipment_router
from gym_booking.routers import timeslots as timeslots_router
from httpx import ASGITransport, AsyncClient

ON = date(2026, 10, 20)


class DummyEquipment:
    def __init__(self, session: object) -> None:
        self.items = [Equipment(id=5, device_type="Treadmill"), Equipment(id=6, device_type="Bike")]

    async def exists(self, equipment_id: int) -> bool:
        return any(item.id == equipment_id for item in self.items)

    async def list_all(self) -> List[Equipment]:
        return list(self.items)

    async def list_by_type(self, device_type: str) -> List[Equipment]:
        return [item for item in self.items if item.device_type == device_type]


class DummyAvailability:
    claimed = {(5, 1)}

    def __init__(self, session: object) -> None:
        pass

    async def is_available(self, equipment_id: int, slot_id: int, on: date) -> bool:
        return (equipment_id, slot_id) not in self.claimed

    async def claimed_slot_ids(self, equipment_id: int, on: date) -> set[int]:
        return {s for e, s in self.claimed if e == equipment_id}

    async def claimed_equipment_ids(self, slot_id: int, on: date) -> set[int]:
        return {e for e, s in self.claimed if s == slot_id}


async def _no_session() -> AsyncIterator[object]:
    yield object()


def _catalog() -> TimeSlotCatalog:
    return TimeSlotCatalog(
        [
            TimeSlot(id=1, start_time=800, end_time=900, part_of_day="morning"),
            TimeSlot(id=2, start_time=1300, end_time=1400, part_of_day="afternoon"),
        ]
    )


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch) -> Iterator[FastAPI]:
    for module in (equipment_router, timeslots_router):
        monkeypatch.setattr(module, "SqlAlchemyEquipmentCatalog", DummyEquipment)
        monkeypatch.setattr(module, "SqlAlchemyAvailabilityIndex", DummyAvailability)
    gym_app.dependency_overrides[get_session] = _no_session
    gym_app.dependency_overrides[get_catalog] = _catalog
    yield gym_app
    gym_app.dependency_overrides.clear()


async def _get(app: FastAPI, url: str, **params: object):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get(url, params=params)


@pytest.mark.asyncio
async def test_health_echoes_request_id(app: FastAPI) -> None:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test", headers={"X-Request-ID": "req-gym-1"}
    ) as client:
        resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Request-ID"] == "req-gym-1"


@pytest.mark.asyncio
async def test_time_slots_listing_and_part_of_day(app: FastAPI) -> None:
    resp = await _get(app, "/timeslots")
    assert [row["label"] for row in resp.json()] == ["08:00–09:00 (morning)", "13:00–14:00 (afternoon)"]

    resp = await _get(app, "/timeslots/part-of-day/Afternoon")
    assert [row["time_slot_id"] for row in resp.json()] == [2]


@pytest.mark.asyncio
async def test_available_time_slots_for_equipment(app: FastAPI) -> None:
    resp = await _get(app, "/timeslots/available", date=ON.isoformat(), equipment_id=5)
    assert resp.status_code == 200
    assert [row["time_slot_id"] for row in resp.json()] == [2]

    resp = await _get(app, "/timeslots/available", date=ON.isoformat(), equipment_id=99)
    assert resp.status_code == 404
    assert resp.json()["detail"]["reason"] == "invalid_reference"


@pytest.mark.asyncio
async def test_equipment_listing_and_availability(app: FastAPI) -> None:
    resp = await _get(app, "/equipment/type/Bike")
    assert resp.json() == [{"equipment_id": 6, "device_type": "Bike"}]

    resp = await _get(app, "/equipment/available", time_slot_id=1, date=ON.isoformat())
    assert [row["equipment_id"] for row in resp.json()] == [6]

    resp = await _get(app, "/equipment/5/availability", time_slot_id=1, date=ON.isoformat())
    assert resp.json() == {"equipment_id": 5, "time_slot_id": 1, "date": "2026-10-20", "available": False}

    resp = await _get(app, "/equipment/5/availability", time_slot_id=42, date=ON.isoformat())
    assert resp.status_code == 404
