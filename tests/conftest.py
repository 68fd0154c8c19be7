"""
Pytest configuration and shared fixtures.
"""

import json
from datetime import date, datetime
from typing import Callable, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from models import Employee, Timesheet, TripRecord
from services.location.cache import GeocodeCache
from services.location.geocoding import GeocodeResolver, RateLimiter

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"

AMSTERDAM = {"lat": 52.3676, "lng": 4.9041}


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


# ── Record factories ──────────────────────────────────────────────

@pytest.fixture
def make_employee(db):
    def _make(id: str, user_id: Optional[str], tenant_id: str = TENANT) -> Employee:
        employee = Employee(id=id, tenant_id=tenant_id, user_id=user_id, name=f"Employee {id}")
        db.add(employee)
        db.commit()
        return employee
    return _make


@pytest.fixture
def make_timesheet(db):
    def _make(
        id: str,
        user_id: str,
        start: datetime,
        end: datetime,
        location_start: Optional[dict] = None,
        tenant_id: str = TENANT,
    ) -> Timesheet:
        timesheet = Timesheet(
            id=id,
            tenant_id=tenant_id,
            user_id=user_id,
            date=start.date(),
            start_time=start,
            end_time=end,
            location_start=location_start,
        )
        db.add(timesheet)
        db.commit()
        return timesheet
    return _make


@pytest.fixture
def make_trip(db):
    def _make(
        id: str,
        start: datetime,
        end: datetime,
        employee_id: Optional[str] = None,
        departure_postal: Optional[str] = None,
        is_private: bool = False,
        timesheet_id: Optional[str] = None,
        tenant_id: str = TENANT,
    ) -> TripRecord:
        trip = TripRecord(
            id=id,
            tenant_id=tenant_id,
            employee_id=employee_id,
            departure_time=start,
            arrival_time=end,
            departure_postal=departure_postal,
            is_private=is_private,
            timesheet_id=timesheet_id,
        )
        db.add(trip)
        db.commit()
        return trip
    return _make


def at(hour: int, minute: int = 0, day: date = date(2026, 3, 2)) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


# ── Geocoding fixtures ────────────────────────────────────────────

class ProviderStub:
    """
    httpx.MockTransport handler that answers PDOK and Nominatim requests
    from canned responses and records every request it sees.
    """

    def __init__(self):
        self.requests = []
        self.pdok: Callable[[httpx.Request], httpx.Response] = lambda r: httpx.Response(503)
        self.nominatim: Callable[[httpx.Request], httpx.Response] = lambda r: httpx.Response(503)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "api.pdok.nl":
            return self.pdok(request)
        if request.url.host == "nominatim.openstreetmap.org":
            return self.nominatim(request)
        return httpx.Response(404)

    def calls_to(self, host: str) -> int:
        return sum(1 for r in self.requests if r.url.host == host)


def pdok_doc(lng: float, lat: float, doc_type: str = "adres", name: str = "Damrak 1, Amsterdam") -> dict:
    return {"response": {"numFound": 1, "docs": [{
        "type": doc_type,
        "weergavenaam": name,
        "centroide_ll": f"POINT({lng} {lat})",
    }]}}


def json_response(payload) -> httpx.Response:
    return httpx.Response(200, content=json.dumps(payload), headers={"Content-Type": "application/json"})


class NoSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self):
        self.sleeps = []

    async def __call__(self, seconds: float) -> None:
        self.sleeps.append(seconds)


@pytest.fixture
def providers() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def resolver(providers, clock):
    client = httpx.AsyncClient(transport=httpx.MockTransport(providers))
    limiter = RateLimiter(0.0)
    return GeocodeResolver(GeocodeCache(max_size=100, clock=clock), client=client, rate_limiter=limiter)
