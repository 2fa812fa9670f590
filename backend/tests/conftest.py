"""
Centralized Test Configuration.

Tests run against a file-backed SQLite database (aiosqlite, NullPool) so that
concurrent sessions get their own connections. The geocoder, margin provider
and payment collaborator are replaced by the fakes in factories.py.
"""

import os
import tempfile
from types import SimpleNamespace

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, Pool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.dependencies import (
    get_geocoder, get_locks, get_margin_provider, get_payment_collaborator
)
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.domain.allocation.locking import InMemoryPalletLocks
from backend.app.models.enums import ZoneType
from backend.app.models.producer import Producer
from backend.app.models.wine import Wine
from backend.app.models.zone import Zone
from backend.app.services.cache import CacheService
from backend.tests.factories import (
    AMBIGUOUS_ADDRESS, BETWEEN_STOCKHOLM_AND_UPPSALA, GOTHENBURG, GOTHENBURG_ADDRESS,
    STOCKHOLM, STOCKHOLM_ADDRESS, UPPSALA,
    FakeGeocoder, FakeMarginProvider, FakePaymentCollaborator,
)

_TEST_DB_DIR = tempfile.mkdtemp(prefix="pallets-test-")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
    poolclass=NullPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await CacheService.clear()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def margin_provider():
    return FakeMarginProvider()


@pytest.fixture
def payments():
    return FakePaymentCollaborator()


@pytest.fixture
def locks():
    return InMemoryPalletLocks(timeout_seconds=5)


@pytest.fixture
def allocation_engine(geocoder, margin_provider, payments, locks):
    return AllocationEngine(
        geocoder=geocoder,
        margin_provider=margin_provider,
        payment_collaborator=payments,
        locks=locks,
    )


@pytest.fixture
async def client(geocoder, margin_provider, payments, locks):
    """Async client for testing, with collaborators replaced by fakes."""
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    app.dependency_overrides[get_margin_provider] = lambda: margin_provider
    app.dependency_overrides[get_payment_collaborator] = lambda: payments
    app.dependency_overrides[get_locks] = lambda: locks

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
async def seed(db_session, geocoder):
    """
    Pickup zones Bordeaux and Rhone (FR); delivery zones Stockholm and
    Uppsala (SE), which overlap between the two cities. Domaine Petit has a
    30 bottle MOQ; Nomad Wines has no pickup zone.
    """
    bordeaux = Zone(name="Bordeaux", zone_type=ZoneType.PICKUP, center_lat=44.8378, center_lon=-0.5792, radius_km=50, country_code="FR")
    rhone = Zone(name="Rhone", zone_type=ZoneType.PICKUP, center_lat=45.0, center_lon=4.8, radius_km=60, country_code="FR")
    stockholm = Zone(name="Stockholm", zone_type=ZoneType.DELIVERY, center_lat=STOCKHOLM[0], center_lon=STOCKHOLM[1], radius_km=40, country_code="SE")
    uppsala = Zone(name="Uppsala", zone_type=ZoneType.DELIVERY, center_lat=UPPSALA[0], center_lon=UPPSALA[1], radius_km=40, country_code="SE")
    db_session.add_all([bordeaux, rhone, stockholm, uppsala])
    await db_session.flush()

    chateau = Producer(name="Chateau Lafleur", pickup_zone_id=bordeaux.id, moq_min_bottles=0)
    domaine = Producer(name="Domaine Petit", pickup_zone_id=bordeaux.id, moq_min_bottles=30)
    cotes = Producer(name="Cotes du Rhone Co", pickup_zone_id=rhone.id, moq_min_bottles=0)
    nomad = Producer(name="Nomad Wines", pickup_zone_id=None, moq_min_bottles=0)
    db_session.add_all([chateau, domaine, cotes, nomad])
    await db_session.flush()

    claret = Wine(producer_id=chateau.id, name="Claret 2019", base_price_cents=15000)
    petit = Wine(producer_id=domaine.id, name="Petit Rouge", base_price_cents=20000)
    syrah = Wine(producer_id=cotes.id, name="Syrah 2020", base_price_cents=12000)
    blend = Wine(producer_id=nomad.id, name="Nomad Blend", base_price_cents=9000)
    db_session.add_all([claret, petit, syrah, blend])
    await db_session.commit()

    geocoder.add(STOCKHOLM_ADDRESS, *STOCKHOLM)
    geocoder.add(AMBIGUOUS_ADDRESS, *BETWEEN_STOCKHOLM_AND_UPPSALA)
    geocoder.add(GOTHENBURG_ADDRESS, *GOTHENBURG)

    return SimpleNamespace(
        bordeaux=bordeaux.id, rhone=rhone.id, stockholm=stockholm.id, uppsala=uppsala.id,
        chateau=chateau.id, domaine=domaine.id, cotes=cotes.id, nomad=nomad.id,
        claret=claret.id, petit=petit.id, syrah=syrah.id, blend=blend.id,
    )
