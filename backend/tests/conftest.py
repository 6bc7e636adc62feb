import os
import pathlib
import sys
import tempfile
from datetime import datetime

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))

BUSINESS_TZ = "America/Mexico_City"


def pytest_configure():
    if os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL"):
        return
    temp_dir = tempfile.mkdtemp(prefix="casa-pronosticos-tests-")
    db_path = pathlib.Path(temp_dir) / "pytest.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"


class FakeMonotonic:
    """Stand-in for time.monotonic that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture(scope="session")
def sqlite_engine():
    from backend.app.db import Base, engine

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def sqlite_session(sqlite_engine):
    from backend.app.db import Base, SessionLocal

    session = SessionLocal()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(sqlite_session):
    from backend.app.sales.store import SqlSaleStore

    return SqlSaleStore(sqlite_session)


@pytest.fixture()
def cache_clock():
    return FakeMonotonic()


@pytest.fixture()
def registry(cache_clock):
    from backend.app.cache import build_registry

    return build_registry(clock=cache_clock)


@pytest.fixture()
def business_now():
    from zoneinfo import ZoneInfo

    # 2026-10-18 20:30 local: hours up to 20 of that day are recordable
    return datetime(2026, 10, 18, 20, 30, tzinfo=ZoneInfo(BUSINESS_TZ))


@pytest.fixture()
def clock(business_now):
    from backend.app.clock import BusinessClock

    return BusinessClock(BUSINESS_TZ, now=lambda: business_now)


@pytest.fixture()
def make_user(sqlite_session):
    from backend.app.models import User

    def _make(email: str, role: str, *, is_active: bool = True) -> User:
        user = User(email=email, name=email.split("@")[0], role=role, is_active=is_active)
        sqlite_session.add(user)
        sqlite_session.commit()
        return user

    return _make


@pytest.fixture()
def api_client(sqlite_engine, sqlite_session, clock, registry):
    from backend.app.api.deps import get_cache_registry, get_clock
    from backend.app.db import get_db
    from backend.app.main import app
    from fastapi.testclient import TestClient

    def _get_test_db():
        yield sqlite_session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_cache_registry] = lambda: registry
    client = TestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.dependency_overrides.pop(get_clock, None)
        app.dependency_overrides.pop(get_cache_registry, None)
