"""
Test fixtures and shared setup.

Uses an in-memory SQLite database for the reference tables.
All tests run in transactions that are rolled back after each test —
so the DB is always clean without needing to truncate tables.
"""

import os
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# ── Override settings BEFORE importing app modules ────────────────────────────
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from billbench.database import get_db  # noqa: E402
from billbench.main import app  # noqa: E402
from billbench.models import *  # noqa: E402,F401,F403 — ensures all models registered
from billbench.models.base import Base  # noqa: E402
from billbench.models.fee_schedule import FeeScheduleRow  # noqa: E402
from billbench.models.locality import GpciLocality, ZipLocality  # noqa: E402
from billbench.services.policy import BenchmarkPolicy  # noqa: E402
from billbench.services.reference.store import SqlFeeScheduleStore  # noqa: E402


# ── Test engine ───────────────────────────────────────────────────────────────
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=test_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="session")
def create_test_tables():
    """
    Create all tables once per test session.
    NOT autouse — only runs for tests that need DB fixtures.
    DB-independent tests (code normalizer, totals) run without this.
    """
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db(create_test_tables) -> Session:
    """Provide a DB session that is rolled back after each test."""
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def client(db: Session, reference_data) -> TestClient:
    """
    FastAPI test client with DB dependency overridden to use the test session.
    """

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def policy() -> BenchmarkPolicy:
    return BenchmarkPolicy()


# ── Reference data ────────────────────────────────────────────────────────────


def _fee_row(code, year=2026, modifier="", **kwargs) -> FeeScheduleRow:
    values = dict(status_code="A", conversion_factor=Decimal("34.6062"))
    values.update(kwargs)
    return FeeScheduleRow(code=code, year=year, modifier=modifier, **values)


@pytest.fixture
def reference_data(db: Session):
    """
    A small fee schedule:
      99213  2026  direct fees 92.50 (fac) / 130.00 (non-fac), RVUs 1.30/0.55/1.30/0.10
      99214  2026  only year loaded (year-fallback target)
      71046  2026  modifier 26 row and a base row
      20610  2026  RVUs only, no stored fees
      27447  2026  090-day global surgery
      99080  2026  listed with no RVUs or fees
      A4550  2026  status B (bundled, never separately paid)
      99283  2025  older year only
      36415  2026  a token work RVU whose fee rounds to 0.00
      G0999  2026  a negative work RVU
    Localities: NY/01 Manhattan (1.100/1.200/1.500), NY/99 rest of state (1.0s).
    ZIP 10001 → NY/01.
    """
    rows = [
        _fee_row(
            "99213",
            description="Office/outpatient visit est",
            work_rvu=Decimal("1.30"),
            pe_rvu_facility=Decimal("0.55"),
            pe_rvu_nonfacility=Decimal("1.30"),
            mp_rvu=Decimal("0.10"),
            facility_fee=Decimal("92.50"),
            nonfacility_fee=Decimal("130.00"),
            global_days="XXX",
        ),
        _fee_row(
            "99214",
            description="Office/outpatient visit est",
            facility_fee=Decimal("128.00"),
            nonfacility_fee=Decimal("180.00"),
            global_days="XXX",
        ),
        _fee_row(
            "71046", modifier="26",
            description="X-ray exam chest 2 views (professional)",
            facility_fee=Decimal("10.00"),
            nonfacility_fee=Decimal("10.00"),
        ),
        _fee_row(
            "71046",
            description="X-ray exam chest 2 views",
            facility_fee=Decimal("30.00"),
            nonfacility_fee=Decimal("30.00"),
        ),
        _fee_row(
            "20610",
            description="Drain/inj joint/bursa w/o us",
            work_rvu=Decimal("0.79"),
            pe_rvu_facility=Decimal("0.30"),
            pe_rvu_nonfacility=Decimal("1.00"),
            mp_rvu=Decimal("0.10"),
            conversion_factor=None,
            global_days="000",
        ),
        _fee_row(
            "27447",
            description="Total knee arthroplasty",
            facility_fee=Decimal("1300.00"),
            nonfacility_fee=Decimal("1300.00"),
            global_days="090",
        ),
        _fee_row("99080", description="Special reports", status_code="A"),
        _fee_row(
            "A4550", description="Surgical trays", status_code="B",
            facility_fee=Decimal("0"), nonfacility_fee=Decimal("0"),
        ),
        _fee_row(
            "99283", year=2025,
            description="Emergency dept visit",
            facility_fee=Decimal("70.00"),
            nonfacility_fee=Decimal("70.00"),
        ),
        _fee_row("36415", description="Routine venipuncture", work_rvu=Decimal("0.0001")),
        _fee_row("G0999", description="Unlisted adjustment", work_rvu=Decimal("-0.50")),
    ]
    localities = [
        GpciLocality(
            locality_code="01", locality_name="Manhattan", state="NY",
            work_gpci=Decimal("1.100"), pe_gpci=Decimal("1.200"), mp_gpci=Decimal("1.500"),
        ),
        GpciLocality(
            locality_code="99", locality_name="Rest of New York", state="NY",
            work_gpci=Decimal("1.000"), pe_gpci=Decimal("1.000"), mp_gpci=Decimal("1.000"),
        ),
    ]
    zips = [ZipLocality(zip5="10001", state="NY", locality_code="01")]

    db.add_all(rows + localities + zips)
    db.flush()
    return rows


@pytest.fixture
def store(db: Session, reference_data) -> SqlFeeScheduleStore:
    return SqlFeeScheduleStore(db)
