"""
SQLAlchemy engine and session setup.

The database only holds reference data (fee schedule, GPCI localities, ZIP
crosswalk). Analyses never write to it.

Usage in FastAPI route handlers:
    from billbench.database import get_db
    def my_route(db: Session = Depends(get_db)): ...

Usage in scripts (synchronous):
    from billbench.database import SessionLocal
    with SessionLocal() as db:
        ...
"""

import logging
from collections.abc import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from billbench.settings import settings

logger = logging.getLogger(__name__)


# ── Engine ─────────────────────────────────────────────────────────────────
def _build_engine(url: str):
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads
        # (TestClient runs handlers in a worker thread).
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    # pool_pre_ping=True: validates connections before use.
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=settings.is_development,  # log SQL in dev only
    )


engine = _build_engine(settings.database_url)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    class_=Session,
)


# ── FastAPI dependency ──────────────────────────────────────────────────────
def get_db() -> Generator[Session, None, None]:
    """Yield a database session, ensuring it is closed after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ── Health check helper ─────────────────────────────────────────────────────
def check_db_connection() -> bool:
    """Return True if the database is reachable. Used by /health endpoint."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.warning("Database connectivity check failed: %s", exc)
        return False
