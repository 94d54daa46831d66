"""
FastAPI application factory.

Uses lifespan context manager to handle startup/shutdown tasks.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from billbench.routers import analyses, health
from billbench.settings import settings

# ── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("Starting billbench API [env=%s]", settings.environment)

    from billbench.database import check_db_connection

    if not check_db_connection():
        logger.error("Reference database is not reachable on startup; check DATABASE_URL")
    else:
        logger.info("Database connection verified")

    yield

    logger.info("Shutting down billbench API")


# ── App factory ───────────────────────────────────────────────────────────────
def create_app() -> FastAPI:
    app = FastAPI(
        title="billbench",
        description=(
            "Benchmarks medical bill charges against the Medicare Physician Fee "
            "Schedule. Normalizes service codes, resolves geographically adjusted "
            "reference fees, reconciles bill totals, and decides whether a "
            "multiple of the reference price can be shown."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    # ── CORS ──────────────────────────────────────────────────────────────────
    # Dev: allow all origins. Staging/prod: explicit allowlist from ALLOWED_ORIGINS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(analyses.router)

    return app


app = create_app()
