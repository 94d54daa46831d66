"""
Reference data store — read-only access to the fee schedule and GPCI tables.

FeeScheduleStore is the interface the engine depends on. SqlFeeScheduleStore
is the SQLAlchemy implementation used by the API and scripts; tests may pass
any other implementation.

Any failure to read the store surfaces as StoreUnavailableError. The engine
reports that per line as "data unavailable" and never treats it as a missing
code.
"""

import abc
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billbench.models.fee_schedule import FeeScheduleRow
from billbench.models.locality import GpciLocality, ZipLocality

logger = logging.getLogger(__name__)

GPCI_PRECISION = Decimal("0.001")


class StoreUnavailableError(Exception):
    """Raised when the reference data store cannot be read."""
    pass


@dataclass(frozen=True)
class LocalityFactors:
    """GPCI multipliers for one locality (or a state-wide average)."""

    work_gpci: Decimal
    pe_gpci: Decimal
    mp_gpci: Decimal
    locality_name: str
    locality_code: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_row(cls, row: GpciLocality) -> "LocalityFactors":
        return cls(
            work_gpci=Decimal(str(row.work_gpci)),
            pe_gpci=Decimal(str(row.pe_gpci)),
            mp_gpci=Decimal(str(row.mp_gpci)),
            locality_name=row.locality_name,
            locality_code=row.locality_code,
            state=row.state,
        )


class FeeScheduleStore(abc.ABC):
    """Read-only reference data interface. One instance per analysis is fine."""

    @abc.abstractmethod
    def find_fee_row(self, code: str, year: int, modifier: str = "") -> Optional[FeeScheduleRow]:
        """Exact (code, year, modifier) lookup. modifier='' is the base row."""

    @abc.abstractmethod
    def latest_year(self) -> Optional[int]:
        """Most recent fee schedule year loaded, or None for an empty store."""

    @abc.abstractmethod
    def locality_for_zip(self, zip5: str) -> Optional[LocalityFactors]:
        """GPCI locality for a ZIP code."""

    @abc.abstractmethod
    def state_for_zip(self, zip5: str) -> Optional[str]:
        """State a ZIP code belongs to, when the crosswalk knows it."""

    @abc.abstractmethod
    def locality_for_state(self, state: str) -> Optional[LocalityFactors]:
        """State-wide GPCI estimate (average across the state's localities)."""


class SqlFeeScheduleStore(FeeScheduleStore):
    """
    SQLAlchemy-backed store.

    Usage:
        store = SqlFeeScheduleStore(db)
        row = store.find_fee_row("99213", 2026)
    """

    def __init__(self, db: Session):
        self.db = db

    def find_fee_row(self, code: str, year: int, modifier: str = "") -> Optional[FeeScheduleRow]:
        stmt = (
            select(FeeScheduleRow)
            .where(FeeScheduleRow.code == code.strip().upper())
            .where(FeeScheduleRow.year == year)
            .where(FeeScheduleRow.modifier == (modifier or "").strip().upper())
            .limit(1)
        )
        return self._scalar(stmt, "fee schedule row %s/%s/%s" % (code, year, modifier))

    def latest_year(self) -> Optional[int]:
        return self._scalar(select(func.max(FeeScheduleRow.year)), "latest fee schedule year")

    def locality_for_zip(self, zip5: str) -> Optional[LocalityFactors]:
        # 1. Crosswalk → locality
        crosswalk = self._scalar(
            select(ZipLocality).where(ZipLocality.zip5 == zip5).limit(1),
            "ZIP crosswalk %s" % zip5,
        )
        if crosswalk is not None:
            row = self._scalar(
                select(GpciLocality)
                .where(GpciLocality.state == crosswalk.state)
                .where(GpciLocality.locality_code == crosswalk.locality_code)
                .limit(1),
                "GPCI locality %s/%s" % (crosswalk.state, crosswalk.locality_code),
            )
            if row is not None:
                return LocalityFactors.from_row(row)

        # 2. Locality keyed directly to this ZIP
        row = self._scalar(
            select(GpciLocality).where(GpciLocality.zip_code == zip5).limit(1),
            "GPCI locality by ZIP %s" % zip5,
        )
        if row is not None:
            return LocalityFactors.from_row(row)

        # 3. Nearest crosswalk entry sharing the 3-digit ZIP prefix
        neighbour = self._scalar(
            select(ZipLocality)
            .where(ZipLocality.zip5.startswith(zip5[:3]))
            .order_by(ZipLocality.zip5)
            .limit(1),
            "ZIP prefix %s" % zip5[:3],
        )
        if neighbour is None:
            return None
        row = self._scalar(
            select(GpciLocality)
            .where(GpciLocality.state == neighbour.state)
            .where(GpciLocality.locality_code == neighbour.locality_code)
            .limit(1),
            "GPCI locality %s/%s" % (neighbour.state, neighbour.locality_code),
        )
        return LocalityFactors.from_row(row) if row is not None else None

    def state_for_zip(self, zip5: str) -> Optional[str]:
        crosswalk = self._scalar(
            select(ZipLocality.state).where(ZipLocality.zip5 == zip5).limit(1),
            "state for ZIP %s" % zip5,
        )
        if crosswalk is not None:
            return crosswalk
        return self._scalar(
            select(ZipLocality.state)
            .where(ZipLocality.zip5.startswith(zip5[:3]))
            .order_by(ZipLocality.zip5)
            .limit(1),
            "state for ZIP prefix %s" % zip5[:3],
        )

    def locality_for_state(self, state: str) -> Optional[LocalityFactors]:
        try:
            rows = self.db.execute(
                select(GpciLocality).where(GpciLocality.state == state)
            ).scalars().all()
        except SQLAlchemyError as exc:
            logger.warning("Reference store read failed (GPCI state %s): %s", state, exc)
            raise StoreUnavailableError(f"Could not read GPCI localities for {state}") from exc

        if not rows:
            return None
        n = Decimal(len(rows))

        def _avg(attr: str) -> Decimal:
            total = sum((Decimal(str(getattr(r, attr))) for r in rows), Decimal("0"))
            return (total / n).quantize(GPCI_PRECISION)

        return LocalityFactors(
            work_gpci=_avg("work_gpci"),
            pe_gpci=_avg("pe_gpci"),
            mp_gpci=_avg("mp_gpci"),
            locality_name=f"{state} statewide average ({len(rows)} localities)",
            state=state,
        )

    # ── Private helpers ───────────────────────────────────────────────────────

    def _scalar(self, stmt, what: str):
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as exc:
            logger.warning("Reference store read failed (%s): %s", what, exc)
            raise StoreUnavailableError(f"Could not read {what}") from exc
