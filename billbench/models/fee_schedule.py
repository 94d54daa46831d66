"""
FeeScheduleRow — one Physician Fee Schedule line per (code, modifier, year).

Loaded from the CMS PPRRVU release files. The engine only ever reads it.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billbench.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


# ── Constant classes ────────────────────────────────────────────────────────


class StatusCode:
    """PFS status indicators that matter to pricing."""

    ACTIVE = "A"
    BUNDLED = "B"
    NOT_VALID_FOR_MEDICARE = "I"
    NON_COVERED = "N"
    RESTRICTED = "R"
    STATUTORY_EXCLUSION = "X"

    # Rows with these codes are never separately payable
    NON_PAYABLE = frozenset({"B", "I", "N", "R", "X"})


class GlobalDays:
    """Global surgery indicators that imply bundled follow-up care."""

    MINOR = "010"
    MAJOR = "090"

    BUNDLED = frozenset({"010", "090"})


# ── Model ───────────────────────────────────────────────────────────────────


class FeeScheduleRow(Base, IntegerPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "fee_schedule_rows"
    __table_args__ = (
        UniqueConstraint("code", "modifier", "year", name="uq_fee_schedule_code_mod_year"),
    )

    code: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    # "" means "no modifier" so the unique constraint holds on every backend
    modifier: Mapped[str] = mapped_column(
        String(2), nullable=False, default="", server_default=""
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status_code: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)

    # Relative value units
    work_rvu: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    pe_rvu_facility: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    pe_rvu_nonfacility: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    mp_rvu: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)

    # Pre-computed national fees, when the release ships them
    facility_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    nonfacility_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    conversion_factor: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    global_days: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    def __repr__(self) -> str:
        mod = f"-{self.modifier}" if self.modifier else ""
        return f"<FeeScheduleRow {self.code}{mod} {self.year}>"
