"""
Geographic adjustment tables: GPCI localities and the ZIP → locality crosswalk.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billbench.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class GpciLocality(Base, IntegerPrimaryKeyMixin, TimestampMixin):
    """
    One Medicare payment locality with its three GPCI multipliers.
    Locality codes are only unique within a state.
    """

    __tablename__ = "gpci_localities"
    __table_args__ = (
        UniqueConstraint("state", "locality_code", name="uq_gpci_state_locality"),
    )

    locality_code: Mapped[str] = mapped_column(String(16), nullable=False)
    locality_name: Mapped[str] = mapped_column(String(128), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    # Some releases key a locality directly to a representative ZIP
    zip_code: Mapped[Optional[str]] = mapped_column(String(5), nullable=True, index=True)

    work_gpci: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    pe_gpci: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    mp_gpci: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)

    def __repr__(self) -> str:
        return f"<GpciLocality {self.state}/{self.locality_code} {self.locality_name!r}>"


class ZipLocality(Base, IntegerPrimaryKeyMixin, TimestampMixin):
    """ZIP5 → (state, locality_code) crosswalk."""

    __tablename__ = "zip_localities"

    zip5: Mapped[str] = mapped_column(String(5), nullable=False, unique=True, index=True)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    locality_code: Mapped[str] = mapped_column(String(16), nullable=False)
