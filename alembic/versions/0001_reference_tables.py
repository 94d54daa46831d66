"""Reference tables — fee schedule rows, GPCI localities, ZIP crosswalk

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── fee_schedule_rows ─────────────────────────────────────────────────────
    op.create_table(
        "fee_schedule_rows",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(10), nullable=False),
        sa.Column("modifier", sa.String(2), nullable=False, server_default=""),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status_code", sa.String(1), nullable=True),
        sa.Column("work_rvu", sa.Numeric(10, 4), nullable=True),
        sa.Column("pe_rvu_facility", sa.Numeric(10, 4), nullable=True),
        sa.Column("pe_rvu_nonfacility", sa.Numeric(10, 4), nullable=True),
        sa.Column("mp_rvu", sa.Numeric(10, 4), nullable=True),
        sa.Column("facility_fee", sa.Numeric(12, 2), nullable=True),
        sa.Column("nonfacility_fee", sa.Numeric(12, 2), nullable=True),
        sa.Column("conversion_factor", sa.Numeric(10, 4), nullable=True),
        sa.Column("global_days", sa.String(3), nullable=True),
        _created_at(),
        sa.UniqueConstraint("code", "modifier", "year", name="uq_fee_schedule_code_mod_year"),
    )
    op.create_index("ix_fee_schedule_rows_code", "fee_schedule_rows", ["code"])
    op.create_index("ix_fee_schedule_rows_year", "fee_schedule_rows", ["year"])

    # ── gpci_localities ───────────────────────────────────────────────────────
    op.create_table(
        "gpci_localities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("locality_code", sa.String(16), nullable=False),
        sa.Column("locality_name", sa.String(128), nullable=False),
        sa.Column("state", sa.String(2), nullable=False),
        sa.Column("zip_code", sa.String(5), nullable=True),
        sa.Column("work_gpci", sa.Numeric(6, 3), nullable=False),
        sa.Column("pe_gpci", sa.Numeric(6, 3), nullable=False),
        sa.Column("mp_gpci", sa.Numeric(6, 3), nullable=False),
        _created_at(),
        sa.UniqueConstraint("state", "locality_code", name="uq_gpci_state_locality"),
    )
    op.create_index("ix_gpci_localities_state", "gpci_localities", ["state"])
    op.create_index("ix_gpci_localities_zip_code", "gpci_localities", ["zip_code"])

    # ── zip_localities ────────────────────────────────────────────────────────
    op.create_table(
        "zip_localities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("zip5", sa.String(5), nullable=False),
        sa.Column("state", sa.String(2), nullable=False),
        sa.Column("locality_code", sa.String(16), nullable=False),
        _created_at(),
    )
    op.create_index("ix_zip_localities_zip5", "zip_localities", ["zip5"], unique=True)


def downgrade() -> None:
    op.drop_table("zip_localities")
    op.drop_table("gpci_localities")
    op.drop_table("fee_schedule_rows")
