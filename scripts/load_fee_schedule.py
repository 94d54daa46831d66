"""
Load CMS reference files into the fee schedule and locality tables.

Usage:
    python scripts/load_fee_schedule.py rvu  PPRRVU26_JAN.csv --year 2026
    python scripts/load_fee_schedule.py gpci GPCI2026.csv
    python scripts/load_fee_schedule.py zip  ZIP5_JAN2026.csv

Idempotent: re-running with the same file updates rows in place.
Run `alembic upgrade head` first.
"""

import argparse
import os
import sys
from pathlib import Path

# Ensure the project root is on the path when run directly
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError

from billbench.database import SessionLocal
from billbench.services.ingestion.fee_schedule_loader import (
    FeeScheduleLoadError,
    load_fee_schedule,
    load_gpci,
    load_zip_crosswalk,
)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load CMS reference data.")
    parser.add_argument("kind", choices=["rvu", "gpci", "zip"], help="file type")
    parser.add_argument("path", type=Path, help="CSV file to import")
    parser.add_argument("--year", type=int, help="fee schedule year (required for rvu)")
    args = parser.parse_args(argv)
    if args.kind == "rvu" and args.year is None:
        parser.error("--year is required for rvu files")
    return args


def main(argv=None) -> None:
    args = parse_args(argv)
    data = args.path.read_bytes()
    filename = args.path.name

    db = SessionLocal()
    try:
        if args.kind == "rvu":
            result = load_fee_schedule(db, data, filename, args.year)
        elif args.kind == "gpci":
            result = load_gpci(db, data, filename)
        else:
            result = load_zip_crosswalk(db, data, filename)
        db.commit()
    except FeeScheduleLoadError as e:
        db.rollback()
        print(f"\nERROR: {e}")
        sys.exit(1)
    except SQLAlchemyError as e:
        db.rollback()
        print(f"\nERROR: database error: {e}")
        sys.exit(1)
    finally:
        db.close()

    print(
        f"✓ {result.table}: {result.rows_loaded} loaded, "
        f"{result.rows_skipped} skipped ({result.rows_read} rows read)"
    )
    for warning in result.warnings:
        print(f"  warning: {warning}")


if __name__ == "__main__":
    main()
