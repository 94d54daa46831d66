"""
FeeScheduleLoader — imports CMS release files into the reference tables.

Supported files (CSV, or TSV detected by a tab in the first 2 KB):
  - PPRRVU   Physician Fee Schedule RVU file       → fee_schedule_rows
  - GPCI     Geographic Practice Cost Indices       → gpci_localities
  - ZIP      ZIP code to carrier/locality crosswalk → zip_localities

CMS files carry several title/notice rows above the real header, so the
header row is found by scanning for an anchor column (HCPCS, LOCALITY, ZIP)
rather than assumed to be row 1. Column names are matched through an alias
map after normalizing (lower-case, alphanumerics only), exact matches first,
then containment for the long GPCI headers ("2026 PW GPCI (with 1.0 floor)").

Codes are always kept as strings: "0001F" must never become 1.

Loading is an upsert keyed on each table's natural key, so re-importing a
corrected release replaces rows in place.
"""

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from billbench.models.fee_schedule import FeeScheduleRow
from billbench.models.locality import GpciLocality, ZipLocality
from billbench.services.ingestion.base import clean_str

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 50
_CODE_TOKEN = re.compile(r"^(?=.*\d)[A-Z0-9]{4,5}$")


class FeeScheduleLoadError(Exception):
    """Raised when a reference file cannot be read or has no usable header."""
    pass


@dataclass
class LoadResult:
    table: str
    rows_read: int = 0
    rows_loaded: int = 0
    rows_skipped: int = 0
    warnings: list[str] = field(default_factory=list)


# ── Column alias maps ─────────────────────────────────────────────────────────
# canonical_name: [accepted headers] (compared after _norm_header)

FEE_SCHEDULE_COLUMNS: dict[str, list[str]] = {
    "code": ["hcpcs", "hcpcscode", "cpthcpcs", "cpt", "code"],
    "modifier": ["mod", "modifier"],
    "description": ["description", "shortdescription", "desc"],
    "status_code": ["statuscode", "status"],
    "work_rvu": ["workrvu", "rvuwork", "work"],
    "pe_rvu_nonfacility": [
        "nonfacpervu", "nonfacilitypervu", "transitionednonfacilitypervu", "nonfacpe",
    ],
    "pe_rvu_facility": ["facpervu", "facilitypervu", "transitionedfacilitypervu", "facpe"],
    "mp_rvu": ["mprvu", "malpracticervu", "mp"],
    "nonfacility_fee": ["nonfacfee", "nonfacilityfee", "nonfacilityprice", "nonfacprice"],
    "facility_fee": ["facfee", "facilityfee", "facilityprice", "facprice"],
    "conversion_factor": ["convfactor", "conversionfactor", "cf"],
    "global_days": ["globdays", "globaldays", "global"],
}

GPCI_COLUMNS: dict[str, list[str]] = {
    "locality_code": ["localitynumber", "localitynum", "locality", "locno"],
    "locality_name": ["localityname", "name"],
    "state": ["state", "stateabbr", "st"],
    "zip_code": ["zip", "zipcode"],
    "work_gpci": ["workgpci", "pwgpci"],
    "pe_gpci": ["pegpci"],
    "mp_gpci": ["mpgpci", "malpracticegpci"],
}

ZIP_COLUMNS: dict[str, list[str]] = {
    "zip5": ["zipcode", "zip5", "zip"],
    "state": ["state", "stateabbr"],
    "locality_code": ["locality", "localitynumber", "localitynum"],
}


def _norm_header(value: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value).lower())


# ── File reading ──────────────────────────────────────────────────────────────


def read_table(data: bytes, filename: str, anchors: list[str]) -> pd.DataFrame:
    """
    Read a CMS CSV into a DataFrame whose columns are the real header row.
    The header row is the first of the first HEADER_SCAN_ROWS rows holding
    any of `anchors` (normalized).
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
        logger.info("%s decoded as latin-1", filename)

    delimiter = "\t" if "\t" in text[:2000] else ","

    # Title rows have fewer fields than the header, so locate the header line
    # before handing the rest to pandas.
    header_idx = None
    head = text.splitlines()[:HEADER_SCAN_ROWS]
    for idx, cells in enumerate(csv.reader(head, delimiter=delimiter)):
        if {_norm_header(cell) for cell in cells} & set(anchors):
            header_idx = idx
            break
    if header_idx is None:
        raise FeeScheduleLoadError(
            f"No header row found in {filename!r} (looked for {anchors})"
        )

    try:
        df = pd.read_csv(
            io.StringIO(text),
            delimiter=delimiter,
            skiprows=header_idx,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise FeeScheduleLoadError(f"pandas failed to parse {filename!r}: {exc}") from exc

    df.columns = [_norm_header(col) for col in df.columns]
    logger.info("%s: header at row %d, %d data rows", filename, header_idx + 1, len(df))
    return df


def build_column_map(columns: list[str], aliases: dict[str, list[str]]) -> dict[str, Optional[str]]:
    """
    Map canonical names to actual (normalized) column names.
    Exact alias matches are claimed first; containment only fills what is left.
    """
    col_map: dict[str, Optional[str]] = {canonical: None for canonical in aliases}
    claimed: set[str] = set()

    for canonical, names in aliases.items():
        for name in names:
            if name in columns and name not in claimed:
                col_map[canonical] = name
                claimed.add(name)
                break

    for canonical, names in aliases.items():
        if col_map[canonical] is not None:
            continue
        for actual in columns:
            if actual in claimed:
                continue
            if any(len(name) > 4 and name in actual for name in names):
                col_map[canonical] = actual
                claimed.add(actual)
                break
    return col_map


def _cell(row: pd.Series, col_map: dict, canonical: str) -> Optional[str]:
    col = col_map.get(canonical)
    if col is None:
        return None
    return clean_str(row[col])


def _decimal(row: pd.Series, col_map: dict, canonical: str) -> Optional[Decimal]:
    """Plain numeric cell at full precision (GPCIs carry three places, RVUs more)."""
    text = _cell(row, col_map, canonical)
    if text is None:
        return None
    try:
        value = Decimal(text.replace(",", "").replace("$", ""))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


# ── Parsers ───────────────────────────────────────────────────────────────────


def parse_fee_schedule(data: bytes, filename: str, year: int) -> tuple[list[dict], LoadResult]:
    result = LoadResult(table=FeeScheduleRow.__tablename__)
    df = read_table(data, filename, ["hcpcs", "hcpcscode"])
    col_map = build_column_map(df.columns.tolist(), FEE_SCHEDULE_COLUMNS)
    if col_map["code"] is None:
        raise FeeScheduleLoadError(f"{filename!r} has no HCPCS column")
    for canonical in ("work_rvu", "nonfacility_fee"):
        if col_map[canonical] is None:
            result.warnings.append(f"Column '{canonical}' not found in {filename!r}")

    records: dict[tuple[str, str], dict] = {}
    for _, row in df.iterrows():
        result.rows_read += 1
        code = (_cell(row, col_map, "code") or "").upper()
        if not _CODE_TOKEN.match(code):
            result.rows_skipped += 1
            continue
        modifier = (_cell(row, col_map, "modifier") or "").upper()[:2]
        records[(code, modifier)] = {
            "code": code,
            "modifier": modifier,
            "year": year,
            "description": _cell(row, col_map, "description"),
            "status_code": (_cell(row, col_map, "status_code") or "")[:1].upper() or None,
            "work_rvu": _decimal(row, col_map, "work_rvu"),
            "pe_rvu_facility": _decimal(row, col_map, "pe_rvu_facility"),
            "pe_rvu_nonfacility": _decimal(row, col_map, "pe_rvu_nonfacility"),
            "mp_rvu": _decimal(row, col_map, "mp_rvu"),
            "facility_fee": _decimal(row, col_map, "facility_fee"),
            "nonfacility_fee": _decimal(row, col_map, "nonfacility_fee"),
            "conversion_factor": _decimal(row, col_map, "conversion_factor"),
            "global_days": (_cell(row, col_map, "global_days") or "")[:3] or None,
        }
    return list(records.values()), result


def parse_gpci(data: bytes, filename: str) -> tuple[list[dict], LoadResult]:
    result = LoadResult(table=GpciLocality.__tablename__)
    df = read_table(data, filename, ["localitynumber", "localitynum", "locality"])
    col_map = build_column_map(df.columns.tolist(), GPCI_COLUMNS)
    missing = [c for c in ("locality_code", "work_gpci", "pe_gpci", "mp_gpci") if col_map[c] is None]
    if missing:
        raise FeeScheduleLoadError(f"{filename!r} is missing GPCI columns: {missing}")

    records: dict[tuple[str, str], dict] = {}
    for _, row in df.iterrows():
        result.rows_read += 1
        locality = _cell(row, col_map, "locality_code")
        state = (_cell(row, col_map, "state") or "").upper()[:2]
        gpcis = [_decimal(row, col_map, c) for c in ("work_gpci", "pe_gpci", "mp_gpci")]
        if not locality or not state or any(g is None for g in gpcis):
            result.rows_skipped += 1
            continue
        records[(state, locality)] = {
            "locality_code": locality,
            "locality_name": _cell(row, col_map, "locality_name") or locality,
            "state": state,
            "zip_code": (_cell(row, col_map, "zip_code") or "")[:5] or None,
            "work_gpci": gpcis[0],
            "pe_gpci": gpcis[1],
            "mp_gpci": gpcis[2],
        }
    return list(records.values()), result


def parse_zip_crosswalk(data: bytes, filename: str) -> tuple[list[dict], LoadResult]:
    result = LoadResult(table=ZipLocality.__tablename__)
    df = read_table(data, filename, ["zipcode", "zip5", "zip"])
    col_map = build_column_map(df.columns.tolist(), ZIP_COLUMNS)
    missing = [c for c in ZIP_COLUMNS if col_map[c] is None]
    if missing:
        raise FeeScheduleLoadError(f"{filename!r} is missing crosswalk columns: {missing}")

    records: dict[str, dict] = {}
    for _, row in df.iterrows():
        result.rows_read += 1
        digits = re.sub(r"\D", "", _cell(row, col_map, "zip5") or "")
        zip5 = digits.zfill(5)[:5] if digits else ""
        locality = _cell(row, col_map, "locality_code")
        state = (_cell(row, col_map, "state") or "").upper()[:2]
        if len(zip5) != 5 or not locality or not state or zip5 in records:
            result.rows_skipped += 1
            continue
        records[zip5] = {"zip5": zip5, "state": state, "locality_code": locality}
    return list(records.values()), result


# ── Loaders ───────────────────────────────────────────────────────────────────


def _upsert(db: Session, model, records: list[dict], key_fields: tuple[str, ...], existing) -> int:
    index = {tuple(getattr(obj, f) for f in key_fields): obj for obj in existing}
    for record in records:
        key = tuple(record[f] for f in key_fields)
        obj = index.get(key)
        if obj is None:
            db.add(model(**record))
        else:
            for name, value in record.items():
                setattr(obj, name, value)
    db.flush()
    return len(records)


def load_fee_schedule(db: Session, data: bytes, filename: str, year: int) -> LoadResult:
    records, result = parse_fee_schedule(data, filename, year)
    existing = db.scalars(select(FeeScheduleRow).where(FeeScheduleRow.year == year)).all()
    result.rows_loaded = _upsert(db, FeeScheduleRow, records, ("code", "modifier"), existing)
    logger.info(
        "Loaded %d fee schedule rows for %d from %s (%d skipped)",
        result.rows_loaded, year, filename, result.rows_skipped,
    )
    return result


def load_gpci(db: Session, data: bytes, filename: str) -> LoadResult:
    records, result = parse_gpci(data, filename)
    existing = db.scalars(select(GpciLocality)).all()
    result.rows_loaded = _upsert(db, GpciLocality, records, ("state", "locality_code"), existing)
    logger.info("Loaded %d GPCI localities from %s", result.rows_loaded, filename)
    return result


def load_zip_crosswalk(db: Session, data: bytes, filename: str) -> LoadResult:
    records, result = parse_zip_crosswalk(data, filename)
    existing = db.scalars(select(ZipLocality)).all()
    result.rows_loaded = _upsert(db, ZipLocality, records, ("zip5",), existing)
    logger.info("Loaded %d ZIP crosswalk rows from %s", result.rows_loaded, filename)
    return result
