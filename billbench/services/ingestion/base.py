"""
Ingestion abstractions — the LineItem record and shared value coercion.

LineItem is the canonical record every upstream shape is mapped into.
Everything downstream operates on LineItem — the adapter is the only
layer that knows about upstream field names.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Union

from billbench.services.codes.normalizer import CodeRejection, ServiceCode
from billbench.services.totals.base import parse_currency


@dataclass(frozen=True)
class LineItem:
    """
    One billed service, as handed to the engine.

    Immutable: enrichment (e.g. an inferred facility flag) produces a copy
    via dataclasses.replace, never a mutation.
    """
    line_number: int
    code: Union[ServiceCode, CodeRejection]
    raw_code: Optional[str] = None
    description: Optional[str] = None
    billed_amount: Optional[Decimal] = None   # None = not detected; never defaulted to 0
    units: int = 1
    service_date: Optional[date] = None
    is_facility: Optional[bool] = None        # None = upstream did not say
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_valid_code(self) -> bool:
        return isinstance(self.code, ServiceCode)

    @property
    def service_year(self) -> Optional[int]:
        return self.service_date.year if self.service_date else None


class AdapterError(Exception):
    """Raised when an upstream payload is not a usable shape at all."""
    pass


# ── Shared coercion helpers ───────────────────────────────────────────────────


def to_decimal(value: Any) -> Optional[Decimal]:
    """Currency-tolerant Decimal conversion. Returns None when unparseable."""
    return parse_currency(value)


def to_date(value: Any) -> Optional[date]:
    """Attempt to parse a date from various string formats. Returns None on failure."""
    if value is None or str(value).strip() in ("", "nan", "NaT", "None"):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    from dateutil import parser as date_parser
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError):
        return None


def clean_str(value: Any) -> Optional[str]:
    """Strip and normalize a string value; return None if empty."""
    if value is None:
        return None
    s = str(value).strip()
    return s if s and s.lower() not in ("nan", "none", "n/a", "null") else None


def to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "y", "1", "facility", "f"):
        return True
    if text in ("false", "no", "n", "0", "non-facility", "nonfacility", "office", "nf"):
        return False
    return None
