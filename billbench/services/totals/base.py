"""
Totals abstractions — candidate and detected totals, the slot vocabulary,
and currency parsing.

A TotalCandidate is what upstream offered. A DetectedTotal is a candidate
that survived every guardrail. Rejected candidates never become
DetectedTotals; they are kept only as TotalRejection audit records.
"""

import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

CENTS = Decimal("0.01")


class TotalSlot(str, Enum):
    TOTAL_CHARGES = "total_charges"
    ALLOWED_AMOUNT = "allowed_amount"
    PATIENT_RESPONSIBILITY = "patient_responsibility"
    AMOUNT_DUE = "amount_due"
    INSURANCE_PAID = "insurance_paid"
    PAYMENTS_ADJUSTMENTS = "payments_adjustments"

    @property
    def is_balance(self) -> bool:
        return self in (TotalSlot.PATIENT_RESPONSIBILITY, TotalSlot.AMOUNT_DUE)


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]

    def downgraded(self) -> "Confidence":
        return {"high": Confidence.MEDIUM, "medium": Confidence.LOW, "low": Confidence.LOW}[self.value]

    def upgraded(self) -> "Confidence":
        return {"high": Confidence.HIGH, "medium": Confidence.HIGH, "low": Confidence.MEDIUM}[self.value]

    @classmethod
    def parse(cls, value: Any, default: "Confidence" = None) -> "Confidence":
        if isinstance(value, Confidence):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default or cls.MEDIUM


class TotalSource(str, Enum):
    EXTRACTION = "extraction"
    DERIVED_FROM_LINE_ITEMS = "derived_from_line_items"


@dataclass(frozen=True)
class TotalCandidate:
    """One total offered by upstream extraction, before any validation."""

    slot: TotalSlot
    raw_value: Any
    label: str
    evidence: str = ""
    confidence: Confidence = Confidence.MEDIUM
    producer: str = "unknown"


@dataclass(frozen=True)
class DetectedTotal:
    value: Decimal
    confidence: Confidence
    label: str
    evidence: str
    source: TotalSource
    producer: Optional[str] = None


@dataclass(frozen=True)
class TotalRejection:
    slot: TotalSlot
    raw_value: Any
    label: str
    producer: str
    reason: str

    @property
    def note(self) -> str:
        return f"{self.slot.value}: rejected {self.raw_value!r} ({self.label}): {self.reason}"


@dataclass
class StructuredTotals:
    """At most one DetectedTotal per slot, plus the line-item sum and audit notes."""

    total_charges: Optional[DetectedTotal] = None
    allowed_amount: Optional[DetectedTotal] = None
    patient_responsibility: Optional[DetectedTotal] = None
    amount_due: Optional[DetectedTotal] = None
    insurance_paid: Optional[DetectedTotal] = None
    payments_adjustments: Optional[DetectedTotal] = None
    line_items_sum: Optional[Decimal] = None
    notes: list[str] = field(default_factory=list)
    rejections: list[TotalRejection] = field(default_factory=list)

    def get(self, slot: TotalSlot) -> Optional[DetectedTotal]:
        return getattr(self, slot.value)

    def set(self, slot: TotalSlot, total: Optional[DetectedTotal]) -> None:
        setattr(self, slot.value, total)

    @property
    def balance(self) -> Optional[DetectedTotal]:
        """Patient responsibility, else amount due."""
        return self.patient_responsibility or self.amount_due

    @property
    def has_any_total(self) -> bool:
        return any(self.get(slot) is not None for slot in TotalSlot)


# ── Currency parsing ──────────────────────────────────────────────────────────

_CURRENCY_NOISE = re.compile(r"[$£€¥,\s]|USD", re.IGNORECASE)
_EMPTY_MARKERS = {"", "null", "none", "n/a", "na", "nan", "-", "--"}


def parse_currency(value: Any) -> Optional[Decimal]:
    """
    Parse a heterogeneous currency value into Decimal cents.

    Handles symbols, thousands separators, parentheses and a leading '-' as
    negative. Anything unparseable returns None ("not detected"), never zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value.quantize(CENTS) if value.is_finite() else None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        return Decimal(str(value)).quantize(CENTS)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if text.lower() in _EMPTY_MARKERS:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()
    if text.startswith("-"):
        negative = True
        text = text[1:]

    cleaned = _CURRENCY_NOISE.sub("", text)
    if cleaned.startswith("-"):
        negative = True
        cleaned = cleaned[1:]
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    amount = amount.quantize(CENTS)
    return -amount if negative else amount
