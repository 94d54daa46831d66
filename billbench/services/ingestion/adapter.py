"""
Upstream adapter — maps arbitrary extraction payloads into LineItems and
TotalCandidates.

This is the only module that guesses upstream shapes. Upstream extraction
(OCR / AI) names the same field many ways: `billedAmount`, `billed_amount`,
`charge`, `Amount`… The alias maps below resolve those the same way the CSV
importer resolves column headers: keys are compared after lower-casing and
dropping spaces, underscores and hyphens.

Total candidates come from an ordered list of named producers. Order matters:
when two surviving candidates for the same slot share a confidence level, the
one produced later wins.
"""

import dataclasses
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from billbench.services.codes.normalizer import (
    MODIFIER_PATTERN,
    ServiceCode,
    extract_potential_codes,
    validate,
)
from billbench.services.ingestion.base import (
    AdapterError,
    LineItem,
    clean_str,
    to_bool,
    to_date,
    to_decimal,
)
from billbench.services.totals.base import Confidence, TotalCandidate, TotalSlot

logger = logging.getLogger(__name__)


# ── Line item field aliases ───────────────────────────────────────────────────
# canonical_name: [accepted key variants] (compared after _norm_key)
LINE_ITEM_ALIASES: dict[str, list[str]] = {
    "code": [
        "code", "cpt", "cpt code", "cpt_code", "cptCode", "hcpcs", "hcpcs code",
        "hcpcsCode", "procedure code", "procedureCode", "service code",
        "serviceCode", "billing code", "revenue code", "revenueCode", "rev code",
    ],
    "modifier": ["modifier", "mod", "modifiers", "cpt modifier"],
    "description": [
        "description", "desc", "service description", "serviceDescription",
        "charge description", "item", "service", "name",
    ],
    "billed_amount": [
        "billed amount", "billedAmount", "billed", "amount", "charge", "charges",
        "amount billed", "line total", "lineTotal", "total", "price", "fee",
    ],
    "units": ["units", "unit", "quantity", "qty", "count", "unitCount", "days"],
    "service_date": [
        "service date", "serviceDate", "date of service", "dateOfService", "dos",
        "date",
    ],
    "is_facility": [
        "is facility", "isFacility", "isFacilityContext", "facility",
        "place of service type", "setting",
    ],
}

DOCUMENT_TEXT_KEYS = ["documentText", "document_text", "rawText", "raw_text", "text", "ocrText"]
LINE_ITEM_KEYS = ["lineItems", "line_items", "charges", "items", "services"]


def _norm_key(key: Any) -> str:
    return re.sub(r"[\s_\-]", "", str(key)).lower()


_NORMALIZED_ALIASES = {
    canonical: {_norm_key(a) for a in aliases}
    for canonical, aliases in LINE_ITEM_ALIASES.items()
}


@dataclass
class AdaptedLines:
    items: list[LineItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ── Line items ────────────────────────────────────────────────────────────────


def adapt_line_items(raw_items: Optional[Iterable[Any]]) -> AdaptedLines:
    """
    Map upstream line-item records into immutable LineItems, in input order.

    A record that is not a mapping is skipped with a warning; a record whose
    code token is invalid is kept (the rejection travels with the line).
    """
    result = AdaptedLines()
    if raw_items is None:
        return result
    if isinstance(raw_items, (str, bytes)) or not isinstance(raw_items, Iterable):
        raise AdapterError(f"Line items must be a list of records, got {type(raw_items).__name__}")

    for idx, record in enumerate(raw_items, start=1):
        if not isinstance(record, Mapping):
            result.warnings.append(f"Line {idx} skipped: not a record ({type(record).__name__})")
            logger.warning("Skipping line %d: not a mapping", idx)
            continue
        result.items.append(adapt_line_item(record, idx))

    logger.info("Adapter: mapped %d line items", len(result.items))
    return result


def adapt_line_item(record: Mapping, line_number: int) -> LineItem:
    fields = _build_field_map(record)
    notes: list[str] = []

    raw_code = clean_str(fields.get("code"))
    description = clean_str(fields.get("description"))
    if raw_code is None and description:
        raw_code = _code_from_description(description, notes)
    verdict = validate(raw_code)
    modifier = clean_str(fields.get("modifier"))
    if isinstance(verdict, ServiceCode) and verdict.modifier is None and modifier:
        modifier = modifier.strip().upper()
        if MODIFIER_PATTERN.match(modifier):
            verdict = dataclasses.replace(verdict, modifier=modifier)

    billed = None
    raw_billed = fields.get("billed_amount")
    if raw_billed is not None:
        billed = to_decimal(raw_billed)
        if billed is None and clean_str(raw_billed) is not None:
            notes.append(f"Billed amount {raw_billed!r} could not be read")
        elif billed is not None and billed < 0:
            notes.append(f"Negative billed amount {billed} ignored")
            billed = None

    units = _to_units(fields.get("units"), notes)

    return LineItem(
        line_number=line_number,
        code=verdict,
        raw_code=raw_code,
        description=description,
        billed_amount=billed,
        units=units,
        service_date=to_date(fields.get("service_date")),
        is_facility=to_bool(fields.get("is_facility")),
        notes=tuple(notes),
    )


def extract_line_items(raw_extraction: Optional[Mapping]) -> AdaptedLines:
    """Find the line-item list inside a whole extraction payload."""
    if not raw_extraction:
        return AdaptedLines()
    for key in LINE_ITEM_KEYS:
        value = raw_extraction.get(key)
        if isinstance(value, list):
            return adapt_line_items(value)
    return AdaptedLines()


def document_text(raw_extraction: Optional[Mapping]) -> str:
    if not isinstance(raw_extraction, Mapping):
        return ""
    for key in DOCUMENT_TEXT_KEYS:
        value = raw_extraction.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _build_field_map(record: Mapping) -> dict[str, Any]:
    """Map canonical field names to the record's values (first alias wins)."""
    fields: dict[str, Any] = {}
    for key, value in record.items():
        norm = _norm_key(key)
        for canonical, aliases in _NORMALIZED_ALIASES.items():
            if norm in aliases and canonical not in fields:
                fields[canonical] = value
                break
    return fields


def _code_from_description(description: str, notes: list[str]) -> Optional[str]:
    """Take the code from the description only when it names exactly one."""
    found = extract_potential_codes(description)
    codes = {v.code for v in map(validate, found) if isinstance(v, ServiceCode)}
    if len(codes) != 1:
        return None
    notes.append(f"Code {found[0]} read from the description")
    return found[0]


def _to_units(value: Any, notes: list[str]) -> int:
    if value is None or clean_str(value) is None:
        return 1
    amount = to_decimal(value)
    if amount is None:
        notes.append(f"Units {value!r} could not be read; using 1")
        return 1
    if amount <= 0:
        notes.append(f"Units {amount} not positive; using 1")
        return 1
    if amount != amount.to_integral_value():
        notes.append(f"Fractional units {amount} rounded")
    return max(1, int(amount.to_integral_value()))


# ── Total candidates ──────────────────────────────────────────────────────────

DEFAULT_LABELS: dict[TotalSlot, str] = {
    TotalSlot.TOTAL_CHARGES: "Total Charges",
    TotalSlot.ALLOWED_AMOUNT: "Allowed Amount",
    TotalSlot.PATIENT_RESPONSIBILITY: "Patient Responsibility",
    TotalSlot.AMOUNT_DUE: "Amount Due",
    TotalSlot.INSURANCE_PAID: "Insurance Paid",
    TotalSlot.PAYMENTS_ADJUSTMENTS: "Payments/Adjustments",
}

# Keys inside an `extractedTotals` block
EXTRACTED_TOTAL_KEYS: dict[str, TotalSlot] = {
    "totalcharges": TotalSlot.TOTAL_CHARGES,
    "allowedamount": TotalSlot.ALLOWED_AMOUNT,
    "allowed": TotalSlot.ALLOWED_AMOUNT,
    "patientresponsibility": TotalSlot.PATIENT_RESPONSIBILITY,
    "amountdue": TotalSlot.AMOUNT_DUE,
    "insurancepaid": TotalSlot.INSURANCE_PAID,
    "totalpaymentsandadjustments": TotalSlot.PAYMENTS_ADJUSTMENTS,
    "paymentsandadjustments": TotalSlot.PAYMENTS_ADJUSTMENTS,
    "paymentsadjustments": TotalSlot.PAYMENTS_ADJUSTMENTS,
}

# Top-level fields some extractors emit directly
DIRECT_CHARGE_FIELDS = [
    "totalCharges", "total_charges", "totalBilled", "total_billed",
    "grandTotal", "grand_total", "statementTotal", "statement_total",
]
DIRECT_BALANCE_FIELDS: dict[str, TotalSlot] = {
    "amountDue": TotalSlot.AMOUNT_DUE,
    "amount_due": TotalSlot.AMOUNT_DUE,
    "balanceDue": TotalSlot.AMOUNT_DUE,
    "balance_due": TotalSlot.AMOUNT_DUE,
    "patientBalance": TotalSlot.PATIENT_RESPONSIBILITY,
    "patient_balance": TotalSlot.PATIENT_RESPONSIBILITY,
    "youOwe": TotalSlot.PATIENT_RESPONSIBILITY,
    "you_owe": TotalSlot.PATIENT_RESPONSIBILITY,
}

EOB_FIELDS: list[tuple[list[str], TotalSlot, str]] = [
    (["billedAmount", "billed_amount", "totalBilled"], TotalSlot.TOTAL_CHARGES, "EOB Billed Amount"),
    (["allowedAmount", "allowed_amount"], TotalSlot.ALLOWED_AMOUNT, "EOB Allowed Amount"),
    (["patientResponsibility", "patient_responsibility"], TotalSlot.PATIENT_RESPONSIBILITY,
     "EOB Patient Responsibility"),
    (["planPaid", "plan_paid", "insurancePaid", "insurance_paid"], TotalSlot.INSURANCE_PAID,
     "EOB Plan Paid"),
]


def _humanize(field_name: str) -> str:
    """'totalBilled' / 'total_billed' → 'Total Billed'."""
    spaced = re.sub(r"(?<=[a-z])(?=[A-Z])", " ", field_name).replace("_", " ")
    return " ".join(w.capitalize() for w in spaced.split())


def _candidate(
    slot: TotalSlot,
    value: Any,
    producer: str,
    default_label: str,
    default_confidence: Confidence,
    default_evidence: str,
) -> Optional[TotalCandidate]:
    """Build a candidate from either a {value, label, confidence, evidence} object or a scalar."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        if value.get("value") is None:
            return None
        return TotalCandidate(
            slot=slot,
            raw_value=value.get("value"),
            label=clean_str(value.get("label")) or default_label,
            evidence=clean_str(value.get("evidence")) or default_evidence,
            confidence=Confidence.parse(value.get("confidence"), default_confidence),
            producer=producer,
        )
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return TotalCandidate(
            slot=slot,
            raw_value=value,
            label=default_label,
            evidence=default_evidence or f"Extracted value: {value}",
            confidence=default_confidence,
            producer=producer,
        )
    return None


def produce_extracted_totals(raw: Mapping) -> list[TotalCandidate]:
    """The structured `extractedTotals` block."""
    block = raw.get("extractedTotals") or raw.get("extracted_totals")
    if not isinstance(block, Mapping):
        return []
    out = []
    for key, value in block.items():
        slot = EXTRACTED_TOTAL_KEYS.get(_norm_key(key))
        if slot is None:
            continue
        cand = _candidate(
            slot, value, "extracted_totals", DEFAULT_LABELS[slot], Confidence.MEDIUM,
            f"Extracted value: {value}" if not isinstance(value, Mapping) else "",
        )
        if cand is not None:
            out.append(cand)
    return out


def produce_at_a_glance(raw: Mapping) -> list[TotalCandidate]:
    """The summary `atAGlance` block some extractors emit."""
    block = raw.get("atAGlance") or raw.get("at_a_glance")
    if not isinstance(block, Mapping):
        return []
    out = []
    billed = block.get("totalBilled") or block.get("total_billed")
    cand = _candidate(
        TotalSlot.TOTAL_CHARGES, billed, "at_a_glance", "Total Billed", Confidence.MEDIUM,
        "From at-a-glance summary",
    )
    if cand is not None:
        out.append(cand)
    owed = block.get("amountYouMayOwe") or block.get("amount_you_may_owe")
    cand = _candidate(
        TotalSlot.PATIENT_RESPONSIBILITY, owed, "at_a_glance", "Amount You May Owe",
        Confidence.MEDIUM, "From at-a-glance summary",
    )
    if cand is not None:
        out.append(cand)
    return out


def produce_direct_fields(raw: Mapping) -> list[TotalCandidate]:
    """Top-level charge and balance fields."""
    out = []
    for name in DIRECT_CHARGE_FIELDS:
        cand = _candidate(
            TotalSlot.TOTAL_CHARGES, raw.get(name), "direct_fields", _humanize(name),
            Confidence.HIGH, f"Direct field: {name}",
        )
        if cand is not None:
            out.append(cand)
    for name, slot in DIRECT_BALANCE_FIELDS.items():
        cand = _candidate(
            slot, raw.get(name), "direct_fields", _humanize(name),
            Confidence.HIGH, f"Direct field: {name}",
        )
        if cand is not None:
            out.append(cand)
    return out


def produce_eob_data(raw: Mapping) -> list[TotalCandidate]:
    """Explanation-of-benefits figures."""
    eob = raw.get("eobData") or raw.get("eob_data")
    if not isinstance(eob, Mapping):
        return []
    out = []
    for names, slot, label in EOB_FIELDS:
        for name in names:
            cand = _candidate(
                slot, eob.get(name), "eob_data", label, Confidence.HIGH,
                "From Explanation of Benefits",
            )
            if cand is not None:
                out.append(cand)
                break
    return out


# Ordered: later producers win confidence ties
CANDIDATE_PRODUCERS: list[tuple[str, Callable[[Mapping], list[TotalCandidate]]]] = [
    ("extracted_totals", produce_extracted_totals),
    ("at_a_glance", produce_at_a_glance),
    ("direct_fields", produce_direct_fields),
    ("eob_data", produce_eob_data),
]


def gather_total_candidates(raw_extraction: Optional[Mapping]) -> list[TotalCandidate]:
    """Run every producer in order and concatenate their candidates."""
    if raw_extraction is None:
        return []
    if not isinstance(raw_extraction, Mapping):
        raise AdapterError(
            f"Extraction payload must be a mapping, got {type(raw_extraction).__name__}"
        )
    candidates: list[TotalCandidate] = []
    for name, producer in CANDIDATE_PRODUCERS:
        produced = producer(raw_extraction)
        if produced:
            logger.debug("Producer %s offered %d total candidates", name, len(produced))
        candidates.extend(produced)
    return candidates
