"""
Document classifier — weighted keyword scoring over the document text.

Classification never blocks extraction. It only nudges candidate confidence:
a "total" on a payment receipt or portal summary is usually a balance, and
an EOB's allowed / plan-paid figures are its most reliable numbers.

Decision order (first match wins):
  1. PAYMENT_RECEIPT    — receipt wording and no "charges"
  2. EOB                — EOB score ≥ 6 and above the statement score
  3. HOSPITAL_SUMMARY   — revenue-code score ≥ 6 with no procedure codes,
                          or hospital score ≥ 6 with any revenue-code signal
  4. PORTAL_SUMMARY     — portal score ≥ 4, not itemized
  5. ITEMIZED_STATEMENT / SUMMARY_STATEMENT — statement score ≥ 4,
                          split on whether procedure codes appear
  6. UNKNOWN
"""

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from billbench.services.totals.base import TotalCandidate, TotalSlot

logger = logging.getLogger(__name__)


class DocumentType(str, Enum):
    ITEMIZED_STATEMENT = "itemized_statement"
    SUMMARY_STATEMENT = "summary_statement"
    EOB = "eob"
    PORTAL_SUMMARY = "portal_summary"
    PAYMENT_RECEIPT = "payment_receipt"
    HOSPITAL_SUMMARY = "hospital_summary"
    UNKNOWN = "unknown"


@dataclass
class DocumentClassification:
    document_type: DocumentType
    scores: dict[str, int] = field(default_factory=dict)
    matched_indicators: list[str] = field(default_factory=list)
    has_procedure_codes: bool = False


# ── Indicator rules ───────────────────────────────────────────────────────────
# Format: (group, indicator, weight)

INDICATOR_RULES: list[tuple[str, str, int]] = [
    # ── EOB ──────────────────────────────────────────────────────────────────
    ("eob", "explanation of benefits", 2),
    ("eob", "eob", 2),
    ("eob", "allowed amount", 2),
    ("eob", "plan paid", 2),
    ("eob", "member responsibility", 2),
    ("eob", "claim number", 2),
    ("eob", "processed date", 2),
    ("eob", "coinsurance", 2),
    ("eob", "copay", 2),
    ("eob", "deductible applied", 2),
    ("eob", "this is not a bill", 2),
    # ── Portal ───────────────────────────────────────────────────────────────
    ("portal", "mychart", 2),
    ("portal", "patient portal", 2),
    ("portal", "online balance", 2),
    ("portal", "your balance", 2),
    ("portal", "quick pay", 2),
    ("portal", "make a payment", 2),
    ("portal", "payment options", 2),
    # ── Statement ────────────────────────────────────────────────────────────
    ("statement", "statement", 2),
    ("statement", "itemized bill", 2),
    ("statement", "service date", 2),
    ("statement", "procedure", 2),
    ("statement", "charges", 2),
    ("statement", "billing statement", 2),
    ("statement", "date of service", 2),
    ("statement", "quantity", 2),
    ("statement", "cpt", 2),
    # ── Hospital ─────────────────────────────────────────────────────────────
    ("hospital", "hospital", 2),
    ("hospital", "facility", 2),
    ("hospital", "emergency room", 2),
    ("hospital", "er visit", 2),
    ("hospital", "inpatient", 2),
    ("hospital", "outpatient", 2),
    ("hospital", "revenue code", 2),
    ("hospital", "room and board", 2),
    ("hospital", "pharmacy", 2),
    ("hospital", "laboratory", 2),
    # ── Revenue codes ────────────────────────────────────────────────────────
    ("revenue", "rev code", 3),
    ("revenue", "revenue code", 3),
    ("revenue", "0100", 3),
    ("revenue", "0110", 3),
    ("revenue", "0120", 3),
    ("revenue", "0250", 3),
    ("revenue", "0260", 3),
    ("revenue", "0270", 3),
    ("revenue", "0300", 3),
    ("revenue", "0320", 3),
    ("revenue", "0450", 3),
    ("revenue", "0636", 3),
    ("revenue", "0730", 3),
    ("revenue", "0760", 3),
]

_PROCEDURE_CODE = re.compile(r"\b\d{5}\b|\b[A-Z]\d{4}\b")

# Compiled cache: indicator → word-bounded pattern
_COMPILED: dict[str, re.Pattern] = {}


def _pattern(indicator: str) -> re.Pattern:
    if indicator not in _COMPILED:
        _COMPILED[indicator] = re.compile(r"\b" + re.escape(indicator) + r"\b")
    return _COMPILED[indicator]


def classify_document(text: str) -> DocumentClassification:
    """Classify document text into one DocumentType."""
    if not text or not text.strip():
        return DocumentClassification(DocumentType.UNKNOWN)

    lower = text.lower()
    scores = {"eob": 0, "portal": 0, "statement": 0, "hospital": 0, "revenue": 0}
    matched: list[str] = []
    for group, indicator, weight in INDICATOR_RULES:
        if _pattern(indicator).search(lower):
            scores[group] += weight
            matched.append(indicator)

    has_codes = bool(_PROCEDURE_CODE.search(text))
    is_receipt = (
        "receipt" in lower
        or "payment received" in lower
        or ("paid" in lower and "thank you" in lower)
    )

    if is_receipt and "charges" not in lower:
        doc_type = DocumentType.PAYMENT_RECEIPT
    elif scores["eob"] >= 6 and scores["eob"] > scores["statement"]:
        doc_type = DocumentType.EOB
    elif scores["revenue"] >= 6 and not has_codes:
        doc_type = DocumentType.HOSPITAL_SUMMARY
    elif scores["hospital"] >= 6 and scores["revenue"] >= 3:
        doc_type = DocumentType.HOSPITAL_SUMMARY
    elif scores["portal"] >= 4 and "itemized" not in lower:
        doc_type = DocumentType.PORTAL_SUMMARY
    elif scores["statement"] >= 4:
        doc_type = (
            DocumentType.ITEMIZED_STATEMENT if has_codes else DocumentType.SUMMARY_STATEMENT
        )
    else:
        doc_type = DocumentType.UNKNOWN

    logger.debug("Document classified as %s (scores=%s)", doc_type.value, scores)
    return DocumentClassification(
        document_type=doc_type,
        scores=scores,
        matched_indicators=matched,
        has_procedure_codes=has_codes,
    )


def weight_candidates(
    candidates: list[TotalCandidate], document_type: DocumentType
) -> tuple[list[TotalCandidate], list[str]]:
    """
    Adjust candidate confidence for the document type.
    Returns (adjusted candidates, notes describing each adjustment).
    """
    notes: list[str] = []
    adjusted: list[TotalCandidate] = []
    for cand in candidates:
        new_conf = cand.confidence
        if document_type in (DocumentType.PAYMENT_RECEIPT, DocumentType.PORTAL_SUMMARY):
            if cand.slot == TotalSlot.TOTAL_CHARGES:
                new_conf = cand.confidence.downgraded()
        elif document_type == DocumentType.EOB:
            if cand.slot in (TotalSlot.ALLOWED_AMOUNT, TotalSlot.INSURANCE_PAID):
                new_conf = cand.confidence.upgraded()

        if new_conf != cand.confidence:
            notes.append(
                f"{cand.slot.value} from {cand.producer}: confidence {cand.confidence.value} "
                f"→ {new_conf.value} ({document_type.value})"
            )
            cand = dataclasses.replace(cand, confidence=new_conf)
        adjusted.append(cand)
    return adjusted, notes
