"""
Totals Reconciler — classifies the document, gathers every total candidate,
normalizes them, and picks the comparison-basis total.

Comparison total priority:
  1. Accepted allowed amount
  2. Accepted total charges
  3. Sum of billed amounts on successfully priced line items
  4. Patient balance (patient responsibility, else amount due) — always
     marked limited comparability: a post-insurance balance and a
     pre-insurance reference price are not the same scope
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from billbench.services.ingestion.adapter import document_text, gather_total_candidates
from billbench.services.ingestion.base import LineItem
from billbench.services.policy import BenchmarkPolicy
from billbench.services.totals.base import Confidence, StructuredTotals, TotalSource
from billbench.services.totals.document_classifier import (
    DocumentClassification,
    DocumentType,
    classify_document,
    weight_candidates,
)
from billbench.services.totals.normalizer import normalize

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ComparisonTotalType(str, Enum):
    ALLOWED_AMOUNT = "allowed_amount"
    TOTAL_CHARGES = "total_charges"
    MATCHED_LINE_ITEMS = "matched_line_items"
    PATIENT_BALANCE = "patient_balance"


class ReconciliationStatus(str, Enum):
    MATCHED = "matched"
    MISMATCH = "mismatch"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class ComparisonTotal:
    total_type: ComparisonTotalType
    value: Decimal
    label: str
    confidence: Confidence
    explanation: str
    limited_comparability: bool = False
    scope_warnings: tuple[str, ...] = ()


@dataclass
class TotalsReconciliation:
    document: DocumentClassification
    totals: StructuredTotals
    comparison_total: Optional[ComparisonTotal]
    status: ReconciliationStatus
    status_note: Optional[str] = None
    notes: list[str] = field(default_factory=list)

    @property
    def document_type(self) -> DocumentType:
        return self.document.document_type


def reconcile(
    raw_extraction: Optional[Mapping],
    line_items: Sequence[LineItem],
    priced_billed_total: Optional[Decimal] = None,
    priced_count: int = 0,
    policy: Optional[BenchmarkPolicy] = None,
    document: Optional[DocumentClassification] = None,
) -> TotalsReconciliation:
    """
    Reconcile every total source for one bill.

    Args:
        raw_extraction:      Upstream extraction payload (any shape the adapter knows).
        line_items:          Adapted line items.
        priced_billed_total: Sum of billed amounts over priced line items, if known.
        priced_count:        Number of line items that were priced.
        document:            Classification already made by the caller, if any.
    """
    policy = policy or BenchmarkPolicy.from_settings()

    if document is None:
        document = classify_document(document_text(raw_extraction))
    candidates = gather_total_candidates(raw_extraction)
    candidates, weighting_notes = weight_candidates(candidates, document.document_type)

    totals = normalize(candidates, line_items, policy)
    comparison = select_comparison_total(totals, priced_billed_total, priced_count)
    status, status_note = _reconciliation_status(totals, policy)

    notes = list(weighting_notes)
    if status_note:
        notes.append(status_note)

    logger.info(
        "Reconciled totals: document=%s comparison=%s status=%s",
        document.document_type.value,
        comparison.total_type.value if comparison else None,
        status.value,
    )
    return TotalsReconciliation(
        document=document,
        totals=totals,
        comparison_total=comparison,
        status=status,
        status_note=status_note,
        notes=notes,
    )


def select_comparison_total(
    totals: StructuredTotals,
    priced_billed_total: Optional[Decimal] = None,
    priced_count: int = 0,
) -> Optional[ComparisonTotal]:
    allowed = totals.allowed_amount
    if allowed is not None and allowed.value > ZERO:
        return ComparisonTotal(
            total_type=ComparisonTotalType.ALLOWED_AMOUNT,
            value=allowed.value,
            label=allowed.label,
            confidence=allowed.confidence,
            explanation=(
                f'Using the allowed amount ("{allowed.label}"), what the plan agreed '
                "to pay for these services."
            ),
        )

    charges = totals.total_charges
    if charges is not None and charges.value > ZERO:
        warnings: tuple[str, ...] = ()
        if charges.source == TotalSource.DERIVED_FROM_LINE_ITEMS:
            warnings = ("Total charges were derived from line items, not read from the document.",)
        return ComparisonTotal(
            total_type=ComparisonTotalType.TOTAL_CHARGES,
            value=charges.value,
            label=charges.label,
            confidence=charges.confidence,
            explanation=(
                f'Using "{charges.label}" ({charges.confidence.value} confidence) '
                "as the comparison basis."
            ),
            scope_warnings=warnings,
        )

    if priced_billed_total is not None and priced_billed_total > ZERO and priced_count > 0:
        return ComparisonTotal(
            total_type=ComparisonTotalType.MATCHED_LINE_ITEMS,
            value=priced_billed_total,
            label=f"Matched items ({priced_count} priced)",
            confidence=Confidence.MEDIUM if priced_count >= 3 else Confidence.LOW,
            explanation=f"Using the sum of {priced_count} line items that could be priced.",
            scope_warnings=("Comparison covers matched line items only, not the whole bill.",),
        )

    balance = totals.balance
    if balance is not None and balance.value > ZERO:
        return ComparisonTotal(
            total_type=ComparisonTotalType.PATIENT_BALANCE,
            value=balance.value,
            label=balance.label,
            confidence=balance.confidence,
            explanation=(
                f'Only a patient balance was found ("{balance.label}"). It is what is '
                "owed after insurance, not the total charges."
            ),
            limited_comparability=True,
            scope_warnings=(
                "Patient balance found instead of total charges.",
                "The reference price covers the full service, not a post-insurance balance.",
            ),
        )

    return None


def _reconciliation_status(
    totals: StructuredTotals, policy: BenchmarkPolicy
) -> tuple[ReconciliationStatus, Optional[str]]:
    charges = totals.total_charges
    line_sum = totals.line_items_sum
    if charges is None or line_sum is None or line_sum <= ZERO:
        return ReconciliationStatus.INSUFFICIENT_DATA, None
    if charges.source == TotalSource.DERIVED_FROM_LINE_ITEMS:
        return (
            ReconciliationStatus.INSUFFICIENT_DATA,
            "Total charges were derived from line items; no independent total to reconcile against.",
        )

    drift = abs(charges.value - line_sum) / line_sum
    pct = (drift * 100).quantize(Decimal("0.1"))
    if drift <= policy.total_mismatch_tolerance:
        return (
            ReconciliationStatus.MATCHED,
            f"Line items match the stated total within {policy.total_mismatch_tolerance * 100}%.",
        )
    return (
        ReconciliationStatus.MISMATCH,
        f"Line items sum to ${line_sum}, the stated total is ${charges.value} ({pct}% apart).",
    )
