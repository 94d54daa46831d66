"""
Totals Normalizer — turns total candidates into at most one validated total
per slot.

Guardrails, applied to every candidate before selection:
  1. Unparseable value             → not detected (never $0)
  2. Total-charges label           → must read like charges vocabulary and
                                     must not read like balance vocabulary
  3. Zero                          → only with an explicit zero in the
                                     evidence AND high confidence
  4. Negative                      → only in the payments/adjustments slot
  5. Below the tiny-value floor    → only with high confidence

Survivors go through one reducer: best confidence wins, ties go to the
candidate produced last.

Then, when no high-confidence total charges survived, a total is derived from
line items (billed × units, at least two qualifying lines). A derived sum is
cross-checked against any accepted document total.
"""

import logging
import re
from collections.abc import Sequence
from decimal import Decimal
from typing import Optional

from billbench.services.ingestion.base import LineItem
from billbench.services.policy import BenchmarkPolicy
from billbench.services.totals.base import (
    CENTS,
    Confidence,
    DetectedTotal,
    StructuredTotals,
    TotalCandidate,
    TotalRejection,
    TotalSlot,
    TotalSource,
    parse_currency,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# ── Label vocabularies ────────────────────────────────────────────────────────

CHARGES_VOCABULARY = [
    "total charges", "total charge", "charges", "total billed", "billed amount",
    "amount billed", "billed", "gross charges", "statement total", "grand total",
    "hospital charges", "total amount", "sum of line-item charges",
]

BALANCE_VOCABULARY = [
    "balance", "amount due", "balance due", "total due", "due", "you owe",
    "amount you owe", "owe", "patient responsibility", "your responsibility",
    "pay this amount", "payment due", "patient due", "patient portion",
    "after insurance", "remaining",
]

# "$0", "$0.00", "0.00" or "zero"; never "$0.50" or "10.00"
_ZERO_EVIDENCE = re.compile(
    r"\$0(?:\.00)?(?![.\d])|(?<![\d.])0\.00(?![.\d])|\bzero\b", re.IGNORECASE
)


def _mentions(label: str, vocabulary: list[str]) -> bool:
    lower = label.lower()
    return any(re.search(r"\b" + re.escape(term) + r"\b", lower) for term in vocabulary)


def looks_like_charges(label: str) -> bool:
    return _mentions(label, CHARGES_VOCABULARY)


def looks_like_balance(label: str) -> bool:
    return _mentions(label, BALANCE_VOCABULARY)


def evidence_shows_zero(evidence: Optional[str]) -> bool:
    return bool(evidence) and bool(_ZERO_EVIDENCE.search(evidence))


# ── Guardrails ────────────────────────────────────────────────────────────────


def check_candidate(
    candidate: TotalCandidate, policy: BenchmarkPolicy
) -> tuple[Optional[DetectedTotal], Optional[str]]:
    """
    Run every guardrail against one candidate.
    Returns (DetectedTotal, None) on acceptance or (None, reason) on rejection.
    """
    value = parse_currency(candidate.raw_value)
    if value is None:
        return None, "value could not be parsed as currency"

    if candidate.slot == TotalSlot.TOTAL_CHARGES:
        if looks_like_balance(candidate.label):
            return None, "label reads like a balance, not total charges"
        if not looks_like_charges(candidate.label):
            return None, "label does not read like total charges"

    high = candidate.confidence == Confidence.HIGH

    if value == ZERO:
        if not (high and evidence_shows_zero(candidate.evidence)):
            return None, "$0 not explicitly stated with high confidence"

    if value < ZERO and candidate.slot != TotalSlot.PAYMENTS_ADJUSTMENTS:
        return None, f"negative value {value} not allowed here"

    if ZERO < abs(value) < policy.tiny_total_floor and not high:
        return None, f"tiny value {value} below {policy.tiny_total_floor} without high confidence"

    return DetectedTotal(
        value=value,
        confidence=candidate.confidence,
        label=candidate.label,
        evidence=candidate.evidence,
        source=TotalSource.EXTRACTION,
        producer=candidate.producer,
    ), None


def select_best(totals: Sequence[DetectedTotal]) -> Optional[DetectedTotal]:
    """Best by confidence; later entries win ties."""
    best: Optional[DetectedTotal] = None
    for total in totals:
        if best is None or total.confidence.rank >= best.confidence.rank:
            best = total
    return best


# ── Normalizer ────────────────────────────────────────────────────────────────


def normalize(
    candidates: Sequence[TotalCandidate],
    line_items: Sequence[LineItem],
    policy: Optional[BenchmarkPolicy] = None,
) -> StructuredTotals:
    """
    Validate, reduce and derive totals.

    Args:
        candidates: Candidates in production order (later = more recent).
        line_items: Line items, used for derivation and cross-checking.
        policy:     Thresholds; defaults to the configured policy.
    """
    policy = policy or BenchmarkPolicy.from_settings()
    result = StructuredTotals()

    survivors: dict[TotalSlot, list[DetectedTotal]] = {slot: [] for slot in TotalSlot}
    for cand in candidates:
        detected, reason = check_candidate(cand, policy)
        if detected is None:
            rejection = TotalRejection(
                slot=cand.slot,
                raw_value=cand.raw_value,
                label=cand.label,
                producer=cand.producer,
                reason=reason,
            )
            result.rejections.append(rejection)
            result.notes.append(rejection.note)
            logger.info("Total candidate rejected: %s", rejection.note)
            continue
        survivors[cand.slot].append(detected)

    for slot, totals in survivors.items():
        result.set(slot, select_best(totals))

    _apply_line_items(result, line_items, policy)

    if not result.has_any_total and line_items:
        result.notes.append("No valid totals extracted or derived from the document")
    return result


def _apply_line_items(
    result: StructuredTotals, line_items: Sequence[LineItem], policy: BenchmarkPolicy
) -> None:
    qualifying = [
        item for item in line_items
        if item.billed_amount is not None and item.billed_amount > ZERO
    ]
    if len(qualifying) < policy.min_items_for_derived_total:
        if len(qualifying) == 1 and result.total_charges is None:
            result.notes.append(
                "Only 1 line item has a billed amount; not enough to derive a total"
            )
        return

    line_sum = sum(
        (item.billed_amount * item.units for item in qualifying), ZERO
    ).quantize(CENTS)
    result.line_items_sum = line_sum

    stated = result.total_charges
    if stated is not None and stated.value < line_sum * policy.small_total_ratio:
        result.notes.append(
            f"Total charges {stated.value} is far below the line-item sum {line_sum}; "
            "ignoring it"
        )
        result.rejections.append(TotalRejection(
            slot=TotalSlot.TOTAL_CHARGES,
            raw_value=stated.value,
            label=stated.label,
            producer=stated.producer or "unknown",
            reason=f"smaller than {policy.small_total_ratio} × line-item sum {line_sum}",
        ))
        result.total_charges = stated = None

    if stated is None or stated.confidence == Confidence.LOW:
        confidence = (
            Confidence.MEDIUM
            if len(qualifying) >= policy.medium_confidence_item_count
            else Confidence.LOW
        )
        result.total_charges = DetectedTotal(
            value=line_sum,
            confidence=confidence,
            label="Sum of line-item charges",
            evidence=f"Derived by summing {len(qualifying)} line items",
            source=TotalSource.DERIVED_FROM_LINE_ITEMS,
        )
        result.notes.append(
            f"Derived total charges (${line_sum}) from {len(qualifying)} line items "
            f"(confidence: {confidence.value})"
        )
        return

    # A document total was accepted; cross-check it against the line items
    # Same base as the reconciliation status: drift relative to the line sum
    if line_sum > ZERO:
        drift = abs(stated.value - line_sum) / line_sum
        if drift > policy.total_mismatch_tolerance:
            result.notes.append(
                f"Line items sum to ${line_sum} but the document states ${stated.value} "
                f"({(drift * 100).quantize(Decimal('0.1'))}% apart); some charges may "
                "not be itemized"
            )
