"""
Readiness Gate — decides whether a multiple of the reference price may be
shown, and which numerator/denominator pairing it uses.

Paths, evaluated in strict order (first match wins):
  1. MATCHED_ITEMS      READY         ≥1 line with billed > 0 and reference fee > 0
  2. DOCUMENT_TOTAL     READY         document total charges, coverage ≥ threshold,
                                      ≥1 priced line
  3. BALANCE_ONLY       LIMITED_DATA  only a patient balance was found
  4. NO_BILLED_AMOUNTS  LIMITED_DATA  reference fees exist, no billed total anywhere
  5. LOW_COVERAGE       LIMITED_DATA  billed and reference totals exist, coverage
                                      below threshold
  6. NOT_POSSIBLE       NOT_POSSIBLE  none of the above

A multiple is only ever computed on paths 1 and 2. A later path is never
taken while an earlier one applies.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from billbench.services.analysis import LineAnalysis
from billbench.services.policy import BenchmarkPolicy
from billbench.services.totals.base import TotalSource
from billbench.services.totals.reconciler import TotalsReconciliation

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENTS = Decimal("0.01")


class ReadinessStatus(str, Enum):
    READY = "ready"
    LIMITED_DATA = "limited_data"
    NOT_POSSIBLE = "not_possible"


class ReadinessPath(str, Enum):
    MATCHED_ITEMS = "matched_items"
    DOCUMENT_TOTAL = "document_total"
    BALANCE_ONLY = "balance_only"
    NO_BILLED_AMOUNTS = "no_billed_amounts"
    LOW_COVERAGE = "low_coverage"
    NOT_POSSIBLE = "not_possible"


class NumeratorType(str, Enum):
    MATCHED_BILLED_TOTAL = "matched_billed_total"
    DOCUMENT_TOTAL_CHARGES = "document_total_charges"
    NONE = "none"


class DenominatorType(str, Enum):
    REFERENCE_MATCHED_TOTAL = "reference_matched_total"
    NONE = "none"


_STATUS_BY_PATH = {
    ReadinessPath.MATCHED_ITEMS: ReadinessStatus.READY,
    ReadinessPath.DOCUMENT_TOTAL: ReadinessStatus.READY,
    ReadinessPath.BALANCE_ONLY: ReadinessStatus.LIMITED_DATA,
    ReadinessPath.NO_BILLED_AMOUNTS: ReadinessStatus.LIMITED_DATA,
    ReadinessPath.LOW_COVERAGE: ReadinessStatus.LIMITED_DATA,
    ReadinessPath.NOT_POSSIBLE: ReadinessStatus.NOT_POSSIBLE,
}


@dataclass(frozen=True)
class Coverage:
    extracted_items: int = 0
    matched_items: int = 0   # code found in the fee schedule
    priced_items: int = 0    # code found and priced
    ratio: Decimal = ZERO    # priced / extracted

    @property
    def percent(self) -> int:
        return int((self.ratio * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @property
    def is_complete(self) -> bool:
        return self.extracted_items > 0 and self.priced_items >= self.extracted_items


@dataclass
class ComparisonModel:
    numerator_type: NumeratorType = NumeratorType.NONE
    numerator_value: Optional[Decimal] = None
    numerator_label: str = "Not available"
    denominator_type: DenominatorType = DenominatorType.NONE
    denominator_value: Optional[Decimal] = None
    denominator_label: str = "Not available"
    can_compute_multiple: bool = False
    multiple: Optional[Decimal] = None
    coverage: Coverage = field(default_factory=Coverage)
    scope_warnings: list[str] = field(default_factory=list)
    explanation: str = ""


@dataclass
class ReadinessResult:
    status: ReadinessStatus
    path: ReadinessPath
    comparison: ComparisonModel
    reasons: list[str] = field(default_factory=list)


def measure_coverage(lines: Sequence[LineAnalysis]) -> Coverage:
    extracted = len(lines)
    matched = sum(1 for line in lines if line.is_matched)
    priced = sum(1 for line in lines if line.is_priced)
    ratio = (Decimal(priced) / Decimal(extracted)) if extracted else ZERO
    return Coverage(extracted, matched, priced, ratio)


def assess_readiness(
    lines: Sequence[LineAnalysis],
    reconciliation: Optional[TotalsReconciliation],
    policy: Optional[BenchmarkPolicy] = None,
) -> ReadinessResult:
    """
    Run the readiness state machine over one analysed bill.

    Args:
        lines:          Per-line analyses, in input order.
        reconciliation: Reconciled totals for the bill (may be None).
        policy:         Thresholds; defaults to the configured policy.
    """
    policy = policy or BenchmarkPolicy.from_settings()
    coverage = measure_coverage(lines)
    totals = reconciliation.totals if reconciliation is not None else None

    priced = [line for line in lines if line.is_priced]
    reference_total = _sum(line.reference_fee for line in priced)

    # ── Path 1: matched items ─────────────────────────────────────────────────
    paired = [line for line in lines if line.has_billed_and_fee]
    if paired:
        billed = _sum(line.billed_total for line in paired)
        fees = _sum(line.reference_fee for line in paired)
        warnings = []
        if len(paired) < coverage.extracted_items:
            excluded = coverage.extracted_items - len(paired)
            warnings.append(
                f"Comparison includes {len(paired)} of {coverage.extracted_items} line items; "
                f"{excluded} excluded for lack of a billed amount or reference price"
            )
        model = ComparisonModel(
            numerator_type=NumeratorType.MATCHED_BILLED_TOTAL,
            numerator_value=billed,
            numerator_label=f"Matched charges ({len(paired)} items)",
            denominator_type=DenominatorType.REFERENCE_MATCHED_TOTAL,
            denominator_value=fees,
            denominator_label="Reference price (matched items)",
            can_compute_multiple=True,
            multiple=_multiple(billed, fees),
            coverage=coverage,
            scope_warnings=warnings,
            explanation=(
                f"Comparing billed charges (${billed}) to the reference price (${fees}) "
                f"for {len(paired)} matched line items."
            ),
        )
        return _result(
            ReadinessPath.MATCHED_ITEMS, model,
            [f"Matched {len(paired)} items with both a billed amount and a reference price"],
        )

    # ── Path 2: document total charges ────────────────────────────────────────
    charges = totals.total_charges if totals is not None else None
    if (
        charges is not None
        and charges.source == TotalSource.EXTRACTION
        and charges.value > ZERO
        and reference_total > ZERO
        and coverage.priced_items >= 1
        and coverage.ratio >= policy.coverage_threshold
    ):
        warnings = ["Comparison uses the document's total charges against matched reference prices"]
        if not coverage.is_complete:
            warnings.append(f"Only {coverage.percent}% of line items could be priced")
        model = ComparisonModel(
            numerator_type=NumeratorType.DOCUMENT_TOTAL_CHARGES,
            numerator_value=charges.value,
            numerator_label=charges.label,
            denominator_type=DenominatorType.REFERENCE_MATCHED_TOTAL,
            denominator_value=reference_total,
            denominator_label="Reference price",
            can_compute_multiple=True,
            multiple=_multiple(charges.value, reference_total),
            coverage=coverage,
            scope_warnings=warnings,
            explanation=(
                f"Comparing document total charges (${charges.value}) to the reference "
                f"price (${reference_total}); {charges.confidence.value} confidence."
            ),
        )
        return _result(
            ReadinessPath.DOCUMENT_TOTAL, model,
            [f"Using document total charges (${charges.value})", f"Coverage: {coverage.percent}%"],
        )

    # ── Path 3: patient balance only ──────────────────────────────────────────
    balance = totals.balance if totals is not None else None
    if balance is not None and balance.value > ZERO:
        model = ComparisonModel(
            numerator_value=balance.value,
            numerator_label=balance.label,
            denominator_type=_denominator_type(reference_total),
            denominator_value=reference_total or None,
            denominator_label="Reference price",
            coverage=coverage,
            scope_warnings=[
                "Patient balance found instead of total charges.",
                "The reference price covers the full service, not a post-insurance balance.",
                "A multiple cannot be computed from a balance.",
            ],
            explanation=(
                f'Found "{balance.label}" (${balance.value}), the balance left after '
                "insurance. It cannot be compared to reference prices."
            ),
        )
        return _result(
            ReadinessPath.BALANCE_ONLY, model,
            ["Only a patient balance was found, not total charges"],
        )

    # ── Path 4: no billed amounts ─────────────────────────────────────────────
    billed_total = _billed_total(lines, charges)
    if billed_total is None:
        if reference_total > ZERO:
            model = ComparisonModel(
                denominator_type=DenominatorType.REFERENCE_MATCHED_TOTAL,
                denominator_value=reference_total,
                denominator_label="Reference price",
                coverage=coverage,
                scope_warnings=[
                    "No billed amounts could be read from the document.",
                    "Reference prices are shown for the matched services.",
                ],
                explanation=(
                    "No billed amounts were found. Reference prices are shown for "
                    "information only."
                ),
            )
            return _result(
                ReadinessPath.NO_BILLED_AMOUNTS, model,
                ["No billed amounts detected in the document"],
            )
        return _not_possible("No billed amounts or reference prices available", coverage)

    # ── Path 5: low coverage ──────────────────────────────────────────────────
    if reference_total > ZERO and coverage.ratio < policy.coverage_threshold:
        model = ComparisonModel(
            numerator_value=billed_total,
            numerator_label="Billed total",
            denominator_type=DenominatorType.REFERENCE_MATCHED_TOTAL,
            denominator_value=reference_total,
            denominator_label="Reference price (partial)",
            coverage=coverage,
            scope_warnings=[
                f"Only {coverage.priced_items} of {coverage.extracted_items} line items "
                "could be matched to reference prices.",
                "A comparison would not represent the full bill.",
            ],
            explanation=(
                f"Low coverage ({coverage.percent}%); a comparison would not be "
                "representative."
            ),
        )
        return _result(
            ReadinessPath.LOW_COVERAGE, model,
            [f"Low coverage: only {coverage.percent}% of items priced"],
        )

    if reference_total <= ZERO:
        return _not_possible("No reference prices available for this bill", coverage)
    return _not_possible(
        "Billed amounts and reference prices cover different line items", coverage
    )


# ── Helpers ───────────────────────────────────────────────────────────────────


def _sum(values) -> Decimal:
    return sum((v for v in values if v is not None), ZERO)


def _multiple(numerator: Decimal, denominator: Decimal) -> Decimal:
    return (numerator / denominator).quantize(CENTS, rounding=ROUND_HALF_UP)


def _denominator_type(reference_total: Decimal) -> DenominatorType:
    if reference_total > ZERO:
        return DenominatorType.REFERENCE_MATCHED_TOTAL
    return DenominatorType.NONE


def _billed_total(lines: Sequence[LineAnalysis], charges) -> Optional[Decimal]:
    """Any billed figure on the bill: accepted total charges, else billed line sum."""
    if charges is not None and charges.value > ZERO:
        return charges.value
    line_sum = _sum(line.billed_total for line in lines)
    return line_sum if line_sum > ZERO else None


def _result(path: ReadinessPath, model: ComparisonModel, reasons: list[str]) -> ReadinessResult:
    status = _STATUS_BY_PATH[path]
    logger.info(
        "Readiness: %s via %s (coverage %s%%, multiple %s)",
        status.value, path.value, model.coverage.percent, model.multiple,
    )
    return ReadinessResult(status=status, path=path, comparison=model, reasons=reasons)


def _not_possible(reason: str, coverage: Coverage) -> ReadinessResult:
    model = ComparisonModel(coverage=coverage, scope_warnings=[reason], explanation=reason)
    return _result(ReadinessPath.NOT_POSSIBLE, model, [reason])
