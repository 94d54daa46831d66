"""
Per-line analysis records shared by the readiness gate and the pipeline.

A LineAnalysis pairs one LineItem with the outcome of pricing it. The
billed side of a line is `billed_amount × units`; the reference side is the
resolver's `fee_total`, which already carries the units.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from billbench.services.ingestion.base import LineItem
from billbench.services.policy import BenchmarkPolicy
from billbench.services.reference.resolver import MatchStatus, ReferenceFeeResult

ZERO = Decimal("0")
CENTS = Decimal("0.01")


class LineOutcome(str, Enum):
    PRICED = "priced"
    EXISTS_NOT_PRICED = "exists_not_priced"
    CODE_NOT_FOUND = "code_not_found"
    INVALID_CODE_FORMAT = "invalid_code_format"
    DATA_UNAVAILABLE = "data_unavailable"


class PriceTier(str, Enum):
    FAIR = "fair"
    HIGH = "high"
    VERY_HIGH = "very_high"
    UNKNOWN = "unknown"


_OUTCOME_BY_STATUS = {
    MatchStatus.MATCHED: LineOutcome.PRICED,
    MatchStatus.EXISTS_NOT_PRICED: LineOutcome.EXISTS_NOT_PRICED,
    MatchStatus.MISSING: LineOutcome.CODE_NOT_FOUND,
}


@dataclass(frozen=True)
class LineAnalysis:
    item: LineItem
    outcome: LineOutcome
    fee: Optional[ReferenceFeeResult] = None
    multiple: Optional[Decimal] = None
    price_tier: PriceTier = PriceTier.UNKNOWN
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def billed_total(self) -> Optional[Decimal]:
        if self.item.billed_amount is None:
            return None
        return (self.item.billed_amount * self.item.units).quantize(CENTS, rounding=ROUND_HALF_UP)

    @property
    def reference_fee(self) -> Optional[Decimal]:
        return self.fee.fee_total if self.fee is not None else None

    @property
    def is_priced(self) -> bool:
        return self.outcome == LineOutcome.PRICED

    @property
    def is_matched(self) -> bool:
        """The code exists in the fee schedule, priced or not."""
        return self.outcome in (LineOutcome.PRICED, LineOutcome.EXISTS_NOT_PRICED)

    @property
    def has_billed_and_fee(self) -> bool:
        billed = self.billed_total
        fee = self.reference_fee
        return (
            self.is_priced
            and billed is not None and billed > ZERO
            and fee is not None and fee > ZERO
        )


def price_tier(multiple: Optional[Decimal], policy: BenchmarkPolicy) -> PriceTier:
    if multiple is None:
        return PriceTier.UNKNOWN
    if multiple <= policy.fair_multiple_ceiling:
        return PriceTier.FAIR
    if multiple <= policy.high_multiple_ceiling:
        return PriceTier.HIGH
    return PriceTier.VERY_HIGH


def analyze_line(
    item: LineItem,
    fee: ReferenceFeeResult,
    policy: BenchmarkPolicy,
) -> LineAnalysis:
    """Combine a line item with its resolved fee into a LineAnalysis."""
    outcome = _OUTCOME_BY_STATUS[fee.match_status]
    notes = list(item.notes) + list(fee.notes)

    multiple = None
    billed = item.billed_amount
    if billed is None:
        notes.append("No billed amount detected for this line")
    elif fee.is_priced and fee.fee_total and billed > ZERO:
        billed_total = billed * item.units
        multiple = (billed_total / fee.fee_total).quantize(CENTS, rounding=ROUND_HALF_UP)

    tier = price_tier(multiple, policy)
    if multiple is not None:
        notes.append(f"Billed at {multiple}× the reference price ({tier.value.replace('_', ' ')})")

    return LineAnalysis(
        item=item,
        outcome=outcome,
        fee=fee,
        multiple=multiple,
        price_tier=tier,
        notes=tuple(notes),
    )


def unpriced_line(item: LineItem, outcome: LineOutcome, reason: str) -> LineAnalysis:
    """A line that never reached the fee schedule (bad code or store outage)."""
    return LineAnalysis(item=item, outcome=outcome, notes=tuple(item.notes) + (reason,))
