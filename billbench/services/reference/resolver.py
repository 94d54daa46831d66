"""
Reference Fee Resolver — looks up or computes the reference price for one code.

Lookup order for (code, year, modifier):
  1. exact (code, requested_year, modifier)
  2. (code, requested_year, no modifier)        — modifier fallback
  3. steps 1–2 at the latest loaded year         — year fallback
Every fallback carries a human-readable reason; none is silent.

Priceability of a found row:
  - status code B/I/N/R/X                        → EXISTS_NOT_PRICED (NON_PAYABLE_STATUS)
  - no RVUs and no direct fee                     → EXISTS_NOT_PRICED (NO_RVU_OR_FEE)
  - computed fee ≤ 0                              → EXISTS_NOT_PRICED (NON_POSITIVE_FEE)
  - otherwise                                     → MATCHED

Fee per unit:
  The stored fee is a national figure. It is used as-is when no geographic
  adjustment applies (or when the row has no RVUs to adjust). With a locality
  or state GPCI in play the fee is rebuilt from RVUs:

      fee = (work × wGPCI + pe(fac|nonfac) × peGPCI + mp × mpGPCI) × CF

Units multiply the per-unit fee exactly once, at the end.

A resolver instance is scoped to one analysis: the latest-year lookup is
memoised on the instance and must never be shared across requests.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from billbench.models.fee_schedule import FeeScheduleRow, GlobalDays, StatusCode
from billbench.services.policy import BenchmarkPolicy
from billbench.services.reference.geography import Geography, LocalityConfidence
from billbench.services.reference.store import FeeScheduleStore

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0")
_UNSET = object()


# ── Result types ──────────────────────────────────────────────────────────────


class MatchStatus(str, Enum):
    MATCHED = "matched"
    EXISTS_NOT_PRICED = "exists_not_priced"
    MISSING = "missing"


class NotPricedReason(str, Enum):
    NO_RVU_OR_FEE = "no_rvu_or_fee"
    NON_PAYABLE_STATUS = "non_payable_status"
    NON_POSITIVE_FEE = "non_positive_fee"


class FeeSource(str, Enum):
    DIRECT_FEE = "direct_fee"
    RVU_COMPUTED = "rvu_computed"


@dataclass(frozen=True)
class ReferenceFeeResult:
    code: str
    modifier: Optional[str]
    units: int
    match_status: MatchStatus
    year_requested: Optional[int]
    year_used: Optional[int]
    locality_confidence: LocalityConfidence
    fee_per_unit: Optional[Decimal] = None
    fee_total: Optional[Decimal] = None
    used_year_fallback: bool = False
    year_fallback_reason: Optional[str] = None
    used_modifier_fallback: bool = False
    modifier_fallback_reason: Optional[str] = None
    not_priced_reason: Optional[NotPricedReason] = None
    fee_source: Optional[FeeSource] = None
    bundling_flag: bool = False
    description: Optional[str] = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_priced(self) -> bool:
        return self.match_status == MatchStatus.MATCHED


@dataclass
class _Lookup:
    row: Optional[FeeScheduleRow] = None
    year_used: Optional[int] = None
    used_modifier_fallback: bool = False
    used_year_fallback: bool = False


# ── Resolver ──────────────────────────────────────────────────────────────────


class ReferenceFeeResolver:
    """
    Resolves reference fees against a FeeScheduleStore.

    Usage:
        resolver = ReferenceFeeResolver(store)   # one per analysis
        result = resolver.resolve("99213", 2026, None, geography, is_facility=True)

    Store errors (StoreUnavailableError) propagate to the caller.
    """

    def __init__(self, store: FeeScheduleStore, policy: Optional[BenchmarkPolicy] = None):
        self.store = store
        self.policy = policy or BenchmarkPolicy.from_settings()
        self._latest_year = _UNSET

    def reset(self) -> None:
        """Forget the memoised latest year (start of a new analysis)."""
        self._latest_year = _UNSET

    def latest_year(self) -> Optional[int]:
        if self._latest_year is _UNSET:
            self._latest_year = self.store.latest_year()
        return self._latest_year

    def resolve(
        self,
        code: str,
        requested_year: Optional[int],
        modifier: Optional[str],
        geography: Optional[Geography] = None,
        is_facility: bool = False,
        units: int = 1,
    ) -> ReferenceFeeResult:
        code = code.strip().upper()
        modifier = (modifier or "").strip().upper() or None
        geography = geography or Geography.national()
        units = units if units and units > 0 else 1

        lookup = self._lookup(code, requested_year, modifier)
        notes: list[str] = []
        year_reason = None
        modifier_reason = None

        if lookup.used_year_fallback:
            year_reason = (
                f"Service year {requested_year} not in the fee schedule; "
                f"using {lookup.year_used} (latest available)"
            )
            notes.append(year_reason)
        if lookup.used_modifier_fallback:
            modifier_reason = (
                f"No rate for modifier {modifier}; base code {code} rate used"
            )
            notes.append(modifier_reason)

        base = dict(
            code=code,
            modifier=modifier,
            units=units,
            year_requested=requested_year,
            year_used=lookup.year_used,
            locality_confidence=geography.confidence,
            used_year_fallback=lookup.used_year_fallback,
            year_fallback_reason=year_reason,
            used_modifier_fallback=lookup.used_modifier_fallback,
            modifier_fallback_reason=modifier_reason,
        )

        row = lookup.row
        if row is None:
            logger.info("No fee schedule row for %s (requested year %s)", code, requested_year)
            notes.append("No reference price exists for this code in any year searched")
            return ReferenceFeeResult(
                match_status=MatchStatus.MISSING, notes=tuple(notes), **base
            )

        bundled = (row.global_days or "").strip() in GlobalDays.BUNDLED
        if bundled:
            notes.append(
                "Global surgery code: follow-up visits may be included in this price"
            )
        base.update(description=row.description, bundling_flag=bundled)

        status = (row.status_code or "").strip().upper()
        if status in StatusCode.NON_PAYABLE:
            notes.append(
                f"Status '{status}': not separately payable under the fee schedule"
            )
            return self._not_priced(NotPricedReason.NON_PAYABLE_STATUS, notes, base)

        fee, source, fee_notes = self._fee_per_unit(row, geography, is_facility)
        notes.extend(fee_notes)

        if fee is None:
            notes.append("Listed in the fee schedule but carries no RVUs or fee amounts")
            return self._not_priced(NotPricedReason.NO_RVU_OR_FEE, notes, base)
        if fee <= ZERO:
            notes.append("Computed reference fee is not positive; not used for comparison")
            return self._not_priced(NotPricedReason.NON_POSITIVE_FEE, notes, base)

        return ReferenceFeeResult(
            match_status=MatchStatus.MATCHED,
            fee_per_unit=fee,
            fee_total=(fee * units).quantize(CENTS, rounding=ROUND_HALF_UP),
            fee_source=source,
            notes=tuple(notes),
            **base,
        )

    # ── Private helpers ───────────────────────────────────────────────────────

    def _lookup(self, code: str, requested_year: Optional[int], modifier: Optional[str]) -> _Lookup:
        latest = self.latest_year()
        year = requested_year if requested_year is not None else latest
        if year is None:
            return _Lookup()

        row, mod_fallback = self._try_year(code, year, modifier)
        if row is not None:
            return _Lookup(row, year, mod_fallback, False)

        if latest is not None and latest != year:
            row, mod_fallback = self._try_year(code, latest, modifier)
            if row is not None:
                return _Lookup(row, latest, mod_fallback, True)

        return _Lookup(year_used=None)

    def _try_year(self, code: str, year: int, modifier: Optional[str]):
        if modifier:
            row = self.store.find_fee_row(code, year, modifier)
            if row is not None:
                return row, False
            row = self.store.find_fee_row(code, year, "")
            return row, row is not None
        return self.store.find_fee_row(code, year, ""), False

    def _fee_per_unit(self, row: FeeScheduleRow, geography: Geography, is_facility: bool):
        """Return (fee_per_unit | None, FeeSource | None, notes)."""
        notes: list[str] = []
        direct = _dec(row.facility_fee if is_facility else row.nonfacility_fee)
        work = _dec(row.work_rvu) or ZERO
        pe = _dec(row.pe_rvu_facility if is_facility else row.pe_rvu_nonfacility) or ZERO
        mp = _dec(row.mp_rvu) or ZERO
        has_rvus = any(v != ZERO for v in (work, pe, mp))
        adjusted = geography.factors is not None

        if direct is not None and direct > ZERO and (not adjusted or not has_rvus):
            if adjusted:
                notes.append("National fee used; no RVUs available for geographic adjustment")
            return direct.quantize(CENTS, rounding=ROUND_HALF_UP), FeeSource.DIRECT_FEE, notes

        if not has_rvus:
            # Zero/absent RVUs and zero/absent fee: listed but not priced
            return None, None, notes

        cf = _dec(row.conversion_factor) or self.policy.default_conversion_factor
        factors = geography.factors
        w_gpci = factors.work_gpci if factors else Decimal("1")
        pe_gpci = factors.pe_gpci if factors else Decimal("1")
        mp_gpci = factors.mp_gpci if factors else Decimal("1")

        fee = (work * w_gpci + pe * pe_gpci + mp * mp_gpci) * cf
        if geography.confidence != LocalityConfidence.NATIONAL_ESTIMATE:
            notes.append(f"Adjusted for {geography.label}")
        return fee.quantize(CENTS, rounding=ROUND_HALF_UP), FeeSource.RVU_COMPUTED, notes

    def _not_priced(self, reason: NotPricedReason, notes: list[str], base: dict) -> ReferenceFeeResult:
        return ReferenceFeeResult(
            match_status=MatchStatus.EXISTS_NOT_PRICED,
            not_priced_reason=reason,
            notes=tuple(notes),
            **base,
        )


def _dec(value) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))
