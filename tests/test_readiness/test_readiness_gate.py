"""
Readiness gate tests — path order, coverage, and when a multiple may be shown.
Lines and totals are built directly; no DB required.
"""

from decimal import Decimal

import pytest

from billbench.services.analysis import LineAnalysis, LineOutcome
from billbench.services.codes.normalizer import validate
from billbench.services.ingestion.base import LineItem
from billbench.services.policy import BenchmarkPolicy
from billbench.services.readiness.gate import (
    DenominatorType,
    NumeratorType,
    ReadinessPath,
    ReadinessStatus,
    assess_readiness,
    measure_coverage,
)
from billbench.services.reference.geography import LocalityConfidence
from billbench.services.reference.resolver import MatchStatus, ReferenceFeeResult
from billbench.services.totals.base import (
    Confidence,
    DetectedTotal,
    StructuredTotals,
    TotalSource,
)
from billbench.services.totals.document_classifier import DocumentClassification, DocumentType
from billbench.services.totals.reconciler import ReconciliationStatus, TotalsReconciliation


# ── Builders ──────────────────────────────────────────────────────────────────


def _item(n, billed=None, units=1, code="99213"):
    return LineItem(
        line_number=n, code=validate(code), raw_code=code,
        billed_amount=Decimal(billed) if billed is not None else None, units=units,
    )


def _fee(total, status=MatchStatus.MATCHED):
    value = Decimal(total) if total is not None else None
    return ReferenceFeeResult(
        code="99213", modifier=None, units=1, match_status=status,
        year_requested=2026, year_used=2026,
        locality_confidence=LocalityConfidence.NATIONAL_ESTIMATE,
        fee_per_unit=value, fee_total=value,
    )


def priced(n, fee, billed=None, units=1):
    return LineAnalysis(item=_item(n, billed, units), outcome=LineOutcome.PRICED, fee=_fee(fee))


def not_found(n, billed=None):
    return LineAnalysis(
        item=_item(n, billed), outcome=LineOutcome.CODE_NOT_FOUND,
        fee=_fee(None, MatchStatus.MISSING),
    )


def not_priced(n, billed=None):
    return LineAnalysis(
        item=_item(n, billed), outcome=LineOutcome.EXISTS_NOT_PRICED,
        fee=_fee(None, MatchStatus.EXISTS_NOT_PRICED),
    )


def _total(value, label, source=TotalSource.EXTRACTION):
    return DetectedTotal(
        value=Decimal(value), confidence=Confidence.HIGH, label=label, evidence="",
        source=source,
    )


def recon(total_charges=None, amount_due=None, derived=False):
    totals = StructuredTotals(
        total_charges=(
            _total(total_charges, "Total Charges",
                   TotalSource.DERIVED_FROM_LINE_ITEMS if derived else TotalSource.EXTRACTION)
            if total_charges else None
        ),
        amount_due=_total(amount_due, "Amount Due") if amount_due else None,
    )
    return TotalsReconciliation(
        document=DocumentClassification(DocumentType.UNKNOWN),
        totals=totals,
        comparison_total=None,
        status=ReconciliationStatus.INSUFFICIENT_DATA,
    )


# ── Coverage ──────────────────────────────────────────────────────────────────


class TestCoverage:
    def test_counts(self):
        coverage = measure_coverage([
            priced(1, "100"), not_priced(2), not_found(3), priced(4, "50"),
        ])
        assert coverage.extracted_items == 4
        assert coverage.matched_items == 3
        assert coverage.priced_items == 2
        assert coverage.ratio == Decimal("0.5")
        assert coverage.percent == 50
        assert not coverage.is_complete

    def test_empty(self):
        coverage = measure_coverage([])
        assert coverage.ratio == Decimal("0")
        assert not coverage.is_complete


# ── Paths ─────────────────────────────────────────────────────────────────────


class TestMatchedItems:
    def test_single_paired_line(self, policy):
        result = assess_readiness([priced(1, "92.50", billed="300.00")], recon(), policy)
        assert result.status == ReadinessStatus.READY
        assert result.path == ReadinessPath.MATCHED_ITEMS
        model = result.comparison
        assert model.numerator_type == NumeratorType.MATCHED_BILLED_TOTAL
        assert model.numerator_value == Decimal("300.00")
        assert model.denominator_type == DenominatorType.REFERENCE_MATCHED_TOTAL
        assert model.denominator_value == Decimal("92.50")
        assert model.can_compute_multiple
        assert model.multiple == Decimal("3.24")
        assert model.scope_warnings == []

    def test_units_on_billed_side(self, policy):
        line = priced(1, "185.00", billed="100.00", units=2)
        result = assess_readiness([line], recon(), policy)
        assert result.comparison.numerator_value == Decimal("200.00")
        assert result.comparison.multiple == Decimal("1.08")

    def test_unpaired_lines_excluded_with_warning(self, policy):
        lines = [priced(1, "100", billed="250"), not_found(2, billed="80"), priced(3, "50")]
        result = assess_readiness(lines, recon(), policy)
        assert result.path == ReadinessPath.MATCHED_ITEMS
        assert result.comparison.numerator_value == Decimal("250.00")
        assert result.comparison.denominator_value == Decimal("100")
        assert "1 of 3" in result.comparison.scope_warnings[0]

    def test_wins_over_totals(self, policy):
        lines = [priced(1, "100", billed="250")]
        result = assess_readiness(lines, recon(total_charges="900", amount_due="40"), policy)
        assert result.path == ReadinessPath.MATCHED_ITEMS

    def test_zero_billed_is_not_paired(self, policy):
        result = assess_readiness([priced(1, "100", billed="0")], recon(), policy)
        assert result.path != ReadinessPath.MATCHED_ITEMS


class TestDocumentTotal:
    def test_full_coverage(self, policy):
        lines = [priced(1, "100"), priced(2, "100"), priced(3, "100")]
        result = assess_readiness(lines, recon(total_charges="900"), policy)
        assert result.status == ReadinessStatus.READY
        assert result.path == ReadinessPath.DOCUMENT_TOTAL
        model = result.comparison
        assert model.numerator_type == NumeratorType.DOCUMENT_TOTAL_CHARGES
        assert model.numerator_value == Decimal("900")
        assert model.denominator_value == Decimal("300")
        assert model.multiple == Decimal("3.00")
        assert len(model.scope_warnings) == 1

    def test_derived_total_is_not_a_document_total(self, policy):
        result = assess_readiness([priced(1, "100")], recon(total_charges="500", derived=True), policy)
        assert result.path == ReadinessPath.NOT_POSSIBLE
        assert "different line items" in result.reasons[0]

    def test_threshold_comes_from_policy(self):
        lines = [priced(1, "100"), priced(2, "50"), priced(3, "50"), not_found(4), not_found(5)]
        relaxed = BenchmarkPolicy(coverage_threshold=Decimal("0.5"))
        result = assess_readiness(lines, recon(total_charges="1000"), relaxed)
        assert result.path == ReadinessPath.DOCUMENT_TOTAL
        assert any("Only 60%" in w for w in result.comparison.scope_warnings)


class TestBalanceOnly:
    def test_balance_with_reference_prices(self, policy):
        result = assess_readiness([priced(1, "92.50")], recon(amount_due="450"), policy)
        assert result.status == ReadinessStatus.LIMITED_DATA
        assert result.path == ReadinessPath.BALANCE_ONLY
        model = result.comparison
        assert not model.can_compute_multiple
        assert model.multiple is None
        assert model.numerator_type == NumeratorType.NONE
        assert model.numerator_value == Decimal("450")
        assert model.denominator_value == Decimal("92.50")
        assert len(model.scope_warnings) == 3

    def test_balance_without_reference_prices(self, policy):
        result = assess_readiness([], recon(amount_due="450"), policy)
        assert result.path == ReadinessPath.BALANCE_ONLY
        assert result.comparison.denominator_type == DenominatorType.NONE
        assert result.comparison.denominator_value is None


class TestLimitedAndNotPossible:
    def test_no_billed_amounts(self, policy):
        lines = [priced(1, "100"), priced(2, "40")]
        result = assess_readiness(lines, recon(), policy)
        assert result.status == ReadinessStatus.LIMITED_DATA
        assert result.path == ReadinessPath.NO_BILLED_AMOUNTS
        assert result.comparison.denominator_value == Decimal("140")
        assert result.comparison.numerator_value is None

    def test_low_coverage(self, policy):
        # 5 items, 3 priced without billed amounts, 2 unknown codes, $1000 document total
        lines = [priced(1, "100"), priced(2, "50"), priced(3, "50"), not_found(4), not_found(5)]
        result = assess_readiness(lines, recon(total_charges="1000"), policy)
        assert result.status == ReadinessStatus.LIMITED_DATA
        assert result.path == ReadinessPath.LOW_COVERAGE
        assert result.comparison.coverage.percent == 60
        assert result.comparison.numerator_value == Decimal("1000")
        assert result.comparison.denominator_value == Decimal("200")
        assert not result.comparison.can_compute_multiple

    def test_billed_but_nothing_priced(self, policy):
        lines = [not_found(1, billed="100"), not_found(2, billed="200")]
        result = assess_readiness(lines, recon(), policy)
        assert result.status == ReadinessStatus.NOT_POSSIBLE
        assert result.reasons == ["No reference prices available for this bill"]

    def test_nothing_at_all(self, policy):
        result = assess_readiness([not_priced(1)], None, policy)
        assert result.path == ReadinessPath.NOT_POSSIBLE
        assert result.reasons == ["No billed amounts or reference prices available"]
        assert result.comparison.coverage.matched_items == 1


class TestMultipleOnlyWhenReady:
    @pytest.mark.parametrize("lines,reconciliation", [
        ([priced(1, "100", billed="150")], None),
        ([priced(1, "100"), priced(2, "100")], recon(total_charges="400")),
        ([priced(1, "100")], recon(amount_due="20")),
        ([priced(1, "100")], None),
        ([priced(1, "100"), not_found(2), not_found(3)], recon(total_charges="400")),
        ([not_found(1, billed="100")], None),
    ])
    def test_multiple_iff_ready(self, policy, lines, reconciliation):
        result = assess_readiness(lines, reconciliation, policy)
        ready = result.status == ReadinessStatus.READY
        assert result.comparison.can_compute_multiple == ready
        assert (result.comparison.multiple is not None) == ready
