"""
Integration tests for the full bill analysis pipeline.

These exercise adapt → price → reconcile → readiness against the seeded
SQLite reference store from conftest.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from billbench.services.analysis import LineOutcome, PriceTier
from billbench.services.ingestion.base import AdapterError
from billbench.services.readiness.gate import ReadinessPath, ReadinessStatus
from billbench.services.reference.geography import LocalityConfidence
from billbench.services.reference.store import SqlFeeScheduleStore
from billbench.services.totals.reconciler import ComparisonTotalType
from billbench.workers.analysis_pipeline import (
    AnalysisRequest,
    CareSetting,
    analyze_bill,
)


def _run(store, policy, extraction, **kwargs):
    return analyze_bill(AnalysisRequest(raw_extraction=extraction, **kwargs), store, policy)


# ── Walkthrough scenarios ─────────────────────────────────────────────────────


class TestScenarios:
    def test_single_office_visit_in_facility(self, store, policy):
        analysis = _run(
            store, policy,
            {"lineItems": [{"code": "99213", "billedAmount": "300.00", "units": 1}]},
            service_year=2026, care_setting=CareSetting.FACILITY,
        )
        line = analysis.lines[0]
        assert line.outcome == LineOutcome.PRICED
        assert line.item.is_facility is True
        assert line.reference_fee == Decimal("92.50")
        assert line.multiple == Decimal("3.24")
        assert line.price_tier == PriceTier.VERY_HIGH

        assert analysis.readiness.status == ReadinessStatus.READY
        assert analysis.readiness.path == ReadinessPath.MATCHED_ITEMS
        assert analysis.readiness.comparison.multiple == Decimal("3.24")
        comparison = analysis.reconciliation.comparison_total
        assert comparison.total_type == ComparisonTotalType.MATCHED_LINE_ITEMS

    def test_billing_word_rejected_not_priced(self, store, policy):
        analysis = _run(store, policy, {"lineItems": [
            {"code": "LEVEL 4", "billedAmount": 200},
            {"code": "99214", "billedAmount": 250},
        ]})
        assert [line.outcome for line in analysis.lines] == [
            LineOutcome.INVALID_CODE_FORMAT, LineOutcome.PRICED,
        ]
        assert analysis.rejected_tokens[0][0] == "LEVEL 4"
        assert analysis.lines[0].fee is None

        readiness = analysis.readiness
        assert readiness.path == ReadinessPath.MATCHED_ITEMS
        assert readiness.comparison.multiple == Decimal("1.39")
        assert readiness.comparison.coverage.percent == 50
        assert "1 of 2" in readiness.comparison.scope_warnings[0]

    def test_balance_only_bill(self, store, policy):
        analysis = _run(store, policy, {
            "documentText": "MyChart - your balance - make a payment",
            "amountDue": "$450.00",
            "lineItems": [{"code": "99213"}],
        })
        assert analysis.reconciliation.totals.total_charges is None
        assert analysis.reconciliation.comparison_total.limited_comparability
        assert analysis.readiness.status == ReadinessStatus.LIMITED_DATA
        assert analysis.readiness.path == ReadinessPath.BALANCE_ONLY
        assert not analysis.readiness.comparison.can_compute_multiple
        assert analysis.readiness.comparison.multiple is None

    def test_year_fallback(self, store, policy):
        analysis = _run(store, policy, {"lineItems": [
            {"code": "99214", "billedAmount": 360, "dateOfService": "2024-03-01"},
        ]})
        fee = analysis.lines[0].fee
        assert fee.year_requested == 2024
        assert fee.year_used == 2026
        assert fee.used_year_fallback
        assert "2024" in fee.year_fallback_reason and "2026" in fee.year_fallback_reason
        assert analysis.lines[0].multiple == Decimal("2.00")
        assert analysis.lines[0].price_tier == PriceTier.FAIR

    def test_low_coverage_with_document_total(self, store, policy):
        analysis = _run(store, policy, {
            "totalCharges": "1,000.00",
            "lineItems": [
                {"code": "99213"}, {"code": "99214"}, {"code": "27447"},
                {"code": "12345"}, {"code": "G9999"},
            ],
        })
        assert [line.outcome for line in analysis.lines].count(LineOutcome.PRICED) == 3
        assert [line.outcome for line in analysis.lines].count(LineOutcome.CODE_NOT_FOUND) == 2
        readiness = analysis.readiness
        assert readiness.status == ReadinessStatus.LIMITED_DATA
        assert readiness.path == ReadinessPath.LOW_COVERAGE
        assert readiness.comparison.coverage.percent == 60
        assert readiness.comparison.numerator_value == Decimal("1000.00")


# ── Facility context ──────────────────────────────────────────────────────────


class TestFacilityContext:
    def test_emergency_visit_inferred_facility(self, store, policy):
        analysis = _run(
            store, policy, {"lineItems": [{"code": "99283", "billedAmount": 210}]},
            service_year=2025,
        )
        line = analysis.lines[0]
        assert line.item.is_facility is True
        assert line.reference_fee == Decimal("70.00")
        assert line.fee.year_used == 2025

    def test_explicit_office_setting_wins(self, store, policy):
        analysis = _run(
            store, policy, {"lineItems": [{"code": "99283", "billedAmount": 210}]},
            service_year=2025, care_setting=CareSetting.OFFICE,
        )
        assert analysis.lines[0].item.is_facility is False

    def test_upstream_flag_kept(self, store, policy):
        analysis = _run(
            store, policy,
            {"lineItems": [{"code": "99213", "billedAmount": 300, "isFacility": False}]},
            care_setting=CareSetting.FACILITY,
        )
        assert analysis.lines[0].item.is_facility is False
        assert analysis.lines[0].reference_fee == Decimal("130.00")

    def test_date_in_code_field_does_not_make_a_facility_bill(self, store, policy):
        analysis = _run(store, policy, {"lineItems": [
            {"code": "2024-03-01", "billedAmount": 50},
            {"code": "99213", "billedAmount": 300},
        ]})
        assert analysis.lines[0].outcome == LineOutcome.INVALID_CODE_FORMAT
        assert analysis.lines[1].item.is_facility is not True
        assert analysis.lines[1].reference_fee == Decimal("130.00")

    def test_revenue_codes_make_a_facility_bill(self, store, policy):
        analysis = _run(store, policy, {"lineItems": [
            {"revCode": "0450", "charges": 900},
            {"code": "99213", "charges": 300},
        ]})
        assert analysis.lines[0].outcome == LineOutcome.CODE_NOT_FOUND
        assert analysis.lines[1].item.is_facility is True
        assert analysis.lines[1].reference_fee == Decimal("92.50")


# ── Geography, ordering and failure handling ──────────────────────────────────


class TestPipelineBehaviour:
    def test_locality_adjusted(self, store, policy):
        analysis = _run(
            store, policy, {"lineItems": [{"code": "99213", "billedAmount": 300}]},
            zip_code="10001", care_setting=CareSetting.FACILITY,
        )
        assert analysis.geography.confidence == LocalityConfidence.LOCALLY_ADJUSTED
        assert analysis.geography.label == "Manhattan"
        # (1.30×1.100 + 0.55×1.200 + 0.10×1.500) × 34.6062
        assert analysis.lines[0].reference_fee == Decimal("77.52")
        assert analysis.lines[0].multiple == Decimal("3.87")

    def test_input_order_preserved(self, store, policy):
        analysis = _run(store, policy, {"lineItems": [
            {"code": "99214"}, {"code": "LEVEL 4"}, {"code": "12345"}, {"code": "99213"},
        ]})
        assert [line.item.line_number for line in analysis.lines] == [1, 2, 3, 4]
        assert [line.outcome for line in analysis.lines] == [
            LineOutcome.PRICED,
            LineOutcome.INVALID_CODE_FORMAT,
            LineOutcome.CODE_NOT_FOUND,
            LineOutcome.PRICED,
        ]
        assert len(analysis.priced_lines) == 2

    def test_store_outage_marks_lines_unavailable(self, policy):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
        analysis = _run(SqlFeeScheduleStore(session), policy, {"lineItems": [
            {"code": "99213", "billedAmount": 300}, {"code": "LEVEL 4"},
        ]})
        assert [line.outcome for line in analysis.lines] == [
            LineOutcome.DATA_UNAVAILABLE, LineOutcome.INVALID_CODE_FORMAT,
        ]
        assert analysis.readiness.status == ReadinessStatus.NOT_POSSIBLE

    def test_code_after_billing_word_is_priced(self, store, policy):
        analysis = _run(
            store, policy, {"lineItems": [{"code": "VISIT 99213", "billedAmount": 300}]},
            care_setting=CareSetting.FACILITY,
        )
        line = analysis.lines[0]
        assert line.outcome == LineOutcome.PRICED
        assert line.item.code.code == "99213"
        assert line.reference_fee == Decimal("92.50")
        assert analysis.readiness.status == ReadinessStatus.READY

    def test_adapter_warnings_surface(self, store, policy):
        analysis = _run(store, policy, {"lineItems": [{"code": "99213"}, "junk"]})
        assert any("not a record" in w for w in analysis.warnings)

    def test_empty_payload(self, store, policy):
        analysis = _run(store, policy, {})
        assert analysis.lines == []
        assert analysis.readiness.path == ReadinessPath.NOT_POSSIBLE

    @pytest.mark.parametrize("payload", [["99213"], "Total Charges $100", None])
    def test_non_mapping_payload_raises(self, store, policy, payload):
        with pytest.raises(AdapterError):
            _run(store, policy, payload)
