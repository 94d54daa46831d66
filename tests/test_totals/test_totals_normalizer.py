"""
Totals normalizer tests — currency parsing, guardrails, the reducer, and
line-item derivation. No DB required.
"""

from decimal import Decimal

import pytest

from billbench.services.codes.normalizer import validate
from billbench.services.ingestion.base import LineItem
from billbench.services.policy import BenchmarkPolicy
from billbench.services.totals.base import (
    Confidence,
    DetectedTotal,
    TotalCandidate,
    TotalSlot,
    TotalSource,
    parse_currency,
)
from billbench.services.totals.normalizer import (
    check_candidate,
    evidence_shows_zero,
    looks_like_balance,
    looks_like_charges,
    normalize,
    select_best,
)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _cand(slot=TotalSlot.TOTAL_CHARGES, value="$1,000.00", label="Total Charges",
          confidence=Confidence.MEDIUM, evidence="", producer="test"):
    return TotalCandidate(
        slot=slot, raw_value=value, label=label, evidence=evidence,
        confidence=confidence, producer=producer,
    )


def _line(n, billed, units=1, code="99213"):
    return LineItem(
        line_number=n,
        code=validate(code),
        raw_code=code,
        billed_amount=Decimal(billed) if billed is not None else None,
        units=units,
    )


# ── Currency parsing ──────────────────────────────────────────────────────────


class TestParseCurrency:
    @pytest.mark.parametrize("raw,expected", [
        ("$1,234.56", Decimal("1234.56")),
        ("1234", Decimal("1234.00")),
        ("(150.00)", Decimal("-150.00")),
        ("-$42.10", Decimal("-42.10")),
        ("$ 99.9", Decimal("99.90")),
        ("USD 300", Decimal("300.00")),
        (450, Decimal("450.00")),
        (12.5, Decimal("12.50")),
        (Decimal("7.005"), Decimal("7.00")),
    ])
    def test_parses(self, raw, expected):
        assert parse_currency(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "N/A", "null", "--", "abc", "$", True, float("nan"), [1]])
    def test_unparseable_is_not_detected(self, raw):
        assert parse_currency(raw) is None


# ── Label vocabularies ────────────────────────────────────────────────────────


class TestVocabulary:
    @pytest.mark.parametrize("label", [
        "Total Charges", "Billed Amount", "Statement Total", "Grand Total", "Total Billed",
    ])
    def test_charges_labels(self, label):
        assert looks_like_charges(label)
        assert not looks_like_balance(label)

    @pytest.mark.parametrize("label", [
        "Balance Due", "Amount Due", "Total Due", "You Owe", "Patient Responsibility",
    ])
    def test_balance_labels(self, label):
        assert looks_like_balance(label)


# ── Guardrails ────────────────────────────────────────────────────────────────


class TestGuardrails:
    def test_accepts_plain_total_charges(self, policy):
        detected, reason = check_candidate(_cand(), policy)
        assert reason is None
        assert detected.value == Decimal("1000.00")
        assert detected.source == TotalSource.EXTRACTION

    def test_unparseable_rejected(self, policy):
        detected, reason = check_candidate(_cand(value="see attached"), policy)
        assert detected is None
        assert "parsed" in reason

    def test_balance_label_never_becomes_total_charges(self, policy):
        detected, reason = check_candidate(
            _cand(label="Balance Due", confidence=Confidence.HIGH), policy
        )
        assert detected is None
        assert "balance" in reason

    def test_unrecognized_charges_label_rejected(self, policy):
        detected, reason = check_candidate(_cand(label="Subtotal 3"), policy)
        assert detected is None
        assert "does not read like" in reason

    def test_label_guardrail_only_applies_to_total_charges(self, policy):
        cand = _cand(slot=TotalSlot.AMOUNT_DUE, label="Balance Due")
        detected, _ = check_candidate(cand, policy)
        assert detected is not None

    def test_zero_needs_evidence_and_high_confidence(self, policy):
        assert check_candidate(_cand(value="0.00"), policy)[0] is None
        assert check_candidate(
            _cand(value="0.00", confidence=Confidence.HIGH, evidence="Total Charges: pending"),
            policy,
        )[0] is None
        detected, _ = check_candidate(
            _cand(value="0.00", confidence=Confidence.HIGH, evidence="Total Charges $0.00"),
            policy,
        )
        assert detected.value == Decimal("0.00")

    @pytest.mark.parametrize("evidence,shows_zero", [
        ("Total Charges $0.00", True),
        ("Total Charges $0", True),
        ("Balance: 0.00", True),
        ("zero balance", True),
        ("Copay $0.50", False),
        ("Total $10.00", False),
        ("Balance 10.00", False),
        ("Total Charges: pending", False),
    ])
    def test_zero_evidence_pattern(self, evidence, shows_zero):
        assert evidence_shows_zero(evidence) is shows_zero

    def test_fractional_dollar_evidence_does_not_justify_zero(self, policy):
        detected, _ = check_candidate(
            _cand(value="0.00", confidence=Confidence.HIGH, evidence="Copay $0.50"),
            policy,
        )
        assert detected is None

    def test_negative_rejected_outside_payments(self, policy):
        detected, reason = check_candidate(_cand(value="(200.00)"), policy)
        assert detected is None
        assert "negative" in reason

    def test_negative_allowed_for_payments(self, policy):
        cand = _cand(slot=TotalSlot.PAYMENTS_ADJUSTMENTS, value="-200.00", label="Payments")
        detected, _ = check_candidate(cand, policy)
        assert detected.value == Decimal("-200.00")

    def test_tiny_value_needs_high_confidence(self, policy):
        assert check_candidate(_cand(value="0.45"), policy)[0] is None
        detected, _ = check_candidate(_cand(value="0.45", confidence=Confidence.HIGH), policy)
        assert detected.value == Decimal("0.45")

    def test_tiny_floor_is_policy(self):
        strict = BenchmarkPolicy(tiny_total_floor=Decimal("10.00"))
        assert check_candidate(_cand(value="5.00"), strict)[0] is None


class TestSelectBest:
    def _total(self, value, confidence):
        return DetectedTotal(
            value=Decimal(value), confidence=confidence, label="x", evidence="",
            source=TotalSource.EXTRACTION,
        )

    def test_highest_confidence_wins(self):
        best = select_best([
            self._total("1", Confidence.HIGH), self._total("2", Confidence.MEDIUM),
        ])
        assert best.value == Decimal("1")

    def test_later_wins_tie(self):
        best = select_best([
            self._total("1", Confidence.MEDIUM), self._total("2", Confidence.MEDIUM),
        ])
        assert best.value == Decimal("2")

    def test_empty(self):
        assert select_best([]) is None


# ── normalize() ───────────────────────────────────────────────────────────────


class TestNormalize:
    def test_rejections_recorded_as_notes(self, policy):
        totals = normalize([_cand(label="Amount Due")], [], policy)
        assert totals.total_charges is None
        assert len(totals.rejections) == 1
        assert any("rejected" in note for note in totals.notes)

    def test_balance_due_only(self, policy):
        cand = _cand(slot=TotalSlot.PATIENT_RESPONSIBILITY, value="$450", label="Balance Due")
        totals = normalize([cand], [], policy)
        assert totals.patient_responsibility.value == Decimal("450.00")
        assert totals.total_charges is None

    def test_never_returns_unwarranted_zero(self, policy):
        cands = [
            _cand(slot=slot, value="$0.00", label="Total Charges")
            for slot in TotalSlot
        ]
        totals = normalize(cands, [], policy)
        assert not totals.has_any_total

    def test_derives_total_from_two_lines_low(self, policy):
        totals = normalize([], [_line(1, "100.00"), _line(2, "50.00", units=2)], policy)
        assert totals.total_charges.value == Decimal("200.00")
        assert totals.total_charges.source == TotalSource.DERIVED_FROM_LINE_ITEMS
        assert totals.total_charges.confidence == Confidence.LOW
        assert totals.line_items_sum == Decimal("200.00")

    def test_derives_medium_from_three_lines(self, policy):
        lines = [_line(1, "100"), _line(2, "100"), _line(3, "100")]
        totals = normalize([], lines, policy)
        assert totals.total_charges.confidence == Confidence.MEDIUM

    def test_single_line_never_derives(self, policy):
        totals = normalize([], [_line(1, "300.00")], policy)
        assert totals.total_charges is None
        assert any("Only 1 line item" in note for note in totals.notes)

    def test_lines_without_billed_amount_do_not_count(self, policy):
        totals = normalize([], [_line(1, "300.00"), _line(2, None), _line(3, "0")], policy)
        assert totals.total_charges is None

    def test_low_confidence_document_total_replaced_by_derived(self, policy):
        cand = _cand(value="500", confidence=Confidence.LOW)
        lines = [_line(1, "100"), _line(2, "150")]
        totals = normalize([cand], lines, policy)
        assert totals.total_charges.source == TotalSource.DERIVED_FROM_LINE_ITEMS
        assert totals.total_charges.value == Decimal("250.00")

    def test_high_confidence_document_total_kept_and_cross_checked(self, policy):
        cand = _cand(value="400", confidence=Confidence.HIGH)
        lines = [_line(1, "100"), _line(2, "150")]
        totals = normalize([cand], lines, policy)
        assert totals.total_charges.value == Decimal("400.00")
        assert totals.total_charges.source == TotalSource.EXTRACTION
        assert any("apart" in note for note in totals.notes)

    def test_cross_check_within_tolerance_is_silent(self, policy):
        cand = _cand(value="252", confidence=Confidence.HIGH)
        totals = normalize([cand], [_line(1, "100"), _line(2, "150")], policy)
        assert not any("apart" in note for note in totals.notes)

    def test_cross_check_measured_against_line_sum(self, policy):
        # 3 off a 97.00 line sum is 3.1%, over tolerance; 3 off 100.00 would not be
        cand = _cand(value="100", confidence=Confidence.HIGH)
        totals = normalize([cand], [_line(1, "50"), _line(2, "47")], policy)
        assert totals.total_charges.value == Decimal("100.00")
        assert any("3.1% apart" in note for note in totals.notes)

    def test_total_far_below_line_sum_dropped(self, policy):
        cand = _cand(value="100", confidence=Confidence.HIGH)
        lines = [_line(1, "500"), _line(2, "500")]
        totals = normalize([cand], lines, policy)
        assert totals.total_charges.source == TotalSource.DERIVED_FROM_LINE_ITEMS
        assert totals.total_charges.value == Decimal("1000.00")
        assert any("far below" in note for note in totals.notes)
