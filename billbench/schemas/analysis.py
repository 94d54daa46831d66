"""
Bill analysis schemas — request and response shapes for POST /analyses.

Money is Decimal throughout and serializes as a string. A figure that was not
detected is null, never 0.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import Field, field_validator

from billbench.schemas.common import BaseSchema
from billbench.services.analysis import LineAnalysis
from billbench.services.codes.normalizer import ServiceCode
from billbench.workers.analysis_pipeline import AnalysisRequest, BillAnalysis, CareSetting


# ── Request ──────────────────────────────────────────────────────────────────


class AnalysisCreate(BaseSchema):
    """Extraction output for one bill, plus where and when care happened."""

    extraction: dict[str, Any]
    zip_code: Optional[str] = Field(None, max_length=10)
    state: Optional[str] = Field(None, max_length=2)
    service_year: Optional[int] = Field(None, ge=1990, le=2100)
    care_setting: Optional[CareSetting] = None

    @field_validator("state")
    @classmethod
    def upper_state(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v

    def to_request(self) -> AnalysisRequest:
        return AnalysisRequest(
            raw_extraction=self.extraction,
            zip_code=self.zip_code,
            state=self.state,
            service_year=self.service_year,
            care_setting=self.care_setting,
        )


# ── Line results ─────────────────────────────────────────────────────────────


class LineResultView(BaseSchema):
    line_number: int
    raw_code: Optional[str] = None
    code: Optional[str] = None
    modifier: Optional[str] = None
    code_system: str
    description: Optional[str] = None
    billed_amount: Optional[Decimal] = None
    units: int
    service_date: Optional[date] = None
    is_facility: Optional[bool] = None
    outcome: str
    match_status: Optional[str] = None
    year_requested: Optional[int] = None
    year_used: Optional[int] = None
    used_year_fallback: bool = False
    year_fallback_reason: Optional[str] = None
    used_modifier_fallback: bool = False
    modifier_fallback_reason: Optional[str] = None
    not_priced_reason: Optional[str] = None
    locality_confidence: Optional[str] = None
    reference_fee_per_unit: Optional[Decimal] = None
    reference_fee: Optional[Decimal] = None
    bundling_flag: bool = False
    multiple: Optional[Decimal] = None
    price_tier: str
    notes: list[str] = []

    @classmethod
    def from_line(cls, line: LineAnalysis) -> "LineResultView":
        item = line.item
        code = item.code if isinstance(item.code, ServiceCode) else None
        fee = line.fee
        return cls(
            line_number=item.line_number,
            raw_code=item.raw_code,
            code=code.code if code else None,
            modifier=code.modifier if code else None,
            code_system=item.code.system.value,
            description=item.description or (fee.description if fee else None),
            billed_amount=item.billed_amount,
            units=item.units,
            service_date=item.service_date,
            is_facility=item.is_facility,
            outcome=line.outcome.value,
            match_status=fee.match_status.value if fee else None,
            year_requested=fee.year_requested if fee else None,
            year_used=fee.year_used if fee else None,
            used_year_fallback=fee.used_year_fallback if fee else False,
            year_fallback_reason=fee.year_fallback_reason if fee else None,
            used_modifier_fallback=fee.used_modifier_fallback if fee else False,
            modifier_fallback_reason=fee.modifier_fallback_reason if fee else None,
            not_priced_reason=(
                fee.not_priced_reason.value if fee and fee.not_priced_reason else None
            ),
            locality_confidence=fee.locality_confidence.value if fee else None,
            reference_fee_per_unit=fee.fee_per_unit if fee else None,
            reference_fee=line.reference_fee,
            bundling_flag=fee.bundling_flag if fee else False,
            multiple=line.multiple,
            price_tier=line.price_tier.value,
            notes=list(line.notes),
        )


class RejectedTokenView(BaseSchema):
    token: str
    reason: str


# ── Totals ───────────────────────────────────────────────────────────────────


class DetectedTotalView(BaseSchema):
    value: Decimal
    confidence: str
    label: str
    evidence: str
    source: str


class TotalsView(BaseSchema):
    total_charges: Optional[DetectedTotalView] = None
    allowed_amount: Optional[DetectedTotalView] = None
    patient_responsibility: Optional[DetectedTotalView] = None
    amount_due: Optional[DetectedTotalView] = None
    insurance_paid: Optional[DetectedTotalView] = None
    payments_adjustments: Optional[DetectedTotalView] = None
    line_items_sum: Optional[Decimal] = None
    notes: list[str] = []


class ComparisonTotalView(BaseSchema):
    total_type: str
    value: Decimal
    label: str
    confidence: str
    explanation: str
    limited_comparability: bool
    scope_warnings: list[str] = []


class ReconciliationView(BaseSchema):
    document_type: str
    totals: TotalsView
    comparison_total: Optional[ComparisonTotalView] = None
    status: str
    status_note: Optional[str] = None
    notes: list[str] = []


# ── Readiness ────────────────────────────────────────────────────────────────


class CoverageView(BaseSchema):
    extracted_items: int
    matched_items: int
    priced_items: int
    percent: int


class ComparisonModelView(BaseSchema):
    numerator_type: str
    numerator_value: Optional[Decimal] = None
    numerator_label: str
    denominator_type: str
    denominator_value: Optional[Decimal] = None
    denominator_label: str
    can_compute_multiple: bool
    multiple: Optional[Decimal] = None
    coverage: CoverageView
    scope_warnings: list[str] = []
    explanation: str


class ReadinessView(BaseSchema):
    status: str
    path: str
    reasons: list[str] = []
    comparison: ComparisonModelView


class GeographyView(BaseSchema):
    confidence: str
    label: str
    zip_code: Optional[str] = None
    state: Optional[str] = None


# ── Aggregate ────────────────────────────────────────────────────────────────


class BillAnalysisResponse(BaseSchema):
    """Everything the presentation layer needs for one bill."""

    document_type: str
    geography: GeographyView
    lines: list[LineResultView]
    rejected_tokens: list[RejectedTokenView] = []
    reconciliation: ReconciliationView
    readiness: ReadinessView
    warnings: list[str] = []

    @classmethod
    def from_analysis(cls, analysis: BillAnalysis) -> "BillAnalysisResponse":
        return cls(
            document_type=analysis.document_type.value,
            geography=GeographyView.model_validate(analysis.geography),
            lines=[LineResultView.from_line(line) for line in analysis.lines],
            rejected_tokens=[
                RejectedTokenView(token=token, reason=reason)
                for token, reason in analysis.rejected_tokens
            ],
            reconciliation=ReconciliationView.model_validate(analysis.reconciliation),
            readiness=ReadinessView.model_validate(analysis.readiness),
            warnings=analysis.warnings,
        )
