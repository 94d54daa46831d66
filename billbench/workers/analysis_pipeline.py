"""
Bill Analysis Pipeline.

Pipeline steps:
  1. Adapt the extraction payload → LineItems (input order kept)
  2. Classify the document
  3. Resolve geography once for the whole bill
  4. For each LineItem:
     a. Invalid code token        → INVALID_CODE_FORMAT (kept, not priced)
     b. Infer facility context when upstream gave none
     c. Resolve the reference fee → PRICED / EXISTS_NOT_PRICED / CODE_NOT_FOUND
     d. Store unreachable         → DATA_UNAVAILABLE
  5. Reconcile totals
  6. Run the readiness gate

Every call builds its own ReferenceFeeResolver, so the memoised latest
fee-schedule year never outlives one analysis.

Nothing here raises for bad bill content: a bad line degrades that line, a
missing total degrades readiness. Only a payload that is not a mapping at all
(AdapterError) propagates.
"""

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from billbench.services.analysis import (
    LineAnalysis,
    LineOutcome,
    analyze_line,
    unpriced_line,
)
from billbench.services.codes.normalizer import CodeSystem, ServiceCode
from billbench.services.ingestion.adapter import document_text, extract_line_items
from billbench.services.ingestion.base import AdapterError, LineItem
from billbench.services.policy import BenchmarkPolicy
from billbench.services.readiness.gate import ReadinessResult, assess_readiness
from billbench.services.reference.geography import Geography, GeographyResolver
from billbench.services.reference.resolver import ReferenceFeeResolver
from billbench.services.reference.store import FeeScheduleStore, StoreUnavailableError
from billbench.services.totals.document_classifier import (
    DocumentClassification,
    DocumentType,
    classify_document,
)
from billbench.services.totals.reconciler import TotalsReconciliation, reconcile

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

EMERGENCY_VISIT_CODES = frozenset({"99281", "99282", "99283", "99284", "99285"})


class CareSetting(str, Enum):
    OFFICE = "office"
    FACILITY = "facility"


@dataclass
class AnalysisRequest:
    raw_extraction: Mapping[str, Any]
    zip_code: Optional[str] = None
    state: Optional[str] = None
    service_year: Optional[int] = None          # used when a line carries no date
    care_setting: Optional[CareSetting] = None  # overrides inference when given


@dataclass
class BillAnalysis:
    lines: list[LineAnalysis]
    geography: Geography
    reconciliation: TotalsReconciliation
    readiness: ReadinessResult
    rejected_tokens: list[tuple[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def document_type(self) -> DocumentType:
        return self.reconciliation.document_type

    @property
    def priced_lines(self) -> list[LineAnalysis]:
        return [line for line in self.lines if line.is_priced]


# ── Public entry point ─────────────────────────────────────────────────────────


def analyze_bill(
    request: AnalysisRequest,
    store: FeeScheduleStore,
    policy: Optional[BenchmarkPolicy] = None,
) -> BillAnalysis:
    """
    Run the full benchmark analysis for one bill.

    Args:
        request: Extraction payload plus geography and care-setting hints.
        store:   Read-only fee schedule / locality store.
        policy:  Thresholds; defaults to the configured policy.

    Raises:
        AdapterError: the payload is not a mapping.
    """
    policy = policy or BenchmarkPolicy.from_settings()
    raw = request.raw_extraction
    if not isinstance(raw, Mapping):
        raise AdapterError(f"Extraction payload must be a mapping, got {type(raw).__name__}")

    adapted = extract_line_items(raw)
    items = adapted.items
    warnings = list(adapted.warnings)
    logger.info("Starting bill analysis: %d line items", len(items))

    document = classify_document(document_text(raw))
    geography = GeographyResolver(store).resolve(request.zip_code, request.state)
    warnings.extend(geography.notes)

    resolver = ReferenceFeeResolver(store, policy)
    facility_bill = _is_facility_bill(items, document, request.care_setting)

    lines: list[LineAnalysis] = []
    rejected: list[tuple[str, str]] = []
    for item in items:
        if not item.has_valid_code:
            rejected.append((item.code.raw_token, item.code.reason))
            lines.append(unpriced_line(item, LineOutcome.INVALID_CODE_FORMAT, item.code.reason))
            continue
        if item.is_facility is None:
            inferred = facility_bill or (
                request.care_setting is None and _is_facility_code(item.code)
            )
            item = dataclasses.replace(item, is_facility=inferred)
        lines.append(_price_line(item, resolver, geography, request.service_year, policy))

    priced = [line for line in lines if line.is_priced]
    priced_billed = sum(
        (line.billed_total for line in priced if line.billed_total is not None), ZERO
    )
    reconciliation = reconcile(
        raw,
        [line.item for line in lines],
        priced_billed_total=priced_billed,
        priced_count=len(priced),
        policy=policy,
        document=document,
    )
    readiness = assess_readiness(lines, reconciliation, policy)

    summary = {
        "lines": len(lines),
        "priced": len(priced),
        "rejected": len(rejected),
        "document_type": document.document_type.value,
        "readiness": readiness.status.value,
        "path": readiness.path.value,
    }
    logger.info("Bill analysis complete: %s", summary)
    return BillAnalysis(
        lines=lines,
        geography=geography,
        reconciliation=reconciliation,
        readiness=readiness,
        rejected_tokens=rejected,
        warnings=warnings,
    )


# ── Line pricing ───────────────────────────────────────────────────────────────


def _price_line(
    item: LineItem,
    resolver: ReferenceFeeResolver,
    geography: Geography,
    default_year: Optional[int],
    policy: BenchmarkPolicy,
) -> LineAnalysis:
    code: ServiceCode = item.code
    year = item.service_year or default_year
    try:
        fee = resolver.resolve(
            code.code,
            year,
            code.modifier,
            geography,
            is_facility=bool(item.is_facility),
            units=item.units,
        )
    except StoreUnavailableError as exc:
        logger.warning("Line %d (%s): fee schedule unavailable: %s", item.line_number, code.code, exc)
        return unpriced_line(
            item, LineOutcome.DATA_UNAVAILABLE,
            "Reference data could not be reached; this line was not priced",
        )
    return analyze_line(item, fee, policy)


# ── Facility context ───────────────────────────────────────────────────────────


def _is_facility_bill(
    items: list[LineItem],
    document: DocumentClassification,
    care_setting: Optional[CareSetting],
) -> bool:
    if care_setting is not None:
        return care_setting == CareSetting.FACILITY
    if document.document_type == DocumentType.HOSPITAL_SUMMARY:
        return True
    return any(
        isinstance(item.code, ServiceCode) and item.code.system == CodeSystem.REVENUE
        for item in items
    )


def _is_facility_code(code: ServiceCode) -> bool:
    return code.code in EMERGENCY_VISIT_CODES
