"""
Bill analysis API route.

  POST /analyses → benchmark one bill's extracted fields against the
                   reference fee schedule

Stateless: nothing is persisted. The database session is used read-only for
fee schedule and locality lookups.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from billbench.database import get_db
from billbench.schemas.analysis import AnalysisCreate, BillAnalysisResponse
from billbench.schemas.common import ErrorResponse
from billbench.services.ingestion.base import AdapterError
from billbench.services.reference.store import SqlFeeScheduleStore
from billbench.workers.analysis_pipeline import analyze_bill

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyses", tags=["analyses"])


@router.post(
    "",
    response_model=BillAnalysisResponse,
    responses={status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse}},
)
def create_analysis(
    payload: AnalysisCreate,
    db: Session = Depends(get_db),
) -> BillAnalysisResponse:
    """
    Run the benchmark engine over one bill.

    Always answers with a best-effort result: bad lines and missing totals
    show up as per-line outcomes and readiness reasons, not as errors.
    """
    store = SqlFeeScheduleStore(db)
    try:
        analysis = analyze_bill(payload.to_request(), store)
    except AdapterError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    return BillAnalysisResponse.from_analysis(analysis)
