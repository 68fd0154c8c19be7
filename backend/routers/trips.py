"""
Trip Matching Router

Links fleet trips to employee timesheets.

Endpoints:
    GET    /api/trips/match-timesheets    - Matching statistics
    POST   /api/trips/match-timesheets    - Match all eligible trips
    DELETE /api/trips/match-timesheets    - Unlink matched trips
    POST   /api/trips/{trip_id}/match     - Match one trip

Tenant comes from the X-Tenant-ID header set by the auth proxy.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from services.matching.trip_matcher import TripTimesheetMatcher

logger = logging.getLogger(__name__)

router = APIRouter()

# Detailed results returned by a batch run
MAX_DETAIL_RESULTS = 20


def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None)) -> str:
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail="X-Tenant-ID header required")
    return x_tenant_id


# =============================================================================
# SCHEMAS
# =============================================================================

class MatchRequest(BaseModel):
    force_rematch: bool = False
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class MatchResultOut(BaseModel):
    trip_id: str
    timesheet_id: Optional[str] = None
    confidence: float
    match_reason: str


class MatchBatchResponse(BaseModel):
    success: bool
    total_trips: int
    matched: int
    unmatched: int
    kept: int
    failed: int
    match_rate: float
    details: List[MatchResultOut]


class MatchingStatsResponse(BaseModel):
    total_trips: int
    matched_trips: int
    unmatched_trips: int
    private_trips: int
    match_rate: float


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/match-timesheets", response_model=MatchingStatsResponse)
async def get_matching_stats(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    matcher = TripTimesheetMatcher(db)
    return matcher.get_matching_stats(tenant_id, date_from=date_from, date_to=date_to)


@router.post("/match-timesheets", response_model=MatchBatchResponse)
async def match_trips(
    request: MatchRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    """Match all unmatched (or, with force_rematch, all) non-private trips."""
    matcher = TripTimesheetMatcher(db)
    stats = matcher.match_trips_to_timesheets(
        tenant_id,
        force_rematch=request.force_rematch,
        date_from=request.date_from,
        date_to=request.date_to,
    )

    return MatchBatchResponse(
        success=True,
        total_trips=stats.total_trips,
        matched=stats.matched,
        unmatched=stats.unmatched,
        kept=stats.kept,
        failed=stats.failed,
        match_rate=stats.match_rate,
        details=[r.to_dict() for r in stats.results[:MAX_DETAIL_RESULTS]],
    )


@router.delete("/match-timesheets")
async def clear_matches(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    matcher = TripTimesheetMatcher(db)
    cleared = matcher.clear_timesheet_matches(tenant_id, date_from=date_from, date_to=date_to)
    return {"success": True, "cleared": cleared}


@router.post("/{trip_id}/match", response_model=MatchResultOut)
async def match_single_trip(
    trip_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    from models import TripRecord

    trip = db.get(TripRecord, trip_id)
    if trip is None or trip.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="Trip not found")

    result = TripTimesheetMatcher(db).match_single_trip(trip_id)
    return result.to_dict()
