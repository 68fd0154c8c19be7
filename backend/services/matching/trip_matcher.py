"""
Trip-Timesheet Matcher

Links vehicle telemetry trips to the timesheet they were driven for.

Confidence is a weighted sum of three independent signals:
    1. Same employee (trip employee -> user == timesheet user)     0.40
    2. Time overlap (share of the trip inside the timesheet)       0.35
    3. Departure location near the timesheet clock-in location     0.25

The best candidate is accepted at >= 0.30 and written to
trip_records.timesheet_id. "No match" is a normal result, not an error.

Private trips are never scored or written. A trip links to at most one
timesheet; several trips may link to the same timesheet.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from models import Employee, Timesheet, TripRecord
from services.location.distance import LatLng, distance, overlap_minutes
from services.location.postal import approximate_postal_location

logger = logging.getLogger(__name__)

# Trip must overlap the timesheet at least this long to score on time
MIN_OVERLAP_MINUTES = 5
# Departure within this distance of clock-in counts as a location match
GPS_MATCH_RADIUS_METERS = 500
# Below this the best candidate is rejected
MIN_CONFIDENCE = 0.30

# Timesheet dates are local calendar days in this zone
MATCH_TIMEZONE = os.environ.get("MATCH_TIMEZONE", "Europe/Amsterdam")

WEIGHT_SAME_EMPLOYEE = 0.40
WEIGHT_TIME_OVERLAP = 0.35
WEIGHT_GPS_MATCH = 0.25

REASON_NO_TIMESHEETS = "no timesheets found"
REASON_NO_GOOD_MATCH = "no good match found"
REASON_TRIP_NOT_FOUND = "trip not found"
REASON_PRIVATE_TRIP = "private trip"
REASON_SAVE_FAILED = "match could not be saved"


@dataclass
class MatchResult:
    trip_id: str
    timesheet_id: Optional[str]
    confidence: float
    match_reason: str

    def to_dict(self) -> dict:
        return {
            "trip_id": self.trip_id,
            "timesheet_id": self.timesheet_id,
            "confidence": round(self.confidence, 3),
            "match_reason": self.match_reason,
        }


@dataclass
class MatchingStats:
    total_trips: int = 0
    matched: int = 0
    unmatched: int = 0
    kept: int = 0
    failed: int = 0
    results: List[MatchResult] = field(default_factory=list)

    @property
    def match_rate(self) -> float:
        """Percentage of processed trips that were matched, one decimal."""
        if not self.total_trips:
            return 0.0
        return round(self.matched / self.total_trips * 100, 1)


def parse_timesheet_location(location) -> Optional[LatLng]:
    """
    Pull lat/lng out of a timesheet location blob.

    Accepts {"lat", "lng"}, {"latitude", "longitude"}, {"lat", "lon"} and
    {"coords": {...}}; numeric strings are accepted too.
    """
    if not location or not isinstance(location, dict):
        return None

    coords = location.get("coords")
    if not isinstance(coords, dict):
        coords = {}

    lat = _first_present(location.get("lat"), location.get("latitude"), coords.get("lat"))
    lng = _first_present(
        location.get("lng"), location.get("lon"), location.get("longitude"),
        coords.get("lng"), coords.get("lon"),
    )

    try:
        return LatLng(float(lat), float(lng))
    except (TypeError, ValueError):
        return None


def local_date(dt: datetime) -> date:
    """
    Calendar day of a timestamp in MATCH_TIMEZONE.
    Naive timestamps are taken to be local already.
    """
    if dt.tzinfo is None:
        return dt.date()
    return dt.astimezone(ZoneInfo(MATCH_TIMEZONE)).date()


def _first_present(*values):
    for value in values:
        if value is not None:
            return value
    return None


def calculate_match_confidence(
    trip: TripRecord,
    timesheet: Timesheet,
    employee_user_id: Optional[str],
) -> Tuple[float, List[str]]:
    """
    Score one trip/timesheet pair. Returns (confidence in [0, 1], reasons).
    """
    confidence = 0.0
    reasons = []

    # 1. Same employee
    if employee_user_id and timesheet.user_id == employee_user_id:
        confidence += WEIGHT_SAME_EMPLOYEE
        reasons.append("same employee")

    # 2. Time overlap, scored on the share of the trip that is covered
    overlap = overlap_minutes(
        trip.departure_time, trip.arrival_time,
        timesheet.start_time, timesheet.end_time,
    )
    if overlap >= MIN_OVERLAP_MINUTES:
        trip_minutes = (trip.arrival_time - trip.departure_time).total_seconds() / 60.0
        overlap_ratio = min(overlap / trip_minutes, 1.0)
        confidence += overlap_ratio * WEIGHT_TIME_OVERLAP
        reasons.append(f"{round(overlap)} min overlap")

    # 3. Location proximity
    trip_start = approximate_postal_location(trip.departure_postal)
    timesheet_start = parse_timesheet_location(timesheet.location_start)
    if trip_start and timesheet_start:
        meters = distance(trip_start, timesheet_start)
        if meters <= GPS_MATCH_RADIUS_METERS:
            confidence += WEIGHT_GPS_MATCH
            reasons.append(f"location match ({round(meters)}m)")

    return min(max(confidence, 0.0), 1.0), reasons


class TripTimesheetMatcher:
    """
    Matches trips to timesheets for one database session.

    Usage:
        matcher = TripTimesheetMatcher(db)
        stats = matcher.match_trips_to_timesheets(tenant_id)
    """

    def __init__(self, db: Session):
        self.db = db

    # ── Public API ────────────────────────────────────────────────

    def match_single_trip(self, trip_id: str) -> MatchResult:
        """
        Match one trip and persist the link if accepted.
        A failure while saving propagates to the caller.
        """
        trip = self.db.get(TripRecord, trip_id)

        if trip is None:
            return MatchResult(trip_id, None, 0.0, REASON_TRIP_NOT_FOUND)

        if trip.is_private:
            return MatchResult(trip_id, None, 0.0, REASON_PRIVATE_TRIP)

        result = self.find_best_timesheet_match(trip)
        if result.timesheet_id:
            self._save_match(trip.id, result.timesheet_id)
        return result

    def match_trips_to_timesheets(
        self,
        tenant_id: str,
        force_rematch: bool = False,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> MatchingStats:
        """
        Match every eligible trip of a tenant, oldest first.

        Eligible: not private, and not yet matched unless force_rematch.
        Trips are processed one at a time; a failure saving one trip is
        logged and counted, and the batch carries on.

        With force_rematch, an already linked trip that finds no acceptable
        match keeps its old link. It is counted in `kept`, not `unmatched`,
        so matched + kept agrees with get_matching_stats.
        """
        query = self.db.query(TripRecord).filter(
            TripRecord.tenant_id == tenant_id,
            TripRecord.is_private.is_(False),
        )
        if not force_rematch:
            query = query.filter(TripRecord.timesheet_id.is_(None))
        query = _apply_date_window(query, date_from, date_to)

        trips = query.order_by(TripRecord.departure_time, TripRecord.id).all()
        stats = MatchingStats(total_trips=len(trips))

        for trip in trips:
            previous_link = trip.timesheet_id
            result = self.find_best_timesheet_match(trip)

            if result.timesheet_id:
                try:
                    self._save_match(trip.id, result.timesheet_id)
                except SQLAlchemyError as e:
                    self.db.rollback()
                    logger.error(
                        f"Failed to save match for trip {trip.id} -> timesheet {result.timesheet_id}: {e}",
                        exc_info=True,
                    )
                    result = MatchResult(trip.id, None, result.confidence, REASON_SAVE_FAILED)
                    stats.failed += 1

            stats.results.append(result)
            if result.timesheet_id:
                stats.matched += 1
            elif previous_link:
                stats.kept += 1
            else:
                stats.unmatched += 1

        logger.info(
            f"Trip matching for tenant {tenant_id}: {stats.matched}/{stats.total_trips} matched"
            + (f", {stats.kept} kept previous link" if stats.kept else "")
            + (f", {stats.failed} failed to save" if stats.failed else "")
        )
        return stats

    def clear_timesheet_matches(
        self,
        tenant_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> int:
        """Unlink matched trips so they can be matched again. Returns the count."""
        query = self.db.query(TripRecord).filter(
            TripRecord.tenant_id == tenant_id,
            TripRecord.timesheet_id.isnot(None),
        )
        query = _apply_date_window(query, date_from, date_to)

        cleared = query.update(
            {TripRecord.timesheet_id: None, TripRecord.updated_at: func.current_timestamp()},
            synchronize_session=False,
        )
        self.db.commit()

        logger.info(f"Cleared {cleared} trip/timesheet matches for tenant {tenant_id}")
        return cleared

    def get_matching_stats(
        self,
        tenant_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> dict:
        base = _apply_date_window(
            self.db.query(TripRecord).filter(TripRecord.tenant_id == tenant_id),
            date_from, date_to,
        )

        total = base.count()
        matched = base.filter(TripRecord.timesheet_id.isnot(None)).count()
        private = base.filter(TripRecord.is_private.is_(True)).count()

        matchable = total - private
        match_rate = matched / matchable * 100 if matchable > 0 else 0.0

        return {
            "total_trips": total,
            "matched_trips": matched,
            "unmatched_trips": matchable - matched,
            "private_trips": private,
            "match_rate": round(match_rate, 1),
        }

    # ── Matching ──────────────────────────────────────────────────

    def find_best_timesheet_match(self, trip: TripRecord) -> MatchResult:
        """Score all candidate timesheets for a trip. Does not write anything."""
        employee_user_id = self._employee_user_id(trip.employee_id)
        candidates = self._candidate_timesheets(trip, employee_user_id)

        if not candidates:
            return MatchResult(trip.id, None, 0.0, REASON_NO_TIMESHEETS)

        best: Optional[Tuple[Timesheet, float, List[str]]] = None
        for timesheet in candidates:
            confidence, reasons = calculate_match_confidence(trip, timesheet, employee_user_id)
            if best is None or confidence > best[1]:
                best = (timesheet, confidence, reasons)

        timesheet, confidence, reasons = best
        if confidence < MIN_CONFIDENCE:
            return MatchResult(trip.id, None, confidence, REASON_NO_GOOD_MATCH)

        return MatchResult(trip.id, timesheet.id, confidence, ", ".join(reasons))

    # ── Private helpers ───────────────────────────────────────────

    def _employee_user_id(self, employee_id: Optional[str]) -> Optional[str]:
        if not employee_id:
            return None
        employee = self.db.get(Employee, employee_id)
        if employee is None or not employee.user_id:
            logger.debug(f"Employee {employee_id} has no linked user, matching without identity")
            return None
        return employee.user_id

    def _candidate_timesheets(self, trip: TripRecord, employee_user_id: Optional[str]) -> List[Timesheet]:
        """Timesheets of the same tenant on the trip's local departure day."""
        query = self.db.query(Timesheet).filter(
            Timesheet.tenant_id == trip.tenant_id,
            Timesheet.date == local_date(trip.departure_time),
        )
        if employee_user_id:
            query = query.filter(Timesheet.user_id == employee_user_id)
        return query.order_by(Timesheet.start_time, Timesheet.id).all()

    def _save_match(self, trip_id: str, timesheet_id: str) -> None:
        self.db.query(TripRecord).filter(TripRecord.id == trip_id).update(
            {TripRecord.timesheet_id: timesheet_id, TripRecord.updated_at: func.current_timestamp()},
            synchronize_session="fetch",
        )
        self.db.commit()


def _apply_date_window(query, date_from: Optional[datetime], date_to: Optional[datetime]):
    if date_from:
        query = query.filter(TripRecord.departure_time >= date_from)
    if date_to:
        query = query.filter(TripRecord.arrival_time <= date_to)
    return query
