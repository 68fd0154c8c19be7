"""
SQLAlchemy models for Fleetsheet

Only the tables the trip/timesheet reconciliation layer touches.
Trips are written by the telemetry sync; timesheets by the timesheet UI.
This layer only ever updates trip_records.timesheet_id.
"""

import uuid

from sqlalchemy import Column, String, Boolean, Date, Float, ForeignKey, Index, JSON
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.sql import func

from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Employee(Base):
    """Employee within a tenant, optionally linked to a login user"""
    __tablename__ = "employees"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36))        # NULL = no app account
    name = Column(String(100))

    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())


class Timesheet(Base):
    """Worked hours entered by an employee (read-only here)"""
    __tablename__ = "timesheets"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False)
    user_id = Column(String(36), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(TIMESTAMP(timezone=True), nullable=False)
    end_time = Column(TIMESTAMP(timezone=True), nullable=False)

    # GPS captured at clock-in / clock-out, shape varies by client:
    # {"lat", "lng"} | {"latitude", "longitude"} | {"coords": {"lat", "lon"}}
    location_start = Column(JSON)
    location_end = Column(JSON)

    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())

    __table_args__ = (
        Index("ix_timesheets_tenant_date", "tenant_id", "date"),
    )


class TripRecord(Base):
    """Vehicle telemetry trip, linked to at most one timesheet"""
    __tablename__ = "trip_records"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False)
    employee_id = Column(String(36), ForeignKey("employees.id"))
    vehicle_id = Column(String(50))

    departure_time = Column(TIMESTAMP(timezone=True), nullable=False)
    arrival_time = Column(TIMESTAMP(timezone=True), nullable=False)
    departure_postal = Column(String(10))
    arrival_postal = Column(String(10))
    departure_address = Column(String(255))
    arrival_address = Column(String(255))
    distance_km = Column(Float)

    timesheet_id = Column(String(36), ForeignKey("timesheets.id"))
    is_private = Column(Boolean, nullable=False, default=False)

    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())
    updated_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())

    __table_args__ = (
        Index("ix_trip_records_tenant_departure", "tenant_id", "departure_time"),
    )

    @property
    def is_matched(self):
        return self.timesheet_id is not None
