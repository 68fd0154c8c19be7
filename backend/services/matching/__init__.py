"""
Matching Services Module

Reconciles vehicle telemetry trips with employee timesheets.

Usage:
    from services.matching.trip_matcher import TripTimesheetMatcher
"""
