"""
Data models for the alerting core.

All models are Pydantic v2 models. Readings and violations are frozen and
never stored; alerts are persistent and are updated by copy.

Modules:
    readings: WaterParameter and Reading
    alerts: Severity, status, Violation, Alert and store/query results
"""

from aquaguard.models.alerts import (
    Alert,
    AlertFilters,
    AlertMutation,
    AlertOutcome,
    AlertSeverity,
    AlertStatistics,
    AlertStatus,
    CooldownEntry,
    LifecycleAction,
    StatusTransition,
    Violation,
)
from aquaguard.models.readings import Reading, WaterParameter

__all__ = [
    # Readings
    "Reading",
    "WaterParameter",
    # Alerts
    "Alert",
    "AlertFilters",
    "AlertMutation",
    "AlertOutcome",
    "AlertSeverity",
    "AlertStatistics",
    "AlertStatus",
    "CooldownEntry",
    "LifecycleAction",
    "StatusTransition",
    "Violation",
]
