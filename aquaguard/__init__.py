"""
AquaGuard water-quality alerting core.

Evaluates streamed IoT water-quality telemetry (pH, turbidity, TDS)
against safety thresholds and manages the lifecycle of the resulting
alerts: creation, cooldown-based suppression, escalation,
acknowledgment, resolution, and notification dispatch.

This package provides:
- Data models for readings, violations, and alerts
- Threshold evaluation and cooldown tracking
- The alert lifecycle manager and its store contract
- Storage clients for PostgreSQL and Redis
- Notification dispatch to console and webhook channels
"""

__version__ = "0.1.0"
