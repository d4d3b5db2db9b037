"""
Threshold evaluator for water-quality readings.

This module provides the ThresholdEvaluator class which compares each
parameter present in a reading against the threshold catalog and emits
the resulting violations.

Key Features:
    - Band semantics for pH (outside the band is a violation)
    - Ceiling semantics for turbidity and TDS (strictly above is a violation)
    - At most one violation per parameter per reading (Critical wins)
    - Missing parameter values are skipped
    - Stateless and side-effect free

Example:
    >>> evaluator = ThresholdEvaluator(ThresholdCatalog())
    >>> violations = evaluator.evaluate(reading)
    >>> for v in violations:
    ...     print(v.severity, v.message)
"""

from typing import List, Optional, Tuple

import structlog

from aquaguard.config.models import CeilingThresholds, PhThresholds, ThresholdCatalog
from aquaguard.models.alerts import AlertSeverity, Violation
from aquaguard.models.readings import Reading, WaterParameter

logger = structlog.get_logger(__name__)

OUTSIDE_SAFE_RANGE = "outside safe range"
EXCEEDS_THRESHOLD = "exceeds threshold"


def build_alert_message(
    severity: AlertSeverity,
    parameter: WaterParameter,
    value: float,
    threshold: float,
) -> str:
    """
    Build a human-readable violation message.

    Values are rendered to two decimal places; thresholds are rendered as
    configured.

    Args:
        severity: Violation severity.
        parameter: Parameter that breached its threshold.
        value: Observed value.
        threshold: Boundary that was crossed.

    Returns:
        str: Formatted message.

    Example:
        >>> build_alert_message(AlertSeverity.CRITICAL, WaterParameter.TURBIDITY, 50, 20)
        'Critical: Turbidity exceeds threshold. Current: 50.00 NTU, Threshold: 20 NTU'
    """
    description = OUTSIDE_SAFE_RANGE if parameter.is_banded else EXCEEDS_THRESHOLD
    unit = parameter.unit
    return (
        f"{severity.value}: {parameter.value} {description}. "
        f"Current: {value:.2f}{unit}, Threshold: {threshold:g}{unit}"
    )


class ThresholdEvaluator:
    """
    Evaluates readings against the threshold catalog.

    The evaluator holds only the catalog; it keeps no state between calls
    and may be shared across concurrent tasks.

    Attributes:
        catalog: Thresholds in effect.

    Example:
        >>> evaluator = ThresholdEvaluator(ThresholdCatalog())
        >>> reading = Reading(device_id="D2", turbidity=50, timestamp=now)
        >>> [v.threshold for v in evaluator.evaluate(reading)]
        [20.0]
    """

    def __init__(self, catalog: ThresholdCatalog) -> None:
        """
        Initialize the evaluator.

        Args:
            catalog: Thresholds to evaluate against.
        """
        self.catalog = catalog

    def evaluate(self, reading: Reading) -> List[Violation]:
        """
        Evaluate every parameter present in a reading.

        Args:
            reading: A validated reading.

        Returns:
            List[Violation]: Zero to three violations, at most one per
                parameter, in pH, Turbidity, TDS order.
        """
        violations: List[Violation] = []

        for parameter in WaterParameter:
            value = reading.value_for(parameter)
            if value is None:
                continue

            if parameter.is_banded:
                breach = self._check_band(value, self.catalog.ph)
            else:
                breach = self._check_ceiling(value, self.catalog.ceiling_for(parameter))

            if breach is None:
                continue

            severity, threshold = breach
            violations.append(
                Violation(
                    device_id=reading.device_id,
                    parameter=parameter,
                    value=value,
                    threshold=threshold,
                    severity=severity,
                    timestamp=reading.timestamp,
                    message=build_alert_message(severity, parameter, value, threshold),
                )
            )

        if violations:
            logger.debug(
                "reading_violations_found",
                device_id=reading.device_id,
                parameters=[v.parameter.value for v in violations],
            )

        return violations

    def _check_band(
        self,
        value: float,
        thresholds: PhThresholds,
    ) -> Optional[Tuple[AlertSeverity, float]]:
        """
        Check a banded value, critical band first.

        Returns:
            Optional[Tuple[AlertSeverity, float]]: Severity and the crossed
                bound, or None if the value is inside the warning band.
        """
        for severity, band in (
            (AlertSeverity.CRITICAL, thresholds.critical),
            (AlertSeverity.WARNING, thresholds.warning),
        ):
            if value < band.min:
                return severity, band.min
            if value > band.max:
                return severity, band.max
        return None

    def _check_ceiling(
        self,
        value: float,
        thresholds: CeilingThresholds,
    ) -> Optional[Tuple[AlertSeverity, float]]:
        """
        Check a value against its ceilings, critical first.

        Returns:
            Optional[Tuple[AlertSeverity, float]]: Severity and the crossed
                ceiling, or None if the value is at or below the warning ceiling.
        """
        if value > thresholds.critical:
            return AlertSeverity.CRITICAL, thresholds.critical
        if value > thresholds.warning:
            return AlertSeverity.WARNING, thresholds.warning
        return None


def create_evaluator(catalog: Optional[ThresholdCatalog] = None) -> ThresholdEvaluator:
    """
    Factory function to create a ThresholdEvaluator.

    Args:
        catalog: Thresholds to use. Defaults to the built-in catalog.

    Returns:
        ThresholdEvaluator: A new evaluator instance.

    Example:
        >>> evaluator = create_evaluator(config.thresholds)
    """
    return ThresholdEvaluator(catalog or ThresholdCatalog())
