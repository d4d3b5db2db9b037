"""Tests for threshold evaluation."""

import pytest

from aquaguard.config.models import CeilingThresholds, PhBand, PhThresholds, ThresholdCatalog
from aquaguard.detection.evaluator import (
    EXCEEDS_THRESHOLD,
    OUTSIDE_SAFE_RANGE,
    ThresholdEvaluator,
    build_alert_message,
    create_evaluator,
)
from aquaguard.models.alerts import AlertSeverity
from aquaguard.models.readings import WaterParameter


class TestThresholdEvaluator:
    """Violation computation per parameter."""

    def test_critical_low_ph(self, evaluator, make_reading, t0):
        violations = evaluator.evaluate(make_reading(ph=5.0))

        assert len(violations) == 1
        violation = violations[0]
        assert violation.device_id == "D1"
        assert violation.parameter == WaterParameter.PH
        assert violation.severity == AlertSeverity.CRITICAL
        assert violation.value == 5.0
        assert violation.threshold == 6.0
        assert violation.timestamp == t0
        assert OUTSIDE_SAFE_RANGE in violation.message

    def test_critical_turbidity(self, evaluator, make_reading):
        violations = evaluator.evaluate(make_reading(device_id="D2", turbidity=50))

        assert len(violations) == 1
        violation = violations[0]
        assert violation.parameter == WaterParameter.TURBIDITY
        assert violation.severity == AlertSeverity.CRITICAL
        assert violation.value == 50
        assert violation.threshold == 20
        assert EXCEEDS_THRESHOLD in violation.message

    @pytest.mark.parametrize(
        "ph,severity,threshold",
        [
            (9.5, AlertSeverity.CRITICAL, 9.0),
            (6.2, AlertSeverity.WARNING, 6.5),
            (8.7, AlertSeverity.WARNING, 8.5),
        ],
    )
    def test_ph_bands(self, evaluator, make_reading, ph, severity, threshold):
        (violation,) = evaluator.evaluate(make_reading(ph=ph))

        assert violation.severity == severity
        assert violation.threshold == threshold

    @pytest.mark.parametrize("ph", [6.5, 7.0, 8.5])
    def test_ph_inside_warning_band(self, evaluator, make_reading, ph):
        assert evaluator.evaluate(make_reading(ph=ph)) == []

    def test_ceiling_is_strict(self, evaluator, make_reading):
        assert evaluator.evaluate(make_reading(turbidity=5.0, tds=500.0)) == []

    def test_warning_tds(self, evaluator, make_reading):
        (violation,) = evaluator.evaluate(make_reading(tds=750))

        assert violation.parameter == WaterParameter.TDS
        assert violation.severity == AlertSeverity.WARNING
        assert violation.threshold == 500

    def test_one_violation_per_parameter_in_order(self, evaluator, make_reading):
        violations = evaluator.evaluate(make_reading(ph=5.0, turbidity=50, tds=1500))

        assert [v.parameter for v in violations] == [
            WaterParameter.PH,
            WaterParameter.TURBIDITY,
            WaterParameter.TDS,
        ]
        assert all(v.severity == AlertSeverity.CRITICAL for v in violations)

    def test_absent_values_skipped(self, evaluator, make_reading):
        violations = evaluator.evaluate(make_reading(tds=1500))

        assert [v.parameter for v in violations] == [WaterParameter.TDS]

    def test_custom_catalog(self, make_reading):
        catalog = ThresholdCatalog(
            ph=PhThresholds(
                critical=PhBand(min=5.5, max=9.5),
                warning=PhBand(min=6.0, max=9.0),
            ),
            turbidity=CeilingThresholds(warning=1.0, critical=4.0),
        )
        evaluator = ThresholdEvaluator(catalog)

        violations = evaluator.evaluate(make_reading(ph=5.8, turbidity=2.0))

        assert [(v.severity, v.threshold) for v in violations] == [
            (AlertSeverity.WARNING, 6.0),
            (AlertSeverity.WARNING, 1.0),
        ]

    def test_create_evaluator_defaults(self):
        assert create_evaluator().catalog == ThresholdCatalog()


class TestBuildAlertMessage:
    """Message formatting."""

    def test_ceiling_message(self):
        message = build_alert_message(
            AlertSeverity.CRITICAL, WaterParameter.TURBIDITY, 50, 20
        )

        assert message == (
            "Critical: Turbidity exceeds threshold. Current: 50.00 NTU, Threshold: 20 NTU"
        )

    def test_band_message(self):
        message = build_alert_message(AlertSeverity.WARNING, WaterParameter.PH, 6.234, 6.5)

        assert message.startswith("Warning: pH outside safe range.")
        assert "Current: 6.23" in message
        assert "Threshold: 6.5" in message
