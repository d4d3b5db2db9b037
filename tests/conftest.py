"""Shared fixtures for the alerting core tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import AsyncMock

import pytest

from aquaguard.config.models import StaleAlertPolicy, ThresholdCatalog
from aquaguard.detection.cooldown import CooldownPolicy, InMemoryCooldownRegistry
from aquaguard.detection.evaluator import ThresholdEvaluator, build_alert_message
from aquaguard.detection.manager import AlertLifecycleManager
from aquaguard.models.alerts import AlertSeverity, Violation
from aquaguard.models.readings import Reading, WaterParameter
from aquaguard.storage.memory import InMemoryAlertStore

T0 = datetime(2025, 1, 26, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def repo_config_dir() -> Path:
    return Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def t0() -> datetime:
    """Reference reading time."""
    return T0


@pytest.fixture
def catalog() -> ThresholdCatalog:
    return ThresholdCatalog()


@pytest.fixture
def evaluator(catalog: ThresholdCatalog) -> ThresholdEvaluator:
    return ThresholdEvaluator(catalog)


@pytest.fixture
def policy() -> CooldownPolicy:
    """Default windows: Critical 30 min, Warning 60 min."""
    return CooldownPolicy()


@pytest.fixture
def cooldowns(policy: CooldownPolicy) -> InMemoryCooldownRegistry:
    return InMemoryCooldownRegistry(policy, shards=4)


@pytest.fixture
def store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def dispatcher() -> AsyncMock:
    """Notification dispatcher double that records calls."""
    mock = AsyncMock()
    mock.on_alert_created_or_escalated.return_value = 1
    return mock


@pytest.fixture
def operator_now(t0: datetime) -> datetime:
    """Time reported by the manager clock for operator actions."""
    return t0 + timedelta(hours=1)


@pytest.fixture
def make_manager(
    store: InMemoryAlertStore,
    cooldowns: InMemoryCooldownRegistry,
    dispatcher: AsyncMock,
    evaluator: ThresholdEvaluator,
    operator_now: datetime,
) -> Callable[..., AlertLifecycleManager]:
    """Factory for managers wired to the in-process store and registry."""

    def _make(**overrides) -> AlertLifecycleManager:
        kwargs = dict(
            store=store,
            cooldowns=cooldowns,
            dispatcher=dispatcher,
            evaluator=evaluator,
            stale_alert_policy=StaleAlertPolicy.AUTO_RESOLVE,
            store_timeout=1.0,
            dispatch_timeout=1.0,
            clock=lambda: operator_now,
        )
        kwargs.update(overrides)
        return AlertLifecycleManager(**kwargs)

    return _make


@pytest.fixture
def manager(make_manager: Callable[..., AlertLifecycleManager]) -> AlertLifecycleManager:
    return make_manager()


@pytest.fixture
def make_reading(t0: datetime) -> Callable[..., Reading]:
    """Factory for readings; `minutes` offsets the timestamp from t0."""

    def _make(device_id: str = "D1", minutes: float = 0, **values) -> Reading:
        return Reading(
            device_id=device_id,
            timestamp=t0 + timedelta(minutes=minutes),
            **values,
        )

    return _make


@pytest.fixture
def make_violation(t0: datetime) -> Callable[..., Violation]:
    """Factory for violations with a correctly built message."""

    def _make(
        device_id: str = "D1",
        parameter: WaterParameter = WaterParameter.PH,
        value: float = 5.0,
        threshold: float = 6.0,
        severity: AlertSeverity = AlertSeverity.CRITICAL,
        minutes: float = 0,
        timestamp: Optional[datetime] = None,
    ) -> Violation:
        return Violation(
            device_id=device_id,
            parameter=parameter,
            value=value,
            threshold=threshold,
            severity=severity,
            timestamp=timestamp or t0 + timedelta(minutes=minutes),
            message=build_alert_message(severity, parameter, value, threshold),
        )

    return _make
