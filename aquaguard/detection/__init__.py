"""
Alert detection and lifecycle for the alerting core.

This module contains threshold evaluation, cooldown suppression, alert
lifecycle management, the alert store contract and notification dispatch.

Components:
    evaluator: ThresholdEvaluator turning readings into violations
    cooldown: Cooldown registries (in-process and Redis)
    manager: AlertLifecycleManager for the alert lifecycle
    storage: AlertStore contract and PostgresAlertStore adapter
    dispatcher: ChannelDispatcher for notification routing
    channels/: Alert notification channels (console, webhook)

Example:
    >>> from aquaguard.detection import (
    ...     AlertLifecycleManager,
    ...     CooldownPolicy,
    ...     InMemoryCooldownRegistry,
    ...     ThresholdEvaluator,
    ...     create_dispatcher,
    ... )
    >>>
    >>> manager = AlertLifecycleManager(
    ...     store=InMemoryAlertStore(),
    ...     cooldowns=InMemoryCooldownRegistry(CooldownPolicy()),
    ...     dispatcher=create_dispatcher(config.alerts),
    ...     evaluator=ThresholdEvaluator(config.thresholds),
    ... )
"""

from aquaguard.detection.evaluator import (
    ThresholdEvaluator,
    build_alert_message,
    create_evaluator,
)
from aquaguard.detection.cooldown import (
    CooldownCheck,
    CooldownPolicy,
    CooldownRegistry,
    InMemoryCooldownRegistry,
    RedisCooldownRegistry,
    lookup_order,
)
from aquaguard.detection.storage import AlertStore, PostgresAlertStore
from aquaguard.detection.dispatcher import (
    ChannelDispatcher,
    NotificationDispatcher,
    NotificationEvent,
    create_dispatcher,
    DEFAULT_SEVERITY_CHANNELS,
)
from aquaguard.detection.manager import (
    AlertLifecycleManager,
    create_lifecycle_manager,
    DEFAULT_STORE_TIMEOUT_SECONDS,
    DEFAULT_DISPATCH_TIMEOUT_SECONDS,
)

__all__ = [
    # Evaluator
    "ThresholdEvaluator",
    "build_alert_message",
    "create_evaluator",
    # Cooldown
    "CooldownCheck",
    "CooldownPolicy",
    "CooldownRegistry",
    "InMemoryCooldownRegistry",
    "RedisCooldownRegistry",
    "lookup_order",
    # Storage
    "AlertStore",
    "PostgresAlertStore",
    # Dispatcher
    "ChannelDispatcher",
    "NotificationDispatcher",
    "NotificationEvent",
    "create_dispatcher",
    "DEFAULT_SEVERITY_CHANNELS",
    # Manager
    "AlertLifecycleManager",
    "create_lifecycle_manager",
    "DEFAULT_STORE_TIMEOUT_SECONDS",
    "DEFAULT_DISPATCH_TIMEOUT_SECONDS",
]
