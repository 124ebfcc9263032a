"""
Alert admission and delivery.

Components:
    throttle: ThrottleGate and its per-(user, type) admission windows
    storage: AlertStore protocol with in-memory and PostgreSQL backends
    recipients: Guardian contact lookup
    dispatcher: CourierDispatcher for concurrent courier fan-out
    delivery: DeliveryQueue, RetryPolicy, and the DeliveryWorker loop
    housekeeping: Periodic jobs, including the throttle window sweep
    manager: AlertPipeline wiring everything together

Example:
    >>> from guardwatch.pipeline import create_pipeline, InMemoryAlertStore
    >>> pipeline = create_pipeline(config, InMemoryAlertStore(), directory, couriers)
    >>> results = await pipeline.submit_event(event)
"""

from guardwatch.pipeline.delivery import DeliveryQueue, DeliveryWorker, RetryPolicy
from guardwatch.pipeline.dispatcher import (
    Courier,
    CourierDispatcher,
    channels_for_priority,
)
from guardwatch.pipeline.housekeeping import PeriodicTask, ThrottleSweeper
from guardwatch.pipeline.manager import AlertPipeline, create_pipeline
from guardwatch.pipeline.recipients import (
    PostgresRecipientDirectory,
    RecipientDirectory,
    StaticRecipientDirectory,
)
from guardwatch.pipeline.storage import (
    AlertNotFoundError,
    AlertStore,
    AlertStoreError,
    InMemoryAlertStore,
    PostgresAlertStore,
)
from guardwatch.pipeline.throttle import ThrottleGate, ThrottleWindows

__all__ = [
    # Throttle
    "ThrottleGate",
    "ThrottleWindows",
    # Storage
    "AlertNotFoundError",
    "AlertStore",
    "AlertStoreError",
    "InMemoryAlertStore",
    "PostgresAlertStore",
    # Recipients
    "PostgresRecipientDirectory",
    "RecipientDirectory",
    "StaticRecipientDirectory",
    # Delivery
    "Courier",
    "CourierDispatcher",
    "DeliveryQueue",
    "DeliveryWorker",
    "RetryPolicy",
    "channels_for_priority",
    # Housekeeping
    "PeriodicTask",
    "ThrottleSweeper",
    # Manager
    "AlertPipeline",
    "create_pipeline",
]
