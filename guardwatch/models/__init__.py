"""
Data models for the monitoring pipeline.

This package contains all Pydantic models used across the pipeline:
telemetry events, alerts and their evidence, and delivery bookkeeping.

Modules:
    telemetry: Call, message, location, and media events
    alerts: Priorities, alert types, evidence, candidates, and alerts
    delivery: Recipients, courier outcomes, and queue items
"""

from guardwatch.models.alerts import (
    AdmissionResult,
    Alert,
    AlertPriority,
    AlertStats,
    AlertType,
    CandidateAlert,
    DangerZoneEvidence,
    DeviceOfflineEvidence,
    Evidence,
    ExcessiveCallsEvidence,
    FarFromHomeEvidence,
    HighSpeedEvidence,
    KeywordEvidence,
    LateNightCallEvidence,
    LateNightLocationEvidence,
    LongCallEvidence,
    OutOfSchoolEvidence,
    Suppressed,
    SuppressionReason,
    SuspiciousMediaEvidence,
    UnknownNumbersEvidence,
)
from guardwatch.models.delivery import (
    CourierChannel,
    DeliveryOutcome,
    DeliveryState,
    QueueItem,
    Recipient,
)
from guardwatch.models.telemetry import (
    CallEvent,
    CallType,
    LocationEvent,
    MediaEvent,
    MediaOrigin,
    MediaType,
    MessageEvent,
    TelemetryEvent,
    parse_event,
)

__all__ = [
    # Telemetry
    "CallEvent",
    "CallType",
    "LocationEvent",
    "MediaEvent",
    "MediaOrigin",
    "MediaType",
    "MessageEvent",
    "TelemetryEvent",
    "parse_event",
    # Alerts
    "AdmissionResult",
    "Alert",
    "AlertPriority",
    "AlertStats",
    "AlertType",
    "CandidateAlert",
    "Evidence",
    "Suppressed",
    "SuppressionReason",
    # Evidence
    "DangerZoneEvidence",
    "DeviceOfflineEvidence",
    "ExcessiveCallsEvidence",
    "FarFromHomeEvidence",
    "HighSpeedEvidence",
    "KeywordEvidence",
    "LateNightCallEvidence",
    "LateNightLocationEvidence",
    "LongCallEvidence",
    "OutOfSchoolEvidence",
    "SuspiciousMediaEvidence",
    "UnknownNumbersEvidence",
    # Delivery
    "CourierChannel",
    "DeliveryOutcome",
    "DeliveryState",
    "QueueItem",
    "Recipient",
]
