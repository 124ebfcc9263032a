"""
Alert data models for the monitoring pipeline.

This module defines alert-related structures: priorities, alert types, the
per-type evidence payloads, transient candidate alerts produced by detectors,
the durable Alert entity, and the throttle gate's suppression result.

Models:
    AlertPriority: Priority levels (low, medium, high, critical)
    AlertType: Alert type identifiers (stable wire values)
    SuppressionReason: Why the throttle gate refused a candidate
    Evidence: Tagged union of evidence payloads (discriminator "kind")
    CandidateAlert: Unpersisted, detector-produced alert suggestion
    Alert: Persisted alert with read/delivery flags
    Suppressed: Throttle decision for a refused candidate
    AlertStats: Per-user alert counts over a period
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter


class AlertPriority(str, Enum):
    """
    Alert priority levels.

    Attributes:
        LOW: Informational; stored but not pushed or emailed.
        MEDIUM: Pushed to the guardian.
        HIGH: Pushed and emailed.
        CRITICAL: Pushed and emailed inline, bypassing the delivery queue.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def is_critical(self) -> bool:
        """Check if this is a critical priority."""
        return self == AlertPriority.CRITICAL

    @property
    def wants_email(self) -> bool:
        """Check if alerts of this priority are emailed (high or critical)."""
        return self in (AlertPriority.HIGH, AlertPriority.CRITICAL)

    @property
    def wants_push(self) -> bool:
        """Check if alerts of this priority are pushed (anything but low)."""
        return self != AlertPriority.LOW

    @property
    def rank(self) -> int:
        """Numeric rank, low=0 through critical=3."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    AlertPriority.LOW: 0,
    AlertPriority.MEDIUM: 1,
    AlertPriority.HIGH: 2,
    AlertPriority.CRITICAL: 3,
}


class AlertType(str, Enum):
    """
    Alert type identifiers.

    These values are persisted and keyed into the throttle table, so they
    must stay stable.
    """

    SUSPICIOUS_MESSAGE = "suspicious_message"
    SUSPICIOUS_CALL = "suspicious_call"
    RISKY_LOCATION = "risky_location"
    INAPPROPRIATE_MEDIA = "inappropriate_media"
    DEVICE_OFFLINE = "device_offline"
    KEYWORD = "keyword"
    APP_BLOCKED = "app_blocked"
    TIME_LIMIT = "time_limit"


class SuppressionReason(str, Enum):
    """Why the throttle gate refused a candidate."""

    HOURLY_CAP = "hourly_cap"
    COOLDOWN = "cooldown"


# =============================================================================
# EVIDENCE VARIANTS
# =============================================================================


class _Evidence(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}


class KeywordEvidence(_Evidence):
    """Scored text/sender heuristics for a message or call."""

    kind: Literal["keyword"] = "keyword"
    source: Literal["message", "call"] = "message"
    phone_number: str
    score: int = Field(..., ge=0, le=100)
    high_risk_terms: List[str] = Field(default_factory=list)
    medium_risk_terms: List[str] = Field(default_factory=list)
    low_risk_terms: List[str] = Field(default_factory=list)
    urgency_terms: List[str] = Field(default_factory=list)
    spam_sender: bool = False
    unknown_contact: bool = False
    has_url: bool = False


class ExcessiveCallsEvidence(_Evidence):
    kind: Literal["excessive_calls"] = "excessive_calls"
    phone_number: str
    call_count: int
    window_hours: float


class LongCallEvidence(_Evidence):
    kind: Literal["long_call"] = "long_call"
    phone_number: str
    duration_seconds: int


class LateNightCallEvidence(_Evidence):
    kind: Literal["late_night_call"] = "late_night_call"
    phone_number: str
    local_hour: int


class UnknownNumbersEvidence(_Evidence):
    kind: Literal["unknown_numbers"] = "unknown_numbers"
    unknown_call_count: int
    window_hours: float


class LateNightLocationEvidence(_Evidence):
    kind: Literal["late_night_location"] = "late_night_location"
    latitude: float
    longitude: float
    local_hour: int
    distance_from_home_km: float


class HighSpeedEvidence(_Evidence):
    kind: Literal["high_speed"] = "high_speed"
    latitude: float
    longitude: float
    speed_kmh: float


class FarFromHomeEvidence(_Evidence):
    kind: Literal["far_from_home"] = "far_from_home"
    latitude: float
    longitude: float
    home_latitude: float
    home_longitude: float
    distance_km: float


class DangerZoneEvidence(_Evidence):
    kind: Literal["danger_zone"] = "danger_zone"
    latitude: float
    longitude: float
    zone_name: str
    zone_risk: str


class OutOfSchoolEvidence(_Evidence):
    kind: Literal["out_of_school"] = "out_of_school"
    latitude: float
    longitude: float
    school_latitude: float
    school_longitude: float
    distance_km: float
    local_hour: int


class SuspiciousMediaEvidence(_Evidence):
    kind: Literal["suspicious_media"] = "suspicious_media"
    reasons: List[str]
    media_type: str
    origin: str
    file_name: str
    size_bytes: int
    local_hour: int


class DeviceOfflineEvidence(_Evidence):
    kind: Literal["device_offline"] = "device_offline"
    last_seen_at: datetime
    offline_minutes: int


Evidence = Annotated[
    Union[
        KeywordEvidence,
        ExcessiveCallsEvidence,
        LongCallEvidence,
        LateNightCallEvidence,
        UnknownNumbersEvidence,
        LateNightLocationEvidence,
        HighSpeedEvidence,
        FarFromHomeEvidence,
        DangerZoneEvidence,
        OutOfSchoolEvidence,
        SuspiciousMediaEvidence,
        DeviceOfflineEvidence,
    ],
    Field(discriminator="kind"),
]

evidence_adapter: TypeAdapter = TypeAdapter(Evidence)


# =============================================================================
# ALERTS
# =============================================================================


class CandidateAlert(BaseModel):
    """
    Detector output: a suggestion that an event is alert-worthy.

    Never persisted directly. The throttle gate either promotes it to an
    Alert or discards it.

    Example:
        >>> candidate = CandidateAlert(
        ...     alert_type=AlertType.RISKY_LOCATION,
        ...     priority=AlertPriority.MEDIUM,
        ...     title="Far from home",
        ...     description="Device is 15.0 km from home",
        ...     evidence=FarFromHomeEvidence(...),
        ...     user_id="user-1",
        ...     device_id="device-1",
        ...     occurred_at=event.occurred_at,
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert_type: AlertType = Field(..., description="Alert type")
    priority: AlertPriority = Field(..., description="Alert priority")
    title: str = Field(..., description="Short human-readable title")
    description: str = Field(..., description="Human-readable description")
    evidence: Evidence = Field(..., description="Typed evidence payload")
    user_id: str = Field(..., description="Monitored user")
    device_id: Optional[str] = Field(default=None, description="Originating device")
    occurred_at: datetime = Field(..., description="When the underlying event happened")

    @property
    def throttle_key(self) -> tuple:
        """Key of the throttle window this candidate counts against."""
        return (self.user_id, self.alert_type.value)


class Alert(BaseModel):
    """
    Persisted alert.

    Once created, alert_type, priority, and evidence never change; only the
    read and delivery flags are updated, each update producing a new
    instance via model_copy.

    Attributes:
        id: Unique alert identifier.
        user_id: Monitored user.
        device_id: Originating device, if known.
        alert_type: Alert type.
        priority: Alert priority.
        title: Short title.
        description: Longer description.
        evidence: Typed evidence payload (opaque JSON to the store).
        read: Whether the guardian has read the alert.
        email_sent: Whether the email courier has delivered the alert.
        push_sent: Whether the push courier has delivered the alert.
        occurred_at: When the underlying event happened.
        created_at: When the alert was admitted.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Unique alert identifier",
    )
    user_id: str = Field(..., description="Monitored user")
    device_id: Optional[str] = Field(default=None, description="Originating device")
    alert_type: AlertType = Field(..., description="Alert type")
    priority: AlertPriority = Field(..., description="Alert priority")
    title: str = Field(..., description="Short title")
    description: str = Field(..., description="Description")
    evidence: Evidence = Field(..., description="Typed evidence payload")
    read: bool = Field(default=False, description="Read by the guardian")
    email_sent: bool = Field(default=False, description="Email delivered")
    push_sent: bool = Field(default=False, description="Push delivered")
    occurred_at: datetime = Field(..., description="When the event happened")
    created_at: datetime = Field(..., description="When the alert was admitted")

    @classmethod
    def from_candidate(cls, candidate: CandidateAlert, created_at: datetime) -> "Alert":
        """
        Promote an admitted candidate to an Alert.

        Args:
            candidate: The admitted candidate.
            created_at: Admission time.

        Returns:
            Alert: New, unread, undelivered alert.
        """
        return cls(
            user_id=candidate.user_id,
            device_id=candidate.device_id,
            alert_type=candidate.alert_type,
            priority=candidate.priority,
            title=candidate.title,
            description=candidate.description,
            evidence=candidate.evidence,
            occurred_at=candidate.occurred_at,
            created_at=created_at,
        )

    def with_delivery_flags(
        self,
        email_sent: Optional[bool] = None,
        push_sent: Optional[bool] = None,
    ) -> "Alert":
        """
        Return a copy with updated delivery flags.

        Args:
            email_sent: New email flag, or None to keep the current one.
            push_sent: New push flag, or None to keep the current one.

        Returns:
            Alert: Updated alert.
        """
        update = {}
        if email_sent is not None:
            update["email_sent"] = email_sent
        if push_sent is not None:
            update["push_sent"] = push_sent
        return self.model_copy(update=update)

    def mark_read(self) -> "Alert":
        """Return a copy marked as read."""
        return self.model_copy(update={"read": True})

    @property
    def is_fully_delivered(self) -> bool:
        """Check if every courier that applies to this priority succeeded."""
        if self.priority.wants_email and not self.email_sent:
            return False
        if self.priority.wants_push and not self.push_sent:
            return False
        return True


class Suppressed(BaseModel):
    """
    Throttle decision for a refused candidate.

    A value, not an error: nothing is persisted for a suppressed candidate.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    candidate: CandidateAlert = Field(..., description="The refused candidate")
    reason: SuppressionReason = Field(..., description="Why it was refused")
    window_count: int = Field(..., description="Acceptances in the trailing hour", ge=0)
    decided_at: datetime = Field(..., description="When the decision was made")


AdmissionResult = Union[Alert, Suppressed]


class AlertStats(BaseModel):
    """Alert counts for one user over a period."""

    model_config = {"frozen": True, "extra": "forbid"}

    user_id: str = Field(..., description="Monitored user")
    since: datetime = Field(..., description="Start of the period")
    total: int = Field(default=0, ge=0)
    unread: int = Field(default=0, ge=0)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_alerts(cls, user_id: str, since: datetime, alerts: List["Alert"]) -> "AlertStats":
        """Aggregate a list of alerts already filtered to user and period."""
        by_priority: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        unread = 0
        for alert in alerts:
            by_priority[alert.priority.value] = by_priority.get(alert.priority.value, 0) + 1
            by_type[alert.alert_type.value] = by_type.get(alert.alert_type.value, 0) + 1
            if not alert.read:
                unread += 1
        return cls(
            user_id=user_id,
            since=since,
            total=len(alerts),
            unread=unread,
            by_priority=by_priority,
            by_type=by_type,
        )
