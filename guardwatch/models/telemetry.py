"""
Telemetry event models produced by device collectors.

Every event is immutable, scoped to one device and one monitored user, and
timestamped with a timezone-aware instant. Collectors attach a risk score
(0-100) and any keyword/pattern tags they already computed on the device.

Models:
    CallType: Direction/outcome of a phone call
    MediaType: Photo, video, or audio capture
    MediaOrigin: Where a media item came from
    CallEvent: One phone call
    MessageEvent: One SMS or chat message
    LocationEvent: One location fix
    MediaEvent: One media item found on the device
    TelemetryEvent: Discriminated union of the above (on "kind")
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class CallType(str, Enum):
    """Call direction or outcome as reported by the call log."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"
    MISSED = "missed"
    REJECTED = "rejected"
    BLOCKED = "blocked"


class MediaType(str, Enum):
    """Kind of captured media."""

    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"


class MediaOrigin(str, Enum):
    """Where a media item on the device came from."""

    CAMERA = "camera"
    DOWNLOADED = "downloaded"
    SCREENSHOT = "screenshot"
    OTHER = "other"


class _EventBase(BaseModel):
    """Fields shared by every telemetry event."""

    model_config = {"frozen": True, "extra": "forbid"}

    event_id: str = Field(
        ...,
        description="Collector-assigned event identifier",
    )
    user_id: str = Field(
        ...,
        description="Monitored user the device belongs to",
    )
    device_id: str = Field(
        ...,
        description="Device that produced the event",
    )
    occurred_at: datetime = Field(
        ...,
        description="When the event happened on the device (timezone-aware)",
    )
    risk_score: int = Field(
        default=0,
        description="Collector-computed risk score",
        ge=0,
        le=100,
    )
    tags: List[str] = Field(
        default_factory=list,
        description="Keyword or pattern tags detected on the device",
    )

    @field_validator("occurred_at")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        """Reject naive timestamps."""
        if v.tzinfo is None:
            raise ValueError("occurred_at must be timezone-aware")
        return v


class CallEvent(_EventBase):
    """
    A single entry from the device call log.

    Attributes:
        phone_number: Remote party number as reported by the device.
        contact_name: Name in the device address book, if any.
        duration_seconds: Call duration.
        call_type: Incoming, outgoing, missed, rejected, or blocked.
        is_blocked: Whether the number is on the device block list.
    """

    kind: Literal["call"] = "call"
    phone_number: str = Field(..., description="Remote party number")
    contact_name: Optional[str] = Field(default=None, description="Address book name")
    duration_seconds: int = Field(default=0, description="Call duration", ge=0)
    call_type: CallType = Field(default=CallType.INCOMING, description="Call type")
    is_blocked: bool = Field(default=False, description="Number is on the block list")

    @property
    def is_known_contact(self) -> bool:
        """Check if the remote party is in the address book."""
        return bool(self.contact_name)


class MessageEvent(_EventBase):
    """
    A single SMS or chat message.

    Attributes:
        phone_number: Sender (or recipient) address.
        contact_name: Name in the device address book, if any.
        content: Message body.
        app: Source application (sms, whatsapp, ...).
        incoming: Whether the message was received rather than sent.
    """

    kind: Literal["message"] = "message"
    phone_number: str = Field(..., description="Sender or recipient address")
    contact_name: Optional[str] = Field(default=None, description="Address book name")
    content: str = Field(default="", description="Message body")
    app: str = Field(default="sms", description="Source application")
    incoming: bool = Field(default=True, description="Received rather than sent")

    @property
    def is_known_contact(self) -> bool:
        """Check if the sender is in the address book."""
        return bool(self.contact_name)


class LocationEvent(_EventBase):
    """A single location fix."""

    kind: Literal["location"] = "location"
    latitude: float = Field(..., description="Latitude in degrees", ge=-90, le=90)
    longitude: float = Field(..., description="Longitude in degrees", ge=-180, le=180)
    accuracy_m: Optional[float] = Field(default=None, description="Fix accuracy in metres", ge=0)
    speed_mps: Optional[float] = Field(default=None, description="Instantaneous speed in m/s", ge=0)
    address: Optional[str] = Field(default=None, description="Reverse-geocoded address")

    @property
    def speed_kmh(self) -> Optional[float]:
        """Instantaneous speed in km/h, if reported."""
        if self.speed_mps is None:
            return None
        return self.speed_mps * 3.6


class MediaEvent(_EventBase):
    """A media item found on the device."""

    kind: Literal["media"] = "media"
    media_type: MediaType = Field(..., description="Photo, video, or audio")
    origin: MediaOrigin = Field(default=MediaOrigin.CAMERA, description="Where the item came from")
    file_name: str = Field(default="", description="File name on the device")
    size_bytes: int = Field(default=0, description="File size", ge=0)


TelemetryEvent = Annotated[
    Union[CallEvent, MessageEvent, LocationEvent, MediaEvent],
    Field(discriminator="kind"),
]

_telemetry_adapter: TypeAdapter = TypeAdapter(TelemetryEvent)


def parse_event(data: Union[dict, str, bytes]) -> Union[CallEvent, MessageEvent, LocationEvent, MediaEvent]:
    """
    Parse a telemetry event from a dict or JSON document.

    Args:
        data: Decoded dict or raw JSON.

    Returns:
        The concrete event model selected by the "kind" field.

    Raises:
        pydantic.ValidationError: If the payload does not match any event kind.

    Example:
        >>> event = parse_event({"kind": "location", "event_id": "e1", ...})
        >>> isinstance(event, LocationEvent)
        True
    """
    if isinstance(data, (str, bytes)):
        return _telemetry_adapter.validate_json(data)
    return _telemetry_adapter.validate_python(data)
