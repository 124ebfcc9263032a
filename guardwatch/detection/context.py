"""
Read-only detection context and the in-memory telemetry history behind it.

Detectors never perform I/O. Everything they need beyond the event itself,
recent calls and location fixes for the same device plus the local
timezone, is handed to them in a DetectionContext built by a
ContextProvider before detection runs.

Key Features:
    - Immutable DetectionContext snapshot per event
    - Bounded per-device call and location history
    - Last-seen tracking per device for the offline check

Example:
    >>> history = TelemetryHistory(timezone="America/Sao_Paulo")
    >>> context = history.context_for(event, now=clock.now())
    >>> candidates = suite.detect(event, context)
    >>> history.record(event)
"""

from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, NamedTuple, Optional, Protocol, Tuple
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, Field

from guardwatch.models.telemetry import CallEvent, LocationEvent, TelemetryEvent

logger = structlog.get_logger(__name__)


class DetectionContext(BaseModel):
    """
    Read-only history handed to detectors alongside one event.

    Attributes:
        now: Evaluation time.
        timezone: IANA timezone name for local-hour rules.
        recent_calls: Earlier calls from the same device, oldest first.
        recent_locations: Earlier fixes from the same device, oldest first.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    now: datetime = Field(..., description="Evaluation time")
    timezone: str = Field(default="UTC", description="Timezone for local-hour rules")
    recent_calls: Tuple[CallEvent, ...] = Field(default=())
    recent_locations: Tuple[LocationEvent, ...] = Field(default=())

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_time(self, instant: datetime) -> datetime:
        """Convert an instant to the context's local timezone."""
        return instant.astimezone(self.tzinfo)


class DeviceSighting(NamedTuple):
    """Last time a device reported anything."""

    device_id: str
    user_id: str
    last_seen_at: datetime


class ContextProvider(Protocol):
    """Builds detection context and records processed events."""

    def context_for(self, event: TelemetryEvent, now: datetime) -> DetectionContext:
        ...

    def record(self, event: TelemetryEvent) -> None:
        ...

    def sightings(self) -> List[DeviceSighting]:
        ...


class TelemetryHistory:
    """
    In-memory, per-device telemetry history.

    Keeps the most recent calls and location fixes for each device in
    bounded deques, and the last time each device reported any event.
    Owned by one pipeline instance and only touched from its event loop.

    Attributes:
        timezone: Timezone name passed through to every context.
        max_calls: Calls kept per device.
        max_locations: Fixes kept per device.
    """

    def __init__(
        self,
        timezone: str = "UTC",
        max_calls: int = 2000,
        max_locations: int = 5000,
    ) -> None:
        self.timezone = timezone
        self.max_calls = max_calls
        self.max_locations = max_locations

        self._calls: Dict[str, Deque[CallEvent]] = {}
        self._locations: Dict[str, Deque[LocationEvent]] = {}
        self._last_seen: Dict[str, DeviceSighting] = {}

        logger.debug(
            "telemetry_history_initialized",
            timezone=timezone,
            max_calls=max_calls,
            max_locations=max_locations,
        )

    def context_for(self, event: TelemetryEvent, now: datetime) -> DetectionContext:
        """
        Snapshot the history relevant to an event.

        Args:
            event: Event about to be evaluated (not yet recorded).
            now: Evaluation time.

        Returns:
            DetectionContext: Immutable snapshot for the event's device.
        """
        device_id = event.device_id
        return DetectionContext(
            now=now,
            timezone=self.timezone,
            recent_calls=tuple(self._calls.get(device_id, ())),
            recent_locations=tuple(self._locations.get(device_id, ())),
        )

    def record(self, event: TelemetryEvent) -> None:
        """
        Add a processed event to the history.

        Args:
            event: Event that has been through detection.
        """
        device_id = event.device_id

        if isinstance(event, CallEvent):
            self._calls.setdefault(device_id, deque(maxlen=self.max_calls)).append(event)
        elif isinstance(event, LocationEvent):
            self._locations.setdefault(device_id, deque(maxlen=self.max_locations)).append(event)

        previous = self._last_seen.get(device_id)
        if previous is None or event.occurred_at >= previous.last_seen_at:
            self._last_seen[device_id] = DeviceSighting(
                device_id=device_id,
                user_id=event.user_id,
                last_seen_at=event.occurred_at,
            )

    def sightings(self) -> List[DeviceSighting]:
        """Return the last sighting of every known device."""
        return list(self._last_seen.values())

    def last_seen(self, device_id: str) -> Optional[datetime]:
        sighting = self._last_seen.get(device_id)
        return sighting.last_seen_at if sighting else None

    def clear(self, device_id: Optional[str] = None) -> None:
        """Forget one device, or everything."""
        if device_id is None:
            self._calls.clear()
            self._locations.clear()
            self._last_seen.clear()
            return
        self._calls.pop(device_id, None)
        self._locations.pop(device_id, None)
        self._last_seen.pop(device_id, None)
