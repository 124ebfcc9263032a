"""
Call pattern detector.

Looks at one call plus the device's earlier calls inside a lookback window
and raises a separate candidate for each pattern that matches:

    - excessive calls from one number (high above the upper threshold)
    - a single call longer than an hour
    - a call placed or received late at night (local time)
    - many calls from blocked or unknown numbers
"""

from datetime import timedelta
from typing import List

import structlog

from guardwatch.config.models import CallDetectorConfig
from guardwatch.detection.context import DetectionContext
from guardwatch.models.alerts import (
    AlertPriority,
    AlertType,
    CandidateAlert,
    ExcessiveCallsEvidence,
    LateNightCallEvidence,
    LongCallEvidence,
    UnknownNumbersEvidence,
)
from guardwatch.models.telemetry import CallEvent, CallType

logger = structlog.get_logger(__name__)


def _digits(number: str) -> str:
    return "".join(ch for ch in number if ch.isdigit())


class CallPatternDetector:
    """
    Detects suspicious call patterns.

    Attributes:
        config: Thresholds and lookback window.
    """

    name = "calls"

    def __init__(self, config: CallDetectorConfig) -> None:
        self.config = config

    def is_unknown_caller(self, call: CallEvent) -> bool:
        """
        Check if a call came from a blocked or unknown number.

        A number is unknown when it is not in the device address book.
        Withheld caller ids and numbers shorter than the configured minimum
        length count as unknown even when the device resolved a name.

        Args:
            call: Call to inspect.

        Returns:
            bool: True if the call counts towards the unknown-numbers pattern.
        """
        if call.is_blocked or call.call_type == CallType.BLOCKED:
            return True
        if not call.is_known_contact:
            return True
        number = call.phone_number.strip().lower()
        if not number:
            return True
        if any(marker in number for marker in self.config.hidden_number_markers):
            return True
        return len(_digits(number)) < self.config.min_number_length

    def _window(self, event: CallEvent, context: DetectionContext) -> List[CallEvent]:
        start = event.occurred_at - timedelta(hours=self.config.lookback_hours)
        window = [
            call
            for call in context.recent_calls
            if call.event_id != event.event_id
            and start <= call.occurred_at <= event.occurred_at
        ]
        window.append(event)
        return window

    def detect(self, event: CallEvent, context: DetectionContext) -> List[CandidateAlert]:
        """
        Evaluate every call pattern for one call.

        Args:
            event: The call just reported.
            context: Earlier calls from the same device.

        Returns:
            List[CandidateAlert]: One candidate per matching pattern.
        """
        config = self.config
        window = self._window(event, context)
        candidates: List[CandidateAlert] = []
        caller = event.contact_name or event.phone_number

        def candidate(priority: AlertPriority, title: str, description: str, evidence) -> CandidateAlert:
            return CandidateAlert(
                alert_type=AlertType.SUSPICIOUS_CALL,
                priority=priority,
                title=title,
                description=description,
                evidence=evidence,
                user_id=event.user_id,
                device_id=event.device_id,
                occurred_at=event.occurred_at,
            )

        # (a) excessive calls from one number
        same_number = sum(1 for call in window if call.phone_number == event.phone_number)
        if same_number > config.excessive_calls:
            priority = (
                AlertPriority.HIGH
                if same_number > config.excessive_calls_high
                else AlertPriority.MEDIUM
            )
            candidates.append(
                candidate(
                    priority,
                    "Excessive calls",
                    f"{same_number} calls with {caller} in the last "
                    f"{config.lookback_hours:g} hours",
                    ExcessiveCallsEvidence(
                        phone_number=event.phone_number,
                        call_count=same_number,
                        window_hours=config.lookback_hours,
                    ),
                )
            )

        # (b) long call
        if event.duration_seconds > config.long_call_seconds:
            minutes = event.duration_seconds // 60
            candidates.append(
                candidate(
                    AlertPriority.MEDIUM,
                    "Long call",
                    f"Call with {caller} lasted {minutes} minutes",
                    LongCallEvidence(
                        phone_number=event.phone_number,
                        duration_seconds=event.duration_seconds,
                    ),
                )
            )

        # (c) late-night call
        local_hour = context.local_time(event.occurred_at).hour
        if local_hour < config.night_end_hour or local_hour > config.night_start_hour:
            candidates.append(
                candidate(
                    AlertPriority.HIGH,
                    "Late-night call",
                    f"Call with {caller} at {local_hour:02d}h",
                    LateNightCallEvidence(
                        phone_number=event.phone_number,
                        local_hour=local_hour,
                    ),
                )
            )

        # (d) many blocked/unknown numbers
        unknown = sum(1 for call in window if self.is_unknown_caller(call))
        if unknown > config.unknown_calls:
            priority = (
                AlertPriority.HIGH
                if unknown > config.unknown_calls_high
                else AlertPriority.MEDIUM
            )
            candidates.append(
                candidate(
                    priority,
                    "Calls from unknown numbers",
                    f"{unknown} calls from blocked or unknown numbers in the last "
                    f"{config.lookback_hours:g} hours",
                    UnknownNumbersEvidence(
                        unknown_call_count=unknown,
                        window_hours=config.lookback_hours,
                    ),
                )
            )

        if candidates:
            logger.debug(
                "call_patterns_detected",
                event_id=event.event_id,
                patterns=[c.evidence.kind for c in candidates],
            )

        return candidates
