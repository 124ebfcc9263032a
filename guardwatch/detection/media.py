"""
Media detector.

Flags photos and videos captured late at night, anything downloaded, and
oversized videos. All reasons for one item are folded into a single
candidate; late-night captures are high priority, everything else medium.
"""

from typing import List

from guardwatch.config.models import MediaDetectorConfig
from guardwatch.detection.context import DetectionContext
from guardwatch.models.alerts import (
    AlertPriority,
    AlertType,
    CandidateAlert,
    SuspiciousMediaEvidence,
)
from guardwatch.models.telemetry import MediaEvent, MediaOrigin, MediaType

REASON_LATE_CAPTURE = "late_capture"
REASON_DOWNLOADED = "downloaded"
REASON_LARGE_VIDEO = "large_video"

_REASON_TEXT = {
    REASON_LATE_CAPTURE: "captured late at night",
    REASON_DOWNLOADED: "downloaded",
    REASON_LARGE_VIDEO: "unusually large video",
}


class MediaDetector:
    """Detects suspicious media items."""

    name = "media"

    def __init__(self, config: MediaDetectorConfig) -> None:
        self.config = config

    def detect(self, event: MediaEvent, context: DetectionContext) -> List[CandidateAlert]:
        config = self.config
        local_hour = context.local_time(event.occurred_at).hour
        reasons: List[str] = []

        is_capture = event.media_type in (MediaType.PHOTO, MediaType.VIDEO)
        if is_capture and (local_hour >= config.late_start_hour or local_hour < config.late_end_hour):
            reasons.append(REASON_LATE_CAPTURE)
        if event.origin == MediaOrigin.DOWNLOADED:
            reasons.append(REASON_DOWNLOADED)
        if event.media_type == MediaType.VIDEO and event.size_bytes > config.max_video_bytes:
            reasons.append(REASON_LARGE_VIDEO)

        if not reasons:
            return []

        priority = AlertPriority.HIGH if REASON_LATE_CAPTURE in reasons else AlertPriority.MEDIUM
        label = event.file_name or event.media_type.value

        return [
            CandidateAlert(
                alert_type=AlertType.INAPPROPRIATE_MEDIA,
                priority=priority,
                title="Suspicious media",
                description=f"{label}: " + ", ".join(_REASON_TEXT[r] for r in reasons),
                evidence=SuspiciousMediaEvidence(
                    reasons=reasons,
                    media_type=event.media_type.value,
                    origin=event.origin.value,
                    file_name=event.file_name,
                    size_bytes=event.size_bytes,
                    local_hour=local_hour,
                ),
                user_id=event.user_id,
                device_id=event.device_id,
                occurred_at=event.occurred_at,
            )
        ]
