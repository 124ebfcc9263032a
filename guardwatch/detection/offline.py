"""
Device-offline check.

Unlike the event detectors this runs on a timer: a device that has not
reported anything for longer than the threshold yields a medium candidate.
"""

from datetime import datetime, timedelta
from typing import Optional

from guardwatch.config.models import OfflineDetectorConfig
from guardwatch.detection.context import DeviceSighting
from guardwatch.models.alerts import (
    AlertPriority,
    AlertType,
    CandidateAlert,
    DeviceOfflineEvidence,
)


class OfflineDetector:
    """Raises device-offline candidates from last-seen times."""

    name = "offline"

    def __init__(self, config: OfflineDetectorConfig) -> None:
        self.config = config

    def detect(self, sighting: DeviceSighting, now: datetime) -> Optional[CandidateAlert]:
        """
        Check one device's last sighting.

        Args:
            sighting: Device, owner, and last report time.
            now: Evaluation time.

        Returns:
            Optional[CandidateAlert]: Candidate if the device is silent too long.
        """
        silence = now - sighting.last_seen_at
        if silence <= timedelta(minutes=self.config.threshold_minutes):
            return None

        offline_minutes = int(silence.total_seconds() // 60)
        return CandidateAlert(
            alert_type=AlertType.DEVICE_OFFLINE,
            priority=AlertPriority.MEDIUM,
            title="Device offline",
            description=f"No data from device for {offline_minutes} minutes",
            evidence=DeviceOfflineEvidence(
                last_seen_at=sighting.last_seen_at,
                offline_minutes=offline_minutes,
            ),
            user_id=sighting.user_id,
            device_id=sighting.device_id,
            occurred_at=now,
        )
