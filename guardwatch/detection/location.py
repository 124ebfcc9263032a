"""
Location detector.

Evaluates one location fix against the device's recent fixes. "Home" and
"school" are not configured; they are learned by clustering the trailing
history (greedy join within cluster_radius_km, at least min_cluster_size
members, most populous cluster wins). School uses only weekday fixes
inside school hours.

Rules, each yielding its own candidate:
    (a) late-night fix outside the home cluster (medium)
    (b) instantaneous speed above the limit (high)
    (c) far from home (medium)
    (d) inside a danger zone, first match only (priority from zone risk)
    (e) away from school during weekday school hours (medium)
"""

from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from guardwatch.config.models import DangerZoneConfig, LocationDetectorConfig, ZoneRisk
from guardwatch.detection.context import DetectionContext
from guardwatch.detection.geo import Cluster, dominant_cluster, haversine_km, point_in_polygon
from guardwatch.models.alerts import (
    AlertPriority,
    AlertType,
    CandidateAlert,
    DangerZoneEvidence,
    FarFromHomeEvidence,
    HighSpeedEvidence,
    LateNightLocationEvidence,
    OutOfSchoolEvidence,
)
from guardwatch.models.telemetry import LocationEvent

logger = structlog.get_logger(__name__)


ZONE_PRIORITY = {
    ZoneRisk.HIGH: AlertPriority.CRITICAL,
    ZoneRisk.MEDIUM: AlertPriority.HIGH,
    ZoneRisk.LOW: AlertPriority.MEDIUM,
}


class LocationDetector:
    """
    Detects risky locations and movement.

    Attributes:
        config: Clustering parameters, distances, hours, and danger zones.
    """

    name = "location"

    def __init__(self, config: LocationDetectorConfig) -> None:
        self.config = config

    # =========================================================================
    # LEARNED PLACES
    # =========================================================================

    def _history(self, event: LocationEvent, context: DetectionContext) -> List[LocationEvent]:
        start = event.occurred_at - timedelta(days=self.config.history_days)
        return [
            fix
            for fix in context.recent_locations
            if fix.event_id != event.event_id
            and start <= fix.occurred_at <= event.occurred_at
        ]

    def find_home(self, history: List[LocationEvent]) -> Optional[Cluster]:
        """Most populous cluster over the whole trailing history."""
        return dominant_cluster(
            ((fix.latitude, fix.longitude) for fix in history),
            radius_km=self.config.cluster_radius_km,
            min_size=self.config.min_cluster_size,
        )

    def find_school(self, history: List[LocationEvent], context: DetectionContext) -> Optional[Cluster]:
        """Most populous cluster over weekday fixes inside school hours."""
        points = []
        for fix in history:
            local = context.local_time(fix.occurred_at)
            if self._is_school_time(local):
                points.append((fix.latitude, fix.longitude))
        return dominant_cluster(
            points,
            radius_km=self.config.cluster_radius_km,
            min_size=self.config.min_cluster_size,
        )

    def _is_school_time(self, local: datetime) -> bool:
        return (
            local.weekday() < 5
            and self.config.school_start_hour <= local.hour <= self.config.school_end_hour
        )

    def _is_night(self, local: datetime) -> bool:
        return local.hour >= self.config.night_start_hour or local.hour < self.config.night_end_hour

    @staticmethod
    def zone_contains(zone: DangerZoneConfig, latitude: float, longitude: float) -> bool:
        """Check if a point lies inside a danger zone."""
        if zone.is_circle:
            distance = haversine_km(zone.latitude, zone.longitude, latitude, longitude)  # type: ignore[arg-type]
            return distance <= zone.radius_km  # type: ignore[operator]
        return point_in_polygon(latitude, longitude, zone.polygon)  # type: ignore[arg-type]

    # =========================================================================
    # DETECTION
    # =========================================================================

    def detect(self, event: LocationEvent, context: DetectionContext) -> List[CandidateAlert]:
        """
        Evaluate every location rule for one fix.

        Args:
            event: The fix just reported.
            context: Earlier fixes from the same device.

        Returns:
            List[CandidateAlert]: One candidate per matching rule.
        """
        config = self.config
        lat, lon = event.latitude, event.longitude
        local = context.local_time(event.occurred_at)
        history = self._history(event, context)
        home = self.find_home(history)
        home_distance = home.distance_km(lat, lon) if home is not None else None

        candidates: List[CandidateAlert] = []

        def candidate(priority: AlertPriority, title: str, description: str, evidence) -> CandidateAlert:
            return CandidateAlert(
                alert_type=AlertType.RISKY_LOCATION,
                priority=priority,
                title=title,
                description=description,
                evidence=evidence,
                user_id=event.user_id,
                device_id=event.device_id,
                occurred_at=event.occurred_at,
            )

        # (a) out of home at night
        if (
            self._is_night(local)
            and home_distance is not None
            and home_distance > config.cluster_radius_km
        ):
            candidates.append(
                candidate(
                    AlertPriority.MEDIUM,
                    "Out at night",
                    f"Away from home at {local.hour:02d}h ({home_distance:.1f} km)",
                    LateNightLocationEvidence(
                        latitude=lat,
                        longitude=lon,
                        local_hour=local.hour,
                        distance_from_home_km=round(home_distance, 3),
                    ),
                )
            )

        # (b) high speed
        speed_kmh = event.speed_kmh
        if speed_kmh is not None and speed_kmh > config.speed_limit_kmh:
            candidates.append(
                candidate(
                    AlertPriority.HIGH,
                    "High speed",
                    f"Moving at {speed_kmh:.0f} km/h",
                    HighSpeedEvidence(
                        latitude=lat,
                        longitude=lon,
                        speed_kmh=round(speed_kmh, 1),
                    ),
                )
            )

        # (c) far from home
        if home is not None and home_distance is not None and home_distance > config.far_from_home_km:
            candidates.append(
                candidate(
                    AlertPriority.MEDIUM,
                    "Far from home",
                    f"{home_distance:.1f} km from home",
                    FarFromHomeEvidence(
                        latitude=lat,
                        longitude=lon,
                        home_latitude=home.latitude,
                        home_longitude=home.longitude,
                        distance_km=round(home_distance, 3),
                    ),
                )
            )

        # (d) danger zone, first match only
        for zone in config.danger_zones:
            if self.zone_contains(zone, lat, lon):
                candidates.append(
                    candidate(
                        ZONE_PRIORITY[zone.risk],
                        "Danger zone",
                        f"Entered danger zone {zone.name}",
                        DangerZoneEvidence(
                            latitude=lat,
                            longitude=lon,
                            zone_name=zone.name,
                            zone_risk=zone.risk.value,
                        ),
                    )
                )
                break

        # (e) away from school during school hours
        if self._is_school_time(local):
            school = self.find_school(history, context)
            if school is not None:
                school_distance = school.distance_km(lat, lon)
                if school_distance > config.school_distance_km:
                    candidates.append(
                        candidate(
                            AlertPriority.MEDIUM,
                            "Away from school",
                            f"{school_distance:.1f} km from school during school hours",
                            OutOfSchoolEvidence(
                                latitude=lat,
                                longitude=lon,
                                school_latitude=school.latitude,
                                school_longitude=school.longitude,
                                distance_km=round(school_distance, 3),
                                local_hour=local.hour,
                            ),
                        )
                    )

        if candidates:
            logger.debug(
                "location_rules_matched",
                event_id=event.event_id,
                rules=[c.evidence.kind for c in candidates],
            )

        return candidates
