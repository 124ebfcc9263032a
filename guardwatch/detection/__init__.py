"""
Detection components for the monitoring pipeline.

Detectors are pure evaluators: given one telemetry event and a read-only
DetectionContext they return zero or more candidate alerts.

Components:
    context: DetectionContext and the in-memory TelemetryHistory
    geo: Distance, clustering, and polygon helpers
    keywords: Message/call keyword and sender scoring
    calls: Call pattern detector
    location: Location detector with learned home/school clusters
    media: Media detector
    offline: Timer-driven device-offline check
    suite: DetectorSuite routing events to detectors
"""

from guardwatch.detection.calls import CallPatternDetector
from guardwatch.detection.context import (
    ContextProvider,
    DetectionContext,
    DeviceSighting,
    TelemetryHistory,
)
from guardwatch.detection.keywords import KeywordDetector, KeywordScore
from guardwatch.detection.location import LocationDetector
from guardwatch.detection.media import MediaDetector
from guardwatch.detection.offline import OfflineDetector
from guardwatch.detection.suite import Detector, DetectorSuite, create_detector_suite

__all__ = [
    # Context
    "ContextProvider",
    "DetectionContext",
    "DeviceSighting",
    "TelemetryHistory",
    # Detectors
    "CallPatternDetector",
    "Detector",
    "KeywordDetector",
    "KeywordScore",
    "LocationDetector",
    "MediaDetector",
    "OfflineDetector",
    # Suite
    "DetectorSuite",
    "create_detector_suite",
]
