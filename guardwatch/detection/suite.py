"""
Detector suite: routes each telemetry event to the detectors for its kind.

Key Features:
    - One entry point for all event kinds
    - Per-detector isolation: a detector bug is logged, not propagated
    - Factory building every detector from DetectorsConfig

Example:
    >>> suite = create_detector_suite(config.detectors)
    >>> candidates = suite.detect(event, context)
"""

from typing import Any, Dict, List, Protocol

import structlog

from guardwatch.config.models import DetectorsConfig
from guardwatch.detection.calls import CallPatternDetector
from guardwatch.detection.context import DetectionContext
from guardwatch.detection.keywords import KeywordDetector
from guardwatch.detection.location import LocationDetector
from guardwatch.detection.media import MediaDetector
from guardwatch.models.alerts import CandidateAlert
from guardwatch.models.telemetry import TelemetryEvent

logger = structlog.get_logger(__name__)


class Detector(Protocol):
    """
    Protocol for event detectors.

    Detectors are pure: the same event and context always produce the same
    candidates, and they perform no I/O.
    """

    name: str

    def detect(self, event: Any, context: DetectionContext) -> List[CandidateAlert]:
        ...


class DetectorSuite:
    """
    Runs the applicable detectors for an event.

    Attributes:
        routes: Event kind to the detectors that handle it, in order.
    """

    def __init__(self, routes: Dict[str, List[Detector]]) -> None:
        self.routes = routes

        logger.info(
            "detector_suite_initialized",
            routes={kind: [d.name for d in detectors] for kind, detectors in routes.items()},
        )

    def detect(self, event: TelemetryEvent, context: DetectionContext) -> List[CandidateAlert]:
        """
        Run every detector registered for the event's kind.

        Args:
            event: Telemetry event.
            context: Read-only history for the event's device.

        Returns:
            List[CandidateAlert]: Candidates from all detectors, in route order.
        """
        candidates: List[CandidateAlert] = []
        for detector in self.routes.get(event.kind, []):
            try:
                candidates.extend(detector.detect(event, context))
            except Exception as e:
                logger.error(
                    "detector_failed",
                    detector=detector.name,
                    event_id=event.event_id,
                    kind=event.kind,
                    error=str(e),
                )
        return candidates


def create_detector_suite(config: DetectorsConfig) -> DetectorSuite:
    """
    Factory function to create a DetectorSuite with every detector.

    Messages go through the keyword detector. Calls go through the pattern
    detector and the keyword detector (sender heuristics only).

    Args:
        config: Detector configuration.

    Returns:
        DetectorSuite: Configured suite.
    """
    keywords = KeywordDetector(config.keywords)
    return DetectorSuite(
        routes={
            "message": [keywords],
            "call": [CallPatternDetector(config.calls), keywords],
            "location": [LocationDetector(config.location)],
            "media": [MediaDetector(config.media)],
        }
    )
