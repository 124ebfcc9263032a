"""
Shared fixtures for pipeline tests.

Provides a manual clock, in-memory store and recipient directory, an
application config tuned for fast tests, and builders for candidates and
alerts. Fake couriers and publishers live in tests/fakes.py.
"""

from datetime import datetime
from typing import Optional

import pytest

from guardwatch.clock import ManualClock
from guardwatch.config.models import (
    AlertsConfig,
    AppConfig,
    DeliveryConfig,
    DetectorsConfig,
    FeaturesConfig,
    KeywordDetectorConfig,
    LexiconConfig,
    RetryBackoffConfig,
)
from guardwatch.models.alerts import (
    Alert,
    AlertPriority,
    AlertType,
    CandidateAlert,
    FarFromHomeEvidence,
)
from guardwatch.models.delivery import Recipient
from guardwatch.pipeline.recipients import StaticRecipientDirectory
from guardwatch.pipeline.storage import InMemoryAlertStore

from tests.fakes import START


@pytest.fixture
def clock():
    """Manual clock starting at START."""
    return ManualClock(START)


@pytest.fixture
def store():
    return InMemoryAlertStore()


@pytest.fixture
def guardian():
    return Recipient(
        user_id="user-1",
        name="Ana",
        email="parent@example.com",
        push_token="push-token-1",
    )


@pytest.fixture
def recipients(guardian):
    return StaticRecipientDirectory([guardian])


@pytest.fixture
def lexicon():
    """Small bilingual lexicon covering every tier."""
    return LexiconConfig(
        high=["drugs", "maconha", "smoke", "fumar", "nudes"],
        medium=["secret", "segredo", "tonight", "party", "alone"],
        low=["meet", "money", "photo"],
        urgency=["urgent", "now", "agora"],
    )


@pytest.fixture
def app_config(lexicon):
    """
    Application config with immediate retries and a fast worker poll.

    Times in tests are driven by ManualClock; only the worker loop sleeps
    for real, so its poll interval is kept tiny.
    """
    return AppConfig(
        alerts=AlertsConfig(
            delivery=DeliveryConfig(
                max_retries=3,
                poll_interval_seconds=0.01,
                courier_timeout_seconds=1.0,
                drain_timeout_seconds=2.0,
                backoff=RetryBackoffConfig(base_seconds=0),
            ),
        ),
        detectors=DetectorsConfig(keywords=KeywordDetectorConfig(lexicon=lexicon)),
        features=FeaturesConfig(publish_alerts=True),
    )


@pytest.fixture
def make_candidate(clock):
    """Build a candidate alert; defaults to a medium risky-location candidate."""

    def _make(
        alert_type: AlertType = AlertType.RISKY_LOCATION,
        priority: AlertPriority = AlertPriority.MEDIUM,
        user_id: str = "user-1",
    ) -> CandidateAlert:
        return CandidateAlert(
            alert_type=alert_type,
            priority=priority,
            title="Far from home",
            description="15.0 km from home",
            evidence=FarFromHomeEvidence(
                latitude=-23.70,
                longitude=-46.63,
                home_latitude=-23.55,
                home_longitude=-46.63,
                distance_km=15.0,
            ),
            user_id=user_id,
            device_id="device-1",
            occurred_at=clock.now(),
        )

    return _make


@pytest.fixture
def make_alert(make_candidate, clock):
    """Build a stored-looking alert; keyword arguments override its flags."""

    def _make(
        priority: AlertPriority = AlertPriority.HIGH,
        user_id: str = "user-1",
        created_at: Optional[datetime] = None,
        **flags: bool,
    ) -> Alert:
        alert = Alert.from_candidate(
            make_candidate(priority=priority, user_id=user_id),
            created_at=created_at or clock.now(),
        )
        return alert.model_copy(update=flags) if flags else alert

    return _make
