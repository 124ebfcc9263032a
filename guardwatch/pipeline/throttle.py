"""
Throttle gate: per-(user, alert type) admission control.

The gate is the only place candidates become Alerts. For each candidate it
consults a sliding one-hour window of prior admissions for the same
(user, alert type) key and either persists a new Alert or returns a
Suppressed decision.

Key Features:
    - Hourly cap (max_per_hour) and cooldown (cooldown_minutes) per type
    - Unconfigured alert types are never throttled
    - Slot reserved before persistence is awaited, released if it fails

Note:
    Windows are process-local. Several instances of the service each
    throttle independently; a shared window store would be needed to
    enforce limits across instances.

Example:
    >>> gate = ThrottleGate(store, config.alerts.throttle, SystemClock())
    >>> result = await gate.admit(candidate)
    >>> if isinstance(result, Suppressed):
    ...     print(result.reason)
"""

from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

import structlog

from guardwatch.clock import Clock
from guardwatch.config.models import ThrottleRule
from guardwatch.models.alerts import (
    AdmissionResult,
    Alert,
    CandidateAlert,
    Suppressed,
    SuppressionReason,
)
from guardwatch.pipeline.storage import AlertStore

logger = structlog.get_logger(__name__)

# Length of the sliding admission window
WINDOW = timedelta(hours=1)

ThrottleKey = Tuple[str, str]


class ThrottleWindows:
    """
    Admission timestamps per (user, alert type) key.

    Each window holds the admission times of the trailing hour, oldest
    first. Entries outside the window are dropped lazily by prune() and
    eagerly by sweep().

    Attributes:
        _windows: Key to ascending list of admission timestamps.

    Example:
        >>> windows = ThrottleWindows()
        >>> windows.reserve(("user-1", "risky_location"), now)
        >>> len(windows.prune(("user-1", "risky_location"), now))
        1
    """

    def __init__(self) -> None:
        self._windows: Dict[ThrottleKey, List[datetime]] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, key: ThrottleKey) -> bool:
        return key in self._windows

    def __iter__(self) -> Iterator[ThrottleKey]:
        return iter(list(self._windows))

    def prune(self, key: ThrottleKey, now: datetime) -> List[datetime]:
        """
        Drop timestamps older than the window and return the rest.

        Args:
            key: Throttle key.
            now: Current time.

        Returns:
            List[datetime]: Admissions within the trailing hour.
        """
        window = self._windows.get(key)
        if not window:
            return []

        cutoff = now - WINDOW
        recent = [ts for ts in window if ts > cutoff]
        if recent:
            self._windows[key] = recent
        else:
            del self._windows[key]
        return recent

    def reserve(self, key: ThrottleKey, at: datetime) -> None:
        """Record an admission for a key."""
        self._windows.setdefault(key, []).append(at)

    def release(self, key: ThrottleKey, at: datetime) -> None:
        """
        Undo a reservation made with reserve().

        Args:
            key: Throttle key.
            at: The timestamp that was reserved.
        """
        window = self._windows.get(key)
        if not window:
            return
        try:
            window.remove(at)
        except ValueError:
            return
        if not window:
            del self._windows[key]

    def sweep(self, now: datetime) -> int:
        """
        Prune every window; remove keys left empty.

        Args:
            now: Current time.

        Returns:
            int: Number of keys removed.
        """
        removed = 0
        for key in list(self._windows):
            if not self.prune(key, now):
                removed += 1
        return removed

    def snapshot(self) -> Dict[ThrottleKey, List[datetime]]:
        """Copy of the current windows."""
        return {key: list(window) for key, window in self._windows.items()}

    def clear(self) -> None:
        self._windows.clear()


class ThrottleGate:
    """
    Admits or suppresses candidate alerts.

    Admission runs synchronously up to the store call: the window check and
    the slot reservation happen with no await in between, so two admissions
    for one key on the event loop cannot both pass a full window.

    Attributes:
        store: Alert store used to persist admitted alerts.
        rules: Throttle rules keyed by alert type value.
        clock: Time source.
        windows: Admission windows.

    Example:
        >>> gate = ThrottleGate(
        ...     store=InMemoryAlertStore(),
        ...     rules={"risky_location": ThrottleRule(max_per_hour=8, cooldown_minutes=20)},
        ...     clock=ManualClock(),
        ... )
    """

    def __init__(
        self,
        store: AlertStore,
        rules: Dict[str, ThrottleRule],
        clock: Clock,
        windows: Optional[ThrottleWindows] = None,
    ) -> None:
        """
        Initialize the gate.

        Args:
            store: Alert store.
            rules: Throttle rules keyed by alert type value.
            clock: Time source.
            windows: Existing window state (a fresh one if omitted).
        """
        self.store = store
        self.rules = rules
        self.clock = clock
        self.windows = windows if windows is not None else ThrottleWindows()

        logger.info(
            "throttle_gate_initialized",
            throttled_types=sorted(rules.keys()),
        )

    def check(self, candidate: CandidateAlert, now: datetime) -> Optional[Suppressed]:
        """
        Decide whether a candidate would be suppressed right now.

        Prunes the candidate's window as a side effect.

        Args:
            candidate: Candidate to check.
            now: Decision time.

        Returns:
            Optional[Suppressed]: The suppression, or None if it may pass.
        """
        rule = self.rules.get(candidate.alert_type.value)
        if rule is None:
            return None

        window = self.windows.prune(candidate.throttle_key, now)
        if not window:
            return None

        reason: Optional[SuppressionReason] = None
        if len(window) >= rule.max_per_hour:
            reason = SuppressionReason.HOURLY_CAP
        elif now - max(window) < timedelta(minutes=rule.cooldown_minutes):
            reason = SuppressionReason.COOLDOWN

        if reason is None:
            return None

        return Suppressed(
            candidate=candidate,
            reason=reason,
            window_count=len(window),
            decided_at=now,
        )

    async def admit(self, candidate: CandidateAlert) -> AdmissionResult:
        """
        Admit a candidate as a persisted Alert, or suppress it.

        Args:
            candidate: Detector output.

        Returns:
            AdmissionResult: The stored Alert, or a Suppressed decision.

        Raises:
            AlertStoreError: If persistence fails. The reserved slot is
                released first, so the failure does not count against the
                window.
        """
        now = self.clock.now()

        suppressed = self.check(candidate, now)
        if suppressed is not None:
            logger.info(
                "alert_throttled",
                user_id=candidate.user_id,
                alert_type=candidate.alert_type.value,
                reason=suppressed.reason.value,
                window_count=suppressed.window_count,
            )
            return suppressed

        throttled = candidate.alert_type.value in self.rules
        key = candidate.throttle_key
        if throttled:
            self.windows.reserve(key, now)

        alert = Alert.from_candidate(candidate, created_at=now)
        try:
            stored = await self.store.create_alert(alert)
        except Exception as e:
            if throttled:
                self.windows.release(key, now)
            logger.error(
                "alert_persistence_failed",
                user_id=candidate.user_id,
                alert_type=candidate.alert_type.value,
                error=str(e),
            )
            raise

        logger.info(
            "alert_admitted",
            alert_id=stored.id,
            user_id=stored.user_id,
            alert_type=stored.alert_type.value,
            priority=stored.priority.value,
        )
        return stored
