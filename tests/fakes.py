"""Hand-written collaborators for pipeline tests."""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from guardwatch.models.alerts import Alert, AlertStats
from guardwatch.models.delivery import DeliveryOutcome
from guardwatch.pipeline.storage import AlertStoreError, InMemoryAlertStore

# Wednesday afternoon, outside every night and late-capture window
START = datetime(2025, 3, 5, 15, 0, tzinfo=timezone.utc)


class ScriptedCourier:
    """
    Courier that fails a fixed number of times, then succeeds.

    Attributes:
        fail_times: Failures before the first success (-1 fails forever).
        delay: Seconds to sleep inside each call.
        calls: (address, alert_id) of every invocation.
    """

    def __init__(self, fail_times: int = 0, delay: float = 0.0) -> None:
        self.fail_times = fail_times
        self.delay = delay
        self.calls: List[tuple] = []

    async def deliver(self, address: str, alert: Alert) -> DeliveryOutcome:
        self.calls.append((address, alert.id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times < 0 or len(self.calls) <= self.fail_times:
            return DeliveryOutcome.failed("scripted failure")
        return DeliveryOutcome.ok()


class RaisingCourier:
    """Courier whose deliver() raises instead of returning an outcome."""

    def __init__(self) -> None:
        self.calls = 0

    async def deliver(self, address: str, alert: Alert) -> DeliveryOutcome:
        self.calls += 1
        raise RuntimeError("courier exploded")


class RecordingSummaryCourier:
    """Summary courier that records what it was asked to send."""

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: List[tuple] = []

    async def send_summary(
        self,
        address: str,
        stats: AlertStats,
        recipient_name: Optional[str] = None,
    ) -> DeliveryOutcome:
        self.sent.append((address, stats, recipient_name))
        return DeliveryOutcome.ok() if self.succeed else DeliveryOutcome.failed("smtp down")


class RecordingPublisher:
    """Alert publisher that records published alert ids."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: List[str] = []

    async def publish_alert(self, alert: Alert) -> int:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.published.append(alert.id)
        return 1


class FlakyAlertStore(InMemoryAlertStore):
    """In-memory store whose first `failures` creates raise."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures
        self.create_calls = 0

    async def create_alert(self, alert: Alert) -> Alert:
        self.create_calls += 1
        if self.create_calls <= self.failures:
            raise AlertStoreError("connection reset")
        return await super().create_alert(alert)
