"""
Push notification courier using the FCM HTTP endpoint.

Example:
    >>> courier = PushCourier(config.alerts.couriers.push)
    >>> outcome = await courier.deliver(device_token, alert)
    >>> await courier.close()
"""

from typing import Any, Dict, Optional

import aiohttp
import structlog

from guardwatch.config.models import PushCourierConfig
from guardwatch.models.alerts import Alert
from guardwatch.models.delivery import DeliveryOutcome

logger = structlog.get_logger(__name__)


class PushCourier:
    """
    Sends alerts to a guardian's device through FCM.

    The aiohttp session is created lazily and reused for every delivery.

    Attributes:
        config: FCM settings.
        _session: Shared HTTP session.
    """

    def __init__(self, config: PushCourierConfig) -> None:
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(
            "push_courier_initialized",
            fcm_url=config.fcm_url,
            enabled=config.enabled,
            has_server_key=config.server_key is not None,
        )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": "guardwatch/1.0"},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("push_courier_session_closed")

    def build_payload(self, token: str, alert: Alert) -> Dict[str, Any]:
        return {
            "to": token,
            "priority": "high" if alert.priority.wants_email else "normal",
            "notification": {
                "title": alert.title,
                "body": alert.description,
            },
            "data": {
                "alert_id": alert.id,
                "alert_type": alert.alert_type.value,
                "priority": alert.priority.value,
            },
        }

    async def deliver(self, address: str, alert: Alert) -> DeliveryOutcome:
        """
        Push an alert to a device token.

        Args:
            address: FCM registration token of the guardian's device.
            alert: Alert to push.

        Returns:
            DeliveryOutcome: Success, or the HTTP/FCM error.
        """
        if not self.config.enabled:
            return DeliveryOutcome.skip("push courier disabled")
        if not self.config.server_key:
            return DeliveryOutcome.skip("push courier has no server key")

        session = await self._ensure_session()
        headers = {"Authorization": f"key={self.config.server_key}"}

        try:
            async with session.post(
                self.config.fcm_url,
                json=self.build_payload(address, alert),
                headers=headers,
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    logger.warning(
                        "push_send_failed",
                        alert_id=alert.id,
                        status=response.status,
                        error=error_text[:200],
                    )
                    return DeliveryOutcome.failed(
                        f"FCM request failed with status {response.status}"
                    )

                body = await response.json(content_type=None)

        except aiohttp.ClientError as e:
            logger.warning("push_send_failed", alert_id=alert.id, error=str(e))
            return DeliveryOutcome.failed(f"FCM request error: {e}")

        if body.get("failure"):
            results = body.get("results") or [{}]
            error = results[0].get("error", "unknown")
            logger.warning("push_rejected", alert_id=alert.id, error=error)
            return DeliveryOutcome.failed(f"FCM rejected token: {error}")

        logger.info("push_sent", alert_id=alert.id)
        return DeliveryOutcome.ok()
