"""
SMTP email courier.

Sends alert notifications and daily summaries as multipart (plain text +
HTML) email. smtplib is blocking, so every send runs in the default
executor.

Example:
    >>> courier = EmailCourier(config.alerts.couriers.email)
    >>> outcome = await courier.deliver("parent@example.com", alert)
"""

import asyncio
import functools
import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional

import structlog

from guardwatch.config.models import EmailCourierConfig
from guardwatch.models.alerts import Alert, AlertPriority, AlertStats
from guardwatch.models.delivery import DeliveryOutcome

logger = structlog.get_logger(__name__)

PRIORITY_COLORS = {
    AlertPriority.LOW: "#36a64f",
    AlertPriority.MEDIUM: "#ff9900",
    AlertPriority.HIGH: "#ff4500",
    AlertPriority.CRITICAL: "#8b0000",
}


class EmailCourier:
    """
    Email courier using SMTP with optional STARTTLS.

    Attributes:
        config: SMTP settings.
        smtp_factory: Callable returning an smtplib.SMTP-like object;
            defaults to smtplib.SMTP.
    """

    def __init__(
        self,
        config: EmailCourierConfig,
        smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None,
    ) -> None:
        self.config = config
        self.smtp_factory = smtp_factory or smtplib.SMTP

        logger.info(
            "email_courier_initialized",
            smtp_host=config.smtp_host,
            smtp_port=config.smtp_port,
            use_tls=config.use_tls,
            enabled=config.enabled,
        )

    async def deliver(self, address: str, alert: Alert) -> DeliveryOutcome:
        """
        Email an alert to a guardian.

        Args:
            address: Guardian email address.
            alert: Alert to send.

        Returns:
            DeliveryOutcome: Success, or the SMTP error.
        """
        if not self.config.enabled:
            return DeliveryOutcome.skip("email courier disabled")

        message = self.build_alert_message(address, alert)
        return await self._send(address, message, alert_id=alert.id)

    async def send_summary(
        self,
        address: str,
        stats: AlertStats,
        recipient_name: Optional[str] = None,
    ) -> DeliveryOutcome:
        """
        Email a daily alert summary.

        Args:
            address: Guardian email address.
            stats: Alert counts for the period.
            recipient_name: Guardian display name for the greeting.

        Returns:
            DeliveryOutcome: Success, or the SMTP error.
        """
        if not self.config.enabled:
            return DeliveryOutcome.skip("email courier disabled")

        message = self.build_summary_message(address, stats, recipient_name)
        return await self._send(address, message, user_id=stats.user_id)

    def build_alert_message(self, address: str, alert: Alert) -> MIMEMultipart:
        subject = f"[{alert.priority.value.upper()}] {alert.title}"
        occurred = alert.occurred_at.isoformat()

        text_body = "\n".join([
            f"{alert.priority.value.upper()}: {alert.title}",
            "=" * 60,
            "",
            alert.description,
            "",
            f"Type: {alert.alert_type.value.replace('_', ' ')}",
            f"When: {occurred}",
            f"Device: {alert.device_id or 'unknown'}",
            "",
            "Open the GuardWatch app to review this alert.",
        ])

        color = PRIORITY_COLORS[alert.priority]
        html_body = f"""
<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"></head>
<body style="font-family: Arial, sans-serif; color: #333;">
    <div style="max-width: 600px; margin: 0 auto;">
        <div style="background-color: {color}; color: white; padding: 16px;">
            <h2 style="margin: 0;">{html.escape(alert.title)}</h2>
        </div>
        <div style="padding: 16px; border: 1px solid #ddd; border-top: none;">
            <p>{html.escape(alert.description)}</p>
            <table>
                <tr><td><b>Priority:</b></td><td>{alert.priority.value}</td></tr>
                <tr><td><b>Type:</b></td><td>{alert.alert_type.value.replace('_', ' ')}</td></tr>
                <tr><td><b>When:</b></td><td>{occurred}</td></tr>
            </table>
        </div>
        <p style="color: #888; font-size: 12px;">Open the GuardWatch app to review this alert.</p>
    </div>
</body>
</html>
"""
        return self._compose(address, subject, text_body, html_body)

    def build_summary_message(
        self,
        address: str,
        stats: AlertStats,
        recipient_name: Optional[str] = None,
    ) -> MIMEMultipart:
        subject = f"Daily summary: {stats.total} alert(s), {stats.unread} unread"
        greeting = f"Hello {recipient_name}," if recipient_name else "Hello,"

        lines = [
            greeting,
            "",
            f"Since {stats.since.isoformat()} there were {stats.total} alert(s); "
            f"{stats.unread} are still unread.",
        ]
        if stats.by_priority:
            lines.append("")
            lines.append("By priority:")
            for priority in AlertPriority:
                count = stats.by_priority.get(priority.value)
                if count:
                    lines.append(f"  {priority.value}: {count}")
        if stats.by_type:
            lines.append("")
            lines.append("By type:")
            for alert_type, count in sorted(stats.by_type.items()):
                lines.append(f"  {alert_type.replace('_', ' ')}: {count}")
        text_body = "\n".join(lines)

        rows = "".join(
            f"<tr><td>{html.escape(t.replace('_', ' '))}</td><td>{c}</td></tr>"
            for t, c in sorted(stats.by_type.items())
        )
        html_body = f"""
<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"></head>
<body style="font-family: Arial, sans-serif; color: #333;">
    <p>{html.escape(greeting)}</p>
    <p>{stats.total} alert(s) since {stats.since.isoformat()}, {stats.unread} unread.</p>
    <table>{rows}</table>
</body>
</html>
"""
        return self._compose(address, subject, text_body, html_body)

    def _compose(self, address: str, subject: str, text_body: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.config.sender_name} <{self.config.sender}>"
        msg["To"] = address
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    async def _send(self, address: str, msg: MIMEMultipart, **log_context: str) -> DeliveryOutcome:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, functools.partial(self._send_smtp, address, msg))
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("email_send_failed", to=address, error=str(e), **log_context)
            return DeliveryOutcome.failed(f"SMTP error: {e}")

        logger.info("email_sent", to=address, **log_context)
        return DeliveryOutcome.ok()

    def _send_smtp(self, address: str, msg: MIMEMultipart) -> None:
        with self.smtp_factory(
            self.config.smtp_host,
            self.config.smtp_port,
            timeout=self.config.timeout_seconds,
        ) as server:
            if self.config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.config.username and self.config.password:
                server.login(self.config.username, self.config.password)
            server.send_message(msg, to_addrs=[address])
