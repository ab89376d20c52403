"""Notification Manager: central dispatcher for notification channels."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.config import Settings, get_settings
from notifications.channels import (
    BaseChannel,
    DeliveryResult,
    EmailChannel,
    Notification,
    NotificationChannel,
    WebhookChannel,
)
from notifications.templates import TemplateService

logger = logging.getLogger(__name__)


class NotificationManager:
    """Routes notifications to registered channels.

    Args:
        client: Optional shared httpx client for the webhook channel
        templates: Template service used for templated emails
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        templates: Optional[TemplateService] = None,
    ):
        self._channels: dict[NotificationChannel, BaseChannel] = {}
        self._client = client
        self.templates = templates or TemplateService()
        self.register_channel(WebhookChannel(client=client))

    def register_channel(self, channel: BaseChannel) -> None:
        """Register (or replace) the channel for its transport."""
        self._channels[channel.channel_type] = channel
        logger.debug("Notification channel registered: %s", channel.channel_type.value)

    def configure_from_settings(self, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        self.register_channel(WebhookChannel(
            {"timeout": settings.NOTIFICATION_TIMEOUT_SECONDS},
            client=self._client,
        ))
        if settings.SMTP_HOST:
            self.register_channel(EmailChannel({
                "smtp_host": settings.SMTP_HOST,
                "smtp_port": settings.SMTP_PORT,
                "smtp_user": settings.SMTP_USERNAME,
                "smtp_password": settings.SMTP_PASSWORD,
                "from_address": settings.SMTP_FROM_EMAIL,
                "use_tls": settings.SMTP_USE_TLS,
            }))

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through its channel."""
        channel = self._channels.get(notification.channel)
        if not channel:
            return DeliveryResult(
                success=False,
                channel=notification.channel,
                recipient=notification.recipient,
                error=f"Channel not configured: {notification.channel.value}",
            )

        result = await channel.send(notification)
        if result.success:
            logger.info("Notification sent via %s to %s", notification.channel.value, result.recipient)
        else:
            logger.warning("Notification failed via %s: %s", notification.channel.value, result.error)
        return result

    async def send_email(self, to: str, subject: str, html: str) -> DeliveryResult:
        return await self.send(Notification(
            title=subject,
            message=subject,
            html=html,
            channel=NotificationChannel.EMAIL,
            recipient=to,
        ))

    async def send_templated_email(
        self,
        to: str,
        subject: str,
        content: str,
        variables: dict[str, Any],
    ) -> DeliveryResult:
        """Render subject and body with the template service, then email them."""
        rendered = self.templates.render(content, subject, variables)
        return await self.send_email(to, rendered.subject or subject, rendered.content)

    async def notify_job_failed(self, job, error: str) -> Optional[DeliveryResult]:
        """Post a job failure to the job's notification webhook.

        Best effort: returns None when the job has notifications off, and
        never raises.
        """
        if not job.notify_on_failure or not job.notification_webhook:
            return None

        body = {
            "text": f'Job "{job.name}" failed: {error}',
            "job": {"id": job.id, "name": job.name},
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            return await self.send(Notification(
                title=f"Job failed: {job.name}",
                message=body["text"],
                channel=NotificationChannel.WEBHOOK,
                recipient=job.notification_webhook,
                body=body,
            ))
        except Exception:
            logger.exception("Failure notification for job %s raised", job.id)
            return None

    def get_status(self) -> dict:
        return {"channels": [ch.value for ch in self._channels.keys()]}
