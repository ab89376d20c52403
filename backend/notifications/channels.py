"""Notification channel implementations.

Each channel handles delivery for one transport. The NotificationManager
dispatches to the appropriate channel. Channels never raise: every outcome,
including transport errors, comes back as a DeliveryResult.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"


@dataclass
class Notification:
    """A notification to be delivered.

    ``body`` is sent verbatim by the webhook channel when set; otherwise a
    generic title/message envelope is posted. ``html`` is the email body.
    """
    title: str
    message: str
    channel: NotificationChannel
    recipient: str = ""  # email address or webhook URL
    body: Optional[dict[str, Any]] = None
    html: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class DeliveryResult:
    """Result of a notification delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for notification channels."""

    channel_type: NotificationChannel

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through this channel."""
        ...

    def _failed(self, recipient: str, error: str) -> DeliveryResult:
        return DeliveryResult(
            success=False,
            channel=self.channel_type,
            recipient=recipient,
            error=error,
        )


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(BaseChannel):
    """Send notifications via SMTP.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    channel_type = NotificationChannel.EMAIL

    def __init__(self, config: dict = None):
        self.config = config or {}

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send email notification."""
        smtp_host = self.config.get("smtp_host")
        if not smtp_host:
            return self._failed(notification.recipient, "SMTP is not configured")

        smtp_port = self.config.get("smtp_port", 587)
        smtp_user = self.config.get("smtp_user", "")
        smtp_pass = self.config.get("smtp_password", "")
        from_addr = self.config.get("from_address", "noreply@localhost")
        use_tls = self.config.get("use_tls", True)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.title
        msg["From"] = from_addr
        msg["To"] = notification.recipient
        msg.attach(MIMEText(notification.message, "plain"))
        if notification.html:
            msg.attach(MIMEText(notification.html, "html"))

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self._send_smtp(
                    smtp_host, smtp_port, smtp_user, smtp_pass,
                    from_addr, notification.recipient, msg, use_tls,
                ),
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email send failed: %s", e)
            return self._failed(notification.recipient, str(e))

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=notification.recipient,
            message="Email sent",
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )

    def _send_smtp(self, host, port, user, password, from_addr, to_addr, msg, use_tls):
        """Synchronous SMTP send."""
        with smtplib.SMTP(host, port) as server:
            if use_tls:
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(from_addr, to_addr, msg.as_string())


# ─── Webhook Channel ───────────────────────────────────────────

class WebhookChannel(BaseChannel):
    """POST notifications as JSON to an HTTP endpoint.

    Config:
        url: Default target URL when the notification has no recipient
        headers: Additional headers
        timeout: Seconds (default 10)
    """

    channel_type = NotificationChannel.WEBHOOK

    def __init__(self, config: dict = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or {}
        self._client = client

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send webhook notification."""
        url = notification.recipient or self.config.get("url")
        if not url:
            return self._failed("", "No webhook URL")

        headers = {"Content-Type": "application/json", **self.config.get("headers", {})}
        payload = notification.body if notification.body is not None else {
            "title": notification.title,
            "message": notification.message,
            "metadata": notification.metadata,
            "timestamp": notification.created_at,
        }
        timeout = self.config.get("timeout", 10)

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Webhook send failed: %s", e)
            return self._failed(url, str(e))

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=url,
            message=f"Webhook delivered (HTTP {response.status_code})",
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )
