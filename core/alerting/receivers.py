"""Notification receivers for app down/back alerts."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.message import EmailMessage
from enum import StrEnum
from typing import Any

import httpx

from core.config import (
    EmailReceiverConfig,
    PushoverReceiverConfig,
    ReceiversConfig,
    WebhookReceiverConfig,
)
from core.utils.durations import format_duration

logger = logging.getLogger(__name__)

PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"


class NotificationError(Exception):
    """A receiver could not deliver a notification."""


class NotificationKind(StrEnum):
    DOWN = "down"
    BACK = "back"


@dataclass(slots=True, frozen=True)
class NotificationEvent:
    """One down/back alert about to be handed to the receivers."""

    kind: NotificationKind
    app_name: str
    downtime: timedelta | None = None

    @property
    def title(self) -> str:
        if self.kind is NotificationKind.DOWN:
            return f"{self.app_name} has died."
        return f"{self.app_name} is back!"

    @property
    def message(self) -> str:
        if self.kind is NotificationKind.DOWN:
            since = format_duration(self.downtime or timedelta(0))
            return (
                f'App "{self.app_name}" has not sent a live sign since {since}. '
                "It's probably dead."
            )
        return f'App "{self.app_name}" has reappeared after being dead.'


class Receiver:
    """Receiver interface.

    Implementations raise ``NotificationError`` when delivery fails and must
    tolerate concurrent calls from several watchers.
    """

    def __init__(self, name: str):
        self.name = name

    async def send(self, event: NotificationEvent) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def notify_app_down(self, app_name: str, downtime: timedelta) -> None:
        await self.send(
            NotificationEvent(NotificationKind.DOWN, app_name, downtime=downtime)
        )

    async def notify_app_back(self, app_name: str) -> None:
        await self.send(NotificationEvent(NotificationKind.BACK, app_name))

    async def aclose(self) -> None:
        return None


class PushoverReceiver(Receiver):
    """Pushover push notifications."""

    def __init__(
        self,
        config: PushoverReceiverConfig,
        *,
        client: httpx.AsyncClient | None = None,
        api_url: str = PUSHOVER_API_URL,
    ):
        super().__init__(config.name)
        self.config = config
        self.api_url = api_url
        self.client = client or httpx.AsyncClient(timeout=10.0)

    async def send(self, event: NotificationEvent) -> None:
        data = {
            "token": self.config.token,
            "user": self.config.user_key,
            "title": event.title,
            "message": event.message,
            "priority": str(self.config.priority),
        }
        if self.config.priority == 2:
            data["retry"] = str(int(self.config.retry.total_seconds()))
            data["expire"] = str(int(self.config.expire.total_seconds()))
        try:
            response = await self.client.post(self.api_url, data=data)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"sending message failed: {exc}") from exc

    async def aclose(self) -> None:
        await self.client.aclose()


class WebhookReceiver(Receiver):
    """Posts a JSON document describing the event to an arbitrary URL."""

    def __init__(
        self,
        config: WebhookReceiverConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config.name)
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    @staticmethod
    def build_payload(event: NotificationEvent) -> dict[str, Any]:
        return {
            "event": str(event.kind),
            "app": event.app_name,
            "downtime_seconds": (
                event.downtime.total_seconds() if event.downtime is not None else None
            ),
            "message": event.message,
            "sent_at": datetime.now(UTC).isoformat(),
        }

    async def send(self, event: NotificationEvent) -> None:
        try:
            response = await self.client.post(
                self.config.url,
                json=self.build_payload(event),
                headers=self.config.headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"webhook delivery failed: {exc}") from exc

    async def aclose(self) -> None:
        await self.client.aclose()


class EmailReceiver(Receiver):
    """SMTP receiver. Sending happens in a worker thread."""

    def __init__(
        self,
        config: EmailReceiverConfig,
        *,
        smtp_factory: Any = smtplib.SMTP,
    ):
        super().__init__(config.name)
        self.config = config
        self.smtp_factory = smtp_factory

    def build_message(self, event: NotificationEvent) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = event.title
        msg["From"] = self.config.sender
        msg["To"] = ", ".join(self.config.recipients)
        msg.set_content(event.message)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with self.smtp_factory(self.config.smtp_host, self.config.smtp_port) as smtp:
            smtp.send_message(msg)

    async def send(self, event: NotificationEvent) -> None:
        msg = self.build_message(event)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (OSError, smtplib.SMTPException) as exc:
            raise NotificationError(f"sending mail failed: {exc}") from exc


def build_receivers(config: ReceiversConfig) -> dict[str, Receiver]:
    """Instantiate every configured receiver, keyed by name."""
    receivers: dict[str, Receiver] = {}
    for pushover_cfg in config.pushover:
        receivers[pushover_cfg.name] = PushoverReceiver(pushover_cfg)
    for webhook_cfg in config.webhook:
        receivers[webhook_cfg.name] = WebhookReceiver(webhook_cfg)
    for email_cfg in config.email:
        receivers[email_cfg.name] = EmailReceiver(email_cfg)
    logger.debug(f"Created {len(receivers)} receiver(s)")
    return receivers
