"""Operator notification backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol, Sequence

import httpx
from loguru import logger

NotificationLevel = Literal["info", "warning", "alert"]


class Notifier(Protocol):
    """Fire-and-forget operational message sink."""

    async def notify(self, message: str, *, level: NotificationLevel = "info") -> None:
        ...


class SlackWebhookNotifier:
    """Posts messages to a Slack incoming webhook.

    Delivery failures are logged and swallowed so that notifications never
    interrupt a settlement run.
    """

    def __init__(
        self,
        webhook_url: str | None,
        *,
        channel: str | None = None,
        mentions: Sequence[str] = (),
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._mentions = list(mentions)
        self._http_client = http_client

    async def notify(self, message: str, *, level: NotificationLevel = "info") -> None:
        if not self._webhook_url:
            logger.info("Slack webhook not configured; notification logged only", level=level, text=message)
            return

        text = message
        if level == "alert" and self._mentions:
            text = " ".join(self._mentions) + "\n" + message
        elif level == "warning":
            text = ":warning: " + message
        payload: dict[str, str] = {"text": text}
        if self._channel:
            payload["channel"] = self._channel

        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=10)
            close_client = True

        try:
            response = await client.post(self._webhook_url, json=payload)
            response.raise_for_status()
        except Exception as exc:
            logger.exception("Rewards slack dispatch failed", error=str(exc))
        finally:
            if close_client:
                await client.aclose()


@dataclass(slots=True)
class SentNotification:
    message: str
    level: NotificationLevel


@dataclass(slots=True)
class InMemoryNotifier:
    """Collects notifications in memory for tests."""

    sent: list[SentNotification] = field(default_factory=list)

    async def notify(self, message: str, *, level: NotificationLevel = "info") -> None:
        self.sent.append(SentNotification(message=message, level=level))

    def messages(self, level: NotificationLevel | None = None) -> list[str]:
        return [entry.message for entry in self.sent if level is None or entry.level == level]


__all__ = ["InMemoryNotifier", "NotificationLevel", "Notifier", "SentNotification", "SlackWebhookNotifier"]
