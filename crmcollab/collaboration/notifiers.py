"""Notification delivery providers — console and JSON webhook."""

from __future__ import annotations

import abc
import logging
from typing import Any

import requests

from crmcollab.config import WEBHOOK_TIMEOUT
from crmcollab.collaboration.models import Notification

logger = logging.getLogger(__name__)


class NotificationProvider(abc.ABC):
    """Abstract notification delivery channel."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider name."""

    @abc.abstractmethod
    def notify(self, notification: Notification) -> bool:
        """Deliver a stored notification. Returns True on success."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Return True if provider is ready to send."""


class ConsoleNotifier(NotificationProvider):
    """Always-available provider that writes notifications to the log."""

    def __init__(self) -> None:
        self._log: list[Notification] = []

    @property
    def name(self) -> str:
        return "console"

    def notify(self, notification: Notification) -> bool:
        self._log.append(notification)
        logger.info(
            "[notify] %s -> user=%s: %s", notification.type.value, notification.user_id,
            notification.title,
        )
        return True

    def is_available(self) -> bool:
        return True

    @property
    def log(self) -> list[Notification]:
        """Access the in-memory log for testing."""
        return list(self._log)


class WebhookNotifier(NotificationProvider):
    """POST each notification as JSON to a webhook URL."""

    def __init__(self, webhook_url: str | None = None, timeout: float = WEBHOOK_TIMEOUT) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "webhook"

    def is_available(self) -> bool:
        return bool(self._webhook_url)

    def notify(self, notification: Notification) -> bool:
        if not self.is_available():
            logger.warning("Webhook notifier has no URL, skipping.")
            return False

        try:
            resp = requests.post(
                self._webhook_url,
                json=_payload(notification),
                timeout=self._timeout,
            )
            return resp.status_code in (200, 201, 202, 204)
        except requests.RequestException as exc:
            logger.warning("Webhook notification failed: %s", exc)
            return False


class NotificationDispatcher:
    """Fan a notification out to every configured provider.

    Always includes a ConsoleNotifier as the default provider.
    """

    def __init__(self, providers: list[NotificationProvider] | None = None) -> None:
        self._console = ConsoleNotifier()
        self._providers: list[NotificationProvider] = [self._console]
        if providers:
            self._providers.extend(providers)

    def add_provider(self, provider: NotificationProvider) -> None:
        self._providers.append(provider)

    @property
    def providers(self) -> tuple[NotificationProvider, ...]:
        return tuple(self._providers)

    @property
    def console(self) -> ConsoleNotifier:
        """Access the built-in console notifier (useful for testing)."""
        return self._console

    def dispatch(self, notification: Notification) -> dict[str, bool]:
        """Deliver to all available providers; returns provider name -> success."""
        results: dict[str, bool] = {}
        for provider in self._providers:
            if not provider.is_available():
                continue
            try:
                results[provider.name] = provider.notify(notification)
            except Exception:
                logger.exception("Provider %s failed", provider.name)
                results[provider.name] = False
        return results


def _payload(notification: Notification) -> dict[str, Any]:
    """Webhook body: the notification plus a one-line text summary."""
    data = notification.model_dump(mode="json")
    text = notification.title
    if notification.message:
        text = f"{text}: {notification.message}"
    data["text"] = text
    return data
