"""Tests for notification delivery providers."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import requests

from crmcollab.collaboration.models import Notification, NotificationType
from crmcollab.collaboration.notifiers import (
    ConsoleNotifier,
    NotificationDispatcher,
    NotificationProvider,
    WebhookNotifier,
)


def _notification(**kw) -> Notification:
    data = {
        "user_id": "u2",
        "type": NotificationType.MENTION,
        "title": "Alice mentioned you",
        "message": "Hey @bob",
        "entity_type": "task",
        "entity_id": "t1",
    }
    data.update(kw)
    return Notification(**data)


class _FailingProvider(NotificationProvider):
    @property
    def name(self) -> str:
        return "failing"

    def notify(self, notification: Notification) -> bool:
        raise RuntimeError("boom")

    def is_available(self) -> bool:
        return True


class TestConsoleNotifier:
    def test_records(self) -> None:
        notifier = ConsoleNotifier()
        assert notifier.notify(_notification())
        assert notifier.is_available()
        assert [n.title for n in notifier.log] == ["Alice mentioned you"]


class TestWebhookNotifier:
    def test_not_available_without_url(self) -> None:
        notifier = WebhookNotifier()
        assert not notifier.is_available()
        assert not notifier.notify(_notification())

    def test_posts_json(self) -> None:
        notifier = WebhookNotifier("https://hooks.example.org/x", timeout=5)
        response = MagicMock(status_code=204)
        with patch("crmcollab.collaboration.notifiers.requests.post", return_value=response) as post:
            assert notifier.notify(_notification())

        args, kwargs = post.call_args
        assert args[0] == "https://hooks.example.org/x"
        assert kwargs["timeout"] == 5
        body = kwargs["json"]
        assert body["type"] == "mention"
        assert body["user_id"] == "u2"
        assert body["text"] == "Alice mentioned you: Hey @bob"

    def test_error_status(self) -> None:
        notifier = WebhookNotifier("https://hooks.example.org/x")
        with patch(
            "crmcollab.collaboration.notifiers.requests.post",
            return_value=MagicMock(status_code=500),
        ):
            assert not notifier.notify(_notification())

    def test_network_error(self) -> None:
        notifier = WebhookNotifier("https://hooks.example.org/x")
        with patch(
            "crmcollab.collaboration.notifiers.requests.post",
            side_effect=requests.ConnectionError("refused"),
        ):
            assert not notifier.notify(_notification())


class TestNotificationDispatcher:
    def test_console_always_present(self) -> None:
        dispatcher = NotificationDispatcher()
        assert dispatcher.dispatch(_notification()) == {"console": True}
        assert len(dispatcher.console.log) == 1

    def test_unavailable_provider_skipped(self) -> None:
        dispatcher = NotificationDispatcher([WebhookNotifier()])
        assert dispatcher.dispatch(_notification()) == {"console": True}

    def test_failing_provider_isolated(self) -> None:
        dispatcher = NotificationDispatcher()
        dispatcher.add_provider(_FailingProvider())
        assert dispatcher.dispatch(_notification()) == {"console": True, "failing": False}
