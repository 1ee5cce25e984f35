"""Notification channel tests."""

import asyncio

import pytest

from gatekeeper.app.core.config import Settings
from gatekeeper.app.services.notifier import (
    EmailApiNotifier,
    LogNotifier,
    NotificationDispatcher,
    build_notifier,
)

from conftest import RecordingNotifier


@pytest.mark.asyncio
async def test_dispatch_returns_before_delivery() -> None:
    gate = asyncio.Event()
    delivered = []

    class SlowNotifier:
        async def send(self, to, subject, html):
            await gate.wait()
            delivered.append(to)
            return True

    dispatcher = NotificationDispatcher(SlowNotifier())
    dispatcher.dispatch("ops@example.com", "subject", "<p>body</p>")
    assert dispatcher.pending == 1
    assert delivered == []

    gate.set()
    await dispatcher.drain()
    assert delivered == ["ops@example.com"]
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_delivery_errors_are_logged_not_raised(caplog) -> None:
    notifier = RecordingNotifier()
    notifier.fail = True
    dispatcher = NotificationDispatcher(notifier)

    dispatcher.dispatch("ops@example.com", "Alert", "<p>body</p>")
    await dispatcher.drain()

    assert "notification_failed" in caplog.text


@pytest.mark.asyncio
async def test_drain_cancels_stuck_sends() -> None:
    class HangingNotifier:
        async def send(self, to, subject, html):
            await asyncio.sleep(60)
            return True

    dispatcher = NotificationDispatcher(HangingNotifier())
    dispatcher.dispatch("ops@example.com", "subject", "body")
    await dispatcher.drain(timeout=0.01)
    assert dispatcher.pending == 0


def test_build_notifier_picks_channel() -> None:
    assert isinstance(build_notifier(Settings(EMAIL_API_KEY="")), LogNotifier)
    assert isinstance(build_notifier(Settings(EMAIL_API_KEY="key-123")), EmailApiNotifier)


def test_email_api_payload_shape() -> None:
    notifier = EmailApiNotifier(
        api_key="key",
        api_url="https://mail.invalid/v3/smtp/email",
        from_address="security@example.com",
        from_name="Security",
    )
    payload = notifier._payload("user@example.com", "Hello", "<p>hi</p>")
    assert payload["sender"] == {"name": "Security", "email": "security@example.com"}
    assert payload["to"] == [{"email": "user@example.com"}]
    assert payload["htmlContent"] == "<p>hi</p>"
