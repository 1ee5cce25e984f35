# gatekeeper/app/services/notifier.py
"""
Outbound notification channel.

Notifications are best-effort: the flows hand messages to a
NotificationDispatcher, which sends them as background tasks. A failed or
slow send is logged and never affects the state transition that caused it.
"""
import asyncio
import logging
from typing import Optional, Protocol, Set

import aiohttp

from gatekeeper.app.core.config import Settings
from gatekeeper.app.core.errors import ErrorKind

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, to: str, subject: str, html: str) -> bool: ...


class LogNotifier:
    """Development notifier: logs instead of sending."""

    def __init__(self, show_body: bool = False) -> None:
        self._show_body = show_body

    async def send(self, to: str, subject: str, html: str) -> bool:
        logger.info("[DEV MODE] email to=%s subject=%r", to, subject)
        if self._show_body:
            logger.debug("[DEV MODE] body for %s:\n%s", to, html)
        return True


class EmailApiNotifier:
    """
    Transactional email over an HTTP API (Brevo-compatible payload).

    Retries with exponential backoff on transport errors and 5xx/429
    responses; gives up after `max_retries` attempts.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str,
        from_address: str,
        from_name: str,
        max_retries: int = 3,
        timeout_seconds: float = 10.0,
        backoff_seconds: float = 0.5,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._from_address = from_address
        self._from_name = from_name
        self._max_retries = max(1, max_retries)
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._backoff_seconds = backoff_seconds

    def _payload(self, to: str, subject: str, html: str) -> dict:
        return {
            "sender": {"name": self._from_name, "email": self._from_address},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
        }

    async def send(self, to: str, subject: str, html: str) -> bool:
        headers = {"api-key": self._api_key, "Content-Type": "application/json"}
        payload = self._payload(to, subject, html)

        for attempt in range(1, self._max_retries + 1):
            try:
                async with aiohttp.ClientSession(timeout=self._timeout) as session:
                    async with session.post(
                        self._api_url, json=payload, headers=headers
                    ) as response:
                        if 200 <= response.status < 300:
                            logger.info("[EMAIL SENT] to=%s subject=%r", to, subject)
                            return True
                        body = await response.text()
                        retryable = response.status == 429 or response.status >= 500
                        logger.warning(
                            "[EMAIL ERROR] to=%s status=%s attempt=%d body=%s",
                            to, response.status, attempt, body[:200],
                        )
                        if not retryable:
                            return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "[EMAIL ERROR] to=%s attempt=%d error=%s", to, attempt, exc
                )

            if attempt < self._max_retries:
                await asyncio.sleep(self._backoff_seconds * (2 ** (attempt - 1)))

        return False


def build_notifier(settings: Settings) -> Notifier:
    if not settings.email_enabled:
        logger.info("No EMAIL_API_KEY configured, email notifications are logged only")
        return LogNotifier(show_body=not settings.is_production)
    return EmailApiNotifier(
        api_key=settings.EMAIL_API_KEY,
        api_url=settings.EMAIL_API_URL,
        from_address=settings.EMAIL_FROM_ADDRESS,
        from_name=settings.EMAIL_FROM_NAME,
        max_retries=settings.EMAIL_MAX_RETRIES,
        timeout_seconds=settings.EMAIL_TIMEOUT_SECONDS,
    )


class NotificationDispatcher:
    """Fire-and-forget wrapper around a Notifier."""

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, to: str, subject: str, html: str) -> None:
        """Schedule a send on the running loop and return immediately."""
        task = asyncio.get_running_loop().create_task(
            self._deliver(to, subject, html)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, to: str, subject: str, html: str) -> None:
        try:
            delivered = await self._notifier.send(to, subject, html)
        except Exception:
            logger.exception(
                "%s: unexpected error sending %r to %s",
                ErrorKind.NOTIFICATION_FAILED.value, subject, to,
            )
            return
        if not delivered:
            logger.warning(
                "%s: %r to %s was not delivered",
                ErrorKind.NOTIFICATION_FAILED.value, subject, to,
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight sends (shutdown, tests)."""
        if not self._pending:
            return
        tasks = list(self._pending)
        done, not_done = await asyncio.wait(tasks, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)
            logger.warning("Cancelled %d undelivered notifications", len(not_done))
