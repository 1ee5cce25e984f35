"""Test configuration."""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from html import unescape
from typing import List

import pytest

from gatekeeper.app.core.config import Settings
from gatekeeper.app.schemas.user import UserAccount, UserRole
from gatekeeper.app.security.tokens import TokenGenerator
from gatekeeper.app.services.container import IdentityServices, build_services
from gatekeeper.app.services.user_store import InMemoryUserStore

ADMIN_EMAIL = "admin@gatekeeper.test"
ALICE_PASSWORD = "CorrectHorse9!"
EMERGENCY_CODE = "known-emergency-code"
TEST_SECRET_KEY = "test-suite-secret"

_STRONG = re.compile(r"<strong>([^<]+)</strong>")


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str

    def strong_values(self) -> List[str]:
        return _STRONG.findall(self.html)

    def field(self, label: str) -> str:
        """Value printed after a bold `label:` in the body."""
        match = re.search(rf"{label}:</strong> ([^<]+)</p>", self.html)
        return unescape(match.group(1).strip())


class RecordingNotifier:
    """Notifier that records every message; can be told to fail."""

    def __init__(self) -> None:
        self.sent: List[SentEmail] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str) -> bool:
        if self.fail:
            raise ConnectionError("mail relay unreachable")
        self.sent.append(SentEmail(to, subject, html))
        return True

    def to(self, address: str) -> List[SentEmail]:
        return [message for message in self.sent if message.to == address]

    def last_to(self, address: str) -> SentEmail:
        return self.to(address)[-1]


def make_user(
    username: str,
    email: str,
    password: str,
    role: UserRole = UserRole.USER,
    two_factor_verified: bool = True,
) -> UserAccount:
    return UserAccount(
        id=f"user-{username}",
        username=username,
        email=email,
        full_name=username.title(),
        password_digest=TokenGenerator().digest(password),
        role=role,
        two_factor_verified=two_factor_verified,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def alice() -> UserAccount:
    return make_user("alice", "alice@example.com", ALICE_PASSWORD)


@pytest.fixture
def user_store(alice: UserAccount) -> InMemoryUserStore:
    return InMemoryUserStore([alice])


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        SECRET_KEY=TEST_SECRET_KEY,
        ADMIN_EMAIL=ADMIN_EMAIL,
        EMAIL_API_KEY="",
        EMERGENCY_CODE_DIGEST=TokenGenerator().digest(EMERGENCY_CODE),
        MAX_FAILED_ATTEMPTS=3,
        CORS_ORIGINS="",
    )


@pytest.fixture
def services(
    test_settings: Settings,
    user_store: InMemoryUserStore,
    notifier: RecordingNotifier,
    clock: FakeClock,
) -> IdentityServices:
    return build_services(test_settings, user_store, notifier=notifier, clock=clock)
