"""Controlled registration and first-login 2FA tests."""

import asyncio

import pyotp
import pytest

from gatekeeper.app.core.errors import ErrorKind
from gatekeeper.app.schemas.registration import RegistrationStatus
from gatekeeper.app.schemas.user import UserRole
from gatekeeper.app.security.tokens import PASSWORD_ALPHABET, TokenGenerator
from gatekeeper.app.services.registration import sanitize_username
from gatekeeper.app.services.user_store import find_by_email

from conftest import ADMIN_EMAIL

ADMIN_ID = "admin-1"


async def _submit(services, email="carol.smith@example.org", full_name="Carol Smith"):
    result = await services.registration.submit(
        email, full_name, "Joining the ops team", "203.0.113.7", {"team": "ops"}
    )
    assert result.success, result.message
    return result.request_id


def _wrong_totp(secret: str) -> str:
    return f"{(int(pyotp.TOTP(secret).now()) + 500000) % 1000000:06d}"


@pytest.mark.asyncio
async def test_submit_notifies_admin_and_applicant(services, notifier) -> None:
    request_id = await _submit(services)
    await services.dispatcher.drain()

    pending = await services.registration.get_request(request_id)
    assert pending.status is RegistrationStatus.PENDING
    assert pending.ip_address == "203.0.113.7"
    assert pending.additional_info == {"team": "ops"}

    admin_notice = notifier.last_to(ADMIN_EMAIL)
    assert admin_notice.field("Request ID") == request_id
    assert admin_notice.field("IP Address") == "203.0.113.7"
    assert notifier.last_to("carol.smith@example.org").subject.startswith(
        "Registration Request Received"
    )


@pytest.mark.asyncio
async def test_duplicate_pending_request_is_refused(services) -> None:
    """Registration: one pending request per email, compared case-insensitively."""
    await _submit(services)
    duplicate = await services.registration.submit(
        "Carol.Smith@Example.org", "Carol", "again", "203.0.113.8"
    )
    assert not duplicate.success
    assert duplicate.error is ErrorKind.DUPLICATE_PENDING
    assert len(await services.registration.list_pending()) == 1


@pytest.mark.asyncio
async def test_existing_account_email_is_refused(services) -> None:
    result = await services.registration.submit(
        "alice@example.com", "Alice", "second account", "198.51.100.1"
    )
    assert result.error is ErrorKind.ALREADY_EXISTS


@pytest.mark.asyncio
async def test_resubmit_after_rejection_is_allowed(services) -> None:
    request_id = await _submit(services)
    await services.registration.reject(request_id, ADMIN_ID, "Incomplete details")
    again = await services.registration.submit(
        "carol.smith@example.org", "Carol Smith", "Now complete", "203.0.113.7"
    )
    assert again.success


@pytest.mark.asyncio
async def test_resubmit_after_approval_hits_existing_account(services) -> None:
    """Registration: once approved, the email belongs to an account and is refused."""
    request_id = await _submit(services)
    await services.registration.approve(request_id, ADMIN_ID)

    again = await services.registration.submit(
        "carol.smith@example.org", "Carol Smith", "second try", "203.0.113.7"
    )
    assert not again.success
    assert again.error is ErrorKind.ALREADY_EXISTS


@pytest.mark.asyncio
async def test_approve_provisions_account_and_emails_credentials(
    services, notifier, user_store
) -> None:
    """Registration: approval creates a 2FA-pending account with a one-time password."""
    request_id = await _submit(services)
    result = await services.registration.approve(request_id, ADMIN_ID)
    await services.dispatcher.drain()

    assert result.success
    issued = result.user
    assert issued.username == "carolsmith"
    assert issued.role is UserRole.USER
    assert issued.require_two_factor and not issued.two_factor_verified
    assert "password" not in result.model_dump_json().lower()

    credentials = notifier.last_to("carol.smith@example.org")
    assert credentials.field("Username") == "carolsmith"
    password = credentials.field("Password")
    assert len(password) == 12
    assert set(password) <= set(PASSWORD_ALPHABET)

    account = await user_store.get(issued.id)
    assert account.password_digest == TokenGenerator().digest(password)

    decided = await services.registration.get_request(request_id)
    assert decided.status is RegistrationStatus.APPROVED
    assert decided.decided_by == ADMIN_ID
    assert await services.registration.list_pending() == []
    assert len(await services.registration.list_all()) == 1


@pytest.mark.asyncio
async def test_approve_twice_fails(services) -> None:
    request_id = await _submit(services)
    await services.registration.approve(request_id, ADMIN_ID)
    second = await services.registration.approve(request_id, ADMIN_ID)

    assert not second.success
    assert second.error is ErrorKind.ALREADY_USED
    assert second.message == "This request has already been approved."


@pytest.mark.asyncio
async def test_approve_unknown_request(services) -> None:
    result = await services.registration.approve("missing", ADMIN_ID)
    assert result.error is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_short_local_part_is_padded_with_digits(services) -> None:
    request_id = await _submit(services, email="al@example.org", full_name="Al")
    result = await services.registration.approve(request_id, ADMIN_ID)

    username = result.user.username
    assert username.startswith("al")
    assert len(username) == 5
    assert username[2:].isdigit()


@pytest.mark.asyncio
async def test_taken_username_gets_digit_suffix(services) -> None:
    """Registration: a derived username never collides with an existing one."""
    request_id = await _submit(services, email="alice@elsewhere.org", full_name="Other Alice")
    result = await services.registration.approve(request_id, ADMIN_ID)

    assert result.success
    assert result.user.username != "alice"
    assert result.user.username.startswith("alice")


@pytest.mark.asyncio
async def test_explicit_username_too_short_releases_request(services) -> None:
    request_id = await _submit(services)
    failed = await services.registration.approve(request_id, ADMIN_ID, username="c!")
    assert failed.error is ErrorKind.MISMATCH
    assert (await services.registration.get_request(request_id)).status is RegistrationStatus.PENDING

    retried = await services.registration.approve(request_id, ADMIN_ID, username="carol_s")
    assert retried.success
    assert retried.user.username == "carols"


@pytest.mark.asyncio
async def test_reject_notifies_applicant_with_reason(services, notifier) -> None:
    request_id = await _submit(services)
    result = await services.registration.reject(request_id, ADMIN_ID, "Not <eligible>")
    await services.dispatcher.drain()

    assert result.success
    assert notifier.last_to("carol.smith@example.org").field("Reason") == "Not <eligible>"
    assert (await services.registration.get_request(request_id)).status is RegistrationStatus.REJECTED

    late = await services.registration.approve(request_id, ADMIN_ID)
    assert late.error is ErrorKind.ALREADY_USED
    assert late.message == "This request has already been rejected."


@pytest.mark.asyncio
async def test_concurrent_decisions_apply_once(services, user_store) -> None:
    """Registration: racing approvals and rejections produce one decision."""
    request_id = await _submit(services)
    results = await asyncio.gather(
        services.registration.approve(request_id, "admin-a"),
        services.registration.approve(request_id, "admin-b"),
        services.registration.reject(request_id, "admin-c", "dup"),
    )
    assert sum(r.success for r in results) == 1
    assert [r.error for r in results[1:]] == [ErrorKind.ALREADY_USED, ErrorKind.ALREADY_USED]
    accounts = [u for u in await user_store.list() if u.email == "carol.smith@example.org"]
    assert len(accounts) == 1


@pytest.mark.asyncio
async def test_create_account_directly(services, notifier, user_store) -> None:
    result = await services.registration.create_account_directly(
        "dave@example.org", "dave.ops", "Dave", ADMIN_ID, role=UserRole.ADMIN
    )
    await services.dispatcher.drain()

    assert result.success
    assert result.user.username == "daveops"
    assert result.user.role is UserRole.ADMIN
    assert notifier.last_to("dave@example.org").field("Username") == "daveops"
    assert (await find_by_email(user_store, "DAVE@example.org")).id == result.user.id


@pytest.mark.asyncio
async def test_create_account_rejects_duplicates(services) -> None:
    by_email = await services.registration.create_account_directly(
        "alice@example.com", "alice2", "Alice", ADMIN_ID
    )
    by_username = await services.registration.create_account_directly(
        "new@example.com", "ALICE", "Alice", ADMIN_ID
    )
    assert by_email.error is ErrorKind.ALREADY_EXISTS
    assert by_username.error is ErrorKind.ALREADY_EXISTS


@pytest.mark.asyncio
async def test_first_login_two_factor_handshake(services, notifier, user_store) -> None:
    """Registration: enroll TOTP on first login, verify, and receive backup codes."""
    request_id = await _submit(services)
    user_id = (await services.registration.approve(request_id, ADMIN_ID)).user.id

    first_login = await services.registration.handle_first_login(user_id)
    assert first_login.success
    setup = first_login.totp_setup
    assert setup.qr_code_data_url.startswith("data:image/png;base64,")

    wrong = await services.registration.complete_two_factor_setup(user_id, _wrong_totp(setup.secret))
    assert wrong.error is ErrorKind.MISMATCH
    assert not (await user_store.get(user_id)).two_factor_verified

    done = await services.registration.complete_two_factor_setup(
        user_id, pyotp.TOTP(setup.secret).now()
    )
    assert done.success
    assert len(done.backup_codes) == 10
    assert len(set(done.backup_codes)) == 10

    account = await user_store.get(user_id)
    assert account.two_factor_verified
    tokens = TokenGenerator()
    assert account.backup_code_digests == [tokens.digest(c) for c in done.backup_codes]

    again = await services.registration.handle_first_login(user_id)
    assert again.error is ErrorKind.ALREADY_VERIFIED
    repeat = await services.registration.complete_two_factor_setup(
        user_id, pyotp.TOTP(setup.secret).now()
    )
    assert repeat.error is ErrorKind.ALREADY_VERIFIED


@pytest.mark.asyncio
async def test_first_login_unknown_user(services) -> None:
    result = await services.registration.handle_first_login("ghost")
    assert result.error is ErrorKind.NOT_FOUND
    setup = await services.registration.complete_two_factor_setup("ghost", "123456")
    assert setup.error is ErrorKind.NOT_FOUND


def test_sanitize_username() -> None:
    assert sanitize_username("j.doe+test") == "jdoetest"
    assert sanitize_username("__") == ""
