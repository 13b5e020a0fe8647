from urllib.parse import parse_qs, urlparse

import pytest

from auth import Principal, is_locked, minutes_left
from errors import (
    AccountLocked, DuplicateEmail, Forbidden, InvalidCredentials,
    InvalidOrExpiredToken, Unauthorized, ValidationError,
)


def token_from(link):
    return parse_qs(urlparse(link).query)["token"][0]


def fail_logins(auth_service, times, email="alice@example.com"):
    for _ in range(times):
        with pytest.raises((InvalidCredentials, AccountLocked)):
            auth_service.login(email, "wrong-password")


def test_signup_then_login(auth_service):
    user, token = auth_service.signup("a@x.com", "alice", "secret1")
    assert user["email"] == "a@x.com"
    assert token

    user, token = auth_service.login("a@x.com", "secret1")
    assert user["isAdmin"] is False
    assert user["username"] == "alice"
    assert "password" not in user
    assert auth_service.decode_token(token) == user["id"]


def test_signup_normalizes_email_and_rejects_duplicates(auth_service, users):
    auth_service.signup("  Alice@Example.COM ", "alice", "secret1")
    assert users.get_by_email("alice@example.com") is not None

    with pytest.raises(DuplicateEmail):
        auth_service.signup("alice@example.com", "alice2", "secret2")


@pytest.mark.parametrize("email,username,password", [
    ("not-an-email", "alice", "secret1"),
    ("a@x.com", "al", "secret1"),
    ("a@x.com", "alice", "short"),
    ("", "alice", "secret1"),
])
def test_signup_validation(auth_service, email, username, password):
    with pytest.raises(ValidationError):
        auth_service.signup(email, username, password)


def test_login_unknown_email(auth_service):
    with pytest.raises(InvalidCredentials):
        auth_service.login("nobody@example.com", "secret1")


def test_login_rejects_oauth_only_account(auth_service, users):
    users.create("g@example.com", "googler", google_id="google-123")
    with pytest.raises(InvalidCredentials):
        auth_service.login("g@example.com", "anything")


def test_failed_logins_count_down_then_lock(auth_service, make_user, users):
    make_user()
    for remaining in (4, 3, 2, 1):
        with pytest.raises(InvalidCredentials) as exc:
            auth_service.login("alice@example.com", "wrong-password")
        assert exc.value.extra["remainingAttempts"] == remaining

    with pytest.raises(AccountLocked) as exc:
        auth_service.login("alice@example.com", "wrong-password")
    assert exc.value.extra["minutesLeft"] == 15

    user = users.get_by_email("alice@example.com")
    assert user["failedLoginAttempts"] == 5
    assert user["accountLockedUntil"] is not None


def test_locked_account_rejects_correct_password(auth_service, make_user, clock, users):
    make_user()
    fail_logins(auth_service, 5)
    clock.advance(minutes=3)

    with pytest.raises(AccountLocked) as exc:
        auth_service.login("alice@example.com", "secret1")
    assert exc.value.extra["minutesLeft"] == 12
    # no comparison happened, so the counter did not move
    assert users.get_by_email("alice@example.com")["failedLoginAttempts"] == 5


def test_lock_expires_and_successful_login_resets(auth_service, make_user, clock, users):
    make_user()
    fail_logins(auth_service, 5)
    clock.advance(minutes=16)

    user, _ = auth_service.login("alice@example.com", "secret1")
    stored = users.get(user["id"])
    assert stored["failedLoginAttempts"] == 0
    assert stored["accountLockedUntil"] is None
    assert stored["lastLoginAt"] == clock.now


def test_expired_lock_starts_a_fresh_window(auth_service, make_user, clock):
    make_user()
    fail_logins(auth_service, 5)
    clock.advance(minutes=16)

    with pytest.raises(InvalidCredentials) as exc:
        auth_service.login("alice@example.com", "wrong-password")
    assert exc.value.extra["remainingAttempts"] == 4


def test_successful_login_clears_partial_failures(auth_service, make_user, users):
    make_user()
    fail_logins(auth_service, 3)
    auth_service.login("alice@example.com", "secret1")
    assert users.get_by_email("alice@example.com")["failedLoginAttempts"] == 0


def test_lock_helpers(clock):
    assert not is_locked(None, clock.now)
    assert not is_locked(clock.now, clock.now)
    clock_later = clock.now.replace(minute=10)
    assert is_locked(clock_later, clock.now)
    assert minutes_left(clock.now.replace(second=30), clock.now) == 1


def test_forgot_password_reply_is_generic(auth_service, make_user, reset_links):
    make_user()
    unknown = auth_service.forgot_password("nobody@example.com")
    known = auth_service.forgot_password("alice@example.com")
    assert unknown == known
    assert [email for email, _ in reset_links] == ["alice@example.com"]


def test_forgot_password_rejects_malformed_email(auth_service):
    with pytest.raises(ValidationError):
        auth_service.forgot_password("nope")


def test_reset_token_works_exactly_once(auth_service, make_user, reset_links):
    make_user()
    auth_service.forgot_password("alice@example.com")
    token = token_from(reset_links[0][1])
    assert len(token) == 64

    auth_service.reset_password(token, "newsecret1")
    with pytest.raises(InvalidOrExpiredToken):
        auth_service.reset_password(token, "othersecret1")

    auth_service.login("alice@example.com", "newsecret1")
    with pytest.raises(InvalidCredentials):
        auth_service.login("alice@example.com", "secret1")


def test_reset_token_expires_after_an_hour(auth_service, make_user, reset_links, clock):
    make_user()
    auth_service.forgot_password("alice@example.com")
    clock.advance(minutes=61)
    with pytest.raises(InvalidOrExpiredToken):
        auth_service.reset_password(token_from(reset_links[0][1]), "newsecret1")


def test_new_reset_request_replaces_old_token(auth_service, make_user, reset_links):
    make_user()
    auth_service.forgot_password("alice@example.com")
    auth_service.forgot_password("alice@example.com")
    first, second = (token_from(url) for _, url in reset_links)

    with pytest.raises(InvalidOrExpiredToken):
        auth_service.reset_password(first, "newsecret1")
    auth_service.reset_password(second, "newsecret1")


def test_reset_password_unlocks_account(auth_service, make_user, reset_links, users):
    make_user()
    fail_logins(auth_service, 5)

    auth_service.forgot_password("alice@example.com")
    auth_service.reset_password(token_from(reset_links[0][1]), "newsecret1")

    stored = users.get_by_email("alice@example.com")
    assert stored["failedLoginAttempts"] == 0
    assert stored["accountLockedUntil"] is None
    assert stored["resetToken"] is None
    auth_service.login("alice@example.com", "newsecret1")


def test_reset_password_validates_new_password(auth_service, make_user, reset_links):
    make_user()
    auth_service.forgot_password("alice@example.com")
    with pytest.raises(ValidationError):
        auth_service.reset_password(token_from(reset_links[0][1]), "123")


def test_oauth_creates_passwordless_user(auth_service):
    user = auth_service.oauth_login({"sub": "g-1", "email": "New@Example.com", "name": "New Person"})
    assert user["googleId"] == "g-1"
    assert user["email"] == "new@example.com"
    assert user["username"] == "New Person"
    assert user["password"] is None

    again = auth_service.oauth_login({"sub": "g-1", "email": "new@example.com", "name": "New Person"})
    assert again["_id"] == user["_id"]


def test_oauth_links_existing_password_account(auth_service, make_user):
    existing = make_user()
    user = auth_service.oauth_login({"sub": "g-2", "email": "alice@example.com", "name": None})
    assert user["_id"] == existing["_id"]
    assert user["googleId"] == "g-2"
    # both credentials remain usable
    auth_service.login("alice@example.com", "secret1")


def test_oauth_username_falls_back_to_email_prefix(auth_service):
    user = auth_service.oauth_login({"sub": "g-3", "email": "zed@example.com"})
    assert user["username"] == "zed"


def test_bearer_token_rejects_garbage(auth_service):
    assert auth_service.decode_token("not.a.token") is None


def test_authorization_checks(auth_service, make_user):
    alice = make_user()
    admin = make_user("boss@example.com", "boss", "bosspass1", is_admin=True)

    with pytest.raises(Unauthorized):
        auth_service.current_user(Principal(session_id="s1"))
    with pytest.raises(Forbidden):
        auth_service.require_admin(Principal(session_id="s1", user_id=str(alice["_id"])))
    assert auth_service.require_admin(Principal(session_id="s2", user_id=str(admin["_id"])))["_id"] == admin["_id"]
    with pytest.raises(Unauthorized):
        auth_service.current_user(Principal(session_id="s3", user_id="000000000000000000000000"))
