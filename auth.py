"""
Authentication & authorization.

Password login with failed-attempt lockout, signup, password reset tokens,
Google sign-in and the request principal that handlers authorize against.
Session cookies are handled by the web layer; this module only decides who
the caller is and returns what the session should hold.
"""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import jwt
from email_validator import EmailNotValidError, validate_email
from passlib.context import CryptContext

from cart import Owner
from config import (
    BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_EXPIRY_DAYS, JWT_SECRET, LOCKOUT_MINUTES,
    MAX_FAILED_LOGINS, PUBLIC_URL, RESET_TOKEN_TTL_MINUTES,
)
from credential_store import UserStore, normalize_email
from database import utcnow
from errors import (
    AccountLocked, DuplicateEmail, Forbidden, InvalidCredentials,
    InvalidOrExpiredToken, Unauthorized, ValidationError,
)
from schemas import is_admin_flag

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

RESET_ACK = "If that email exists, a reset link has been sent"


@dataclass(frozen=True)
class Principal:
    """Who is making the request: always a session, sometimes a signed-in user."""
    session_id: str
    user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def owner(self) -> Owner:
        if self.user_id:
            return Owner.user(self.user_id)
        return Owner.session(self.session_id)


def is_locked(locked_until: Optional[datetime], now: datetime) -> bool:
    return locked_until is not None and locked_until > now


def minutes_left(locked_until: datetime, now: datetime) -> int:
    return max(1, math.ceil((locked_until - now).total_seconds() / 60))


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """The user fields a client may see. Never includes the password hash."""
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "username": user["username"],
        "googleId": user.get("googleId"),
        "isAdmin": is_admin_flag(user.get("isAdmin")),
    }


def log_reset_link(email: str, url: str) -> None:
    logger.info("Password reset requested for %s; reset URL: %s (expires in %d minutes)",
                email, url, RESET_TOKEN_TTL_MINUTES)


class AuthService:
    def __init__(self, users: UserStore, password_context: CryptContext = pwd_context,
                 clock: Callable[[], datetime] = utcnow,
                 send_reset_link: Callable[[str, str], None] = log_reset_link,
                 jwt_secret: str = JWT_SECRET):
        self.users = users
        self.pwd = password_context
        self.clock = clock
        self.send_reset_link = send_reset_link
        self.jwt_secret = jwt_secret

    # --- tokens ---

    def issue_token(self, user_id: str) -> str:
        exp = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRY_DAYS)
        return jwt.encode({"userId": user_id, "exp": exp}, self.jwt_secret, algorithm=JWT_ALGORITHM)

    def decode_token(self, token: str) -> Optional[str]:
        """Return the user id carried by a bearer token, or None if it is invalid or expired."""
        try:
            claims = jwt.decode(token, self.jwt_secret, algorithms=[JWT_ALGORITHM])
        except jwt.PyJWTError:
            return None
        return claims.get("userId")

    # --- validation ---

    @staticmethod
    def _check_email(email: str) -> str:
        try:
            validate_email((email or "").strip(), check_deliverability=False)
        except EmailNotValidError:
            raise ValidationError("Invalid email address")
        return normalize_email(email)

    @staticmethod
    def _check_password(password: str) -> None:
        if not password or len(password) < 6:
            raise ValidationError("Password must be at least 6 characters")

    # --- flows ---

    def signup(self, email: str, username: str, password: str) -> Tuple[Dict[str, Any], str]:
        """Create a password account. Returns (public user, bearer token)."""
        email = self._check_email(email)
        username = (username or "").strip()
        if not 3 <= len(username) <= 50:
            raise ValidationError("Username must be between 3 and 50 characters")
        self._check_password(password)
        if self.users.get_by_email(email):
            raise DuplicateEmail()

        user = self.users.create(email, username, password_hash=self.pwd.hash(password))
        user_id = str(user["_id"])
        self.users.update_last_login(user_id, self.clock())
        logger.info("New account %s created", user_id)
        return public_user(user), self.issue_token(user_id)

    def login(self, email: str, password: str) -> Tuple[Dict[str, Any], str]:
        """Check a password login against the lockout policy. Returns (public user, bearer token)."""
        user = self.users.get_by_email(email)
        if not user or not user.get("password"):
            raise InvalidCredentials()

        user_id = str(user["_id"])
        now = self.clock()
        locked_until = user.get("accountLockedUntil")
        if is_locked(locked_until, now):
            minutes = minutes_left(locked_until, now)
            raise AccountLocked(
                "Account temporarily locked due to multiple failed login attempts. "
                f"Please try again in {minutes} minute(s).",
                minutesLeft=minutes,
            )
        if locked_until is not None:
            # the previous lock has run out: start a fresh attempt window
            self.users.reset_failed_logins(user_id)

        if not self.pwd.verify(password or "", user["password"]):
            user = self.users.record_failed_login(
                user_id, now, MAX_FAILED_LOGINS, timedelta(minutes=LOCKOUT_MINUTES))
            remaining = MAX_FAILED_LOGINS - user["failedLoginAttempts"]
            if remaining > 0:
                logger.info("Failed login for %s, %d attempt(s) remaining", user_id, remaining)
                raise InvalidCredentials(
                    f"Invalid email or password. {remaining} attempt(s) remaining before account lockout.",
                    remainingAttempts=remaining,
                )
            logger.warning("Account %s locked after %d failed logins", user_id, MAX_FAILED_LOGINS)
            raise AccountLocked(
                f"Account locked due to multiple failed login attempts. "
                f"Please try again in {LOCKOUT_MINUTES} minutes.",
                minutesLeft=LOCKOUT_MINUTES,
            )

        self.users.reset_failed_logins(user_id)
        self.users.update_last_login(user_id, now)
        return public_user(user), self.issue_token(user_id)

    def forgot_password(self, email: str) -> str:
        """Issue a reset token if the account exists. The reply never says whether it does."""
        email = self._check_email(email)
        user = self.users.get_by_email(email)
        if user is None:
            return RESET_ACK

        token = secrets.token_hex(32)
        expiry = self.clock() + timedelta(minutes=RESET_TOKEN_TTL_MINUTES)
        self.users.set_reset_token(email, token, expiry)
        self.send_reset_link(email, f"{PUBLIC_URL}/reset-password?token={token}")
        return RESET_ACK

    def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset token. Also clears any lockout on the account."""
        if not token:
            raise InvalidOrExpiredToken()
        self._check_password(new_password)
        user = self.users.consume_reset_token(token, self.pwd.hash(new_password), self.clock())
        if user is None:
            raise InvalidOrExpiredToken()
        logger.info("Password reset completed for %s", user["_id"])

    def oauth_login(self, identity: Dict[str, Any]) -> Dict[str, Any]:
        """Resolve a verified Google identity to a user, creating or linking as needed."""
        google_id = identity["sub"]
        email = identity["email"]
        user = self.users.get_by_google_id(google_id) or self.users.get_by_email(email)
        if user is None:
            username = identity.get("name") or email.split("@")[0]
            try:
                user = self.users.create(email, username, google_id=google_id)
            except DuplicateEmail:
                # created concurrently by another callback
                user = self.users.get_by_email(email)
        if not user.get("googleId"):
            user = self.users.link_google_id(str(user["_id"]), google_id)
        self.users.update_last_login(str(user["_id"]), self.clock())
        return user

    # --- authorization ---

    def current_user(self, principal: Principal) -> Dict[str, Any]:
        if not principal.is_authenticated:
            raise Unauthorized()
        user = self.users.get(principal.user_id)
        if user is None:
            raise Unauthorized()
        return user

    def require_admin(self, principal: Principal) -> Dict[str, Any]:
        user = self.current_user(principal)
        if not is_admin_flag(user.get("isAdmin")):
            raise Forbidden("Admin access required")
        return user

    def is_admin(self, principal: Principal) -> bool:
        if not principal.is_authenticated:
            return False
        user = self.users.get(principal.user_id)
        return user is not None and is_admin_flag(user.get("isAdmin"))
