"""
Domain errors. Each carries the HTTP status it maps to and a message that is
safe to show to the caller.
"""

from typing import Any, Dict, Optional


class StorefrontError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationError(StorefrontError):
    status_code = 400
    default_message = "Invalid request"


class DuplicateEmail(StorefrontError):
    status_code = 400
    default_message = "Email already registered"


class InvalidCredentials(StorefrontError):
    status_code = 401
    default_message = "Invalid email or password"


class AccountLocked(StorefrontError):
    status_code = 423
    default_message = "Account temporarily locked"


class InvalidOrExpiredToken(StorefrontError):
    status_code = 400
    default_message = "Invalid or expired reset token"


class Unauthorized(StorefrontError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(StorefrontError):
    status_code = 403
    default_message = "Access denied"


class NotFound(StorefrontError):
    status_code = 404
    default_message = "Not found"


class EmptyCart(StorefrontError):
    status_code = 400
    default_message = "Cart is empty"


class InvalidStatus(StorefrontError):
    status_code = 400
    default_message = "Invalid status"


class InternalError(StorefrontError):
    status_code = 500
