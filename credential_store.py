"""
Credential store: user records, reset tokens, failed-login counters and
login sessions.

Only the auth service mutates password, lockout and reset fields.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, parse_object_id, utcnow
from errors import DuplicateEmail
from schemas import User


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserStore:
    def __init__(self, db: Database):
        self.collection = db["user"]

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"email": normalize_email(email)})

    def get_by_google_id(self, google_id: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"googleId": google_id})

    def create(self, email: str, username: str, password_hash: Optional[str] = None,
               google_id: Optional[str] = None, is_admin: bool = False) -> Dict[str, Any]:
        user = User(
            email=normalize_email(email),
            username=username.strip(),
            password=password_hash,
            googleId=google_id,
            isAdmin="true" if is_admin else "false",
        )
        data = user.model_dump()
        if google_id is None:
            # sparse unique index: leave the field out rather than storing null
            data.pop("googleId")
        try:
            user_id = create_document(self.collection.database, self.collection.name, data)
        except DuplicateKeyError:
            raise DuplicateEmail()
        return self.get(user_id)

    def update(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {**fields, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def link_google_id(self, user_id: str, google_id: str) -> Optional[Dict[str, Any]]:
        return self.update(user_id, {"googleId": google_id})

    def update_last_login(self, user_id: str, now: datetime) -> None:
        self.update(user_id, {"lastLoginAt": now})

    # --- lockout counters ---

    def record_failed_login(self, user_id: str, now: datetime, max_attempts: int,
                            lockout: timedelta) -> Dict[str, Any]:
        """Atomically bump the counter; lock the account once it reaches max_attempts."""
        user = self.collection.find_one_and_update(
            {"_id": parse_object_id(user_id)},
            {"$inc": {"failedLoginAttempts": 1}, "$set": {"updatedAt": now}},
            return_document=ReturnDocument.AFTER,
        )
        if user["failedLoginAttempts"] >= max_attempts:
            user = self.update(user_id, {"accountLockedUntil": now + lockout})
        return user

    def reset_failed_logins(self, user_id: str) -> None:
        self.update(user_id, {"failedLoginAttempts": 0, "accountLockedUntil": None})

    # --- password reset tokens ---

    def set_reset_token(self, email: str, token: str, expiry: datetime) -> None:
        self.collection.update_one(
            {"email": normalize_email(email)},
            {"$set": {"resetToken": token, "resetTokenExpiry": expiry, "updatedAt": utcnow()}},
        )

    def consume_reset_token(self, token: str, password_hash: str, now: datetime) -> Optional[Dict[str, Any]]:
        """Swap in the new password and clear token + lockout in one atomic update.

        Returns None when the token is unknown, expired or already used.
        """
        return self.collection.find_one_and_update(
            {"resetToken": token, "resetTokenExpiry": {"$gt": now}},
            {"$set": {
                "password": password_hash,
                "resetToken": None,
                "resetTokenExpiry": None,
                "failedLoginAttempts": 0,
                "accountLockedUntil": None,
                "updatedAt": now,
            }},
            return_document=ReturnDocument.AFTER,
        )



class SessionStore:
    """Server-side login sessions. The cookie only carries the random `key`."""

    def __init__(self, db: Database):
        self.collection = db["session"]

    def create(self, user_id: str, ttl: timedelta, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        key = secrets.token_urlsafe(32)
        self.collection.insert_one({
            "key": key,
            "userId": user_id,
            "createdAt": now,
            "expiresAt": now + ttl,
        })
        return key

    def user_id(self, key: str, now: Optional[datetime] = None) -> Optional[str]:
        """The user a live session belongs to, or None once it is deleted or expired."""
        if not key:
            return None
        doc = self.collection.find_one({"key": key, "expiresAt": {"$gt": now or utcnow()}})
        return doc["userId"] if doc else None

    def delete(self, key: str) -> None:
        if key:
            self.collection.delete_one({"key": key})
