"""
Auth handlers: signup, login, token refresh, logout, token verification,
password reset request and profile updates.
"""

import logging
import secrets
import time
from typing import Any, Optional

from estate_rpc.handlers.tokens import TokenIssuer, hash_password, hash_token, verify_password
from estate_rpc.models.actions import AuthAction, Topic
from estate_rpc.models.envelope import error_envelope, success_envelope
from estate_rpc.registry import ActionTable
from estate_rpc.storage import Database

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
RESET_TOKEN_TTL = 3600


def _missing(payload: dict[str, Any], *fields: str) -> bool:
    return any(not payload.get(f) for f in fields)


def _public(user: dict[str, Any]) -> dict[str, Any]:
    return {"id": user["id"], "name": user["name"], "email": user["email"]}


class AuthHandlers:
    def __init__(self, db: Database, tokens: TokenIssuer):
        self._db = db
        self._tokens = tokens

    def table(self) -> ActionTable:
        return ActionTable(Topic.AUTH, {
            AuthAction.SIGNUP: self.signup,
            AuthAction.LOGIN: self.login,
            AuthAction.REFRESH_TOKEN: self.refresh_token,
            AuthAction.LOGOUT: self.logout,
            AuthAction.VERIFY_AUTH: self.verify_auth,
            AuthAction.FORGOT_PASSWORD: self.forgot_password,
            AuthAction.UPDATE_PROFILE: self.update_profile,
        })

    def signup(self, payload: dict[str, Any]) -> dict[str, Any]:
        if _missing(payload, "name", "email", "password"):
            return error_envelope("Missing required fields")
        if len(payload["password"]) < MIN_PASSWORD_LENGTH:
            return error_envelope(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        # the UNIQUE email column makes a redelivered signup fail cleanly
        user_id = self._db.create_user(payload["name"], payload["email"], hash_password(payload["password"]))
        if user_id is None:
            return error_envelope("Email already exists")
        logger.info("User registered: %s (id=%s)", payload["email"], user_id)
        return success_envelope(
            "Signup successful",
            user={"id": user_id, "name": payload["name"], "email": payload["email"]},
        )

    def login(self, payload: dict[str, Any]) -> dict[str, Any]:
        if _missing(payload, "email", "password"):
            return error_envelope("Missing required fields")
        user = self._db.get_user_by_email(payload["email"])
        if user is None or not verify_password(payload["password"], user["password"]):
            return error_envelope("Invalid credentials")

        access_token = self._tokens.access_token(user["id"], user["name"], user["email"])
        refresh_token, expires_at = self._tokens.refresh_token(user["id"])
        self._db.store_refresh_token(user["id"], hash_token(refresh_token), expires_at)
        logger.info("Login: user %s", user["id"])
        return success_envelope(
            "Login successful",
            user=_public(user),
            tokens={"access_token": access_token, "refresh_token": refresh_token},
        )

    def refresh_token(self, payload: dict[str, Any]) -> dict[str, Any]:
        token = payload.get("refresh_token")
        if not token:
            return error_envelope("Missing refresh token")
        claims = self._tokens.verify_refresh(token)
        if claims is None:
            return error_envelope("Invalid refresh token")
        user_id = claims["user_id"]
        if not self._db.refresh_token_valid(user_id, hash_token(token), time.time()):
            return error_envelope("Invalid or expired refresh token")
        user = self._db.get_user_by_id(user_id)
        if user is None:
            return error_envelope("User not found")
        return success_envelope(
            "Token refreshed",
            access_token=self._tokens.access_token(user["id"], user["name"], user["email"]),
        )

    def logout(self, payload: dict[str, Any]) -> dict[str, Any]:
        user_id = payload.get("user_id")
        if user_id is None:
            return error_envelope("Missing user ID")
        self._db.invalidate_refresh_token(int(user_id))
        return success_envelope("Logout successful")

    def verify_auth(self, payload: dict[str, Any]) -> dict[str, Any]:
        token = payload.get("access_token")
        if not token:
            return error_envelope("Missing access token")
        claims = self._tokens.verify_access(token)
        if claims is None:
            return error_envelope("Invalid or expired access token")
        return success_envelope(
            "Token valid",
            user={"id": claims["user_id"], "name": claims.get("name"), "email": claims.get("email")},
        )

    def forgot_password(self, payload: dict[str, Any]) -> dict[str, Any]:
        email = payload.get("email")
        if not email:
            return error_envelope("Missing email")
        user = self._db.get_user_by_email(email)
        if user is None:
            return error_envelope("Email not found")
        self._db.update_user(user["id"], reset_token=secrets.token_hex(32),
                             reset_token_expiry=time.time() + RESET_TOKEN_TTL)
        logger.info("Password reset requested for user %s", user["id"])
        return success_envelope("Password reset link has been sent to your email")

    def update_profile(self, payload: dict[str, Any]) -> dict[str, Any]:
        user_id = self._authenticated_user_id(payload)
        if isinstance(user_id, dict):
            return user_id
        user = self._db.get_user_by_id(user_id)
        if user is None:
            return error_envelope("User not found")

        changes: dict[str, Any] = {}
        name = payload.get("name")
        if name and name != user["name"]:
            changes["name"] = name
        email = payload.get("email")
        if email and email != user["email"]:
            if self._db.email_taken(email, exclude_user_id=user_id):
                return error_envelope("Email is already in use")
            changes["email"] = email
        current, new = payload.get("currentPassword"), payload.get("newPassword")
        if current and new:
            if not verify_password(current, user["password"]):
                return error_envelope("Current password is incorrect")
            if len(new) < MIN_PASSWORD_LENGTH:
                return error_envelope(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")
            changes["password"] = hash_password(new)

        if not changes:
            return success_envelope("No changes to update")
        self._db.update_user(user_id, **changes)
        logger.info("Profile updated for user %s (%s)", user_id, ", ".join(sorted(changes)))
        return success_envelope(
            "Profile updated successfully",
            user={"id": user_id, "name": changes.get("name", user["name"]),
                  "email": changes.get("email", user["email"])},
        )

    def _authenticated_user_id(self, payload: dict[str, Any]) -> Any:
        token: Optional[str] = payload.get("access_token")
        if token:
            claims = self._tokens.verify_access(token)
            if claims is None:
                return error_envelope("Invalid or expired access token")
            return int(claims["user_id"])
        if payload.get("user_id") is not None:
            return int(payload["user_id"])
        return error_envelope("Authentication required")
