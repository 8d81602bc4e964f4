"""
Access/refresh JWTs and password hashing for the auth handlers.
"""

import hashlib
import hmac
import secrets
import time
from typing import Any, Optional

import jwt

ALGORITHM = "HS256"
PBKDF2_ITERATIONS = 200_000


class TokenIssuer:
    def __init__(self, access_secret: str, refresh_secret: str,
                 access_ttl: int = 900, refresh_ttl: int = 2_592_000):
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def access_token(self, user_id: int, name: str, email: str) -> str:
        now = int(time.time())
        claims = {"user_id": user_id, "name": name, "email": email,
                  "type": "access", "iat": now, "exp": now + self.access_ttl}
        return jwt.encode(claims, self._access_secret, algorithm=ALGORITHM)

    def refresh_token(self, user_id: int) -> tuple[str, float]:
        """Returns the token and its expiry timestamp."""
        now = int(time.time())
        expires_at = now + self.refresh_ttl
        claims = {"user_id": user_id, "type": "refresh", "jti": secrets.token_hex(8),
                  "iat": now, "exp": expires_at}
        return jwt.encode(claims, self._refresh_secret, algorithm=ALGORITHM), float(expires_at)

    def verify_access(self, token: str) -> Optional[dict[str, Any]]:
        return _decode(token, self._access_secret, "access")

    def verify_refresh(self, token: str) -> Optional[dict[str, Any]]:
        return _decode(token, self._refresh_secret, "refresh")


def _decode(token: str, secret: str, kind: str) -> Optional[dict[str, Any]]:
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    if claims.get("type") != kind or "user_id" not in claims:
        return None
    return claims


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()
