"""
Security Module

Password hashing (scrypt with a per-customer salt), JWT access/refresh tokens
and markup stripping for free-text input.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict
import hashlib
import hmac
import re
import secrets

import jwt

from .errors import UnauthorizedError


TOKEN_TYPE = "user"

PASSWORD_RULES = (
    (re.compile(r'.{8,}', re.DOTALL), "Password must be at least 8 characters long"),
    (re.compile(r'[A-Z]'), "Password must contain at least one uppercase letter"),
    (re.compile(r'[0-9]'), "Password must contain at least one number"),
    (re.compile(r'[^A-Za-z0-9]'), "Password must contain at least one special character"),
)


def password_problems(password: str) -> list:
    """Return the messages of every password rule the value breaks"""
    return [message for pattern, message in PASSWORD_RULES if not pattern.search(password)]


# Elements whose content is dropped along with the tags
_HIDDEN_ELEMENT = re.compile(
    r'<(script|style|textarea|option|noscript)\b[^>]*>.*?</\1\s*>',
    re.IGNORECASE | re.DOTALL
)
_TAG = re.compile(r'<[^>]*>')
_JAVASCRIPT_SCHEME = re.compile(r'javascript:', re.IGNORECASE)


def strip_markup(text: str) -> str:
    """
    Remove HTML from free text before it is stored

    Tags are discarded but their text is kept, except inside script-like
    elements which are dropped whole. ``javascript:`` is removed wherever it
    appears.
    """
    text = _HIDDEN_ELEMENT.sub('', text)
    text = _TAG.sub('', text)
    return _JAVASCRIPT_SCHEME.sub('', text)


def generate_salt() -> str:
    """Generate random salt for password hashing"""
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    """Hash password with salt using scrypt"""
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


def verify_password(password: str, password_hash: str, salt: str) -> bool:
    """Constant-time comparison against a stored hash"""
    if not password_hash or not salt:
        return False
    return hmac.compare_digest(hash_password(password, salt), password_hash)


class TokenService:
    """
    Issues and verifies the customer's access and refresh tokens.

    Both tokens carry ``{"payload": {"id", "email", "name"}, "type": "user"}``
    and are signed with separate secrets.
    """

    def __init__(self, access_secret: str, refresh_secret: str,
                 algorithm: str = "HS256", access_expires_hours: int = 24,
                 refresh_expires_hours: int = 168):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_expires = timedelta(hours=access_expires_hours)
        self.refresh_expires = timedelta(hours=refresh_expires_hours)

    def _encode(self, payload: Dict[str, Any], secret: str, lifetime: timedelta) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "payload": payload,
            "type": TOKEN_TYPE,
            "iat": now,
            "exp": now + lifetime
        }
        return jwt.encode(claims, secret, algorithm=self.algorithm)

    def _decode(self, token: str, secret: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(token, secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Session Expired")
        except jwt.InvalidTokenError:
            raise UnauthorizedError("Invalid token")

        if claims.get("type") != TOKEN_TYPE:
            raise UnauthorizedError("Invalid token type")

        payload = claims.get("payload") or {}
        if not payload.get("id"):
            raise UnauthorizedError("Invalid token payload")
        return payload

    def issue_access_token(self, payload: Dict[str, Any]) -> str:
        return self._encode(payload, self.access_secret, self.access_expires)

    def issue_refresh_token(self, payload: Dict[str, Any]) -> str:
        return self._encode(payload, self.refresh_secret, self.refresh_expires)

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """
        Verify an access token and return its payload

        Raises:
            UnauthorizedError: Token expired, malformed, of the wrong type or
                missing the customer id
        """
        return self._decode(token, self.access_secret)

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        return self._decode(token, self.refresh_secret)
