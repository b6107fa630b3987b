"""Signed bearer tokens (HS256 JWT via PyJWT).

Access tokens carry ``sub``, ``roles`` and ``type=ACCESS``; refresh tokens
carry ``sub``, a unique ``jti`` and ``type=REFRESH``. Both carry ``iat`` and
``exp``. Every decode failure (bad signature, expired, wrong type, garbage)
surfaces as :class:`TokenExpiredOrMalformed`.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

import jwt

from coordspine.core.errors import TokenExpiredOrMalformed
from coordspine.core.timestamps import utc_now

if TYPE_CHECKING:
    from coordspine.core.settings import CoordSettings

ALGORITHM = "HS256"
DEFAULT_ROLES: tuple[str, ...] = ("USER",)


class TokenType(str, Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"


@dataclass(frozen=True)
class TokenPair:
    """What a successful login or rotation hands back to the client."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }


class TokenProvider:
    """Mints and validates HS256 JWTs.

    Example:
        >>> provider = TokenProvider("a-32-byte-or-longer-secret-value!!")
        >>> token = provider.create_refresh_token("user-42")
        >>> provider.decode(token, TokenType.REFRESH)["sub"]
        'user-42'
    """

    def __init__(
        self,
        secret: str,
        *,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 14 * 24 * 3600,
        issuer: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.issuer = issuer
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: CoordSettings) -> TokenProvider:
        return cls(
            settings.jwt_secret.get_secret_value(),
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            issuer=settings.jwt_issuer,
        )

    def _encode(self, claims: dict[str, Any], ttl_seconds: int) -> str:
        now = self._clock()
        payload = {
            **claims,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
        }
        if self.issuer:
            payload["iss"] = self.issuer
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def create_access_token(self, subject_id: str, roles: Sequence[str] | None = None) -> str:
        return self._encode(
            {
                "sub": subject_id,
                "type": TokenType.ACCESS.value,
                "roles": list(roles or DEFAULT_ROLES),
            },
            self.access_ttl_seconds,
        )

    def create_refresh_token(self, subject_id: str) -> str:
        return self._encode(
            {
                "sub": subject_id,
                "type": TokenType.REFRESH.value,
                "jti": str(uuid.uuid4()),
            },
            self.refresh_ttl_seconds,
        )

    def decode(self, token: str, expected_type: TokenType | None = None) -> dict[str, Any]:
        """Validate signature, expiry and (optionally) token type.

        Raises:
            TokenExpiredOrMalformed: Any validation failure.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"require": ["sub", "exp", "iat", "type"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredOrMalformed("Token expired", cause=e) from e
        except jwt.PyJWTError as e:
            raise TokenExpiredOrMalformed("Invalid token", cause=e) from e

        if expected_type is not None and claims.get("type") != TokenType(expected_type).value:
            raise TokenExpiredOrMalformed(
                f"Expected {TokenType(expected_type).value} token, got {claims.get('type')}"
            ).with_context(subject_id=claims.get("sub"))
        return claims

    def remaining_seconds(self, claims: dict[str, Any]) -> int:
        """Seconds until ``exp`` (at least 1)."""
        return max(1, int(claims["exp"] - self._clock().timestamp()))


__all__ = ["ALGORITHM", "DEFAULT_ROLES", "TokenPair", "TokenProvider", "TokenType"]
