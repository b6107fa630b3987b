"""Tests for coordspine.auth.tokens: JWT minting and validation."""

from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from coordspine.auth.tokens import TokenPair, TokenProvider, TokenType
from coordspine.core.errors import TokenExpiredOrMalformed
from coordspine.core.settings import CoordSettings
from coordspine.core.timestamps import utc_now

SECRET = "test-secret-0123456789abcdef0123456789abcdef"


@pytest.fixture
def provider():
    return TokenProvider(SECRET)


class TestCreate:
    def test_access_token_claims(self, provider):
        claims = provider.decode(provider.create_access_token("user-42", ["ADMIN"]), TokenType.ACCESS)
        assert claims["sub"] == "user-42"
        assert claims["type"] == "ACCESS"
        assert claims["roles"] == ["ADMIN"]
        assert claims["exp"] - claims["iat"] == 3600

    def test_access_token_default_roles(self, provider):
        claims = provider.decode(provider.create_access_token("user-42"))
        assert claims["roles"] == ["USER"]

    def test_refresh_token_claims(self, provider):
        claims = provider.decode(provider.create_refresh_token("user-42"), TokenType.REFRESH)
        assert claims["type"] == "REFRESH"
        assert claims["jti"]
        assert claims["exp"] - claims["iat"] == 14 * 24 * 3600

    def test_refresh_tokens_are_unique(self, provider):
        assert provider.create_refresh_token("u") != provider.create_refresh_token("u")

    def test_hs256(self, provider):
        header = jwt.get_unverified_header(provider.create_refresh_token("u"))
        assert header["alg"] == "HS256"

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenProvider("")

    def test_from_settings(self):
        settings = CoordSettings(jwt_secret=SECRET, access_token_ttl_seconds=60, jwt_issuer="coord")
        provider = TokenProvider.from_settings(settings)
        claims = provider.decode(provider.create_access_token("u"))
        assert claims["exp"] - claims["iat"] == 60
        assert claims["iss"] == "coord"


class TestDecode:
    def test_wrong_type(self, provider):
        with pytest.raises(TokenExpiredOrMalformed):
            provider.decode(provider.create_access_token("u"), TokenType.REFRESH)

    def test_expired(self):
        past = TokenProvider(SECRET, clock=lambda: utc_now() - timedelta(days=30))
        token = past.create_refresh_token("u")
        with pytest.raises(TokenExpiredOrMalformed) as exc_info:
            TokenProvider(SECRET).decode(token, TokenType.REFRESH)
        assert isinstance(exc_info.value.cause, jwt.ExpiredSignatureError)

    def test_bad_signature(self, provider):
        token = TokenProvider("another-secret-0123456789abcdef0123456789").create_refresh_token("u")
        with pytest.raises(TokenExpiredOrMalformed):
            provider.decode(token)

    def test_garbage(self, provider):
        with pytest.raises(TokenExpiredOrMalformed):
            provider.decode("not-a-jwt")

    def test_missing_type_claim(self, provider):
        token = jwt.encode({"sub": "u", "exp": utc_now() + timedelta(hours=1), "iat": utc_now()}, SECRET, algorithm="HS256")
        with pytest.raises(TokenExpiredOrMalformed):
            provider.decode(token)


def test_token_pair_dict():
    pair = TokenPair("a", "r", 3600)
    assert pair.to_dict() == {"access_token": "a", "refresh_token": "r", "token_type": "Bearer", "expires_in": 3600}
