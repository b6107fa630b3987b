"""Tests for coordspine.auth.rotator: single-use refresh-token rotation."""

from __future__ import annotations

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from coordspine.auth.rotator import RefreshTokenRotator
from coordspine.auth.tokens import TokenProvider, TokenType
from coordspine.core.errors import (
    InvalidToken,
    StoreUnavailable,
    TokenAlreadyUsed,
    TokenExpiredOrMalformed,
    TokenMismatch,
)
from coordspine.core.store import InMemoryCoordinationStore
from coordspine.core.timestamps import utc_now

SECRET = "test-secret-0123456789abcdef0123456789abcdef"


@pytest.fixture
def provider():
    return TokenProvider(SECRET)


@pytest.fixture
def rotator(store, provider):
    return RefreshTokenRotator(store, provider)


class TestIssue:
    def test_issue_stores_refresh_token(self, rotator, store):
        pair = rotator.issue("user-42", ["USER"])
        assert store.get("refresh_token:user-42") == pair.refresh_token
        assert pair.token_type == "Bearer"
        assert pair.expires_in == 3600

    def test_issue_sets_ttl(self, rotator, store):
        rotator.issue("user-42")
        assert store.ttl("refresh_token:user-42") == pytest.approx(14 * 24 * 3600)

    def test_last_issue_wins(self, rotator, store):
        rotator.issue("user-42")
        second = rotator.issue("user-42")
        assert store.get("refresh_token:user-42") == second.refresh_token


class TestRotate:
    def test_rotation_returns_new_pair(self, rotator, store, provider):
        first = rotator.issue("user-42")
        second = rotator.rotate(first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert store.get("refresh_token:user-42") == second.refresh_token
        assert provider.decode(second.access_token, TokenType.ACCESS)["sub"] == "user-42"

    def test_single_use(self, rotator):
        r1 = rotator.issue("user-42").refresh_token
        rotator.rotate(r1)

        with pytest.raises(TokenAlreadyUsed) as exc_info:
            rotator.rotate(r1)
        assert exc_info.value.theft_signal is True
        assert exc_info.value.context.subject_id == "user-42"

    def test_chain_of_rotations(self, rotator):
        token = rotator.issue("user-42").refresh_token
        for _ in range(3):
            token = rotator.rotate(token).refresh_token
        assert rotator.rotate(token).refresh_token

    def test_mismatch_keeps_current_token_valid(self, rotator):
        r1 = rotator.issue("user-42").refresh_token
        r2 = rotator.issue("user-42").refresh_token

        with pytest.raises(TokenMismatch) as exc_info:
            rotator.rotate(r1)
        assert exc_info.value.theft_signal is True

        assert rotator.rotate(r2).refresh_token

    def test_nothing_stored(self, rotator, provider):
        orphan = provider.create_refresh_token("user-42")
        with pytest.raises(TokenAlreadyUsed):
            rotator.rotate(orphan)

    def test_rejects_access_token(self, rotator):
        pair = rotator.issue("user-42")
        with pytest.raises(TokenExpiredOrMalformed):
            rotator.rotate(pair.access_token)

    def test_rejects_expired_token(self, store):
        past = TokenProvider(SECRET, clock=lambda: utc_now() - timedelta(days=30))
        token = RefreshTokenRotator(store, past).issue("user-42").refresh_token
        with pytest.raises(TokenExpiredOrMalformed):
            RefreshTokenRotator(store, TokenProvider(SECRET)).rotate(token)

    def test_rejects_malformed_token(self, rotator):
        with pytest.raises(TokenExpiredOrMalformed):
            rotator.rotate("garbage")

    def test_subjects_are_independent(self, rotator):
        a = rotator.issue("alice").refresh_token
        b = rotator.issue("bob").refresh_token
        rotator.rotate(a)
        assert rotator.rotate(b).refresh_token

    def test_concurrent_double_rotation_one_wins(self, provider):
        store = InMemoryCoordinationStore()
        rotator = RefreshTokenRotator(store, provider)
        r1 = rotator.issue("user-42").refresh_token
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt():
            barrier.wait()
            try:
                rotator.rotate(r1)
                outcomes.append("ok")
            except InvalidToken as e:
                outcomes.append(type(e).__name__)

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert len(outcomes) == 2

    def test_store_unavailable_issues_nothing(self, provider):
        store = MagicMock()
        store.exists.return_value = False
        store.compare_and_pop.side_effect = StoreUnavailable("down")
        token = provider.create_refresh_token("user-42")

        with pytest.raises(StoreUnavailable):
            RefreshTokenRotator(store, provider).rotate(token)
        store.set.assert_not_called()


class TestRevoke:
    def test_revoke(self, rotator):
        r1 = rotator.issue("user-42").refresh_token
        assert rotator.revoke("user-42") is True
        assert rotator.revoke("user-42") is False
        with pytest.raises(TokenAlreadyUsed):
            rotator.rotate(r1)
