"""Single-use refresh-token rotation.

Manifesto:
    A refresh token is a bearer credential valid for weeks. If it can be
    used twice, a stolen copy is as good as the original. Rotation makes
    each refresh token single-use: the store holds exactly one live token
    per subject, and a rotation atomically consumes it before minting the
    next pair. A replayed or mismatched token is rejected and logged as a
    possible theft signal.

Tags:
    coord-spine, auth, refresh-token, rotation, replay-detection

Doc-Types:
    api-reference, architecture-diagram


    Rotation::

        rotate(R1)
          ├── decode(R1, REFRESH) ─────────── bad ──► TokenExpiredOrMalformed
          ├── EXISTS refresh_token_used:{jti} ─ yes ─► TokenAlreadyUsed   (replay)
          ├── compare_and_pop(refresh_token:{sub}, R1)
          │       ├── nothing stored ────────────────► TokenAlreadyUsed
          │       └── stored != R1 (left in place) ──► TokenMismatch
          ├── SET refresh_token_used:{jti} (TTL = R1's remaining life)
          └── issue(sub) ──► TokenPair(A2, R2); refresh_token:{sub} = R2

    Two concurrent rotations of R1: the store's atomic compare-and-pop lets
    exactly one through; the other sees nothing stored (or the new R2) and
    is rejected.
"""

from __future__ import annotations

from collections.abc import Sequence

from coordspine.auth.tokens import TokenPair, TokenProvider, TokenType
from coordspine.core.errors import TokenAlreadyUsed, TokenMismatch
from coordspine.core.logging import get_logger
from coordspine.core.store import CoordinationStore

logger = get_logger(__name__)

REFRESH_TOKEN_PREFIX = "refresh_token:"
USED_TOKEN_PREFIX = "refresh_token_used:"


class RefreshTokenRotator:
    """Issues, rotates and revokes refresh tokens held in the coordination store."""

    def __init__(
        self,
        store: CoordinationStore,
        token_provider: TokenProvider,
        *,
        refresh_ttl_seconds: int | None = None,
    ) -> None:
        self.store = store
        self.tokens = token_provider
        self.refresh_ttl_seconds = refresh_ttl_seconds or token_provider.refresh_ttl_seconds

    @staticmethod
    def key_for(subject_id: str) -> str:
        return f"{REFRESH_TOKEN_PREFIX}{subject_id}"

    def issue(self, subject_id: str, roles: Sequence[str] | None = None) -> TokenPair:
        """Mint a new pair and make its refresh token the subject's only valid one.

        Last writer wins: any previously stored refresh token is replaced.
        """
        access = self.tokens.create_access_token(subject_id, roles)
        refresh = self.tokens.create_refresh_token(subject_id)
        self.store.set(self.key_for(subject_id), refresh, self.refresh_ttl_seconds)
        logger.debug("refresh_token_issued", subject_id=subject_id)
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=self.tokens.access_ttl_seconds,
        )

    def rotate(self, presented: str, roles: Sequence[str] | None = None) -> TokenPair:
        """Consume ``presented`` and return a fresh pair.

        Raises:
            TokenExpiredOrMalformed: Signature, expiry or type check failed.
            TokenAlreadyUsed: Token was already rotated, or nothing is stored.
            TokenMismatch: A different refresh token is current for the subject.
            StoreUnavailable: Store unreachable; nothing was consumed or issued.
        """
        claims = self.tokens.decode(presented, TokenType.REFRESH)
        subject_id = claims["sub"]
        jti = claims.get("jti")

        if jti and self.store.exists(f"{USED_TOKEN_PREFIX}{jti}"):
            logger.warning("refresh_token_reuse_detected", subject_id=subject_id, reason="already_rotated")
            raise TokenAlreadyUsed("Token already used or invalid").with_context(subject_id=subject_id)

        stored = self.store.compare_and_pop(self.key_for(subject_id), presented)
        if stored is None:
            logger.warning("refresh_token_reuse_detected", subject_id=subject_id, reason="not_stored")
            raise TokenAlreadyUsed("Token already used or invalid").with_context(subject_id=subject_id)
        if stored != presented:
            logger.warning("refresh_token_mismatch_detected", subject_id=subject_id)
            raise TokenMismatch("Token mismatch detected").with_context(subject_id=subject_id)

        if jti:
            self.store.set(f"{USED_TOKEN_PREFIX}{jti}", subject_id, self.tokens.remaining_seconds(claims))

        pair = self.issue(subject_id, roles)
        logger.info("refresh_token_rotated", subject_id=subject_id)
        return pair

    def revoke(self, subject_id: str) -> bool:
        """End the subject's session. Returns True if a token was stored."""
        revoked = self.store.get_and_delete(self.key_for(subject_id)) is not None
        logger.info("refresh_token_revoked", subject_id=subject_id, revoked=revoked)
        return revoked


__all__ = ["REFRESH_TOKEN_PREFIX", "RefreshTokenRotator", "USED_TOKEN_PREFIX"]
