"""Bearer credentials: JWT minting and single-use refresh-token rotation."""

from coordspine.auth.rotator import RefreshTokenRotator
from coordspine.auth.tokens import TokenPair, TokenProvider, TokenType

__all__ = ["RefreshTokenRotator", "TokenPair", "TokenProvider", "TokenType"]
