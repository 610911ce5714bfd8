"""
Tokens and canonical pair keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from ..core.amounts import MAX_DECIMALS
from ..core.errors import IdenticalTokens, InvalidInput


TokenAddress = str

PAIR_KEY_SEPARATOR = ":"


@dataclass(frozen=True)
class Token:
    """
    A resolved token. Identity is the address alone; `decimals` is
    authoritative for every fixed-point conversion involving the token.
    """

    address: TokenAddress
    decimals: int = field(compare=False)
    symbol: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.address, str) or not self.address.strip():
            raise InvalidInput("token address must be a non-empty string")
        if not isinstance(self.decimals, int) or isinstance(self.decimals, bool):
            raise InvalidInput("token decimals must be an int")
        if not (0 <= self.decimals <= MAX_DECIMALS):
            raise InvalidInput(f"token decimals must be in [0, {MAX_DECIMALS}]: {self.decimals}")

    @property
    def display_symbol(self) -> str:
        # Fallback mirrors explorer-style abbreviations when metadata has no symbol.
        return self.symbol or self.address[-4:].upper()


def canonical_order(token_a: TokenAddress, token_b: TokenAddress) -> Tuple[TokenAddress, TokenAddress, bool]:
    """
    Order two token addresses lexicographically.

    Returns (low, high, swapped) where `swapped` is True if the inputs were
    given as (high, low).
    """
    if not isinstance(token_a, str) or not token_a:
        raise InvalidInput("token_a must be a non-empty string")
    if not isinstance(token_b, str) or not token_b:
        raise InvalidInput("token_b must be a non-empty string")
    if token_a == token_b:
        raise IdenticalTokens(f"a pair needs two distinct tokens, got {token_a} twice")
    if token_a < token_b:
        return token_a, token_b, False
    return token_b, token_a, True


def pair_key(token_a: TokenAddress, token_b: TokenAddress) -> str:
    """Order-independent identifier for a token pair: pair_key(A, B) == pair_key(B, A)."""
    low, high, _ = canonical_order(token_a, token_b)
    return f"{low}{PAIR_KEY_SEPARATOR}{high}"
