"""
State model for the Silverback DEX
"""

from .balances import BalanceTable
from .pools import PoolRecord, PoolReserves, PoolStatus
from .tokens import Token, canonical_order, pair_key

__all__ = [
    "BalanceTable",
    "PoolRecord",
    "PoolReserves",
    "PoolStatus",
    "Token",
    "canonical_order",
    "pair_key",
]
