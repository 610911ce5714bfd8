"""
Core DEX algorithms (pure, integer-only).
"""

from .amounts import amount_view, to_human, to_raw
from .cpmm import (
    BurnQuote,
    MintQuote,
    OptimalDeposit,
    SwapQuote,
    liquidity_burn,
    liquidity_mint,
    min_amount_out,
    optimal_deposit,
    spot_price,
    swap_output,
    swap_output_fee_extracted,
)
from .fees import ProtocolFee, apply_protocol_fee

__all__ = [
    "amount_view",
    "to_human",
    "to_raw",
    "BurnQuote",
    "MintQuote",
    "OptimalDeposit",
    "SwapQuote",
    "liquidity_burn",
    "liquidity_mint",
    "min_amount_out",
    "optimal_deposit",
    "spot_price",
    "swap_output",
    "swap_output_fee_extracted",
    "ProtocolFee",
    "apply_protocol_fee",
]
