"""
Protocol fee policy (deterministic, integer-only).

The aggregator takes its fee once, upstream of every venue, by deducting it
from the input before any venue prices the trade ("deduct-before-swap"):

    fee = floor(amount_in * fee_bps / 10_000)
    net = amount_in - fee

Floor rounding favours the trader; the fee can round to zero for dust inputs.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import InvalidInput


BPS_DENOM = 10_000
FEE_MODE_DEDUCT_BEFORE_SWAP = "deduct_before_swap"


@dataclass(frozen=True)
class ProtocolFee:
    gross: int
    fee: int
    net: int

    def __post_init__(self) -> None:
        if self.fee < 0 or self.net < 0:
            raise ValueError("fee and net must be non-negative")
        if self.fee + self.net != self.gross:
            raise ValueError("fee + net must equal gross")


def apply_protocol_fee(amount_in: int, fee_bps: int) -> ProtocolFee:
    if not isinstance(amount_in, int) or isinstance(amount_in, bool):
        raise TypeError("amount_in must be an int")
    if not isinstance(fee_bps, int) or isinstance(fee_bps, bool):
        raise TypeError("fee_bps must be an int")
    if not (0 <= fee_bps <= BPS_DENOM):
        raise InvalidInput(f"fee_bps must be in [0, {BPS_DENOM}]: {fee_bps}")
    if amount_in <= 0:
        return ProtocolFee(gross=max(amount_in, 0), fee=0, net=max(amount_in, 0))

    fee = (amount_in * fee_bps) // BPS_DENOM
    return ProtocolFee(gross=amount_in, fee=fee, net=amount_in - fee)
