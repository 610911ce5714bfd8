"""
Constant Product Market Maker (CPMM) pricing engine.

All functions are pure and integer-only. Python ints are arbitrary precision,
so every product below is exact for the full uint256 range; no intermediate
value is ever rounded except by the explicit floor divisions documented per
function.

Rounding rules:
- swap output: floor (the pool never pays out more than the invariant allows)
- LP mint: floor, and the smaller of the two proportional amounts
- LP burn: floor on both sides

Price impact and spot prices are floats for display only; they never feed back
into an integer amount.

Failure semantics: for valid numeric ranges these functions do not raise. A
trade or deposit that is too small yields a zero amount and the caller decides
how to surface it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .errors import InvalidInput


BPS_DENOM = 10_000


def _require_int(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")


def _require_bps(name: str, value: int) -> None:
    _require_int(name, value)
    if not (0 <= value <= BPS_DENOM):
        raise InvalidInput(f"{name} must be in [0, {BPS_DENOM}]: {value}")


@dataclass(frozen=True)
class SwapQuote:
    amount_out: int
    fee_paid: int
    price_impact: float
    new_reserve_in: int
    new_reserve_out: int


@dataclass(frozen=True)
class MintQuote:
    minted: int
    share: float


@dataclass(frozen=True)
class BurnQuote:
    amount_a: int
    amount_b: int
    share: float


@dataclass(frozen=True)
class OptimalDeposit:
    amount_a: int
    amount_b: int
    refund_a: int
    refund_b: int
    # Counterpart amounts that exactly match the pool ratio for each desired side.
    optimal_b_for_a: int
    optimal_a_for_b: int


_ZERO_SWAP = SwapQuote(amount_out=0, fee_paid=0, price_impact=0.0, new_reserve_in=0, new_reserve_out=0)


def _price_impact(reserve_in: int, reserve_out: int, new_reserve_in: int, new_reserve_out: int) -> float:
    spot = reserve_out / reserve_in
    post = new_reserve_out / new_reserve_in if new_reserve_out > 0 else spot
    return max(0.0, (spot - post) / spot) if spot > 0 else 0.0


def swap_output(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> SwapQuote:
    """
    Exact-in swap quote (Uniswap-v2 style, fee baked into the numerator scaling).

        amount_in_net = amount_in * (10_000 - fee_bps)
        amount_out    = floor(amount_in_net * reserve_out / (reserve_in * 10_000 + amount_in_net))
        fee_paid      = amount_in - floor(amount_in_net / 10_000)

    Post-trade reserves keep the whole input (fee included) in the pool:
        new_reserve_in  = reserve_in + amount_in
        new_reserve_out = reserve_out - amount_out

    Returns an all-zero quote if any of amount_in, reserve_in, reserve_out is
    not positive.
    """
    for name, v in (("amount_in", amount_in), ("reserve_in", reserve_in), ("reserve_out", reserve_out)):
        _require_int(name, v)
    _require_bps("fee_bps", fee_bps)

    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return _ZERO_SWAP

    amount_in_net = amount_in * (BPS_DENOM - fee_bps)
    numerator = amount_in_net * reserve_out
    denominator = reserve_in * BPS_DENOM + amount_in_net
    amount_out = numerator // denominator
    fee_paid = amount_in - amount_in_net // BPS_DENOM

    new_reserve_in = reserve_in + amount_in
    new_reserve_out = reserve_out - amount_out

    return SwapQuote(
        amount_out=amount_out,
        fee_paid=fee_paid,
        price_impact=_price_impact(reserve_in, reserve_out, new_reserve_in, new_reserve_out),
        new_reserve_in=new_reserve_in,
        new_reserve_out=new_reserve_out,
    )


def swap_output_fee_extracted(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> SwapQuote:
    """
    Exact-in swap quote when the fee leaves the pool (paid to a fee recipient).

        fee_paid   = as in `swap_output`
        kept       = amount_in - fee_paid
        amount_out = floor(kept * reserve_out / (reserve_in + kept))

    Only `kept` enters the pool, so new_reserve_in = reserve_in + kept and
    (reserve_in + kept) * (reserve_out - amount_out) >= reserve_in * reserve_out.
    Returns an all-zero quote when nothing would be kept.
    """
    fee_paid = swap_output(amount_in, reserve_in, reserve_out, fee_bps).fee_paid
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return _ZERO_SWAP
    kept = amount_in - fee_paid
    if kept <= 0:
        return SwapQuote(
            amount_out=0, fee_paid=fee_paid, price_impact=0.0, new_reserve_in=reserve_in, new_reserve_out=reserve_out
        )

    amount_out = (kept * reserve_out) // (reserve_in + kept)
    new_reserve_in = reserve_in + kept
    new_reserve_out = reserve_out - amount_out
    return SwapQuote(
        amount_out=amount_out,
        fee_paid=fee_paid,
        price_impact=_price_impact(reserve_in, reserve_out, new_reserve_in, new_reserve_out),
        new_reserve_in=new_reserve_in,
        new_reserve_out=new_reserve_out,
    )


def liquidity_mint(amount_a: int, amount_b: int, reserve_a: int, reserve_b: int, total_supply: int) -> MintQuote:
    """
    LP tokens minted for a deposit.

    Empty pool (either reserve or the supply is zero):
        minted = isqrt(amount_a * amount_b), share = 1
    Otherwise:
        minted = min(floor(amount_a * total_supply / reserve_a),
                     floor(amount_b * total_supply / reserve_b))
        share  = minted / (total_supply + minted)

    Off-ratio deposits are accepted; only the constraining side is rewarded.
    """
    for name, v in (
        ("amount_a", amount_a),
        ("amount_b", amount_b),
        ("reserve_a", reserve_a),
        ("reserve_b", reserve_b),
        ("total_supply", total_supply),
    ):
        _require_int(name, v)

    if amount_a <= 0 or amount_b <= 0:
        return MintQuote(minted=0, share=0.0)

    if reserve_a <= 0 or reserve_b <= 0 or total_supply <= 0:
        minted = math.isqrt(amount_a * amount_b)
        return MintQuote(minted=minted, share=1.0 if minted > 0 else 0.0)

    liquidity_a = (amount_a * total_supply) // reserve_a
    liquidity_b = (amount_b * total_supply) // reserve_b
    minted = min(liquidity_a, liquidity_b)
    share = minted / (total_supply + minted) if minted > 0 else 0.0
    return MintQuote(minted=minted, share=share)


def liquidity_burn(lp_amount: int, reserve_a: int, reserve_b: int, total_supply: int) -> BurnQuote:
    """
    Underlying amounts paid out for burning `lp_amount` LP tokens (floor rounding).

    Returns zeros if lp_amount or total_supply is not positive, or if
    lp_amount exceeds the supply (such a burn would drain more than the
    reserves hold).
    """
    for name, v in (
        ("lp_amount", lp_amount),
        ("reserve_a", reserve_a),
        ("reserve_b", reserve_b),
        ("total_supply", total_supply),
    ):
        _require_int(name, v)

    if lp_amount <= 0 or total_supply <= 0 or lp_amount > total_supply:
        return BurnQuote(amount_a=0, amount_b=0, share=0.0)

    amount_a = (lp_amount * max(reserve_a, 0)) // total_supply
    amount_b = (lp_amount * max(reserve_b, 0)) // total_supply
    return BurnQuote(amount_a=amount_a, amount_b=amount_b, share=lp_amount / total_supply)


def optimal_deposit(amount_a_desired: int, amount_b_desired: int, reserve_a: int, reserve_b: int) -> OptimalDeposit:
    """
    Ratio-preserving deposit amounts, clamped to what the caller supplied.

    For an empty pool everything is used (the deposit sets the price). Otherwise
    the side whose ratio counterpart fits within the other desired amount is
    used in full and the other side is reduced to match; the difference is
    reported as a refund. Neither used amount ever exceeds its desired amount.
    """
    for name, v in (
        ("amount_a_desired", amount_a_desired),
        ("amount_b_desired", amount_b_desired),
        ("reserve_a", reserve_a),
        ("reserve_b", reserve_b),
    ):
        _require_int(name, v)

    if amount_a_desired <= 0 or amount_b_desired <= 0:
        return OptimalDeposit(0, 0, max(amount_a_desired, 0), max(amount_b_desired, 0), 0, 0)

    if reserve_a <= 0 or reserve_b <= 0:
        return OptimalDeposit(
            amount_a=amount_a_desired,
            amount_b=amount_b_desired,
            refund_a=0,
            refund_b=0,
            optimal_b_for_a=amount_b_desired,
            optimal_a_for_b=amount_a_desired,
        )

    optimal_b = (amount_a_desired * reserve_b) // reserve_a
    optimal_a = (amount_b_desired * reserve_a) // reserve_b
    if optimal_b <= amount_b_desired:
        amount_a, amount_b = amount_a_desired, optimal_b
    else:
        amount_a, amount_b = optimal_a, amount_b_desired

    if amount_a > amount_a_desired or amount_b > amount_b_desired:
        raise AssertionError("used amounts exceed desired amounts")

    return OptimalDeposit(
        amount_a=amount_a,
        amount_b=amount_b,
        refund_a=amount_a_desired - amount_a,
        refund_b=amount_b_desired - amount_b,
        optimal_b_for_a=optimal_b,
        optimal_a_for_b=optimal_a,
    )


def min_amount_out(amount_out: int, slippage_bps: int) -> int:
    """Lowest acceptable output for a quoted `amount_out` under `slippage_bps` tolerance (floor)."""
    _require_int("amount_out", amount_out)
    _require_bps("slippage_bps", slippage_bps)
    if amount_out <= 0:
        return 0
    return (amount_out * (BPS_DENOM - slippage_bps)) // BPS_DENOM


def spot_price(reserve_a: int, reserve_b: int, decimals_a: int = 0, decimals_b: int = 0) -> tuple[float, float]:
    """
    Display prices (A->B, B->A) adjusted for token decimals.

    Returns (0.0, 0.0) for an empty pool.
    """
    if reserve_a <= 0 or reserve_b <= 0:
        return 0.0, 0.0
    human_a = reserve_a / (10**decimals_a)
    human_b = reserve_b / (10**decimals_b)
    return human_b / human_a, human_a / human_b
