"""Property tests for the pricing engine and the amount codec."""

from __future__ import annotations

import importlib.util
import math
from decimal import Decimal

import pytest

if importlib.util.find_spec("hypothesis") is None:  # pragma: no cover
    pytest.skip("hypothesis not installed", allow_module_level=True)

import hypothesis.strategies as st
from hypothesis import assume, given, settings

from silverback.core.amounts import to_human, to_raw
from silverback.core.cpmm import (
    liquidity_burn,
    liquidity_mint,
    optimal_deposit,
    swap_output,
    swap_output_fee_extracted,
)

UINT128 = (1 << 128) - 1

amounts = st.integers(min_value=1, max_value=UINT128)
fees = st.integers(min_value=0, max_value=10_000)


@settings(max_examples=300, deadline=None)
@given(amount_in=amounts, reserve_in=amounts, reserve_out=amounts, fee_bps=fees)
def test_swap_output_never_exceeds_no_fee_ideal(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> None:
    q = swap_output(amount_in, reserve_in, reserve_out, fee_bps)
    assert 0 <= q.amount_out < reserve_out
    assert q.amount_out * reserve_in <= amount_in * reserve_out


@settings(max_examples=300, deadline=None)
@given(amount_in=amounts, reserve_in=amounts, reserve_out=amounts, fee_bps=st.integers(min_value=1, max_value=10_000))
def test_swap_never_decreases_constant_product(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> None:
    q = swap_output(amount_in, reserve_in, reserve_out, fee_bps)
    assert q.new_reserve_in == reserve_in + amount_in
    assert q.new_reserve_out == reserve_out - q.amount_out
    assert q.new_reserve_in * q.new_reserve_out >= reserve_in * reserve_out
    assert 0 <= q.fee_paid <= amount_in


@settings(max_examples=300, deadline=None)
@given(amount_in=amounts, reserve_in=amounts, reserve_out=amounts, fee_bps=fees)
def test_fee_extracted_swap_never_decreases_constant_product(
    amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int
) -> None:
    q = swap_output_fee_extracted(amount_in, reserve_in, reserve_out, fee_bps)
    kept = amount_in - q.fee_paid
    assert q.fee_paid == swap_output(amount_in, reserve_in, reserve_out, fee_bps).fee_paid
    assert q.new_reserve_in == reserve_in + max(kept, 0)
    assert q.new_reserve_out == reserve_out - q.amount_out
    assert q.new_reserve_in * q.new_reserve_out >= reserve_in * reserve_out
    if kept <= 0:
        assert q.amount_out == 0


@settings(max_examples=300, deadline=None)
@given(a=amounts, b=amounts)
def test_bootstrap_mint_then_burn_returns_deposit(a: int, b: int) -> None:
    minted = liquidity_mint(a, b, 0, 0, 0).minted
    assert minted == math.isqrt(a * b) > 0
    out = liquidity_burn(minted, a, b, minted)
    assert 0 <= a - out.amount_a <= 1
    assert 0 <= b - out.amount_b <= 1


@settings(max_examples=300, deadline=None)
@given(amount_a=amounts, amount_b=amounts, reserve_a=amounts, reserve_b=amounts, supply=amounts)
def test_mint_never_exceeds_either_proportional_share(
    amount_a: int, amount_b: int, reserve_a: int, reserve_b: int, supply: int
) -> None:
    minted = liquidity_mint(amount_a, amount_b, reserve_a, reserve_b, supply).minted
    assert minted * reserve_a <= amount_a * supply
    assert minted * reserve_b <= amount_b * supply


@settings(max_examples=300, deadline=None)
@given(lp=amounts, reserve_a=amounts, reserve_b=amounts, supply=amounts)
def test_burn_never_pays_more_than_share(lp: int, reserve_a: int, reserve_b: int, supply: int) -> None:
    assume(lp <= supply)
    out = liquidity_burn(lp, reserve_a, reserve_b, supply)
    assert out.amount_a <= reserve_a and out.amount_b <= reserve_b
    assert out.amount_a * supply <= lp * reserve_a
    assert out.amount_b * supply <= lp * reserve_b


@settings(max_examples=300, deadline=None)
@given(a=amounts, b=amounts, reserve_a=amounts, reserve_b=amounts)
def test_optimal_deposit_never_uses_more_than_desired(a: int, b: int, reserve_a: int, reserve_b: int) -> None:
    d = optimal_deposit(a, b, reserve_a, reserve_b)
    assert 0 <= d.amount_a <= a and 0 <= d.amount_b <= b
    assert d.amount_a + d.refund_a == a
    assert d.amount_b + d.refund_b == b


@settings(max_examples=300, deadline=None)
@given(raw=st.integers(min_value=-(10**40), max_value=10**40), decimals=st.integers(min_value=0, max_value=18))
def test_raw_to_human_round_trip(raw: int, decimals: int) -> None:
    assert to_raw(to_human(raw, decimals), decimals) == raw


@settings(max_examples=300, deadline=None)
@given(
    whole=st.integers(min_value=0, max_value=10**24),
    fraction=st.text(alphabet="0123456789", max_size=18),
    decimals=st.integers(min_value=0, max_value=18),
)
def test_human_to_raw_round_trip(whole: int, fraction: str, decimals: int) -> None:
    assume(len(fraction) <= decimals)
    text = f"{whole}.{fraction}" if fraction else str(whole)
    human = to_human(to_raw(text, decimals), decimals)
    assert Decimal(human) == Decimal(text)
    assert not human.endswith(".")
    if "." in human:
        assert not human.endswith("0")
