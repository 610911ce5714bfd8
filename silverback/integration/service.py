"""
Front-end query surface.

Takes human-decimal amounts, converts them with the token's decimals, calls the
registry / pools / aggregator, and answers with every quantity both as a raw
integer string and as a human string.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from ..config import DexSettings
from ..core.amounts import amount_view, to_raw_non_negative
from ..core.cpmm import min_amount_out as slippage_floor
from ..core.errors import (
    DexError,
    InsufficientOutput,
    InvalidAmount,
    InvalidInput,
    PoolAlreadyExists,
    ReserveUnavailable,
)
from ..state.pools import PoolReserves
from ..state.tokens import Token, canonical_order
from .aggregator import AggregatedQuote, VenueAggregator
from .interfaces import LedgerReader
from .pool import LiquidityExecution, LPPosition, Pool
from .registry import PoolRegistry


log = logging.getLogger(__name__)

RECENT_SWAPS_IN_VIEW = 20


def _positive(amount: str, decimals: int, *, name: str) -> int:
    raw = to_raw_non_negative(amount, decimals, name=name)
    if raw <= 0:
        raise InvalidAmount(f"{name} must be positive: {amount!r}")
    return raw


def _slippage(value: Optional[int], default: int) -> int:
    bps = default if value is None else value
    if not isinstance(bps, int) or isinstance(bps, bool) or not (0 <= bps <= 10_000):
        raise InvalidInput(f"slippage_bps must be in [0, 10000]: {bps!r}")
    return bps


class DexService:
    def __init__(
        self,
        *,
        registry: PoolRegistry,
        reader: LedgerReader,
        aggregator: Optional[VenueAggregator] = None,
        settings: Optional[DexSettings] = None,
    ) -> None:
        self._registry = registry
        self._reader = reader
        self._aggregator = aggregator
        self._settings = settings or DexSettings()
        self._tokens: Dict[str, Token] = {}

    async def token(self, address: str) -> Token:
        """Resolve (and cache) a token's metadata from the ledger."""
        if not isinstance(address, str) or not address.strip():
            raise InvalidInput("token address must be a non-empty string")
        cached = self._tokens.get(address)
        if cached is not None:
            return cached
        try:
            meta = await asyncio.wait_for(self._reader.get_token_metadata(address), self._settings.io_timeout_s)
        except asyncio.TimeoutError as exc:
            log.warning("metadata lookup for %s timed out", address)
            raise ReserveUnavailable(f"metadata lookup for {address} timed out") from exc
        except Exception as exc:
            log.warning("metadata lookup for %s failed: %s", address, exc)
            raise ReserveUnavailable(f"metadata lookup for {address} failed: {exc}") from exc
        token = Token(address, meta.decimals, meta.symbol)
        self._tokens[address] = token
        return token

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _reserves_view(self, pool: Pool, reserves: PoolReserves) -> Dict[str, Any]:
        assert pool.token_a is not None and pool.token_b is not None and pool.lp_decimals is not None
        return {
            "reserve_a": amount_view(reserves.reserve_a, pool.token_a.decimals),
            "reserve_b": amount_view(reserves.reserve_b, pool.token_b.decimals),
            "lp_supply": amount_view(reserves.lp_supply, pool.lp_decimals),
        }

    def _liquidity_view(self, pool: Pool, result: LiquidityExecution) -> Dict[str, Any]:
        assert pool.token_a is not None and pool.token_b is not None and pool.lp_decimals is not None
        return {
            "tx_id": result.tx_id,
            "pool_address": pool.address,
            "amount_a": amount_view(result.amount_a, pool.token_a.decimals),
            "amount_b": amount_view(result.amount_b, pool.token_b.decimals),
            "refund_a": amount_view(result.refund_a, pool.token_a.decimals),
            "refund_b": amount_view(result.refund_b, pool.token_b.decimals),
            "lp_amount": amount_view(result.lp_amount, pool.lp_decimals),
            "share": result.share,
            "new_reserves": self._reserves_view(pool, result.reserves),
            "reserves_confirmed": result.reserves_confirmed,
        }

    def _position_view(self, pool: Pool, pos: LPPosition) -> Dict[str, Any]:
        info = pool.info()
        out: Dict[str, Any] = {
            "pool_address": pos.pool_address,
            "pair_key": pos.pair_key,
            "lp_token": pos.lp_token,
            "token_a": info["token_a"],
            "token_b": info["token_b"],
            "share": pos.share,
        }
        if pool.token_a is not None and pool.token_b is not None and pool.lp_decimals is not None:
            out["lp_balance"] = amount_view(pos.lp_balance, pool.lp_decimals)
            out["lp_supply"] = amount_view(pos.lp_supply, pool.lp_decimals)
            out["amount_a"] = amount_view(pos.amount_a, pool.token_a.decimals)
            out["amount_b"] = amount_view(pos.amount_b, pool.token_b.decimals)
        return out

    def _aggregated_view(self, q: AggregatedQuote, token_in: Token, token_out: Token) -> Dict[str, Any]:
        return {
            "venue": q.venue_id,
            "amount_in": amount_view(q.amount_in, token_in.decimals),
            "net_amount_in": amount_view(q.net_amount_in, token_in.decimals),
            "fee_taken": amount_view(q.fee_taken, token_in.decimals),
            "amount_out": amount_view(q.amount_out, token_out.decimals),
            "price_impact": q.price_impact,
            "venues": [
                {"venue": v.venue_id, "amount_out": amount_view(v.amount_out, token_out.decimals)} for v in q.venue_raw
            ],
            "failures": [{"venue": f.venue_id, "reason": f.reason} for f in q.failures],
        }

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    async def list_pools(self) -> List[Dict[str, Any]]:
        """All registered pools. A pool that cannot be refreshed is listed from its last observation."""

        async def _view(pool: Pool) -> Dict[str, Any]:
            stale = False
            try:
                await pool.refresh()
            except DexError:
                stale = True
            view = pool.info()
            view["stale"] = stale
            return view

        return list(await asyncio.gather(*(_view(p) for p in self._registry.pools())))

    async def get_pool(self, token_a: str, token_b: str) -> Dict[str, Any]:
        pool = self._registry.resolve(token_a, token_b)
        await pool.refresh()
        view = pool.info()
        view["recent_swaps"] = [
            {
                "tx_id": s.tx_id,
                "user": s.user,
                "token_in": s.token_in,
                "token_out": s.token_out,
                "amount_in": str(s.amount_in),
                "amount_out": str(s.amount_out),
                "fee_paid": str(s.fee_paid),
                "timestamp": s.timestamp,
            }
            for s in list(pool.history)[:RECENT_SWAPS_IN_VIEW]
        ]
        return view

    async def create_pool(
        self,
        creator: str,
        token_a: str,
        token_b: str,
        amount_a: str,
        amount_b: str,
        *,
        fee_bps: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create a pool and make its first deposit (creation and bootstrap liquidity go together)."""
        if not creator:
            raise InvalidInput("creator must be non-empty")
        canonical_order(token_a, token_b)
        t_a, t_b = await asyncio.gather(self.token(token_a), self.token(token_b))
        raw_a = _positive(amount_a, t_a.decimals, name="amount_a")
        raw_b = _positive(amount_b, t_b.decimals, name="amount_b")
        if self._registry.has_pool(token_a, token_b):
            raise PoolAlreadyExists(f"pool for {token_a} / {token_b} already exists")

        pool = await self._registry.create_pool(token_a, token_b, creator, fee_bps=fee_bps)
        return await self._deposit(pool, creator, token_a, raw_a, raw_b, 0, 0, created=True)

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    async def swap_quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: str,
        *,
        slippage_bps: Optional[int] = None,
        gas_price_hint: int = 0,
    ) -> Dict[str, Any]:
        slip = _slippage(slippage_bps, self._settings.default_slippage_bps)
        t_in, t_out = await asyncio.gather(self.token(token_in), self.token(token_out))
        raw_in = _positive(amount_in, t_in.decimals, name="amount_in")
        pool = self._registry.resolve(token_in, token_out)
        await pool.refresh()
        q = pool.quote_swap(token_in, raw_in)
        if q.amount_out <= 0:
            raise InsufficientOutput(f"swap of {amount_in} is too small for pool {pool.pair_key}")

        out: Dict[str, Any] = {
            "pool_address": pool.address,
            "token_in": token_in,
            "token_out": token_out,
            "amount_in": amount_view(raw_in, t_in.decimals),
            "amount_out": amount_view(q.amount_out, t_out.decimals),
            "fee_paid": amount_view(q.fee_paid, t_in.decimals),
            "price_impact": q.price_impact,
            "slippage_bps": slip,
            "min_amount_out": amount_view(slippage_floor(q.amount_out, slip), t_out.decimals),
            "new_reserve_in": amount_view(q.new_reserve_in, t_in.decimals),
            "new_reserve_out": amount_view(q.new_reserve_out, t_out.decimals),
            "valid_until": int(time.time()) + self._settings.tx_validity_s,
        }
        if self._aggregator is not None:
            best = await self._aggregator.best_quote(t_in, t_out, raw_in, gas_price_hint)
            out["best_venue"] = self._aggregated_view(best, t_in, t_out)
        return out

    async def swap_execute(
        self,
        user: str,
        token_in: str,
        token_out: str,
        amount_in: str,
        *,
        min_amount_out: Optional[str] = None,
        slippage_bps: Optional[int] = None,
        valid_until: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Execute a swap. The guard is `min_amount_out` when given, otherwise it is
        derived from the current quote and `slippage_bps` (default tolerance
        when omitted).
        """
        if not user:
            raise InvalidInput("user must be non-empty")
        if valid_until is not None and int(time.time()) > int(valid_until):
            raise InvalidInput(f"request expired at {valid_until}")
        t_in, t_out = await asyncio.gather(self.token(token_in), self.token(token_out))
        raw_in = _positive(amount_in, t_in.decimals, name="amount_in")
        pool = self._registry.resolve(token_in, token_out)

        if min_amount_out is not None:
            raw_min = to_raw_non_negative(min_amount_out, t_out.decimals, name="min_amount_out")
        else:
            slip = _slippage(slippage_bps, self._settings.default_slippage_bps)
            await pool.refresh()
            raw_min = slippage_floor(pool.quote_swap(token_in, raw_in).amount_out, slip)

        result = await pool.execute_swap(user, token_in, raw_in, raw_min)
        return {
            "tx_id": result.tx_id,
            "pool_address": pool.address,
            "token_in": token_in,
            "token_out": token_out,
            "amount_in": amount_view(result.amount_in, t_in.decimals),
            "amount_out": amount_view(result.amount_out, t_out.decimals),
            "fee_paid": amount_view(result.fee_paid, t_in.decimals),
            "min_amount_out": amount_view(result.min_amount_out, t_out.decimals),
            "price_impact": result.price_impact,
            "new_reserves": self._reserves_view(pool, result.reserves),
            "reserves_confirmed": result.reserves_confirmed,
        }

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------

    async def _deposit(
        self,
        pool: Pool,
        user: str,
        first_token: str,
        raw_first: int,
        raw_second: int,
        min_first: int,
        min_second: int,
        *,
        created: bool = False,
    ) -> Dict[str, Any]:
        if first_token == pool.record.token_a:
            args = (raw_first, raw_second, min_first, min_second)
        else:
            args = (raw_second, raw_first, min_second, min_first)
        result = await pool.execute_add_liquidity(user, *args)
        view = self._liquidity_view(pool, result)
        view["created"] = created
        view["pool"] = pool.info()
        return view

    async def add_liquidity(
        self,
        user: str,
        token_a: str,
        token_b: str,
        amount_a: str,
        amount_b: str,
        *,
        amount_a_min: str = "0",
        amount_b_min: str = "0",
    ) -> Dict[str, Any]:
        """Deposit into the pool for the pair, creating the pool first if there is none."""
        if not user:
            raise InvalidInput("user must be non-empty")
        canonical_order(token_a, token_b)
        t_a, t_b = await asyncio.gather(self.token(token_a), self.token(token_b))
        raw_a = _positive(amount_a, t_a.decimals, name="amount_a")
        raw_b = _positive(amount_b, t_b.decimals, name="amount_b")
        min_a = to_raw_non_negative(amount_a_min, t_a.decimals, name="amount_a_min")
        min_b = to_raw_non_negative(amount_b_min, t_b.decimals, name="amount_b_min")

        pool = self._registry.get(token_a, token_b)
        created = False
        if pool is None:
            pool = await self._registry.create_pool(token_a, token_b, user)
            created = True
        return await self._deposit(pool, user, token_a, raw_a, raw_b, min_a, min_b, created=created)

    async def remove_liquidity(
        self,
        user: str,
        token_a: str,
        token_b: str,
        lp_amount: str,
        *,
        amount_a_min: str = "0",
        amount_b_min: str = "0",
    ) -> Dict[str, Any]:
        if not user:
            raise InvalidInput("user must be non-empty")
        pool = self._registry.resolve(token_a, token_b)
        await pool.refresh()
        assert pool.token_a is not None and pool.token_b is not None and pool.lp_decimals is not None
        raw_lp = _positive(lp_amount, pool.lp_decimals, name="lp_amount")
        t_a, t_b = (pool.token_a, pool.token_b) if token_a == pool.record.token_a else (pool.token_b, pool.token_a)
        min_a = to_raw_non_negative(amount_a_min, t_a.decimals, name="amount_a_min")
        min_b = to_raw_non_negative(amount_b_min, t_b.decimals, name="amount_b_min")
        if token_a != pool.record.token_a:
            min_a, min_b = min_b, min_a

        result = await pool.execute_remove_liquidity(user, raw_lp, min_a, min_b)
        view = self._liquidity_view(pool, result)
        view["pool"] = pool.info()
        return view

    async def positions(self, holder: str) -> List[Dict[str, Any]]:
        if not holder:
            raise InvalidInput("holder must be non-empty")
        found = await self._registry.positions_for(holder)
        return [self._position_view(self._registry.by_address(p.pool_address), p) for p in found]
