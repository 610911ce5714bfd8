"""
Live pool state: last-observed reserves for one pair plus the
refresh -> compute -> submit -> refresh sequence of each mutating operation.

Consistency model
-----------------
A `Pool` holds no lock. Two concurrent `execute_swap` calls against the same
pool may both price against the same pre-trade reserves and both submit; the
ledger's own transaction ordering decides which lands first. The loser is
protected only by its slippage guard (`min_amount_out` / `amount_*_min`), which
is checked against freshly read reserves before anything is submitted, and by
the ledger rejecting transfers that the pool account can no longer cover.
Integrators that need exclusive-writer semantics must serialize writes to a
pool on the ledger side.

Failure model
-------------
- A failed or timed-out reserve read aborts a mutating operation with
  `ReserveUnavailable` before anything is submitted.
- Minimums are checked before any ledger write (`SlippageExceeded`).
- A rejected write surfaces as `LedgerWriteFailed` with the ledger's reason;
  writes are never retried here.
- A failed refresh *after* a successful write does not fail the operation (it
  already landed); the result carries projected reserves and
  `reserves_confirmed=False`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from ..core.amounts import amount_view
from ..core.cpmm import (
    BurnQuote,
    MintQuote,
    OptimalDeposit,
    SwapQuote,
    liquidity_burn,
    liquidity_mint,
    optimal_deposit,
    spot_price,
    swap_output,
    swap_output_fee_extracted,
)
from ..core.errors import (
    DexError,
    InsufficientLiquidityMinted,
    InsufficientOutput,
    InsufficientShares,
    InvalidAmount,
    InvalidInput,
    LedgerWriteFailed,
    ReserveUnavailable,
    SlippageExceeded,
)
from ..state.pools import EMPTY_RESERVES, PoolRecord, PoolReserves, PoolStatus
from ..state.tokens import Token
from .interfaces import LedgerOperation, LedgerReader, LedgerWriter, burn, mint, transfer


log = logging.getLogger(__name__)

SWAP_HISTORY_LIMIT = 1000


def _require_amount(name: str, value: int, *, allow_zero: bool = False) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount(f"{name} must be an integer amount")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(f"{name} must be positive: {value}")
    return value


@dataclass(frozen=True)
class AddLiquidityQuote:
    deposit: OptimalDeposit
    mint: MintQuote


@dataclass(frozen=True)
class SwapExecution:
    tx_id: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    fee_paid: int
    price_impact: float
    min_amount_out: int
    reserves: PoolReserves
    reserves_confirmed: bool


@dataclass(frozen=True)
class LiquidityExecution:
    tx_id: str
    amount_a: int
    amount_b: int
    lp_amount: int
    share: float
    refund_a: int
    refund_b: int
    reserves: PoolReserves
    reserves_confirmed: bool


@dataclass(frozen=True)
class SwapRecord:
    tx_id: str
    user: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    fee_paid: int
    timestamp: int


@dataclass(frozen=True)
class LPPosition:
    pool_address: str
    pair_key: str
    lp_token: str
    holder: str
    lp_balance: int
    lp_supply: int
    share: float
    amount_a: int
    amount_b: int


class Pool:
    def __init__(
        self,
        record: PoolRecord,
        *,
        reader: LedgerReader,
        writer: LedgerWriter,
        io_timeout_s: float = 5.0,
        write_timeout_s: float = 30.0,
        fee_recipient: Optional[str] = None,
    ) -> None:
        self.record = record
        self._reader = reader
        self._writer = writer
        self._io_timeout_s = io_timeout_s
        self._write_timeout_s = write_timeout_s
        self._fee_recipient = fee_recipient

        self.token_a: Optional[Token] = None
        self.token_b: Optional[Token] = None
        self.lp_decimals: Optional[int] = None
        self.reserves: PoolReserves = EMPTY_RESERVES
        self.status = PoolStatus.UNINITIALIZED
        self.last_refreshed_at: Optional[float] = None
        self.history: Deque[SwapRecord] = deque(maxlen=SWAP_HISTORY_LIMIT)

    def __repr__(self) -> str:
        return f"Pool({self.record.pair_key}, {self.status.value}, {self.reserves})"

    @property
    def pair_key(self) -> str:
        return self.record.pair_key

    @property
    def address(self) -> str:
        return self.record.pool_address

    @property
    def fee_bps(self) -> int:
        return self.record.fee_bps

    def has_token(self, token: str) -> bool:
        return token in (self.record.token_a, self.record.token_b)

    def _other(self, token_in: str) -> str:
        if token_in == self.record.token_a:
            return self.record.token_b
        if token_in == self.record.token_b:
            return self.record.token_a
        raise InvalidInput(f"token {token_in} is not in pool {self.pair_key}")

    # ------------------------------------------------------------------
    # Ledger reads
    # ------------------------------------------------------------------

    async def _ensure_tokens(self) -> None:
        if self.token_a is not None and self.token_b is not None and self.lp_decimals is not None:
            return
        meta_a, meta_b, meta_lp = await asyncio.gather(
            self._reader.get_token_metadata(self.record.token_a),
            self._reader.get_token_metadata(self.record.token_b),
            self._reader.get_token_metadata(self.record.lp_token),
        )
        self.token_a = Token(self.record.token_a, meta_a.decimals, meta_a.symbol)
        self.token_b = Token(self.record.token_b, meta_b.decimals, meta_b.symbol)
        self.lp_decimals = meta_lp.decimals

    async def _read(self) -> PoolReserves:
        await self._ensure_tokens()
        (reserve_a, reserve_b), supply = await asyncio.gather(
            self._reader.get_reserves(self.record),
            self._reader.get_total_supply(self.record.lp_token),
        )
        return PoolReserves(reserve_a=reserve_a, reserve_b=reserve_b, lp_supply=supply)

    async def refresh(self, *, timeout_s: Optional[float] = None) -> PoolReserves:
        """
        Re-read reserves and LP supply from the ledger.

        Raises ReserveUnavailable on any read failure or when `timeout_s`
        (default: the pool's I/O timeout) elapses. On failure the last
        observation is left untouched.
        """
        timeout = self._io_timeout_s if timeout_s is None else timeout_s
        try:
            reserves = await asyncio.wait_for(self._read(), timeout)
        except asyncio.TimeoutError as exc:
            log.warning("reserve refresh for %s timed out after %.2fs", self.pair_key, timeout)
            raise ReserveUnavailable(f"reserve refresh for {self.pair_key} timed out") from exc
        except DexError:
            raise
        except Exception as exc:
            log.warning("reserve refresh for %s failed: %s", self.pair_key, exc)
            raise ReserveUnavailable(f"reserve refresh for {self.pair_key} failed: {exc}") from exc

        problems = reserves.violations()
        if problems:
            log.warning("pool %s reserves look inconsistent: %s", self.pair_key, "; ".join(problems))
        self.reserves = reserves
        self.status = PoolStatus.ACTIVE
        self.last_refreshed_at = time.time()
        return reserves

    async def _lp_balance(self, holder: str) -> int:
        try:
            return await asyncio.wait_for(
                self._reader.get_token_balance(holder, self.record.lp_token), self._io_timeout_s
            )
        except asyncio.TimeoutError as exc:
            log.warning("LP balance lookup for %s in %s timed out", holder, self.pair_key)
            raise ReserveUnavailable(f"LP balance lookup for {holder} timed out") from exc
        except Exception as exc:
            log.warning("LP balance lookup for %s in %s failed: %s", holder, self.pair_key, exc)
            raise ReserveUnavailable(f"LP balance lookup for {holder} failed: {exc}") from exc

    async def _refresh_after_write(self, projected: PoolReserves) -> Tuple[PoolReserves, bool]:
        try:
            return await self.refresh(), True
        except ReserveUnavailable:
            # The write already landed; keep the projection until the next read.
            self.reserves = projected
            return projected, False

    # ------------------------------------------------------------------
    # Quotes (pure, against the last observation)
    # ------------------------------------------------------------------

    def _price(self, reserves: PoolReserves, token_in: str, amount_in: int) -> SwapQuote:
        reserve_in, reserve_out = reserves.oriented(token_in, self.record.token_a)
        if self._fee_recipient is not None:
            return swap_output_fee_extracted(amount_in, reserve_in, reserve_out, self.fee_bps)
        return swap_output(amount_in, reserve_in, reserve_out, self.fee_bps)

    def quote_swap(self, token_in: str, amount_in: int) -> SwapQuote:
        self._other(token_in)
        return self._price(self.reserves, token_in, amount_in)

    def quote_add_liquidity(self, amount_a_desired: int, amount_b_desired: int) -> AddLiquidityQuote:
        r = self.reserves
        deposit = optimal_deposit(amount_a_desired, amount_b_desired, r.reserve_a, r.reserve_b)
        minted = liquidity_mint(deposit.amount_a, deposit.amount_b, r.reserve_a, r.reserve_b, r.lp_supply)
        return AddLiquidityQuote(deposit=deposit, mint=minted)

    def quote_remove_liquidity(self, lp_amount: int) -> BurnQuote:
        r = self.reserves
        return liquidity_burn(lp_amount, r.reserve_a, r.reserve_b, r.lp_supply)

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    async def _submit(self, ops: Sequence[LedgerOperation], *, signer: str, what: str) -> str:
        try:
            receipt = await asyncio.wait_for(self._writer.submit(ops, signer=signer), self._write_timeout_s)
        except asyncio.TimeoutError as exc:
            log.error("%s on %s: ledger write timed out after %.2fs", what, self.pair_key, self._write_timeout_s)
            raise LedgerWriteFailed(f"timed out after {self._write_timeout_s}s; outcome unknown") from exc
        except Exception as exc:
            log.error("%s on %s: ledger write failed: %s", what, self.pair_key, exc)
            raise LedgerWriteFailed(str(exc)) from exc
        if not receipt.ok:
            log.error("%s on %s: ledger rejected write: %s", what, self.pair_key, receipt.error)
            raise LedgerWriteFailed(receipt.error or "rejected")
        return receipt.tx_id or ""

    def swap_operations(self, user: str, token_in: str, amount_in: int, quote: SwapQuote) -> List[LedgerOperation]:
        token_out = self._other(token_in)
        to_pool = amount_in
        ops: List[LedgerOperation] = []
        if self._fee_recipient is not None and quote.fee_paid > 0:
            ops.append(transfer(token_in, quote.fee_paid, user, self._fee_recipient))
            to_pool = amount_in - quote.fee_paid
        if to_pool <= 0 or quote.amount_out <= 0:
            raise InsufficientOutput(f"swap of {amount_in} is too small for pool {self.pair_key}")
        ops.append(transfer(token_in, to_pool, user, self.address))
        ops.append(transfer(token_out, quote.amount_out, self.address, user, on_behalf=True))
        return ops

    async def execute_swap(self, user: str, token_in: str, amount_in: int, min_amount_out: int = 0) -> SwapExecution:
        """Exact-in swap of `amount_in` of `token_in`; fails before any write if output < `min_amount_out`."""
        _require_amount("amount_in", amount_in)
        _require_amount("min_amount_out", min_amount_out, allow_zero=True)
        token_out = self._other(token_in)

        reserves = await self.refresh()
        quote = self._price(reserves, token_in, amount_in)
        if quote.amount_out <= 0:
            raise InsufficientOutput(f"swap of {amount_in} is too small for pool {self.pair_key}")
        if quote.amount_out < min_amount_out:
            raise SlippageExceeded(f"output {quote.amount_out} is below minimum {min_amount_out}")

        ops = self.swap_operations(user, token_in, amount_in, quote)
        tx_id = await self._submit(ops, signer=user, what="swap")

        if token_in == self.record.token_a:
            projected = PoolReserves(quote.new_reserve_in, quote.new_reserve_out, reserves.lp_supply)
        else:
            projected = PoolReserves(quote.new_reserve_out, quote.new_reserve_in, reserves.lp_supply)
        after, confirmed = await self._refresh_after_write(projected)

        self.history.appendleft(
            SwapRecord(
                tx_id=tx_id,
                user=user,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                amount_out=quote.amount_out,
                fee_paid=quote.fee_paid,
                timestamp=int(time.time()),
            )
        )
        log.info(
            "SWAP %s %s %s %s -> %s %s",
            user,
            self.address,
            amount_in,
            self._symbol(token_in),
            quote.amount_out,
            self._symbol(token_out),
        )
        return SwapExecution(
            tx_id=tx_id,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=quote.amount_out,
            fee_paid=quote.fee_paid,
            price_impact=quote.price_impact,
            min_amount_out=min_amount_out,
            reserves=after,
            reserves_confirmed=confirmed,
        )

    async def execute_add_liquidity(
        self,
        user: str,
        amount_a_desired: int,
        amount_b_desired: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
    ) -> LiquidityExecution:
        """Deposit at the pool ratio (or set the ratio if the pool is empty) and mint LP tokens to `user`."""
        _require_amount("amount_a_desired", amount_a_desired)
        _require_amount("amount_b_desired", amount_b_desired)
        _require_amount("amount_a_min", amount_a_min, allow_zero=True)
        _require_amount("amount_b_min", amount_b_min, allow_zero=True)

        reserves = await self.refresh()
        deposit = optimal_deposit(amount_a_desired, amount_b_desired, reserves.reserve_a, reserves.reserve_b)
        if deposit.amount_a < amount_a_min or deposit.amount_b < amount_b_min:
            raise SlippageExceeded(
                f"deposit ({deposit.amount_a}, {deposit.amount_b}) is below minimum ({amount_a_min}, {amount_b_min})"
            )
        minted = liquidity_mint(
            deposit.amount_a, deposit.amount_b, reserves.reserve_a, reserves.reserve_b, reserves.lp_supply
        )
        if minted.minted <= 0:
            raise InsufficientLiquidityMinted(f"deposit into {self.pair_key} would mint no LP tokens")

        ops: List[LedgerOperation] = []
        if deposit.amount_a > 0:
            ops.append(transfer(self.record.token_a, deposit.amount_a, user, self.address))
        if deposit.amount_b > 0:
            ops.append(transfer(self.record.token_b, deposit.amount_b, user, self.address))
        ops.append(mint(self.record.lp_token, minted.minted, user))
        tx_id = await self._submit(ops, signer=user, what="add liquidity")

        projected = PoolReserves(
            reserves.reserve_a + deposit.amount_a,
            reserves.reserve_b + deposit.amount_b,
            reserves.lp_supply + minted.minted,
        )
        after, confirmed = await self._refresh_after_write(projected)
        log.info("ADD %s %s %s/%s lp=%s", user, self.address, deposit.amount_a, deposit.amount_b, minted.minted)
        return LiquidityExecution(
            tx_id=tx_id,
            amount_a=deposit.amount_a,
            amount_b=deposit.amount_b,
            lp_amount=minted.minted,
            share=minted.share,
            refund_a=deposit.refund_a,
            refund_b=deposit.refund_b,
            reserves=after,
            reserves_confirmed=confirmed,
        )

    async def execute_remove_liquidity(
        self,
        user: str,
        lp_amount: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
    ) -> LiquidityExecution:
        """Burn `lp_amount` of the user's LP tokens and pay out the proportional reserves."""
        _require_amount("lp_amount", lp_amount)
        _require_amount("amount_a_min", amount_a_min, allow_zero=True)
        _require_amount("amount_b_min", amount_b_min, allow_zero=True)

        reserves = await self.refresh()
        balance = await self._lp_balance(user)
        if lp_amount > balance:
            raise InsufficientShares(f"{user} holds {balance} LP tokens, cannot burn {lp_amount}")

        quote = liquidity_burn(lp_amount, reserves.reserve_a, reserves.reserve_b, reserves.lp_supply)
        if quote.amount_a <= 0 and quote.amount_b <= 0:
            raise InsufficientOutput(f"burning {lp_amount} LP tokens returns nothing")
        if quote.amount_a < amount_a_min or quote.amount_b < amount_b_min:
            raise SlippageExceeded(
                f"withdrawal ({quote.amount_a}, {quote.amount_b}) is below minimum ({amount_a_min}, {amount_b_min})"
            )

        ops: List[LedgerOperation] = [burn(self.record.lp_token, lp_amount, user)]
        if quote.amount_a > 0:
            ops.append(transfer(self.record.token_a, quote.amount_a, self.address, user, on_behalf=True))
        if quote.amount_b > 0:
            ops.append(transfer(self.record.token_b, quote.amount_b, self.address, user, on_behalf=True))
        tx_id = await self._submit(ops, signer=user, what="remove liquidity")

        projected = PoolReserves(
            reserves.reserve_a - quote.amount_a,
            reserves.reserve_b - quote.amount_b,
            reserves.lp_supply - lp_amount,
        )
        after, confirmed = await self._refresh_after_write(projected)
        log.info("REMOVE %s %s lp=%s -> %s/%s", user, self.address, lp_amount, quote.amount_a, quote.amount_b)
        return LiquidityExecution(
            tx_id=tx_id,
            amount_a=quote.amount_a,
            amount_b=quote.amount_b,
            lp_amount=lp_amount,
            share=quote.share,
            refund_a=0,
            refund_b=0,
            reserves=after,
            reserves_confirmed=confirmed,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _symbol(self, token: str) -> str:
        for t in (self.token_a, self.token_b):
            if t is not None and t.address == token:
                return t.display_symbol
        return token[-4:].upper()

    async def position_of(self, holder: str) -> LPPosition:
        """Holder's LP balance and current entitlement. Reads the ledger; raises ReserveUnavailable."""
        reserves = await self.refresh()
        balance = await self._lp_balance(holder)
        quote = liquidity_burn(min(balance, reserves.lp_supply), reserves.reserve_a, reserves.reserve_b, reserves.lp_supply)
        return LPPosition(
            pool_address=self.address,
            pair_key=self.pair_key,
            lp_token=self.record.lp_token,
            holder=holder,
            lp_balance=balance,
            lp_supply=reserves.lp_supply,
            share=quote.share,
            amount_a=quote.amount_a,
            amount_b=quote.amount_b,
        )

    def info(self) -> Dict[str, Any]:
        """Pool view for front ends, from the last observation."""
        r = self.reserves
        out: Dict[str, Any] = {
            "pair_key": self.pair_key,
            "pool_address": self.address,
            "lp_token": self.record.lp_token,
            "fee_bps": self.fee_bps,
            "status": self.status.value,
            "tradable": r.is_tradable,
            "created_by": self.record.created_by,
            "created_at": self.record.created_at,
        }
        if self.token_a is None or self.token_b is None or self.lp_decimals is None:
            out["token_a"] = {"address": self.record.token_a}
            out["token_b"] = {"address": self.record.token_b}
            return out

        price_ab, price_ba = spot_price(r.reserve_a, r.reserve_b, self.token_a.decimals, self.token_b.decimals)
        out.update(
            {
                "token_a": _token_view(self.token_a),
                "token_b": _token_view(self.token_b),
                "reserve_a": amount_view(r.reserve_a, self.token_a.decimals),
                "reserve_b": amount_view(r.reserve_b, self.token_b.decimals),
                "lp_supply": amount_view(r.lp_supply, self.lp_decimals),
                "price_a_in_b": price_ab,
                "price_b_in_a": price_ba,
            }
        )
        return out


def _token_view(token: Token) -> Dict[str, Any]:
    return {"address": token.address, "symbol": token.display_symbol, "decimals": token.decimals}
