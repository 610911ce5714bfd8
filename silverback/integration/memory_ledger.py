"""
In-memory ledger implementing the read, write and account-allocation
collaborators over a `BalanceTable`.

Used as the offline backend of the API server (seeded from a fixture file)
and as the ledger in tests. A submitted operation list is applied to a copy of
the balance table and committed only if every operation succeeds, so a
rejected write never leaves partial state behind.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, Mapping, Optional, Sequence, Set, Tuple

from ..state.balances import BalanceTable
from ..state.canonical import digest_hex
from ..state.pools import PoolRecord
from .interfaces import (
    LedgerOperation,
    LedgerReader,
    LedgerReceipt,
    LedgerWriter,
    OpKind,
    PoolAccountAllocator,
    TokenMetadata,
)


log = logging.getLogger(__name__)

SUBMISSION_LOG_LIMIT = 1000


class LedgerReadError(RuntimeError):
    pass


class InMemoryLedger(LedgerReader, LedgerWriter, PoolAccountAllocator):
    def __init__(self, *, submission_log_limit: int = SUBMISSION_LOG_LIMIT) -> None:
        self.balances = BalanceTable()
        self._metadata: Dict[str, TokenMetadata] = {}
        # Accounts the operator may move funds out of on their behalf.
        self._pool_accounts: Set[str] = set()
        # Tokens the operator may mint/burn (LP tokens).
        self._lp_tokens: Set[str] = set()
        self._nonce = 0
        # Most recent applied writes, oldest first.
        self.submissions: Deque[Tuple[str, Tuple[LedgerOperation, ...]]] = deque(maxlen=submission_log_limit)

        # Fault injection knobs.
        self.read_delay_s: float = 0.0
        self.fail_reads: Optional[str] = None
        self.fail_balance_reads_for: Set[str] = set()
        self.reject_next_write: Optional[str] = None

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def register_token(self, address: str, decimals: int, symbol: str = "") -> None:
        self._metadata[address] = TokenMetadata(decimals=decimals, symbol=symbol)

    def credit(self, holder: str, token: str, amount: int) -> None:
        """Faucet: credit `amount` of a registered token to `holder`."""
        if token not in self._metadata:
            raise KeyError(f"unknown token: {token}")
        self.balances.credit(holder, token, amount)

    def adopt_pool(self, record: PoolRecord, *, lp_decimals: int = 9) -> None:
        """Make an already-existing pool's accounts known (e.g. loaded from a registry file)."""
        self._pool_accounts.add(record.pool_address)
        self._lp_tokens.add(record.lp_token)
        if record.lp_token not in self._metadata:
            self.register_token(record.lp_token, lp_decimals, "SBLP")

    @classmethod
    def from_fixture(cls, fixture: Mapping[str, Any]) -> "InMemoryLedger":
        """
        Build a ledger from a fixture mapping:

            tokens:   {address: {decimals: int, symbol: str}}
            balances: {holder: {token: raw_amount}}

        Raw amounts may be ints or decimal-integer strings.
        """
        ledger = cls()
        tokens = fixture.get("tokens") or {}
        if not isinstance(tokens, Mapping):
            raise ValueError("fixture 'tokens' must be a mapping")
        for address, meta in tokens.items():
            if not isinstance(meta, Mapping):
                raise ValueError(f"fixture token {address!r} must be a mapping")
            ledger.register_token(str(address), int(meta.get("decimals", 0)), str(meta.get("symbol", "")))
        balances = fixture.get("balances") or {}
        if not isinstance(balances, Mapping):
            raise ValueError("fixture 'balances' must be a mapping")
        for holder, held in balances.items():
            if not isinstance(held, Mapping):
                raise ValueError(f"fixture balances for {holder!r} must be a mapping")
            for token, amount in held.items():
                ledger.credit(str(holder), str(token), int(amount))
        return ledger

    # ------------------------------------------------------------------
    # LedgerReader
    # ------------------------------------------------------------------

    async def _before_read(self) -> None:
        if self.read_delay_s > 0:
            await asyncio.sleep(self.read_delay_s)
        if self.fail_reads is not None:
            raise LedgerReadError(self.fail_reads)

    async def get_reserves(self, pool: PoolRecord) -> Tuple[int, int]:
        await self._before_read()
        return (
            self.balances.get(pool.pool_address, pool.token_a),
            self.balances.get(pool.pool_address, pool.token_b),
        )

    async def get_token_balance(self, holder: str, token: str) -> int:
        await self._before_read()
        if holder in self.fail_balance_reads_for:
            raise LedgerReadError(f"balance lookup failed for {holder}")
        return self.balances.get(holder, token)

    async def get_total_supply(self, token: str) -> int:
        await self._before_read()
        return self.balances.total_for_token(token)

    async def get_token_metadata(self, token: str) -> TokenMetadata:
        await self._before_read()
        meta = self._metadata.get(token)
        if meta is None:
            raise LedgerReadError(f"unknown token: {token}")
        return meta

    # ------------------------------------------------------------------
    # LedgerWriter
    # ------------------------------------------------------------------

    def _check_authorized(self, op: LedgerOperation, signer: str) -> Optional[str]:
        if op.token not in self._metadata:
            return f"unknown token: {op.token}"
        if op.kind == OpKind.TRANSFER:
            if op.on_behalf:
                if op.source not in self._pool_accounts:
                    return f"no permission to send on behalf of {op.source}"
            elif op.source != signer:
                return f"signer {signer} cannot send from {op.source}"
        elif op.kind == OpKind.MINT:
            if op.token not in self._lp_tokens:
                return f"token {op.token} is not mintable"
        elif op.kind == OpKind.BURN:
            if op.token not in self._lp_tokens:
                return f"token {op.token} is not burnable"
            if op.source != signer:
                return f"signer {signer} cannot burn from {op.source}"
        return None

    async def submit(self, operations: Sequence[LedgerOperation], *, signer: str) -> LedgerReceipt:
        ops = tuple(operations)
        if not ops:
            return LedgerReceipt(ok=False, error="empty operation list")
        if self.reject_next_write is not None:
            reason, self.reject_next_write = self.reject_next_write, None
            return LedgerReceipt(ok=False, error=reason)

        staged = self.balances.copy()
        for op in ops:
            denied = self._check_authorized(op, signer)
            if denied is not None:
                return LedgerReceipt(ok=False, error=denied)
            try:
                if op.kind == OpKind.TRANSFER:
                    staged.move(op.source, op.destination, op.token, op.amount)
                elif op.kind == OpKind.MINT:
                    staged.credit(op.destination, op.token, op.amount)
                else:
                    staged.debit(op.source, op.token, op.amount)
            except ValueError as exc:
                return LedgerReceipt(ok=False, error=str(exc))

        self._nonce += 1
        tx_id = digest_hex(
            "memory-ledger-tx",
            {"nonce": self._nonce, "signer": signer, "ops": [op.to_dict() for op in ops]},
        )
        self.balances = staged
        self.submissions.append((tx_id, ops))
        log.debug("applied %d operations for %s as %s", len(ops), signer, tx_id)
        return LedgerReceipt(ok=True, tx_id=tx_id)

    # ------------------------------------------------------------------
    # PoolAccountAllocator
    # ------------------------------------------------------------------

    async def allocate_pool_accounts(self, pair_key: str, creator: str, *, lp_decimals: int) -> Tuple[str, str]:
        self._nonce += 1
        seed = digest_hex("memory-ledger-pool", {"pair_key": pair_key, "creator": creator, "nonce": self._nonce})
        pool_address = "pool_" + seed[2:42]
        lp_token = "lp_" + seed[42:66]
        self._pool_accounts.add(pool_address)
        self._lp_tokens.add(lp_token)
        self.register_token(lp_token, lp_decimals, "SBLP")
        return pool_address, lp_token
