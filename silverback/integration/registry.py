"""
Pool registry: the process-wide map pair_key -> Pool.

Constructed once by the process entry point and passed to whatever needs it.
The in-memory map is a cache of the persistence collaborator and is rebuilt
from it by `load()` at startup.

Creation is append-only: a pair key is reserved synchronously (before the
first await) so that, of several concurrent creators for the same pair, exactly
one proceeds and the others fail with `PoolAlreadyExists`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set

from ..config import DexSettings
from ..core.errors import (
    DexError,
    InvalidInput,
    LedgerWriteFailed,
    PoolAlreadyExists,
    PoolNotFound,
    ReserveUnavailable,
)
from ..state.pools import PoolRecord
from ..state.tokens import canonical_order, pair_key
from .interfaces import LedgerReader, LedgerWriter, PoolAccountAllocator, RegistryStore
from .pool import LPPosition, Pool


log = logging.getLogger(__name__)


class PoolRegistry:
    def __init__(
        self,
        *,
        reader: LedgerReader,
        writer: LedgerWriter,
        allocator: PoolAccountAllocator,
        store: RegistryStore,
        settings: Optional[DexSettings] = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._allocator = allocator
        self._store = store
        self._settings = settings or DexSettings()
        self._pools: Dict[str, Pool] = {}
        self._by_address: Dict[str, Pool] = {}
        self._pending: Set[str] = set()

    def __len__(self) -> int:
        return len(self._pools)

    def _make_pool(self, record: PoolRecord) -> Pool:
        s = self._settings
        return Pool(
            record,
            reader=self._reader,
            writer=self._writer,
            io_timeout_s=s.io_timeout_s,
            write_timeout_s=s.write_timeout_s,
            fee_recipient=s.fee_recipient,
        )

    def _register(self, pool: Pool) -> None:
        self._pools[pool.pair_key] = pool
        self._by_address[pool.address] = pool

    async def load(self) -> int:
        """
        Rebuild the cache from the store. Pools whose first refresh fails stay
        registered as UNINITIALIZED and retry on next use. Returns the number of registered pools.
        """
        records = await asyncio.to_thread(self._store.load_all)
        self._pools.clear()
        self._by_address.clear()
        for record in records:
            self._register(self._make_pool(record))

        async def _warm(pool: Pool) -> None:
            try:
                await pool.refresh()
            except ReserveUnavailable:
                pass  # already logged by Pool.refresh
            except DexError as exc:
                log.warning("pool %s failed to initialise: %s", pool.pair_key, exc)

        await asyncio.gather(*(_warm(p) for p in self._pools.values()))
        log.info("loaded %d pools from registry store", len(self._pools))
        return len(self._pools)

    def get(self, token_a: str, token_b: str) -> Optional[Pool]:
        return self._pools.get(pair_key(token_a, token_b))

    def resolve(self, token_a: str, token_b: str) -> Pool:
        pool = self.get(token_a, token_b)
        if pool is None:
            raise PoolNotFound(f"no pool for {token_a} / {token_b}")
        return pool

    def has_pool(self, token_a: str, token_b: str) -> bool:
        return self.get(token_a, token_b) is not None

    def by_address(self, pool_address: str) -> Pool:
        pool = self._by_address.get(pool_address)
        if pool is None:
            raise PoolNotFound(f"no pool at {pool_address}")
        return pool

    def pools(self) -> List[Pool]:
        return [self._pools[k] for k in sorted(self._pools)]

    async def create_pool(self, token_a: str, token_b: str, creator: str, *, fee_bps: Optional[int] = None) -> Pool:
        """
        Allocate the pool account + LP token, persist the record and register
        the pool (UNINITIALIZED until its first deposit).
        """
        low, high, _ = canonical_order(token_a, token_b)
        key = pair_key(low, high)
        fee = self._settings.pool_fee_bps if fee_bps is None else fee_bps
        if not isinstance(fee, int) or isinstance(fee, bool) or not (0 <= fee <= 10_000):
            raise InvalidInput(f"fee_bps must be in [0, 10000]: {fee!r}")
        if not creator:
            raise InvalidInput("creator must be non-empty")

        if key in self._pools or key in self._pending:
            raise PoolAlreadyExists(f"pool for {key} already exists")
        self._pending.add(key)
        try:
            try:
                pool_address, lp_token = await asyncio.wait_for(
                    self._allocator.allocate_pool_accounts(key, creator, lp_decimals=self._settings.lp_decimals),
                    self._settings.write_timeout_s,
                )
            except asyncio.TimeoutError as exc:
                log.error("allocating accounts for %s timed out", key)
                raise LedgerWriteFailed(f"allocating pool accounts for {key} timed out") from exc
            except Exception as exc:
                log.error("allocating accounts for %s failed: %s", key, exc)
                raise LedgerWriteFailed(str(exc)) from exc

            record = PoolRecord(
                pair_key=key,
                pool_address=pool_address,
                token_a=low,
                token_b=high,
                lp_token=lp_token,
                fee_bps=fee,
                created_by=creator,
                created_at=int(time.time()),
            )
            await asyncio.to_thread(self._store.save, record)
            pool = self._make_pool(record)
            self._register(pool)
        finally:
            self._pending.discard(key)

        log.info("created pool %s at %s (lp %s, fee %d bps)", key, pool.address, record.lp_token, fee)
        return pool

    async def positions_for(self, holder: str) -> List[LPPosition]:
        """
        LP positions of `holder` across all pools, balance > 0 only.

        Pools whose lookup fails are skipped and logged; one bad pool never
        fails the listing.
        """

        async def _one(pool: Pool) -> Optional[LPPosition]:
            try:
                return await pool.position_of(holder)
            except Exception as exc:
                log.warning("skipping pool %s in positions for %s: %s", pool.pair_key, holder, exc)
                return None

        results = await asyncio.gather(*(_one(p) for p in self.pools()))
        return [p for p in results if p is not None and p.lp_balance > 0]
