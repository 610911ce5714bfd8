"""
Collaborator interfaces consumed by the pool/registry shell.

One explicit capability interface per collaborator, implemented once per
target ledger:
- `LedgerReader`: reserves, balances, LP supply, token metadata
- `LedgerWriter`: submits an ordered list of elementary operations
- `PoolAccountAllocator`: creates the pool account and LP token for a new pair
- `RegistryStore`: persistence of the pool registry

All ledger calls are coroutines; callers bound them with their own timeouts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..state.pools import PoolRecord


class OpKind(Enum):
    TRANSFER = "TRANSFER"
    MINT = "MINT"
    BURN = "BURN"


@dataclass(frozen=True)
class LedgerOperation:
    """
    Elementary ledger operation.

    - TRANSFER moves `amount` of `token` from `source` to `destination`.
      `on_behalf` marks transfers out of an account the signer does not own
      (the pool account), which the ledger authorizes by delegated permission.
    - MINT creates `amount` of `token` and credits `destination`.
    - BURN destroys `amount` of `token` held by `source`.
    """

    kind: OpKind
    token: str
    amount: int
    source: Optional[str] = None
    destination: Optional[str] = None
    on_behalf: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.amount, int) or isinstance(self.amount, bool) or self.amount <= 0:
            raise ValueError(f"operation amount must be a positive int: {self.amount!r}")
        if not self.token:
            raise ValueError("operation token must be non-empty")
        if self.kind == OpKind.TRANSFER and (not self.source or not self.destination):
            raise ValueError("TRANSFER needs source and destination")
        if self.kind == OpKind.MINT and (not self.destination or self.source is not None):
            raise ValueError("MINT needs a destination and no source")
        if self.kind == OpKind.BURN and (not self.source or self.destination is not None):
            raise ValueError("BURN needs a source and no destination")

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"kind": self.kind.value, "token": self.token, "amount": str(self.amount)}
        if self.source is not None:
            d["source"] = self.source
        if self.destination is not None:
            d["destination"] = self.destination
        if self.on_behalf:
            d["on_behalf"] = True
        return d


def transfer(token: str, amount: int, source: str, destination: str, *, on_behalf: bool = False) -> LedgerOperation:
    return LedgerOperation(
        kind=OpKind.TRANSFER,
        token=token,
        amount=amount,
        source=source,
        destination=destination,
        on_behalf=on_behalf,
    )


def mint(token: str, amount: int, destination: str) -> LedgerOperation:
    return LedgerOperation(kind=OpKind.MINT, token=token, amount=amount, destination=destination)


def burn(token: str, amount: int, source: str) -> LedgerOperation:
    return LedgerOperation(kind=OpKind.BURN, token=token, amount=amount, source=source)


@dataclass(frozen=True)
class LedgerReceipt:
    ok: bool
    tx_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TokenMetadata:
    decimals: int
    symbol: str = ""


class LedgerReader:
    """Read side of a ledger."""

    async def get_reserves(self, pool: PoolRecord) -> Tuple[int, int]:
        """(reserve of pool.token_a, reserve of pool.token_b) held by the pool account."""
        raise NotImplementedError

    async def get_token_balance(self, holder: str, token: str) -> int:
        raise NotImplementedError

    async def get_total_supply(self, token: str) -> int:
        raise NotImplementedError

    async def get_token_metadata(self, token: str) -> TokenMetadata:
        raise NotImplementedError


class LedgerWriter:
    """Write side of a ledger. Never retried by the core."""

    async def submit(self, operations: Sequence[LedgerOperation], *, signer: str) -> LedgerReceipt:
        raise NotImplementedError


class PoolAccountAllocator:
    """Identifier lookup/creation for new pools."""

    async def allocate_pool_accounts(self, pair_key: str, creator: str, *, lp_decimals: int) -> Tuple[str, str]:
        """Create (pool_address, lp_token_address) for `pair_key`."""
        raise NotImplementedError


class RegistryStore:
    """Persistence of pool registry entries, upserted by pair_key."""

    def load_all(self) -> List[PoolRecord]:
        raise NotImplementedError

    def save(self, record: PoolRecord) -> None:
        raise NotImplementedError
