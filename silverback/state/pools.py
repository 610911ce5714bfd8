"""
Pool state records.

`PoolRecord` is the versioned, explicitly-schema'd registry entry for a pool
(what is persisted and what a ledger-side metadata field would carry).
`PoolReserves` is one observation of a pool's reserves and LP supply.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .canonical import canonical_json_bytes
from .tokens import PAIR_KEY_SEPARATOR, canonical_order, pair_key


POOL_RECORD_VERSION = 1


class PoolStatus(Enum):
    """Pool lifecycle: UNINITIALIZED until the first successful reserve read."""

    UNINITIALIZED = "UNINITIALIZED"
    ACTIVE = "ACTIVE"


def _require_str(value: Any, *, name: str, max_len: int = 4096) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    if not value:
        raise ValueError(f"{name} must be non-empty")
    if len(value) > max_len:
        raise ValueError(f"{name} too large")
    return value


def _require_int(value: Any, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return int(value)


@dataclass(frozen=True)
class PoolRecord:
    """
    Registry entry for one pool.

    Attributes:
        pair_key: canonical key of (token_a, token_b)
        pool_address: ledger account holding the reserves
        token_a: lexicographically smaller token address
        token_b: larger token address
        lp_token: ledger token representing LP shares
        fee_bps: swap fee in basis points
        created_by: creator account
        created_at: unix seconds
        version: schema version of this record
    """

    pair_key: str
    pool_address: str
    token_a: str
    token_b: str
    lp_token: str
    fee_bps: int
    created_by: str = ""
    created_at: int = 0
    version: int = POOL_RECORD_VERSION

    def __post_init__(self) -> None:
        for name in ("pair_key", "pool_address", "token_a", "token_b", "lp_token"):
            _require_str(getattr(self, name), name=name)
        low, high, _ = canonical_order(self.token_a, self.token_b)
        if (low, high) != (self.token_a, self.token_b):
            raise ValueError(f"tokens must be in canonical order: {self.token_a} < {self.token_b}")
        if self.pair_key != pair_key(self.token_a, self.token_b):
            raise ValueError(f"pair_key does not match tokens: {self.pair_key}")
        _require_int(self.fee_bps, name="fee_bps")
        if self.fee_bps > 10_000:
            raise ValueError(f"fee_bps must be in [0, 10000]: {self.fee_bps}")
        _require_int(self.created_at, name="created_at")
        if self.version != POOL_RECORD_VERSION:
            raise ValueError(f"unsupported pool record version: {self.version}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "pair_key": self.pair_key,
            "pool_address": self.pool_address,
            "token_a": self.token_a,
            "token_b": self.token_b,
            "lp_token": self.lp_token,
            "fee_bps": self.fee_bps,
            "created_by": self.created_by,
            "created_at": self.created_at,
        }

    def canonical_bytes(self) -> bytes:
        return canonical_json_bytes(self.to_dict())

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "PoolRecord":
        if not isinstance(obj, Mapping):
            raise TypeError("pool record must be a mapping")
        version = obj.get("version", POOL_RECORD_VERSION)
        if version != POOL_RECORD_VERSION:
            raise ValueError(f"unsupported pool record version: {version!r}")
        token_a = _require_str(obj.get("token_a"), name="token_a")
        token_b = _require_str(obj.get("token_b"), name="token_b")
        return cls(
            pair_key=_require_str(obj.get("pair_key", pair_key(token_a, token_b)), name="pair_key"),
            pool_address=_require_str(obj.get("pool_address"), name="pool_address"),
            token_a=token_a,
            token_b=token_b,
            lp_token=_require_str(obj.get("lp_token"), name="lp_token"),
            fee_bps=_require_int(obj.get("fee_bps"), name="fee_bps"),
            created_by=str(obj.get("created_by", "")),
            created_at=_require_int(obj.get("created_at", 0), name="created_at"),
            version=int(version),
        )


@dataclass(frozen=True)
class PoolReserves:
    """One observation of reserves + LP supply, as read from the ledger."""

    reserve_a: int
    reserve_b: int
    lp_supply: int

    def __post_init__(self) -> None:
        _require_int(self.reserve_a, name="reserve_a")
        _require_int(self.reserve_b, name="reserve_b")
        _require_int(self.lp_supply, name="lp_supply")

    @property
    def is_empty(self) -> bool:
        return self.reserve_a == 0 and self.reserve_b == 0

    @property
    def is_tradable(self) -> bool:
        return self.reserve_a > 0 and self.reserve_b > 0 and self.lp_supply > 0

    def violations(self) -> List[str]:
        """Pool invariants that this observation breaks (empty when consistent)."""
        out: List[str] = []
        if (self.reserve_a == 0) != (self.reserve_b == 0):
            out.append("exactly one reserve is zero")
        if (self.lp_supply == 0) != self.is_empty:
            out.append("lp_supply is zero iff both reserves are zero")
        return out

    def oriented(self, token_in: str, token_a: str) -> tuple[int, int]:
        """(reserve_in, reserve_out) for a trade whose input token is `token_in`."""
        if token_in == token_a:
            return self.reserve_a, self.reserve_b
        return self.reserve_b, self.reserve_a


EMPTY_RESERVES = PoolReserves(reserve_a=0, reserve_b=0, lp_supply=0)


def split_pair_key(key: str) -> Optional[tuple[str, str]]:
    parts = key.split(PAIR_KEY_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]
