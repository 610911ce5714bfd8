"""
Registry persistence collaborators.

Both stores upsert by `pair_key` and refuse to replace an existing pair with a
*different* pool, so a lost race in pool creation cannot overwrite the winner.

On-disk format of `JsonFileRegistryStore`:

    {"version": 1, "pools": [<PoolRecord.to_dict()>, ...]}

Files written by the older front end (a flat
`{pairKey: {address, tokenA, tokenB, lpTokenAddress}}` mapping) are read and
migrated on the next save.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..core.errors import PoolAlreadyExists
from ..state.pools import POOL_RECORD_VERSION, PoolRecord, split_pair_key
from ..state.tokens import canonical_order, pair_key
from .interfaces import RegistryStore


log = logging.getLogger(__name__)


def _check_upsert(existing: Optional[PoolRecord], record: PoolRecord) -> None:
    if existing is None:
        return
    if (existing.pool_address, existing.lp_token) != (record.pool_address, record.lp_token):
        raise PoolAlreadyExists(f"pair {record.pair_key} is already bound to pool {existing.pool_address}")


class InMemoryRegistryStore(RegistryStore):
    def __init__(self, records: Optional[List[PoolRecord]] = None) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, PoolRecord] = {}
        for r in records or []:
            self.save(r)

    def load_all(self) -> List[PoolRecord]:
        with self._lock:
            return [self._records[k] for k in sorted(self._records)]

    def save(self, record: PoolRecord) -> None:
        with self._lock:
            _check_upsert(self._records.get(record.pair_key), record)
            self._records[record.pair_key] = record


def _legacy_record(key: str, entry: Mapping[str, Any], default_fee_bps: int) -> PoolRecord:
    token_a = entry.get("tokenA")
    token_b = entry.get("tokenB")
    if not token_a or not token_b:
        split = split_pair_key(key)
        if split is None:
            raise ValueError(f"legacy registry entry {key!r} has no tokens")
        token_a, token_b = split
    low, high, _ = canonical_order(str(token_a), str(token_b))
    return PoolRecord(
        pair_key=pair_key(low, high),
        pool_address=str(entry.get("address", "")),
        token_a=low,
        token_b=high,
        lp_token=str(entry.get("lpTokenAddress", "")),
        fee_bps=int(entry.get("feeBps", default_fee_bps)),
    )


def parse_registry_document(doc: Any, *, default_fee_bps: int = 30) -> List[PoolRecord]:
    """Parse a registry document in the current or the legacy format."""
    if not isinstance(doc, Mapping):
        raise ValueError("registry document must be a JSON object")
    if "pools" in doc and "version" in doc:
        if doc["version"] != POOL_RECORD_VERSION:
            raise ValueError(f"unsupported registry version: {doc['version']!r}")
        pools = doc["pools"]
        if not isinstance(pools, list):
            raise ValueError("registry 'pools' must be a list")
        return [PoolRecord.from_dict(p) for p in pools]

    out: List[PoolRecord] = []
    for key, entry in doc.items():
        if not isinstance(entry, Mapping):
            raise ValueError(f"legacy registry entry {key!r} must be an object")
        out.append(_legacy_record(str(key), entry, default_fee_bps))
    return out


class JsonFileRegistryStore(RegistryStore):
    """
    File-backed registry store.

    Writes go to a temporary file in the same directory followed by
    `os.replace`, so readers never observe a half-written file. A process-local
    lock serializes read-modify-write cycles; concurrent writers from several
    processes are not supported.
    """

    def __init__(self, path: str | Path, *, default_fee_bps: int = 30) -> None:
        self._path = Path(path)
        self._default_fee_bps = default_fee_bps
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, PoolRecord]:
        if not self._path.exists():
            return {}
        raw = self._path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        doc = json.loads(raw)
        records = parse_registry_document(doc, default_fee_bps=self._default_fee_bps)
        return {r.pair_key: r for r in records}

    def _write(self, records: Dict[str, PoolRecord]) -> None:
        doc = {
            "version": POOL_RECORD_VERSION,
            "pools": [records[k].to_dict() for k in sorted(records)],
        }
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=self._path.name + ".", suffix=".tmp", dir=str(directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self._path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    def load_all(self) -> List[PoolRecord]:
        with self._lock:
            records = self._read()
        return [records[k] for k in sorted(records)]

    def save(self, record: PoolRecord) -> None:
        with self._lock:
            records = self._read()
            _check_upsert(records.get(record.pair_key), record)
            records[record.pair_key] = record
            self._write(records)
        log.debug("saved pool %s -> %s to %s", record.pair_key, record.pool_address, self._path)
