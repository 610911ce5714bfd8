"""
Operator configuration.

Precedence (lowest to highest):
1. `DexSettings` defaults
2. a YAML mapping file (`path` argument or `SILVERBACK_CONFIG`)
3. `SILVERBACK_*` environment variables

Invalid file values fail fast with `ValueError`; out-of-range integer env
values are clamped, as the API server always did for its own env knobs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Set, Tuple

import yaml

from .core.amounts import MAX_DECIMALS


ENV_PREFIX = "SILVERBACK_"
VENUE_KINDS = ("openocean", "evm_v2", "anchor")


@dataclass(frozen=True)
class DexSettings:
    pool_fee_bps: int = 30
    protocol_fee_bps: int = 30
    default_slippage_bps: int = 50
    tx_validity_s: int = 20 * 60
    io_timeout_s: float = 5.0
    venue_timeout_s: float = 3.0
    write_timeout_s: float = 30.0
    lp_decimals: int = 9
    fee_recipient: Optional[str] = None
    # venue id -> endpoint URL, or a mapping {kind, url, ...} (see venues.build_venues)
    venues: Dict[str, Any] = field(default_factory=dict)
    excluded_venue_tokens: Tuple[str, ...] = ()
    registry_path: str = ".pools.json"
    ledger_fixture: Optional[str] = None
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    cors_origins: Tuple[str, ...] = ()
    rate_limit_rpm: int = 600

    def __post_init__(self) -> None:
        for name in ("pool_fee_bps", "protocol_fee_bps", "default_slippage_bps"):
            _check_int_range(name, getattr(self, name), 0, 10_000)
        _check_int_range("tx_validity_s", self.tx_validity_s, 1, 7 * 24 * 3600)
        _check_int_range("lp_decimals", self.lp_decimals, 0, MAX_DECIMALS)
        _check_int_range("api_port", self.api_port, 1, 65535)
        _check_int_range("rate_limit_rpm", self.rate_limit_rpm, 0, 1_000_000)
        for name in ("io_timeout_s", "venue_timeout_s", "write_timeout_s"):
            v = getattr(self, name)
            if not isinstance(v, (int, float)) or isinstance(v, bool) or v <= 0:
                raise ValueError(f"{name} must be a positive number: {v!r}")
        if not isinstance(self.venues, dict):
            raise ValueError("venues must be a mapping of venue id to endpoint")
        for venue_id, endpoint in self.venues.items():
            _check_venue(str(venue_id), endpoint)


def _check_int_range(name: str, value: Any, lo: int, hi: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an int: {value!r}")
    if not (lo <= value <= hi):
        raise ValueError(f"{name} must be in [{lo}, {hi}]: {value}")


def _check_venue(venue_id: str, endpoint: Any) -> None:
    if isinstance(endpoint, str):
        if not endpoint.strip():
            raise ValueError(f"venue {venue_id!r} has an empty endpoint")
        return
    if not isinstance(endpoint, Mapping):
        raise ValueError(f"venue {venue_id!r} must be a URL or a mapping")
    kind = endpoint.get("kind", "openocean")
    if kind not in VENUE_KINDS:
        raise ValueError(f"venue {venue_id!r} has unknown kind {kind!r}")


def _env_int(environ: Mapping[str, str], name: str, default: int, *, lo: int, hi: int) -> int:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return int(default)
    try:
        v = int(raw.strip())
    except ValueError:
        return int(default)
    if v < lo:
        return int(lo)
    if v > hi:
        return int(hi)
    return int(v)


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        v = float(raw.strip())
    except ValueError:
        return default
    return v if v > 0 else default


def _env_str(environ: Mapping[str, str], name: str, default: Optional[str]) -> Optional[str]:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None:
        return default
    v = raw.strip()
    return v if v else default


def parse_cors_origins(value: str) -> Set[str]:
    """
    Parse a comma-separated CORS origin list.

    Empty means deny. '*' is ignored: operators must list trusted origins.
    """
    out: Set[str] = set()
    for item in (value or "").split(","):
        origin = item.strip()
        if not origin or origin == "*":
            continue
        out.add(origin)
    return out


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(s.strip() for s in value.split(",") if s.strip())


def _load_yaml(path: Path) -> Dict[str, Any]:
    obj = yaml.safe_load(path.read_text(encoding="utf-8"))
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    known = {f.name for f in fields(DexSettings)}
    unknown = sorted(set(obj) - known)
    if unknown:
        raise ValueError(f"unknown config keys in {path}: {', '.join(unknown)}")
    out = dict(obj)
    for name in ("excluded_venue_tokens", "cors_origins"):
        if name in out:
            value = out[name]
            if isinstance(value, str):
                out[name] = _split_list(value)
            elif isinstance(value, list):
                out[name] = tuple(str(v) for v in value)
            else:
                raise ValueError(f"{name} must be a list or comma-separated string")
    if "cors_origins" in out:
        out["cors_origins"] = tuple(sorted(parse_cors_origins(",".join(out["cors_origins"]))))
    return out


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> DexSettings:
    env = os.environ if environ is None else environ
    settings = DexSettings()

    config_path = path or env.get(ENV_PREFIX + "CONFIG")
    if config_path:
        settings = replace(settings, **_load_yaml(Path(config_path)))

    updates: Dict[str, Any] = {
        "pool_fee_bps": _env_int(env, "POOL_FEE_BPS", settings.pool_fee_bps, lo=0, hi=10_000),
        "protocol_fee_bps": _env_int(env, "PROTOCOL_FEE_BPS", settings.protocol_fee_bps, lo=0, hi=10_000),
        "default_slippage_bps": _env_int(env, "DEFAULT_SLIPPAGE_BPS", settings.default_slippage_bps, lo=0, hi=10_000),
        "tx_validity_s": _env_int(env, "TX_VALIDITY_S", settings.tx_validity_s, lo=1, hi=7 * 24 * 3600),
        "io_timeout_s": _env_float(env, "IO_TIMEOUT_S", settings.io_timeout_s),
        "venue_timeout_s": _env_float(env, "VENUE_TIMEOUT_S", settings.venue_timeout_s),
        "write_timeout_s": _env_float(env, "WRITE_TIMEOUT_S", settings.write_timeout_s),
        "lp_decimals": _env_int(env, "LP_DECIMALS", settings.lp_decimals, lo=0, hi=MAX_DECIMALS),
        "fee_recipient": _env_str(env, "FEE_RECIPIENT", settings.fee_recipient),
        "registry_path": _env_str(env, "REGISTRY_PATH", settings.registry_path),
        "ledger_fixture": _env_str(env, "LEDGER_FIXTURE", settings.ledger_fixture),
        "api_host": _env_str(env, "API_HOST", settings.api_host),
        "api_port": _env_int(env, "API_PORT", settings.api_port, lo=1, hi=65535),
        "rate_limit_rpm": _env_int(env, "RATE_LIMIT_RPM", settings.rate_limit_rpm, lo=0, hi=1_000_000),
    }
    excluded = _env_str(env, "EXCLUDED_VENUE_TOKENS", None)
    if excluded is not None:
        updates["excluded_venue_tokens"] = _split_list(excluded)
    cors = _env_str(env, "CORS_ORIGINS", None)
    if cors is not None:
        updates["cors_origins"] = tuple(sorted(parse_cors_origins(cors)))
    return replace(settings, **updates)
