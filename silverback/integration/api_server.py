"""
HTTP API server for the Silverback DEX front end.

Small and stdlib-only on the HTTP side (`http.server`). Async service calls run
on one background event loop shared by all handler threads.

Security posture:
- Default-deny CORS (no wildcard)
- Basic rate limiting (per-IP, token bucket)
- Tight request parsing and bounded request sizes

Routes:
    GET  /health
    GET  /pools
    GET  /pool?tokenA=&tokenB=
    POST /pools/create
    POST /swap/quote
    POST /swap/execute
    POST /liquidity/add
    POST /liquidity/remove
    GET  /liquidity/positions?holder=
"""

from __future__ import annotations

import argparse
import asyncio
import concurrent.futures
import json
import logging
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Set, Tuple
from urllib.parse import parse_qs

import yaml

from ..config import DexSettings, load_settings
from ..core.errors import (
    DexError,
    InsufficientLiquidityMinted,
    InsufficientOutput,
    InsufficientShares,
    InvalidInput,
    LedgerWriteFailed,
    PoolAlreadyExists,
    PoolNotFound,
    ReserveUnavailable,
    SlippageExceeded,
)
from .aggregator import VenueAggregator
from .memory_ledger import InMemoryLedger
from .persistence import JsonFileRegistryStore
from .registry import PoolRegistry
from .service import DexService
from .venues import PoolVenue, build_venues


log = logging.getLogger(__name__)

SERVICE_NAME = "silverback-api"
MAX_BODY_BYTES = 64 * 1024

_ERROR_STATUS: Tuple[Tuple[type, int], ...] = (
    (InvalidInput, 400),
    (PoolNotFound, 404),
    (PoolAlreadyExists, 409),
    (InsufficientOutput, 422),
    (SlippageExceeded, 422),
    (InsufficientLiquidityMinted, 422),
    (InsufficientShares, 422),
    (ReserveUnavailable, 503),
    (LedgerWriteFailed, 502),
)


def error_status(exc: DexError) -> int:
    for cls, status in _ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


def error_body(code: str, message: str) -> Dict[str, Any]:
    return {"ok": False, "error": code, "message": message}


@dataclass
class RateLimitBucket:
    tokens: float
    updated_at: float


class TokenBucketRateLimiter:
    """
    Per-IP token bucket.

    Target complexity: O(1) per request.
    """

    def __init__(self, *, rpm: int) -> None:
        self._rpm = int(max(0, rpm))
        self._capacity = float(max(1, rpm)) if rpm > 0 else 0.0
        self._refill_per_s = float(rpm) / 60.0 if rpm > 0 else 0.0
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        if self._rpm <= 0:
            return True
        now = time.time()
        with self._lock:
            b = self._buckets.get(key)
            if b is None:
                self._buckets[key] = RateLimitBucket(tokens=self._capacity - 1.0, updated_at=now)
                return True
            dt = max(0.0, now - float(b.updated_at))
            b.tokens = min(self._capacity, float(b.tokens) + dt * self._refill_per_s)
            b.updated_at = now
            if b.tokens >= 1.0:
                b.tokens -= 1.0
                return True
            return False


class LoopThread:
    """A background asyncio loop that handler threads submit coroutines to."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="silverback-loop", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> "LoopThread":
        self._thread.start()
        return self

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)  # type: ignore[arg-type]
        try:
            return fut.result(timeout)
        except concurrent.futures.TimeoutError:
            fut.cancel()
            raise

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        self.loop.close()


def _str_field(body: Mapping[str, Any], name: str, *, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    value = body.get(name)
    if value is None:
        if required:
            raise InvalidInput(f"missing field: {name}")
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidInput(f"field {name} must be a string")
    return str(value)


def _int_field(body: Mapping[str, Any], name: str) -> Optional[int]:
    value = body.get(name)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"field {name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"field {name} must be an integer") from exc


def _query_field(query: Mapping[str, Sequence[str]], name: str) -> str:
    values = query.get(name) or []
    if not values or not values[0].strip():
        raise InvalidInput(f"missing query parameter: {name}")
    return values[0].strip()


Route = Callable[[Mapping[str, Sequence[str]], Mapping[str, Any]], Awaitable[Any]]


class ApiApp:
    """Routing and error mapping, independent of the socket layer."""

    def __init__(self, service: DexService, runner: LoopThread, *, request_timeout_s: float = 60.0) -> None:
        self._service = service
        self._runner = runner
        self._request_timeout_s = request_timeout_s
        s = service
        self._get: Dict[str, Route] = {
            "/pools": lambda q, b: s.list_pools(),
            "/pool": lambda q, b: s.get_pool(_query_field(q, "tokenA"), _query_field(q, "tokenB")),
            "/liquidity/positions": lambda q, b: s.positions(_query_field(q, "holder")),
        }
        self._post: Dict[str, Route] = {
            "/pools/create": lambda q, b: s.create_pool(
                _str_field(b, "creator"),
                _str_field(b, "tokenA"),
                _str_field(b, "tokenB"),
                _str_field(b, "amountA"),
                _str_field(b, "amountB"),
                fee_bps=_int_field(b, "feeBps"),
            ),
            "/swap/quote": lambda q, b: s.swap_quote(
                _str_field(b, "tokenIn"),
                _str_field(b, "tokenOut"),
                _str_field(b, "amountIn"),
                slippage_bps=_int_field(b, "slippageBps"),
                gas_price_hint=_int_field(b, "gasPrice") or 0,
            ),
            "/swap/execute": lambda q, b: s.swap_execute(
                _str_field(b, "user"),
                _str_field(b, "tokenIn"),
                _str_field(b, "tokenOut"),
                _str_field(b, "amountIn"),
                min_amount_out=_str_field(b, "minAmountOut", required=False),
                slippage_bps=_int_field(b, "slippageBps"),
                valid_until=_int_field(b, "validUntil"),
            ),
            "/liquidity/add": lambda q, b: s.add_liquidity(
                _str_field(b, "user"),
                _str_field(b, "tokenA"),
                _str_field(b, "tokenB"),
                _str_field(b, "amountA"),
                _str_field(b, "amountB"),
                amount_a_min=_str_field(b, "amountAMin", required=False, default="0"),
                amount_b_min=_str_field(b, "amountBMin", required=False, default="0"),
            ),
            "/liquidity/remove": lambda q, b: s.remove_liquidity(
                _str_field(b, "user"),
                _str_field(b, "tokenA"),
                _str_field(b, "tokenB"),
                _str_field(b, "lpAmount"),
                amount_a_min=_str_field(b, "amountAMin", required=False, default="0"),
                amount_b_min=_str_field(b, "amountBMin", required=False, default="0"),
            ),
        }

    def handle(self, method: str, target: str, body: Optional[bytes] = None) -> Tuple[int, Any]:
        path, _, qs = target.partition("?")
        query = parse_qs(qs, keep_blank_values=False)

        if method == "GET" and path == "/health":
            return 200, {"status": "healthy", "service": SERVICE_NAME}

        table = self._get if method == "GET" else self._post if method == "POST" else {}
        route = table.get(path)
        if route is None:
            other = self._post if method == "GET" else self._get
            if path in other:
                return 405, error_body("method_not_allowed", f"{method} not allowed on {path}")
            return 404, error_body("not_found", f"no route for {path}")

        try:
            payload: Mapping[str, Any] = {}
            if method == "POST":
                payload = self._parse_body(body)
            result = self._runner.run(route(query, payload), timeout=self._request_timeout_s)
        except DexError as exc:
            return error_status(exc), error_body(exc.code, str(exc))
        except concurrent.futures.TimeoutError:
            log.error("%s %s timed out after %.1fs", method, path, self._request_timeout_s)
            return 504, error_body("timeout", "request timed out")
        except Exception:
            log.exception("unhandled error on %s %s", method, path)
            return 500, error_body("internal_error", "internal error")
        return 200, {"ok": True, "data": result}

    @staticmethod
    def _parse_body(body: Optional[bytes]) -> Mapping[str, Any]:
        if not body:
            raise InvalidInput("request body must be a JSON object")
        try:
            obj = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidInput("request body is not valid JSON") from exc
        if not isinstance(obj, dict):
            raise InvalidInput("request body must be a JSON object")
        return obj


class _Handler(BaseHTTPRequestHandler):
    server_version = "SilverbackApi/1"

    # Bound request line / headers to avoid memory abuse.
    max_requestline = 8192
    max_headers = 100

    def _client_ip(self) -> str:
        # Trust boundary: X-Forwarded-For is not trusted.
        try:
            return str(self.client_address[0])
        except (TypeError, IndexError):
            return "unknown"

    def _write_json(self, status: int, obj: object, *, cors_origin: Optional[str]) -> None:
        body = json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        self.send_response(int(status))
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Cache-Control", "no-store")
        self.send_header("Content-Length", str(len(body)))
        if cors_origin is not None:
            self.send_header("Access-Control-Allow-Origin", cors_origin)
            self.send_header("Vary", "Origin")
        self.end_headers()
        self.wfile.write(body)

    def _maybe_rate_limit(self) -> bool:
        limiter: TokenBucketRateLimiter = getattr(self.server, "rate_limiter")  # type: ignore[attr-defined]
        return limiter.allow(self._client_ip())

    def _allowed_cors_origin_or_none(self) -> Optional[str]:
        allowed: Set[str] = getattr(self.server, "cors_origins")  # type: ignore[attr-defined]
        origin = self.headers.get("Origin")
        if not isinstance(origin, str) or not origin:
            return None
        return origin if origin in allowed else None

    def do_OPTIONS(self) -> None:  # noqa: N802
        cors_origin = self._allowed_cors_origin_or_none()
        self.send_response(204)
        if cors_origin is not None:
            self.send_header("Access-Control-Allow-Origin", cors_origin)
            self.send_header("Access-Control-Allow-Methods", "GET,POST,OPTIONS")
            self.send_header("Access-Control-Allow-Headers", "Content-Type")
            self.send_header("Access-Control-Max-Age", "600")
            self.send_header("Vary", "Origin")
        self.end_headers()

    def _dispatch(self, method: str) -> None:
        if not self._maybe_rate_limit():
            self._write_json(429, error_body("rate_limited", "too many requests"), cors_origin=None)
            return
        cors_origin = self._allowed_cors_origin_or_none()

        body: Optional[bytes] = None
        if method == "POST":
            try:
                length = int(self.headers.get("Content-Length") or "0")
            except ValueError:
                length = -1
            if length < 0 or length > MAX_BODY_BYTES:
                self._write_json(413, error_body("payload_too_large", "request body too large"), cors_origin=cors_origin)
                return
            body = self.rfile.read(length) if length else b""

        app: ApiApp = getattr(self.server, "app")  # type: ignore[attr-defined]
        status, obj = app.handle(method, self.path or "/", body)
        self._write_json(status, obj, cors_origin=cors_origin)

    def do_GET(self) -> None:  # noqa: N802
        self._dispatch("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch("POST")

    def log_message(self, fmt: str, *args: object) -> None:
        # Path only: query strings carry holder addresses.
        msg = fmt % args if args else fmt
        log.info("%s %s => %s", self.command, (self.path or "").split("?", 1)[0], msg)


def load_ledger_fixture(path: Optional[str]) -> InMemoryLedger:
    if not path:
        log.warning("no ledger fixture configured; starting with an empty in-memory ledger")
        return InMemoryLedger()
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError(f"ledger fixture {path} must contain a mapping")
    return InMemoryLedger.from_fixture(obj)


async def build_service(settings: DexSettings, ledger: InMemoryLedger) -> Tuple[DexService, VenueAggregator]:
    store = JsonFileRegistryStore(settings.registry_path, default_fee_bps=settings.pool_fee_bps)
    for record in store.load_all():
        ledger.adopt_pool(record, lp_decimals=settings.lp_decimals)
    registry = PoolRegistry(reader=ledger, writer=ledger, allocator=ledger, store=store, settings=settings)
    await registry.load()
    venues = [PoolVenue(registry)] + build_venues(
        settings.venues,
        excluded_tokens=settings.excluded_venue_tokens,
        timeout_s=settings.venue_timeout_s,
    )
    aggregator = VenueAggregator(venues, fee_bps=settings.protocol_fee_bps, venue_timeout_s=settings.venue_timeout_s)
    service = DexService(registry=registry, reader=ledger, aggregator=aggregator, settings=settings)
    return service, aggregator


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    ap = argparse.ArgumentParser(description="Silverback DEX HTTP API")
    ap.add_argument("--config", default=None, help="YAML settings file (overrides SILVERBACK_CONFIG).")
    args = ap.parse_args(argv)
    settings = load_settings(args.config)

    runner = LoopThread().start()
    ledger = load_ledger_fixture(settings.ledger_fixture)
    service, aggregator = runner.run(build_service(settings, ledger))
    request_timeout = settings.write_timeout_s + 3 * settings.io_timeout_s + settings.venue_timeout_s

    httpd = ThreadingHTTPServer((settings.api_host, settings.api_port), _Handler)
    # Attach config to server instance (used by handler).
    httpd.app = ApiApp(service, runner, request_timeout_s=request_timeout)  # type: ignore[attr-defined]
    httpd.cors_origins = set(settings.cors_origins)  # type: ignore[attr-defined]
    httpd.rate_limiter = TokenBucketRateLimiter(rpm=settings.rate_limit_rpm)  # type: ignore[attr-defined]

    log.info(
        "%s listening on http://%s:%d (cors_origins=%s, rpm=%d)",
        SERVICE_NAME,
        settings.api_host,
        settings.api_port,
        sorted(settings.cors_origins),
        settings.rate_limit_rpm,
    )
    try:
        httpd.serve_forever(poll_interval=0.25)
    except KeyboardInterrupt:
        log.info("shutting down")
    finally:
        httpd.server_close()
        runner.run(aggregator.aclose(), timeout=5)
        runner.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
