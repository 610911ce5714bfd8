# [TESTER] v1

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator, Tuple

import pytest

from silverback.config import DexSettings
from silverback.core.errors import InsufficientShares, LedgerWriteFailed, PoolNotFound, ReserveUnavailable
from silverback.integration.api_server import (
    ApiApp,
    LoopThread,
    TokenBucketRateLimiter,
    build_service,
    error_status,
    load_ledger_fixture,
)
from silverback.integration.memory_ledger import InMemoryLedger

KTA = "keeta_aaa"
KUSD = "keeta_bbb"
ALICE = "keeta_alice"


def _fixture_ledger() -> InMemoryLedger:
    return InMemoryLedger.from_fixture(
        {
            "tokens": {KTA: {"decimals": 9, "symbol": "KTA"}, KUSD: {"decimals": 6, "symbol": "KUSD"}},
            "balances": {ALICE: {KTA: 10**24, KUSD: 10**24}},
        }
    )


@pytest.fixture
def app(tmp_path: Path) -> Iterator[Tuple[ApiApp, InMemoryLedger]]:
    runner = LoopThread().start()
    try:
        ledger = _fixture_ledger()
        settings = DexSettings(registry_path=str(tmp_path / "pools.json"), io_timeout_s=1.0, write_timeout_s=1.0)
        service, _ = runner.run(build_service(settings, ledger), timeout=5)
        yield ApiApp(service, runner, request_timeout_s=5.0), ledger
    finally:
        runner.stop()


def _post(app: ApiApp, path: str, body: object) -> Tuple[int, dict]:
    return app.handle("POST", path, json.dumps(body).encode("utf-8"))


def _seed(app: ApiApp) -> None:
    status, obj = _post(app, "/liquidity/add", {"user": ALICE, "tokenA": KTA, "tokenB": KUSD, "amountA": "1000", "amountB": "2000"})
    assert status == 200, obj


def test_health(app: Tuple[ApiApp, InMemoryLedger]) -> None:
    status, obj = app[0].handle("GET", "/health")
    assert status == 200
    assert obj["status"] == "healthy"


def test_liquidity_pool_and_swap_flow(app: Tuple[ApiApp, InMemoryLedger]) -> None:
    api, _ = app
    _seed(api)

    status, obj = api.handle("GET", f"/pool?tokenA={KUSD}&tokenB={KTA}")
    assert status == 200
    assert obj["ok"] is True
    assert obj["data"]["reserve_a"] == {"raw": str(10**12), "human": "1000"}

    status, obj = api.handle("GET", "/pools")
    assert status == 200 and len(obj["data"]) == 1

    status, quote = _post(api, "/swap/quote", {"tokenIn": KTA, "tokenOut": KUSD, "amountIn": "10"})
    assert status == 200
    assert quote["data"]["best_venue"]["venue"] == "silverback"

    status, done = _post(
        api,
        "/swap/execute",
        {"user": ALICE, "tokenIn": KTA, "tokenOut": KUSD, "amountIn": "10", "minAmountOut": quote["data"]["min_amount_out"]["human"]},
    )
    assert status == 200, done
    assert done["data"]["amount_out"] == quote["data"]["amount_out"]

    status, positions = api.handle("GET", f"/liquidity/positions?holder={ALICE}")
    assert status == 200 and len(positions["data"]) == 1

    json.dumps(positions)


def test_persisted_registry_file_is_written(app: Tuple[ApiApp, InMemoryLedger], tmp_path: Path) -> None:
    _seed(app[0])
    doc = json.loads((tmp_path / "pools.json").read_text(encoding="utf-8"))
    assert [p["pair_key"] for p in doc["pools"]] == [f"{KTA}:{KUSD}"]


def test_domain_errors_map_to_status_codes(app: Tuple[ApiApp, InMemoryLedger]) -> None:
    api, ledger = app
    _seed(api)
    writes = len(ledger.submissions)

    status, obj = _post(
        api, "/swap/execute", {"user": ALICE, "tokenIn": KTA, "tokenOut": KUSD, "amountIn": "10", "minAmountOut": "1000000"}
    )
    assert status == 422
    assert obj["ok"] is False
    assert obj["error"] == "slippage_exceeded"
    assert len(ledger.submissions) == writes

    status, obj = api.handle("GET", f"/pool?tokenA={KTA}&tokenB=keeta_ccc")
    assert (status, obj["error"]) == (404, "pool_not_found")

    status, obj = _post(api, "/pools/create", {"creator": ALICE, "tokenA": KUSD, "tokenB": KTA, "amountA": "1", "amountB": "1"})
    assert (status, obj["error"]) == (409, "pool_already_exists")

    status, obj = _post(api, "/swap/quote", {"tokenIn": KTA, "tokenOut": KTA, "amountIn": "1"})
    assert (status, obj["error"]) == (400, "identical_tokens")


def test_request_validation(app: Tuple[ApiApp, InMemoryLedger]) -> None:
    api, _ = app
    status, obj = _post(api, "/swap/quote", {"tokenIn": KTA, "amountIn": "1"})
    assert (status, obj["error"]) == (400, "invalid_input")
    assert "tokenOut" in obj["message"]

    status, obj = api.handle("POST", "/swap/quote", b"{not json")
    assert status == 400

    status, obj = api.handle("POST", "/swap/quote", b"[1, 2]")
    assert status == 400

    status, obj = _post(api, "/swap/quote", {"tokenIn": KTA, "tokenOut": KUSD, "amountIn": "1e5"})
    assert (status, obj["error"]) == (400, "invalid_amount")

    status, obj = api.handle("GET", "/liquidity/positions")
    assert status == 400


def test_unknown_routes_and_methods(app: Tuple[ApiApp, InMemoryLedger]) -> None:
    api, _ = app
    assert api.handle("GET", "/nope")[0] == 404
    assert api.handle("GET", "/swap/quote")[0] == 405
    assert api.handle("POST", "/pools", b"{}")[0] == 405


def test_error_status_table() -> None:
    assert error_status(LedgerWriteFailed("rejected")) == 502
    assert error_status(ReserveUnavailable("down")) == 503
    assert error_status(InsufficientShares("no")) == 422
    assert error_status(PoolNotFound("x")) == 404


def test_rate_limiter_token_bucket() -> None:
    limiter = TokenBucketRateLimiter(rpm=2)
    assert limiter.allow("1.2.3.4")
    assert limiter.allow("1.2.3.4")
    assert not limiter.allow("1.2.3.4")
    assert limiter.allow("5.6.7.8")
    unlimited = TokenBucketRateLimiter(rpm=0)
    assert all(unlimited.allow("x") for _ in range(100))


def test_load_ledger_fixture_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "ledger.yaml"
    path.write_text(
        "tokens:\n  keeta_aaa: {decimals: 9, symbol: KTA}\nbalances:\n  keeta_alice: {keeta_aaa: '500'}\n",
        encoding="utf-8",
    )
    ledger = load_ledger_fixture(str(path))
    assert ledger.balances.get(ALICE, KTA) == 500
    assert load_ledger_fixture(None).balances.get_all_balances() == {}
