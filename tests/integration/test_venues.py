# [TESTER] v1

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, List

import httpx
import pytest

from silverback.config import DexSettings
from silverback.core.cpmm import swap_output
from silverback.integration.memory_ledger import InMemoryLedger
from silverback.integration.persistence import InMemoryRegistryStore
from silverback.integration.registry import PoolRegistry
from silverback.integration.venues import (
    SELECTOR_GET_PAIR,
    SELECTOR_GET_RESERVES,
    SELECTOR_TOKEN0,
    Anchor,
    AnchorVenue,
    EvmPairVenue,
    OpenOceanVenue,
    PoolVenue,
    QuoteHints,
    build_venues,
)
from silverback.state.tokens import Token

WETH = Token("0x" + "11" * 20, 18, "WETH")
USDC = Token("0x" + "22" * 20, 6, "USDC")
PAIR = "0x" + "33" * 20
FACTORY = "0x" + "44" * 20
KTA = Token("keeta_aaa", 9, "KTA")
KUSD = Token("keeta_bbb", 6, "KUSD")


def _word(value: int) -> str:
    return format(value, "064x")


def _addr_word(address: str) -> str:
    return address[2:].rjust(64, "0")


def _run_with_client(handler: Callable[[httpx.Request], httpx.Response], body: Callable[[httpx.AsyncClient], Any]) -> Any:
    async def go() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await body(client)

    return asyncio.run(go())


def test_openocean_parses_data_out_amount() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 200, "data": {"outAmount": "980"}})

    async def body(client: httpx.AsyncClient) -> Any:
        venue = OpenOceanVenue("https://quotes.example/v3/1/", client=client)
        return await venue.quote(WETH, USDC, 997, QuoteHints(gas_price_wei=5))

    q = _run_with_client(handler, body)
    assert q.venue_id == "openocean"
    assert q.amount_out == 980
    params = seen[0].url.params
    assert seen[0].url.path == "/v3/1/quote"
    assert (params["inTokenAddress"], params["outTokenAddress"], params["amount"], params["gasPrice"]) == (
        WETH.address,
        USDC.address,
        "997",
        "5",
    )


def test_openocean_falls_back_to_top_level_to_amount() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"toAmount": "123"})

    async def body(client: httpx.AsyncClient) -> Any:
        return await OpenOceanVenue("https://q.example", client=client).quote(WETH, USDC, 1000, QuoteHints())

    assert _run_with_client(handler, body).amount_out == 123


def test_openocean_discards_suspiciously_small_output() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"outAmount": "10"}})

    async def body(client: httpx.AsyncClient) -> Any:
        return await OpenOceanVenue("https://q.example", client=client).quote(WETH, USDC, 10**9, QuoteHints())

    assert _run_with_client(handler, body) is None


def test_openocean_skips_excluded_tokens_without_a_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("excluded token must not be sent to the venue")

    async def body(client: httpx.AsyncClient) -> Any:
        venue = OpenOceanVenue("https://q.example", client=client, excluded_tokens=[USDC.address.upper()])
        return await venue.quote(WETH, USDC, 1000, QuoteHints())

    assert _run_with_client(handler, body) is None


def test_openocean_http_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"error": "upstream"})

    async def body(client: httpx.AsyncClient) -> Any:
        return await OpenOceanVenue("https://q.example", client=client).quote(WETH, USDC, 1000, QuoteHints())

    with pytest.raises(httpx.HTTPStatusError):
        _run_with_client(handler, body)


def _evm_handler(pair: str, reserve0: int, reserve1: int) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert payload["method"] == "eth_call"
        call = payload["params"][0]
        data = call["data"]
        if data.startswith(SELECTOR_GET_PAIR):
            assert call["to"] == FACTORY
            assert data[10:] == _addr_word(WETH.address) + _addr_word(USDC.address)
            result = "0x" + _addr_word(pair)
        elif data == SELECTOR_TOKEN0:
            result = "0x" + _addr_word(USDC.address)
        elif data == SELECTOR_GET_RESERVES:
            result = "0x" + _word(reserve0) + _word(reserve1) + _word(1_700_000_000)
        else:
            raise AssertionError(f"unexpected call {data}")
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

    return handler


def test_evm_pair_venue_orients_reserves_by_token0() -> None:
    reserve_usdc = 2_000_000 * 10**6
    reserve_weth = 1000 * 10**18

    async def body(client: httpx.AsyncClient) -> Any:
        venue = EvmPairVenue("https://rpc.example", FACTORY, client=client)
        return await venue.quote(WETH, USDC, 10**18, QuoteHints())

    q = _run_with_client(_evm_handler(PAIR, reserve_usdc, reserve_weth), body)
    assert q.venue_id == "evm-v2"
    assert q.amount_out == swap_output(10**18, reserve_weth, reserve_usdc, 30).amount_out
    assert q.raw["pair"] == PAIR


def test_evm_pair_venue_missing_pair_is_no_quote() -> None:
    async def body(client: httpx.AsyncClient) -> Any:
        return await EvmPairVenue("https://rpc.example", FACTORY, client=client).quote(WETH, USDC, 10**18, QuoteHints())

    assert _run_with_client(_evm_handler("0x" + "00" * 20, 0, 0), body) is None


def test_evm_pair_venue_ignores_non_evm_tokens() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no RPC call expected")

    async def body(client: httpx.AsyncClient) -> Any:
        return await EvmPairVenue("https://rpc.example", FACTORY, client=client).quote(KTA, KUSD, 100, QuoteHints())

    assert _run_with_client(handler, body) is None


def test_evm_pair_venue_surfaces_rpc_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "reverted"}})

    async def body(client: httpx.AsyncClient) -> Any:
        return await EvmPairVenue("https://rpc.example", FACTORY, client=client).quote(WETH, USDC, 10**18, QuoteHints())

    with pytest.raises(ValueError, match="RPC error"):
        _run_with_client(handler, body)


def test_anchor_venue_picks_best_matching_anchor() -> None:
    venue = AnchorVenue(
        [
            Anchor("a1", KTA.address, KUSD.address, num=3, den=2),
            Anchor("a2", KTA.address, KUSD.address, num=8, den=5),
            Anchor("a3", KUSD.address, KTA.address, num=100, den=1),
        ]
    )
    q = asyncio.run(venue.quote(KTA, KUSD, 1000, QuoteHints()))
    assert (q.amount_out, q.raw["anchor_id"]) == (1600, "a2")
    assert asyncio.run(venue.quote(KTA, WETH, 1000, QuoteHints())) is None


def test_anchor_rejects_non_positive_rate() -> None:
    with pytest.raises(ValueError):
        Anchor.from_dict({"id": "bad", "token_in": "x", "token_out": "y", "num": 0, "den": 1})


def test_pool_venue_quotes_local_pool() -> None:
    ledger = InMemoryLedger()
    ledger.register_token(KTA.address, 9)
    ledger.register_token(KUSD.address, 6)
    ledger.credit("keeta_alice", KTA.address, 10**12)
    ledger.credit("keeta_alice", KUSD.address, 10**12)
    registry = PoolRegistry(
        reader=ledger, writer=ledger, allocator=ledger, store=InMemoryRegistryStore(), settings=DexSettings()
    )
    venue = PoolVenue(registry)

    async def go() -> Any:
        assert await venue.quote(KTA, KUSD, 997, QuoteHints()) is None
        pool = await registry.create_pool(KTA.address, KUSD.address, "keeta_alice")
        assert await venue.quote(KTA, KUSD, 997, QuoteHints()) is None
        await pool.execute_add_liquidity("keeta_alice", 10**6, 2 * 10**6)
        return await venue.quote(KTA, KUSD, 997, QuoteHints())

    q = asyncio.run(go())
    assert q.venue_id == "silverback"
    assert q.amount_out == swap_output(997, 10**6, 2 * 10**6, 30).amount_out


def test_build_venues_from_config() -> None:
    venues = build_venues(
        {
            "openocean": "https://open-api.example/v3/1",
            "silverback-v2": {"kind": "evm_v2", "url": "https://rpc.example", "factory": FACTORY, "fee_bps": 25},
            "fx": {"kind": "anchor", "anchors": [{"id": "a", "token_in": "x", "token_out": "y", "num": 1, "den": 1}]},
        }
    )
    assert [v.venue_id for v in venues] == ["openocean", "silverback-v2", "fx"]
    assert isinstance(venues[0], OpenOceanVenue)
    assert isinstance(venues[1], EvmPairVenue)
    assert isinstance(venues[2], AnchorVenue)
    with pytest.raises(ValueError):
        build_venues({"x": {"kind": "carrier-pigeon"}})
