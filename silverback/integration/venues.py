"""
Quote venues.

A venue prices an exact-in trade of an already fee-deducted input. It returns
`None` when it has nothing to offer for the pair and raises on transport or
protocol errors; the aggregator treats both as "no quote".

- `PoolVenue`: the local AMM pools of a `PoolRegistry`
- `EvmPairVenue`: a Uniswap-v2 style pair read over JSON-RPC
- `OpenOceanVenue`: an OpenOcean-style HTTP quote API
- `AnchorVenue`: fixed-rate anchors (num/den) from a fixture
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx

from ..core.cpmm import swap_output
from ..state.tokens import Token


log = logging.getLogger(__name__)

_EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
ZERO_EVM_ADDRESS = "0x" + "0" * 40

# Function selectors of the v2 factory / pair contracts.
SELECTOR_GET_PAIR = "0xe6a43905"
SELECTOR_TOKEN0 = "0x0dfe1681"
SELECTOR_GET_RESERVES = "0x0902f1ac"

# Outputs below net / this factor are treated as a broken quote.
SUSPICIOUS_OUTPUT_FACTOR = 1_000_000


@dataclass(frozen=True)
class QuoteHints:
    gas_price_wei: int = 0


@dataclass(frozen=True)
class VenueQuote:
    venue_id: str
    amount_out: int
    fee_taken: int = 0
    price_impact: Optional[float] = None
    raw: Any = None


class Venue:
    venue_id: str = "venue"

    async def quote(self, token_in: Token, token_out: Token, amount_in: int, hints: QuoteHints) -> Optional[VenueQuote]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class PoolVenue(Venue):
    """Local AMM venue. Quotes with the pool's own fee against freshly read reserves."""

    def __init__(self, registry: Any, *, venue_id: str = "silverback") -> None:
        self._registry = registry
        self.venue_id = venue_id

    async def quote(self, token_in: Token, token_out: Token, amount_in: int, hints: QuoteHints) -> Optional[VenueQuote]:
        pool = self._registry.get(token_in.address, token_out.address)
        if pool is None:
            return None
        reserves = await pool.refresh()
        if not reserves.is_tradable:
            return None
        q = pool.quote_swap(token_in.address, amount_in)
        if q.amount_out <= 0:
            return None
        return VenueQuote(
            venue_id=self.venue_id,
            amount_out=q.amount_out,
            price_impact=q.price_impact,
            raw={"pool_address": pool.address, "pool_fee_paid": str(q.fee_paid), "fee_bps": pool.fee_bps},
        )


class _HttpVenue(Venue):
    def __init__(self, *, client: Optional[httpx.AsyncClient], timeout_s: float) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout_s = timeout_s

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _abi_address(address: str) -> str:
    return address[2:].lower().rjust(64, "0")


def _abi_words(result: str) -> List[int]:
    data = result[2:] if result.startswith("0x") else result
    if len(data) % 64 != 0:
        raise ValueError(f"malformed ABI result of length {len(data)}")
    return [int(data[i : i + 64], 16) for i in range(0, len(data), 64)]


def _word_to_address(word: int) -> str:
    return "0x" + format(word & ((1 << 160) - 1), "040x")


class EvmPairVenue(_HttpVenue):
    """
    Constant-product quote from an EVM v2 pair.

    Resolves the pair through the factory (`getPair`), orients the reserves
    with `token0`, and prices locally with the pair's fee.
    """

    def __init__(
        self,
        rpc_url: str,
        factory: str,
        *,
        venue_id: str = "evm-v2",
        fee_bps: int = 30,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 3.0,
    ) -> None:
        super().__init__(client=client, timeout_s=timeout_s)
        if not _EVM_ADDRESS.match(factory):
            raise ValueError(f"factory must be an EVM address: {factory!r}")
        self.venue_id = venue_id
        self._rpc_url = rpc_url
        self._factory = factory
        self._fee_bps = fee_bps
        self._request_id = 0

    async def _eth_call(self, to: str, data: str) -> str:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
        }
        resp = await self._http().post(self._rpc_url, json=payload)
        resp.raise_for_status()
        body = resp.json()
        if body.get("error"):
            raise ValueError(f"RPC error: {body['error']}")
        result = body.get("result")
        if not isinstance(result, str):
            raise ValueError("RPC response has no result")
        return result

    async def get_pair(self, token_x: str, token_y: str) -> Optional[str]:
        data = SELECTOR_GET_PAIR + _abi_address(token_x) + _abi_address(token_y)
        words = _abi_words(await self._eth_call(self._factory, data))
        if not words:
            return None
        pair = _word_to_address(words[0])
        return None if pair == ZERO_EVM_ADDRESS else pair

    async def get_reserves(self, pair: str) -> Tuple[str, int, int]:
        token0_words = _abi_words(await self._eth_call(pair, SELECTOR_TOKEN0))
        reserve_words = _abi_words(await self._eth_call(pair, SELECTOR_GET_RESERVES))
        if not token0_words or len(reserve_words) < 2:
            raise ValueError(f"unexpected reserves payload for pair {pair}")
        return _word_to_address(token0_words[0]), reserve_words[0], reserve_words[1]

    async def quote(self, token_in: Token, token_out: Token, amount_in: int, hints: QuoteHints) -> Optional[VenueQuote]:
        if not (_EVM_ADDRESS.match(token_in.address) and _EVM_ADDRESS.match(token_out.address)):
            return None
        pair = await self.get_pair(token_in.address, token_out.address)
        if pair is None:
            return None
        token0, reserve0, reserve1 = await self.get_reserves(pair)
        if token0.lower() == token_in.address.lower():
            reserve_in, reserve_out = reserve0, reserve1
        else:
            reserve_in, reserve_out = reserve1, reserve0
        q = swap_output(amount_in, reserve_in, reserve_out, self._fee_bps)
        if q.amount_out <= 0:
            return None
        return VenueQuote(
            venue_id=self.venue_id,
            amount_out=q.amount_out,
            price_impact=q.price_impact,
            raw={"pair": pair, "reserve_in": str(reserve_in), "reserve_out": str(reserve_out)},
        )


def _parse_openocean_amount(body: Mapping[str, Any]) -> int:
    data = body.get("data")
    candidates: List[Any] = []
    if isinstance(data, Mapping):
        candidates += [data.get("outAmount"), data.get("toAmount")]
    candidates.append(body.get("toAmount"))
    for c in candidates:
        if c is None or c == "":
            continue
        return int(str(c))
    return 0


class OpenOceanVenue(_HttpVenue):
    """OpenOcean-style aggregator quote (`GET {base_url}/quote`)."""

    def __init__(
        self,
        base_url: str,
        *,
        venue_id: str = "openocean",
        excluded_tokens: Iterable[str] = (),
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 3.0,
    ) -> None:
        super().__init__(client=client, timeout_s=timeout_s)
        self.venue_id = venue_id
        self._base_url = base_url.rstrip("/")
        self._excluded = {t.lower() for t in excluded_tokens}

    async def quote(self, token_in: Token, token_out: Token, amount_in: int, hints: QuoteHints) -> Optional[VenueQuote]:
        if token_in.address.lower() in self._excluded or token_out.address.lower() in self._excluded:
            return None
        params: Dict[str, str] = {
            "inTokenAddress": token_in.address,
            "outTokenAddress": token_out.address,
            "amount": str(amount_in),
        }
        if hints.gas_price_wei > 0:
            params["gasPrice"] = str(hints.gas_price_wei)
        resp = await self._http().get(f"{self._base_url}/quote", params=params)
        resp.raise_for_status()
        body = resp.json()
        if not isinstance(body, Mapping):
            raise ValueError("quote response is not a JSON object")
        amount_out = _parse_openocean_amount(body)
        if amount_out <= 0:
            return None
        if amount_out < amount_in // SUSPICIOUS_OUTPUT_FACTOR:
            log.warning(
                "%s quoted %s for %s %s -> %s; discarding as suspicious",
                self.venue_id,
                amount_out,
                amount_in,
                token_in.display_symbol,
                token_out.display_symbol,
            )
            return None
        return VenueQuote(venue_id=self.venue_id, amount_out=amount_out, raw=body)


@dataclass(frozen=True)
class Anchor:
    """Fixed conversion rate token_in -> token_out of `num / den`."""

    anchor_id: str
    token_in: str
    token_out: str
    num: int
    den: int
    fee_bps: int = 0

    def __post_init__(self) -> None:
        if self.num <= 0 or self.den <= 0:
            raise ValueError(f"anchor {self.anchor_id} rate must be positive")

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "Anchor":
        return cls(
            anchor_id=str(obj["id"]),
            token_in=str(obj["token_in"]),
            token_out=str(obj["token_out"]),
            num=int(obj["num"]),
            den=int(obj["den"]),
            fee_bps=int(obj.get("fee_bps", 0)),
        )


class AnchorVenue(Venue):
    """
    Fixed-rate anchors. `amount_out = amount_in * num // den`; the rate is
    taken as all-in, `fee_bps` is reported but not deducted again.
    """

    def __init__(self, anchors: Sequence[Anchor], *, venue_id: str = "anchor") -> None:
        self.venue_id = venue_id
        self._anchors = list(anchors)

    async def quote(self, token_in: Token, token_out: Token, amount_in: int, hints: QuoteHints) -> Optional[VenueQuote]:
        best: Optional[Tuple[int, Anchor]] = None
        for a in self._anchors:
            if a.token_in != token_in.address or a.token_out != token_out.address:
                continue
            out = (amount_in * a.num) // a.den
            if out > 0 and (best is None or out > best[0]):
                best = (out, a)
        if best is None:
            return None
        out, anchor = best
        return VenueQuote(
            venue_id=self.venue_id,
            amount_out=out,
            raw={"anchor_id": anchor.anchor_id, "fee_bps": anchor.fee_bps},
        )


def build_venues(
    endpoints: Mapping[str, Any],
    *,
    excluded_tokens: Iterable[str] = (),
    timeout_s: float = 3.0,
    client: Optional[httpx.AsyncClient] = None,
) -> List[Venue]:
    """
    External venues from operator config, in config order.

    A string endpoint is an OpenOcean-style base URL. A mapping selects the
    kind explicitly: `{kind: openocean, url}`, `{kind: evm_v2, url, factory,
    fee_bps}` or `{kind: anchor, anchors: [...]}`.
    """
    excluded = tuple(excluded_tokens)
    out: List[Venue] = []
    for venue_id, endpoint in endpoints.items():
        if isinstance(endpoint, str):
            out.append(OpenOceanVenue(endpoint, venue_id=venue_id, excluded_tokens=excluded, client=client, timeout_s=timeout_s))
            continue
        kind = endpoint.get("kind", "openocean")
        if kind == "openocean":
            out.append(
                OpenOceanVenue(
                    str(endpoint["url"]), venue_id=venue_id, excluded_tokens=excluded, client=client, timeout_s=timeout_s
                )
            )
        elif kind == "evm_v2":
            out.append(
                EvmPairVenue(
                    str(endpoint["url"]),
                    str(endpoint["factory"]),
                    venue_id=venue_id,
                    fee_bps=int(endpoint.get("fee_bps", 30)),
                    client=client,
                    timeout_s=timeout_s,
                )
            )
        elif kind == "anchor":
            anchors = [Anchor.from_dict(a) for a in endpoint.get("anchors", [])]
            out.append(AnchorVenue(anchors, venue_id=venue_id))
        else:
            raise ValueError(f"unknown venue kind {kind!r} for {venue_id}")
    return out
