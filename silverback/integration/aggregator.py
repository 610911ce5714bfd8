"""
Best-price aggregation across venues.

    1. deduct the protocol fee from the input once (deduct-before-swap)
    2. ask every venue for the net amount, concurrently, each under its own timeout
    3. drop failed / empty / non-positive quotes (recorded as `VenueFailure`)
    4. keep the strictly largest output; ties go to the earlier venue
    5. attach the fee taken in step 1, whichever venue won

If no venue quotes, the result is the sentinel venue "none" with zero output.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from ..core.errors import DexError, InvalidAmount, InvalidInput, VenueFailure
from ..core.fees import apply_protocol_fee
from ..state.tokens import Token
from .venues import QuoteHints, Venue, VenueQuote


log = logging.getLogger(__name__)

NO_VENUE = "none"


@dataclass(frozen=True)
class AggregatedQuote:
    venue_id: str
    amount_in: int
    net_amount_in: int
    amount_out: int
    fee_taken: int
    price_impact: Optional[float]
    raw: Any
    venue_raw: Tuple[VenueQuote, ...]
    failures: Tuple[VenueFailure, ...]

    @property
    def found(self) -> bool:
        return self.venue_id != NO_VENUE and self.amount_out > 0


class VenueAggregator:
    def __init__(self, venues: Sequence[Venue], *, fee_bps: int = 30, venue_timeout_s: float = 3.0) -> None:
        ids = [v.venue_id for v in venues]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate venue ids: {ids}")
        if NO_VENUE in ids:
            raise ValueError(f"venue id {NO_VENUE!r} is reserved")
        # Order is the tie-break priority: local pools first.
        self._venues = list(venues)
        self._fee_bps = fee_bps
        self._venue_timeout_s = venue_timeout_s

    @property
    def venues(self) -> List[Venue]:
        return list(self._venues)

    async def _ask(
        self, venue: Venue, token_in: Token, token_out: Token, amount: int, hints: QuoteHints, timeout: float
    ) -> Tuple[Optional[VenueQuote], Optional[VenueFailure]]:
        try:
            q = await asyncio.wait_for(venue.quote(token_in, token_out, amount, hints), timeout)
        except asyncio.TimeoutError:
            log.warning("venue %s timed out after %.2fs", venue.venue_id, timeout)
            return None, VenueFailure(venue.venue_id, f"timed out after {timeout}s")
        except DexError as exc:
            # Already logged where it was raised (pool refresh).
            return None, VenueFailure(venue.venue_id, str(exc))
        except Exception as exc:
            log.warning("venue %s failed: %s", venue.venue_id, exc)
            return None, VenueFailure(venue.venue_id, str(exc) or type(exc).__name__)
        if q is None:
            return None, VenueFailure(venue.venue_id, "no quote")
        if not isinstance(q.amount_out, int) or q.amount_out <= 0:
            return None, VenueFailure(venue.venue_id, f"non-positive quote: {q.amount_out!r}")
        return q, None

    async def best_quote(
        self,
        token_in: Token,
        token_out: Token,
        amount_in: int,
        gas_price_hint: int = 0,
        *,
        timeout_s: Optional[float] = None,
    ) -> AggregatedQuote:
        if not isinstance(amount_in, int) or isinstance(amount_in, bool) or amount_in <= 0:
            raise InvalidAmount(f"amount_in must be a positive integer: {amount_in!r}")
        if token_in == token_out:
            raise InvalidInput("token_in and token_out must differ")

        fee = apply_protocol_fee(amount_in, self._fee_bps)
        hints = QuoteHints(gas_price_wei=max(0, int(gas_price_hint)))
        timeout = self._venue_timeout_s if timeout_s is None else timeout_s

        results = await asyncio.gather(
            *(self._ask(v, token_in, token_out, fee.net, hints, timeout) for v in self._venues)
        )
        quotes = [q for q, _ in results if q is not None]
        failures = tuple(f for _, f in results if f is not None)

        best: Optional[VenueQuote] = None
        for q in quotes:
            if best is None or q.amount_out > best.amount_out:
                best = q

        if best is None:
            log.info(
                "no venue quoted %s %s -> %s (%d failures)",
                amount_in,
                token_in.display_symbol,
                token_out.display_symbol,
                len(failures),
            )
            return AggregatedQuote(
                venue_id=NO_VENUE,
                amount_in=amount_in,
                net_amount_in=fee.net,
                amount_out=0,
                fee_taken=fee.fee,
                price_impact=None,
                raw=None,
                venue_raw=(),
                failures=failures,
            )

        return AggregatedQuote(
            venue_id=best.venue_id,
            amount_in=amount_in,
            net_amount_in=fee.net,
            amount_out=best.amount_out,
            fee_taken=fee.fee,
            price_impact=best.price_impact,
            raw=best.raw,
            venue_raw=tuple(quotes),
            failures=failures,
        )

    async def aclose(self) -> None:
        await asyncio.gather(*(v.aclose() for v in self._venues))
