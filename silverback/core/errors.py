"""Exception taxonomy for the Silverback DEX core.

Pricing functions never raise these for valid numeric input; they return
zero-valued results and the shell (pool / registry / service) turns those into
the typed errors below.
"""

from __future__ import annotations

from dataclasses import dataclass


class DexError(Exception):
    """Base class. `code` is a stable identifier surfaced to API clients."""

    code = "dex_error"


class InvalidInput(DexError, ValueError):
    code = "invalid_input"


class InvalidAmount(InvalidInput):
    code = "invalid_amount"


class IdenticalTokens(InvalidInput):
    code = "identical_tokens"


class ReserveUnavailable(DexError):
    code = "reserve_unavailable"


class InsufficientOutput(DexError):
    code = "insufficient_output"


class InsufficientLiquidityMinted(DexError):
    code = "insufficient_liquidity_minted"


class InsufficientShares(DexError):
    code = "insufficient_shares"


class SlippageExceeded(DexError):
    code = "slippage_exceeded"


class PoolAlreadyExists(DexError):
    code = "pool_already_exists"


class PoolNotFound(DexError):
    code = "pool_not_found"


class LedgerWriteFailed(DexError):
    """The ledger rejected an operation set; `reason` is passed through verbatim."""

    code = "ledger_write_failed"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"ledger write failed: {reason}")


@dataclass(frozen=True)
class VenueFailure:
    """Diagnostic record for a venue that failed or timed out during aggregation."""

    venue_id: str
    reason: str
