"""
Imperative shell: ledger collaborators, live pools, registry, venues,
aggregation and the front-end query surface.
"""

from .aggregator import AggregatedQuote, VenueAggregator
from .interfaces import LedgerOperation, LedgerReader, LedgerReceipt, LedgerWriter, OpKind
from .memory_ledger import InMemoryLedger
from .persistence import InMemoryRegistryStore, JsonFileRegistryStore
from .pool import LPPosition, Pool
from .registry import PoolRegistry
from .service import DexService

__all__ = [
    "AggregatedQuote",
    "VenueAggregator",
    "LedgerOperation",
    "LedgerReader",
    "LedgerReceipt",
    "LedgerWriter",
    "OpKind",
    "InMemoryLedger",
    "InMemoryRegistryStore",
    "JsonFileRegistryStore",
    "LPPosition",
    "Pool",
    "PoolRegistry",
    "DexService",
]
