"""
Chain indexer backend implementations.

Available backends:
- ChronikBackend: Chronik-style indexer over its JSON REST API
"""

from lotuswallet.backends.base import (
    ChainTip,
    IndexerBackend,
    IndexerError,
    IndexerTransaction,
    IndexerTxOutput,
    ScriptUtxo,
    UtxoState,
)
from lotuswallet.backends.chronik import ChronikBackend

__all__ = [
    "ChainTip",
    "ChronikBackend",
    "IndexerBackend",
    "IndexerError",
    "IndexerTransaction",
    "IndexerTxOutput",
    "ScriptUtxo",
    "UtxoState",
]
