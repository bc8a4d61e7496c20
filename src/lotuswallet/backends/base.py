"""
Base chain indexer backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from lotuswallet.wallet.utxo_cache import Outpoint, UtxoEntry


class IndexerError(Exception):
    """Raised when the indexer cannot be reached or rejects a request."""


class UtxoState(str, Enum):
    UNSPENT = "UNSPENT"
    SPENT = "SPENT"
    NO_SUCH_OUTPUT = "NO_SUCH_OUTPUT"
    NO_SUCH_TX = "NO_SUCH_TX"

    @property
    def is_valid(self) -> bool:
        return self is UtxoState.UNSPENT


@dataclass
class ScriptUtxo:
    outpoint: Outpoint
    value: int
    block_height: int = -1
    is_coinbase: bool = False

    def to_entry(self) -> UtxoEntry:
        return UtxoEntry(value=self.value, height=self.block_height, is_coinbase=self.is_coinbase)


@dataclass
class IndexerTxOutput:
    value: int
    output_script: bytes


@dataclass
class IndexerTransaction:
    txid: str
    outputs: list[IndexerTxOutput] = field(default_factory=list)
    block_height: int | None = None
    is_coinbase: bool = False


@dataclass
class ChainTip:
    height: int
    hash: str


class IndexerBackend(ABC):
    """
    Abstract chain indexer interface.
    Implementations answer UTXO queries for a single output script.
    """

    @abstractmethod
    async def get_script_utxos(self, script_type: str, payload: str) -> list[ScriptUtxo]:
        """Get every UTXO paying the given script"""

    @abstractmethod
    async def validate_utxos(self, outpoints: list[Outpoint]) -> list[UtxoState]:
        """Get the state of each outpoint, in the order given"""

    @abstractmethod
    async def broadcast_transaction(self, raw_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def get_transaction(self, txid: str) -> IndexerTransaction | None:
        """Get transaction by txid, None if unknown"""

    @abstractmethod
    async def get_blockchain_info(self) -> ChainTip:
        """Get the current chain tip"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
