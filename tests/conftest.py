"""
Pytest configuration and fixtures for wallet tests.
"""

from __future__ import annotations

import pytest

from lotuswallet.backends.base import (
    ChainTip,
    IndexerBackend,
    IndexerError,
    IndexerTransaction,
    ScriptUtxo,
    UtxoState,
)
from lotuswallet.config import WalletSettings
from lotuswallet.storage import MemoryStore, WalletStore
from lotuswallet.wallet.builder import WalletIdentity, build_identity
from lotuswallet.wallet.utxo_cache import Outpoint

TXID_1 = "11" * 32
TXID_2 = "22" * 32
TXID_3 = "33" * 32
TIP_HASH = "ab" * 32


class FakeBackend(IndexerBackend):
    """In-memory indexer; every call is recorded."""

    def __init__(self) -> None:
        self.utxos: list[ScriptUtxo] = []
        self.states: dict[Outpoint, UtxoState] = {}
        self.transactions: dict[str, IndexerTransaction] = {}
        self.broadcasts: list[str] = []
        self.tip = ChainTip(height=1000, hash=TIP_HASH)
        self.fail_utxos = False
        self.fail_broadcast = False
        self.calls: list[str] = []
        self.closed = False

    async def get_script_utxos(self, script_type: str, payload: str) -> list[ScriptUtxo]:
        self.calls.append("get_script_utxos")
        if self.fail_utxos:
            raise IndexerError("indexer unavailable")
        return list(self.utxos)

    async def validate_utxos(self, outpoints: list[Outpoint]) -> list[UtxoState]:
        self.calls.append("validate_utxos")
        return [self.states.get(outpoint, UtxoState.UNSPENT) for outpoint in outpoints]

    async def broadcast_transaction(self, raw_hex: str) -> str:
        self.calls.append("broadcast_transaction")
        if self.fail_broadcast:
            raise IndexerError("txn-mempool-conflict")
        self.broadcasts.append(raw_hex)
        return f"{len(self.broadcasts):064x}"

    async def get_transaction(self, txid: str) -> IndexerTransaction | None:
        self.calls.append("get_transaction")
        return self.transactions.get(txid)

    async def get_blockchain_info(self) -> ChainTip:
        self.calls.append("get_blockchain_info")
        return self.tip

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def test_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def identity(test_mnemonic: str) -> WalletIdentity:
    return build_identity(test_mnemonic)


@pytest.fixture
def settings() -> WalletSettings:
    """Settings with background reconciliation disabled"""
    return WalletSettings(
        chronik_url="http://localhost:7123",
        reconcile_interval=0,
        fee_rate=1,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def wallet_store(memory_store: MemoryStore) -> WalletStore:
    return WalletStore(memory_store)
