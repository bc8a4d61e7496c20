"""
Tests for the wallet engine: cache maintenance, transactions and persistence.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from lotuswallet.backends.base import ChainTip, IndexerError, ScriptUtxo, UtxoState
from lotuswallet.queue import ApplyOutput, Bootstrap, ErrorKind, Reconcile, SendValue
from lotuswallet.storage import WalletStore
from lotuswallet.wallet.address import pubkey_hash_to_p2pkh_script, script_to_xaddress
from lotuswallet.wallet.engine import BroadcastError, WalletEngine, WalletManager
from lotuswallet.wallet.tx_builder import TransactionBuildError
from lotuswallet.wallet.utxo_cache import Outpoint, UtxoEntry

TX1 = "11" * 32
TX2 = "22" * 32
TX3 = "33" * 32
RECIPIENT = script_to_xaddress(pubkey_hash_to_p2pkh_script(b"\x42" * 20))


@pytest_asyncio.fixture
async def engine(identity, backend, wallet_store, settings):
    engine = WalletEngine(identity, backend, wallet_store, settings)
    await engine.init(start_sync=False)
    yield engine
    await engine.deinit()


class TestIncomingOutputs:
    @pytest.mark.asyncio
    async def test_push_adds_to_balance(self, engine, memory_store):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(150_000_000))

        result = await engine.queue.enqueue(ApplyOutput(TX2, 0, 50_000_000))
        await engine.queue.join()

        assert result.value == 200_000_000
        assert engine.balance == 200_000_000
        assert len(engine.utxos) == 2
        assert await memory_store.get("wallet:balance") == "200000000"

    @pytest.mark.asyncio
    async def test_duplicate_push_is_idempotent(self, engine):
        await engine.queue.enqueue(ApplyOutput(TX2, 0, 50_000_000))
        await engine.queue.enqueue(ApplyOutput(TX2, 0, 50_000_000))
        assert engine.balance == 50_000_000


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_replaces_cache(self, engine, backend):
        engine.utxos.add(Outpoint(TX3, 0), UtxoEntry(1))
        backend.utxos = [
            ScriptUtxo(Outpoint(TX1, 0), 150_000_000, block_height=900),
            ScriptUtxo(Outpoint(TX2, 1), 50_000_000),
        ]

        result = await engine.queue.enqueue(Bootstrap())

        assert result.value == 2
        assert engine.balance == 200_000_000
        assert Outpoint(TX3, 0) not in engine.utxos
        assert engine.utxos.get(Outpoint(TX1, 0)).height == 900

    @pytest.mark.asyncio
    async def test_failure_keeps_cache(self, engine, backend):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(150_000_000))
        backend.fail_utxos = True

        result = await engine.queue.enqueue(Bootstrap())

        assert result.ok
        assert result.value is None
        assert engine.balance == 150_000_000


class TestReconcile:
    @pytest.mark.asyncio
    async def test_removes_spent(self, engine, backend):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(150_000_000))
        engine.utxos.add(Outpoint(TX2, 0), UtxoEntry(50_000_000))
        backend.states[Outpoint(TX1, 0)] = UtxoState.SPENT
        backend.utxos = [ScriptUtxo(Outpoint(TX2, 0), 50_000_000)]

        result = (await engine.queue.enqueue(Reconcile())).unwrap()

        assert result.removed == [Outpoint(TX1, 0)]
        assert result.added == []
        assert engine.utxos.outpoints == [Outpoint(TX2, 0)]
        assert engine.balance == 50_000_000

    @pytest.mark.asyncio
    async def test_idempotent(self, engine, backend):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(150_000_000))
        engine.utxos.add(Outpoint(TX2, 0), UtxoEntry(50_000_000))
        backend.states[Outpoint(TX1, 0)] = UtxoState.NO_SUCH_TX
        backend.utxos = [ScriptUtxo(Outpoint(TX2, 0), 50_000_000)]

        await engine.reconcile_now()
        second = await engine.reconcile_now()

        assert not second.changed
        assert engine.balance == 50_000_000

    @pytest.mark.asyncio
    async def test_adds_missing(self, engine, backend):
        backend.utxos = [ScriptUtxo(Outpoint(TX3, 2), 7_000)]

        result = await engine.reconcile_now()

        assert result.added == [Outpoint(TX3, 2)]
        assert engine.balance == 7_000

    @pytest.mark.asyncio
    async def test_without_fetch(self, engine, backend):
        backend.utxos = [ScriptUtxo(Outpoint(TX3, 2), 7_000)]

        result = (await engine.queue.enqueue(Reconcile(fetch_missing=False))).unwrap()

        assert not result.changed
        assert "get_script_utxos" not in backend.calls

    @pytest.mark.asyncio
    async def test_indexer_error_is_background(self, engine, backend):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(150_000_000))
        backend.validate_utxos = AsyncMock(side_effect=IndexerError("timeout"))

        result = await engine.queue.enqueue(Reconcile())

        assert result.kind == ErrorKind.BACKGROUND
        assert engine.balance == 150_000_000

    @pytest.mark.asyncio
    async def test_refreshes_tip(self, engine, backend, memory_store):
        backend.tip = ChainTip(height=1001, hash="cd" * 32)

        await engine.reconcile_now()

        assert engine.tip_height == 1001
        assert await memory_store.get("wallet:tipHash") == "cd" * 32


class TestSend:
    @pytest.mark.asyncio
    async def test_broadcast_removes_spent(self, engine, backend):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(2_000_000, height=900))

        txid = await engine.send_lotus(RECIPIENT, 1_000_000)
        await engine.queue.join()

        assert txid == f"{1:064x}"
        assert len(backend.broadcasts) == 1
        assert Outpoint(TX1, 0) not in engine.utxos
        # reconcile queued in front after the broadcast
        assert backend.calls.count("get_script_utxos") == 1

    @pytest.mark.asyncio
    async def test_broadcast_error_is_recoverable(self, engine, backend):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(2_000_000, height=900))
        backend.fail_broadcast = True

        result = await engine.queue.enqueue(SendValue(RECIPIENT, 1_000_000))

        assert result.kind == ErrorKind.RECOVERABLE
        assert "txn-mempool-conflict" in result.error
        assert engine.balance == 2_000_000
        with pytest.raises(BroadcastError):
            await engine.send_lotus(RECIPIENT, 1_000_000)

    @pytest.mark.asyncio
    async def test_insufficient_funds_is_fatal(self, engine):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(2_000, height=900))

        result = await engine.queue.enqueue(SendValue(RECIPIENT, 1_000_000))

        assert result.kind == ErrorKind.FATAL
        assert isinstance(result.exception, TransactionBuildError)


class TestVoteAndConsolidate:
    @pytest.mark.asyncio
    async def test_submit_vote_from_payload(self, engine, backend):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(200_000_000, height=900))

        txid = await engine.submit_rank_vote(
            [{"sentiment": "positive", "platform": "twitter", "profileId": "jack"}]
        )

        assert txid == f"{1:064x}"
        assert engine.balance == 0

    @pytest.mark.asyncio
    async def test_consolidate(self, engine, backend):
        for n in range(5):
            engine.utxos.add(Outpoint(TX1, n), UtxoEntry(10_000, height=900))
        engine.utxos.add(Outpoint(TX2, 0), UtxoEntry(500_000_000, height=900))

        txids = await engine.consolidate_utxos()

        assert len(txids) == 1
        assert engine.utxos.outpoints == [Outpoint(TX2, 0)]

    @pytest.mark.asyncio
    async def test_needs_consolidation(self, identity, backend, wallet_store, settings):
        settings.max_tx_inputs = 2
        engine = WalletEngine(identity, backend, wallet_store, settings)
        for n in range(3):
            engine.utxos.add(Outpoint(TX1, n), UtxoEntry(10_000))
        assert engine.needs_utxo_consolidation


class TestState:
    @pytest.mark.asyncio
    async def test_ui_state_has_no_secrets(self, engine, identity):
        state = engine.ui_state
        assert state["address"] == identity.address
        assert identity.seed_phrase not in state.values()
        assert identity.wif not in state.values()

    @pytest.mark.asyncio
    async def test_spendable_balance(self, engine):
        engine.utxos.add(Outpoint(TX1, 0), UtxoEntry(5_000, height=950, is_coinbase=True))
        engine.utxos.add(Outpoint(TX2, 0), UtxoEntry(1_000))
        assert engine.balance == 6_000
        assert engine.spendable_balance == 1_000


class TestWalletManager:
    @pytest.mark.asyncio
    async def test_initialize_and_load(self, test_mnemonic, backend, memory_store, settings):
        store = WalletStore(memory_store)
        manager = WalletManager(
            store, settings, backend_factory=lambda s: backend, start_sync=False
        )
        engine = await manager.initialize_from_phrase(test_mnemonic)
        await engine.queue.enqueue(ApplyOutput(TX1, 0, 1_234))
        await engine.queue.join()
        address = engine.identity.address
        await manager.shutdown()

        assert backend.closed
        assert await memory_store.get("wallet:seedPhrase") == test_mnemonic

        reloaded = await WalletManager(
            store, settings, backend_factory=lambda s: backend, start_sync=False
        ).load()
        assert reloaded.identity.address == address
        assert reloaded.balance == 1_234
        assert reloaded.tip_height == backend.tip.height
        await reloaded.deinit()

    @pytest.mark.asyncio
    async def test_load_without_wallet(self, backend, wallet_store, settings):
        manager = WalletManager(wallet_store, settings, backend_factory=lambda s: backend)
        assert await manager.load() is None

    @pytest.mark.asyncio
    async def test_reinitialize_replaces_engine(self, backend, wallet_store, settings):
        manager = WalletManager(
            wallet_store, settings, backend_factory=lambda s: backend, start_sync=False
        )
        first = await manager.initialize_from_phrase()
        second = await manager.initialize_from_phrase()

        assert manager.engine is second
        assert first.identity.address != second.identity.address
        assert await wallet_store.load_seed_phrase() == second.identity.seed_phrase
        await manager.shutdown()
