"""
Tests for key-value persistence and the wallet store.
"""

import json
import os
import stat

import pytest

from lotuswallet.storage import JsonFileStore, MemoryStore, WalletState, WalletStore


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_get_set(self):
        store = MemoryStore()
        await store.set("a", 1)
        await store.set_many({"b": 2, "c": 3})
        assert await store.get("a") == 1
        assert await store.get_many(["b", "c", "d"]) == {"b": 2, "c": 3, "d": None}

    @pytest.mark.asyncio
    async def test_watch(self):
        store = MemoryStore()
        changes = []
        unwatch = store.watch("a", lambda key, value: changes.append((key, value)))

        await store.set("a", 1)
        await store.set("a", 1)
        await store.set("b", 2)
        await store.remove("a")
        unwatch()
        await store.set("a", 3)

        assert changes == [("a", 1), ("a", None)]

    @pytest.mark.asyncio
    async def test_failing_watcher_does_not_break_write(self):
        store = MemoryStore()

        def broken(key, value):
            raise RuntimeError("boom")

        store.watch("a", broken)
        await store.set("a", 1)
        assert await store.get("a") == 1


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "wallet" / "state.json"
        store = JsonFileStore(path)
        await store.set_many({"wallet:balance": "5", "wallet:tipHeight": 10})

        assert json.loads(path.read_text()) == {"wallet:balance": "5", "wallet:tipHeight": 10}
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

        reopened = JsonFileStore(path)
        assert await reopened.get("wallet:tipHeight") == 10

    @pytest.mark.asyncio
    async def test_remove(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        await store.set("k", "v")
        await store.remove("k")
        assert JsonFileStore(path)._data == {}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            JsonFileStore(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            JsonFileStore(path)


class TestWalletStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, identity, memory_store, wallet_store):
        state = WalletState(
            seed_phrase=identity.seed_phrase,
            xprv=identity.xprv,
            wif=identity.wif,
            address=identity.address,
            script_payload=identity.script_payload,
            script_hex=identity.script_hex,
        )
        assert await wallet_store.save_wallet_state(state)

        assert await memory_store.get("wallet:seedPhrase") == identity.seed_phrase
        assert await memory_store.get("wallet:xPrivkey") == identity.xprv
        assert await memory_store.get("wallet:tipHeight") is None
        assert await wallet_store.has_seed_phrase()
        loaded = await wallet_store.load_wallet_state()
        assert loaded.model_dump() == state.model_dump()
        assert await wallet_store.load_signing_key() == identity.wif
        assert await wallet_store.load_script_payload() == identity.script_payload

    @pytest.mark.asyncio
    async def test_mutable_and_chain_state(self, memory_store, wallet_store):
        assert await wallet_store.save_mutable_state("[]", "0")
        assert await wallet_store.save_chain_state(10, "ab" * 32)
        assert await memory_store.get("wallet:utxos") == "[]"
        assert await memory_store.get("wallet:tipHeight") == 10

    @pytest.mark.asyncio
    async def test_empty_store(self, wallet_store):
        assert not await wallet_store.has_seed_phrase()
        assert await wallet_store.load_wallet_state() is None
        assert await wallet_store.load_seed_phrase() == ""

    @pytest.mark.asyncio
    async def test_write_failure_is_reported(self):
        class FailingStore(MemoryStore):
            async def set_many(self, items):
                raise OSError("read-only")

        store = WalletStore(FailingStore())
        assert not await store.save_mutable_state("[]", "0")
