"""
Key-value persistence for wallet state.

Wallet fields live in a flat namespace of string keys (`wallet:seedPhrase`,
`wallet:utxos`, ...), each independently overwritten. Batch writes are not
atomic across keys; a failing batch is logged once and not rolled back.
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

WALLET_KEY_PREFIX = "wallet:"

WatchCallback = Callable[[str, Any], None]


class KeyValueStore(ABC):
    """Async key-value store with change notifications."""

    def __init__(self) -> None:
        self._watchers: dict[str, list[WatchCallback]] = {}

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Get a value, None if absent"""

    @abstractmethod
    async def set_many(self, items: dict[str, Any]) -> None:
        """Set several values"""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a key; absent keys are ignored"""

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        return {key: await self.get(key) for key in keys}

    def watch(self, key: str, callback: WatchCallback) -> Callable[[], None]:
        """
        Call `callback(key, new_value)` after every change to `key`.

        Returns:
            Function removing the watcher
        """
        self._watchers.setdefault(key, []).append(callback)

        def unwatch() -> None:
            callbacks = self._watchers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unwatch

    def _notify(self, key: str, value: Any) -> None:
        for callback in list(self._watchers.get(key, [])):
            try:
                callback(key, value)
            except Exception as e:
                logger.error(f"Storage watcher for {key} failed: {e}")


class MemoryStore(KeyValueStore):
    """In-process store, used by tests and ephemeral wallets."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set_many(self, items: dict[str, Any]) -> None:
        for key, value in items.items():
            changed = self._data.get(key) != value
            self._data[key] = value
            if changed:
                self._notify(key, value)

    async def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._notify(key, None)


class JsonFileStore(MemoryStore):
    """Store persisted as a single JSON document, replaced atomically on write."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(self._load())
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read wallet storage {self.path}: {e}")
            raise
        if not isinstance(data, dict):
            raise ValueError(f"Wallet storage {self.path} is not a JSON object")
        return data

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        with open(tmp, "w") as f:
            json.dump(self._data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
        os.chmod(self.path, 0o600)

    async def set_many(self, items: dict[str, Any]) -> None:
        async with self._lock:
            await super().set_many(items)
            self._write()

    async def remove(self, key: str) -> None:
        async with self._lock:
            await super().remove(key)
            self._write()


class WalletState(BaseModel):
    """Persisted wallet fields, aliased to their storage key names."""

    model_config = ConfigDict(populate_by_name=True)

    seed_phrase: str = Field(default="", alias="seedPhrase")
    xprv: str = Field(default="", alias="xPrivkey")
    wif: str = Field(default="", alias="signingKey")
    address: str = ""
    script_payload: str = Field(default="", alias="scriptPayload")
    script_hex: str = Field(default="", alias="scriptHex")
    utxos: str = "[]"
    balance: str = "0"
    tip_height: int | None = Field(default=None, alias="tipHeight")
    tip_hash: str | None = Field(default=None, alias="tipHash")


class WalletStore:
    """Wallet-specific view over a KeyValueStore."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def key(name: str) -> str:
        return f"{WALLET_KEY_PREFIX}{name}"

    async def _set_fields(self, fields: dict[str, Any], label: str) -> bool:
        try:
            await self.store.set_many({self.key(name): value for name, value in fields.items()})
        except Exception as e:
            logger.error(f"{label}: {e}")
            return False
        return True

    async def has_seed_phrase(self) -> bool:
        return bool(await self.store.get(self.key("seedPhrase")))

    async def save_wallet_state(self, state: WalletState) -> bool:
        logger.debug("Saving complete wallet state")
        return await self._set_fields(
            state.model_dump(by_alias=True, exclude_none=True), "save_wallet_state"
        )

    async def save_mutable_state(self, utxos: str, balance: str) -> bool:
        logger.debug("Saving mutable wallet state")
        return await self._set_fields(
            {"utxos": utxos, "balance": balance}, "save_mutable_state"
        )

    async def save_chain_state(self, tip_height: int, tip_hash: str) -> bool:
        return await self._set_fields(
            {"tipHeight": tip_height, "tipHash": tip_hash}, "save_chain_state"
        )

    async def load_wallet_state(self) -> WalletState | None:
        """Load all wallet fields; None when no wallet has been initialized."""
        names = [field.alias or name for name, field in WalletState.model_fields.items()]
        values = await self.store.get_many([self.key(name) for name in names])
        raw = {
            name: values[self.key(name)]
            for name in names
            if values.get(self.key(name)) is not None
        }
        if not raw.get("seedPhrase"):
            return None
        return WalletState.model_validate(raw)

    async def load_seed_phrase(self) -> str:
        return await self.store.get(self.key("seedPhrase")) or ""

    async def load_signing_key(self) -> str:
        return await self.store.get(self.key("signingKey")) or ""

    async def load_script_payload(self) -> str:
        return await self.store.get(self.key("scriptPayload")) or ""
