"""
Request/response transport between a UI and the wallet engine.

Every wallet handler validates the sender before touching any state, and
flattens failures into the error message string returned to the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from lotuswallet.wallet.engine import WalletManager

Handler = Callable[[Any, str | None], Awaitable[Any]]


class SenderValidationError(Exception):
    pass


class Transport(ABC):
    """Typed channel request/response transport."""

    @abstractmethod
    async def send(self, channel: str, payload: Any = None, sender: str | None = None) -> Any:
        """Deliver a request to the handler of `channel` and return its response"""

    @abstractmethod
    def on_receive(self, channel: str, handler: Handler) -> None:
        """Register the handler for `channel`, replacing any previous one"""


class LocalTransport(Transport):
    """In-process transport; handlers run on the caller's event loop."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def on_receive(self, channel: str, handler: Handler) -> None:
        self._handlers[channel] = handler

    async def send(self, channel: str, payload: Any = None, sender: str | None = None) -> Any:
        handler = self._handlers.get(channel)
        if handler is None:
            raise LookupError(f"No handler registered for channel {channel!r}")
        return await handler(payload, sender)


def validate_sender(sender: str | None, expected_origin: str) -> None:
    if not sender:
        raise SenderValidationError("there is no sender ID to validate, will not proceed")
    if sender != expected_origin:
        raise SenderValidationError(
            f'sender ID "{sender}" does not match expected origin {expected_origin}'
        )


def register_wallet_handlers(
    transport: Transport, manager: WalletManager, expected_origin: str
) -> None:
    """Expose the wallet operations on `transport`."""

    engine = manager.require_engine

    def register(channel: str, fn: Callable[[Any], Awaitable[Any]]) -> None:
        async def handle(payload: Any, sender: str | None) -> Any:
            try:
                validate_sender(sender, expected_origin)
                return await fn(payload)
            except Exception as e:
                logger.error(f"{channel}: {e}")
                return str(e)

        transport.on_receive(channel, handle)

    async def initialize_wallet(seed_phrase: str | None) -> dict[str, Any]:
        return (await manager.initialize_from_phrase(seed_phrase or None)).ui_state

    async def load_wallet_state(_: Any) -> dict[str, Any]:
        return engine().ui_state

    async def send_lotus(data: dict[str, Any]) -> str:
        return await engine().send_lotus(data["outAddress"], int(data["outValue"]))

    async def submit_rank_vote(data: dict[str, Any] | list[dict[str, Any]]) -> str:
        votes = data if isinstance(data, list) else [data]
        return await engine().submit_rank_vote(votes)

    async def get_script_payload(_: Any) -> str:
        return engine().identity.script_payload

    async def load_seed_phrase(_: Any) -> str:
        return engine().identity.seed_phrase

    async def load_signing_key(_: Any) -> str:
        return engine().identity.wif

    async def needs_utxo_consolidation(_: Any) -> bool:
        return engine().needs_utxo_consolidation

    async def defrag_wallet(_: Any) -> list[str]:
        return await engine().consolidate_utxos()

    register("initializeWallet", initialize_wallet)
    register("loadWalletState", load_wallet_state)
    register("sendLotus", send_lotus)
    register("submitRankVote", submit_rank_vote)
    register("getScriptPayload", get_script_payload)
    register("loadSeedPhrase", load_seed_phrase)
    register("loadSigningKey", load_signing_key)
    register("needsUtxoConsolidation", needs_utxo_consolidation)
    register("defragWallet", defrag_wallet)
