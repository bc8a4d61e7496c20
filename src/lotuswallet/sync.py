"""
Real-time sync with the chain indexer over its websocket channel.

Lifecycle of the subscription:

    DISCONNECTED -> CONNECTING -> OPEN -> SUBSCRIBED
         ^______________|__________|_________|   (socket error or end)

The first time the socket opens the UTXO cache is bootstrapped before the
wallet script is subscribed. Reconnects only re-subscribe; subscriptions do
not survive a socket replacement but the cache does.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from enum import Enum
from typing import Any

import websockets
from loguru import logger

from lotuswallet.backends.base import IndexerBackend, IndexerError
from lotuswallet.config import WalletSettings
from lotuswallet.queue import ApplyOutput, Bootstrap, EventQueue, Reconcile

SCRIPT_TYPE_P2PKH = "p2pkh"

# Push message types that are received but not acted upon
IGNORED_MESSAGE_TYPES = frozenset({"RemovedFromMempool", "Confirmed", "Reorg", "BlockConnected"})


class SyncState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    SUBSCRIBED = "subscribed"


class IndexerSyncClient:
    """
    Owns the indexer subscription for the wallet script.

    Incoming outputs paying the script are fed into the event queue as
    ApplyOutput operations; every other push message is ignored.
    """

    def __init__(
        self,
        queue: EventQueue,
        backend: IndexerBackend,
        script: bytes,
        script_payload: str,
        settings: WalletSettings,
        connect: Callable[[str], Any] = websockets.connect,
    ):
        self.queue = queue
        self.backend = backend
        self.script = script
        self.script_payload = script_payload
        self.ws_url = settings.chronik_ws_url
        self.reconnect_initial_delay = settings.reconnect_initial_delay
        self.reconnect_max_delay = settings.reconnect_max_delay
        self.reconcile_interval = settings.reconcile_interval
        self._connect = connect

        self.state = SyncState.DISCONNECTED
        self.bootstrapped = False
        self._ws: Any = None
        self._stopping = False
        self._run_task: asyncio.Task[None] | None = None
        self._reconcile_task: asyncio.Task[None] | None = None
        self._subscribed = asyncio.Event()

    def _set_state(self, state: SyncState) -> None:
        if state != self.state:
            logger.debug(f"Indexer sync: {self.state.value} -> {state.value}")
        self.state = state
        if state == SyncState.SUBSCRIBED:
            self._subscribed.set()
        else:
            self._subscribed.clear()

    def start(self) -> None:
        """Start the connection loop and the periodic reconciliation."""
        if self._run_task is not None:
            return
        self._stopping = False
        self._run_task = asyncio.create_task(self._run())
        if self.reconcile_interval > 0:
            self._reconcile_task = asyncio.create_task(self._reconcile_loop())

    async def wait_subscribed(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._subscribed.wait(), timeout)

    async def _run(self) -> None:
        """Connect, subscribe and receive, reconnecting with backoff."""
        backoff = self.reconnect_initial_delay

        while not self._stopping:
            self._set_state(SyncState.CONNECTING)
            try:
                async with self._connect(self.ws_url) as ws:
                    self._ws = ws
                    await self._on_open(ws)
                    backoff = self.reconnect_initial_delay
                    async for raw in ws:
                        await self.handle_message(raw)
                logger.warning("Indexer websocket closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Indexer websocket error: {e}")
            finally:
                self._ws = None
                self._set_state(SyncState.DISCONNECTED)

            if self._stopping:
                break
            logger.info(f"Reconnecting to indexer in {backoff:.1f}s")
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self.reconnect_max_delay)

    async def _on_open(self, ws: Any) -> None:
        self._set_state(SyncState.OPEN)
        logger.info(f"Connected to indexer at {self.ws_url}")

        if not self.bootstrapped:
            result = await self.queue.enqueue(Bootstrap())
            if not result.ok:
                logger.warning(f"Bootstrap failed, continuing with cached UTXOs: {result.error}")
            self.bootstrapped = True

        await ws.send(self._subscription_message("subscribe"))
        self._set_state(SyncState.SUBSCRIBED)
        logger.info(f"Subscribed to {SCRIPT_TYPE_P2PKH}/{self.script_payload}")

    def _subscription_message(self, action: str) -> str:
        return json.dumps(
            {"type": action, "scriptType": SCRIPT_TYPE_P2PKH, "payload": self.script_payload}
        )

    async def handle_message(self, raw: str | bytes) -> None:
        """Dispatch one push message from the indexer."""
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed indexer message: {raw!r}")
            return
        if not isinstance(msg, dict):
            logger.warning(f"Ignoring malformed indexer message: {raw!r}")
            return

        msg_type = msg.get("type")
        match msg_type:
            case "AddedToMempool":
                await self._handle_added_to_mempool(msg.get("txid", ""))
            case "error":
                logger.warning(f"Indexer reported error: {msg.get('message', msg)}")
            case _ if msg_type in IGNORED_MESSAGE_TYPES:
                # Known gap: confirmations and mempool evictions are not tracked
                logger.debug(f"Ignoring {msg_type} for {msg.get('txid', msg.get('blockHash'))}")
            case _:
                logger.debug(f"Ignoring unknown indexer message type: {msg_type}")

    async def _handle_added_to_mempool(self, txid: str) -> None:
        if not txid:
            return
        try:
            tx = await self.backend.get_transaction(txid)
        except IndexerError as e:
            logger.warning(f"Unable to fetch mempool tx {txid}: {e}")
            return
        if tx is None:
            logger.debug(f"Mempool tx {txid} not found")
            return

        for out_idx, output in enumerate(tx.outputs):
            if output.output_script != self.script:
                continue
            logger.info(f"Incoming output {txid}:{out_idx} ({output.value} sats)")
            self.queue.enqueue(
                ApplyOutput(
                    txid=txid,
                    out_idx=out_idx,
                    value=output.value,
                    height=tx.block_height if tx.block_height is not None else -1,
                    is_coinbase=tx.is_coinbase,
                )
            )

    async def _reconcile_loop(self) -> None:
        """Queue a reconciliation whenever the queue has been idle for an interval."""
        while True:
            await asyncio.sleep(self.reconcile_interval)
            if self.bootstrapped and self.queue.idle:
                self.queue.enqueue(Reconcile())

    async def stop(self) -> None:
        """Unsubscribe, close the socket and cancel background tasks."""
        self._stopping = True

        ws = self._ws
        if ws is not None:
            if self.state == SyncState.SUBSCRIBED:
                try:
                    await ws.send(self._subscription_message("unsubscribe"))
                except Exception as e:
                    logger.debug(f"Unsubscribe failed: {e}")
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Closing indexer websocket failed: {e}")

        for task in (self._reconcile_task, self._run_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._run_task = None
        self._reconcile_task = None
        self._ws = None
        self._set_state(SyncState.DISCONNECTED)
        logger.info("Indexer sync stopped")
