"""
Lotus wallet engine.

One engine owns one wallet identity, its UTXO cache, the event queue that
serializes every mutation of that cache, and the indexer subscription.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from lotuswallet.backends.base import IndexerBackend, IndexerError
from lotuswallet.backends.chronik import ChronikBackend
from lotuswallet.config import WalletSettings
from lotuswallet.queue import (
    ApplyOutput,
    Bootstrap,
    Consolidate,
    ErrorKind,
    EventQueue,
    Operation,
    Reconcile,
    SendValue,
    SubmitVote,
)
from lotuswallet.storage import WalletState, WalletStore
from lotuswallet.sync import SCRIPT_TYPE_P2PKH, IndexerSyncClient
from lotuswallet.wallet.builder import WalletIdentity, build_identity
from lotuswallet.wallet.rank import RankVote
from lotuswallet.wallet.tx_builder import BuiltTransaction, TransactionBuilder
from lotuswallet.wallet.utxo_cache import Outpoint, UtxoCache, UtxoEntry


class BroadcastError(Exception):
    """Raised when the indexer rejects or fails to relay a transaction."""


@dataclass
class ReconcileResult:
    removed: list[Outpoint] = field(default_factory=list)
    added: list[Outpoint] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.added)


class WalletEngine:
    """
    Single-key Lotus wallet.

    Cache mutations only happen inside operations executed by `self.queue`;
    the public coroutines below enqueue and await those operations.
    """

    def __init__(
        self,
        identity: WalletIdentity,
        backend: IndexerBackend,
        store: WalletStore,
        settings: WalletSettings | None = None,
        connect: Callable[[str], Any] | None = None,
    ):
        self.identity = identity
        self.backend = backend
        self.store = store
        self.settings = settings or WalletSettings()
        self._connect = connect

        self.utxos = UtxoCache()
        self.tip_height = 0
        self.tip_hash = ""

        self.builder = TransactionBuilder.from_settings(
            identity.script, identity.signing_key, self.settings
        )
        self.queue = EventQueue(self.dispatch, flush=self.flush, classify=self.classify)
        self.sync: IndexerSyncClient | None = None

    async def init(self, state: WalletState | None = None, start_sync: bool = True) -> None:
        """Load persisted state, make sure the chain tip is known, start syncing."""
        if state is not None:
            self.utxos = UtxoCache.deserialize(state.utxos, state.balance)
            self.tip_height = state.tip_height or 0
            self.tip_hash = state.tip_hash or ""
            logger.info(
                f"Loaded wallet state: {len(self.utxos)} UTXOs, balance {self.utxos.balance} sats"
            )

        if not self.tip_hash:
            await self.refresh_chain_tip()

        if start_sync:
            kwargs = {"connect": self._connect} if self._connect is not None else {}
            self.sync = IndexerSyncClient(
                self.queue,
                self.backend,
                self.identity.script,
                self.identity.script_payload,
                self.settings,
                **kwargs,
            )
            self.sync.start()

    async def deinit(self) -> None:
        """Stop syncing and drop any queued operations."""
        if self.sync is not None:
            await self.sync.stop()
            self.sync = None
        await self.queue.close()
        logger.info(f"Wallet {self.identity.address} deinitialized")

    # Queue plumbing

    async def dispatch(self, op: Operation) -> Any:
        match op:
            case Bootstrap():
                return await self.bootstrap()
            case ApplyOutput(txid, out_idx, value, height, is_coinbase):
                return self.apply_incoming_output(txid, out_idx, value, height, is_coinbase)
            case Reconcile(fetch_missing):
                return await self.reconcile(fetch_missing)
            case SendValue(out_address, out_value, subtract_fee):
                return await self._send_value(out_address, out_value, subtract_fee)
            case SubmitVote(votes):
                return await self._submit_vote(list(votes))
            case Consolidate(threshold):
                return await self._consolidate(threshold)
            case _:
                raise TypeError(f"Unknown wallet operation: {op!r}")

    @staticmethod
    def classify(op: Operation, exc: Exception) -> ErrorKind:
        if isinstance(op, Bootstrap | ApplyOutput | Reconcile):
            return ErrorKind.BACKGROUND
        if isinstance(exc, BroadcastError):
            return ErrorKind.RECOVERABLE
        return ErrorKind.FATAL

    async def flush(self) -> None:
        await self.store.save_mutable_state(**self.mutable_state)

    # UTXO cache operations, only called from within the queue

    async def bootstrap(self) -> int | None:
        """
        Replace the cache with the indexer's UTXO set for the wallet script.

        Returns:
            Number of UTXOs loaded, None if the fetch failed (cache untouched)
        """
        try:
            utxos = await self.backend.get_script_utxos(
                SCRIPT_TYPE_P2PKH, self.identity.script_payload
            )
        except IndexerError as e:
            logger.error(f"Bootstrap failed, keeping {len(self.utxos)} cached UTXOs: {e}")
            return None

        self.utxos.replace((utxo.outpoint, utxo.to_entry()) for utxo in utxos)
        logger.info(f"UTXO cache bootstrapped: {len(self.utxos)} UTXOs, {self.utxos.balance} sats")
        return len(self.utxos)

    def apply_incoming_output(
        self,
        txid: str,
        out_idx: int,
        value: int,
        height: int = -1,
        is_coinbase: bool = False,
    ) -> int:
        """Add (or overwrite) an output paying the wallet. Returns the new balance."""
        self.utxos.add(Outpoint(txid, out_idx), UtxoEntry(value, height, is_coinbase))
        return self.utxos.balance

    async def reconcile(self, fetch_missing: bool = True) -> ReconcileResult:
        """
        Drop every cached outpoint the indexer no longer reports as unspent.

        With `fetch_missing`, outputs present in the indexer's set for the
        script but absent locally are added back.
        """
        result = ReconcileResult()

        outpoints = self.utxos.outpoints
        if outpoints:
            states = await self.backend.validate_utxos(outpoints)
            for outpoint, state in zip(outpoints, states, strict=True):
                if state.is_valid:
                    continue
                if self.utxos.remove(outpoint) is not None:
                    logger.info(f"Removing {state.value} UTXO {outpoint} from cache")
                    result.removed.append(outpoint)

        if fetch_missing:
            try:
                utxos = await self.backend.get_script_utxos(
                    SCRIPT_TYPE_P2PKH, self.identity.script_payload
                )
            except IndexerError as e:
                logger.warning(f"Unable to fetch missing UTXOs: {e}")
                utxos = []
            for utxo in utxos:
                if utxo.outpoint not in self.utxos:
                    logger.info(f"Adding missing UTXO {utxo.outpoint} to cache")
                    self.utxos.add(utxo.outpoint, utxo.to_entry())
                    result.added.append(utxo.outpoint)

        await self.refresh_chain_tip()

        if result.changed:
            logger.info(
                f"Reconciled UTXO cache: -{len(result.removed)} +{len(result.added)}, "
                f"balance {self.utxos.balance} sats"
            )
        return result

    def remove_spent(self, outpoints: Iterable[Outpoint]) -> None:
        for outpoint in outpoints:
            self.utxos.remove(outpoint)

    async def refresh_chain_tip(self) -> None:
        try:
            tip = await self.backend.get_blockchain_info()
        except IndexerError as e:
            logger.warning(f"Unable to fetch chain tip: {e}")
            return
        if tip.height == self.tip_height and tip.hash == self.tip_hash:
            return
        self.tip_height = tip.height
        self.tip_hash = tip.hash
        await self.store.save_chain_state(tip.height, tip.hash)

    # Transactions, only called from within the queue

    async def _broadcast(self, built: BuiltTransaction, description: str) -> str:
        try:
            txid = await self.backend.broadcast_transaction(built.raw_hex)
        except IndexerError as e:
            logger.error(f"Failed to broadcast {description}: {e}")
            raise BroadcastError(f"Failed to broadcast {description}: {e}") from e

        logger.info(f"Broadcast {description}: {txid}")
        self.remove_spent(built.spent)
        return txid

    async def _send_value(self, out_address: str, out_value: int, subtract_fee: bool) -> str:
        built = self.builder.build_send(
            out_address,
            out_value,
            self.utxos.items(),
            self.tip_height,
            subtract_fee_from_amount=subtract_fee,
        )
        txid = await self._broadcast(built, f"{out_value} sats to {out_address}")
        self.queue.enqueue(Reconcile(), front=True)
        return txid

    async def _submit_vote(self, votes: list[RankVote]) -> str:
        built = self.builder.build_vote(votes, self.utxos.items(), self.tip_height)
        first = votes[0]
        txid = await self._broadcast(
            built,
            f"{len(votes)} RANK vote(s), {self.settings.rank_output_min_value} sats "
            f"{first.sentiment} on {first.platform}/{first.profile_id}",
        )
        self.queue.enqueue(Reconcile(), front=True)
        return txid

    async def _consolidate(self, threshold: int | None) -> list[str]:
        built_txs = self.builder.build_consolidations(
            self.utxos.items(), self.tip_height, threshold
        )
        txids = []
        for built in built_txs:
            txids.append(
                await self._broadcast(
                    built, f"consolidation of {len(built.spent)} UTXOs to {self.identity.address}"
                )
            )
        if txids:
            self.queue.enqueue(Reconcile(), front=True)
        return txids

    # Public API

    async def send_lotus(
        self, out_address: str, out_value: int, subtract_fee_from_amount: bool = False
    ) -> str:
        """Send `out_value` sats to `out_address`. Returns the txid."""
        result = await self.queue.enqueue(
            SendValue(out_address, out_value, subtract_fee_from_amount)
        )
        return result.unwrap()

    async def submit_rank_vote(self, votes: Iterable[RankVote | dict]) -> str:
        """Broadcast one RANK transaction for the given votes. Returns the txid."""
        parsed = tuple(v if isinstance(v, RankVote) else RankVote.from_dict(v) for v in votes)
        result = await self.queue.enqueue(SubmitVote(parsed))
        return result.unwrap()

    async def consolidate_utxos(self, threshold: int | None = None) -> list[str]:
        result = await self.queue.enqueue(Consolidate(threshold))
        return result.unwrap()

    async def reconcile_now(self) -> ReconcileResult:
        result = await self.queue.enqueue(Reconcile())
        return result.unwrap()

    @property
    def balance(self) -> int:
        return self.utxos.balance

    @property
    def spendable_balance(self) -> int:
        return self.utxos.spendable_balance(self.tip_height, self.settings.coinbase_maturity)

    @property
    def needs_utxo_consolidation(self) -> bool:
        """True when there are more UTXOs than fit in a single transaction"""
        return len(self.utxos) > self.settings.max_tx_inputs

    @property
    def mutable_state(self) -> dict[str, str]:
        return {"utxos": self.utxos.serialize(), "balance": str(self.utxos.balance)}

    @property
    def wallet_state(self) -> WalletState:
        return WalletState(
            seed_phrase=self.identity.seed_phrase,
            xprv=self.identity.xprv,
            wif=self.identity.wif,
            address=self.identity.address,
            script_payload=self.identity.script_payload,
            script_hex=self.identity.script_hex,
            utxos=self.utxos.serialize(),
            balance=str(self.utxos.balance),
            tip_height=self.tip_height or None,
            tip_hash=self.tip_hash or None,
        )

    @property
    def ui_state(self) -> dict[str, Any]:
        """Wallet state without secrets"""
        return {
            "address": self.identity.address,
            "scriptPayload": self.identity.script_payload,
            "scriptHex": self.identity.script_hex,
            "utxos": self.utxos.serialize(),
            "balance": str(self.utxos.balance),
            "spendableBalance": str(self.spendable_balance),
            "tipHeight": self.tip_height,
            "tipHash": self.tip_hash,
        }


class WalletManager:
    """
    Creates, loads and replaces the wallet engine backed by a WalletStore.

    At most one engine runs at a time; initializing from a new phrase tears
    the previous one down first.
    """

    def __init__(
        self,
        store: WalletStore,
        settings: WalletSettings | None = None,
        backend_factory: Callable[[WalletSettings], IndexerBackend] | None = None,
        connect: Callable[[str], Any] | None = None,
        start_sync: bool = True,
    ):
        self.store = store
        self.settings = settings or WalletSettings()
        self.backend_factory = backend_factory or (
            lambda s: ChronikBackend(s.chronik_url, timeout=s.request_timeout)
        )
        self.connect = connect
        self.start_sync = start_sync
        self.engine: WalletEngine | None = None

    def require_engine(self) -> WalletEngine:
        if self.engine is None:
            raise RuntimeError("Wallet is not initialized")
        return self.engine

    async def _start(self, identity: WalletIdentity, state: WalletState | None) -> WalletEngine:
        await self.shutdown()
        engine = WalletEngine(
            identity,
            self.backend_factory(self.settings),
            self.store,
            self.settings,
            connect=self.connect,
        )
        if state is None:
            await self.store.save_wallet_state(engine.wallet_state)
        await engine.init(state, start_sync=self.start_sync)
        self.engine = engine
        return engine

    async def initialize_from_phrase(self, seed_phrase: str | None = None) -> WalletEngine:
        """Derive a wallet from `seed_phrase` (or a new one) and replace any running engine."""
        identity = build_identity(seed_phrase, self.settings.network)
        logger.info(f"Initializing wallet {identity.address}")
        return await self._start(identity, None)

    async def load(self) -> WalletEngine | None:
        """Load the persisted wallet, None if there is none yet."""
        state = await self.store.load_wallet_state()
        if state is None:
            return None
        identity = WalletIdentity.from_state(
            seed_phrase=state.seed_phrase,
            xprv=state.xprv,
            wif=state.wif,
            address=state.address,
            script_hex=state.script_hex,
            network=self.settings.network,
        )
        logger.info(f"Loading wallet {identity.address}")
        return await self._start(identity, state)

    async def shutdown(self) -> None:
        if self.engine is None:
            return
        engine, self.engine = self.engine, None
        await engine.deinit()
        await engine.backend.close()
