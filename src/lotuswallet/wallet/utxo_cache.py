"""
Local UTXO cache for the wallet script.

The cache and the tracked balance are only ever mutated together: every
entry added increments the balance by its value, every entry removed
decrements it. The balance is re-summed only by an explicit reconciliation.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from loguru import logger


@dataclass(frozen=True)
class Outpoint:
    """Reference to a transaction output"""

    txid: str
    out_idx: int

    @property
    def key(self) -> str:
        return f"{self.txid}_{self.out_idx}"

    @classmethod
    def from_key(cls, key: str) -> Outpoint:
        txid, _, out_idx = key.rpartition("_")
        if not txid or not out_idx.isdigit():
            raise ValueError(f"Invalid outpoint key: {key!r}")
        return cls(txid, int(out_idx))

    def __str__(self) -> str:
        return f"{self.txid}:{self.out_idx}"


@dataclass
class UtxoEntry:
    """Cached UTXO value and confirmation metadata"""

    value: int
    height: int = -1  # -1 while in the mempool
    is_coinbase: bool = False


class UtxoCache:
    """Insertion-ordered map of outpoint -> UtxoEntry with a running balance."""

    def __init__(self) -> None:
        self._entries: dict[Outpoint, UtxoEntry] = {}
        self._balance = 0

    @property
    def balance(self) -> int:
        return self._balance

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, outpoint: object) -> bool:
        return outpoint in self._entries

    def __iter__(self) -> Iterator[Outpoint]:
        return iter(self._entries)

    def get(self, outpoint: Outpoint) -> UtxoEntry | None:
        return self._entries.get(outpoint)

    def items(self) -> list[tuple[Outpoint, UtxoEntry]]:
        """Snapshot of (outpoint, entry) pairs in insertion order"""
        return list(self._entries.items())

    @property
    def outpoints(self) -> list[Outpoint]:
        return list(self._entries)

    def add(self, outpoint: Outpoint, entry: UtxoEntry) -> None:
        """Add or overwrite an entry, keeping the balance in step."""
        if entry.value < 0:
            raise ValueError(f"Negative UTXO value for {outpoint}: {entry.value}")
        previous = self._entries.get(outpoint)
        if previous is not None:
            self._balance -= previous.value
        self._entries[outpoint] = entry
        self._balance += entry.value
        logger.debug(f"Cached UTXO {outpoint} ({entry.value} sats)")

    def remove(self, outpoint: Outpoint) -> UtxoEntry | None:
        """Remove an entry; absent outpoints are a no-op returning None."""
        entry = self._entries.pop(outpoint, None)
        if entry is not None:
            self._balance -= entry.value
            logger.debug(f"Removed UTXO {outpoint} ({entry.value} sats)")
        return entry

    def replace(self, entries: Iterable[tuple[Outpoint, UtxoEntry]]) -> None:
        """Replace the cache wholesale and recompute the balance."""
        self._entries = dict(entries)
        self.recompute_balance()

    def clear(self) -> None:
        self._entries.clear()
        self._balance = 0

    def recompute_balance(self) -> int:
        """Re-sum all entry values. Only used when reconciling."""
        self._balance = sum(entry.value for entry in self._entries.values())
        return self._balance

    def is_spendable(self, outpoint: Outpoint, tip_height: int, maturity: int) -> bool:
        """Coinbase outputs are spendable once `maturity` blocks deep"""
        entry = self._entries.get(outpoint)
        if entry is None:
            return False
        if entry.is_coinbase:
            return entry.height >= 0 and tip_height - entry.height >= maturity
        return True

    def spendable_balance(self, tip_height: int, maturity: int) -> int:
        return sum(
            entry.value
            for outpoint, entry in self._entries.items()
            if self.is_spendable(outpoint, tip_height, maturity)
        )

    def serialize(self) -> str:
        """JSON list of [key, {value, height, isCoinbase}] pairs"""
        return json.dumps(
            [
                [
                    outpoint.key,
                    {
                        "value": str(entry.value),
                        "height": entry.height,
                        "isCoinbase": entry.is_coinbase,
                    },
                ]
                for outpoint, entry in self._entries.items()
            ]
        )

    @classmethod
    def deserialize(cls, data: str, balance: str | int | None = None) -> UtxoCache:
        """
        Load a serialized cache.

        A persisted balance that disagrees with the entries is discarded in
        favour of the re-summed value.
        """
        cache = cls()
        for key, raw in json.loads(data or "[]"):
            cache._entries[Outpoint.from_key(key)] = UtxoEntry(
                value=int(raw["value"]),
                height=int(raw.get("height", -1)),
                is_coinbase=bool(raw.get("isCoinbase", False)),
            )
        total = cache.recompute_balance()
        if balance not in (None, "") and int(balance) != total:
            logger.warning(f"Persisted balance {balance} does not match UTXO set, using {total}")
        return cache
