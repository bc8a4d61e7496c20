"""
Chronik indexer backend.

Talks to the indexer's JSON REST API. Values are transported as decimal
strings and converted to int here so nothing downstream sees floats.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from lotuswallet.backends.base import (
    ChainTip,
    IndexerBackend,
    IndexerError,
    IndexerTransaction,
    IndexerTxOutput,
    ScriptUtxo,
    UtxoState,
)
from lotuswallet.constants import DEFAULT_CHRONIK_URL
from lotuswallet.wallet.utxo_cache import Outpoint


class ChronikBackend(IndexerBackend):
    """
    Indexer backend for a Chronik-compatible REST API.

    Every call uses the client's timeout, so a hung indexer fails the
    operation instead of stalling the wallet queue.
    """

    def __init__(
        self,
        chronik_url: str = DEFAULT_CHRONIK_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.chronik_url = chronik_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Make an API call to the indexer."""
        url = f"{self.chronik_url}/{endpoint}"

        try:
            if method == "GET":
                response = await self.client.get(url)
            elif method == "POST":
                response = await self.client.post(url, json=data)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            return response.json()

        except httpx.HTTPError as e:
            logger.error(f"Chronik API call failed: {endpoint} - {e}")
            raise
        except ValueError as e:
            logger.error(f"Chronik returned invalid JSON: {endpoint} - {e}")
            raise IndexerError(f"Invalid JSON from {endpoint}: {e}") from e

    async def get_script_utxos(self, script_type: str, payload: str) -> list[ScriptUtxo]:
        try:
            result = await self._api_call("GET", f"script/{script_type}/{payload}/utxos")
        except httpx.HTTPError as e:
            raise IndexerError(f"Failed to fetch UTXOs for {script_type}/{payload}: {e}") from e

        utxos = []
        for raw in (result or {}).get("utxos", []):
            try:
                utxos.append(
                    ScriptUtxo(
                        outpoint=Outpoint(raw["outpoint"]["txid"], int(raw["outpoint"]["outIdx"])),
                        value=int(raw["value"]),
                        block_height=int(raw.get("blockHeight", -1)),
                        is_coinbase=bool(raw.get("isCoinbase", False)),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise IndexerError(f"Malformed UTXO in indexer response: {raw!r}") from e

        logger.debug(f"Found {len(utxos)} UTXOs for {script_type}/{payload}")
        return utxos

    async def validate_utxos(self, outpoints: list[Outpoint]) -> list[UtxoState]:
        if not outpoints:
            return []

        body = {"outpoints": [{"txid": o.txid, "outIdx": o.out_idx} for o in outpoints]}
        try:
            result = await self._api_call("POST", "validate-utxos", data=body)
        except httpx.HTTPError as e:
            raise IndexerError(f"Failed to validate {len(outpoints)} UTXOs: {e}") from e

        try:
            states = [UtxoState(item["state"]) for item in result["utxoStates"]]
        except (KeyError, TypeError, ValueError) as e:
            raise IndexerError(f"Malformed validate-utxos response: {e}") from e

        if len(states) != len(outpoints):
            raise IndexerError(
                f"Indexer returned {len(states)} states for {len(outpoints)} outpoints"
            )
        return states

    async def broadcast_transaction(self, raw_hex: str) -> str:
        try:
            result = await self._api_call("POST", "broadcast-tx", data={"rawTx": raw_hex})
        except httpx.HTTPStatusError as e:
            detail = e.response.text
            logger.error(f"Failed to broadcast transaction: {detail}")
            raise IndexerError(f"Broadcast rejected: {detail}") from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise IndexerError(f"Broadcast failed: {e}") from e

        txid = result.get("txid") if isinstance(result, dict) else None
        if not isinstance(txid, str) or not txid:
            logger.error(f"Broadcast response has no txid: {result!r}")
            raise IndexerError(f"Malformed broadcast-tx response: {result!r}")
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction(self, txid: str) -> IndexerTransaction | None:
        try:
            result = await self._api_call("GET", f"tx/{txid}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise IndexerError(f"Failed to fetch transaction {txid}: {e}") from e
        except httpx.HTTPError as e:
            raise IndexerError(f"Failed to fetch transaction {txid}: {e}") from e

        if not result or "txid" not in result:
            return None

        try:
            outputs = [
                IndexerTxOutput(
                    value=int(out["value"]),
                    output_script=bytes.fromhex(out["outputScript"]),
                )
                for out in result.get("outputs", [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise IndexerError(f"Malformed transaction {txid}: {e}") from e

        block = result.get("block") or {}
        return IndexerTransaction(
            txid=result["txid"],
            outputs=outputs,
            block_height=block.get("height"),
            is_coinbase=bool(result.get("isCoinbase", False)),
        )

    async def get_blockchain_info(self) -> ChainTip:
        try:
            result = await self._api_call("GET", "blockchain-info")
            tip = ChainTip(height=int(result["tipHeight"]), hash=result["tipHash"])
        except httpx.HTTPError as e:
            raise IndexerError(f"Failed to fetch blockchain info: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise IndexerError(f"Malformed blockchain info: {e}") from e

        logger.debug(f"Current chain tip: {tip.height} {tip.hash}")
        return tip

    async def close(self) -> None:
        """Close the HTTP client connection."""
        await self.client.aclose()
