"""
Transaction builder for value transfers, RANK votes and UTXO consolidation.

All three kinds spend only the wallet's own P2PKH outputs and return change
to the wallet script. Coin selection is greedy over the cache's insertion
order and stops as soon as the selected value strictly exceeds the
threshold of the transaction kind.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from coincurve import PrivateKey
from loguru import logger

from lotuswallet.config import WalletSettings
from lotuswallet.constants import (
    COINBASE_MATURITY,
    DEFAULT_FEE_RATE,
    RANK_OUTPUT_MIN_VALUE,
    STANDARD_DUST_LIMIT,
    WALLET_MAX_TX_INPUTS,
    WALLET_MAX_TX_SIZE,
)
from lotuswallet.wallet.address import AddressError, address_to_script, is_p2pkh_script
from lotuswallet.wallet.rank import RankEncodingError, RankVote, rank_script
from lotuswallet.wallet.signing import (
    Transaction,
    TxInput,
    TxOutput,
    encode_varint,
    sign_transaction,
    verify_transaction,
)
from lotuswallet.wallet.utxo_cache import Outpoint, UtxoEntry

# Size estimate components (bytes)
TX_OVERHEAD_SIZE = 10
P2PKH_INPUT_SIZE = 148
P2PKH_OUTPUT_SIZE = 34


class TransactionBuildError(Exception):
    """Raised when a transaction cannot be built or fails verification."""


@dataclass
class BuiltTransaction:
    """A signed, verified transaction and the wallet outpoints it spends."""

    tx: Transaction
    spent: list[Outpoint]
    fee: int

    @property
    def txid(self) -> str:
        return self.tx.txid

    @property
    def raw_hex(self) -> str:
        return self.tx.to_hex()

    @property
    def input_amount(self) -> int:
        return self.tx.output_amount + self.fee


def estimate_size(num_inputs: int, output_scripts: Sequence[bytes]) -> int:
    """Estimated serialized size of a signed transaction with P2PKH inputs"""
    size = TX_OVERHEAD_SIZE + num_inputs * P2PKH_INPUT_SIZE
    for script in output_scripts:
        if is_p2pkh_script(script):
            size += P2PKH_OUTPUT_SIZE
        else:
            size += 8 + len(encode_varint(len(script))) + len(script)
    return size


def is_mature(entry: UtxoEntry, tip_height: int, maturity: int = COINBASE_MATURITY) -> bool:
    if not entry.is_coinbase:
        return True
    return entry.height >= 0 and tip_height - entry.height >= maturity


def select_coins(
    utxos: Sequence[tuple[Outpoint, UtxoEntry]],
    threshold: int,
    tip_height: int,
    maturity: int = COINBASE_MATURITY,
) -> list[tuple[Outpoint, UtxoEntry]]:
    """
    Greedy selection in the given order.

    Immature coinbase outputs are skipped. Selection stops after the first
    input that brings the total strictly above `threshold`; if the whole set
    never gets there, everything spendable is returned.
    """
    selected: list[tuple[Outpoint, UtxoEntry]] = []
    total = 0

    for outpoint, entry in utxos:
        if not is_mature(entry, tip_height, maturity):
            continue
        selected.append((outpoint, entry))
        total += entry.value
        if total > threshold:
            break

    return selected


class TransactionBuilder:
    """Builds and signs transactions spending the wallet's P2PKH outputs."""

    def __init__(
        self,
        script: bytes,
        signing_key: PrivateKey,
        fee_rate: int = DEFAULT_FEE_RATE,
        dust_threshold: int = STANDARD_DUST_LIMIT,
        rank_output_min_value: int = RANK_OUTPUT_MIN_VALUE,
        max_tx_size: int = WALLET_MAX_TX_SIZE,
        max_tx_inputs: int = WALLET_MAX_TX_INPUTS,
        coinbase_maturity: int = COINBASE_MATURITY,
    ):
        self.script = script
        self.signing_key = signing_key
        self.fee_rate = fee_rate
        self.dust_threshold = dust_threshold
        self.rank_output_min_value = rank_output_min_value
        self.max_tx_size = max_tx_size
        self.max_tx_inputs = max_tx_inputs
        self.coinbase_maturity = coinbase_maturity

    @classmethod
    def from_settings(
        cls, script: bytes, signing_key: PrivateKey, settings: WalletSettings
    ) -> TransactionBuilder:
        return cls(
            script,
            signing_key,
            fee_rate=settings.fee_rate,
            dust_threshold=settings.dust_threshold,
            rank_output_min_value=settings.rank_output_min_value,
            max_tx_size=settings.max_tx_size,
            max_tx_inputs=settings.max_tx_inputs,
            coinbase_maturity=settings.coinbase_maturity,
        )

    def _select(
        self, utxos: Sequence[tuple[Outpoint, UtxoEntry]], threshold: int, tip_height: int
    ) -> list[tuple[Outpoint, UtxoEntry]]:
        return select_coins(utxos, threshold, tip_height, self.coinbase_maturity)

    def _finalize(
        self,
        kind: str,
        selected: list[tuple[Outpoint, UtxoEntry]],
        outputs: list[TxOutput],
        fee: int,
    ) -> BuiltTransaction:
        """Sign and verify; an invalid result is never returned."""
        tx = Transaction(
            inputs=[TxInput(outpoint.txid, outpoint.out_idx) for outpoint, _ in selected],
            outputs=outputs,
        )
        prevouts = [TxOutput(entry.value, self.script) for _, entry in selected]
        sign_transaction(tx, prevouts, self.signing_key)

        diagnostic = verify_transaction(tx, prevouts)
        if diagnostic is not None:
            raise TransactionBuildError(f"{kind} produced an invalid transaction: {diagnostic}")

        logger.debug(
            f"Built {kind} tx {tx.txid}: {len(tx.inputs)} inputs, "
            f"{len(tx.outputs)} outputs, fee {fee} sats, {tx.size} bytes"
        )
        return BuiltTransaction(tx=tx, spent=[outpoint for outpoint, _ in selected], fee=fee)

    def build_send(
        self,
        out_address: str,
        out_value: int,
        utxos: Sequence[tuple[Outpoint, UtxoEntry]],
        tip_height: int,
        subtract_fee_from_amount: bool = False,
        fee: int | None = None,
    ) -> BuiltTransaction:
        """
        Build a value transfer to `out_address`.

        The destination receives `out_value`, reduced by the fee only when the
        selected inputs cannot cover amount plus fee (or when
        `subtract_fee_from_amount` is set). Change goes back to the wallet
        script when it is above the dust threshold.

        Args:
            out_address: Recipient XAddress or legacy address
            out_value: Amount in sats
            utxos: Cache entries in insertion order
            tip_height: Current chain tip, for coinbase maturity
            subtract_fee_from_amount: Always take the fee out of `out_value`
            fee: Fixed fee overriding the size-based estimate
        """
        if out_value <= 0:
            raise TransactionBuildError(f"Invalid send amount: {out_value}")
        try:
            out_script = address_to_script(out_address)
        except AddressError as e:
            raise TransactionBuildError(f"Invalid recipient address {out_address}: {e}") from e

        selected = self._select(utxos, out_value, tip_height)
        output_scripts = [out_script, self.script]
        while selected and estimate_size(len(selected), output_scripts) > self.max_tx_size:
            logger.info(
                f"tx size {estimate_size(len(selected), output_scripts)} bytes is too large, "
                "removing last input"
            )
            selected.pop()
        if not selected:
            raise TransactionBuildError("No spendable UTXOs available")

        input_amount = sum(entry.value for _, entry in selected)
        if fee is None:
            fee = estimate_size(len(selected), output_scripts) * self.fee_rate

        if subtract_fee_from_amount or input_amount < out_value + fee:
            dest_value = out_value - fee
        else:
            dest_value = out_value

        if dest_value < self.dust_threshold:
            raise TransactionBuildError(
                f"Send amount {out_value} is below dust after a fee of {fee} sats"
            )

        change = input_amount - dest_value - fee
        if change < 0:
            raise TransactionBuildError(
                f"Insufficient funds: need {dest_value + fee}, have {input_amount}"
            )

        outputs = [TxOutput(dest_value, out_script)]
        if change > self.dust_threshold:
            outputs.append(TxOutput(change, self.script))
        else:
            fee += change

        return self._finalize("send", selected, outputs, fee)

    def build_vote(
        self,
        votes: Sequence[RankVote],
        utxos: Sequence[tuple[Outpoint, UtxoEntry]],
        tip_height: int,
    ) -> BuiltTransaction:
        """
        Build a RANK vote transaction.

        The first vote is paid with the minimum RANK output value; any further
        votes ride along as 0-value outputs. Comments are not encoded.
        """
        if not votes:
            raise TransactionBuildError("No votes to submit")

        try:
            rank_scripts = [rank_script(vote) for vote in votes]
        except RankEncodingError as e:
            raise TransactionBuildError(f"Invalid vote: {e}") from e

        outputs = [
            TxOutput(self.rank_output_min_value if index == 0 else 0, script)
            for index, script in enumerate(rank_scripts)
        ]

        base_fee = estimate_size(0, rank_scripts) * self.fee_rate
        threshold = self.rank_output_min_value + base_fee
        selected = self._select(utxos, threshold, tip_height)
        if not selected:
            raise TransactionBuildError("No spendable UTXOs available")

        input_amount = sum(entry.value for _, entry in selected)
        fee = estimate_size(len(selected), [*rank_scripts, self.script]) * self.fee_rate
        change = input_amount - self.rank_output_min_value - fee
        if change < 0:
            raise TransactionBuildError(
                f"Insufficient funds: need {self.rank_output_min_value + fee}, "
                f"have {input_amount}"
            )

        if change > self.dust_threshold:
            outputs.append(TxOutput(change, self.script))
        else:
            fee += change

        return self._finalize("vote", selected, outputs, fee)

    def build_consolidations(
        self,
        utxos: Sequence[tuple[Outpoint, UtxoEntry]],
        tip_height: int,
        threshold: int | None = None,
    ) -> list[BuiltTransaction]:
        """
        Sweep low-value outputs back to the wallet script.

        Spendable entries worth at most `threshold` (default: the RANK output
        minimum) are chunked into self-payments of at most `max_tx_inputs`
        inputs, fewer if that many would exceed `max_tx_size`. Chunks that
        could not cover their own fee are skipped.
        """
        if threshold is None:
            threshold = self.rank_output_min_value

        low_value = [
            (outpoint, entry)
            for outpoint, entry in utxos
            if entry.value <= threshold
            and is_mature(entry, tip_height, self.coinbase_maturity)
        ]
        if len(low_value) < 2:
            return []

        fits = (self.max_tx_size - TX_OVERHEAD_SIZE - P2PKH_OUTPUT_SIZE) // P2PKH_INPUT_SIZE
        chunk_size = max(1, min(self.max_tx_inputs, fits))

        built: list[BuiltTransaction] = []
        for start in range(0, len(low_value), chunk_size):
            chunk = low_value[start : start + chunk_size]
            if len(chunk) < 2:
                continue
            total = sum(entry.value for _, entry in chunk)
            fee = estimate_size(len(chunk), [self.script]) * self.fee_rate
            if total - fee <= self.dust_threshold:
                logger.warning(
                    f"Skipping consolidation of {len(chunk)} UTXOs: "
                    f"value {total} does not cover fee {fee}"
                )
                continue
            built.append(
                self._finalize("consolidation", chunk, [TxOutput(total - fee, self.script)], fee)
            )

        return built
