"""
Lotus transaction model, serialization and P2PKH signing.

Lotus inherits the Bitcoin Cash replay-protected digest: the BIP143
preimage signed with SIGHASH_ALL | SIGHASH_FORKID.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from coincurve import PrivateKey, PublicKey

from lotuswallet.constants import SIGHASH_ALL, SIGHASH_FORKID
from lotuswallet.wallet.address import is_p2pkh_script, push_data
from lotuswallet.wallet.bip32 import hash160

DEFAULT_SIGHASH_TYPE = SIGHASH_ALL | SIGHASH_FORKID
MAX_MONEY = 2**63 - 1


class TransactionSigningError(Exception):
    pass


@dataclass
class TxInput:
    txid: str
    out_idx: int
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF

    @property
    def outpoint_bytes(self) -> bytes:
        # txid is displayed big-endian, serialized little-endian
        return bytes.fromhex(self.txid)[::-1] + self.out_idx.to_bytes(4, "little")


@dataclass
class TxOutput:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return self.value.to_bytes(8, "little") + encode_varint(len(self.script)) + self.script


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: int = 0

    def serialize(self) -> bytes:
        result = self.version.to_bytes(4, "little")
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.outpoint_bytes
            result += encode_varint(len(inp.script_sig)) + inp.script_sig
            result += inp.sequence.to_bytes(4, "little")
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        result += self.locktime.to_bytes(4, "little")
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        return hash256(self.serialize())[::-1].hex()

    @property
    def output_amount(self) -> int:
        return sum(out.value for out in self.outputs)

    @property
    def size(self) -> int:
        return len(self.serialize())


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        offset = 0
        version = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        offset += 4

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxInput] = []

        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32

            out_idx = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            inputs.append(TxInput(txid, out_idx, script_sig, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOutput] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOutput(value, script))

        if len(tx_bytes) != offset + 4:
            raise ValueError("trailing or missing bytes after outputs")
        locktime = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        return Transaction(version, inputs, outputs, locktime)

    except (IndexError, ValueError) as e:
        raise TransactionSigningError(f"Failed to parse transaction: {e}") from e


def compute_sighash_forkid(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = DEFAULT_SIGHASH_TYPE,
) -> bytes:
    """BIP143-style digest with the fork id flag (SIGHASH_ALL only)."""
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    hash_prevouts = hash256(b"".join(inp.outpoint_bytes for inp in tx.inputs))
    hash_sequence = hash256(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    target_input = tx.inputs[input_index]

    preimage = (
        tx.version.to_bytes(4, "little")
        + hash_prevouts
        + hash_sequence
        + target_input.outpoint_bytes
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little")
        + target_input.sequence.to_bytes(4, "little")
        + hash_outputs
        + tx.locktime.to_bytes(4, "little")
        + sighash_type.to_bytes(4, "little")
    )

    return hash256(preimage)


def sign_p2pkh_input(
    tx: Transaction,
    input_index: int,
    prevout: TxOutput,
    private_key: PrivateKey,
    sighash_type: int = DEFAULT_SIGHASH_TYPE,
) -> bytes:
    """Sign a P2PKH input with coincurve.

    Args:
        tx: The transaction to sign
        input_index: Index of the input to sign
        prevout: The output being spent (value and locking script)
        private_key: coincurve PrivateKey instance
        sighash_type: Sighash type (default SIGHASH_ALL | SIGHASH_FORKID)

    Returns:
        DER-encoded signature with sighash type byte appended
    """
    sighash = compute_sighash_forkid(tx, input_index, prevout.script, prevout.value, sighash_type)
    # sighash is already SHA256d, so skip coincurve's hashing
    signature = private_key.sign(sighash, hasher=None)
    return signature + bytes([sighash_type])


def create_p2pkh_script_sig(signature: bytes, pubkey_bytes: bytes) -> bytes:
    return push_data(signature) + push_data(pubkey_bytes)


def sign_transaction(tx: Transaction, prevouts: list[TxOutput], private_key: PrivateKey) -> None:
    """Sign every input in place. All inputs must pay the key's P2PKH script."""
    if len(prevouts) != len(tx.inputs):
        raise TransactionSigningError("Need exactly one prevout per input")

    pubkey_bytes = private_key.public_key.format(compressed=True)
    for index, prevout in enumerate(prevouts):
        signature = sign_p2pkh_input(tx, index, prevout, private_key)
        tx.inputs[index].script_sig = create_p2pkh_script_sig(signature, pubkey_bytes)


def parse_p2pkh_script_sig(script_sig: bytes) -> tuple[bytes, bytes] | None:
    """Split a `<sig> <pubkey>` scriptSig. Returns None if malformed."""
    chunks: list[bytes] = []
    offset = 0
    while offset < len(script_sig):
        length = script_sig[offset]
        offset += 1
        if length == 0 or length >= 0x4C:
            return None
        chunk = script_sig[offset : offset + length]
        if len(chunk) != length:
            return None
        chunks.append(chunk)
        offset += length
    if len(chunks) != 2:
        return None
    return chunks[0], chunks[1]


def verify_transaction(tx: Transaction, prevouts: list[TxOutput]) -> str | None:
    """
    Check structure, amounts and every input signature.

    Returns:
        None if the transaction is valid, otherwise a diagnostic string
    """
    if not tx.inputs:
        return "Transaction has no inputs"
    if not tx.outputs:
        return "Transaction has no outputs"
    if len(prevouts) != len(tx.inputs):
        return "Missing previous outputs for inputs"

    seen: set[tuple[str, int]] = set()
    for inp in tx.inputs:
        key = (inp.txid, inp.out_idx)
        if key in seen:
            return f"Transaction contains duplicate input {inp.txid}:{inp.out_idx}"
        seen.add(key)

    for index, out in enumerate(tx.outputs):
        if out.value < 0:
            return f"Output #{index} satoshis is negative"
        if out.value > MAX_MONEY:
            return f"Output #{index} satoshis exceeds maximum"

    input_amount = sum(prevout.value for prevout in prevouts)
    if tx.output_amount > input_amount:
        return f"Output amount {tx.output_amount} exceeds input amount {input_amount}"

    for index, (inp, prevout) in enumerate(zip(tx.inputs, prevouts, strict=True)):
        if not is_p2pkh_script(prevout.script):
            return f"Input #{index} does not spend a P2PKH output"
        parsed = parse_p2pkh_script_sig(inp.script_sig)
        if parsed is None:
            return f"Input #{index} is not fully signed"
        signature, pubkey_bytes = parsed
        if hash160(pubkey_bytes) != prevout.script[3:23]:
            return f"Input #{index} public key does not match the spent script"
        sighash_type = signature[-1]
        try:
            sighash = compute_sighash_forkid(
                tx, index, prevout.script, prevout.value, sighash_type
            )
            valid = PublicKey(pubkey_bytes).verify(signature[:-1], sighash, hasher=None)
        except (ValueError, TypeError) as e:
            return f"Input #{index} signature could not be checked: {e}"
        if not valid:
            return f"Input #{index} has an invalid signature"

    return None
