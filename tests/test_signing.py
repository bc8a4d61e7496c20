"""
Tests for transaction serialization, signing and verification.
"""

import pytest
from coincurve import PrivateKey

from lotuswallet.wallet.address import pubkey_to_p2pkh_script
from lotuswallet.wallet.signing import (
    DEFAULT_SIGHASH_TYPE,
    Transaction,
    TransactionSigningError,
    TxInput,
    TxOutput,
    compute_sighash_forkid,
    deserialize_transaction,
    encode_varint,
    hash256,
    parse_p2pkh_script_sig,
    read_varint,
    sign_transaction,
    verify_transaction,
)

TXID = "f0" * 32


@pytest.fixture
def key():
    return PrivateKey(b"\x11" * 32)


@pytest.fixture
def script(key):
    return pubkey_to_p2pkh_script(key.public_key.format(compressed=True))


@pytest.fixture
def signed(key, script):
    tx = Transaction(
        inputs=[TxInput(TXID, 0), TxInput(TXID, 1)],
        outputs=[TxOutput(1_500_000, script), TxOutput(400_000, b"\x6a\x04RANK")],
    )
    prevouts = [TxOutput(1_000_000, script), TxOutput(1_000_000, script)]
    sign_transaction(tx, prevouts, key)
    return tx, prevouts


class TestHash256:
    def test_empty_input(self):
        expected = bytes.fromhex("5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456")
        assert hash256(b"") == expected


class TestVarint:
    def test_encode(self):
        assert encode_varint(5) == bytes([5])
        assert encode_varint(0x100) == bytes([0xFD, 0x00, 0x01])
        assert encode_varint(0x10000) == bytes([0xFE, 0x00, 0x00, 0x01, 0x00])

    def test_read_with_offset(self):
        value, offset = read_varint(b"\x00\xfd\x01\x00", 1)
        assert value == 1
        assert offset == 4


class TestSerialization:
    def test_roundtrip(self, signed):
        tx, _ = signed
        parsed = deserialize_transaction(tx.serialize())
        assert parsed == tx
        assert parsed.txid == tx.txid

    def test_txid_is_reversed_hash(self, signed):
        tx, _ = signed
        assert tx.txid == hash256(tx.serialize())[::-1].hex()

    def test_outpoint_is_little_endian(self):
        inp = TxInput("00" * 31 + "01", 2)
        assert inp.outpoint_bytes == b"\x01" + b"\x00" * 31 + b"\x02\x00\x00\x00"

    def test_truncated(self, signed):
        tx, _ = signed
        with pytest.raises(TransactionSigningError):
            deserialize_transaction(tx.serialize()[:-10])


class TestSighash:
    def test_depends_on_value(self, signed, script):
        tx, _ = signed
        assert compute_sighash_forkid(tx, 0, script, 1) != compute_sighash_forkid(tx, 0, script, 2)

    def test_index_out_of_range(self, signed, script):
        tx, _ = signed
        with pytest.raises(TransactionSigningError):
            compute_sighash_forkid(tx, 2, script, 1)


class TestSignAndVerify:
    def test_valid(self, signed, key):
        tx, prevouts = signed
        assert verify_transaction(tx, prevouts) is None

    def test_script_sig_layout(self, signed, key):
        tx, _ = signed
        signature, pubkey = parse_p2pkh_script_sig(tx.inputs[0].script_sig)
        assert signature[-1] == DEFAULT_SIGHASH_TYPE
        assert pubkey == key.public_key.format(compressed=True)

    def test_tampered_output(self, signed):
        tx, prevouts = signed
        tx.outputs[0].value -= 1
        assert "invalid signature" in verify_transaction(tx, prevouts)

    def test_wrong_prevout_value(self, signed, script):
        tx, prevouts = signed
        prevouts[1] = TxOutput(1_000_001, script)
        assert verify_transaction(tx, prevouts) == "Input #1 has an invalid signature"

    def test_unsigned(self, signed):
        tx, prevouts = signed
        tx.inputs[1].script_sig = b""
        assert verify_transaction(tx, prevouts) == "Input #1 is not fully signed"

    def test_foreign_key(self, signed):
        tx, prevouts = signed
        other = PrivateKey(b"\x22" * 32)
        sign_transaction(tx, prevouts, other)
        assert "public key does not match" in verify_transaction(tx, prevouts)

    def test_outputs_exceed_inputs(self, key, script):
        tx = Transaction(inputs=[TxInput(TXID, 0)], outputs=[TxOutput(2_000, script)])
        prevouts = [TxOutput(1_000, script)]
        sign_transaction(tx, prevouts, key)
        assert "exceeds input amount" in verify_transaction(tx, prevouts)

    def test_duplicate_inputs(self, key, script):
        tx = Transaction(
            inputs=[TxInput(TXID, 0), TxInput(TXID, 0)], outputs=[TxOutput(1_000, script)]
        )
        prevouts = [TxOutput(1_000, script), TxOutput(1_000, script)]
        sign_transaction(tx, prevouts, key)
        assert "duplicate input" in verify_transaction(tx, prevouts)

    def test_no_outputs(self, script):
        tx = Transaction(inputs=[TxInput(TXID, 0)])
        assert verify_transaction(tx, [TxOutput(1_000, script)]) == "Transaction has no outputs"

    def test_prevout_count_mismatch(self, key, script):
        tx = Transaction(inputs=[TxInput(TXID, 0)], outputs=[TxOutput(1_000, script)])
        with pytest.raises(TransactionSigningError):
            sign_transaction(tx, [], key)


class TestParseScriptSig:
    def test_malformed(self):
        assert parse_p2pkh_script_sig(b"\x05abc") is None
        assert parse_p2pkh_script_sig(b"\x01a") is None
