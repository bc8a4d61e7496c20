"""
Tests for Lotus message signing.
"""

import base64
import hashlib

import pytest

from lotuswallet.crypto import (
    CryptoError,
    lotus_message_hash,
    recover_public_key,
    sign_message,
    verify_message,
)
from lotuswallet.wallet.builder import build_identity


def test_message_hash_format():
    expected = hashlib.sha256(
        hashlib.sha256(b"\x16Lotus Signed Message:\n\x05hello").digest()
    ).digest()
    assert lotus_message_hash("hello") == expected


def test_sign_and_verify(identity):
    signature = sign_message("hello lotus", identity.signing_key)
    assert len(base64.b64decode(signature)) == 65
    assert verify_message("hello lotus", identity.address, signature)


def test_sign_with_wif(identity):
    signature = sign_message("hello lotus", identity.wif)
    assert verify_message("hello lotus", identity.address, signature)


def test_compressed_header(identity):
    header = base64.b64decode(sign_message("x", identity.signing_key))[0]
    assert 31 <= header <= 34


def test_recovers_public_key(identity):
    signature = sign_message("recover me", identity.signing_key)
    pubkey = recover_public_key("recover me", signature)
    assert pubkey.format(compressed=True) == identity.public_key


def test_wrong_message(identity):
    signature = sign_message("hello lotus", identity.signing_key)
    assert not verify_message("hello lotus!", identity.address, signature)


def test_wrong_address(identity):
    other = build_identity()
    signature = sign_message("hello lotus", identity.signing_key)
    assert not verify_message("hello lotus", other.address, signature)


@pytest.mark.parametrize("signature", ["", "not base64!", base64.b64encode(b"\x1f" * 10).decode()])
def test_malformed_signature(identity, signature):
    assert not verify_message("hello", identity.address, signature)


def test_invalid_wif():
    with pytest.raises(CryptoError):
        sign_message("hello", "garbage")
