"""
Lotus signed-message primitives.

Signatures are the 65-byte compact recoverable form used by bitcore Message:
header byte (27 + recovery id, +4 for compressed keys) followed by r and s,
base64-encoded.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from coincurve import PrivateKey, PublicKey

from lotuswallet.constants import LOTUS_MESSAGE_MAGIC
from lotuswallet.wallet.address import AddressError, address_to_script, pubkey_to_p2pkh_script
from lotuswallet.wallet.bip32 import private_key_from_wif
from lotuswallet.wallet.signing import encode_varint

COMPACT_HEADER_BASE = 27
COMPACT_HEADER_COMPRESSED = 4


class CryptoError(Exception):
    pass


def lotus_message_hash(message: str) -> bytes:
    """
    Hash a message using Lotus's message signing format.

    Format: SHA256(SHA256("\\x16Lotus Signed Message:\\n" + varint(len) + message))
    """
    msg_bytes = message.encode("utf-8")
    full_msg = LOTUS_MESSAGE_MAGIC + encode_varint(len(msg_bytes)) + msg_bytes
    return hashlib.sha256(hashlib.sha256(full_msg).digest()).digest()


def sign_message(message: str, private_key: PrivateKey | str) -> str:
    """
    Sign a message with the wallet key.

    Args:
        message: The message to sign
        private_key: coincurve PrivateKey or a WIF string

    Returns:
        Base64-encoded compact recoverable signature
    """
    if isinstance(private_key, str):
        try:
            private_key = private_key_from_wif(private_key)
        except ValueError as e:
            raise CryptoError(f"Invalid signing key: {e}") from e

    recoverable = private_key.sign_recoverable(lotus_message_hash(message), hasher=None)
    r_s, recovery_id = recoverable[:64], recoverable[64]
    header = COMPACT_HEADER_BASE + recovery_id + COMPACT_HEADER_COMPRESSED
    return base64.b64encode(bytes([header]) + r_s).decode("ascii")


def recover_public_key(message: str, signature_b64: str) -> PublicKey:
    """Recover the signer's public key from a compact signature"""
    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"Invalid signature encoding: {e}") from e

    if len(signature) != 65:
        raise CryptoError(f"Invalid compact signature length: {len(signature)}")

    header = signature[0] - COMPACT_HEADER_BASE
    if not 0 <= header < 8:
        raise CryptoError(f"Invalid compact signature header: {signature[0]}")
    recovery_id = header & 3

    try:
        return PublicKey.from_signature_and_message(
            signature[1:] + bytes([recovery_id]), lotus_message_hash(message), hasher=None
        )
    except ValueError as e:
        raise CryptoError(f"Unable to recover public key: {e}") from e


def verify_message(message: str, address: str, signature_b64: str) -> bool:
    """
    Verify a signed message against an address.

    Returns:
        True if the signature recovers to the key behind `address`
    """
    try:
        pubkey = recover_public_key(message, signature_b64)
        expected = address_to_script(address)
    except (CryptoError, AddressError):
        return False
    return pubkey_to_p2pkh_script(pubkey.format(compressed=True)) == expected
