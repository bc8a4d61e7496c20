"""
Lotus address and script utilities.

Lotus XAddress format:
    "lotus" + network char + base58(type byte + output script + checksum)
where checksum = SHA256("lotus" + network char + type byte + output script)[:4].
"""

from __future__ import annotations

import hashlib

import base58

from lotuswallet.wallet.bip32 import hash160

XADDRESS_PREFIX = "lotus"
XADDRESS_TYPE_SCRIPT_PUBKEY = 0x00

NETWORK_CHARS = {
    "mainnet": "_",
    "testnet": "T",
    "regtest": "R",
}

# Opcodes used by the wallet's scripts
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_1 = 0x51
OP_16 = 0x60
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC


class AddressError(ValueError):
    pass


def pubkey_hash_to_p2pkh_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG"""
    if len(pubkey_hash) != 20:
        raise AddressError(f"Invalid pubkey hash length: {len(pubkey_hash)}")
    return bytes([OP_DUP, OP_HASH160, 0x14]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def pubkey_to_p2pkh_script(pubkey_bytes: bytes) -> bytes:
    """P2PKH output script for a compressed public key"""
    return pubkey_hash_to_p2pkh_script(hash160(pubkey_bytes))


def is_p2pkh_script(script: bytes) -> bool:
    return (
        len(script) == 25
        and script[:3] == bytes([OP_DUP, OP_HASH160, 0x14])
        and script[23:] == bytes([OP_EQUALVERIFY, OP_CHECKSIG])
    )


def script_payload(script: bytes) -> str:
    """Hex-encoded 20-byte pubkey hash of a P2PKH script (Chronik script payload)"""
    if not is_p2pkh_script(script):
        raise AddressError(f"Not a P2PKH script: {script.hex()}")
    return script[3:23].hex()


def _xaddress_checksum(network_char: str, type_byte: int, script: bytes) -> bytes:
    data = (XADDRESS_PREFIX + network_char).encode("ascii") + bytes([type_byte]) + script
    return hashlib.sha256(data).digest()[:4]


def script_to_xaddress(script: bytes, network: str = "mainnet") -> str:
    """Encode an output script as a Lotus XAddress"""
    try:
        network_char = NETWORK_CHARS[network]
    except KeyError:
        raise AddressError(f"Unknown network: {network}") from None

    checksum = _xaddress_checksum(network_char, XADDRESS_TYPE_SCRIPT_PUBKEY, script)
    payload = bytes([XADDRESS_TYPE_SCRIPT_PUBKEY]) + script + checksum
    return XADDRESS_PREFIX + network_char + base58.b58encode(payload).decode("ascii")


def xaddress_to_script(address: str) -> tuple[bytes, str]:
    """
    Decode a Lotus XAddress.

    Returns:
        (output script, network name)
    """
    if not address.startswith(XADDRESS_PREFIX) or len(address) < len(XADDRESS_PREFIX) + 2:
        raise AddressError(f"Not a Lotus XAddress: {address}")

    network_char = address[len(XADDRESS_PREFIX)]
    networks = {char: name for name, char in NETWORK_CHARS.items()}
    if network_char not in networks:
        raise AddressError(f"Unknown XAddress network char: {network_char!r}")

    try:
        payload = base58.b58decode(address[len(XADDRESS_PREFIX) + 1 :])
    except ValueError as e:
        raise AddressError(f"Invalid XAddress encoding: {e}") from e

    if len(payload) < 5:
        raise AddressError("XAddress payload too short")

    type_byte = payload[0]
    script = payload[1:-4]
    checksum = payload[-4:]

    if type_byte != XADDRESS_TYPE_SCRIPT_PUBKEY:
        raise AddressError(f"Unsupported XAddress type: {type_byte}")
    if _xaddress_checksum(network_char, type_byte, script) != checksum:
        raise AddressError("XAddress checksum mismatch")

    return script, networks[network_char]


def address_to_script(address: str) -> bytes:
    """
    Convert an address to its output script.

    Supports:
    - Lotus XAddress (lotus_..., lotusT..., lotusR...)
    - Legacy base58check P2PKH (version 0x00 / 0x6F)
    """
    if address.startswith(XADDRESS_PREFIX):
        script, _ = xaddress_to_script(address)
        return script

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise AddressError(f"Invalid address: {address}") from e

    version = decoded[0]
    payload = decoded[1:]

    if version in (0x00, 0x6F) and len(payload) == 20:
        return pubkey_hash_to_p2pkh_script(payload)

    raise AddressError(f"Unknown address version: {version}")


def is_valid_address(address: str) -> bool:
    """True if the address decodes to an output script"""
    try:
        address_to_script(address)
    except AddressError:
        return False
    return True


def push_data(data: bytes) -> bytes:
    """Minimal script push for a data chunk"""
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    raise AddressError(f"Data chunk too large: {length} bytes")
