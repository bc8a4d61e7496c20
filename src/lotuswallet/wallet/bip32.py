"""
BIP32 HD key derivation for the Lotus wallet.
Implements the BIP44 path m/44'/10605'/0'/0/0 used for the single signing key.
"""

from __future__ import annotations

import hashlib
import hmac

import base58
from coincurve import PrivateKey, PublicKey

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED_OFFSET = 0x80000000

# Extended private key version bytes (mainnet xprv)
XPRV_VERSION = bytes.fromhex("0488ade4")

# WIF prefix for mainnet private keys
WIF_PREFIX = 0x80


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


class HDKey:
    """
    Hierarchical Deterministic private key.
    Implements BIP32 private derivation and xprv serialization.
    """

    def __init__(
        self,
        private_key: PrivateKey,
        chain_code: bytes,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
    ):
        self._private_key = private_key
        self._public_key = private_key.public_key
        self.chain_code = chain_code
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_number = child_number

    @property
    def private_key(self) -> PrivateKey:
        """Return the coincurve PrivateKey instance."""
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        """Return the coincurve PublicKey instance."""
        return self._public_key

    @property
    def fingerprint(self) -> bytes:
        """First 4 bytes of HASH160 of the compressed public key"""
        return hash160(self.get_public_key_bytes())[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        private_key = PrivateKey(key_bytes)

        return cls(private_key, chain_code, depth=0)

    @classmethod
    def from_xprv(cls, xprv: str) -> HDKey:
        """Parse a base58check-encoded extended private key"""
        try:
            data = base58.b58decode_check(xprv)
        except ValueError as e:
            raise ValueError(f"Invalid extended key encoding: {e}") from e

        if len(data) != 78 or data[:4] != XPRV_VERSION:
            raise ValueError("Not a mainnet extended private key")
        if data[45] != 0x00:
            raise ValueError("Extended key does not hold a private key")

        depth = data[4]
        parent_fingerprint = data[5:9]
        child_number = int.from_bytes(data[9:13], "big")
        chain_code = data[13:45]
        private_key = PrivateKey(data[46:78])

        return cls(private_key, chain_code, depth, parent_fingerprint, child_number)

    def to_xprv(self) -> str:
        """Serialize as base58check xprv"""
        data = (
            XPRV_VERSION
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_number.to_bytes(4, "big")
            + self.chain_code
            + b"\x00"
            + self._private_key.secret
        )
        return base58.b58encode_check(data).decode("ascii")

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/44'/10605'/0'/0/0")
        ' indicates hardened derivation
        """
        if not path.startswith("m"):
            raise ValueError("Path must start with 'm'")

        parts = path.split("/")[1:]
        key = self

        for part in parts:
            if not part:
                continue

            hardened = part.endswith("'") or part.endswith("h")
            index_str = part.rstrip("'h")
            index = int(index_str)

            if hardened:
                index += HARDENED_OFFSET

            key = key.derive_child(index)

        return key

    def derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            priv_bytes = self._private_key.secret
            data = b"\x00" + priv_bytes + index.to_bytes(4, "big")
        else:
            pub_bytes = self._public_key.format(compressed=True)
            data = pub_bytes + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        parent_key_int = int.from_bytes(self._private_key.secret, "big")
        offset_int = int.from_bytes(key_offset, "big")

        if offset_int >= SECP256K1_N:
            raise ValueError("Invalid child key")

        child_key_int = (parent_key_int + offset_int) % SECP256K1_N

        if child_key_int == 0:
            raise ValueError("Invalid child key")

        child_key_bytes = child_key_int.to_bytes(32, "big")
        child_private_key = PrivateKey(child_key_bytes)

        return HDKey(
            child_private_key,
            child_chain,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self._public_key.format(compressed=compressed)


def private_key_to_wif(private_key: PrivateKey, compressed: bool = True) -> str:
    """Encode a private key in Wallet Import Format"""
    payload = bytes([WIF_PREFIX]) + private_key.secret
    if compressed:
        payload += b"\x01"
    return base58.b58encode_check(payload).decode("ascii")


def private_key_from_wif(wif: str) -> PrivateKey:
    """Decode a WIF private key (compressed or uncompressed)"""
    try:
        payload = base58.b58decode_check(wif)
    except ValueError as e:
        raise ValueError(f"Invalid WIF encoding: {e}") from e

    if payload[0] != WIF_PREFIX or len(payload) not in (33, 34):
        raise ValueError("Invalid WIF payload")

    return PrivateKey(payload[1:33])
