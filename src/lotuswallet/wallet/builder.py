"""
Wallet identity derivation.

A wallet has exactly one identity: the BIP39 seed phrase, the BIP32 master
key derived from it, the signing key at m/44'/10605'/0'/0/0, its Lotus
XAddress and the P2PKH locking script for that address.
"""

from __future__ import annotations

from dataclasses import dataclass

from coincurve import PrivateKey
from loguru import logger
from mnemonic import Mnemonic

from lotuswallet.constants import (
    WALLET_BIP39_MAX_WORDS,
    WALLET_BIP39_MIN_WORDS,
    WALLET_DERIVATION_PATH,
)
from lotuswallet.wallet.address import (
    AddressError,
    address_to_script,
    pubkey_to_p2pkh_script,
    script_payload,
    script_to_xaddress,
)
from lotuswallet.wallet.bip32 import HDKey, private_key_from_wif, private_key_to_wif

_MNEMONIC = Mnemonic("english")


class DerivationError(Exception):
    """Raised when a wallet identity cannot be derived or restored."""


@dataclass(frozen=True)
class WalletIdentity:
    """Immutable key material and receiving script of the wallet."""

    seed_phrase: str
    hd_key: HDKey
    signing_key: PrivateKey
    address: str
    script: bytes
    network: str = "mainnet"

    @property
    def xprv(self) -> str:
        return self.hd_key.to_xprv()

    @property
    def wif(self) -> str:
        return private_key_to_wif(self.signing_key)

    @property
    def public_key(self) -> bytes:
        return self.signing_key.public_key.format(compressed=True)

    @property
    def script_hex(self) -> str:
        return self.script.hex()

    @property
    def script_payload(self) -> str:
        """20-byte pubkey hash used to subscribe to the indexer"""
        return script_payload(self.script)

    @classmethod
    def from_state(
        cls,
        seed_phrase: str,
        xprv: str,
        wif: str,
        address: str,
        script_hex: str,
        network: str = "mainnet",
    ) -> WalletIdentity:
        """Rebuild an identity verbatim from persisted fields."""
        try:
            hd_key = HDKey.from_xprv(xprv)
            signing_key = private_key_from_wif(wif)
            script = bytes.fromhex(script_hex)
            if address_to_script(address) != script:
                raise DerivationError("persisted address does not match persisted script")
        except (ValueError, AddressError) as e:
            raise DerivationError(f"unable to restore wallet identity: {e}") from e

        return cls(
            seed_phrase=seed_phrase,
            hd_key=hd_key,
            signing_key=signing_key,
            address=address,
            script=script,
            network=network,
        )


def new_seed_phrase(word_count: int = WALLET_BIP39_MIN_WORDS) -> str:
    """Generate a new BIP39 phrase (12 words by default)"""
    if word_count not in (12, 15, 18, 21, 24):
        raise DerivationError(f"Invalid word count: {word_count}")
    return _MNEMONIC.generate(strength=word_count * 32 // 3)


def is_valid_seed_phrase(seed_phrase: str) -> bool:
    words = seed_phrase.split()
    if not WALLET_BIP39_MIN_WORDS <= len(words) <= WALLET_BIP39_MAX_WORDS:
        return False
    return bool(_MNEMONIC.check(" ".join(words)))


def hd_key_from_seed_phrase(seed_phrase: str) -> HDKey:
    return HDKey.from_seed(Mnemonic.to_seed(seed_phrase))


def derive_signing_key(hd_key: HDKey) -> PrivateKey:
    """Signing key at the fixed BIP44 path m/44'/10605'/0'/0/0"""
    return hd_key.derive(WALLET_DERIVATION_PATH).private_key


def build_identity(seed_phrase: str | None = None, network: str = "mainnet") -> WalletIdentity:
    """
    Derive the wallet identity from a seed phrase.

    Args:
        seed_phrase: BIP39 phrase; a new 12-word phrase is generated when None
        network: Network used for the XAddress encoding

    Raises:
        DerivationError: If the phrase is invalid or any derivation stage fails
    """
    if seed_phrase is None:
        seed_phrase = new_seed_phrase()
        logger.info("Generated new 12-word seed phrase")

    seed_phrase = " ".join(seed_phrase.split())
    if not is_valid_seed_phrase(seed_phrase):
        raise DerivationError("unable to get Mnemonic from seed phrase")

    try:
        hd_key = hd_key_from_seed_phrase(seed_phrase)
    except ValueError as e:
        raise DerivationError(f"unable to generate HD key from Mnemonic: {e}") from e

    try:
        signing_key = derive_signing_key(hd_key)
    except ValueError as e:
        raise DerivationError(f"unable to derive signing key from HD key: {e}") from e

    try:
        script = pubkey_to_p2pkh_script(signing_key.public_key.format(compressed=True))
        address = script_to_xaddress(script, network)
    except AddressError as e:
        raise DerivationError(f"unable to build script from signing key: {e}") from e

    return WalletIdentity(
        seed_phrase=seed_phrase,
        hd_key=hd_key,
        signing_key=signing_key,
        address=address,
        script=script,
        network=network,
    )
