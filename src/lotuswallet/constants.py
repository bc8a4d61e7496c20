"""
Lotus network, wallet and RANK protocol constants.

Values in satoshis unless stated otherwise (1 XPI = 1,000,000 sats).
"""

from __future__ import annotations

# BIP44 derivation: m/44'/10605'/0'/0/0
WALLET_BIP44_PURPOSE = 44
WALLET_BIP44_COINTYPE = 10605
WALLET_DERIVATION_PATH = f"m/{WALLET_BIP44_PURPOSE}'/{WALLET_BIP44_COINTYPE}'/0'/0/0"

# BIP39 phrase length bounds accepted on import
WALLET_BIP39_MIN_WORDS = 12
WALLET_BIP39_MAX_WORDS = 24

WALLET_LOTUS_DECIMAL_PRECISION = 6
SATS_PER_XPI = 10**WALLET_LOTUS_DECIMAL_PRECISION

DEFAULT_CHRONIK_URL = "https://chronik.lotusia.org"

# Transaction policy
DEFAULT_FEE_RATE = 2  # sats/byte
STANDARD_DUST_LIMIT = 546
WALLET_MAX_TX_SIZE = 100_000  # bytes
WALLET_MAX_TX_INPUTS = 1000
COINBASE_MATURITY = 100  # blocks

# RANK vote transactions
RANK_PROTOCOL_TAG = b"RANK"
RANK_OUTPUT_MIN_VALUE = 100_000_000

# Lotus message signing magic (length-prefixed)
LOTUS_MESSAGE_MAGIC = b"\x16Lotus Signed Message:\n"

# Sighash flags
SIGHASH_ALL = 0x01
SIGHASH_FORKID = 0x40
