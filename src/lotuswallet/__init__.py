"""
lotuswallet - Single-key Lotus wallet engine

Derives one wallet identity from a BIP39 phrase, keeps its UTXO set in sync
with a Chronik indexer and builds value transfers and RANK vote transactions.
"""

__version__ = "0.5.0"

from lotuswallet.auth import (
    AuthorizationResponse,
    BlockDataSig,
    build_authorization,
    encode_response,
    parse_challenge,
    parse_response,
)
from lotuswallet.config import WalletSettings, get_settings
from lotuswallet.crypto import CryptoError, sign_message, verify_message
from lotuswallet.queue import ErrorKind, EventQueue, OperationResult
from lotuswallet.storage import JsonFileStore, MemoryStore, WalletState, WalletStore
from lotuswallet.wallet.builder import DerivationError, WalletIdentity, build_identity
from lotuswallet.wallet.engine import BroadcastError, WalletEngine, WalletManager
from lotuswallet.wallet.rank import RankEncodingError, RankVote
from lotuswallet.wallet.tx_builder import TransactionBuildError

__all__ = [
    "AuthorizationResponse",
    "BlockDataSig",
    "BroadcastError",
    "CryptoError",
    "DerivationError",
    "ErrorKind",
    "EventQueue",
    "JsonFileStore",
    "MemoryStore",
    "OperationResult",
    "RankEncodingError",
    "RankVote",
    "TransactionBuildError",
    "WalletEngine",
    "WalletIdentity",
    "WalletManager",
    "WalletSettings",
    "WalletState",
    "WalletStore",
    "build_authorization",
    "build_identity",
    "encode_response",
    "get_settings",
    "parse_challenge",
    "parse_response",
    "sign_message",
    "verify_message",
]
