"""
Wallet key derivation, UTXO cache, transaction building and the engine.
"""
