"""
Lotus Wallet CLI - create a wallet, check balances, send XPI and RANK votes.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from loguru import logger

from lotuswallet.config import WalletSettings
from lotuswallet.constants import SATS_PER_XPI

if TYPE_CHECKING:
    from lotuswallet.wallet.builder import WalletIdentity
    from lotuswallet.wallet.engine import WalletEngine, WalletManager

app = typer.Typer(
    name="lotus-wallet",
    help="Lotus (XPI) single-key wallet",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _load_settings(storage: Path | None, chronik_url: str | None) -> WalletSettings:
    overrides: dict[str, object] = {}
    if storage is not None:
        overrides["storage_path"] = storage
    if chronik_url:
        overrides["chronik_url"] = chronik_url
    return WalletSettings(**overrides)


def _read_mnemonic(mnemonic: str | None, mnemonic_file: Path | None) -> str | None:
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        return mnemonic_file.read_text().strip()
    return mnemonic


@app.command()
def generate(
    word_count: int = typer.Option(12, "--words", "-w", help="Number of words (12 or 24)"),
    save: bool = typer.Option(False, "--save", "-s", help="Save the new wallet to storage"),
    storage: Path | None = typer.Option(
        None, "--storage", envvar="LOTUS_STORAGE_PATH", help="Wallet storage file"
    ),
) -> None:
    """Generate a new BIP39 seed phrase and its Lotus address."""
    setup_logging()

    from lotuswallet.wallet.builder import DerivationError, build_identity, new_seed_phrase

    try:
        settings = _load_settings(storage, None)
        identity = build_identity(new_seed_phrase(word_count), settings.network)
    except DerivationError as e:
        logger.error(f"Failed to generate wallet: {e}")
        raise typer.Exit(1)

    if save:
        if settings.storage_path is None:
            settings.storage_path = Path.home() / ".lotus" / "wallet.json"
        asyncio.run(_save_identity(identity, settings.storage_path))
        typer.echo(f"\nWallet saved to: {settings.storage_path}")
        typer.echo("KEEP THIS FILE SECURE - IT CONTROLS YOUR FUNDS!")

    typer.echo("\n" + "=" * 80)
    typer.echo("GENERATED SEED PHRASE - WRITE THIS DOWN AND KEEP IT SAFE!")
    typer.echo("=" * 80)
    typer.echo(f"\n{identity.seed_phrase}\n")
    typer.echo(f"Address: {identity.address}")
    typer.echo("=" * 80 + "\n")


async def _save_identity(identity: WalletIdentity, path: Path) -> None:
    from lotuswallet.storage import JsonFileStore, WalletState, WalletStore

    store = WalletStore(JsonFileStore(path))
    await store.save_wallet_state(
        WalletState(
            seed_phrase=identity.seed_phrase,
            xprv=identity.xprv,
            wif=identity.wif,
            address=identity.address,
            script_payload=identity.script_payload,
            script_hex=identity.script_hex,
        )
    )


async def _open_engine(
    settings: WalletSettings, mnemonic: str | None
) -> tuple[WalletManager, WalletEngine]:
    """Open the wallet from a phrase or from storage, without a live subscription."""
    from lotuswallet.queue import Bootstrap
    from lotuswallet.storage import JsonFileStore, MemoryStore, WalletStore
    from lotuswallet.wallet.engine import WalletManager

    if settings.storage_path is not None:
        store = WalletStore(JsonFileStore(settings.storage_path))
    else:
        store = WalletStore(MemoryStore())
    manager = WalletManager(store, settings, start_sync=False)

    if mnemonic:
        engine = await manager.initialize_from_phrase(mnemonic)
    else:
        engine = await manager.load()
        if engine is None:
            logger.error("No wallet found. Use --mnemonic, --mnemonic-file or --storage")
            raise typer.Exit(1)

    result = await engine.queue.enqueue(Bootstrap())
    if result.value is None:
        logger.warning("Could not fetch UTXOs from the indexer, balances may be stale")
    return manager, engine


@app.command()
def info(
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 phrase"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    storage: Path | None = typer.Option(None, "--storage", envvar="LOTUS_STORAGE_PATH"),
    chronik_url: str | None = typer.Option(None, "--chronik-url", envvar="LOTUS_CHRONIK_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Display the wallet address and balance."""
    setup_logging(log_level)
    settings = _load_settings(storage, chronik_url)
    asyncio.run(_show_wallet_info(settings, _read_mnemonic(mnemonic, mnemonic_file)))


async def _show_wallet_info(settings: WalletSettings, mnemonic: str | None) -> None:
    manager, engine = await _open_engine(settings, mnemonic)
    try:
        balance = engine.balance
        print(f"\nAddress:        {engine.identity.address}")
        print(f"Script payload: {engine.identity.script_payload}")
        print(f"Chain tip:      {engine.tip_height}")
        print(f"UTXOs:          {len(engine.utxos)}")
        print(f"Balance:        {balance:,} sats ({balance / SATS_PER_XPI:.6f} XPI)")
        print(f"Spendable:      {engine.spendable_balance:,} sats")
    finally:
        await manager.shutdown()


@app.command()
def send(
    address: str = typer.Argument(..., help="Recipient Lotus address"),
    amount: int = typer.Argument(..., help="Amount in sats"),
    subtract_fee: bool = typer.Option(
        False, "--subtract-fee", help="Deduct the fee from the sent amount"
    ),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 phrase"),
    mnemonic_file: Path | None = typer.Option(None, "--mnemonic-file", "-f"),
    storage: Path | None = typer.Option(None, "--storage", envvar="LOTUS_STORAGE_PATH"),
    chronik_url: str | None = typer.Option(None, "--chronik-url", envvar="LOTUS_CHRONIK_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Send XPI to an address."""
    setup_logging(log_level)
    settings = _load_settings(storage, chronik_url)
    try:
        txid = asyncio.run(
            _send(settings, _read_mnemonic(mnemonic, mnemonic_file), address, amount, subtract_fee)
        )
    except Exception as e:
        logger.error(f"Send failed: {e}")
        raise typer.Exit(1)
    typer.echo(txid)


async def _send(
    settings: WalletSettings,
    mnemonic: str | None,
    address: str,
    amount: int,
    subtract_fee: bool,
) -> str:
    manager, engine = await _open_engine(settings, mnemonic)
    try:
        return await engine.send_lotus(address, amount, subtract_fee_from_amount=subtract_fee)
    finally:
        await engine.queue.join()
        await manager.shutdown()


@app.command()
def vote(
    profile_id: str = typer.Argument(..., help="Profile id to vote on"),
    sentiment: str = typer.Option("positive", "--sentiment", help="positive | negative | neutral"),
    platform: str = typer.Option("twitter", "--platform", "-p", help="lotusia | twitter"),
    post_id: str | None = typer.Option(None, "--post", help="Post id within the profile"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 phrase"),
    mnemonic_file: Path | None = typer.Option(None, "--mnemonic-file", "-f"),
    storage: Path | None = typer.Option(None, "--storage", envvar="LOTUS_STORAGE_PATH"),
    chronik_url: str | None = typer.Option(None, "--chronik-url", envvar="LOTUS_CHRONIK_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Broadcast a RANK vote for a profile or post."""
    setup_logging(log_level)
    settings = _load_settings(storage, chronik_url)
    vote_data = {
        "sentiment": sentiment,
        "platform": platform,
        "profileId": profile_id,
        "postId": post_id,
    }
    try:
        txid = asyncio.run(_vote(settings, _read_mnemonic(mnemonic, mnemonic_file), vote_data))
    except Exception as e:
        logger.error(f"Vote failed: {e}")
        raise typer.Exit(1)
    typer.echo(txid)


async def _vote(settings: WalletSettings, mnemonic: str | None, vote_data: dict) -> str:
    manager, engine = await _open_engine(settings, mnemonic)
    try:
        return await engine.submit_rank_vote([vote_data])
    finally:
        await engine.queue.join()
        await manager.shutdown()


@app.command()
def consolidate(
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 phrase"),
    mnemonic_file: Path | None = typer.Option(None, "--mnemonic-file", "-f"),
    storage: Path | None = typer.Option(None, "--storage", envvar="LOTUS_STORAGE_PATH"),
    chronik_url: str | None = typer.Option(None, "--chronik-url", envvar="LOTUS_CHRONIK_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Sweep low-value UTXOs back into the wallet."""
    setup_logging(log_level)
    settings = _load_settings(storage, chronik_url)
    try:
        txids = asyncio.run(_consolidate(settings, _read_mnemonic(mnemonic, mnemonic_file)))
    except Exception as e:
        logger.error(f"Consolidation failed: {e}")
        raise typer.Exit(1)
    if not txids:
        typer.echo("Nothing to consolidate")
    for txid in txids:
        typer.echo(txid)


async def _consolidate(settings: WalletSettings, mnemonic: str | None) -> list[str]:
    manager, engine = await _open_engine(settings, mnemonic)
    try:
        return await engine.consolidate_utxos()
    finally:
        await engine.queue.join()
        await manager.shutdown()


@app.command()
def auth(
    challenge: str = typer.Argument(
        ..., help='WWW-Authenticate value, e.g. "BlockDataSig blockhash=... blockheight=..."'
    ),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 phrase"),
    mnemonic_file: Path | None = typer.Option(None, "--mnemonic-file", "-f"),
    storage: Path | None = typer.Option(None, "--storage", envvar="LOTUS_STORAGE_PATH"),
) -> None:
    """Answer a BlockDataSig challenge with a signed Authorization header."""
    setup_logging()

    from lotuswallet.auth import build_authorization, parse_challenge

    parsed = parse_challenge(challenge)
    if parsed is None:
        logger.error("Malformed BlockDataSig challenge")
        raise typer.Exit(1)

    settings = _load_settings(storage, None)
    identity = asyncio.run(_load_identity(settings, _read_mnemonic(mnemonic, mnemonic_file)))
    token = build_authorization(parsed, identity.script_payload, identity.signing_key)
    typer.echo(f"Authorization: {token}")


async def _load_identity(settings: WalletSettings, mnemonic: str | None) -> WalletIdentity:
    from lotuswallet.storage import JsonFileStore, WalletStore
    from lotuswallet.wallet.builder import DerivationError, WalletIdentity, build_identity

    try:
        if mnemonic:
            return build_identity(mnemonic, settings.network)
        if settings.storage_path is not None:
            state = await WalletStore(JsonFileStore(settings.storage_path)).load_wallet_state()
            if state is not None:
                return WalletIdentity.from_state(
                    state.seed_phrase,
                    state.xprv,
                    state.wif,
                    state.address,
                    state.script_hex,
                    settings.network,
                )
    except DerivationError as e:
        logger.error(f"Unable to load wallet: {e}")
        raise typer.Exit(1)

    logger.error("No wallet found. Use --mnemonic, --mnemonic-file or --storage")
    raise typer.Exit(1)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
