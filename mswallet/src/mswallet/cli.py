"""
Multisig Wallet CLI - create shared wallets, build, sign and broadcast spends.

PSBT arguments take base64 directly or `@path` to read it from a file.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import httpx
import typer
from loguru import logger

from mscore.crypto import ecies_encrypt, parse_public_key
from mscore.errors import MultisigError
from mscore.models import NetworkType
from mswallet.backends.esplora import EsploraBackend
from mswallet.config import get_settings
from mswallet.wallet.bip32 import generate_mnemonic
from mswallet.wallet.coordinator import TransactionCoordinator
from mswallet.wallet.models import MultisigConfig, Payment
from mswallet.wallet.psbt import PartiallySignedTransaction
from mswallet.wallet.registry import WalletConfigRegistry, decode_invite, encode_invite
from mswallet.wallet.script import build_address
from mswallet.wallet.signer import Signer

app = typer.Typer(
    name="ms-wallet",
    help="Threshold multisig wallet",
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


def _load_signer(mnemonic: str | None, mnemonic_file: Path | None) -> Signer:
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        mnemonic = mnemonic_file.read_text().strip()

    if not mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or MSWALLET_MNEMONIC")
        raise typer.Exit(1)

    try:
        return Signer.from_mnemonic(mnemonic)
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)


def _registry(registry_path: Path | None) -> WalletConfigRegistry:
    return WalletConfigRegistry.from_path(registry_path or get_settings().registry_path)


def _read_psbt(value: str) -> PartiallySignedTransaction:
    if value.startswith("@"):
        path = Path(value[1:])
        try:
            value = path.read_text().strip()
        except OSError as e:
            logger.error(f"Cannot read PSBT file {path}: {e}")
            raise typer.Exit(1)
    return PartiallySignedTransaction.from_base64(value)


def _parse_payment(entry: str) -> Payment:
    address, sep, amount = entry.rpartition(":")
    if not sep or not address:
        raise typer.BadParameter(f"expected ADDRESS:SATS, got {entry!r}")
    try:
        return Payment(value=int(amount), address=address)
    except ValueError as e:
        raise typer.BadParameter(f"amount must be an integer number of sats: {amount!r}") from e


def _print_config(config: MultisigConfig) -> None:
    typer.echo(f"Wallet:    {config.wallet_id}")
    typer.echo(f"Label:     {config.label}")
    typer.echo(f"Policy:    {config.threshold}-of-{config.key_count}")
    typer.echo(f"Network:   {config.network.value}")
    typer.echo(f"Address:   {build_address(config).address}")
    for index, key in enumerate(config.public_keys):
        marker = "  (you)" if index == config.signer_index else ""
        typer.echo(f"  [{index}] {key.hex()}{marker}")


MnemonicOption = typer.Option(
    None, "--mnemonic", envvar="MSWALLET_MNEMONIC", help="BIP39 mnemonic"
)
MnemonicFileOption = typer.Option(None, "--mnemonic-file", "-f", help="Path to mnemonic file")
RegistryOption = typer.Option(None, "--registry", "-r", help="Wallet registry file")
LogLevelOption = typer.Option("INFO", "--log-level", "-l")


@app.command()
def generate(
    word_count: int = typer.Option(24, "--words", "-w", help="Number of words (12 or 24)"),
) -> None:
    """Generate a new BIP39 mnemonic."""
    setup_logging()

    try:
        mnemonic = generate_mnemonic(word_count)
    except ValueError as e:
        logger.error(f"Failed to generate mnemonic: {e}")
        raise typer.Exit(1)

    typer.echo("\n" + "=" * 80)
    typer.echo("GENERATED MNEMONIC - WRITE THIS DOWN AND KEEP IT SAFE!")
    typer.echo("=" * 80)
    typer.echo(f"\n{mnemonic}\n")
    typer.echo("=" * 80 + "\n")


@app.command()
def pubkey(
    mnemonic: str = MnemonicOption,
    mnemonic_file: Path | None = MnemonicFileOption,
    key_path: str | None = typer.Option(None, "--key-path", help="Derivation path of the key"),
    log_level: str = LogLevelOption,
) -> None:
    """Show the public key to share with cosigners."""
    setup_logging(log_level)
    settings = get_settings()

    with _load_signer(mnemonic, mnemonic_file) as signer:
        try:
            key = signer.derive_public_key(key_path or settings.key_path)
        except MultisigError as e:
            logger.error(str(e))
            raise typer.Exit(1)
        typer.echo(f"Public key: {key.hex()}")
        typer.echo(f"xpub:       {signer.xpub(testnet=settings.network != NetworkType.MAINNET)}")


@app.command("create-wallet")
def create_wallet(
    label: str = typer.Option(..., "--label", help="Wallet label"),
    threshold: int = typer.Option(..., "--threshold", "-m", help="Required signatures (M)"),
    keys: list[str] = typer.Option(..., "--key", "-k", help="Cosigner public key (repeat)"),
    mnemonic: str = MnemonicOption,
    mnemonic_file: Path | None = MnemonicFileOption,
    no_sort: bool = typer.Option(False, "--no-sort", help="Keep keys in the order given"),
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Register an M-of-N wallet. With a mnemonic, your own key is added too."""
    setup_logging(log_level)
    settings = get_settings()

    all_keys: list[bytes | str] = list(keys)
    local_key = None
    if mnemonic or mnemonic_file:
        with _load_signer(mnemonic, mnemonic_file) as signer:
            local_key = signer.derive_public_key(settings.key_path)
        all_keys.insert(0, local_key)

    try:
        config = _registry(registry_path).create(
            label,
            threshold,
            all_keys,
            local_public_key=local_key,
            sort_keys=not no_sort,
            network=settings.network,
        )
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    _print_config(config)


@app.command()
def invite(
    label: str = typer.Option(..., "--label", help="Wallet label"),
    threshold: int = typer.Option(..., "--threshold", "-m", help="Required signatures (M)"),
    mnemonic: str = MnemonicOption,
    mnemonic_file: Path | None = MnemonicFileOption,
    log_level: str = LogLevelOption,
) -> None:
    """Create an invite code carrying your public key."""
    setup_logging(log_level)

    with _load_signer(mnemonic, mnemonic_file) as signer:
        key = signer.derive_public_key(get_settings().key_path)

    try:
        typer.echo(encode_invite(label, threshold, key))
    except (MultisigError, ValueError) as e:
        logger.error(f"Failed to create invite: {e}")
        raise typer.Exit(1)


@app.command()
def join(
    code: str = typer.Argument(..., help="Invite code"),
    keys: list[str] = typer.Option([], "--key", "-k", help="Other cosigner public key (repeat)"),
    mnemonic: str = MnemonicOption,
    mnemonic_file: Path | None = MnemonicFileOption,
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Join a wallet from an invite code."""
    setup_logging(log_level)
    settings = get_settings()

    with _load_signer(mnemonic, mnemonic_file) as signer:
        local_key = signer.derive_public_key(settings.key_path)

    try:
        details = decode_invite(code)
        config = _registry(registry_path).create(
            details.label,
            details.threshold,
            [details.initiator_public_key, local_key, *keys],
            local_public_key=local_key,
            network=settings.network,
        )
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    _print_config(config)


@app.command("list-wallets")
def list_wallets(
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """List registered wallets, newest first."""
    setup_logging(log_level)

    configs = _registry(registry_path).list()
    if not configs:
        typer.echo("No wallets registered.")
        return
    for config in configs:
        typer.echo(
            f"{config.wallet_id}  {config.threshold}-of-{config.key_count}  {config.label}"
        )


@app.command()
def address(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Show the wallet's receive address and key set."""
    setup_logging(log_level)

    try:
        config = _registry(registry_path).load(wallet_id)
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    _print_config(config)


@app.command("create-tx")
def create_tx(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    outputs: list[str] = typer.Option(..., "--to", "-t", help="ADDRESS:SATS (repeat)"),
    esplora_url: str | None = typer.Option(None, "--esplora-url", help="Esplora API base URL"),
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Spend all wallet UTXOs to the given outputs. Prints the unsigned PSBT."""
    setup_logging(log_level)
    payments = [_parse_payment(entry) for entry in outputs]

    try:
        config = _registry(registry_path).load(wallet_id)
        psbt = asyncio.run(_create_tx(config, payments, esplora_url))
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        logger.error(f"Esplora request failed: {e}")
        raise typer.Exit(1)

    typer.echo(psbt.to_base64())


async def _create_tx(
    config: MultisigConfig, payments: list[Payment], esplora_url: str | None
) -> PartiallySignedTransaction:
    settings = get_settings()
    backend = EsploraBackend(
        base_url=esplora_url or settings.esplora_url,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
    )
    try:
        utxos = await backend.fetch_utxos(build_address(config).address)
        return TransactionCoordinator().build_unsigned_transaction(config, utxos, payments)
    finally:
        await backend.close()


@app.command()
def sign(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    psbt: str = typer.Argument(..., help="PSBT (base64 or @file)"),
    mnemonic: str = MnemonicOption,
    mnemonic_file: Path | None = MnemonicFileOption,
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Add your signature to every input. Prints the updated PSBT."""
    setup_logging(log_level)
    coordinator = TransactionCoordinator()

    with _load_signer(mnemonic, mnemonic_file) as signer:
        try:
            key_path = get_settings().key_path
            config = _registry(registry_path).load(wallet_id)
            if config.signer_index is None:
                # registered without a mnemonic: find our key in the set
                config = config.with_signer(signer.derive_public_key(key_path))
            tx = _read_psbt(psbt)
            signatures = coordinator.create_signatures(tx, config, signer, key_path)
            signed = coordinator.apply_signature(tx, config, config.signer_index, signatures)
        except MultisigError as e:
            logger.error(str(e))
            raise typer.Exit(1)

    typer.echo(signed.to_base64())


@app.command()
def combine(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    psbts: list[str] = typer.Argument(..., help="PSBTs to merge (base64 or @file)"),
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Merge signatures from independently signed copies of one PSBT."""
    setup_logging(log_level)

    try:
        config = _registry(registry_path).load(wallet_id)
        merged = TransactionCoordinator().combine(config, *(_read_psbt(p) for p in psbts))
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    typer.echo(merged.to_base64())


@app.command()
def describe(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    psbt: str = typer.Argument(..., help="PSBT (base64 or @file)"),
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Show inputs, outputs, fee and signing progress of a PSBT."""
    setup_logging(log_level)

    try:
        config = _registry(registry_path).load(wallet_id)
        summary = TransactionCoordinator().describe(_read_psbt(psbt), config)
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    typer.echo(f"Stage:   {summary.stage}")
    typer.echo(f"Signers: {summary.signer_indices_present} (need {config.threshold})")
    typer.echo("\nInputs:")
    for inp in summary.inputs:
        typer.echo(
            f"  {inp.txid}:{inp.vout}  {inp.value or 0:>12,} sats  signed by {inp.signer_indices}"
        )
    typer.echo("\nOutputs:")
    for out in summary.outputs:
        dest = "fee" if out.is_fee else out.address or out.script
        typer.echo(f"  {out.value:>12,} sats  {dest}")
    if summary.fee is not None:
        typer.echo(f"\nFee: {summary.fee:,} sats")


@app.command()
def finalize(
    wallet_id: str = typer.Argument(..., help="Wallet id"),
    psbt: str = typer.Argument(..., help="PSBT (base64 or @file)"),
    registry_path: Path | None = RegistryOption,
    log_level: str = LogLevelOption,
) -> None:
    """Assemble the signed transaction. Prints raw hex."""
    setup_logging(log_level)

    try:
        config = _registry(registry_path).load(wallet_id)
        final = TransactionCoordinator().finalize(_read_psbt(psbt), config)
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    logger.info(f"txid {final.txid}")
    typer.echo(final.hex)


@app.command()
def broadcast(
    raw_tx: str = typer.Argument(..., help="Signed transaction hex"),
    esplora_url: str | None = typer.Option(None, "--esplora-url", help="Esplora API base URL"),
    log_level: str = LogLevelOption,
) -> None:
    """Relay a finalized transaction through Esplora."""
    setup_logging(log_level)

    try:
        txid = asyncio.run(_broadcast(raw_tx.strip(), esplora_url))
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        logger.error(f"Esplora request failed: {e}")
        raise typer.Exit(1)

    typer.echo(txid)


async def _broadcast(raw_tx: str, esplora_url: str | None) -> str:
    settings = get_settings()
    backend = EsploraBackend(
        base_url=esplora_url or settings.esplora_url, timeout=settings.request_timeout
    )
    try:
        return await backend.broadcast(raw_tx)
    finally:
        await backend.close()


@app.command()
def encrypt(
    message: str = typer.Argument(..., help="Text to encrypt"),
    recipient: str | None = typer.Option(
        None, "--to", help="Recipient public key (default: your own key)"
    ),
    mnemonic: str = MnemonicOption,
    mnemonic_file: Path | None = MnemonicFileOption,
    log_level: str = LogLevelOption,
) -> None:
    """ECIES-encrypt a message. Prints hex."""
    setup_logging(log_level)

    try:
        if recipient is not None:
            ciphertext = ecies_encrypt(message.encode("utf-8"), parse_public_key(recipient))
        else:
            with _load_signer(mnemonic, mnemonic_file) as signer:
                ciphertext = signer.auth_encrypt(message.encode("utf-8"))
    except MultisigError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    typer.echo(ciphertext.hex())


@app.command()
def decrypt(
    ciphertext: str = typer.Argument(..., help="Ciphertext hex"),
    mnemonic: str = MnemonicOption,
    mnemonic_file: Path | None = MnemonicFileOption,
    log_level: str = LogLevelOption,
) -> None:
    """Decrypt a message addressed to your master key."""
    setup_logging(log_level)

    try:
        payload = bytes.fromhex(ciphertext.strip())
    except ValueError:
        logger.error("Ciphertext must be hex")
        raise typer.Exit(1)

    with _load_signer(mnemonic, mnemonic_file) as signer:
        try:
            plaintext = signer.auth_decrypt(payload)
        except MultisigError as e:
            logger.error(str(e))
            raise typer.Exit(1)

    typer.echo(plaintext.decode("utf-8", errors="replace"))


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
