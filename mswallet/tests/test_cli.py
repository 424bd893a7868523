"""
Tests for the ms-wallet command line.
"""

from __future__ import annotations

import sys

import pytest
from loguru import logger
from typer.testing import CliRunner

from mswallet import cli
from mswallet.backends.base import UTXO
from mswallet.cli import app
from mswallet.wallet.psbt import PartiallySignedTransaction
from mswallet.wallet.signer import Signer

# BIP39 test vectors
MNEMONICS = [
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about",
    "legal winner thank year wave sausage worth useful legal winner thank yellow",
    "letter advice cage absurd amount doctor acoustic avoid letter advice cage above",
]
DESTINATION = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    monkeypatch.delenv("MSWALLET_MNEMONIC", raising=False)
    monkeypatch.setenv("MSWALLET_REGISTRY_PATH", str(tmp_path / "wallets.json"))
    monkeypatch.setenv("MSWALLET_NETWORK", "testnet")
    monkeypatch.chdir(tmp_path)
    yield
    # setup_logging points loguru at the runner's stderr
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def pubkeys() -> list[str]:
    return [Signer.from_mnemonic(m).public_key().hex() for m in MNEMONICS]


def last_line(result) -> str:
    return result.stdout.strip().splitlines()[-1]


def create_wallet(pubkeys: list[str], signer: int = 0, registry: str | None = None) -> str:
    others = [k for i, k in enumerate(pubkeys) if i != signer]
    extra = ["--registry", registry] if registry else []
    result = runner.invoke(
        app,
        [
            "create-wallet",
            *extra,
            "--label",
            "Vault",
            "-m",
            "2",
            "--mnemonic",
            MNEMONICS[signer],
            *[arg for key in others for arg in ("--key", key)],
        ],
    )
    assert result.exit_code == 0, result.output
    line = next(x for x in result.stdout.splitlines() if x.startswith("Wallet:"))
    return line.split()[-1]


def test_generate():
    result = runner.invoke(app, ["generate", "--words", "12"])
    assert result.exit_code == 0
    words = [line for line in result.stdout.splitlines() if len(line.split()) == 12]
    assert len(words) == 1


def test_pubkey(pubkeys):
    result = runner.invoke(app, ["pubkey", "--mnemonic", MNEMONICS[0]])
    assert result.exit_code == 0
    assert f"Public key: {pubkeys[0]}" in result.stdout
    assert "tpub" in result.stdout


def test_pubkey_requires_mnemonic():
    result = runner.invoke(app, ["pubkey"])
    assert result.exit_code == 1


def test_bad_mnemonic():
    result = runner.invoke(app, ["pubkey", "--mnemonic", "abandon " * 12])
    assert result.exit_code == 1


def test_create_and_list(pubkeys):
    wallet_id = create_wallet(pubkeys)

    result = runner.invoke(app, ["list-wallets"])
    assert result.exit_code == 0
    assert wallet_id in result.stdout
    assert "2-of-3" in result.stdout

    result = runner.invoke(app, ["address", wallet_id])
    assert result.exit_code == 0
    assert "tb1q" in result.stdout
    assert "(you)" in result.stdout


def test_create_wallet_rejects_bad_threshold(pubkeys):
    result = runner.invoke(
        app, ["create-wallet", "--label", "x", "-m", "4", "--key", pubkeys[0], "--key", pubkeys[1]]
    )
    assert result.exit_code == 1


def test_unknown_wallet():
    result = runner.invoke(app, ["address", "00" * 16])
    assert result.exit_code == 1


def test_invite_and_join(pubkeys):
    result = runner.invoke(
        app, ["invite", "--label", "Family", "-m", "2", "--mnemonic", MNEMONICS[0]]
    )
    assert result.exit_code == 0
    code = last_line(result)

    result = runner.invoke(
        app, ["join", code, "--mnemonic", MNEMONICS[1], "--key", pubkeys[2]]
    )
    assert result.exit_code == 0, result.output
    assert "2-of-3" in result.stdout
    assert "Family" in result.stdout


def test_join_bad_code():
    result = runner.invoke(app, ["join", "garbage", "--mnemonic", MNEMONICS[1]])
    assert result.exit_code == 1


def test_encrypt_decrypt(pubkeys):
    result = runner.invoke(app, ["encrypt", "meet at noon", "--mnemonic", MNEMONICS[0]])
    assert result.exit_code == 0
    ciphertext = last_line(result)

    result = runner.invoke(app, ["decrypt", ciphertext, "--mnemonic", MNEMONICS[0]])
    assert result.exit_code == 0
    assert last_line(result) == "meet at noon"

    result = runner.invoke(app, ["encrypt", "for you", "--to", pubkeys[1]])
    ciphertext = last_line(result)
    result = runner.invoke(app, ["decrypt", ciphertext, "--mnemonic", MNEMONICS[0]])
    assert result.exit_code == 1


@pytest.fixture
def fake_esplora(monkeypatch):
    class FakeEsplora:
        def __init__(self, *args, **kwargs):
            pass

        async def fetch_utxos(self, address):
            return [UTXO("aa" * 32, 0, 100_000)]

        async def broadcast(self, raw_tx_hex):
            return "ff" * 32

        async def close(self):
            pass

    monkeypatch.setattr(cli, "EsploraBackend", FakeEsplora)


def test_spend_flow(fake_esplora, pubkeys, tmp_path):
    # each cosigner keeps its own registry
    wallet_id = create_wallet(pubkeys, signer=0)
    assert create_wallet(pubkeys, signer=1, registry="bob.json") == wallet_id

    result = runner.invoke(app, ["create-tx", wallet_id, "--to", f"{DESTINATION}:99500"])
    assert result.exit_code == 0, result.output
    unsigned = last_line(result)

    result = runner.invoke(app, ["describe", wallet_id, unsigned])
    assert "Stage:   unsigned" in result.stdout
    assert "Fee: 500 sats" in result.stdout

    result = runner.invoke(app, ["sign", wallet_id, unsigned, "--mnemonic", MNEMONICS[0]])
    assert result.exit_code == 0, result.output
    (tmp_path / "alice.psbt").write_text(last_line(result))

    result = runner.invoke(app, ["finalize", wallet_id, "@alice.psbt"])
    assert result.exit_code == 1

    result = runner.invoke(
        app,
        ["sign", wallet_id, unsigned, "--mnemonic", MNEMONICS[1], "--registry", "bob.json"],
    )
    assert result.exit_code == 0, result.output
    bob_psbt = last_line(result)

    result = runner.invoke(app, ["combine", wallet_id, "@alice.psbt", bob_psbt])
    assert result.exit_code == 0, result.output
    merged = last_line(result)
    assert len(PartiallySignedTransaction.from_base64(merged).inputs[0].partial_sigs) == 2

    result = runner.invoke(app, ["describe", wallet_id, merged])
    assert "Stage:   ready" in result.stdout

    result = runner.invoke(app, ["finalize", wallet_id, merged])
    assert result.exit_code == 0, result.output
    raw_hex = last_line(result)
    bytes.fromhex(raw_hex)

    result = runner.invoke(app, ["broadcast", raw_hex])
    assert result.exit_code == 0
    assert last_line(result) == "ff" * 32


def test_sign_twice_rejected(fake_esplora, pubkeys):
    wallet_id = create_wallet(pubkeys, signer=0)
    unsigned = last_line(
        runner.invoke(app, ["create-tx", wallet_id, "--to", f"{DESTINATION}:1000"])
    )
    signed = last_line(
        runner.invoke(app, ["sign", wallet_id, unsigned, "--mnemonic", MNEMONICS[0]])
    )

    result = runner.invoke(app, ["sign", wallet_id, signed, "--mnemonic", MNEMONICS[0]])
    assert result.exit_code == 1


def test_create_tx_bad_destination(fake_esplora, pubkeys):
    wallet_id = create_wallet(pubkeys)
    result = runner.invoke(app, ["create-tx", wallet_id, "--to", "no-amount"])
    assert result.exit_code != 0


def test_sign_with_wallet_registered_from_keys_only(fake_esplora, pubkeys):
    # no mnemonic at creation: the registry stores no signer index
    result = runner.invoke(
        app,
        ["create-wallet", "--label", "Keys only", "-m", "2"]
        + [arg for key in pubkeys for arg in ("--key", key)],
    )
    assert result.exit_code == 0, result.output
    assert "(you)" not in result.stdout
    wallet_id = next(x for x in result.stdout.splitlines() if x.startswith("Wallet:")).split()[-1]

    unsigned = last_line(
        runner.invoke(app, ["create-tx", wallet_id, "--to", f"{DESTINATION}:99500"])
    )
    result = runner.invoke(app, ["sign", wallet_id, unsigned, "--mnemonic", MNEMONICS[2]])
    assert result.exit_code == 0, result.output
    signed = PartiallySignedTransaction.from_base64(last_line(result))
    assert list(signed.inputs[0].partial_sigs) == [bytes.fromhex(pubkeys[2])]


def test_sign_with_key_outside_wallet(fake_esplora, pubkeys):
    result = runner.invoke(
        app,
        ["create-wallet", "--label", "Pair", "-m", "1", "--key", pubkeys[0], "--key", pubkeys[1]],
    )
    wallet_id = next(x for x in result.stdout.splitlines() if x.startswith("Wallet:")).split()[-1]
    unsigned = last_line(
        runner.invoke(app, ["create-tx", wallet_id, "--to", f"{DESTINATION}:1000"])
    )

    result = runner.invoke(app, ["sign", wallet_id, unsigned, "--mnemonic", MNEMONICS[2]])
    assert result.exit_code == 1


@pytest.mark.parametrize("command", ["describe", "finalize", "combine"])
def test_missing_psbt_file(pubkeys, command):
    wallet_id = create_wallet(pubkeys)
    result = runner.invoke(app, [command, wallet_id, "@missing.psbt"])
    assert result.exit_code == 1
    assert not isinstance(result.exception, FileNotFoundError)
