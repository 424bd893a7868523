"""
Tests for WalletSession: the full create -> sign -> combine -> broadcast flow.
"""

from __future__ import annotations

import pytest

from mscore.errors import NoUtxosError, SignerClosedError
from mswallet.backends.base import UTXO, BlockchainBackend
from mswallet.session import WalletSession
from mswallet.wallet.models import Payment
from mswallet.wallet.registry import WalletConfigRegistry
from mswallet.wallet.transaction import deserialize_transaction

DESTINATION = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"


class FakeBackend(BlockchainBackend):
    """In-memory UTXO set and broadcast log."""

    def __init__(self, utxos: dict[str, list[UTXO]] | None = None):
        self.utxos = utxos or {}
        self.broadcasts: list[str] = []
        self.closed = False

    async def fetch_utxos(self, address: str) -> list[UTXO]:
        return list(self.utxos.get(address, []))

    async def broadcast(self, raw_tx_hex: str) -> str:
        self.broadcasts.append(raw_tx_hex)
        return deserialize_transaction(bytes.fromhex(raw_tx_hex)).txid()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


def _session(signer, backend) -> WalletSession:
    # each cosigner keeps its own registry, as separate clients would
    return WalletSession(signer, WalletConfigRegistry(), backend)


@pytest.mark.asyncio
async def test_two_of_three_flow(signers, backend):
    alice, bob, carol = (_session(s, backend) for s in signers)
    others = [s.public_key() for s in signers]

    alice_cfg = alice.create_wallet("Vault", 2, [others[1], others[2]])
    bob_cfg = bob.create_wallet("Vault", 2, [others[0], others[2]])
    assert alice_cfg.wallet_id == bob_cfg.wallet_id
    assert alice.address(alice_cfg) == bob.address(bob_cfg)

    address = alice.address(alice_cfg).address
    backend.utxos[address] = [UTXO("aa" * 32, 0, 100_000)]

    unsigned = await alice.create_transaction(alice_cfg, [Payment(99_500, address=DESTINATION)])
    signed_a = alice.sign(unsigned, alice_cfg)
    signed_b = bob.sign(unsigned, bob_cfg)

    merged = carol.combine(alice_cfg, signed_a, signed_b)
    assert alice.describe(merged, alice_cfg).stage == "ready"

    final = alice.finalize(merged, alice_cfg)
    txid = await alice.broadcast(final)

    assert txid == final.txid
    assert backend.broadcasts == [final.hex]

    for session in (alice, bob, carol):
        await session.close()


@pytest.mark.asyncio
async def test_create_transaction_without_funds(signers, backend):
    session = _session(signers[0], backend)
    config = session.create_wallet("Vault", 1, [signers[1].public_key()])

    with pytest.raises(NoUtxosError):
        await session.create_transaction(config, [Payment(1_000, address=DESTINATION)])


@pytest.mark.asyncio
async def test_context_manager_closes_everything(signers, backend):
    async with _session(signers[0], backend) as session:
        assert session.public_key == signers[0].public_key()

    assert backend.closed
    with pytest.raises(SignerClosedError):
        signers[0].public_key()

    # second close is a no-op
    await session.close()


def test_custom_key_path(signers, backend):
    session = WalletSession(signers[0], WalletConfigRegistry(), backend, key_path="m/48'/1'/0'/2'")
    assert session.public_key == signers[0].derive_public_key("m/48'/1'/0'/2'")
    assert session.public_key != signers[0].public_key()


@pytest.mark.asyncio
async def test_sign_without_stored_signer_index(signers, backend):
    session = _session(signers[1], backend)
    config = session.registry.create("Keys only", 2, [s.public_key() for s in signers])
    assert config.signer_index is None

    address = session.address(config).address
    backend.utxos[address] = [UTXO("cc" * 32, 1, 50_000)]
    unsigned = await session.create_transaction(config, [Payment(40_000, address=DESTINATION)])

    signed = session.sign(unsigned, config)
    assert list(signed.inputs[0].partial_sigs) == [signers[1].public_key()]
    await session.close()
