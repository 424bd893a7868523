"""
Pytest configuration and fixtures for wallet tests.
"""

from __future__ import annotations

import pytest

from mscore.models import NetworkType
from mswallet.backends.base import UTXO
from mswallet.wallet.coordinator import TransactionCoordinator
from mswallet.wallet.models import MultisigConfig, Payment
from mswallet.wallet.registry import WalletConfigRegistry
from mswallet.wallet.signer import Signer

# BIP173 testnet P2WPKH vector
DESTINATION = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"


@pytest.fixture
def test_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def signers() -> list[Signer]:
    """Three cosigners with fixed seeds."""
    return [Signer.from_seed(bytes([i]) * 32) for i in (1, 2, 3)]


@pytest.fixture
def registry() -> WalletConfigRegistry:
    return WalletConfigRegistry()


@pytest.fixture
def wallet_2of3(registry: WalletConfigRegistry, signers: list[Signer]) -> MultisigConfig:
    return registry.create(
        "Family vault",
        2,
        [s.public_key() for s in signers],
        network=NetworkType.TESTNET,
    )


@pytest.fixture
def coordinator() -> TransactionCoordinator:
    return TransactionCoordinator()


@pytest.fixture
def funding() -> list[UTXO]:
    return [UTXO(txid="aa" * 32, vout=0, value=100_000)]


@pytest.fixture
def payment() -> list[Payment]:
    return [Payment(value=99_500, address=DESTINATION)]
