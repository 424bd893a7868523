"""
Multisig wallet session.

Bundles the local signer, the wallet registry, a blockchain backend and the
transaction coordinator. Callers create one per use and close it when done;
nothing is kept in module globals.
"""

from __future__ import annotations

from collections.abc import Sequence
from types import TracebackType

from loguru import logger

from mswallet.backends.base import UTXO, BlockchainBackend
from mswallet.wallet.coordinator import TransactionCoordinator
from mswallet.wallet.models import (
    FinalizedTransaction,
    MultisigAddress,
    MultisigConfig,
    Payment,
    TransactionSummary,
)
from mswallet.wallet.psbt import PartiallySignedTransaction
from mswallet.wallet.registry import WalletConfigRegistry
from mswallet.wallet.script import build_address
from mswallet.wallet.signer import Signer


class WalletSession:
    """
    Cosigner session over one signer and one backend.

    The multisig key of this cosigner is the signer key at `key_path`
    (the master key by default).
    """

    def __init__(
        self,
        signer: Signer,
        registry: WalletConfigRegistry,
        backend: BlockchainBackend,
        coordinator: TransactionCoordinator | None = None,
        key_path: str = "m",
    ):
        self.signer = signer
        self.registry = registry
        self.backend = backend
        self.coordinator = coordinator or TransactionCoordinator()
        self.key_path = key_path
        self._closed = False

    @property
    def public_key(self) -> bytes:
        """This cosigner's multisig public key."""
        return self.signer.derive_public_key(self.key_path)

    def create_wallet(
        self, label: str, threshold: int, cosigner_keys: Sequence[bytes | str], **kwargs
    ) -> MultisigConfig:
        """Register a wallet made of our key plus `cosigner_keys`."""
        keys = [self.public_key, *cosigner_keys]
        return self.registry.create(
            label, threshold, keys, local_public_key=self.public_key, **kwargs
        )

    def address(self, config: MultisigConfig) -> MultisigAddress:
        return build_address(config)

    async def fetch_utxos(self, config: MultisigConfig) -> list[UTXO]:
        return await self.backend.fetch_utxos(build_address(config).address)

    async def create_transaction(
        self, config: MultisigConfig, outputs: Sequence[Payment]
    ) -> PartiallySignedTransaction:
        """Snapshot the wallet's UTXOs and build an unsigned PSBT spending all of them."""
        utxos = await self.fetch_utxos(config)
        return self.coordinator.build_unsigned_transaction(config, utxos, outputs)

    def sign(
        self, tx: PartiallySignedTransaction, config: MultisigConfig
    ) -> PartiallySignedTransaction:
        """Add our signature to every input; returns a new PSBT."""
        if config.signer_index is None:
            config = config.with_signer(self.public_key)
        signatures = self.coordinator.create_signatures(tx, config, self.signer, self.key_path)
        return self.coordinator.apply_signature(tx, config, config.signer_index, signatures)

    def combine(
        self, config: MultisigConfig, *txs: PartiallySignedTransaction
    ) -> PartiallySignedTransaction:
        return self.coordinator.combine(config, *txs)

    def describe(
        self,
        tx: PartiallySignedTransaction | FinalizedTransaction,
        config: MultisigConfig,
    ) -> TransactionSummary:
        return self.coordinator.describe(tx, config)

    def finalize(
        self, tx: PartiallySignedTransaction, config: MultisigConfig
    ) -> FinalizedTransaction:
        return self.coordinator.finalize(tx, config)

    async def broadcast(self, tx: FinalizedTransaction) -> str:
        txid = await self.backend.broadcast(tx.hex)
        if txid != tx.txid:
            logger.warning(f"Backend returned txid {txid}, expected {tx.txid}")
        return txid

    async def close(self) -> None:
        """Close the backend and drop the signer's key material."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.backend.close()
        finally:
            self.signer.close()

    async def __aenter__(self) -> WalletSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
