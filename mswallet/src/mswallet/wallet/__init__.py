"""
Multisig wallet: keys, scripts, PSBTs and signing coordination.
"""

from mswallet.wallet.coordinator import TransactionCoordinator
from mswallet.wallet.models import (
    FinalizedTransaction,
    MultisigAddress,
    MultisigConfig,
    Payment,
    TransactionSummary,
)
from mswallet.wallet.psbt import PartiallySignedTransaction
from mswallet.wallet.registry import WalletConfigRegistry, decode_invite, encode_invite
from mswallet.wallet.signer import Signer

__all__ = [
    "FinalizedTransaction",
    "MultisigAddress",
    "MultisigConfig",
    "PartiallySignedTransaction",
    "Payment",
    "Signer",
    "TransactionCoordinator",
    "TransactionSummary",
    "WalletConfigRegistry",
    "decode_invite",
    "encode_invite",
]
