"""
Blockchain backend implementations.

Available backends:
- EsploraBackend: Esplora REST API (Blockstream, mempool.space or self-hosted)
"""

from mswallet.backends.base import UTXO, BlockchainBackend, Broadcaster, UtxoSource
from mswallet.backends.esplora import EsploraBackend

__all__ = [
    "BlockchainBackend",
    "Broadcaster",
    "EsploraBackend",
    "UTXO",
    "UtxoSource",
]
