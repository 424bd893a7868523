"""
Interfaces the wallet uses to read UTXOs and relay transactions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class UTXO:
    txid: str
    vout: int
    value: int
    confirmed: bool = True
    height: int | None = None


class UtxoSource(ABC):
    """Read side: lists the unspent outputs locked to an address."""

    @abstractmethod
    async def fetch_utxos(self, address: str) -> list[UTXO]:
        """Get UTXOs for an address. An empty list is a valid answer."""


class Broadcaster(ABC):
    """Write side: relays a finalized transaction."""

    @abstractmethod
    async def broadcast(self, raw_tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""


class BlockchainBackend(UtxoSource, Broadcaster):
    """Both halves in one object, which is what WalletSession expects."""

    async def close(self) -> None:
        """Release HTTP clients or sockets. Default: nothing to release."""
