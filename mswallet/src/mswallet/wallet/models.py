"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from mscore.errors import LocalKeyNotInConfigError
from mscore.models import NetworkType


@dataclass(frozen=True)
class MultisigConfig:
    """
    M-of-N wallet configuration.

    public_keys is the script order. Changing it changes the address, so it
    is fixed when the wallet is created and never reordered afterwards.
    """

    wallet_id: str
    label: str
    threshold: int
    public_keys: tuple[bytes, ...]
    signer_index: int | None = None
    network: NetworkType = NetworkType.TESTNET

    @property
    def key_count(self) -> int:
        return len(self.public_keys)

    def index_of(self, public_key: bytes) -> int | None:
        try:
            return self.public_keys.index(public_key)
        except ValueError:
            return None

    def with_signer(self, public_key: bytes) -> MultisigConfig:
        """Copy with signer_index pointing at `public_key`."""
        index = self.index_of(public_key)
        if index is None:
            raise LocalKeyNotInConfigError(public_key.hex())
        return replace(self, signer_index=index)


@dataclass(frozen=True)
class MultisigAddress:
    redeem_script: bytes
    output_script: bytes
    address: str


@dataclass(frozen=True)
class Payment:
    """Requested transaction output: an address or a raw script, and a value."""

    value: int
    address: str | None = None
    script: bytes | None = None


@dataclass(frozen=True)
class FinalizedTransaction:
    """Fully signed, witness-serialized transaction ready for broadcast."""

    raw: bytes
    txid: str
    input_values: tuple[int, ...]
    signers_used: tuple[tuple[int, ...], ...]

    @property
    def hex(self) -> str:
        return self.raw.hex()


@dataclass
class InputSummary:
    txid: str
    vout: int
    value: int | None
    signer_indices: list[int] = field(default_factory=list)


@dataclass
class OutputSummary:
    value: int
    address: str | None
    script: str
    is_fee: bool = False


@dataclass
class TransactionSummary:
    """Read-only projection of a transaction at any signing stage."""

    stage: str
    inputs: list[InputSummary]
    outputs: list[OutputSummary]
    fee: int | None
    signer_indices_present: list[int]
