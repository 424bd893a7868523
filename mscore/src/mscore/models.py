"""
Core data models using Pydantic for validation and serialization.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


def get_bech32_hrp(network: NetworkType | str) -> str:
    """Get bech32 human-readable part for network."""
    return {
        NetworkType.MAINNET: "bc",
        NetworkType.TESTNET: "tb",
        NetworkType.SIGNET: "tb",
        NetworkType.REGTEST: "bcrt",
    }[NetworkType(network)]


def _check_hex_keys(keys: list[str]) -> list[str]:
    for key in keys:
        bytes.fromhex(key)
    return [k.lower() for k in keys]


class WalletRecord(BaseModel):
    """
    Persisted multisig wallet configuration.

    Field aliases match the JSON the wallet stores on disk, so records written
    by other cosigners' clients load unchanged.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    label: str
    threshold: int = Field(..., ge=1)
    all_public_keys: list[str] = Field(..., alias="allPublicKeys")
    creation_date: datetime = Field(
        default_factory=lambda: datetime.now(UTC), alias="creationDate"
    )
    signer_index: int | None = Field(default=None, alias="signerIndex")
    network: NetworkType = NetworkType.TESTNET

    @field_validator("all_public_keys")
    @classmethod
    def keys_are_hex(cls, v: list[str]) -> list[str]:
        return _check_hex_keys(v)


class InviteCode(BaseModel):
    """Out-of-band bootstrap payload handed to a joining cosigner."""

    model_config = ConfigDict(populate_by_name=True)

    label: str
    threshold: int = Field(..., ge=1)
    initiator_public_key: str = Field(..., alias="initiatorPublicKey")
