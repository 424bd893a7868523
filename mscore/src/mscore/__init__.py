"""
mscore - Core library for the multisig wallet components

Provides shared constants, errors, crypto primitives and data models.
"""

__version__ = "0.3.0"

from mscore.crypto import (
    ecies_decrypt,
    ecies_encrypt,
    hash160,
    hash256,
    hmac_sha256,
    parse_public_key,
    sha256,
    verify_raw_ecdsa,
)
from mscore.errors import (
    CoordinationError,
    CryptoIntegrityError,
    InputValidationError,
    MultisigError,
    ResourceError,
)
from mscore.models import InviteCode, NetworkType, WalletRecord, get_bech32_hrp
from mscore.serialization import ByteReader, ByteReaderError, encode_varint, read_varint

__all__ = [
    "ByteReader",
    "ByteReaderError",
    "CoordinationError",
    "CryptoIntegrityError",
    "InputValidationError",
    "InviteCode",
    "MultisigError",
    "NetworkType",
    "ResourceError",
    "WalletRecord",
    "ecies_decrypt",
    "ecies_encrypt",
    "encode_varint",
    "get_bech32_hrp",
    "hash160",
    "hash256",
    "hmac_sha256",
    "parse_public_key",
    "read_varint",
    "sha256",
    "verify_raw_ecdsa",
]
