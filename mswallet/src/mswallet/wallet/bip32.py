"""
BIP32 HD key derivation for multisig cosigners.

Keys may be private (built from a seed) or public-only (built from an
extended public key). Child nodes are derived on demand and never cached.
"""

from __future__ import annotations

import hashlib
import hmac

import base58
from coincurve import PrivateKey, PublicKey
from mnemonic import Mnemonic

from mscore.constants import (
    BIP32_SEED_KEY,
    HARDENED_OFFSET,
    MAX_DERIVATION_DEPTH,
    SECP256K1_N,
    XPUB_VERSION_MAINNET,
    XPUB_VERSION_TESTNET,
)
from mscore.crypto import hash160
from mscore.errors import (
    DerivationError,
    InvalidKeyEncodingError,
    InvalidMnemonicError,
    InvalidPathError,
    NoPrivateKeyError,
)


def parse_path(path: str) -> list[int]:
    """
    Parse a textual derivation path (e.g., "m/44'/0'/0'/0/0") into indices.

    ' or h marks hardened derivation. "m" alone is the master node.

    Raises:
        InvalidPathError: path is not of the form m[/index[']]*
        DerivationError: an index does not fit in 31 bits, or depth exceeds 255
    """
    if not isinstance(path, str) or not path:
        raise InvalidPathError(str(path), "empty path")

    parts = path.split("/")
    if parts[0] != "m":
        raise InvalidPathError(path, "must start with 'm'")

    indices: list[int] = []
    for part in parts[1:]:
        hardened = part.endswith(("'", "h", "H"))
        digits = part[:-1] if hardened else part
        if not digits.isdigit() or not digits.isascii():
            raise InvalidPathError(path, f"bad component {part!r}")

        index = int(digits)
        if index >= HARDENED_OFFSET:
            raise DerivationError(
                f"Index {index} in {path} exceeds 2^31-1", path=path, index=index
            )
        indices.append(index + HARDENED_OFFSET if hardened else index)

    if len(indices) > MAX_DERIVATION_DEPTH:
        raise DerivationError(f"Path {path} is deeper than 255 levels", path=path)
    return indices


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Implements BIP32 derivation.
    """

    def __init__(
        self,
        public_key: PublicKey,
        chain_code: bytes,
        private_key: PrivateKey | None = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_index: int = 0,
    ):
        self._private_key = private_key
        self._public_key = public_key
        self.chain_code = chain_code
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_index = child_index

    @property
    def private_key(self) -> PrivateKey | None:
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def has_private_key(self) -> bool:
        return self._private_key is not None

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.get_public_key_bytes())[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        if not 16 <= len(seed) <= 64:
            raise DerivationError(f"Seed must be 16-64 bytes, got {len(seed)}")

        hmac_result = hmac.new(BIP32_SEED_KEY, seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        key_int = int.from_bytes(key_bytes, "big")
        if key_int == 0 or key_int >= SECP256K1_N:
            raise DerivationError("Seed produces an invalid master key")

        private_key = PrivateKey(key_bytes)
        return cls(private_key.public_key, chain_code, private_key=private_key)

    @classmethod
    def from_xpub(cls, xpub: str) -> HDKey:
        """Build a public-only node from a base58check extended public key."""
        try:
            raw = base58.b58decode_check(xpub)
        except ValueError as e:
            raise InvalidKeyEncodingError(xpub, "bad base58check extended key") from e

        if len(raw) != 78 or raw[:4] not in (XPUB_VERSION_MAINNET, XPUB_VERSION_TESTNET):
            raise InvalidKeyEncodingError(xpub, "not an extended public key")

        try:
            public_key = PublicKey(raw[45:78])
        except ValueError as e:
            raise InvalidKeyEncodingError(xpub, "extended key point is invalid") from e

        return cls(
            public_key,
            chain_code=raw[13:45],
            depth=raw[4],
            parent_fingerprint=raw[5:9],
            child_index=int.from_bytes(raw[9:13], "big"),
        )

    def to_xpub(self, testnet: bool = False) -> str:
        version = XPUB_VERSION_TESTNET if testnet else XPUB_VERSION_MAINNET
        raw = (
            version
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_index.to_bytes(4, "big")
            + self.chain_code
            + self.get_public_key_bytes()
        )
        return base58.b58encode_check(raw).decode("ascii")

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/84'/0'/0'/0/0")
        ' indicates hardened derivation
        """
        indices = parse_path(path)
        if self.depth + len(indices) > MAX_DERIVATION_DEPTH:
            raise DerivationError(f"Path {path} is deeper than 255 levels", path=path)

        key = self
        for index in indices:
            key = key._derive_child(index)
        return key

    def _derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            if self._private_key is None:
                raise DerivationError(
                    "Hardened derivation needs a private key", index=index - HARDENED_OFFSET
                )
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_N:
            raise DerivationError("Invalid child key", index=index)

        if self._private_key is not None:
            parent_key_int = int.from_bytes(self._private_key.secret, "big")
            child_key_int = (parent_key_int + offset_int) % SECP256K1_N
            if child_key_int == 0:
                raise DerivationError("Invalid child key", index=index)

            child_private_key = PrivateKey(child_key_int.to_bytes(32, "big"))
            child_public_key = child_private_key.public_key
        else:
            child_private_key = None
            try:
                child_public_key = self._public_key.add(key_offset)
            except ValueError as e:
                raise DerivationError("Invalid child key", index=index) from e

        return HDKey(
            child_public_key,
            child_chain,
            private_key=child_private_key,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_index=index,
        )

    def neuter(self) -> HDKey:
        """Return a public-only copy of this node."""
        return HDKey(
            self._public_key,
            self.chain_code,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_index=self.child_index,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        if self._private_key is None:
            raise NoPrivateKeyError(f"depth {self.depth}")
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self._public_key.format(compressed=compressed)

    def wipe(self) -> None:
        """Drop the private key and chain code references."""
        self._private_key = None
        self.chain_code = b""


def generate_mnemonic(word_count: int = 24) -> str:
    """Generate a BIP39 mnemonic (12 or 24 words) with a valid checksum."""
    if word_count not in (12, 24):
        raise ValueError("word_count must be 12 or 24")
    return Mnemonic("english").generate(strength=128 if word_count == 12 else 256)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert a BIP39 mnemonic to its 64-byte seed.

    Raises:
        InvalidMnemonicError: the phrase fails the BIP39 wordlist/checksum check
    """
    mnemo = Mnemonic("english")
    normalized = " ".join(mnemonic.split())
    if not mnemo.check(normalized):
        raise InvalidMnemonicError("Invalid BIP39 mnemonic phrase")
    return mnemo.to_seed(normalized, passphrase)
