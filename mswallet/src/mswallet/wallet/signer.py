"""
Signing capability object handed to the wallet runtime.

The Signer owns the cosigner's root HD key and performs every primitive the
runtime needs (ECDSA, recoverable ECDSA, HMAC, ECIES) without exposing the
private scalar. Child keys are derived per call and dropped afterwards.
"""

from __future__ import annotations

import hmac
from types import TracebackType

from coincurve import PublicKey
from loguru import logger

from mscore.constants import DIGEST_LEN
from mscore.crypto import ecies_decrypt, ecies_encrypt, hmac_sha256, verify_raw_ecdsa
from mscore.errors import (
    InvalidDigestError,
    KeyedHashSelfCheckError,
    NoPrivateKeyError,
    RecoveryMismatchError,
    SignatureInvalidError,
    SignerClosedError,
)
from mswallet.wallet.bip32 import HDKey, mnemonic_to_seed


def _check_digest(digest: bytes) -> None:
    if len(digest) != DIGEST_LEN:
        raise InvalidDigestError(len(digest))


class Signer:
    """
    Cosigner key material plus the operations the wallet runtime calls.

    Lifecycle: constructed -> usable -> closed. After close() every operation
    raises SignerClosedError.
    """

    def __init__(self, root: HDKey):
        self._root: HDKey | None = root

    @classmethod
    def from_seed(cls, seed: bytes) -> Signer:
        return cls(HDKey.from_seed(seed))

    @classmethod
    def from_mnemonic(cls, mnemonic: str, passphrase: str = "") -> Signer:
        return cls(HDKey.from_seed(mnemonic_to_seed(mnemonic, passphrase)))

    @classmethod
    def watch_only(cls, xpub: str) -> Signer:
        """Public-only signer: derives public keys, refuses to sign."""
        return cls(HDKey.from_xpub(xpub))

    @property
    def root(self) -> HDKey:
        if self._root is None:
            raise SignerClosedError()
        return self._root

    @property
    def can_sign(self) -> bool:
        return self.root.has_private_key

    def public_key(self) -> bytes:
        """Master compressed public key (33 bytes)."""
        return self.root.get_public_key_bytes()

    def xpub(self, testnet: bool = False) -> str:
        return self.root.to_xpub(testnet=testnet)

    def derive_public_key(self, path: str) -> bytes:
        return self.root.derive(path).get_public_key_bytes()

    def _derive_private(self, path: str) -> HDKey:
        # Checked before deriving: hardened steps on a public node fail otherwise
        if not self.root.has_private_key:
            raise NoPrivateKeyError(path)
        node = self.root.derive(path)
        if node.private_key is None:
            raise NoPrivateKeyError(path)
        return node

    def sign(self, digest: bytes, path: str) -> bytes:
        """
        Sign a 32-byte digest with the key at `path`.

        Returns a DER signature (RFC6979 nonce, low-S). The signature is
        verified against the derived public key before it is returned.

        Raises:
            InvalidDigestError: digest is not 32 bytes
            NoPrivateKeyError: signer is watch-only
            SignatureInvalidError: self-verification failed
        """
        _check_digest(digest)
        node = self._derive_private(path)

        signature = node.private_key.sign(digest, hasher=None)
        if not verify_raw_ecdsa(digest, signature, node.get_public_key_bytes()):
            raise SignatureInvalidError(path)

        logger.debug(f"Signed digest with key at {path}")
        return signature

    def sign_recoverable(self, digest: bytes) -> bytes:
        """
        Sign a 32-byte digest with the master key, returning r||s||recovery_id.

        Raises:
            RecoveryMismatchError: recovering from the signature does not give
                back the master public key
        """
        _check_digest(digest)
        node = self._derive_private("m")

        signature = node.private_key.sign_recoverable(digest, hasher=None)
        try:
            recovered = PublicKey.from_signature_and_message(signature, digest, hasher=None)
        except ValueError as e:
            raise RecoveryMismatchError() from e

        if recovered.format(compressed=True) != node.get_public_key_bytes():
            raise RecoveryMismatchError()

        logger.debug(f"Created recoverable signature, recovery id {signature[64]}")
        return signature

    def keyed_hash(self, message: bytes, path: str) -> bytes:
        """
        HMAC-SHA256 of `message`, keyed by the private key at `path`.

        Two runtime checks run on every call: recomputing gives the same tag,
        and flipping the lowest bit of the first message byte changes it.
        """
        node = self._derive_private(path)
        key = node.get_private_key_bytes()

        tag = hmac_sha256(key, message)
        if len(tag) != 32 or not hmac.compare_digest(tag, hmac_sha256(key, message)):
            raise KeyedHashSelfCheckError("recomputation differs")

        if message:
            flipped = bytes([message[0] ^ 0x01]) + message[1:]
            if hmac.compare_digest(tag, hmac_sha256(key, flipped)):
                raise KeyedHashSelfCheckError("output unchanged after input bit flip")

        return tag

    def auth_encrypt(self, message: bytes, recipient_public_key: bytes | None = None) -> bytes:
        """
        ECIES-encrypt `message`. Without a recipient, encrypts to our own
        master key (what the runtime uses for local secrets).
        """
        recipient = recipient_public_key if recipient_public_key is not None else self.public_key()
        return ecies_encrypt(message, recipient)

    def auth_decrypt(self, ciphertext: bytes) -> bytes:
        """
        Decrypt a payload addressed to our master key.

        Raises:
            AuthenticationFailedError: tag mismatch or malformed payload
        """
        node = self._derive_private("m")
        return ecies_decrypt(ciphertext, node.private_key)

    def blinding_key(self) -> bytes:
        """
        Placeholder blinding key: the first 32 bytes of the master public key.

        This is NOT a SLIP-77 master blinding key and is not secret. It is kept
        bit-for-bit so addresses derived with it stay stable; replace it with a
        vetted derivation before relying on confidential outputs.
        """
        logger.warning("blinding_key() returns an insecure placeholder, not a SLIP-77 key")
        return self.public_key()[:32]

    def close(self) -> None:
        """Drop key material; the signer is unusable afterwards."""
        if self._root is not None:
            self._root.wipe()
            self._root = None
            logger.debug("Signer key material dropped")

    def __enter__(self) -> Signer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
