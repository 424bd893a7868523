"""
Cryptographic primitives for the multisig wallet.

ECDSA goes through coincurve (libsecp256k1, RFC6979 nonces, low-S).
ECIES uses coincurve ECDH and the `cryptography` package for HKDF and ChaCha20.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from coincurve import PrivateKey, PublicKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from mscore.constants import COMPRESSED_PUBKEY_LEN, UNCOMPRESSED_PUBKEY_LEN
from mscore.errors import AuthenticationFailedError, InvalidKeyEncodingError

ECIES_INFO = b"mswallet-ecies-v1"
ECIES_TAG_LEN = 32
ECIES_OVERHEAD = COMPRESSED_PUBKEY_LEN + ECIES_TAG_LEN
# Each ephemeral key yields a fresh stream key, so a fixed nonce is safe
ECIES_NONCE = bytes(16)


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def hmac_sha256(key: bytes, message: bytes) -> bytes:
    return hmac.new(key, message, hashlib.sha256).digest()


def parse_public_key(key: bytes | str, position: int | None = None) -> bytes:
    """
    Validate a secp256k1 public key and return it in compressed form.

    Accepts 33-byte compressed or 65-byte uncompressed encodings, as raw bytes
    or hex (an optional 0x prefix is allowed for hex).

    Raises:
        InvalidKeyEncodingError: wrong length, bad hex, or not a curve point
    """
    if isinstance(key, str):
        clean = key[2:] if key.startswith("0x") else key
        try:
            key = bytes.fromhex(clean)
        except ValueError as e:
            raise InvalidKeyEncodingError(clean, "not valid hex", position) from e

    if len(key) not in (COMPRESSED_PUBKEY_LEN, UNCOMPRESSED_PUBKEY_LEN):
        raise InvalidKeyEncodingError(
            key, f"expected 33 or 65 bytes, got {len(key)}", position
        )
    try:
        point = PublicKey(key)
    except ValueError as e:
        raise InvalidKeyEncodingError(key, "not a point on secp256k1", position) from e
    return point.format(compressed=True)


def verify_raw_ecdsa(message_hash: bytes, signature_der: bytes, pubkey_bytes: bytes) -> bool:
    """
    Verify a DER ECDSA signature over a pre-hashed message.

    Returns False for any malformed signature or key instead of raising.
    """
    try:
        if not signature_der:
            return False
        pubkey = PublicKey(pubkey_bytes)
        return pubkey.verify(signature_der, message_hash, hasher=None)
    except Exception:
        return False


def _derive_ecies_keys(shared_secret: bytes, ephemeral_pub: bytes) -> tuple[bytes, bytes]:
    okm = HKDF(
        algorithm=hashes.SHA256(),
        length=64,
        salt=ephemeral_pub,
        info=ECIES_INFO,
    ).derive(shared_secret)
    return okm[:32], okm[32:]


def _chacha20(key: bytes, data: bytes) -> bytes:
    cipher = Cipher(algorithms.ChaCha20(key, ECIES_NONCE), mode=None)
    return cipher.encryptor().update(data)


def ecies_encrypt(message: bytes, recipient_pubkey: bytes) -> bytes:
    """
    Encrypt to a secp256k1 public key.

    Layout: ephemeral_pubkey(33) || ciphertext(len(message)) || tag(32)
    The tag is HMAC-SHA256 over ephemeral_pubkey || ciphertext.
    """
    recipient = PublicKey(parse_public_key(recipient_pubkey))
    ephemeral = PrivateKey(secrets.token_bytes(32))
    ephemeral_pub = ephemeral.public_key.format(compressed=True)

    enc_key, mac_key = _derive_ecies_keys(ephemeral.ecdh(recipient.format()), ephemeral_pub)
    ciphertext = _chacha20(enc_key, message)
    tag = hmac_sha256(mac_key, ephemeral_pub + ciphertext)
    return ephemeral_pub + ciphertext + tag


def ecies_decrypt(payload: bytes, private_key: PrivateKey) -> bytes:
    """
    Decrypt an ecies_encrypt payload.

    Raises:
        AuthenticationFailedError: truncated payload, invalid ephemeral key,
            or tag mismatch (compared in constant time)
    """
    if len(payload) < ECIES_OVERHEAD:
        raise AuthenticationFailedError(check="length")

    ephemeral_pub = payload[:COMPRESSED_PUBKEY_LEN]
    ciphertext = payload[COMPRESSED_PUBKEY_LEN:-ECIES_TAG_LEN]
    tag = payload[-ECIES_TAG_LEN:]

    try:
        shared = private_key.ecdh(PublicKey(ephemeral_pub).format())
    except ValueError as e:
        raise AuthenticationFailedError(check="ephemeral_key") from e

    enc_key, mac_key = _derive_ecies_keys(shared, ephemeral_pub)
    expected = hmac_sha256(mac_key, ephemeral_pub + ciphertext)
    if not hmac.compare_digest(expected, tag):
        raise AuthenticationFailedError(check="mac")
    return _chacha20(enc_key, ciphertext)
