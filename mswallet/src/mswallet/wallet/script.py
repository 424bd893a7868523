"""
Multisig witness script and P2WSH address construction.

Pure functions: the same config always yields the same script and address.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from mscore.constants import (
    COMPRESSED_PUBKEY_LEN,
    MAX_MULTISIG_KEYS,
    OP_1,
    OP_CHECKMULTISIG,
)
from mscore.errors import (
    InvalidKeyEncodingError,
    KeyCountOutOfRangeError,
    ThresholdOutOfRangeError,
)
from mswallet.wallet.address import script_to_p2wsh_address, script_to_p2wsh_scriptpubkey
from mswallet.wallet.models import MultisigAddress, MultisigConfig


def sort_public_keys(public_keys: Iterable[bytes]) -> list[bytes]:
    """Canonical (lexicographic byte) key order, as in BIP67."""
    return sorted(public_keys)


def _small_int_opcode(n: int) -> int:
    return OP_1 + n - 1


def build_multisig_script(public_keys: Sequence[bytes], threshold: int) -> bytes:
    """
    OP_M <pubkey>... OP_N OP_CHECKMULTISIG, keys in the order given.

    Callers sort keys once at wallet creation; this function never reorders.
    """
    n = len(public_keys)
    if not 1 <= n <= MAX_MULTISIG_KEYS:
        raise KeyCountOutOfRangeError(n, MAX_MULTISIG_KEYS)
    if not 1 <= threshold <= n:
        raise ThresholdOutOfRangeError(threshold, n)

    script = bytearray([_small_int_opcode(threshold)])
    for position, key in enumerate(public_keys):
        if len(key) != COMPRESSED_PUBKEY_LEN:
            raise InvalidKeyEncodingError(key, "witness scripts need compressed keys", position)
        script.append(COMPRESSED_PUBKEY_LEN)
        script += key
    script.append(_small_int_opcode(n))
    script.append(OP_CHECKMULTISIG)
    return bytes(script)


def parse_multisig_script(script: bytes) -> tuple[int, list[bytes]]:
    """Inverse of build_multisig_script: returns (threshold, public_keys)."""
    if len(script) < 3 or script[-1] != OP_CHECKMULTISIG:
        raise ValueError("Not a multisig script")

    threshold = script[0] - OP_1 + 1
    key_count = script[-2] - OP_1 + 1
    keys = []
    offset = 1
    for _ in range(key_count):
        if offset >= len(script) or script[offset] != COMPRESSED_PUBKEY_LEN:
            raise ValueError("Unexpected push in multisig script")
        keys.append(script[offset + 1 : offset + 1 + COMPRESSED_PUBKEY_LEN])
        offset += 1 + COMPRESSED_PUBKEY_LEN

    if offset != len(script) - 2 or not 1 <= threshold <= key_count:
        raise ValueError("Malformed multisig script")
    return threshold, keys


def build_address(config: MultisigConfig) -> MultisigAddress:
    """Redeem (witness) script, P2WSH output script and bech32 address."""
    redeem_script = build_multisig_script(config.public_keys, config.threshold)
    return MultisigAddress(
        redeem_script=redeem_script,
        output_script=script_to_p2wsh_scriptpubkey(redeem_script),
        address=script_to_p2wsh_address(redeem_script, config.network),
    )
