"""
Bitcoin address <-> scriptPubKey conversion.
"""

from __future__ import annotations

import base58
import bech32

from mscore.crypto import hash160, sha256
from mscore.models import NetworkType, get_bech32_hrp

BASE58_VERSIONS = {
    NetworkType.MAINNET: (0x00, 0x05),
    NetworkType.TESTNET: (0x6F, 0xC4),
    NetworkType.SIGNET: (0x6F, 0xC4),
    NetworkType.REGTEST: (0x6F, 0xC4),
}


def script_to_p2wsh_scriptpubkey(script: bytes) -> bytes:
    """P2WSH scriptPubKey (OP_0 <32-byte-sha256(script)>)"""
    return bytes([0x00, 0x20]) + sha256(script)


def script_to_p2wsh_address(script: bytes, network: NetworkType | str = "mainnet") -> str:
    """
    Convert a witness script to a P2WSH address.
    BIP173/BIP141 encoding.
    """
    return scriptpubkey_to_address(script_to_p2wsh_scriptpubkey(script), network)


def pubkey_to_p2wpkh_scriptpubkey(pubkey: bytes) -> bytes:
    """P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    return bytes([0x00, 0x14]) + hash160(pubkey)


def address_to_scriptpubkey(address: str, network: NetworkType | str | None = None) -> bytes:
    """
    Convert a Bitcoin address to scriptPubKey.

    Supports:
    - P2WPKH / P2WSH (bc1q..., tb1q..., bcrt1q...)
    - P2PKH (1..., m..., n...)
    - P2SH (3..., 2...)

    Taproot (bc1p...) addresses use the bech32m checksum, which the bech32
    package does not implement, so they are rejected.

    When `network` is given, the address prefix must belong to it.

    Raises:
        ValueError: unknown, malformed or wrong-network address
    """
    expected = NetworkType(network) if network is not None else None
    lowered = address.lower()
    if lowered.startswith(("bc1", "tb1", "bcrt1")):
        hrp, _, data = lowered.rpartition("1")
        if expected is not None and hrp != get_bech32_hrp(expected):
            raise ValueError(f"Address {address} is not a {expected.value} address")
        if data.startswith("p"):
            raise ValueError(f"Taproot addresses are not supported: {address}")

        witver, witprog = bech32.decode(hrp, address)
        if witver is None or witprog is None:
            raise ValueError(f"Invalid bech32 address: {address}")

        program = bytes(witprog)
        if witver == 0 and len(program) in (20, 32):
            return bytes([0x00, len(program)]) + program
        raise ValueError(f"Unsupported witness version: {witver}")

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid address: {address}") from e

    if len(decoded) != 21:
        raise ValueError(f"Invalid address payload length: {address}")
    version, payload = decoded[0], decoded[1:]
    if expected is not None and version not in BASE58_VERSIONS[expected]:
        raise ValueError(f"Address {address} is not a {expected.value} address")

    if version in (0x00, 0x6F):
        # OP_DUP OP_HASH160 <20> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version in (0x05, 0xC4):
        # OP_HASH160 <20> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise ValueError(f"Unknown address version: {version}")


def scriptpubkey_to_address(scriptpubkey: bytes, network: NetworkType | str = "mainnet") -> str:
    """Convert scriptPubKey to address."""
    network = NetworkType(network)
    hrp = get_bech32_hrp(network)

    if len(scriptpubkey) in (22, 34) and scriptpubkey[0] == 0x00 and scriptpubkey[1] == len(
        scriptpubkey
    ) - 2:
        result = bech32.encode(hrp, 0, scriptpubkey[2:])
    elif (
        len(scriptpubkey) == 25
        and scriptpubkey[:3] == bytes([0x76, 0xA9, 0x14])
        and scriptpubkey[23:] == bytes([0x88, 0xAC])
    ):
        p2pkh, _ = BASE58_VERSIONS[network]
        result = base58.b58encode_check(bytes([p2pkh]) + scriptpubkey[3:23]).decode("ascii")
    elif len(scriptpubkey) == 23 and scriptpubkey[:2] == bytes([0xA9, 0x14]) and scriptpubkey[
        22
    ] == 0x87:
        _, p2sh = BASE58_VERSIONS[network]
        result = base58.b58encode_check(bytes([p2sh]) + scriptpubkey[2:22]).decode("ascii")
    else:
        raise ValueError(f"Unsupported scriptPubKey: {scriptpubkey.hex()}")

    if result is None:
        raise ValueError(f"Failed to encode address for {scriptpubkey.hex()}")
    return result
