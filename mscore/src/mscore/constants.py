"""
Bitcoin script, curve and BIP32 constants shared by the wallet components.
"""

from __future__ import annotations

# secp256k1 curve order
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# BIP32
HARDENED_OFFSET = 0x80000000
MAX_DERIVATION_DEPTH = 255
BIP32_SEED_KEY = b"Bitcoin seed"

# Extended key version bytes (public only, we never export private keys)
XPUB_VERSION_MAINNET = bytes.fromhex("0488B21E")
XPUB_VERSION_TESTNET = bytes.fromhex("043587CF")

# Script opcodes used by the multisig builder
OP_0 = 0x00
OP_1 = 0x51
OP_16 = 0x60
OP_CHECKMULTISIG = 0xAE

# OP_CHECKMULTISIG with small-integer pushes for M and N
MAX_MULTISIG_KEYS = 16

SIGHASH_ALL = 0x01

# Sequence/locktime for the coordinator's transactions
DEFAULT_SEQUENCE = 0xFFFFFFFF
DEFAULT_TX_VERSION = 2
DEFAULT_LOCKTIME = 0

COMPRESSED_PUBKEY_LEN = 33
UNCOMPRESSED_PUBKEY_LEN = 65
DIGEST_LEN = 32
