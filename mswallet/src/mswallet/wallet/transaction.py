"""
Bitcoin transaction serialization and BIP143 signature hashing.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from mscore.constants import DEFAULT_LOCKTIME, DEFAULT_SEQUENCE, DEFAULT_TX_VERSION, SIGHASH_ALL
from mscore.crypto import hash256
from mscore.serialization import ByteReader, ByteReaderError, encode_bytes, encode_varint


class TransactionError(Exception):
    pass


@dataclass
class TxInput:
    txid: str
    vout: int
    sequence: int = DEFAULT_SEQUENCE
    script_sig: bytes = b""
    witness: list[bytes] = field(default_factory=list)

    def serialize_outpoint(self) -> bytes:
        # txid is in RPC format (big-endian), reversed on the wire
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)


@dataclass
class TxOutput:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + encode_bytes(self.script)


@dataclass
class Transaction:
    inputs: list[TxInput]
    outputs: list[TxOutput]
    version: int = DEFAULT_TX_VERSION
    locktime: int = DEFAULT_LOCKTIME

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness

        result = struct.pack("<I", self.version)
        if with_witness:
            result += b"\x00\x01"

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize_outpoint()
            result += encode_bytes(inp.script_sig)
            result += struct.pack("<I", inp.sequence)

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if with_witness:
            for inp in self.inputs:
                result += serialize_witness(inp.witness)

        result += struct.pack("<I", self.locktime)
        return result

    def txid(self) -> str:
        return hash256(self.serialize(include_witness=False))[::-1].hex()


def serialize_witness(stack: list[bytes]) -> bytes:
    return encode_varint(len(stack)) + b"".join(encode_bytes(item) for item in stack)


def deserialize_witness(data: bytes) -> list[bytes]:
    reader = ByteReader(data)
    try:
        stack = [reader.read_bytes() for _ in range(reader.read_varint())]
    except ByteReaderError as e:
        raise TransactionError(f"Failed to parse witness: {e}") from e
    if not reader.at_end():
        raise TransactionError("Trailing bytes after witness stack")
    return stack


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        reader = ByteReader(tx_bytes)
        version = reader.read_uint32()

        marker_flag = reader.peek(2) == b"\x00\x01"
        if marker_flag:
            reader.read(2)

        inputs: list[TxInput] = []
        for _ in range(reader.read_varint()):
            txid = reader.read(32)[::-1].hex()
            vout = reader.read_uint32()
            script_sig = reader.read_bytes()
            sequence = reader.read_uint32()
            inputs.append(TxInput(txid, vout, sequence, script_sig))

        outputs: list[TxOutput] = []
        for _ in range(reader.read_varint()):
            value = reader.read_uint64()
            outputs.append(TxOutput(value, reader.read_bytes()))

        if marker_flag:
            for inp in inputs:
                inp.witness = [reader.read_bytes() for _ in range(reader.read_varint())]

        locktime = reader.read_uint32()
        if not reader.at_end():
            raise TransactionError("Trailing bytes after locktime")
        return Transaction(inputs, outputs, version, locktime)

    except ByteReaderError as e:
        raise TransactionError(f"Failed to parse transaction: {e}") from e


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    BIP143 signature hash for a segwit v0 input.

    For P2WSH, script_code is the full witness script.
    """
    if not 0 <= input_index < len(tx.inputs):
        raise TransactionError("Input index out of range")
    if sighash_type != SIGHASH_ALL:
        raise TransactionError(f"Unsupported sighash type {sighash_type}")

    hash_prevouts = hash256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
    hash_sequence = hash256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    target_input = tx.inputs[input_index]

    preimage = (
        struct.pack("<I", tx.version)
        + hash_prevouts
        + hash_sequence
        + target_input.serialize_outpoint()
        + encode_bytes(script_code)
        + struct.pack("<Q", value)
        + struct.pack("<I", target_input.sequence)
        + hash_outputs
        + struct.pack("<I", tx.locktime)
        + struct.pack("<I", sighash_type)
    )

    return hash256(preimage)
