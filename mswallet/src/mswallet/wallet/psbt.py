"""
Partially Signed Bitcoin Transaction (BIP174, version 0) encoding.

This is the value cosigners pass around. Every key/value map keeps its
records in the order they were read and keeps records we do not interpret,
so parse -> serialize reproduces the input byte for byte.

Reference: https://github.com/bitcoin/bips/blob/master/bip-0174.mediawiki
"""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass, field

from mscore.errors import PSBTParseError
from mscore.serialization import ByteReader, ByteReaderError, encode_bytes
from mswallet.wallet.transaction import (
    Transaction,
    TransactionError,
    TxOutput,
    deserialize_transaction,
    deserialize_witness,
    serialize_witness,
)

PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00

PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_WITNESS_SCRIPT = 0x05
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08

PSBT_OUT_WITNESS_SCRIPT = 0x01


def _read_map(reader: ByteReader) -> dict[bytes, bytes]:
    entries: dict[bytes, bytes] = {}
    while True:
        key = reader.read_bytes()
        if not key:
            return entries
        if key in entries:
            raise PSBTParseError(f"Duplicate PSBT key {key.hex()}")
        entries[key] = reader.read_bytes()


def _write_map(entries: dict[bytes, bytes]) -> bytes:
    return b"".join(encode_bytes(k) + encode_bytes(v) for k, v in entries.items()) + b"\x00"


@dataclass
class PSBTInput:
    entries: dict[bytes, bytes] = field(default_factory=dict)

    @property
    def witness_utxo(self) -> TxOutput | None:
        raw = self.entries.get(bytes([PSBT_IN_WITNESS_UTXO]))
        if raw is None:
            return None
        reader = ByteReader(raw)
        value = reader.read_uint64()
        return TxOutput(value, reader.read_bytes())

    @witness_utxo.setter
    def witness_utxo(self, utxo: TxOutput) -> None:
        self.entries[bytes([PSBT_IN_WITNESS_UTXO])] = utxo.serialize()

    @property
    def witness_script(self) -> bytes | None:
        return self.entries.get(bytes([PSBT_IN_WITNESS_SCRIPT]))

    @witness_script.setter
    def witness_script(self, script: bytes) -> None:
        self.entries[bytes([PSBT_IN_WITNESS_SCRIPT])] = script

    @property
    def sighash_type(self) -> int | None:
        raw = self.entries.get(bytes([PSBT_IN_SIGHASH_TYPE]))
        return struct.unpack("<I", raw)[0] if raw is not None else None

    @sighash_type.setter
    def sighash_type(self, value: int) -> None:
        self.entries[bytes([PSBT_IN_SIGHASH_TYPE])] = struct.pack("<I", value)

    @property
    def partial_sigs(self) -> dict[bytes, bytes]:
        """Public key -> signature (DER + sighash byte), in record order."""
        return {
            key[1:]: value
            for key, value in self.entries.items()
            if key[0] == PSBT_IN_PARTIAL_SIG
        }

    def add_partial_sig(self, public_key: bytes, signature: bytes) -> None:
        self.entries[bytes([PSBT_IN_PARTIAL_SIG]) + public_key] = signature

    def clear_partial_sigs(self) -> None:
        for key in [k for k in self.entries if k[0] == PSBT_IN_PARTIAL_SIG]:
            del self.entries[key]

    @property
    def final_script_witness(self) -> list[bytes] | None:
        raw = self.entries.get(bytes([PSBT_IN_FINAL_SCRIPTWITNESS]))
        return deserialize_witness(raw) if raw is not None else None

    @final_script_witness.setter
    def final_script_witness(self, stack: list[bytes]) -> None:
        self.entries[bytes([PSBT_IN_FINAL_SCRIPTWITNESS])] = serialize_witness(stack)


@dataclass
class PSBTOutput:
    entries: dict[bytes, bytes] = field(default_factory=dict)


class PartiallySignedTransaction:
    """A PSBT: unsigned transaction plus per-input and per-output maps."""

    def __init__(
        self,
        global_entries: dict[bytes, bytes],
        inputs: list[PSBTInput],
        outputs: list[PSBTOutput],
    ):
        raw_tx = global_entries.get(bytes([PSBT_GLOBAL_UNSIGNED_TX]))
        if raw_tx is None:
            raise PSBTParseError("PSBT has no unsigned transaction")
        try:
            tx = deserialize_transaction(raw_tx)
        except TransactionError as e:
            raise PSBTParseError(str(e)) from e

        if tx.has_witness or any(inp.script_sig for inp in tx.inputs):
            raise PSBTParseError("Unsigned transaction must not carry scriptSigs or witnesses")
        if len(inputs) != len(tx.inputs) or len(outputs) != len(tx.outputs):
            raise PSBTParseError("PSBT map count does not match the unsigned transaction")

        self.global_entries = global_entries
        self.inputs = inputs
        self.outputs = outputs
        self._tx = tx

    @classmethod
    def from_transaction(cls, tx: Transaction) -> PartiallySignedTransaction:
        return cls(
            {bytes([PSBT_GLOBAL_UNSIGNED_TX]): tx.serialize(include_witness=False)},
            [PSBTInput() for _ in tx.inputs],
            [PSBTOutput() for _ in tx.outputs],
        )

    @property
    def unsigned_tx(self) -> Transaction:
        """A fresh copy of the unsigned transaction (callers may mutate it)."""
        return deserialize_transaction(self.global_entries[bytes([PSBT_GLOBAL_UNSIGNED_TX])])

    @property
    def unsigned_tx_bytes(self) -> bytes:
        return self.global_entries[bytes([PSBT_GLOBAL_UNSIGNED_TX])]

    @classmethod
    def from_bytes(cls, data: bytes) -> PartiallySignedTransaction:
        if not data.startswith(PSBT_MAGIC):
            raise PSBTParseError("Missing PSBT magic bytes")

        reader = ByteReader(data, len(PSBT_MAGIC))
        try:
            global_entries = _read_map(reader)
            raw_tx = global_entries.get(bytes([PSBT_GLOBAL_UNSIGNED_TX]))
            if raw_tx is None:
                raise PSBTParseError("PSBT has no unsigned transaction")
            try:
                tx = deserialize_transaction(raw_tx)
            except TransactionError as e:
                raise PSBTParseError(str(e)) from e

            inputs = [PSBTInput(_read_map(reader)) for _ in tx.inputs]
            outputs = [PSBTOutput(_read_map(reader)) for _ in tx.outputs]
        except ByteReaderError as e:
            raise PSBTParseError(f"Truncated PSBT: {e}") from e

        if not reader.at_end():
            raise PSBTParseError("Trailing bytes after PSBT")
        return cls(global_entries, inputs, outputs)

    def to_bytes(self) -> bytes:
        return (
            PSBT_MAGIC
            + _write_map(self.global_entries)
            + b"".join(_write_map(inp.entries) for inp in self.inputs)
            + b"".join(_write_map(out.entries) for out in self.outputs)
        )

    @classmethod
    def from_base64(cls, data: str) -> PartiallySignedTransaction:
        try:
            raw = base64.b64decode(data.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise PSBTParseError(f"PSBT is not valid base64: {e}") from e
        return cls.from_bytes(raw)

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    def copy(self) -> PartiallySignedTransaction:
        return PartiallySignedTransaction(
            dict(self.global_entries),
            [PSBTInput(dict(inp.entries)) for inp in self.inputs],
            [PSBTOutput(dict(out.entries)) for out in self.outputs],
        )

    def reset_signatures(self) -> PartiallySignedTransaction:
        """Copy with every partial signature removed."""
        fresh = self.copy()
        for inp in fresh.inputs:
            inp.clear_partial_sigs()
        return fresh

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PartiallySignedTransaction):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __repr__(self) -> str:
        return (
            f"PartiallySignedTransaction(txid={self._tx.txid()}, "
            f"inputs={len(self.inputs)}, outputs={len(self.outputs)})"
        )
