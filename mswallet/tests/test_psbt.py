"""
Tests for PSBT (BIP174 v0) encoding.
"""

import base64

import pytest

from mscore.errors import PSBTParseError
from mscore.serialization import encode_bytes
from mswallet.wallet.psbt import PSBT_MAGIC, PartiallySignedTransaction
from mswallet.wallet.transaction import Transaction, TxInput, TxOutput

SCRIPT = bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")


def _tx() -> Transaction:
    return Transaction(
        inputs=[TxInput("33" * 32, 1)],
        outputs=[TxOutput(90_000, SCRIPT), TxOutput(1_000, b"")],
    )


def _record(key: bytes, value: bytes) -> bytes:
    return encode_bytes(key) + encode_bytes(value)


class TestRoundtrip:
    def test_fresh_psbt(self):
        psbt = PartiallySignedTransaction.from_transaction(_tx())
        raw = psbt.to_bytes()

        assert raw.startswith(PSBT_MAGIC)
        assert PartiallySignedTransaction.from_bytes(raw).to_bytes() == raw
        assert PartiallySignedTransaction.from_base64(psbt.to_base64()) == psbt

    def test_unknown_records_preserved_in_order(self):
        unsigned = _tx().serialize(include_witness=False)
        raw = (
            PSBT_MAGIC
            + _record(b"\x00", unsigned)
            + _record(b"\xfc\x05proprietary", b"global")
            + b"\x00"
            # input: unknown record before a known one
            + _record(b"\x99", b"x")
            + _record(b"\x03", (1).to_bytes(4, "little"))
            + b"\x00"
            + _record(b"\x42", b"out0")
            + b"\x00"
            + b"\x00"
        )
        psbt = PartiallySignedTransaction.from_bytes(raw)

        assert psbt.to_bytes() == raw
        assert psbt.inputs[0].sighash_type == 1
        assert psbt.outputs[0].entries == {b"\x42": b"out0"}

    def test_typed_accessors(self):
        psbt = PartiallySignedTransaction.from_transaction(_tx())
        inp = psbt.inputs[0]
        inp.witness_utxo = TxOutput(91_000, SCRIPT)
        inp.witness_script = b"\x51\xae"
        inp.add_partial_sig(b"\x02" * 33, b"\x30\x01")

        parsed = PartiallySignedTransaction.from_bytes(psbt.to_bytes()).inputs[0]
        assert parsed.witness_utxo == TxOutput(91_000, SCRIPT)
        assert parsed.witness_script == b"\x51\xae"
        assert parsed.partial_sigs == {b"\x02" * 33: b"\x30\x01"}

    def test_reset_signatures_returns_copy(self):
        psbt = PartiallySignedTransaction.from_transaction(_tx())
        psbt.inputs[0].add_partial_sig(b"\x02" * 33, b"\x30\x01")

        cleared = psbt.reset_signatures()
        assert cleared.inputs[0].partial_sigs == {}
        assert psbt.inputs[0].partial_sigs


class TestMalformed:
    def test_bad_magic(self):
        with pytest.raises(PSBTParseError):
            PartiallySignedTransaction.from_bytes(b"psbx\xff\x00")

    def test_bad_base64(self):
        with pytest.raises(PSBTParseError):
            PartiallySignedTransaction.from_base64("not base64!")

    def test_truncated(self):
        raw = PartiallySignedTransaction.from_transaction(_tx()).to_bytes()
        with pytest.raises(PSBTParseError):
            PartiallySignedTransaction.from_bytes(raw[:-2])

    def test_trailing_bytes(self):
        raw = PartiallySignedTransaction.from_transaction(_tx()).to_bytes()
        with pytest.raises(PSBTParseError):
            PartiallySignedTransaction.from_bytes(raw + b"\x00")

    def test_missing_unsigned_tx(self):
        with pytest.raises(PSBTParseError):
            PartiallySignedTransaction.from_bytes(PSBT_MAGIC + b"\x00")

    def test_duplicate_key(self):
        unsigned = _tx().serialize(include_witness=False)
        raw = PSBT_MAGIC + _record(b"\x00", unsigned) + _record(b"\x00", unsigned) + b"\x00"
        with pytest.raises(PSBTParseError):
            PartiallySignedTransaction.from_bytes(raw)

    def test_signed_transaction_rejected(self):
        tx = _tx()
        tx.inputs[0].script_sig = b"\x00"
        raw = PSBT_MAGIC + _record(b"\x00", tx.serialize()) + b"\x00" * 4
        with pytest.raises(PSBTParseError):
            PartiallySignedTransaction.from_bytes(raw)


def test_base64_is_standard_alphabet():
    psbt = PartiallySignedTransaction.from_transaction(_tx())
    assert base64.b64decode(psbt.to_base64()).startswith(b"psbt\xff")
