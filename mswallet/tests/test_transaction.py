"""
Tests for transaction serialization and BIP143 sighash.
"""

import pytest

from mswallet.wallet.transaction import (
    Transaction,
    TransactionError,
    TxInput,
    TxOutput,
    compute_sighash_segwit,
    deserialize_transaction,
)

P2WPKH_SCRIPT = bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")


class TestDeserializeTransaction:
    # A simple P2WPKH transaction (segwit)
    SAMPLE_TX_HEX = (
        "02000000"  # version
        "0001"  # marker + flag (segwit)
        "01"  # input count
        "0000000000000000000000000000000000000000000000000000000000000000"  # prev txid
        "00000000"  # prev vout
        "00"  # scriptSig length (empty for segwit)
        "ffffffff"  # sequence
        "01"  # output count
        "0000000000000000"  # value (0 sats)
        "16"  # scriptPubKey length
        "0014751e76e8199196d454941c45d1b3a323f1433bd6"  # P2WPKH scriptPubKey
        "00"  # witness stack count for input 0
        "00000000"  # locktime
    )

    def test_deserialize_basic(self):
        tx = deserialize_transaction(bytes.fromhex(self.SAMPLE_TX_HEX))

        assert tx.version == 2
        assert len(tx.inputs) == 1
        assert len(tx.outputs) == 1
        assert tx.locktime == 0

    def test_deserialize_fields(self):
        tx = deserialize_transaction(bytes.fromhex(self.SAMPLE_TX_HEX))

        assert tx.inputs[0].txid == "00" * 32
        assert tx.inputs[0].sequence == 0xFFFFFFFF
        assert tx.outputs[0].value == 0
        assert tx.outputs[0].script == P2WPKH_SCRIPT

    def test_invalid_transaction(self):
        with pytest.raises(TransactionError):
            deserialize_transaction(b"\x00\x01\x02")

    def test_trailing_bytes(self):
        with pytest.raises(TransactionError):
            deserialize_transaction(bytes.fromhex(self.SAMPLE_TX_HEX) + b"\x00")


def _sample_tx() -> Transaction:
    return Transaction(
        inputs=[TxInput("11" * 32, 0), TxInput("22" * 32, 3, sequence=0xFFFFFFFD)],
        outputs=[TxOutput(50_000, P2WPKH_SCRIPT), TxOutput(500, b"")],
    )


class TestSerialize:
    def test_roundtrip_with_witness(self):
        tx = _sample_tx()
        tx.inputs[0].witness = [b"", b"\x30" * 71, b"\x52" * 105]
        raw = tx.serialize()

        assert raw[4:6] == b"\x00\x01"
        assert deserialize_transaction(raw) == tx

    def test_txid_ignores_witness(self):
        tx = _sample_tx()
        txid = tx.txid()
        tx.inputs[1].witness = [b"\x01"]
        assert tx.txid() == txid
        assert len(txid) == 64

    def test_outpoint_byte_order(self):
        inp = TxInput("00" * 31 + "ff", 1)
        assert inp.serialize_outpoint() == b"\xff" + b"\x00" * 31 + b"\x01\x00\x00\x00"


class TestSighash:
    def test_commits_to_input_value_and_index(self):
        tx = _sample_tx()
        script = b"\x51\xae"
        base = compute_sighash_segwit(tx, 0, script, 100_000)

        assert len(base) == 32
        assert base == compute_sighash_segwit(tx, 0, script, 100_000)
        assert base != compute_sighash_segwit(tx, 0, script, 100_001)
        assert base != compute_sighash_segwit(tx, 1, script, 100_000)
        assert base != compute_sighash_segwit(tx, 0, b"\x52\xae", 100_000)

    def test_commits_to_outputs(self):
        tx = _sample_tx()
        before = compute_sighash_segwit(tx, 0, b"\x51\xae", 100_000)
        tx.outputs[1].value = 400
        assert compute_sighash_segwit(tx, 0, b"\x51\xae", 100_000) != before

    def test_input_out_of_range(self):
        with pytest.raises(TransactionError):
            compute_sighash_segwit(_sample_tx(), 2, b"", 1)

    def test_only_sighash_all(self):
        with pytest.raises(TransactionError):
            compute_sighash_segwit(_sample_tx(), 0, b"", 1, sighash_type=0x03)
