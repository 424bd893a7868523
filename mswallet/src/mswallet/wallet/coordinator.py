"""
Multisig transaction coordination.

Builds the shared PSBT from a UTXO snapshot, merges cosigner signatures,
decides when the threshold is met and assembles the final witness.

Every operation is a pure function of its arguments: it either returns a new
PSBT or raises, and never touches the PSBT it was given. Cosigners can
therefore sign independent copies in any order and merge them later.

Signature choice at finalization: when more than M valid signatures exist on
an input, the M with the LOWEST signer indices are used. This is a fixed
policy so that every cosigner finalizing the same PSBT produces the same
transaction.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from loguru import logger

from mscore.constants import SIGHASH_ALL
from mscore.crypto import verify_raw_ecdsa
from mscore.errors import (
    DuplicateSignatureError,
    DuplicateUtxoError,
    ForeignInputError,
    InsufficientFundsError,
    InvalidOutputError,
    NoUtxosError,
    SignatureVerificationFailedError,
    SignerKeyMismatchError,
    ThresholdNotMetError,
    TransactionMismatchError,
    UnknownInputError,
    UnknownSignerError,
)
from mscore.models import NetworkType
from mswallet.backends.base import UTXO
from mswallet.wallet.address import address_to_scriptpubkey, scriptpubkey_to_address
from mswallet.wallet.models import (
    FinalizedTransaction,
    InputSummary,
    MultisigConfig,
    OutputSummary,
    Payment,
    TransactionSummary,
)
from mswallet.wallet.psbt import PartiallySignedTransaction, PSBTInput
from mswallet.wallet.script import build_address
from mswallet.wallet.signer import Signer
from mswallet.wallet.transaction import (
    Transaction,
    TxInput,
    TxOutput,
    compute_sighash_segwit,
    deserialize_transaction,
)

STAGE_UNSIGNED = "unsigned"
STAGE_PARTIAL = "partially_signed"
STAGE_READY = "ready"
STAGE_FINALIZED = "finalized"


class TransactionCoordinator:
    """Stateless coordinator; all state lives in the PSBT values it returns."""

    def build_unsigned_transaction(
        self,
        config: MultisigConfig,
        utxos: Sequence[UTXO],
        outputs: Sequence[Payment],
    ) -> PartiallySignedTransaction:
        """
        Spend every UTXO at the wallet address to `outputs`.

        There is no coin selection and no change output: whatever the outputs
        do not claim goes to a trailing fee output with an empty script.

        Raises:
            NoUtxosError: empty UTXO snapshot
            DuplicateUtxoError: an outpoint appears twice
            InvalidOutputError: non-positive value or unusable destination
            InsufficientFundsError: outputs exceed inputs
        """
        wallet_address = build_address(config)
        if not utxos:
            raise NoUtxosError(wallet_address.address)

        seen: set[tuple[str, int]] = set()
        for utxo in utxos:
            if (utxo.txid, utxo.vout) in seen:
                raise DuplicateUtxoError(utxo.txid, utxo.vout)
            seen.add((utxo.txid, utxo.vout))

        tx_outputs = [
            TxOutput(payment.value, self._payment_script(index, payment, config.network))
            for index, payment in enumerate(outputs)
        ]

        total_in = sum(utxo.value for utxo in utxos)
        total_out = sum(out.value for out in tx_outputs)
        if total_out > total_in:
            raise InsufficientFundsError(required=total_out, available=total_in)

        fee = total_in - total_out
        tx_outputs.append(TxOutput(fee, b""))

        tx = Transaction(
            inputs=[TxInput(utxo.txid, utxo.vout) for utxo in utxos],
            outputs=tx_outputs,
        )
        psbt = PartiallySignedTransaction.from_transaction(tx)
        for utxo, psbt_input in zip(utxos, psbt.inputs, strict=True):
            psbt_input.witness_utxo = TxOutput(utxo.value, wallet_address.output_script)
            psbt_input.witness_script = wallet_address.redeem_script
            psbt_input.sighash_type = SIGHASH_ALL

        logger.info(
            f"Built {config.threshold}-of-{config.key_count} spend: {len(utxos)} inputs, "
            f"{len(outputs)} outputs, {total_in} sats in, fee {fee} sats"
        )
        return psbt

    @staticmethod
    def _payment_script(index: int, payment: Payment, network: NetworkType) -> bytes:
        if isinstance(payment.value, bool) or not isinstance(payment.value, int):
            raise InvalidOutputError(index, "value must be an integer number of sats")
        if payment.value <= 0:
            raise InvalidOutputError(index, f"value must be positive, got {payment.value}")
        if (payment.address is None) == (payment.script is None):
            raise InvalidOutputError(index, "give exactly one of address or script")
        if payment.script is not None:
            return payment.script
        try:
            return address_to_scriptpubkey(payment.address, network)
        except ValueError as e:
            raise InvalidOutputError(index, str(e)) from e

    def _input_sighash(
        self,
        tx: PartiallySignedTransaction,
        unsigned: Transaction,
        config: MultisigConfig,
        input_index: int,
    ) -> bytes:
        psbt_input = tx.inputs[input_index]
        witness_script = psbt_input.witness_script
        utxo = psbt_input.witness_utxo
        expected = build_address(config)

        if witness_script != expected.redeem_script:
            raise ForeignInputError(input_index, "witness script does not match the wallet")
        if utxo is None or utxo.script != expected.output_script:
            raise ForeignInputError(input_index, "missing or foreign witness UTXO")

        return compute_sighash_segwit(unsigned, input_index, witness_script, utxo.value)

    def _sighashes(self, tx: PartiallySignedTransaction, config: MultisigConfig) -> list[bytes]:
        unsigned = tx.unsigned_tx
        return [self._input_sighash(tx, unsigned, config, i) for i in range(len(tx.inputs))]

    @staticmethod
    def _check_signature(
        sighash: bytes,
        signature: bytes,
        public_key: bytes,
        input_index: int,
        signer_index: int | None,
    ) -> None:
        if len(signature) < 2 or signature[-1] != SIGHASH_ALL:
            raise SignatureVerificationFailedError(
                input_index, signer_index, "sighash type is not SIGHASH_ALL"
            )
        if not verify_raw_ecdsa(sighash, signature[:-1], public_key):
            raise SignatureVerificationFailedError(input_index, signer_index, "ECDSA verification")

    def _valid_signers(
        self, psbt_input: PSBTInput, config: MultisigConfig, sighash: bytes
    ) -> dict[int, bytes]:
        """Signer index -> signature, for partial signatures that verify."""
        valid: dict[int, bytes] = {}
        for public_key, signature in psbt_input.partial_sigs.items():
            index = config.index_of(public_key)
            if index is None:
                continue
            if signature[-1:] == bytes([SIGHASH_ALL]) and verify_raw_ecdsa(
                sighash, signature[:-1], public_key
            ):
                valid[index] = signature
        return dict(sorted(valid.items()))

    def create_signatures(
        self,
        tx: PartiallySignedTransaction,
        config: MultisigConfig,
        signer: Signer,
        path: str = "m",
    ) -> dict[int, bytes]:
        """
        Produce the local cosigner's signature for every input.

        Returns {input_index: DER signature + SIGHASH_ALL byte}, ready for
        apply_signature(tx, config, config.signer_index, ...).

        Raises:
            SignerKeyMismatchError: the key at `path` is not this wallet's key
                for config.signer_index
        """
        if config.signer_index is None or not 0 <= config.signer_index < config.key_count:
            raise SignerKeyMismatchError(config.signer_index, path)
        if signer.derive_public_key(path) != config.public_keys[config.signer_index]:
            raise SignerKeyMismatchError(config.signer_index, path)

        signatures = {
            index: signer.sign(sighash, path) + bytes([SIGHASH_ALL])
            for index, sighash in enumerate(self._sighashes(tx, config))
        }
        logger.debug(f"Signer {config.signer_index} produced {len(signatures)} signatures")
        return signatures

    def apply_signature(
        self,
        tx: PartiallySignedTransaction,
        config: MultisigConfig,
        signer_index: int,
        signatures: Mapping[int, bytes],
    ) -> PartiallySignedTransaction:
        """
        Merge one signer's per-input signatures into a copy of `tx`.

        All checks run before anything is written, so on error `tx` is
        unchanged and the call can simply be retried.

        Raises:
            UnknownSignerError: signer_index outside the key set
            UnknownInputError: a signature references a missing input
            DuplicateSignatureError: this signer already signed that input
            SignatureVerificationFailedError: bad sighash byte or ECDSA check
        """
        if not 0 <= signer_index < config.key_count:
            raise UnknownSignerError(signer_index, config.key_count)
        public_key = config.public_keys[signer_index]

        for input_index in sorted(signatures):
            if not 0 <= input_index < len(tx.inputs):
                raise UnknownInputError(input_index, len(tx.inputs), signer_index)
            if public_key in tx.inputs[input_index].partial_sigs:
                raise DuplicateSignatureError(input_index, signer_index)

        unsigned = tx.unsigned_tx
        for input_index in sorted(signatures):
            sighash = self._input_sighash(tx, unsigned, config, input_index)
            self._check_signature(
                sighash, signatures[input_index], public_key, input_index, signer_index
            )

        updated = tx.copy()
        for input_index in sorted(signatures):
            updated.inputs[input_index].add_partial_sig(public_key, signatures[input_index])

        logger.info(f"Applied signatures from signer {signer_index} on {len(signatures)} inputs")
        return updated

    def combine(
        self, config: MultisigConfig, *txs: PartiallySignedTransaction
    ) -> PartiallySignedTransaction:
        """
        Merge independently signed copies of the same PSBT (BIP174 combiner).

        Signatures already present are kept as they are, so a signer is never
        counted twice. Incoming signatures are verified before merging.

        Raises:
            TransactionMismatchError: the copies are for different transactions
            SignatureVerificationFailedError: an incoming signature is invalid
        """
        if not txs:
            raise ValueError("combine() needs at least one PSBT")

        base = txs[0]
        for other in txs[1:]:
            if other.unsigned_tx_bytes != base.unsigned_tx_bytes:
                raise TransactionMismatchError()

        sighashes = self._sighashes(base, config)
        merged = base.copy()
        for other in txs[1:]:
            for key, value in other.global_entries.items():
                merged.global_entries.setdefault(key, value)

            for input_index, (target, source) in enumerate(
                zip(merged.inputs, other.inputs, strict=True)
            ):
                existing = target.partial_sigs
                for public_key, signature in source.partial_sigs.items():
                    if public_key in existing:
                        continue
                    signer_index = config.index_of(public_key)
                    if signer_index is None:
                        raise SignatureVerificationFailedError(
                            input_index, None, f"key {public_key.hex()} is not in the wallet"
                        )
                    self._check_signature(
                        sighashes[input_index], signature, public_key, input_index, signer_index
                    )
                    target.add_partial_sig(public_key, signature)
                for key, value in source.entries.items():
                    target.entries.setdefault(key, value)

            for target_out, source_out in zip(merged.outputs, other.outputs, strict=True):
                for key, value in source_out.entries.items():
                    target_out.entries.setdefault(key, value)

        return merged

    def is_ready_to_finalize(self, tx: PartiallySignedTransaction, config: MultisigConfig) -> bool:
        """True iff every input carries at least `threshold` valid, distinct signatures."""
        sighashes = self._sighashes(tx, config)
        return all(
            len(self._valid_signers(psbt_input, config, sighash)) >= config.threshold
            for psbt_input, sighash in zip(tx.inputs, sighashes, strict=True)
        )

    def finalize(
        self, tx: PartiallySignedTransaction, config: MultisigConfig
    ) -> FinalizedTransaction:
        """
        Assemble witnesses and serialize the signed transaction.

        Witness per input: <empty> <sig>... <witness_script>, using the
        `threshold` lowest signer indices with valid signatures, in key order
        as OP_CHECKMULTISIG requires.

        Raises:
            ThresholdNotMetError: an input has fewer than `threshold` valid signatures
        """
        unsigned = tx.unsigned_tx
        signers_used: list[tuple[int, ...]] = []
        input_values: list[int] = []

        for input_index, psbt_input in enumerate(tx.inputs):
            sighash = self._input_sighash(tx, unsigned, config, input_index)
            valid = self._valid_signers(psbt_input, config, sighash)
            if len(valid) < config.threshold:
                raise ThresholdNotMetError(input_index, len(valid), config.threshold)

            chosen = list(valid)[: config.threshold]
            unsigned.inputs[input_index].witness = (
                [b""] + [valid[index] for index in chosen] + [psbt_input.witness_script]
            )
            signers_used.append(tuple(chosen))
            input_values.append(psbt_input.witness_utxo.value)

        raw = unsigned.serialize(include_witness=True)
        txid = unsigned.txid()
        logger.info(f"Finalized transaction {txid} ({len(raw)} bytes)")
        return FinalizedTransaction(
            raw=raw,
            txid=txid,
            input_values=tuple(input_values),
            signers_used=tuple(signers_used),
        )

    def describe(
        self,
        tx: PartiallySignedTransaction | FinalizedTransaction,
        config: MultisigConfig,
    ) -> TransactionSummary:
        """Read-only summary of a transaction at any stage."""
        if isinstance(tx, FinalizedTransaction):
            final = deserialize_transaction(tx.raw)
            inputs = [
                InputSummary(inp.txid, inp.vout, value, list(signers))
                for inp, value, signers in zip(
                    final.inputs, tx.input_values, tx.signers_used, strict=True
                )
            ]
            tx_outputs = final.outputs
            stage = STAGE_FINALIZED
        else:
            unsigned = tx.unsigned_tx
            inputs = []
            for inp, psbt_input in zip(unsigned.inputs, tx.inputs, strict=True):
                utxo = psbt_input.witness_utxo
                signers = sorted(
                    index
                    for index in map(config.index_of, psbt_input.partial_sigs)
                    if index is not None
                )
                inputs.append(
                    InputSummary(inp.txid, inp.vout, utxo.value if utxo else None, signers)
                )
            tx_outputs = unsigned.outputs

            if not any(summary.signer_indices for summary in inputs):
                stage = STAGE_UNSIGNED
            elif self.is_ready_to_finalize(tx, config):
                stage = STAGE_READY
            else:
                stage = STAGE_PARTIAL

        outputs = [
            OutputSummary(
                value=out.value,
                address=self._try_address(out.script, config),
                script=out.script.hex(),
                is_fee=not out.script,
            )
            for out in tx_outputs
        ]
        fee_outputs = [out.value for out in outputs if out.is_fee]

        return TransactionSummary(
            stage=stage,
            inputs=inputs,
            outputs=outputs,
            fee=sum(fee_outputs) if fee_outputs else None,
            signer_indices_present=sorted(
                {index for summary in inputs for index in summary.signer_indices}
            ),
        )

    @staticmethod
    def _try_address(script: bytes, config: MultisigConfig) -> str | None:
        if not script:
            return None
        try:
            return scriptpubkey_to_address(script, config.network)
        except ValueError:
            return None
