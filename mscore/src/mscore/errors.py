"""
Error taxonomy for the multisig wallet core.

Four families, so callers can tell apart what went wrong:

- InputValidationError: malformed caller input, rejected before any crypto runs
- CryptoIntegrityError: a cryptographic self-check failed; never retried
- ResourceError: the wallet lacks funds/UTXOs; fixable by the user
- CoordinationError: signers used the protocol in the wrong order

Every error keeps the structured context (input, signer, check) as attributes.
"""

from __future__ import annotations


class MultisigError(Exception):
    """Base class for all wallet core errors."""

    def __init__(self, message: str, **details: object):
        super().__init__(message)
        self.details = details
        for name, value in details.items():
            setattr(self, name, value)


# (a) input validation


class InputValidationError(MultisigError):
    pass


class InvalidPathError(InputValidationError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid derivation path {path!r}: {reason}", path=path, reason=reason)


class DerivationError(InputValidationError):
    pass


class InvalidMnemonicError(InputValidationError):
    pass


class InvalidDigestError(InputValidationError):
    def __init__(self, length: int):
        super().__init__(f"Digest must be 32 bytes, got {length}", length=length)


class InvalidKeyEncodingError(InputValidationError):
    def __init__(self, key: bytes | str, reason: str, position: int | None = None):
        shown = key if isinstance(key, str) else key.hex()
        where = f" at position {position}" if position is not None else ""
        super().__init__(
            f"Invalid public key{where} ({shown[:16]}...): {reason}",
            key=shown,
            reason=reason,
            position=position,
        )


class ThresholdOutOfRangeError(InputValidationError):
    def __init__(self, threshold: int, key_count: int):
        super().__init__(
            f"Threshold {threshold} out of range for {key_count} keys (need 1 <= M <= N)",
            threshold=threshold,
            key_count=key_count,
        )


class KeyCountOutOfRangeError(InputValidationError):
    def __init__(self, key_count: int, maximum: int):
        super().__init__(
            f"Multisig needs between 1 and {maximum} keys, got {key_count}",
            key_count=key_count,
            maximum=maximum,
        )


class DuplicateKeyError(InputValidationError):
    def __init__(self, key_hex: str, positions: tuple[int, int]):
        super().__init__(
            f"Public key {key_hex} appears more than once (positions {positions[0]}, "
            f"{positions[1]})",
            key=key_hex,
            positions=positions,
        )


class LocalKeyNotInConfigError(InputValidationError):
    def __init__(self, key_hex: str):
        super().__init__(f"Local public key {key_hex} is not part of the key set", key=key_hex)


class InvalidOutputError(InputValidationError):
    def __init__(self, index: int, reason: str):
        super().__init__(f"Output {index} is invalid: {reason}", output_index=index, reason=reason)


class DuplicateUtxoError(InputValidationError):
    def __init__(self, txid: str, vout: int):
        super().__init__(f"UTXO {txid}:{vout} listed twice", txid=txid, vout=vout)


class InvalidInviteCodeError(InputValidationError):
    pass


class PSBTParseError(InputValidationError):
    pass


class ConfigIncompleteError(InputValidationError):
    def __init__(self, wallet_id: str, missing: str):
        super().__init__(
            f"Wallet config {wallet_id} is missing {missing}; refusing to guess it",
            wallet_id=wallet_id,
            missing=missing,
        )


# (b) cryptographic integrity


class CryptoIntegrityError(MultisigError):
    pass


class NoPrivateKeyError(CryptoIntegrityError):
    def __init__(self, path: str):
        super().__init__(f"No private key available for path {path}", path=path)


class SignatureInvalidError(CryptoIntegrityError):
    def __init__(self, path: str):
        super().__init__(
            f"Produced signature for {path} failed self-verification", path=path, check="verify"
        )


class RecoveryMismatchError(CryptoIntegrityError):
    def __init__(self) -> None:
        super().__init__(
            "Recovered public key does not match the master key", check="recover"
        )


class KeyedHashSelfCheckError(CryptoIntegrityError):
    def __init__(self, check: str):
        super().__init__(f"HMAC self-check failed: {check}", check=check)


class AuthenticationFailedError(CryptoIntegrityError):
    def __init__(self, check: str = "mac"):
        super().__init__("Ciphertext authentication failed", check=check)


class SignerClosedError(CryptoIntegrityError):
    def __init__(self) -> None:
        super().__init__("Signer has been closed and its key material dropped")


# (c) resources


class ResourceError(MultisigError):
    pass


class NoUtxosError(ResourceError):
    def __init__(self, address: str):
        super().__init__(
            f"No spendable outputs at {address}. Fund the multisig address first.",
            address=address,
        )


class InsufficientFundsError(ResourceError):
    def __init__(self, required: int, available: int):
        super().__init__(
            f"Outputs need {required} sats but inputs only hold {available} sats",
            required=required,
            available=available,
            shortfall=required - available,
        )


class WalletNotFoundError(ResourceError):
    def __init__(self, wallet_id: str):
        super().__init__(f"No wallet with id {wallet_id}", wallet_id=wallet_id)


class DuplicateWalletError(ResourceError):
    def __init__(self, wallet_id: str):
        super().__init__(
            f"Wallet {wallet_id} already exists (same keys and threshold)", wallet_id=wallet_id
        )


class BroadcastError(ResourceError):
    def __init__(self, status_code: int, body: str):
        super().__init__(
            f"Broadcast rejected ({status_code}): {body}", status_code=status_code, body=body
        )


# (d) coordination


class CoordinationError(MultisigError):
    pass


class UnknownInputError(CoordinationError):
    def __init__(self, input_index: int, input_count: int, signer_index: int | None = None):
        super().__init__(
            f"Input {input_index} does not exist (transaction has {input_count} inputs)",
            input_index=input_index,
            input_count=input_count,
            signer_index=signer_index,
        )


class UnknownSignerError(CoordinationError):
    def __init__(self, signer_index: int, key_count: int):
        super().__init__(
            f"Signer index {signer_index} is not in a {key_count}-key wallet",
            signer_index=signer_index,
            key_count=key_count,
        )


class DuplicateSignatureError(CoordinationError):
    def __init__(self, input_index: int, signer_index: int):
        super().__init__(
            f"Signer {signer_index} already signed input {input_index}",
            input_index=input_index,
            signer_index=signer_index,
        )


class SignatureVerificationFailedError(CoordinationError):
    def __init__(self, input_index: int, signer_index: int | None, check: str):
        super().__init__(
            f"Signature from signer {signer_index} on input {input_index} rejected: {check}",
            input_index=input_index,
            signer_index=signer_index,
            check=check,
        )


class SignerKeyMismatchError(CoordinationError):
    def __init__(self, signer_index: int | None, path: str):
        super().__init__(
            f"Key at {path} is not the wallet key for signer index {signer_index}",
            signer_index=signer_index,
            path=path,
        )


class ThresholdNotMetError(CoordinationError):
    def __init__(self, input_index: int, have: int, need: int):
        super().__init__(
            f"Input {input_index} has {have} of {need} required signatures",
            input_index=input_index,
            have=have,
            need=need,
        )


class TransactionMismatchError(CoordinationError):
    def __init__(self) -> None:
        super().__init__("Cannot combine PSBTs for different unsigned transactions")


class ForeignInputError(CoordinationError):
    def __init__(self, input_index: int, reason: str):
        super().__init__(
            f"Input {input_index} is not spendable by this wallet: {reason}",
            input_index=input_index,
            reason=reason,
        )
