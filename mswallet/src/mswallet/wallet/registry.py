"""
Persistent registry of multisig wallet configurations.

Records are stored as JSON objects with the field names other cosigner
clients use (`allPublicKeys`, `creationDate`, ...). The wallet id is derived
from the network, the threshold and the ordered key list only, so two
cosigners creating the same wallet independently end up with the same id.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from mscore.constants import MAX_MULTISIG_KEYS
from mscore.crypto import parse_public_key, sha256
from mscore.errors import (
    ConfigIncompleteError,
    DuplicateKeyError,
    DuplicateWalletError,
    InputValidationError,
    InvalidInviteCodeError,
    InvalidKeyEncodingError,
    KeyCountOutOfRangeError,
    LocalKeyNotInConfigError,
    ThresholdOutOfRangeError,
    WalletNotFoundError,
)
from mscore.models import InviteCode, NetworkType, WalletRecord
from mswallet.wallet.models import MultisigConfig
from mswallet.wallet.script import sort_public_keys

WALLET_ID_TAG = b"mswallet/wallet-id/v1"
WALLET_ID_LEN = 16


def compute_wallet_id(
    threshold: int,
    public_keys: Sequence[bytes],
    network: NetworkType | str = NetworkType.TESTNET,
) -> str:
    """
    Content id: first 16 bytes of
    SHA256(tag || network || 0x00 || M || keys in script order), hex.

    The same keys and threshold on two networks are two different wallets.
    """
    name = NetworkType(network).value.encode("ascii")
    digest = sha256(WALLET_ID_TAG + name + b"\x00" + bytes([threshold]) + b"".join(public_keys))
    return digest[:WALLET_ID_LEN].hex()


class WalletStore(ABC):
    """Raw record storage. Records are plain dicts in their on-disk form."""

    @abstractmethod
    def load_all(self) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def save_all(self, records: list[dict[str, Any]]) -> None:
        pass


class MemoryWalletStore(WalletStore):
    def __init__(self, records: list[dict[str, Any]] | None = None):
        self._records = [dict(r) for r in records or []]

    def load_all(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self._records]

    def save_all(self, records: list[dict[str, Any]]) -> None:
        self._records = [dict(r) for r in records]


class JsonFileWalletStore(WalletStore):
    """
    Single JSON file: {"wallets": [record, ...]}.

    Writes go to a temporary file that is then renamed over the original, so
    a crash never leaves a half-written registry behind.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def load_all(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        return list(data.get("wallets", []))

    def save_all(self, records: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump({"wallets": records}, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)


class WalletConfigRegistry:
    def __init__(
        self,
        store: WalletStore | None = None,
        allow_legacy_migration: bool = False,
    ):
        self.store = store if store is not None else MemoryWalletStore()
        self.allow_legacy_migration = allow_legacy_migration

    @classmethod
    def from_path(
        cls, path: Path | str, allow_legacy_migration: bool = False
    ) -> WalletConfigRegistry:
        return cls(JsonFileWalletStore(path), allow_legacy_migration=allow_legacy_migration)

    def create(
        self,
        label: str,
        threshold: int,
        public_keys: Sequence[bytes | str],
        local_public_key: bytes | str | None = None,
        sort_keys: bool = True,
        network: NetworkType = NetworkType.TESTNET,
    ) -> MultisigConfig:
        """
        Validate and persist a new M-of-N configuration.

        Keys may be compressed or uncompressed, bytes or hex; they are stored
        compressed. With sort_keys (the default) the script uses lexicographic
        key order; pass sort_keys=False to keep the order of an existing wallet.

        Raises:
            KeyCountOutOfRangeError, InvalidKeyEncodingError, DuplicateKeyError,
            ThresholdOutOfRangeError, LocalKeyNotInConfigError, DuplicateWalletError
        """
        keys = _normalize_keys(public_keys)
        _check_threshold(threshold, len(keys))
        if sort_keys:
            keys = sort_public_keys(keys)

        signer_index = None
        if local_public_key is not None:
            local = parse_public_key(local_public_key)
            if local not in keys:
                raise LocalKeyNotInConfigError(local.hex())
            signer_index = keys.index(local)

        wallet_id = compute_wallet_id(threshold, keys, network)
        records = self.store.load_all()
        if any(r.get("id") == wallet_id for r in records):
            raise DuplicateWalletError(wallet_id)

        record = WalletRecord(
            id=wallet_id,
            label=label,
            threshold=threshold,
            all_public_keys=[k.hex() for k in keys],
            signer_index=signer_index,
            network=network,
        )
        records.append(record.model_dump(mode="json", by_alias=True))
        self.store.save_all(records)

        logger.info(f"Created {threshold}-of-{len(keys)} wallet {wallet_id} ({label!r})")
        return _record_to_config(record)

    def load(self, wallet_id: str) -> MultisigConfig:
        """
        Look up a wallet by id. Migrated legacy records are also found under
        their recomputed content id.

        Raises:
            WalletNotFoundError: no record with this id
            ConfigIncompleteError: record predates the full key list and
                cannot be reconstructed
            InputValidationError: stored keys, threshold or signer index fail
                the checks create() applies
        """
        for raw in self.store.load_all():
            if raw.get("id") == wallet_id:
                return _record_to_config(self._parse_record(raw))
        if self.allow_legacy_migration:
            for config in self.list():
                if config.wallet_id == wallet_id:
                    return config
        raise WalletNotFoundError(wallet_id)

    def list(self) -> list[MultisigConfig]:
        """All loadable wallets, newest first. Records that fail validation are skipped."""
        loaded = []
        for raw in self.store.load_all():
            try:
                record = self._parse_record(raw)
                loaded.append((record.creation_date, _record_to_config(record)))
            except InputValidationError as e:
                logger.warning(f"Skipping wallet {raw.get('id', '<unknown>')}: {e}")
        loaded.sort(key=lambda item: item[0], reverse=True)
        return [config for _, config in loaded]

    def remove(self, wallet_id: str) -> None:
        records = self.store.load_all()
        remaining = [r for r in records if r.get("id") != wallet_id]
        if len(remaining) == len(records):
            raise WalletNotFoundError(wallet_id)
        self.store.save_all(remaining)
        logger.info(f"Removed wallet {wallet_id}")

    def _parse_record(self, raw: dict[str, Any]) -> WalletRecord:
        wallet_id = str(raw.get("id", "<unknown>"))
        legacy = "allPublicKeys" not in raw and "all_public_keys" not in raw
        if legacy:
            raw = self._migrate_legacy(wallet_id, raw)
        try:
            record = WalletRecord.model_validate(raw)
        except ValidationError as e:
            raise ConfigIncompleteError(
                wallet_id, f"valid fields ({e.error_count()} errors)"
            ) from e

        if legacy:
            keys = _normalize_keys(record.all_public_keys)
            _check_threshold(record.threshold, len(keys))
            content_id = compute_wallet_id(record.threshold, keys, record.network)
            logger.warning(f"Legacy wallet {wallet_id} is now identified as {content_id}")
            record = record.model_copy(update={"id": content_id})
        return record

    def _migrate_legacy(self, wallet_id: str, raw: dict[str, Any]) -> dict[str, Any]:
        """
        Rebuild allPublicKeys for records that only stored the other
        cosigners' keys: initiatorPublicKey (or myPublicKey) first, then
        cosignerPublicKeys. Without either key there is nothing safe to
        rebuild from.
        """
        if not self.allow_legacy_migration:
            raise ConfigIncompleteError(wallet_id, "allPublicKeys")

        first = raw.get("initiatorPublicKey") or raw.get("myPublicKey")
        cosigners = raw.get("cosignerPublicKeys")
        if not isinstance(first, str) or not isinstance(cosigners, list):
            raise ConfigIncompleteError(wallet_id, "initiator or own public key")

        logger.warning(
            f"Wallet {wallet_id} has no allPublicKeys; reconstructed from legacy fields. "
            "Verify the resulting address with every cosigner before funding it."
        )
        migrated = dict(raw)
        migrated["allPublicKeys"] = [first, *cosigners]
        return migrated


def _normalize_keys(public_keys: Sequence[bytes | str]) -> list[bytes]:
    if not 1 <= len(public_keys) <= MAX_MULTISIG_KEYS:
        raise KeyCountOutOfRangeError(len(public_keys), MAX_MULTISIG_KEYS)

    keys = [parse_public_key(key, position) for position, key in enumerate(public_keys)]
    first_seen: dict[bytes, int] = {}
    for position, key in enumerate(keys):
        if key in first_seen:
            raise DuplicateKeyError(key.hex(), (first_seen[key], position))
        first_seen[key] = position
    return keys


def _check_threshold(threshold: int, key_count: int) -> None:
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ThresholdOutOfRangeError(threshold, key_count)
    if not 1 <= threshold <= key_count:
        raise ThresholdOutOfRangeError(threshold, key_count)


def _record_to_config(record: WalletRecord) -> MultisigConfig:
    """Apply the same key and threshold checks create() does to a stored record."""
    keys = tuple(_normalize_keys(record.all_public_keys))
    _check_threshold(record.threshold, len(keys))
    if record.signer_index is not None and not 0 <= record.signer_index < len(keys):
        raise ConfigIncompleteError(record.id, f"a signerIndex in 0..{len(keys) - 1}")
    return MultisigConfig(
        wallet_id=record.id,
        label=record.label,
        threshold=record.threshold,
        public_keys=keys,
        signer_index=record.signer_index,
        network=record.network,
    )


def encode_invite(label: str, threshold: int, initiator_public_key: bytes | str) -> str:
    """Base64 JSON invite handed to cosigners out of band."""
    key = parse_public_key(initiator_public_key)
    invite = InviteCode(label=label, threshold=threshold, initiator_public_key=key.hex())
    payload = json.dumps(invite.model_dump(by_alias=True), separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_invite(code: str) -> InviteCode:
    """
    Raises:
        InvalidInviteCodeError: bad base64 or JSON, missing fields, bad key
    """
    try:
        data = json.loads(base64.b64decode(code.strip(), validate=True))
    except (binascii.Error, ValueError) as e:
        raise InvalidInviteCodeError(f"Invite code is not base64 JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidInviteCodeError("Invite code must encode a JSON object")

    try:
        invite = InviteCode.model_validate(data)
        parse_public_key(invite.initiator_public_key)
    except ValidationError as e:
        raise InvalidInviteCodeError(f"Invite code is incomplete: {e}") from e
    except InvalidKeyEncodingError as e:
        raise InvalidInviteCodeError(f"Invite code carries a bad key: {e}") from e
    return invite
