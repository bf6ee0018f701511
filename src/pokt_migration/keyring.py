"""Signing identities in the ``pocketd`` keyring.

The keyring is external mutable state: nothing here caches whether an
identity exists. Every call lists or shows first.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from pokt_migration.classify import FailureKind, classify_failure
from pokt_migration.commands import CommandBuilder, KeyringTarget, validate_identity_name
from pokt_migration.credentials import (
    Credential,
    Mnemonic,
    RawHexKey,
    WalletJson,
    describe_credential,
)
from pokt_migration.errors import (
    BinaryUnavailableError,
    CommandFailedError,
    FallbackIdentityUnavailableError,
    KeyringImportFailedError,
)
from pokt_migration.logs import sanitize_text
from pokt_migration.runner import ProcessRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyIdentity:
    name: str
    address: str
    key_type: str = "local"
    pubkey: str | None = None


@dataclass(frozen=True)
class NewIdentity:
    name: str
    address: str
    mnemonic: str = field(repr=False)

    def __repr__(self) -> str:
        return f"NewIdentity(name={self.name!r}, address={self.address!r})"


@dataclass(frozen=True)
class FallbackIdentitySpec:
    name: str = "alice"
    create_if_missing: bool = True


def _extract_json(text: str) -> object | None:
    candidate = text.strip()
    if not candidate:
        return None
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    for opener, closer in (("{", "}"), ("[", "]")):
        start = candidate.find(opener)
        end = candidate.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(candidate[start : end + 1])
            except json.JSONDecodeError:
                continue
    return None


def _identity_from_payload(payload: object, fallback_name: str) -> KeyIdentity | None:
    if not isinstance(payload, dict):
        return None
    address = payload.get("address")
    if not isinstance(address, str) or not address.strip():
        return None
    name = payload.get("name") if isinstance(payload.get("name"), str) else fallback_name
    pubkey = payload.get("pubkey")
    return KeyIdentity(
        name=name,
        address=address.strip(),
        key_type=str(payload.get("type") or "local"),
        pubkey=pubkey if isinstance(pubkey, str) else None,
    )


def _failure_detail(exc: CommandFailedError) -> str:
    return sanitize_text((exc.stderr or exc.stdout or str(exc)).strip())


class KeyringManager:
    def __init__(
        self,
        runner: ProcessRunner,
        builder: CommandBuilder,
        *,
        temp_dir: str | Path | None = None,
        fallback: FallbackIdentitySpec | None = None,
    ) -> None:
        self.runner = runner
        self.builder = builder
        self.temp_dir = Path(temp_dir) if temp_dir else None
        self.fallback = fallback or FallbackIdentitySpec()

    def list_identities(self, target: KeyringTarget) -> list[KeyIdentity]:
        result = self.runner.run(self.builder.keys_list(target))
        payload = _extract_json(result.stdout) if result.stdout.strip() else _extract_json(result.stderr)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise KeyringImportFailedError("keys list returned an unexpected payload")
        identities: list[KeyIdentity] = []
        for item in payload:
            identity = _identity_from_payload(item, fallback_name="")
            if identity is not None and identity.name:
                identities.append(identity)
        return identities

    def show_identity(self, name: str, target: KeyringTarget) -> KeyIdentity | None:
        try:
            result = self.runner.run(self.builder.keys_show(name, target))
        except CommandFailedError as exc:
            if classify_failure(exc.output) is FailureKind.KEY_NOT_FOUND:
                return None
            raise
        return _identity_from_payload(_extract_json(result.output), fallback_name=name)

    def delete_identity(self, name: str, target: KeyringTarget) -> bool:
        try:
            self.runner.run(self.builder.keys_delete(name, target))
        except CommandFailedError as exc:
            if classify_failure(exc.output) is FailureKind.KEY_NOT_FOUND:
                return False
            raise
        logger.info("deleted keyring identity %s in %s", name, target.home)
        return True

    def _delete_if_present(self, name: str, target: KeyringTarget) -> None:
        if any(identity.name == name for identity in self.list_identities(target)):
            self.delete_identity(name, target)

    @contextmanager
    def _key_file(self, hex_key: str) -> Iterator[Path]:
        if self.temp_dir is not None:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        fd, raw_path = tempfile.mkstemp(
            prefix="key-import-", suffix=".txt", dir=str(self.temp_dir) if self.temp_dir else None
        )
        path = Path(raw_path)
        try:
            os.chmod(path, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(hex_key)
            yield path
        finally:
            path.unlink(missing_ok=True)

    def _import(self, name: str, credential: RawHexKey | Mnemonic | WalletJson, target: KeyringTarget):
        if isinstance(credential, Mnemonic):
            return self.runner.run(self.builder.keys_recover(name, credential.phrase, target))
        hex_key = credential.priv if isinstance(credential, WalletJson) else credential.hex
        with self._key_file(hex_key) as key_path:
            return self.runner.run(self.builder.keys_import_file(name, key_path, target))

    def ensure_identity(
        self, name: str, credential: Credential | None, target: KeyringTarget
    ) -> KeyIdentity:
        """Make ``name`` hold ``credential`` in ``target`` and return its address.

        An existing identity with the same name is deleted first. ``None``
        means the configured fallback identity.
        """
        if credential is None:
            return self.ensure_fallback(target)

        validate_identity_name(name)
        if isinstance(credential, Mnemonic):
            credential = Mnemonic.from_text(credential.phrase)

        self._delete_if_present(name, target)
        kind = describe_credential(credential)
        try:
            result = self._import(name, credential, target)
        except BinaryUnavailableError:
            raise
        except CommandFailedError as exc:
            if classify_failure(exc.output) is not FailureKind.ALREADY_EXISTS:
                raise KeyringImportFailedError(
                    f"importing {kind} credential as {name} failed: {_failure_detail(exc)}"
                ) from exc
            logger.info("identity %s reappeared during import; replacing it", name)
            self.delete_identity(name, target)
            try:
                result = self._import(name, credential, target)
            except CommandFailedError as retry_exc:
                raise KeyringImportFailedError(
                    f"importing {kind} credential as {name} failed: {_failure_detail(retry_exc)}"
                ) from retry_exc

        identity = _identity_from_payload(_extract_json(result.output), fallback_name=name)
        if identity is None:
            identity = self.show_identity(name, target)
        if identity is None:
            raise KeyringImportFailedError(f"import of {name} produced no parseable address")
        logger.info("imported %s credential as %s (%s)", kind, name, identity.address)
        return identity

    def ensure_fallback(self, target: KeyringTarget) -> KeyIdentity:
        spec = self.fallback
        try:
            existing = self.show_identity(spec.name, target)
        except CommandFailedError as exc:
            raise FallbackIdentityUnavailableError(
                f"could not check fallback identity {spec.name}: {_failure_detail(exc)}"
            ) from exc
        if existing is not None:
            return existing
        if not spec.create_if_missing:
            raise FallbackIdentityUnavailableError(f"fallback identity {spec.name} does not exist")

        logger.info("creating fallback identity %s in %s", spec.name, target.home)
        try:
            created = self.create_identity(spec.name, target)
        except (CommandFailedError, KeyringImportFailedError) as exc:
            raise FallbackIdentityUnavailableError(
                f"could not create fallback identity {spec.name}: {exc}"
            ) from exc
        return KeyIdentity(name=created.name, address=created.address)

    def create_identity(self, name: str, target: KeyringTarget) -> NewIdentity:
        self._delete_if_present(name, target)
        try:
            result = self.runner.run(self.builder.keys_add(name, target))
        except CommandFailedError as exc:
            raise KeyringImportFailedError(
                f"creating identity {name} failed: {_failure_detail(exc)}"
            ) from exc
        payload = _extract_json(result.stdout) or _extract_json(result.stderr)
        identity = _identity_from_payload(payload, fallback_name=name)
        mnemonic = payload.get("mnemonic") if isinstance(payload, dict) else None
        if identity is None or not isinstance(mnemonic, str) or not mnemonic.strip():
            raise KeyringImportFailedError(f"keys add for {name} returned no address or mnemonic")
        return NewIdentity(name=identity.name, address=identity.address, mnemonic=mnemonic.strip())

    def export_private_key_hex(self, name: str, target: KeyringTarget) -> RawHexKey:
        result = self.runner.run(self.builder.keys_export_hex(name, target))
        exported = result.stdout.strip() or result.stderr.strip()
        return RawHexKey.from_text(exported.splitlines()[-1] if exported else "")
