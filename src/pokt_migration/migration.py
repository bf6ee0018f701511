"""Morse to Shannon account migration."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from pydantic import ValidationError

from pokt_migration.classify import chain_error_for, raise_for_failure, raise_for_tx_response
from pokt_migration.commands import (
    BROADCAST_TIMEOUT,
    CommandBuilder,
    KeyringTarget,
    resolve_network,
    validate_shannon_address,
)
from pokt_migration.credentials import Credential, RawHexKey, WalletJson, clean_hex_key, hex_of
from pokt_migration.crypto.morse_keys import MorseKeyError, derive_morse_address
from pokt_migration.errors import (
    ChainError,
    CommandFailedError,
    CommandTimeoutError,
    FallbackIdentityUnavailableError,
    InvalidCredentialFormatError,
    InvalidParameterError,
    KeyringImportFailedError,
    MigrationToolError,
)
from pokt_migration.keyring import KeyringManager
from pokt_migration.orchestrator import BatchOrchestrator, BatchReport, ResolvedSigner, SigningIdentitySpec
from pokt_migration.runner import ProcessRunner
from pokt_migration.schemas import MigrationOutput
from pokt_migration.sessions import FilesystemSessionStore, WorkUnit

logger = logging.getLogger(__name__)

ARMORED_REQUIRED_FIELDS = ("kdf", "salt", "secparam", "ciphertext")
_CLAIM_FIELD_RES = {
    "morse_public_key": re.compile(r"morse_public_key:\s*(\S+)"),
    "morse_signature": re.compile(r"morse_signature:\s*(\S+)"),
    "shannon_dest_address": re.compile(r"shannon_dest_address:\s*(\S+)"),
    "shannon_signing_address": re.compile(r"shannon_signing_address:\s*(\S+)"),
}


@dataclass(frozen=True)
class MigrationRequest:
    credentials: Sequence[RawHexKey | WalletJson]
    destination: str
    network: str = "beta"
    signer_credential: Credential | None = None


@dataclass(frozen=True)
class SignerDecision:
    signer: SigningIdentitySpec
    reason: str


@dataclass
class MigrationResult:
    session_id: str
    network: str
    status: str
    signer: str
    signer_source: str
    signer_reason: str
    destination: str | None = None
    mappings: list[dict[str, Any]] = field(default_factory=list)
    tx_hash: str | None = None
    tx_code: int | None = None
    extracted: dict[str, str | None] = field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None
    attempts: int = 0
    report: BatchReport | None = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "session_id": self.session_id,
            "network": self.network,
            "status": self.status,
            "signer": {"name": self.signer, "source": self.signer_source, "reason": self.signer_reason},
            "attempts": self.attempts,
            "tx_hash": self.tx_hash,
            "tx_code": self.tx_code,
            "error": self.error,
            "error_type": self.error_type,
        }
        if self.destination is not None:
            payload["destination"] = self.destination
            payload["mappings"] = self.mappings
            payload["accounts_migrated"] = len(self.mappings)
        if self.extracted:
            payload["extracted"] = self.extracted
        return payload


def _check_source_key(credential: RawHexKey | WalletJson) -> str:
    hex_key = clean_hex_key(hex_of(credential))
    try:
        derived = derive_morse_address(hex_key)
    except MorseKeyError as exc:
        raise InvalidCredentialFormatError(str(exc)) from exc
    if isinstance(credential, WalletJson) and credential.addr and credential.addr != derived:
        raise InvalidCredentialFormatError("wallet JSON address does not match its private key")
    return hex_key


def describe_keys(credentials: Sequence[RawHexKey | WalletJson]) -> list[dict[str, Any]]:
    """Morse addresses for a set of source keys, without exposing the keys."""
    described = []
    for position, credential in enumerate(credentials, start=1):
        hex_key = _check_source_key(credential)
        described.append(
            {
                "index": position,
                "morse_address": derive_morse_address(hex_key),
                "key_length": len(hex_key),
                "format": "wallet_json" if isinstance(credential, WalletJson) else "raw_hex",
            }
        )
    return described


def parse_claim_output(stdout: str) -> dict[str, str | None]:
    extracted: dict[str, str | None] = {}
    for name, pattern in _CLAIM_FIELD_RES.items():
        match = pattern.search(stdout)
        extracted[name] = match.group(1).strip() if match else None
    return extracted


def validate_armored_key(armored_key: Any) -> dict[str, Any]:
    if isinstance(armored_key, str):
        try:
            armored_key = json.loads(armored_key)
        except json.JSONDecodeError as exc:
            raise InvalidParameterError("armored key must be a JSON object") from exc
    if not isinstance(armored_key, dict):
        raise InvalidParameterError("armored key must be a JSON object")
    missing = [name for name in ARMORED_REQUIRED_FIELDS if armored_key.get(name) in (None, "")]
    if missing:
        raise InvalidParameterError("armored key is missing: " + ", ".join(missing))
    return armored_key


class MigrationExecutor:
    def __init__(
        self,
        *,
        store: FilesystemSessionStore,
        runner: ProcessRunner,
        builder: CommandBuilder,
        keyring: KeyringManager,
        target: KeyringTarget,
        orchestrator: BatchOrchestrator,
        max_keys_per_request: int = 10,
        broadcast_timeout: float = BROADCAST_TIMEOUT,
    ) -> None:
        self.store = store
        self.runner = runner
        self.builder = builder
        self.keyring = keyring
        self.target = target
        self.orchestrator = orchestrator
        self.max_keys_per_request = int(max_keys_per_request)
        self.broadcast_timeout = float(broadcast_timeout)

    def _decide_signer(self, session_id: str, signer_credential: Credential | None) -> SignerDecision:
        """Caller-supplied credential if it imports cleanly, otherwise the fallback identity."""
        override: str | None = None
        reason = "no signer credential supplied; using fallback identity"
        if signer_credential is not None:
            name = f"shannon-{session_id[:8]}"
            try:
                identity = self.keyring.ensure_identity(name, signer_credential, self.target)
            except (KeyringImportFailedError, CommandFailedError) as exc:
                logger.warning("signer import failed for session %s: %s", session_id, exc)
                reason = f"signer credential import failed ({exc.__class__.__name__}); using fallback identity"
            else:
                override = identity.name
                reason = f"caller credential imported as {identity.name} ({identity.address})"

        fallback_name = self.keyring.fallback.name
        fallback_available = True
        if override is None:
            try:
                self.keyring.ensure_fallback(self.target)
            except FallbackIdentityUnavailableError as exc:
                logger.error("fallback identity unavailable: %s", exc)
                fallback_available = False
                reason = f"{reason}; fallback unavailable"

        return SignerDecision(
            signer=SigningIdentitySpec(
                override=override, fallback=fallback_name, fallback_available=fallback_available
            ),
            reason=reason,
        )

    def _result_from_report(
        self,
        report: BatchReport,
        *,
        network: str,
        decision: SignerDecision,
        destination: str | None = None,
    ) -> MigrationResult:
        unit = report.units[0]
        output = unit.output or {}
        return MigrationResult(
            session_id=report.session_id,
            network=network,
            status=unit.status,
            signer=report.signer.name,
            signer_source=report.signer.source,
            signer_reason=decision.reason,
            destination=destination,
            mappings=list(output.get("mappings", [])),
            tx_hash=output.get("tx_hash"),
            tx_code=output.get("tx_code"),
            extracted=dict(output.get("extracted", {})),
            error=unit.error,
            error_type=unit.error_type,
            attempts=unit.attempts,
            report=report,
        )

    def execute(self, request: MigrationRequest) -> MigrationResult:
        credentials = list(request.credentials)
        if not credentials:
            raise InvalidParameterError("at least one Morse private key is required")
        if len(credentials) > self.max_keys_per_request:
            raise InvalidParameterError(
                f"at most {self.max_keys_per_request} Morse private keys per request"
            )
        destination = validate_shannon_address(request.destination)
        network = resolve_network(request.network)
        cleaned = [_check_source_key(credential) for credential in credentials]

        descriptor = self.store.create_session(
            "migration",
            {"network": network.name, "destination": destination, "key_count": len(cleaned)},
        )
        session_id = descriptor.id
        logger.info("migration session %s: %s keys to %s", session_id, len(cleaned), destination)

        try:
            self.store.record_artifact(session_id, 1, "migration_input", json.dumps(cleaned, indent=2))
            decision = self._decide_signer(session_id, request.signer_credential)
            output_path = self.store.artifact_path(session_id, 1, "migration_output")

            def claim(unit: WorkUnit, signer: ResolvedSigner) -> dict[str, Any]:
                invocation = self.builder.claim_accounts(
                    input_file=unit.input_ref,
                    output_file=output_path,
                    signer=signer.name,
                    destination=destination,
                    network=network,
                    target=self.target,
                    timeout=self.broadcast_timeout,
                )
                try:
                    self.runner.run(invocation)
                except CommandTimeoutError:
                    raise
                except CommandFailedError as exc:
                    raise_for_failure(exc)
                    raise
                if not output_path.exists():
                    raise MigrationToolError("claim-accounts did not produce an output file")
                try:
                    parsed = MigrationOutput.model_validate_json(output_path.read_text(encoding="utf-8"))
                except ValidationError as exc:
                    raise MigrationToolError("claim-accounts output has no mappings array") from exc
                return {
                    "mappings": [mapping.model_dump(exclude_none=True) for mapping in parsed.mappings],
                    "tx_hash": parsed.tx_hash,
                    "tx_code": parsed.tx_code,
                }

            report = self.orchestrator.run_batch(session_id, decision.signer, claim)
        except Exception:
            self.store.cleanup_migration_inputs(session_id)
            raise

        result = self._result_from_report(
            report, network=network.name, decision=decision, destination=destination
        )
        if not result.succeeded:
            self.store.cleanup_migration_inputs(session_id)
        return result

    def claim_armored(
        self,
        armored_key: Any,
        *,
        network: str = "beta",
        passphrase: str | None = None,
        signer_credential: Credential | None = None,
    ) -> MigrationResult:
        """Migrate a single account from an encrypted (armored) Morse key export."""
        armored = validate_armored_key(armored_key)
        profile = resolve_network(network)

        descriptor = self.store.create_session(
            "migration", {"network": profile.name, "mode": "armored", "key_count": 1}
        )
        session_id = descriptor.id
        key_path = self.store.record_artifact(
            session_id, 1, "armored_key", json.dumps(armored, indent=2, sort_keys=True)
        )
        decision = self._decide_signer(session_id, signer_credential)

        def claim(unit: WorkUnit, signer: ResolvedSigner) -> dict[str, Any]:
            invocation = self.builder.claim_account(
                armored_key_file=key_path,
                signer=signer.name,
                network=profile,
                target=self.target,
                passphrase=passphrase,
                timeout=self.broadcast_timeout,
            )
            try:
                result = self.runner.run(invocation)
            except CommandTimeoutError:
                raise
            except CommandFailedError as exc:
                raise_for_failure(exc)
                raise
            extracted = parse_claim_output(result.stdout)
            tx_hash = raise_for_tx_response(result.stdout)
            if tx_hash is None:
                typed = chain_error_for(result.stderr)
                if typed is not None:
                    raise typed
                raise ChainError(
                    "armored key was processed but no transaction hash was reported",
                    details=result.stderr,
                )
            return {"tx_hash": tx_hash, "tx_code": 0, "extracted": extracted}

        report = self.orchestrator.run_batch(session_id, decision.signer, claim)
        return self._result_from_report(report, network=profile.name, decision=decision)

    def status(self, session_id: str) -> dict[str, Any]:
        descriptor = self.store.get_session(session_id)
        if descriptor.kind != "migration":
            raise InvalidParameterError(f"session {session_id} is not a migration session")
        output_path = self.store.artifact_path(session_id, 1, "migration_output")
        payload: dict[str, Any] = {
            "session_id": session_id,
            "created_at": descriptor.created_at,
            "params": descriptor.params,
        }
        if output_path.exists():
            try:
                parsed = MigrationOutput.model_validate_json(output_path.read_text(encoding="utf-8"))
            except ValidationError:
                payload["status"] = "failed"
                payload["error"] = "output file is not valid migration output"
                return payload
            payload["status"] = "completed"
            payload["accounts_migrated"] = len(parsed.mappings)
            payload["tx_hash"] = parsed.tx_hash
            return payload

        units = self.store.list_work_units(session_id)
        payload["status"] = units[0].status if units else "pending"
        if units and units[0].last_error:
            payload["error"] = units[0].last_error
        return payload
