"""Supplier provisioning and staking."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError

from pokt_migration.classify import raise_for_failure, raise_for_tx_response
from pokt_migration.commands import (
    BROADCAST_TIMEOUT,
    CommandBuilder,
    KeyringTarget,
    resolve_network,
    validate_shannon_address,
)
from pokt_migration.credentials import Credential
from pokt_migration.errors import (
    CommandFailedError,
    CommandTimeoutError,
    InvalidParameterError,
    MigrationToolError,
    SessionError,
)
from pokt_migration.keyring import KeyringManager
from pokt_migration.orchestrator import BatchOrchestrator, BatchReport, ResolvedSigner, SigningIdentitySpec
from pokt_migration.runner import ProcessRunner
from pokt_migration.schemas import (
    DEFAULT_PUBLIC_URL,
    DEFAULT_SERVICES,
    DEFAULT_STAKE_AMOUNT,
    OPERATOR_REV_SHARE,
    OWNER_REV_SHARE,
    StakeConfig,
    StakeEndpoint,
    StakeService,
    WalletMnemonicsFile,
    WalletRecord,
)
from pokt_migration.sessions import FilesystemSessionStore, WorkUnit, unit_name

logger = logging.getLogger(__name__)

MAX_NODES_PER_SESSION = 100


def _load_yaml_module() -> Any:
    try:
        import yaml
    except Exception as exc:  # pragma: no cover
        raise MigrationToolError(
            "YAML parser not available. Install PyYAML to build stake files."
        ) from exc
    return yaml


def build_stake_config(
    owner_address: str,
    operator_address: str,
    *,
    stake_amount: str = DEFAULT_STAKE_AMOUNT,
    services: Sequence[str] = DEFAULT_SERVICES,
    public_url: str = DEFAULT_PUBLIC_URL,
) -> StakeConfig:
    if owner_address == operator_address:
        raise InvalidParameterError("owner and operator addresses must differ")
    shares = {owner_address: OWNER_REV_SHARE, operator_address: OPERATOR_REV_SHARE}
    try:
        return StakeConfig(
            stake_amount=stake_amount,
            owner_address=owner_address,
            operator_address=operator_address,
            services=[
                StakeService(
                    service_id=service_id,
                    endpoints=[StakeEndpoint(publicly_exposed_url=public_url)],
                    rev_share_percent=dict(shares),
                )
                for service_id in services
            ],
        )
    except ValidationError as exc:
        raise InvalidParameterError(f"invalid stake configuration: {exc}") from exc


def render_stake_yaml(config: StakeConfig) -> str:
    yaml = _load_yaml_module()
    return yaml.safe_dump(config.model_dump(exclude_none=True), sort_keys=False, default_flow_style=False)


def parse_stake_yaml(text: str) -> StakeConfig:
    yaml = _load_yaml_module()
    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise InvalidParameterError(f"invalid stake file YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidParameterError("stake file must be a mapping")
    try:
        return StakeConfig.model_validate(payload)
    except ValidationError as exc:
        raise InvalidParameterError(f"invalid stake file: {exc}") from exc


def stake_file_operator(text: str) -> str | None:
    """Operator address named by a stake file, or ``None`` when the file does not parse."""
    try:
        return parse_stake_yaml(text).operator_address
    except InvalidParameterError:
        return None


@dataclass(frozen=True)
class ProvisionedNode:
    node_number: int
    wallet_name: str
    address: str
    home_path: str
    stake_file: str
    mnemonic: str = field(repr=False)

    def to_record(self) -> WalletRecord:
        return WalletRecord(
            node_number=self.node_number,
            wallet_name=self.wallet_name,
            address=self.address,
            mnemonic=self.mnemonic,
            home_path=self.home_path,
            stake_file=self.stake_file,
        )


@dataclass
class ProvisioningResult:
    session_id: str
    owner_address: str
    network: str
    nodes: list[ProvisionedNode] = field(default_factory=list)
    mnemonics_path: str | None = None

    def to_dict(self, *, include_mnemonics: bool = False) -> dict[str, Any]:
        nodes = []
        for node in self.nodes:
            entry: dict[str, Any] = {
                "node_number": node.node_number,
                "wallet_name": node.wallet_name,
                "address": node.address,
                "home_path": node.home_path,
                "stake_file": node.stake_file,
            }
            if include_mnemonics:
                entry["mnemonic"] = node.mnemonic
            nodes.append(entry)
        return {
            "session_id": self.session_id,
            "owner_address": self.owner_address,
            "network": self.network,
            "number_of_nodes": len(self.nodes),
            "nodes": nodes,
            "mnemonics_path": self.mnemonics_path,
        }


@dataclass
class StakeExecution:
    session_id: str
    network: str
    signer_name: str
    signer_address: str | None
    report: BatchReport

    def to_dict(self) -> dict[str, Any]:
        payload = self.report.to_dict()
        payload.update(
            {
                "network": self.network,
                "signer_address": self.signer_address,
            }
        )
        return payload


class StakeExecutor:
    def __init__(
        self,
        *,
        store: FilesystemSessionStore,
        runner: ProcessRunner,
        builder: CommandBuilder,
        keyring: KeyringManager,
        target: KeyringTarget,
        orchestrator: BatchOrchestrator,
        broadcast_timeout: float = BROADCAST_TIMEOUT,
    ) -> None:
        self.store = store
        self.runner = runner
        self.builder = builder
        self.keyring = keyring
        self.target = target
        self.orchestrator = orchestrator
        self.broadcast_timeout = float(broadcast_timeout)

    def _stake_session(self, session_id: str) -> None:
        descriptor = self.store.get_session(session_id)
        if descriptor.kind != "stake-provisioning":
            raise InvalidParameterError(f"session {session_id} is not a stake session")

    def create_session(
        self,
        owner_address: str,
        node_count: int,
        *,
        network: str = "main",
        stake_amount: str = DEFAULT_STAKE_AMOUNT,
        services: Sequence[str] = DEFAULT_SERVICES,
        public_url: str = DEFAULT_PUBLIC_URL,
    ) -> ProvisioningResult:
        """Create ``node_count`` operator wallets and one stake file per wallet.

        Generated mnemonics are written to ``wallet_mnemonics.json`` even when a
        later node fails, so no created wallet is lost.
        """
        owner_address = validate_shannon_address(owner_address)
        if not 1 <= int(node_count) <= MAX_NODES_PER_SESSION:
            raise InvalidParameterError(f"node count must be between 1 and {MAX_NODES_PER_SESSION}")
        profile = resolve_network(network)
        if not services:
            raise InvalidParameterError("at least one service is required")

        descriptor = self.store.create_session(
            "stake-provisioning",
            {
                "owner_address": owner_address,
                "number_of_nodes": int(node_count),
                "network": profile.name,
                "stake_amount": stake_amount,
            },
        )
        result = ProvisioningResult(
            session_id=descriptor.id, owner_address=owner_address, network=profile.name
        )
        logger.info("provisioning %s nodes in session %s", node_count, descriptor.id)

        try:
            for index in range(1, int(node_count) + 1):
                result.nodes.append(
                    self._provision_node(
                        descriptor.id,
                        index,
                        owner_address,
                        stake_amount=stake_amount,
                        services=services,
                        public_url=public_url,
                    )
                )
        finally:
            if result.nodes:
                path = self.store.save_wallet_mnemonics(
                    descriptor.id, [node.to_record() for node in result.nodes]
                )
                result.mnemonics_path = str(path)
        return result

    def _provision_node(
        self,
        session_id: str,
        index: int,
        owner_address: str,
        *,
        stake_amount: str,
        services: Sequence[str],
        public_url: str,
    ) -> ProvisionedNode:
        name = unit_name(index)
        home = self.store.artifact_path(session_id, index, "wallet_home")
        home.mkdir(parents=True, exist_ok=True)
        wallet = self.keyring.create_identity(name, KeyringTarget(home=str(home), backend=self.target.backend))

        config = build_stake_config(
            owner_address,
            wallet.address,
            stake_amount=stake_amount,
            services=services,
            public_url=public_url,
        )
        stake_path = self.store.record_artifact(session_id, index, "stake_file", render_stake_yaml(config))
        logger.info("node %s: operator %s", name, wallet.address)
        return ProvisionedNode(
            node_number=index,
            wallet_name=name,
            address=wallet.address,
            home_path=str(home),
            stake_file=str(stake_path),
            mnemonic=wallet.mnemonic,
        )

    def _stake_operation(self, network: str, target: KeyringTarget, passphrase: str | None):
        profile = resolve_network(network)

        def stake(unit: WorkUnit, signer: ResolvedSigner) -> dict[str, Any]:
            operator = stake_file_operator(Path(unit.input_ref).read_text(encoding="utf-8"))
            invocation = self.builder.stake_supplier(
                config_file=unit.input_ref,
                signer=signer.name,
                network=profile,
                target=target,
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
            tx_hash = raise_for_tx_response(result.stdout)
            return {"tx_hash": tx_hash, "operator_address": operator, "stake_file": Path(unit.input_ref).name}

        return stake

    def execute_session(
        self,
        session_id: str,
        owner_credential: Credential | None,
        *,
        network: str = "main",
        owner_key_name: str = "owner",
        target: KeyringTarget | None = None,
        passphrase: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StakeExecution:
        """Import the owner credential and submit one stake transaction per stake file."""
        self._stake_session(session_id)
        resolve_network(network)
        target = target or self.target
        if not self.store.list_work_units(session_id):
            raise SessionError(f"session {session_id} has no stake files")
        self.runner.check_binary()

        identity = self.keyring.ensure_identity(owner_key_name, owner_credential, target)
        if owner_credential is None:
            signing = SigningIdentitySpec(fallback=identity.name)
        else:
            signing = SigningIdentitySpec(owner=identity.name)

        expected_owner = self.store.get_session(session_id).params.get("owner_address")
        if expected_owner and expected_owner != identity.address:
            logger.warning(
                "signer %s (%s) is not the session owner %s",
                identity.name,
                identity.address,
                expected_owner,
            )

        report = self.orchestrator.run_batch(
            session_id,
            signing,
            self._stake_operation(network, target, passphrase),
            cancel_event=cancel_event,
        )
        return StakeExecution(
            session_id=session_id,
            network=resolve_network(network).name,
            signer_name=identity.name,
            signer_address=identity.address,
            report=report,
        )

    def execute_with_mnemonic(
        self,
        stake_contents: Sequence[str],
        mnemonic: Credential,
        *,
        network: str = "main",
        key_name: str = "owner",
        target: KeyringTarget | None = None,
        passphrase: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StakeExecution:
        """Stake prepared stake files signed by a recovered owner wallet."""
        if not stake_contents:
            raise InvalidParameterError("at least one stake file is required")
        if len(stake_contents) > MAX_NODES_PER_SESSION:
            raise InvalidParameterError(f"at most {MAX_NODES_PER_SESSION} stake files per request")
        configs = [parse_stake_yaml(content) for content in stake_contents]
        profile = resolve_network(network)

        descriptor = self.store.create_session(
            "stake-provisioning",
            {
                "owner_address": configs[0].owner_address,
                "number_of_nodes": len(configs),
                "network": profile.name,
                "source": "uploaded",
            },
        )
        for index, content in enumerate(stake_contents, start=1):
            self.store.record_artifact(descriptor.id, index, "stake_file", content)
        return self.execute_session(
            descriptor.id,
            mnemonic,
            network=profile.name,
            owner_key_name=key_name,
            target=target,
            passphrase=passphrase,
            cancel_event=cancel_event,
        )

    def generate_unsigned(self, session_id: str, owner_address: str, *, network: str = "main") -> BatchReport:
        """Unsigned stake transactions for client-side signing; falls back to the stake file content."""
        self._stake_session(session_id)
        owner_address = validate_shannon_address(owner_address)
        profile = resolve_network(network)

        def generate(unit: WorkUnit, signer: ResolvedSigner) -> dict[str, Any]:
            content = Path(unit.input_ref).read_text(encoding="utf-8")
            invocation = self.builder.stake_supplier_generate_only(
                config_file=unit.input_ref,
                owner_address=owner_address,
                network=profile,
                target=self.target,
            )
            try:
                result = self.runner.run(invocation)
                unsigned = json.loads(result.stdout)
            except (MigrationToolError, json.JSONDecodeError) as exc:
                logger.warning("generate-only failed for %s; returning stake file: %s", unit.name, exc)
                return {"unsigned_tx": None, "stake_file_content": content, "fallback": True}
            return {"unsigned_tx": unsigned, "stake_file_content": content, "fallback": False}

        return self.orchestrator.run_batch(
            session_id,
            SigningIdentitySpec(override=owner_address),
            generate,
            inter_transaction_delay=0,
            require_binary=False,
            rerun_succeeded=True,
            persist_results=False,
        )

    def create_node_and_stake(
        self,
        owner_mnemonic: Credential,
        owner_address: str,
        *,
        network: str = "main",
        key_name: str = "owner",
        target: KeyringTarget | None = None,
        passphrase: str | None = None,
    ) -> tuple[ProvisioningResult, StakeExecution]:
        provisioning = self.create_session(owner_address, 1, network=network)
        execution = self.execute_session(
            provisioning.session_id,
            owner_mnemonic,
            network=network,
            owner_key_name=key_name,
            target=target,
            passphrase=passphrase,
        )
        return provisioning, execution

    def status(self, session_id: str) -> dict[str, Any]:
        self._stake_session(session_id)
        return self.store.session_status(session_id)

    def mnemonics(self, session_id: str) -> WalletMnemonicsFile:
        self._stake_session(session_id)
        return self.store.load_wallet_mnemonics(session_id)
