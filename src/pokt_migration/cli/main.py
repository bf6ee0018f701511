"""Command-line interface for pokt-migrate."""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Any, Iterator, Sequence

from pokt_migration.cli.config import CLIConfig, ConfigError, load_cli_config
from pokt_migration.commands import CommandBuilder, KeyringTarget, resolve_network
from pokt_migration.credentials import (
    Credential,
    Mnemonic,
    RawHexKey,
    WalletJson,
    parse_credential,
    parse_source_key,
)
from pokt_migration.errors import (
    BinaryUnavailableError,
    ChainError,
    CommandTimeoutError,
    InvalidParameterError,
    MigrationToolError,
    NodeUnavailableError,
    SessionNotFoundError,
)
from pokt_migration.keyring import FallbackIdentitySpec, KeyringManager
from pokt_migration.logs import configure_logging, sanitize_text
from pokt_migration.migration import MigrationExecutor, MigrationRequest, describe_keys
from pokt_migration.orchestrator import BatchOrchestrator, BatchReport
from pokt_migration.retry import RetryPolicy
from pokt_migration.rpc import NodeStatusClient
from pokt_migration.runner import ProcessRunner, RunnerConfig
from pokt_migration.schemas import DEFAULT_PUBLIC_URL, DEFAULT_SERVICES, DEFAULT_STAKE_AMOUNT
from pokt_migration.sessions import FilesystemSessionStore
from pokt_migration.staking import StakeExecutor

EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
EXIT_COMMAND_ERROR = 2
EXIT_TIMEOUT = 3
EXIT_BATCH_FAILED = 4


def _sdk_version() -> str:
    try:
        return pkg_version("pokt-migration")
    except PackageNotFoundError:
        return "0.0.0+local"


def _add_network(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--network",
        default=None,
        help="main or beta (aliases: mainnet, testnet); default from config",
    )


def _add_keyring(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--home", default=None, help="pocketd home directory override")
    parser.add_argument("--keyring-backend", default=None, help="Keyring backend override")


def _add_signer(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--signer-key-file",
        default=None,
        help="File holding the signing key (hex, wallet JSON or mnemonic)",
    )
    group.add_argument(
        "--signer-mnemonic-env",
        default=None,
        help="Environment variable holding the signing mnemonic",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pokt-migrate")
    parser.add_argument(
        "--version",
        action="version",
        version=f"pokt-migrate {_sdk_version()}",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to CLI config TOML (default: ~/.pokt_migration/config.toml)",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    sub = parser.add_subparsers(dest="command", required=True)

    version = sub.add_parser("version", help="Show CLI version and configured binary")
    version.add_argument("--json", action="store_true")

    health = sub.add_parser("health", help="Check the pocketd binary and the network RPC node")
    _add_network(health)
    health.add_argument("--skip-rpc", action="store_true", help="Only check the local binary")
    health.add_argument("--json", action="store_true")

    keys = sub.add_parser("keys", help="Inspect Morse source keys locally")
    keys_sub = keys.add_subparsers(dest="keys_command", required=True)
    keys_describe = keys_sub.add_parser("describe", help="Derive Morse addresses from a keys file")
    keys_describe.add_argument("--keys-file", required=True)
    keys_describe.add_argument("--json", action="store_true")

    migrate = sub.add_parser("migrate", help="Claim Morse accounts to a Shannon destination")
    migrate.add_argument(
        "--keys-file",
        required=True,
        help="Morse private keys: one hex key per line, a JSON array, or wallet JSON",
    )
    migrate.add_argument("--destination", required=True, help="Shannon destination address")
    _add_network(migrate)
    _add_signer(migrate)
    migrate.add_argument("--json", action="store_true")

    claim_armored = sub.add_parser(
        "claim-armored", help="Claim one Morse account from an armored key export"
    )
    claim_armored.add_argument("--armored-file", required=True)
    claim_armored.add_argument(
        "--passphrase-env",
        default=None,
        help="Environment variable holding the armored key passphrase",
    )
    _add_network(claim_armored)
    _add_signer(claim_armored)
    claim_armored.add_argument("--json", action="store_true")

    migration_status = sub.add_parser("migration-status", help="Show a migration session's state")
    migration_status.add_argument("--session-id", required=True)
    migration_status.add_argument("--json", action="store_true")

    stake = sub.add_parser("stake", help="Provision and stake suppliers")
    stake_sub = stake.add_subparsers(dest="stake_command", required=True)

    stake_create = stake_sub.add_parser("create", help="Create operator wallets and stake files")
    stake_create.add_argument("--owner-address", required=True)
    stake_create.add_argument("--nodes", type=int, required=True)
    stake_create.add_argument("--stake-amount", default=DEFAULT_STAKE_AMOUNT)
    stake_create.add_argument(
        "--services",
        default=",".join(DEFAULT_SERVICES),
        help="Comma-separated service ids",
    )
    stake_create.add_argument("--public-url", default=DEFAULT_PUBLIC_URL)
    _add_network(stake_create)
    stake_create.add_argument("--json", action="store_true")

    stake_execute = stake_sub.add_parser("execute", help="Stake every node of a session")
    stake_execute.add_argument("--session-id", required=True)
    owner_group = stake_execute.add_mutually_exclusive_group(required=True)
    owner_group.add_argument("--owner-key-file", default=None)
    owner_group.add_argument("--owner-mnemonic-env", default=None)
    stake_execute.add_argument("--key-name", default="owner")
    stake_execute.add_argument("--passphrase-env", default=None)
    _add_network(stake_execute)
    _add_keyring(stake_execute)
    stake_execute.add_argument("--json", action="store_true")

    stake_local = stake_sub.add_parser("local", help="Stake prepared stake files with a mnemonic")
    stake_local.add_argument("--stake-file", action="append", required=True, dest="stake_files")
    stake_local.add_argument("--mnemonic-env", required=True)
    stake_local.add_argument("--key-name", default="owner")
    _add_network(stake_local)
    _add_keyring(stake_local)
    stake_local.add_argument("--json", action="store_true")

    stake_unsigned = stake_sub.add_parser(
        "unsigned", help="Generate unsigned stake transactions for external signing"
    )
    stake_unsigned.add_argument("--session-id", required=True)
    stake_unsigned.add_argument("--owner-address", required=True)
    _add_network(stake_unsigned)
    stake_unsigned.add_argument("--json", action="store_true")

    stake_create_node = stake_sub.add_parser(
        "create-node", help="Create one operator wallet and stake it immediately"
    )
    stake_create_node.add_argument("--owner-address", required=True)
    stake_create_node.add_argument("--owner-mnemonic-env", required=True)
    stake_create_node.add_argument("--key-name", default="owner")
    _add_network(stake_create_node)
    _add_keyring(stake_create_node)
    stake_create_node.add_argument("--json", action="store_true")

    stake_status = stake_sub.add_parser("status", help="Show a stake session's state")
    stake_status.add_argument("--session-id", required=True)
    stake_status.add_argument("--json", action="store_true")

    stake_mnemonics = stake_sub.add_parser(
        "mnemonics", help="Export the operator wallet mnemonics of a session"
    )
    stake_mnemonics.add_argument("--session-id", required=True)
    stake_mnemonics.add_argument(
        "--output",
        default=None,
        help="Write the mnemonics document to this file (mode 0600) instead of stdout",
    )

    sessions = sub.add_parser("sessions", help="Inspect session records")
    sessions_sub = sessions.add_subparsers(dest="sessions_command", required=True)
    sessions_show = sessions_sub.add_parser("show", help="Show any session's state")
    sessions_show.add_argument("--session-id", required=True)
    sessions_show.add_argument("--json", action="store_true")

    cleanup = sub.add_parser("cleanup", help="Remove stale temporary files")
    cleanup.add_argument(
        "--max-age",
        type=float,
        default=None,
        help="Age in seconds (default: temp_file_retention from config)",
    )
    cleanup.add_argument("--json", action="store_true")

    return parser


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {sanitize_text(message)}", file=stderr)
    return code


def _print_tool_error(stderr, exc: MigrationToolError) -> int:
    if isinstance(exc, InvalidParameterError):
        return _print_error(stderr, "validation error", str(exc), code=EXIT_VALIDATION_ERROR)
    if isinstance(exc, SessionNotFoundError):
        return _print_error(stderr, "session error", str(exc), code=EXIT_VALIDATION_ERROR)
    if isinstance(exc, CommandTimeoutError):
        return _print_error(stderr, "timeout error", str(exc), code=EXIT_TIMEOUT)
    if isinstance(exc, BinaryUnavailableError):
        return _print_error(stderr, "pocketd error", str(exc), code=EXIT_COMMAND_ERROR)
    if isinstance(exc, ChainError):
        return _print_error(stderr, "chain error", str(exc), code=EXIT_COMMAND_ERROR)
    if isinstance(exc, NodeUnavailableError):
        return _print_error(stderr, "network error", str(exc), code=EXIT_COMMAND_ERROR)
    return _print_error(stderr, f"{exc.error_type} error", str(exc), code=EXIT_COMMAND_ERROR)


def _emit(payload: dict[str, Any], *, as_json: bool, stdout, fields: Sequence[str]) -> None:
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return
    for name in fields:
        print(f"{name}: {payload.get(name)}", file=stdout)


def _read_secret_file(path: str, label: str) -> str:
    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise InvalidParameterError(f"cannot read {label} file {path}: {exc.strerror or exc}") from exc
    if not text:
        raise InvalidParameterError(f"{label} file {path} is empty")
    return text


def _read_secret_env(variable: str, label: str) -> str:
    value = os.getenv(variable)
    if value is None or not value.strip():
        raise InvalidParameterError(f"environment variable {variable} with the {label} is not set")
    return value.strip()


def _load_source_keys(path: str) -> list[RawHexKey | WalletJson]:
    """Keys file: a JSON array (hex strings or wallet objects), one wallet object, or one key per line."""
    text = _read_secret_file(path, "keys")
    if text.startswith("["):
        try:
            items = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidParameterError("keys file looks like a JSON array but does not parse") from exc
        keys: list[RawHexKey | WalletJson] = []
        for item in items:
            if isinstance(item, dict):
                keys.append(WalletJson.from_mapping(item))
            elif isinstance(item, str):
                keys.append(parse_source_key(item))
            else:
                raise InvalidParameterError("keys file entries must be strings or wallet objects")
        return keys
    if text.startswith("{"):
        return [parse_source_key(text)]
    return [
        parse_source_key(line)
        for line in (raw.strip() for raw in text.splitlines())
        if line and not line.startswith("#")
    ]


def _signer_credential(args) -> Credential | None:
    if getattr(args, "signer_key_file", None):
        return parse_credential(_read_secret_file(args.signer_key_file, "signer key"))
    if getattr(args, "signer_mnemonic_env", None):
        return Mnemonic.from_text(_read_secret_env(args.signer_mnemonic_env, "signer mnemonic"))
    return None


def _optional_passphrase(args) -> str | None:
    variable = getattr(args, "passphrase_env", None)
    if not variable:
        return None
    return _read_secret_env(variable, "passphrase")


@dataclass
class _Engine:
    store: FilesystemSessionStore
    runner: ProcessRunner
    builder: CommandBuilder
    keyring: KeyringManager
    target: KeyringTarget
    orchestrator: BatchOrchestrator

    def migration(self, config: CLIConfig) -> MigrationExecutor:
        return MigrationExecutor(
            store=self.store,
            runner=self.runner,
            builder=self.builder,
            keyring=self.keyring,
            target=self.target,
            orchestrator=self.orchestrator,
            max_keys_per_request=config.max_keys_per_request,
            broadcast_timeout=config.broadcast_timeout,
        )

    def staking(self, config: CLIConfig) -> StakeExecutor:
        return StakeExecutor(
            store=self.store,
            runner=self.runner,
            builder=self.builder,
            keyring=self.keyring,
            target=self.target,
            orchestrator=self.orchestrator,
            broadcast_timeout=config.broadcast_timeout,
        )


def _build_engine(config: CLIConfig, args=None) -> _Engine:
    home = getattr(args, "home", None) or config.pocketd_home
    backend = getattr(args, "keyring_backend", None) or config.keyring_backend
    store = FilesystemSessionStore(config.data_dir)
    runner = ProcessRunner(
        RunnerConfig(
            binary=config.pocketd_command,
            extra_path=config.extra_path,
            default_timeout=config.command_timeout,
        )
    )
    builder = CommandBuilder(config.pocketd_command)
    keyring = KeyringManager(
        runner,
        builder,
        temp_dir=store.temp_dir,
        fallback=FallbackIdentitySpec(name=config.fallback_identity),
    )
    orchestrator = BatchOrchestrator(
        store,
        runner,
        retry_policy=RetryPolicy(max_attempts=config.max_retries, base_delay=config.retry_base_delay),
        inter_transaction_delay=config.inter_transaction_delay,
    )
    return _Engine(
        store=store,
        runner=runner,
        builder=builder,
        keyring=keyring,
        target=KeyringTarget(home=home, backend=backend),
        orchestrator=orchestrator,
    )


def _network_name(args, config: CLIConfig) -> str:
    return resolve_network(getattr(args, "network", None) or config.default_network).name


@contextmanager
def _cancel_on_interrupt(stderr) -> Iterator[threading.Event]:
    """First Ctrl-C stops the batch at the next unit boundary."""
    event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield event
        return

    def _handler(signum, frame) -> None:
        if event.is_set():
            raise KeyboardInterrupt
        print("interrupt received; stopping after the current transaction", file=stderr)
        event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield event
    finally:
        signal.signal(signal.SIGINT, previous)


def _batch_exit_code(report: BatchReport) -> int:
    if report.failed or report.pending:
        return EXIT_BATCH_FAILED
    return EXIT_SUCCESS


def _run_version(*, config: CLIConfig, as_json: bool, stdout) -> int:
    payload = {
        "cli": "pokt-migrate",
        "version": _sdk_version(),
        "pocketd_command": config.pocketd_command,
        "default_network": config.default_network,
        "data_dir": config.data_dir,
    }
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"pokt-migrate {payload['version']}", file=stdout)
        print(f"pocketd: {payload['pocketd_command']}", file=stdout)
        print(f"default network: {payload['default_network']}", file=stdout)
        print(f"data dir: {payload['data_dir']}", file=stdout)
    return EXIT_SUCCESS


def _run_health(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    profile = resolve_network(_network_name(args, config))
    healthy = True
    binary: dict[str, Any]
    try:
        binary = {"ok": True, "version": engine.runner.check_binary()}
    except BinaryUnavailableError as exc:
        healthy = False
        binary = {"ok": False, "error": sanitize_text(str(exc))}

    rpc: dict[str, Any] | None = None
    if not args.skip_rpc:
        client = NodeStatusClient(profile.node_url, timeout=config.command_timeout)
        try:
            status = client.get_status()
        except NodeUnavailableError as exc:
            healthy = False
            rpc = {"ok": False, "url": profile.node_url, "error": str(exc)}
        else:
            rpc = {"ok": True, "url": profile.node_url, **status.to_dict()}
            if status.network and status.network != profile.chain_id:
                healthy = False
                rpc["ok"] = False
                rpc["error"] = f"node reports chain {status.network}, expected {profile.chain_id}"

    payload = {
        "status": "healthy" if healthy else "unhealthy",
        "network": profile.name,
        "binary": binary,
        "rpc": rpc,
        "data_dir": str(engine.store.data_dir),
    }
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"status: {payload['status']}", file=stdout)
        print(f"network: {profile.name}", file=stdout)
        print(f"pocketd: {binary.get('version') or binary.get('error')}", file=stdout)
        if rpc is not None:
            detail = rpc.get("error") or f"height {rpc.get('latest_block_height')}"
            print(f"rpc: {profile.node_url} ({detail})", file=stdout)
    return EXIT_SUCCESS if healthy else EXIT_COMMAND_ERROR


def _run_keys_describe(*, args, stdout) -> int:
    described = describe_keys(_load_source_keys(args.keys_file))
    if args.json:
        print(json.dumps({"keys": described}, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    for entry in described:
        print(f"{entry['index']}: {entry['morse_address']} ({entry['format']})", file=stdout)
    return EXIT_SUCCESS


_MIGRATION_FIELDS = (
    "session_id",
    "status",
    "network",
    "tx_hash",
    "accounts_migrated",
    "error",
    "error_type",
)


def _run_migrate(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    request = MigrationRequest(
        credentials=_load_source_keys(args.keys_file),
        destination=args.destination,
        network=_network_name(args, config),
        signer_credential=_signer_credential(args),
    )
    result = engine.migration(config).execute(request)
    payload = result.to_dict()
    _emit(payload, as_json=args.json, stdout=stdout, fields=_MIGRATION_FIELDS)
    if not args.json:
        print(f"signer: {result.signer} ({result.signer_source})", file=stdout)
        for mapping in result.mappings:
            print(
                f"mapping: {mapping.get('morse_src_address')} -> {mapping.get('shannon_dest_address')}",
                file=stdout,
            )
    return EXIT_SUCCESS if result.succeeded else EXIT_BATCH_FAILED


def _run_claim_armored(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    armored = _read_secret_file(args.armored_file, "armored key")
    result = engine.migration(config).claim_armored(
        armored,
        network=_network_name(args, config),
        passphrase=_optional_passphrase(args),
        signer_credential=_signer_credential(args),
    )
    payload = result.to_dict()
    _emit(
        payload,
        as_json=args.json,
        stdout=stdout,
        fields=("session_id", "status", "network", "tx_hash", "error", "error_type"),
    )
    if not args.json:
        for name, value in result.extracted.items():
            print(f"{name}: {value}", file=stdout)
    return EXIT_SUCCESS if result.succeeded else EXIT_BATCH_FAILED


def _run_migration_status(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    payload = engine.migration(config).status(args.session_id)
    _emit(
        payload,
        as_json=args.json,
        stdout=stdout,
        fields=("session_id", "status", "created_at", "accounts_migrated", "tx_hash", "error"),
    )
    return EXIT_SUCCESS


def _print_batch(report_payload: dict[str, Any], *, stdout) -> None:
    print(f"session_id: {report_payload['session_id']}", file=stdout)
    print(
        f"signer: {report_payload['signer']['name']} ({report_payload['signer']['source']})",
        file=stdout,
    )
    print(
        f"total: {report_payload['total']} successful: {report_payload['successful']} "
        f"failed: {report_payload['failed']} pending: {report_payload['pending']}",
        file=stdout,
    )
    for unit in report_payload["units"]:
        output = unit.get("output") or {}
        detail = output.get("tx_hash") or unit.get("error") or ""
        print(f"{unit['name']}: {unit['status']} {detail}".rstrip(), file=stdout)
    if report_payload.get("cancelled"):
        print("cancelled: true", file=stdout)
    if report_payload.get("aborted_reason"):
        print(f"aborted: {report_payload['aborted_reason']}", file=stdout)


def _run_stake_create(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    services = [part.strip() for part in args.services.split(",") if part.strip()]
    result = engine.staking(config).create_session(
        args.owner_address,
        args.nodes,
        network=_network_name(args, config),
        stake_amount=args.stake_amount,
        services=services,
        public_url=args.public_url,
    )
    payload = result.to_dict()
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    print(f"session_id: {payload['session_id']}", file=stdout)
    print(f"owner_address: {payload['owner_address']}", file=stdout)
    print(f"number_of_nodes: {payload['number_of_nodes']}", file=stdout)
    for node in payload["nodes"]:
        print(f"{node['wallet_name']}: {node['address']} {node['stake_file']}", file=stdout)
    print(f"mnemonics: {payload['mnemonics_path']}", file=stdout)
    return EXIT_SUCCESS


def _run_stake_execute(*, args, config: CLIConfig, engine: _Engine, stdout, stderr) -> int:
    if args.owner_key_file:
        credential = parse_credential(_read_secret_file(args.owner_key_file, "owner key"))
    else:
        credential = Mnemonic.from_text(_read_secret_env(args.owner_mnemonic_env, "owner mnemonic"))
    with _cancel_on_interrupt(stderr) as cancel_event:
        execution = engine.staking(config).execute_session(
            args.session_id,
            credential,
            network=_network_name(args, config),
            owner_key_name=args.key_name,
            passphrase=_optional_passphrase(args),
            cancel_event=cancel_event,
        )
    payload = execution.to_dict()
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        _print_batch(payload, stdout=stdout)
    return _batch_exit_code(execution.report)


def _run_stake_local(*, args, config: CLIConfig, engine: _Engine, stdout, stderr) -> int:
    contents = [_read_secret_file(path, "stake") for path in args.stake_files]
    mnemonic = Mnemonic.from_text(_read_secret_env(args.mnemonic_env, "owner mnemonic"))
    with _cancel_on_interrupt(stderr) as cancel_event:
        execution = engine.staking(config).execute_with_mnemonic(
            contents,
            mnemonic,
            network=_network_name(args, config),
            key_name=args.key_name,
            cancel_event=cancel_event,
        )
    payload = execution.to_dict()
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        _print_batch(payload, stdout=stdout)
    return _batch_exit_code(execution.report)


def _run_stake_unsigned(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    report = engine.staking(config).generate_unsigned(
        args.session_id, args.owner_address, network=_network_name(args, config)
    )
    payload = report.to_dict()
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"session_id: {payload['session_id']}", file=stdout)
        for unit in payload["units"]:
            output = unit.get("output") or {}
            kind = "stake file content" if output.get("fallback") else "unsigned transaction"
            print(f"{unit['name']}: {unit['status']} ({kind})", file=stdout)
    return _batch_exit_code(report)


def _run_stake_create_node(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    mnemonic = Mnemonic.from_text(_read_secret_env(args.owner_mnemonic_env, "owner mnemonic"))
    provisioning, execution = engine.staking(config).create_node_and_stake(
        mnemonic,
        args.owner_address,
        network=_network_name(args, config),
        key_name=args.key_name,
    )
    payload = {"provisioning": provisioning.to_dict(), "stake": execution.to_dict()}
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        node = provisioning.nodes[0]
        print(f"operator_address: {node.address}", file=stdout)
        _print_batch(payload["stake"], stdout=stdout)
    return _batch_exit_code(execution.report)


def _run_stake_status(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    payload = engine.staking(config).status(args.session_id)
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    print(f"session_id: {payload['session_id']}", file=stdout)
    print(f"wallets: {len(payload['wallets'])}", file=stdout)
    for name, count in sorted(payload["totals"].items()):
        print(f"{name}: {count}", file=stdout)
    print(f"has_wallet_mnemonics: {payload['has_wallet_mnemonics']}", file=stdout)
    return EXIT_SUCCESS


def _run_stake_mnemonics(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    document = engine.staking(config).mnemonics(args.session_id)
    text = json.dumps(document.model_dump(by_alias=True), indent=2, sort_keys=True) + "\n"
    if args.output:
        output = Path(args.output)
        fd = os.open(str(output), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        print(f"wrote {document.total_wallets} wallets to {output}", file=stdout)
        return EXIT_SUCCESS
    stdout.write(text)
    return EXIT_SUCCESS


def _run_sessions_show(*, args, engine: _Engine, stdout) -> int:
    payload = engine.store.session_status(args.session_id)
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    print(f"session_id: {payload['session_id']}", file=stdout)
    print(f"kind: {payload['kind']}", file=stdout)
    print(f"created_at: {payload['created_at']}", file=stdout)
    for unit in payload["units"]:
        print(f"{unit['name']}: {unit['status']} (attempts={unit['attempts']})", file=stdout)
    return EXIT_SUCCESS


def _run_cleanup(*, args, config: CLIConfig, engine: _Engine, stdout) -> int:
    max_age = config.temp_file_retention if args.max_age is None else args.max_age
    if max_age < 0:
        raise InvalidParameterError("--max-age must be >= 0")
    removed = engine.store.cleanup_temp_files(max_age)
    payload = {"removed": [str(path) for path in removed], "count": len(removed)}
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"removed: {len(removed)}", file=stdout)
    return EXIT_SUCCESS


def _dispatch(args, *, config: CLIConfig, engine: _Engine, stdout, stderr) -> int:
    if args.command == "health":
        return _run_health(args=args, config=config, engine=engine, stdout=stdout)

    if args.command == "keys":
        return _run_keys_describe(args=args, stdout=stdout)

    if args.command == "migrate":
        return _run_migrate(args=args, config=config, engine=engine, stdout=stdout)

    if args.command == "claim-armored":
        return _run_claim_armored(args=args, config=config, engine=engine, stdout=stdout)

    if args.command == "migration-status":
        return _run_migration_status(args=args, config=config, engine=engine, stdout=stdout)

    if args.command == "stake":
        if args.stake_command == "create":
            return _run_stake_create(args=args, config=config, engine=engine, stdout=stdout)
        if args.stake_command == "execute":
            return _run_stake_execute(
                args=args, config=config, engine=engine, stdout=stdout, stderr=stderr
            )
        if args.stake_command == "local":
            return _run_stake_local(
                args=args, config=config, engine=engine, stdout=stdout, stderr=stderr
            )
        if args.stake_command == "unsigned":
            return _run_stake_unsigned(args=args, config=config, engine=engine, stdout=stdout)
        if args.stake_command == "create-node":
            return _run_stake_create_node(args=args, config=config, engine=engine, stdout=stdout)
        if args.stake_command == "status":
            return _run_stake_status(args=args, config=config, engine=engine, stdout=stdout)
        if args.stake_command == "mnemonics":
            return _run_stake_mnemonics(args=args, config=config, engine=engine, stdout=stdout)

    if args.command == "sessions":
        return _run_sessions_show(args=args, engine=engine, stdout=stdout)

    if args.command == "cleanup":
        return _run_cleanup(args=args, config=config, engine=engine, stdout=stdout)

    return _print_error(stderr, "usage error", f"unknown command {args.command}", code=EXIT_VALIDATION_ERROR)


def main(argv: Sequence[str] | None = None, *, stdout=sys.stdout, stderr=sys.stderr) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_cli_config(args.config)
    except ConfigError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)

    configure_logging(args.log_level or config.log_level, config.log_format, stream=stderr)

    if args.command == "version":
        return _run_version(config=config, as_json=args.json, stdout=stdout)

    try:
        engine = _build_engine(config, args)
        engine.store.ensure_layout()
        engine.store.cleanup_temp_files(config.temp_file_retention)
        return _dispatch(args, config=config, engine=engine, stdout=stdout, stderr=stderr)
    except MigrationToolError as exc:
        return _print_tool_error(stderr, exc)
    except OSError as exc:
        return _print_error(stderr, "filesystem error", str(exc), code=EXIT_COMMAND_ERROR)


if __name__ == "__main__":
    raise SystemExit(main())
