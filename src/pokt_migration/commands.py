"""Argument-vector builders for the ``pocketd`` binary.

Every builder returns a :class:`CommandInvocation` holding a discrete argv.
Identity names, file paths and addresses are separate argv elements; secret
material never appears in argv (it travels on stdin or through a short-lived
file owned by the caller).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from pokt_migration.errors import InvalidParameterError
from pokt_migration.types import normalize_keyring_backend, normalize_network

IDENTITY_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
BECH32_CHARSET_RE = re.compile(r"^[02-9ac-hj-np-z]+$")
SHANNON_ADDRESS_PREFIX = "pokt"
MIN_SHANNON_ADDRESS_LEN = 40

ALLOWED_GAS_PRICES = ("0.001upokt", "0.01upokt", "1upokt")
MIN_GAS_ADJUSTMENT = 1.0
MAX_GAS_ADJUSTMENT = 3.0

DEFAULT_TIMEOUT = 60.0
BROADCAST_TIMEOUT = 120.0
KEYRING_TIMEOUT = 30.0


@dataclass(frozen=True)
class NetworkProfile:
    name: str
    net_flag: str
    chain_id: str
    node_url: str


NETWORK_PROFILES: dict[str, NetworkProfile] = {
    "main": NetworkProfile(
        name="main",
        net_flag="main",
        chain_id="pocket",
        node_url="https://shannon-grove-rpc.mainnet.poktroll.com",
    ),
    "beta": NetworkProfile(
        name="beta",
        net_flag="beta",
        chain_id="pocket-beta",
        node_url="https://rpc.shannon-testnet.eu.nodefleet.net",
    ),
}


def resolve_network(name: str) -> NetworkProfile:
    return NETWORK_PROFILES[normalize_network(name)]


@dataclass(frozen=True)
class GasPolicy:
    adjustment: float
    prices: str
    gas: str = "auto"

    def __post_init__(self) -> None:
        if not MIN_GAS_ADJUSTMENT <= float(self.adjustment) <= MAX_GAS_ADJUSTMENT:
            raise InvalidParameterError(
                f"gas adjustment must be between {MIN_GAS_ADJUSTMENT} and {MAX_GAS_ADJUSTMENT}"
            )
        if self.prices not in ALLOWED_GAS_PRICES:
            raise InvalidParameterError(
                "gas prices must be one of: " + ", ".join(ALLOWED_GAS_PRICES)
            )
        if self.gas != "auto" and not self.gas.isdigit():
            raise InvalidParameterError("gas must be 'auto' or a positive integer")

    def flags(self) -> list[str]:
        return [
            f"--gas={self.gas}",
            f"--gas-adjustment={float(self.adjustment):g}",
            f"--gas-prices={self.prices}",
        ]


CLAIM_ACCOUNTS_GAS = GasPolicy(adjustment=1.1, prices="0.001upokt")
TRANSACTION_GAS = GasPolicy(adjustment=1.5, prices="1upokt")


@dataclass(frozen=True)
class KeyringTarget:
    home: str
    backend: str = "test"

    def __post_init__(self) -> None:
        if not str(self.home).strip():
            raise InvalidParameterError("keyring home must not be empty")
        object.__setattr__(self, "home", str(Path(self.home).resolve()))
        object.__setattr__(self, "backend", normalize_keyring_backend(self.backend))

    def flags(self) -> list[str]:
        return ["--home", self.home, "--keyring-backend", self.backend]


@dataclass(frozen=True)
class CommandInvocation:
    argv: tuple[str, ...]
    description: str
    timeout: float | None = None
    stdin: str | None = None
    sensitive_stdin: bool = False
    sensitive_output: bool = False

    def display(self) -> str:
        """Printable form; safe for logs."""
        shown = " ".join(self.argv)
        if self.stdin is not None:
            shown += " <stdin:redacted>" if self.sensitive_stdin else " <stdin>"
        return shown

    def __repr__(self) -> str:
        return f"CommandInvocation({self.description!r}, argv={self.argv!r})"


def validate_identity_name(name: str) -> str:
    if not isinstance(name, str) or not IDENTITY_NAME_RE.match(name):
        raise InvalidParameterError(
            "identity name must contain only letters, numbers, hyphens and underscores"
        )
    return name


def validate_shannon_address(address: str) -> str:
    if not isinstance(address, str):
        raise InvalidParameterError("address must be a string")
    candidate = address.strip()
    if not candidate.startswith(SHANNON_ADDRESS_PREFIX) or len(candidate) < MIN_SHANNON_ADDRESS_LEN:
        raise InvalidParameterError(
            f"address must start with '{SHANNON_ADDRESS_PREFIX}' and be at least "
            f"{MIN_SHANNON_ADDRESS_LEN} characters"
        )
    _, sep, data = candidate.partition("1")
    if not sep or not data or not BECH32_CHARSET_RE.match(data):
        raise InvalidParameterError("address is not a valid bech32 string")
    return candidate


def is_shannon_address(address: object) -> bool:
    try:
        validate_shannon_address(address)  # type: ignore[arg-type]
    except InvalidParameterError:
        return False
    return True


def _file_arg(path: str | Path) -> str:
    resolved = Path(path).resolve()
    if str(resolved).startswith("-"):
        raise InvalidParameterError("file path must not start with '-'")
    return str(resolved)


def _network_flags(network: NetworkProfile) -> list[str]:
    return [
        f"--network={network.net_flag}",
        f"--chain-id={network.chain_id}",
        f"--node={network.node_url}",
    ]


class CommandBuilder:
    def __init__(self, binary: str = "pocketd") -> None:
        if not binary or not binary.strip():
            raise InvalidParameterError("binary path must not be empty")
        self.binary = binary

    def _argv(self, *parts: str) -> tuple[str, ...]:
        return (self.binary, *parts)

    def version(self, *, timeout: float = 10.0) -> CommandInvocation:
        return CommandInvocation(argv=self._argv("version"), description="version", timeout=timeout)

    def keys_list(self, target: KeyringTarget) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv("keys", "list", *target.flags(), "--output", "json"),
            description="keys list",
            timeout=KEYRING_TIMEOUT,
        )

    def keys_show(self, name: str, target: KeyringTarget) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv("keys", "show", validate_identity_name(name), *target.flags(), "--output", "json"),
            description="keys show",
            timeout=KEYRING_TIMEOUT,
        )

    def keys_delete(self, name: str, target: KeyringTarget) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv("keys", "delete", validate_identity_name(name), *target.flags(), "--yes"),
            description="keys delete",
            timeout=KEYRING_TIMEOUT,
        )

    def keys_add(self, name: str, target: KeyringTarget) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv("keys", "add", validate_identity_name(name), *target.flags(), "--output", "json"),
            description="keys add",
            timeout=KEYRING_TIMEOUT,
            sensitive_output=True,
        )

    def keys_recover(self, name: str, mnemonic: str, target: KeyringTarget) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv(
                "keys", "add", validate_identity_name(name), "--recover", *target.flags(), "--output", "json"
            ),
            description="keys add --recover",
            timeout=KEYRING_TIMEOUT,
            stdin=mnemonic + "\n",
            sensitive_stdin=True,
        )

    def keys_import_file(self, name: str, key_file: str | Path, target: KeyringTarget) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv(
                "keys",
                "import",
                validate_identity_name(name),
                _file_arg(key_file),
                *target.flags(),
                "--output",
                "json",
            ),
            description="keys import",
            timeout=KEYRING_TIMEOUT,
        )

    def keys_export_hex(self, name: str, target: KeyringTarget) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv(
                "keys",
                "export",
                validate_identity_name(name),
                *target.flags(),
                "--unsafe",
                "--unarmored-hex",
                "--yes",
            ),
            description="keys export",
            timeout=KEYRING_TIMEOUT,
            sensitive_output=True,
        )

    def claim_accounts(
        self,
        *,
        input_file: str | Path,
        output_file: str | Path,
        signer: str,
        destination: str,
        network: NetworkProfile,
        target: KeyringTarget,
        gas: GasPolicy = CLAIM_ACCOUNTS_GAS,
        timeout: float = BROADCAST_TIMEOUT,
    ) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv(
                "tx",
                "migration",
                "claim-accounts",
                f"--input-file={_file_arg(input_file)}",
                f"--output-file={_file_arg(output_file)}",
                *target.flags(),
                f"--from={validate_identity_name(signer)}",
                "--unsafe",
                "--unarmored-json",
                f"--destination={validate_shannon_address(destination)}",
                *_network_flags(network),
                *gas.flags(),
                "--yes",
            ),
            description="tx migration claim-accounts",
            timeout=timeout,
        )

    def claim_account(
        self,
        *,
        armored_key_file: str | Path,
        signer: str,
        network: NetworkProfile,
        target: KeyringTarget,
        passphrase: str | None = None,
        gas: GasPolicy = TRANSACTION_GAS,
        timeout: float = BROADCAST_TIMEOUT,
    ) -> CommandInvocation:
        argv = [
            "tx",
            "migration",
            "claim-account",
            _file_arg(armored_key_file),
            f"--from={validate_identity_name(signer)}",
            *target.flags(),
            *_network_flags(network),
            *gas.flags(),
        ]
        if not passphrase:
            argv.append("--no-passphrase")
        argv.append("--yes")
        return CommandInvocation(
            argv=self._argv(*argv),
            description="tx migration claim-account",
            timeout=timeout,
            stdin=(passphrase + "\n") if passphrase else None,
            sensitive_stdin=bool(passphrase),
        )

    def stake_supplier(
        self,
        *,
        config_file: str | Path,
        signer: str,
        network: NetworkProfile,
        target: KeyringTarget,
        passphrase: str | None = None,
        gas: GasPolicy = TRANSACTION_GAS,
        timeout: float = BROADCAST_TIMEOUT,
    ) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv(
                "tx",
                "supplier",
                "stake-supplier",
                f"--config={_file_arg(config_file)}",
                f"--from={validate_identity_name(signer)}",
                *target.flags(),
                *_network_flags(network),
                *gas.flags(),
                "--yes",
            ),
            description="tx supplier stake-supplier",
            timeout=timeout,
            stdin=(passphrase + "\n") if passphrase else None,
            sensitive_stdin=bool(passphrase),
        )

    def stake_supplier_generate_only(
        self,
        *,
        config_file: str | Path,
        owner_address: str,
        network: NetworkProfile,
        target: KeyringTarget,
        gas: GasPolicy = TRANSACTION_GAS,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> CommandInvocation:
        return CommandInvocation(
            argv=self._argv(
                "tx",
                "supplier",
                "stake-supplier",
                f"--config={_file_arg(config_file)}",
                f"--from={validate_shannon_address(owner_address)}",
                *target.flags(),
                *_network_flags(network),
                *gas.flags(),
                "--generate-only",
                "--output",
                "json",
            ),
            description="tx supplier stake-supplier --generate-only",
            timeout=timeout,
        )
