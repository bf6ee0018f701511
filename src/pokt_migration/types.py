"""Allow-listed enumerations passed to the external CLI."""

from __future__ import annotations

from typing import Literal

from pokt_migration.errors import InvalidParameterError

KeyringBackend = Literal["os", "file", "kwallet", "pass", "test", "memory"]
NetworkName = Literal["main", "beta"]
SessionKind = Literal["migration", "stake-provisioning"]
UnitStatus = Literal["pending", "succeeded", "failed"]

ALLOWED_KEYRING_BACKENDS: tuple[KeyringBackend, ...] = (
    "os",
    "file",
    "kwallet",
    "pass",
    "test",
    "memory",
)

ALLOWED_NETWORKS: tuple[NetworkName, ...] = ("main", "beta")

NETWORK_ALIASES: dict[str, NetworkName] = {
    "mainnet": "main",
    "testnet": "beta",
}

ALLOWED_SESSION_KINDS: tuple[SessionKind, ...] = ("migration", "stake-provisioning")

SESSION_KIND_DIRS: dict[SessionKind, str] = {
    "migration": "migration",
    "stake-provisioning": "stake",
}


def normalize_keyring_backend(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in ALLOWED_KEYRING_BACKENDS:
        raise InvalidParameterError(
            "keyring backend must be one of: " + ", ".join(ALLOWED_KEYRING_BACKENDS)
        )
    return normalized


def normalize_network(value: str) -> str:
    normalized = value.strip().lower()
    normalized = NETWORK_ALIASES.get(normalized, normalized)
    if normalized not in ALLOWED_NETWORKS:
        raise InvalidParameterError(
            "network must be one of: main, beta (aliases: mainnet, testnet)"
        )
    return normalized


def normalize_session_kind(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in ALLOWED_SESSION_KINDS:
        raise InvalidParameterError("session kind must be one of: migration, stake-provisioning")
    return normalized
