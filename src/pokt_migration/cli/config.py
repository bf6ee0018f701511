"""Configuration helpers for the pokt-migrate CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pokt_migration.types import ALLOWED_KEYRING_BACKENDS, ALLOWED_NETWORKS, NETWORK_ALIASES

DEFAULT_CONFIG_PATH = Path.home() / ".pokt_migration" / "config.toml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class CLIConfig:
    pocketd_command: str = "pocketd"
    pocketd_home: str = "./localnet/pocketd"
    keyring_backend: str = "test"
    command_timeout: float = 60.0
    broadcast_timeout: float = 120.0
    max_retries: int = 3
    retry_base_delay: float = 30.0
    inter_transaction_delay: float = 30.0
    data_dir: str = "./data"
    temp_file_retention: float = 3600.0
    fallback_identity: str = "alice"
    extra_path: tuple[str, ...] = ()
    default_network: str = "beta"
    log_level: str = "INFO"
    log_format: str = "text"
    max_keys_per_request: int = 10


class ConfigError(ValueError):
    """Raised when CLI config is invalid."""


def _load_toml(path: Path) -> dict[str, Any]:
    raw = path.read_text(encoding="utf-8")

    try:  # Python 3.11+
        import tomllib  # type: ignore[attr-defined]
        try:
            return tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    except ModuleNotFoundError:
        try:
            import tomli
        except ModuleNotFoundError as exc:
            raise ConfigError("toml parser unavailable; install tomli for Python < 3.11") from exc
        try:
            return tomli.loads(raw)
        except tomli.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def _to_number(value: Any, field_name: str, *, low: float, high: float | None = None) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a number") from exc
    if number < low or (high is not None and number > high):
        bounds = f"between {low:g} and {high:g}" if high is not None else f">= {low:g}"
        raise ConfigError(f"{field_name} must be {bounds}")
    return number


def _to_int(value: Any, field_name: str, *, low: int, high: int | None = None) -> int:
    number = _to_number(value, field_name, low=low, high=high)
    if number != int(number):
        raise ConfigError(f"{field_name} must be an integer")
    return int(number)


def _non_empty(value: Any, field_name: str) -> str:
    text = str(value).strip()
    if not text:
        raise ConfigError(f"{field_name} must not be empty")
    return text


def _env_or(source: dict[str, Any], key: str, env_var: str | None, default: Any) -> Any:
    if env_var:
        env_value = os.getenv(env_var)
        if env_value is not None and env_value.strip():
            return env_value.strip()
    return source.get(key, default)


def load_cli_config(path: str | Path | None = None) -> CLIConfig:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    parsed = _load_toml(config_path) if config_path.exists() else {}

    section = parsed.get("cli")
    if isinstance(section, dict):
        source = section
    elif section is None:
        source = parsed
    else:
        raise ConfigError("[cli] must be a table")

    defaults = CLIConfig()
    pocketd_command = _non_empty(
        _env_or(source, "pocketd_command", "POCKETD_COMMAND", defaults.pocketd_command),
        "pocketd_command",
    )
    pocketd_home = _non_empty(
        _env_or(source, "pocketd_home", "POCKETD_HOME", defaults.pocketd_home), "pocketd_home"
    )

    keyring_backend = str(
        _env_or(source, "keyring_backend", "POCKETD_KEYRING_BACKEND", defaults.keyring_backend)
    ).strip().lower()
    if keyring_backend not in ALLOWED_KEYRING_BACKENDS:
        raise ConfigError("keyring_backend must be one of: " + ", ".join(ALLOWED_KEYRING_BACKENDS))

    command_timeout = _to_number(
        _env_or(source, "command_timeout", "POCKETD_TIMEOUT", defaults.command_timeout),
        "command_timeout",
        low=1,
        high=300,
    )
    broadcast_timeout = _to_number(
        source.get("broadcast_timeout", defaults.broadcast_timeout), "broadcast_timeout", low=1, high=600
    )
    max_retries = _to_int(
        _env_or(source, "max_retries", "POCKETD_MAX_RETRIES", defaults.max_retries),
        "max_retries",
        low=1,
        high=10,
    )
    retry_base_delay = _to_number(
        source.get("retry_base_delay", defaults.retry_base_delay), "retry_base_delay", low=0
    )
    inter_transaction_delay = _to_number(
        source.get("inter_transaction_delay", defaults.inter_transaction_delay),
        "inter_transaction_delay",
        low=0,
    )
    data_dir = _non_empty(_env_or(source, "data_dir", "DATA_DIR", defaults.data_dir), "data_dir")
    temp_file_retention = _to_number(
        source.get("temp_file_retention", defaults.temp_file_retention), "temp_file_retention", low=0
    )
    fallback_identity = _non_empty(
        source.get("fallback_identity", defaults.fallback_identity), "fallback_identity"
    )

    raw_extra_path = source.get("extra_path", [])
    if isinstance(raw_extra_path, str):
        raw_extra_path = [part for part in raw_extra_path.split(os.pathsep) if part]
    if not isinstance(raw_extra_path, list):
        raise ConfigError("extra_path must be a list of directories")
    extra_path = tuple(str(entry).strip() for entry in raw_extra_path if str(entry).strip())

    default_network = str(source.get("default_network", defaults.default_network)).strip().lower()
    default_network = NETWORK_ALIASES.get(default_network, default_network)
    if default_network not in ALLOWED_NETWORKS:
        raise ConfigError("default_network must be one of: " + ", ".join(ALLOWED_NETWORKS))

    log_level = str(_env_or(source, "log_level", "LOG_LEVEL", defaults.log_level)).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError("log_level must be one of: " + ", ".join(LOG_LEVELS))
    log_format = str(source.get("log_format", defaults.log_format)).strip().lower()
    if log_format not in {"text", "json"}:
        raise ConfigError("log_format must be one of: text, json")

    max_keys_per_request = _to_int(
        source.get("max_keys_per_request", defaults.max_keys_per_request),
        "max_keys_per_request",
        low=1,
        high=100,
    )

    return CLIConfig(
        pocketd_command=pocketd_command,
        pocketd_home=pocketd_home,
        keyring_backend=keyring_backend,
        command_timeout=command_timeout,
        broadcast_timeout=broadcast_timeout,
        max_retries=max_retries,
        retry_base_delay=retry_base_delay,
        inter_transaction_delay=inter_transaction_delay,
        data_dir=data_dir,
        temp_file_retention=temp_file_retention,
        fallback_identity=fallback_identity,
        extra_path=extra_path,
        default_network=default_network,
        log_level=log_level,
        log_format=log_format,
        max_keys_per_request=max_keys_per_request,
    )
