"""Signing credential types.

Callers resolve raw user input into one of these once, at the boundary, with
``parse_credential``. The engine only ever sees the typed values.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Union

from pokt_migration.crypto.morse_keys import validate_morse_address
from pokt_migration.errors import InvalidCredentialFormatError

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
VALID_HEX_KEY_LENGTHS = (64, 128)
MIN_MNEMONIC_WORDS = 12
MAX_MNEMONIC_WORDS = 24


def _strip_hex_prefix(value: str) -> str:
    cleaned = value.strip()
    if cleaned[:2].lower() == "0x":
        cleaned = cleaned[2:]
    return cleaned


def clean_hex_key(value: str) -> str:
    if not isinstance(value, str):
        raise InvalidCredentialFormatError("private key must be a string")
    cleaned = _strip_hex_prefix(value)
    if not cleaned or not _HEX_RE.match(cleaned):
        raise InvalidCredentialFormatError("private key must be hexadecimal (0-9, a-f)")
    if len(cleaned) not in VALID_HEX_KEY_LENGTHS:
        raise InvalidCredentialFormatError(
            f"private key must be 64 or 128 hex characters, got {len(cleaned)}"
        )
    return cleaned.lower()


@dataclass(frozen=True)
class RawHexKey:
    hex: str = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "hex", clean_hex_key(self.hex))

    @classmethod
    def from_text(cls, value: str) -> "RawHexKey":
        return cls(hex=value)

    def __repr__(self) -> str:
        return f"RawHexKey(<{len(self.hex)} hex chars>)"


@dataclass(frozen=True)
class Mnemonic:
    phrase: str = field(repr=False)

    @classmethod
    def from_text(cls, value: str) -> "Mnemonic":
        if not isinstance(value, str):
            raise InvalidCredentialFormatError("mnemonic must be a string")
        words = value.split()
        if not MIN_MNEMONIC_WORDS <= len(words) <= MAX_MNEMONIC_WORDS:
            raise InvalidCredentialFormatError(
                f"mnemonic must have {MIN_MNEMONIC_WORDS}-{MAX_MNEMONIC_WORDS} words, "
                f"got {len(words)}"
            )
        return cls(phrase=" ".join(words))

    @property
    def word_count(self) -> int:
        return len(self.phrase.split())

    def __repr__(self) -> str:
        return f"Mnemonic(<{self.word_count} words>)"


@dataclass(frozen=True)
class WalletJson:
    """Morse wallet export: ``{"priv": ..., "addr": ...}``."""

    priv: str = field(repr=False)
    addr: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "priv", clean_hex_key(self.priv))

    @classmethod
    def from_mapping(cls, payload: dict) -> "WalletJson":
        priv = payload.get("priv")
        if not isinstance(priv, str):
            raise InvalidCredentialFormatError("wallet JSON must contain a 'priv' string")
        addr = payload.get("addr")
        if addr is not None:
            if not isinstance(addr, str) or not validate_morse_address(addr):
                raise InvalidCredentialFormatError("wallet JSON 'addr' must be 40 hex characters")
            addr = addr.lower()
        return cls(priv=priv, addr=addr)

    def as_hex_key(self) -> RawHexKey:
        return RawHexKey(hex=self.priv)

    def __repr__(self) -> str:
        return f"WalletJson(addr={self.addr!r})"


Credential = Union[RawHexKey, Mnemonic, WalletJson]


def parse_credential(value: str) -> Credential:
    """Resolve free-form credential text into a typed credential."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidCredentialFormatError("credential must be a non-empty string")
    text = value.strip()

    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidCredentialFormatError("credential looks like JSON but does not parse") from exc
        if not isinstance(payload, dict):
            raise InvalidCredentialFormatError("wallet JSON must be an object")
        return WalletJson.from_mapping(payload)

    if len(text.split()) > 1:
        return Mnemonic.from_text(text)

    return RawHexKey.from_text(text)


def parse_source_key(value: str) -> RawHexKey | WalletJson:
    credential = parse_credential(value)
    if isinstance(credential, Mnemonic):
        raise InvalidCredentialFormatError("source keys must be hex keys or wallet JSON, not mnemonics")
    return credential


def hex_of(credential: RawHexKey | WalletJson) -> str:
    if isinstance(credential, WalletJson):
        return credential.priv
    return credential.hex


def describe_credential(credential: Credential | None) -> str:
    if credential is None:
        return "fallback"
    if isinstance(credential, Mnemonic):
        return "mnemonic"
    if isinstance(credential, WalletJson):
        return "wallet_json"
    return "raw_hex"
