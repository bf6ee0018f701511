"""Helpers for deriving and validating Morse (legacy chain) account keys.

Morse private keys are Ed25519 keys exported either as the 32-byte seed
(64 hex characters) or as seed || public key (128 hex characters).

Address format:
- 40 lowercase hex characters, the first 20 bytes of sha256(public_key_bytes).
"""

from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

MORSE_ADDRESS_LEN = 40
SEED_HEX_LEN = 64
EXPANDED_HEX_LEN = 128


class MorseKeyError(ValueError):
    """Raised when Morse key material is inconsistent."""


def _public_key_from_seed(seed: bytes) -> bytes:
    private = Ed25519PrivateKey.from_private_bytes(seed)
    return private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def morse_public_key(hex_key: str) -> bytes:
    raw = bytes.fromhex(hex_key)
    if len(raw) not in (SEED_HEX_LEN // 2, EXPANDED_HEX_LEN // 2):
        raise MorseKeyError("morse key must be 32 or 64 bytes")

    derived = _public_key_from_seed(raw[:32])
    if len(raw) == EXPANDED_HEX_LEN // 2 and raw[32:] != derived:
        raise MorseKeyError("morse key seed and embedded public key do not match")
    return derived


def address_from_public_key(public_key_bytes: bytes) -> str:
    return hashlib.sha256(public_key_bytes).digest()[:20].hex()


def derive_morse_address(hex_key: str) -> str:
    return address_from_public_key(morse_public_key(hex_key))


def validate_morse_address(address: str) -> bool:
    if len(address) != MORSE_ADDRESS_LEN:
        return False
    try:
        bytes.fromhex(address)
    except ValueError:
        return False
    return True
