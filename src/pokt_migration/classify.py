"""Classification of ``pocketd`` failure text.

The binary reports errors as human-readable text on stderr (sometimes on
stdout). Every pattern the engine depends on lives in this module.
"""

from __future__ import annotations

import re
from enum import Enum

from pokt_migration.errors import (
    AccountNotFoundError,
    AlreadyClaimedError,
    ChainError,
    CommandFailedError,
    InsufficientFundsError,
    NoClaimableAccountsError,
    SequenceMismatchError,
)

ALREADY_CLAIMED_RE = re.compile(
    r'morse address "([^"]+)" has already been claimed at height (\d+) by shannon address "([^"]+)"'
)
NO_CLAIMABLE_RE = re.compile(r"0/\d*\s*claimable morse accounts found")


class FailureKind(str, Enum):
    SEQUENCE_MISMATCH = "sequence_mismatch"
    ALREADY_CLAIMED = "already_claimed"
    ACCOUNT_NOT_FOUND = "account_not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NO_CLAIMABLE_ACCOUNTS = "no_claimable_accounts"
    ALREADY_EXISTS = "already_exists"
    KEY_NOT_FOUND = "key_not_found"
    INVALID_MNEMONIC = "invalid_mnemonic"
    CONNECTION_REFUSED = "connection_refused"
    UNKNOWN_HOST = "unknown_host"
    GENERIC = "generic"


def is_sequence_mismatch(text: str) -> bool:
    lowered = text.lower()
    if "account sequence mismatch" in lowered:
        return True
    return "expected" in lowered and "got" in lowered and "sequence" in lowered


def classify_failure(text: str) -> FailureKind:
    if not text:
        return FailureKind.GENERIC
    lowered = text.lower()

    if is_sequence_mismatch(lowered):
        return FailureKind.SEQUENCE_MISMATCH
    if "has already been claimed" in lowered or "already claimed" in lowered:
        return FailureKind.ALREADY_CLAIMED
    if "insufficient funds" in lowered or "insufficient account funds" in lowered:
        return FailureKind.INSUFFICIENT_FUNDS
    if NO_CLAIMABLE_RE.search(lowered) or ("0/" in lowered and "claimable morse accounts found" in lowered):
        return FailureKind.NO_CLAIMABLE_ACCOUNTS
    if "key not found" in lowered or ("key" in lowered and "is not a valid name or address" in lowered):
        return FailureKind.KEY_NOT_FOUND
    if "account" in lowered and "not found" in lowered:
        return FailureKind.ACCOUNT_NOT_FOUND
    if "already exists" in lowered:
        return FailureKind.ALREADY_EXISTS
    if "invalid mnemonic" in lowered:
        return FailureKind.INVALID_MNEMONIC
    if "connection refused" in lowered:
        return FailureKind.CONNECTION_REFUSED
    if "no such host" in lowered:
        return FailureKind.UNKNOWN_HOST
    return FailureKind.GENERIC


def parse_already_claimed(text: str) -> tuple[str, str, int] | None:
    """Return ``(morse_address, shannon_address, height)`` when the message names them."""
    match = ALREADY_CLAIMED_RE.search(text)
    if match is None:
        return None
    morse_address, height, shannon_address = match.groups()
    return morse_address, shannon_address, int(height)


def chain_error_for(text: str) -> ChainError | SequenceMismatchError | None:
    """Typed error for a failure text, or ``None`` when nothing specific matched."""
    kind = classify_failure(text)

    if kind is FailureKind.SEQUENCE_MISMATCH:
        return SequenceMismatchError(
            "account sequence mismatch; another transaction from this signer is still pending"
        )
    if kind is FailureKind.ALREADY_CLAIMED:
        parsed = parse_already_claimed(text)
        if parsed is None:
            return AlreadyClaimedError(
                "one or more Morse accounts have already been claimed", details=text
            )
        morse_address, shannon_address, height = parsed
        return AlreadyClaimedError(
            f"Morse account {morse_address} was already claimed at height {height} "
            f"by Shannon address {shannon_address}",
            morse_address=morse_address,
            shannon_address=shannon_address,
            height=height,
            details=text,
        )
    if kind is FailureKind.INSUFFICIENT_FUNDS:
        return InsufficientFundsError(
            "signing account has insufficient funds to pay transaction fees", details=text
        )
    if kind is FailureKind.ACCOUNT_NOT_FOUND:
        return AccountNotFoundError(
            "signing account not found on chain; fund it before submitting transactions",
            details=text,
        )
    if kind is FailureKind.NO_CLAIMABLE_ACCOUNTS:
        return NoClaimableAccountsError(
            "none of the provided Morse accounts are claimable", details=text
        )
    return None


def raise_for_failure(error: CommandFailedError) -> None:
    """Re-raise a command failure as its typed chain error when one matches."""
    typed = chain_error_for(error.output)
    if typed is not None:
        raise typed from error


_TX_HASH_RE = re.compile(r'"?txhash"?\s*:\s*"?([A-Fa-f0-9]{16,})')
_TX_CODE_RE = re.compile(r'(?m)(?:^|[\s{,])"?code"?\s*:\s*"?(\d+)')


def parse_tx_response(text: str) -> tuple[str | None, int]:
    """Return ``(txhash, code)`` from a broadcast response printed as YAML or JSON."""
    hash_match = _TX_HASH_RE.search(text)
    code_match = _TX_CODE_RE.search(text)
    return (hash_match.group(1) if hash_match else None, int(code_match.group(1)) if code_match else 0)


def raise_for_tx_response(text: str) -> str | None:
    """Raise when a broadcast that exited 0 still reports a non-zero code."""
    tx_hash, code = parse_tx_response(text)
    if code == 0:
        return tx_hash
    typed = chain_error_for(text)
    if typed is not None:
        raise typed
    raise ChainError(f"transaction rejected with code {code}", details=text)
