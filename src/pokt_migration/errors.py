"""Error types for the migration and staking engine."""

from __future__ import annotations

from typing import Sequence


class MigrationToolError(RuntimeError):
    """Base error."""

    error_type = "generic"


class InvalidParameterError(MigrationToolError, ValueError):
    """A value that would end up in a command line failed validation."""

    error_type = "invalid_parameter"


class InvalidCredentialFormatError(InvalidParameterError):
    """Malformed hex key or mnemonic."""

    error_type = "invalid_credential_format"


class BinaryUnavailableError(MigrationToolError):
    """The external CLI binary is missing or cannot be executed."""

    error_type = "binary_unavailable"


class CommandFailedError(MigrationToolError):
    """The external CLI exited with a non-zero status."""

    error_type = "command_failed"

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.argv = tuple(argv)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stderr, self.stdout, str(self)) if part)


class CommandTimeoutError(CommandFailedError):
    """The external CLI exceeded its allotted duration."""

    error_type = "timeout"

    def __init__(self, message: str, *, timeout: float | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.timeout = timeout


class KeyringImportFailedError(MigrationToolError):
    """A keyring import ran but produced no usable identity."""

    error_type = "keyring_import_failed"


class FallbackIdentityUnavailableError(MigrationToolError):
    """No signer could be established, fallback identity included."""

    error_type = "fallback_unavailable"


class SequenceMismatchError(MigrationToolError):
    """Transaction was submitted with a stale account sequence."""

    error_type = "sequence_mismatch"


class RetriesExhaustedError(MigrationToolError):
    """Retryable failures persisted through every allowed attempt."""

    error_type = "retries_exhausted"

    def __init__(self, message: str, *, last_error: BaseException, attempts: int) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class ChainError(MigrationToolError):
    """A business error reported by the destination chain."""

    error_type = "chain_error"

    def __init__(self, message: str, *, details: str = "") -> None:
        super().__init__(message)
        self.details = details


class AlreadyClaimedError(ChainError):
    """Source account was already migrated."""

    error_type = "already_claimed"

    def __init__(
        self,
        message: str,
        *,
        morse_address: str | None = None,
        shannon_address: str | None = None,
        height: int | None = None,
        details: str = "",
    ) -> None:
        super().__init__(message, details=details)
        self.morse_address = morse_address
        self.shannon_address = shannon_address
        self.height = height


class InsufficientFundsError(ChainError):
    """Signing account cannot pay for the transaction."""

    error_type = "insufficient_funds"


class AccountNotFoundError(ChainError):
    """Signing or destination account does not exist on chain."""

    error_type = "account_not_found"


class NoClaimableAccountsError(ChainError):
    """None of the provided source keys is claimable."""

    error_type = "no_claimable_accounts"


class NodeUnavailableError(MigrationToolError):
    """Network RPC node could not be reached."""

    error_type = "node_unavailable"


class SessionError(MigrationToolError):
    """Raised when a session record cannot be persisted or read."""

    error_type = "session_error"


class SessionNotFoundError(SessionError):
    """No session exists for the given id."""

    error_type = "session_not_found"


def error_type_of(exc: BaseException) -> str:
    return getattr(exc, "error_type", "generic")
