"""pokt-migration public surface."""

from pokt_migration.classify import FailureKind, classify_failure, raise_for_failure
from pokt_migration.commands import (
    CLAIM_ACCOUNTS_GAS,
    TRANSACTION_GAS,
    CommandBuilder,
    CommandInvocation,
    GasPolicy,
    KeyringTarget,
    NetworkProfile,
    resolve_network,
)
from pokt_migration.credentials import (
    Credential,
    Mnemonic,
    RawHexKey,
    WalletJson,
    parse_credential,
    parse_source_key,
)
from pokt_migration.crypto.morse_keys import derive_morse_address
from pokt_migration.errors import (
    AccountNotFoundError,
    AlreadyClaimedError,
    BinaryUnavailableError,
    ChainError,
    CommandFailedError,
    CommandTimeoutError,
    FallbackIdentityUnavailableError,
    InsufficientFundsError,
    InvalidCredentialFormatError,
    InvalidParameterError,
    KeyringImportFailedError,
    MigrationToolError,
    NoClaimableAccountsError,
    NodeUnavailableError,
    RetriesExhaustedError,
    SequenceMismatchError,
    SessionError,
    SessionNotFoundError,
)
from pokt_migration.keyring import FallbackIdentitySpec, KeyIdentity, KeyringManager, NewIdentity
from pokt_migration.logs import configure_logging, sanitize_text
from pokt_migration.migration import MigrationExecutor, MigrationRequest, MigrationResult, describe_keys
from pokt_migration.orchestrator import (
    BatchOrchestrator,
    BatchReport,
    ResolvedSigner,
    SigningIdentitySpec,
    UnitReport,
    resolve_signer,
)
from pokt_migration.retry import RetryOutcome, RetryPolicy, with_retry
from pokt_migration.rpc import NodeStatus, NodeStatusClient
from pokt_migration.runner import ProcessResult, ProcessRunner, RunnerConfig
from pokt_migration.sessions import FilesystemSessionStore, SessionStore, WorkUnit
from pokt_migration.staking import ProvisioningResult, StakeExecution, StakeExecutor

__all__ = [
    "MigrationToolError",
    "InvalidParameterError",
    "InvalidCredentialFormatError",
    "BinaryUnavailableError",
    "CommandFailedError",
    "CommandTimeoutError",
    "KeyringImportFailedError",
    "FallbackIdentityUnavailableError",
    "SequenceMismatchError",
    "RetriesExhaustedError",
    "ChainError",
    "AlreadyClaimedError",
    "InsufficientFundsError",
    "AccountNotFoundError",
    "NoClaimableAccountsError",
    "NodeUnavailableError",
    "SessionError",
    "SessionNotFoundError",
    "CommandBuilder",
    "CommandInvocation",
    "GasPolicy",
    "CLAIM_ACCOUNTS_GAS",
    "TRANSACTION_GAS",
    "KeyringTarget",
    "NetworkProfile",
    "resolve_network",
    "Credential",
    "RawHexKey",
    "Mnemonic",
    "WalletJson",
    "parse_credential",
    "parse_source_key",
    "derive_morse_address",
    "ProcessRunner",
    "ProcessResult",
    "RunnerConfig",
    "FailureKind",
    "classify_failure",
    "raise_for_failure",
    "RetryPolicy",
    "RetryOutcome",
    "with_retry",
    "KeyringManager",
    "KeyIdentity",
    "NewIdentity",
    "FallbackIdentitySpec",
    "SessionStore",
    "FilesystemSessionStore",
    "WorkUnit",
    "BatchOrchestrator",
    "BatchReport",
    "UnitReport",
    "SigningIdentitySpec",
    "ResolvedSigner",
    "resolve_signer",
    "MigrationExecutor",
    "MigrationRequest",
    "MigrationResult",
    "describe_keys",
    "StakeExecutor",
    "StakeExecution",
    "ProvisioningResult",
    "NodeStatus",
    "NodeStatusClient",
    "configure_logging",
    "sanitize_text",
]
