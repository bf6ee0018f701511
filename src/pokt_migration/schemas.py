"""Persisted record schemas."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_STAKE_AMOUNT = "60005000000upokt"
DEFAULT_PUBLIC_URL = "https://relayminer.shannon-mainnet.eu.nodefleet.net"
DEFAULT_SERVICES = (
    "eth",
    "solana",
    "bsc",
    "poly",
    "kava",
    "osmosis",
    "op",
    "eth-holesky-testnet",
)
OWNER_REV_SHARE = 95.0
OPERATOR_REV_SHARE = 5.0


class SessionDescriptor(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str
    kind: Literal["migration", "stake-provisioning"]
    params: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(..., alias="createdAt")


class UnitResultRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int = Field(..., ge=1)
    name: str
    status: Literal["pending", "succeeded", "failed"]
    attempts: int = Field(0, ge=0)
    signer: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    output: Optional[Dict[str, Any]] = None
    finished_at: Optional[str] = None


def _check_shares(value: Dict[str, float]) -> Dict[str, float]:
    if value and abs(sum(value.values()) - 100.0) > 1e-6:
        raise ValueError("rev share percentages must sum to 100")
    return value


class StakeEndpoint(BaseModel):
    model_config = ConfigDict(extra="allow")

    publicly_exposed_url: str
    rpc_type: str = "json_rpc"


class StakeService(BaseModel):
    model_config = ConfigDict(extra="allow")

    service_id: str
    endpoints: List[StakeEndpoint] = Field(..., min_length=1)
    rev_share_percent: Dict[str, float] = Field(default_factory=dict)

    @field_validator("rev_share_percent")
    @classmethod
    def _shares_sum_to_100(cls, value: Dict[str, float]) -> Dict[str, float]:
        return _check_shares(value)


class StakeConfig(BaseModel):
    """Supplier stake file. Keys pocketd understands but this tool does not set are kept."""

    model_config = ConfigDict(extra="allow")

    stake_amount: str = DEFAULT_STAKE_AMOUNT
    owner_address: str
    operator_address: str
    default_rev_share_percent: Optional[Dict[str, float]] = None
    services: List[StakeService] = Field(..., min_length=1)

    @field_validator("default_rev_share_percent")
    @classmethod
    def _default_shares_sum_to_100(cls, value: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        return _check_shares(value) if value is not None else None

    @field_validator("stake_amount")
    @classmethod
    def _amount_in_upokt(cls, value: str) -> str:
        if not value.endswith("upokt") or not value[: -len("upokt")].isdigit():
            raise ValueError("stake_amount must look like '<integer>upokt'")
        return value


class AccountMapping(BaseModel):
    model_config = ConfigDict(extra="allow")

    morse_src_address: Optional[str] = None
    shannon_dest_address: Optional[str] = None


class MigrationOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    mappings: List[AccountMapping]
    tx_hash: Optional[str] = None
    tx_code: int = 0


class WalletRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    node_number: int = Field(..., alias="nodeNumber", ge=1)
    wallet_name: str = Field(..., alias="walletName")
    address: str
    mnemonic: str = Field(..., repr=False)
    home_path: str = Field(..., alias="homePath")
    stake_file: str = Field(..., alias="stakeFile")


class WalletMnemonicsFile(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    created_at: str = Field(..., alias="createdAt")
    total_wallets: int = Field(..., alias="totalWallets", ge=0)
    wallets: List[WalletRecord] = Field(default_factory=list)
