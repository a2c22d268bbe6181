"""
Pydantic models for API requests and responses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .db import MAX_PERIOD
from .merkle import parse_bytes32


def _check_bytes32(value: str) -> str:
    parse_bytes32(value)
    return value


# ============================================================================
# Claim Reward
# ============================================================================

class ClaimRewardRequest(BaseModel):
    """Request to claim a period reward."""

    address: Optional[str] = Field(
        None,
        description="Claimant EVM address (0x...). Falls back to the X-User-Address header",
    )
    period: int = Field(..., ge=0, le=MAX_PERIOD, description="Claim period")
    amount: int = Field(..., gt=0, description="Amount to claim (token base units)")
    allowed_amount: int = Field(
        ..., ge=0, alias="allowedAmount", description="allowedAmount from the allowlist entry"
    )
    daily_limit: int = Field(
        ..., ge=0, alias="dailyLimit", description="dailyLimit from the allowlist entry"
    )
    merkle_proof: list[str] = Field(
        default_factory=list,
        alias="merkleProof",
        description="Sibling hashes (0x-prefixed bytes32), leaf side first",
    )
    dry_run: bool = Field(False, description="If true, validate without sending tx")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "address": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
                    "period": 1,
                    "amount": 100,
                    "allowedAmount": 1000,
                    "dailyLimit": 200,
                    "merkleProof": ["0x" + "ab" * 32],
                    "dry_run": False,
                }
            ]
        },
    }

    @field_validator("merkle_proof")
    @classmethod
    def _validate_proof(cls, value: list[str]) -> list[str]:
        return [_check_bytes32(v) for v in value]


class ClaimRewardResponse(BaseModel):
    """Response from a reward claim."""

    success: bool = Field(..., description="Whether the claim went through")
    message: Optional[str] = Field(None, description="Human-readable status")
    address: Optional[str] = Field(None, description="Claimant address (checksummed)")
    period: Optional[int] = Field(None, description="Claim period")
    amount: Optional[int] = Field(None, description="Claimed amount")
    proof_verified: bool = Field(
        False, description="Whether the proof was checked against a local snapshot"
    )
    merkle_root: Optional[str] = Field(None, description="Root the proof was checked against")
    tx_hash: Optional[str] = Field(None, description="Transaction hash (if not dry run)")
    block_number: Optional[int] = Field(None, description="Block number")
    gas_used: Optional[int] = Field(None, description="Gas used")
    dry_run: bool = Field(False, description="Whether this was a dry run")
    error: Optional[str] = Field(None, description="Error message if failed")


class ClaimRecordModel(BaseModel):
    """A recorded claim."""

    period: int
    amount: int
    tx_hash: Optional[str] = None
    claimed_at: datetime


class ClaimHistoryResponse(BaseModel):
    """Claims recorded for one address."""

    address: str
    claims: list[ClaimRecordModel]


# ============================================================================
# Contract Admin
# ============================================================================

class UpdateMerkleRootRequest(BaseModel):
    """Request to publish a Merkle root on-chain."""

    merkle_root: str = Field(..., alias="merkleRoot", description="Root (0x-prefixed bytes32)")
    dry_run: bool = Field(False, description="If true, validate without sending tx")

    model_config = {"populate_by_name": True}

    @field_validator("merkle_root")
    @classmethod
    def _validate_root(cls, value: str) -> str:
        return _check_bytes32(value)


class RoleRequest(BaseModel):
    """Request to grant or revoke ADMIN_ROLE."""

    account: str = Field(..., description="Account EVM address (0x...)")
    dry_run: bool = Field(False, description="If true, validate without sending tx")


class DryRunRequest(BaseModel):
    dry_run: bool = Field(False, description="If true, validate without sending tx")


class ContractTxResponse(BaseModel):
    """Response from a privileged contract call."""

    success: bool = Field(..., description="Whether the call succeeded")
    message: Optional[str] = Field(None, description="Human-readable status")
    account: Optional[str] = Field(None, description="Target account (role changes)")
    merkle_root: Optional[str] = Field(None, description="Root (root updates)")
    tx_hash: Optional[str] = Field(None, description="Transaction hash (if not dry run)")
    gas_used: Optional[int] = Field(None, description="Gas used (if not dry run)")
    dry_run: bool = Field(False, description="Whether this was a dry run")
    error: Optional[str] = Field(None, description="Error message if failed")


# ============================================================================
# Allowlist
# ============================================================================

class AllowlistInfoResponse(BaseModel):
    """Summary of one period's allowlist tree."""

    period: int
    merkle_root: str
    entries: int
    height: int


class PublishAllowlistResponse(BaseModel):
    """Response from building a period tree and publishing its root."""

    success: bool
    period: int
    merkle_root: Optional[str] = None
    entries: Optional[int] = None
    tx_hash: Optional[str] = None
    gas_used: Optional[int] = None
    dry_run: bool = False
    error: Optional[str] = None


class ProofResponse(BaseModel):
    """Inclusion proof for one allowlist entry."""

    period: int
    address: str
    allowed_amount: int = Field(..., alias="allowedAmount")
    daily_limit: int = Field(..., alias="dailyLimit")
    leaf_index: int
    leaf: str
    merkle_proof: list[str] = Field(..., alias="merkleProof")
    merkle_root: str

    model_config = {"populate_by_name": True}


# ============================================================================
# Health Check
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    evm_rpc: bool = Field(..., description="EVM RPC connectivity")
    database: bool = Field(..., description="Database connectivity")
    contracts: dict[str, Optional[str]] = Field(
        ...,
        description="Configured contract addresses"
    )
    paused: Optional[bool] = Field(None, description="On-chain paused flag, if readable")
    merkle_root: Optional[str] = Field(None, description="On-chain Merkle root, if readable")
