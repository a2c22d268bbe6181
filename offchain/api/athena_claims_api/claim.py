"""
Reward claim workflow.

A claim goes through:
1) entry validation and user registration
2) duplicate check against the claims table
3) off-chain proof check against the period's snapshot root (when the
   snapshot is known locally; otherwise the contract is the only verifier)
4) AthenaTokenMerkle.claimReward()
5) claim row insert
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import structlog

from .allowlist import AllowlistError, AllowlistRegistry
from .db import MAX_PERIOD, AlreadyClaimed, ClaimDatabase
from .evm import EVMClient
from .merkle import (
    AllowlistEntry,
    InvalidEntry,
    MerkleError,
    ProofMismatch,
    ensure_proof,
    hash_leaf,
)

logger = structlog.get_logger()


class ClaimRejected(Exception):
    """Claim refused before or after reaching the contract."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


@dataclass
class ClaimOutcome:
    success: bool
    address: str
    period: int
    amount: int
    proof_verified: bool
    merkle_root: Optional[bytes] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    dry_run: bool = False
    error: Optional[str] = None


class ClaimService:
    """Validates and executes reward claims."""

    def __init__(self, db: ClaimDatabase, evm: EVMClient, registry: AllowlistRegistry):
        self.db = db
        self.evm = evm
        self.registry = registry

    def check_proof(self, leaf: bytes, proof: Sequence[bytes], period: int) -> Optional[bytes]:
        """
        Verify a proof against the local snapshot root for `period`.

        Returns the root the proof was checked against, or None when no
        snapshot is available for the period.

        Raises:
            ProofMismatch: if the proof does not reconstruct the snapshot root
        """
        if not self.registry.has_period(period):
            return None
        tree = self.registry.get_tree(period)
        ensure_proof(leaf, proof, tree.root)
        return tree.root

    async def claim(
        self,
        address: str,
        period: int,
        amount: int,
        allowed_amount: int,
        daily_limit: int,
        proof: Sequence[bytes],
        dry_run: bool = False,
    ) -> ClaimOutcome:
        try:
            entry = AllowlistEntry.create(address, allowed_amount, daily_limit)
            leaf = hash_leaf(entry)
        except InvalidEntry as e:
            raise ClaimRejected(400, str(e)) from e

        if period < 0 or period > MAX_PERIOD:
            raise ClaimRejected(400, f"Period out of range: {period}")
        if amount > entry.allowed_amount:
            raise ClaimRejected(400, "Amount exceeds allowed amount")

        self.db.ensure_user(entry.address)

        if self.db.has_claimed(entry.address, period):
            raise ClaimRejected(409, "Reward already claimed for this period.")

        try:
            root = self.check_proof(leaf, proof, period)
        except ProofMismatch as e:
            logger.warning("Proof rejected", address=entry.address, period=period, error=str(e))
            raise ClaimRejected(400, f"Invalid Merkle proof: {e}") from e
        except (AllowlistError, MerkleError) as e:
            logger.error("Allowlist snapshot unusable", period=period, error=str(e))
            raise ClaimRejected(503, f"Allowlist for period {period} is unavailable: {e}") from e

        if root is None:
            logger.warning(
                "No local snapshot, deferring proof check to contract",
                address=entry.address,
                period=period,
            )

        outcome = ClaimOutcome(
            success=True,
            address=entry.address,
            period=period,
            amount=amount,
            proof_verified=root is not None,
            merkle_root=root,
            dry_run=dry_run,
        )
        if dry_run:
            return outcome

        try:
            receipt = await self.evm.claim_reward(
                period=period,
                amount=amount,
                allowed_amount=entry.allowed_amount,
                daily_limit=entry.daily_limit,
                merkle_proof=proof,
            )
        except Exception as e:
            logger.error(
                "Failed to claim reward",
                error=str(e),
                address=entry.address,
                period=period,
            )
            outcome.success = False
            outcome.error = str(e)
            return outcome

        outcome.tx_hash = receipt["transactionHash"].hex()
        outcome.block_number = receipt["blockNumber"]
        outcome.gas_used = receipt["gasUsed"]

        if receipt["status"] != 1:
            outcome.success = False
            outcome.error = "Transaction reverted"
            return outcome

        try:
            self.db.record_claim(entry.address, period, amount, tx_hash=outcome.tx_hash)
        except AlreadyClaimed as e:
            # Lost a race with a concurrent request after the transaction went through
            logger.error(
                "Claim row already present after on-chain claim",
                address=entry.address,
                period=period,
                tx_hash=outcome.tx_hash,
            )
            raise ClaimRejected(409, str(e)) from e

        logger.info(
            "Reward claimed",
            address=entry.address,
            period=period,
            amount=str(amount),
            tx_hash=outcome.tx_hash,
        )
        return outcome
