"""
Athena Claims API - HTTP service for Merkle-allowlisted token reward claims.

Provides REST endpoints for:
- Claiming rewards (POST /claims)
- Claim history (GET /claims/{address})
- Merkle root updates (POST /claims/update-merkle-root)
- Pausing the contract (POST /claims/pause, POST /claims/unpause)
- Admin role management (POST /claims/grant-admin, POST /claims/revoke-admin)
- Allowlist roots and proofs (GET /allowlist/{period}, GET /allowlist/{period}/proof/{address})
- Publishing a period root (POST /allowlist/{period}/publish)
- Health checks (GET /health)
"""

import uvicorn
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from web3 import Web3
from web3.types import TxReceipt

from . import __version__
from .allowlist import AllowlistError, AllowlistRegistry
from .auth import verify_api_token
from .claim import ClaimRejected, ClaimService
from .config import Settings, get_settings
from .db import ClaimDatabase
from .evm import EVMClient
from .merkle import MerkleError, hash_leaf, parse_bytes32, proof_to_hex
from .models import (
    AllowlistInfoResponse,
    ClaimHistoryResponse,
    ClaimRecordModel,
    ClaimRewardRequest,
    ClaimRewardResponse,
    ContractTxResponse,
    DryRunRequest,
    HealthResponse,
    ProofResponse,
    PublishAllowlistResponse,
    RoleRequest,
    UpdateMerkleRootRequest,
)

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


# ============================================================================
# Dependencies
# ============================================================================


def get_evm_client(request: Request) -> EVMClient:
    client = getattr(request.app.state, "evm_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="EVM client not initialized")
    return client


def get_database(request: Request) -> ClaimDatabase:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return db


def get_registry(request: Request) -> AllowlistRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Allowlist registry not initialized")
    return registry


def get_claim_service(
    db: ClaimDatabase = Depends(get_database),
    evm: EVMClient = Depends(get_evm_client),
    registry: AllowlistRegistry = Depends(get_registry),
) -> ClaimService:
    return ClaimService(db=db, evm=evm, registry=registry)


def _require_contract(settings: Settings, dry_run: bool) -> None:
    if not settings.private_key and not dry_run:
        raise HTTPException(status_code=503, detail="Private key not configured")
    if not settings.athena_token_merkle:
        raise HTTPException(status_code=503, detail="ATHENA_TOKEN_MERKLE not configured")


def _checksum_or_400(address: str, field: str = "address") -> str:
    try:
        return Web3.to_checksum_address(address.strip())
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {address}") from None


def _tx_fields(receipt: TxReceipt) -> dict:
    return {
        "success": receipt["status"] == 1,
        "tx_hash": receipt["transactionHash"].hex(),
        "gas_used": receipt["gasUsed"],
        "error": None if receipt["status"] == 1 else "Transaction reverted",
    }


# ============================================================================
# Application
# ============================================================================


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    When `settings` is given it replaces the environment-derived settings for
    every request, which is how tests and embedding callers configure the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        active = settings or get_settings()

        app.state.evm_client = EVMClient(active)
        app.state.db = ClaimDatabase(active.database_url)
        app.state.registry = AllowlistRegistry(active.allowlist_dir)

        logger.info(
            "API started",
            version=__version__,
            host=active.host,
            port=active.port,
            evm_rpc=active.evm_rpc_url,
            contract=active.athena_token_merkle,
            allowlist_dir=str(active.allowlist_dir),
        )

        yield

        app.state.db.close()
        logger.info("API stopped")

    app = FastAPI(
        title="Athena Claims API",
        description="Merkle-allowlisted token reward claims for AthenaTokenMerkle",
        version=__version__,
        lifespan=lifespan,
    )

    if settings is not None:
        app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=(settings or get_settings()).allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    # ========================================================================
    # Health Check
    # ========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check(
        request: Request,
        settings: Settings = Depends(get_settings),
    ) -> HealthResponse:
        """
        Check API health and connectivity.

        Returns service status, connectivity to the EVM RPC and database, and
        the contract's paused flag and Merkle root when they can be read.
        """
        evm_ok = False
        db_ok = False
        paused = None
        merkle_root = None

        evm_client = getattr(request.app.state, "evm_client", None)
        if evm_client:
            evm_ok = await evm_client.check_connectivity()

        if evm_ok and settings.athena_token_merkle:
            try:
                paused = await evm_client.is_paused()
                merkle_root = f"0x{(await evm_client.get_merkle_root()).hex()}"
            except Exception as e:
                logger.warning("Contract state unavailable", error=str(e))

        db = getattr(request.app.state, "db", None)
        if db:
            db_ok = db.check_connectivity()

        return HealthResponse(
            status="ok" if (evm_ok and db_ok) else "degraded",
            version=__version__,
            evm_rpc=evm_ok,
            database=db_ok,
            contracts={"athena_token_merkle": settings.athena_token_merkle},
            paused=paused,
            merkle_root=merkle_root,
        )

    # ========================================================================
    # Claims
    # ========================================================================

    @app.post("/claims", response_model=ClaimRewardResponse)
    async def claim_reward(
        request: ClaimRewardRequest,
        x_user_address: Optional[str] = Header(None),
        settings: Settings = Depends(get_settings),
        service: ClaimService = Depends(get_claim_service),
    ) -> ClaimRewardResponse:
        """
        Claim the reward for a period.

        Checks the claims table for an earlier claim, verifies the Merkle
        proof against the period snapshot, calls claimReward() on the
        contract and records the claim.
        """
        user_address = request.address or x_user_address
        if not user_address:
            raise HTTPException(status_code=400, detail="User address is required.")

        if not settings.private_key and not request.dry_run:
            raise HTTPException(status_code=503, detail="Private key not configured")
        if not settings.athena_token_merkle and not request.dry_run:
            raise HTTPException(status_code=503, detail="ATHENA_TOKEN_MERKLE not configured")

        try:
            outcome = await service.claim(
                address=user_address,
                period=request.period,
                amount=request.amount,
                allowed_amount=request.allowed_amount,
                daily_limit=request.daily_limit,
                proof=[parse_bytes32(p) for p in request.merkle_proof],
                dry_run=request.dry_run,
            )
        except ClaimRejected as e:
            raise HTTPException(status_code=e.status_code, detail=e.message) from e

        if outcome.dry_run:
            message = "Claim is valid (dry run)."
        elif outcome.success:
            message = "Reward claimed successfully."
        else:
            message = None

        return ClaimRewardResponse(
            success=outcome.success,
            message=message,
            address=outcome.address,
            period=outcome.period,
            amount=outcome.amount,
            proof_verified=outcome.proof_verified,
            merkle_root=f"0x{outcome.merkle_root.hex()}" if outcome.merkle_root else None,
            tx_hash=outcome.tx_hash,
            block_number=outcome.block_number,
            gas_used=outcome.gas_used,
            dry_run=outcome.dry_run,
            error=outcome.error,
        )

    @app.get("/claims/{address}", response_model=ClaimHistoryResponse)
    async def claim_history(
        address: str,
        db: ClaimDatabase = Depends(get_database),
    ) -> ClaimHistoryResponse:
        """List recorded claims for an address."""
        checksummed = _checksum_or_400(address)
        records = db.get_claims(checksummed)
        return ClaimHistoryResponse(
            address=checksummed,
            claims=[
                ClaimRecordModel(
                    period=r.period,
                    amount=r.amount,
                    tx_hash=r.tx_hash,
                    claimed_at=r.claimed_at,
                )
                for r in records
            ],
        )

    # ========================================================================
    # Contract Admin
    # ========================================================================

    @app.post(
        "/claims/update-merkle-root",
        response_model=ContractTxResponse,
        dependencies=[Depends(verify_api_token)],
    )
    async def update_merkle_root(
        request: UpdateMerkleRootRequest,
        settings: Settings = Depends(get_settings),
        evm: EVMClient = Depends(get_evm_client),
    ) -> ContractTxResponse:
        """Publish a Merkle root via updateMerkleRoot()."""
        _require_contract(settings, request.dry_run)
        root = parse_bytes32(request.merkle_root)
        root_hex = f"0x{root.hex()}"

        if request.dry_run:
            logger.info("Dry run: would update Merkle root", merkle_root=root_hex)
            return ContractTxResponse(success=True, merkle_root=root_hex, dry_run=True)

        try:
            receipt = await evm.update_merkle_root(root)
            logger.info("Merkle root updated", merkle_root=root_hex, tx_hash=receipt["transactionHash"].hex())
            return ContractTxResponse(
                message="Merkle root updated successfully.",
                merkle_root=root_hex,
                **_tx_fields(receipt),
            )
        except Exception as e:
            logger.error("Failed to update Merkle root", error=str(e), merkle_root=root_hex)
            return ContractTxResponse(success=False, merkle_root=root_hex, error=str(e))

    @app.post(
        "/claims/pause",
        response_model=ContractTxResponse,
        dependencies=[Depends(verify_api_token)],
    )
    async def pause_contract(
        request: Optional[DryRunRequest] = None,
        settings: Settings = Depends(get_settings),
        evm: EVMClient = Depends(get_evm_client),
    ) -> ContractTxResponse:
        """Pause claims on the contract."""
        dry_run = request.dry_run if request else False
        _require_contract(settings, dry_run)
        if dry_run:
            return ContractTxResponse(success=True, dry_run=True)

        try:
            receipt = await evm.pause()
            logger.info("Contract paused", tx_hash=receipt["transactionHash"].hex())
            return ContractTxResponse(message="Contract paused.", **_tx_fields(receipt))
        except Exception as e:
            logger.error("Failed to pause contract", error=str(e))
            return ContractTxResponse(success=False, error=str(e))

    @app.post(
        "/claims/unpause",
        response_model=ContractTxResponse,
        dependencies=[Depends(verify_api_token)],
    )
    async def unpause_contract(
        request: Optional[DryRunRequest] = None,
        settings: Settings = Depends(get_settings),
        evm: EVMClient = Depends(get_evm_client),
    ) -> ContractTxResponse:
        """Resume claims on the contract."""
        dry_run = request.dry_run if request else False
        _require_contract(settings, dry_run)
        if dry_run:
            return ContractTxResponse(success=True, dry_run=True)

        try:
            receipt = await evm.unpause()
            logger.info("Contract unpaused", tx_hash=receipt["transactionHash"].hex())
            return ContractTxResponse(message="Contract unpaused.", **_tx_fields(receipt))
        except Exception as e:
            logger.error("Failed to unpause contract", error=str(e))
            return ContractTxResponse(success=False, error=str(e))

    @app.post(
        "/claims/grant-admin",
        response_model=ContractTxResponse,
        dependencies=[Depends(verify_api_token)],
    )
    async def grant_admin_role(
        request: RoleRequest,
        settings: Settings = Depends(get_settings),
        evm: EVMClient = Depends(get_evm_client),
    ) -> ContractTxResponse:
        """Grant ADMIN_ROLE to an account."""
        account = _checksum_or_400(request.account, "account")
        _require_contract(settings, request.dry_run)
        if request.dry_run:
            return ContractTxResponse(success=True, account=account, dry_run=True)

        try:
            receipt = await evm.grant_admin_role(account)
            logger.info("Admin role granted", account=account, tx_hash=receipt["transactionHash"].hex())
            return ContractTxResponse(message="Admin role granted.", account=account, **_tx_fields(receipt))
        except Exception as e:
            logger.error("Failed to grant admin role", error=str(e), account=account)
            return ContractTxResponse(success=False, account=account, error=str(e))

    @app.post(
        "/claims/revoke-admin",
        response_model=ContractTxResponse,
        dependencies=[Depends(verify_api_token)],
    )
    async def revoke_admin_role(
        request: RoleRequest,
        settings: Settings = Depends(get_settings),
        evm: EVMClient = Depends(get_evm_client),
    ) -> ContractTxResponse:
        """Revoke ADMIN_ROLE from an account."""
        account = _checksum_or_400(request.account, "account")
        _require_contract(settings, request.dry_run)
        if request.dry_run:
            return ContractTxResponse(success=True, account=account, dry_run=True)

        try:
            receipt = await evm.revoke_admin_role(account)
            logger.info("Admin role revoked", account=account, tx_hash=receipt["transactionHash"].hex())
            return ContractTxResponse(message="Admin role revoked.", account=account, **_tx_fields(receipt))
        except Exception as e:
            logger.error("Failed to revoke admin role", error=str(e), account=account)
            return ContractTxResponse(success=False, account=account, error=str(e))

    # ========================================================================
    # Allowlist
    # ========================================================================

    def _tree_or_error(registry: AllowlistRegistry, period: int):
        try:
            return registry.get_tree(period)
        except AllowlistError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except MerkleError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    @app.get("/allowlist/{period}", response_model=AllowlistInfoResponse)
    async def allowlist_info(
        period: int,
        registry: AllowlistRegistry = Depends(get_registry),
    ) -> AllowlistInfoResponse:
        """Root and size of a period's allowlist tree."""
        tree = _tree_or_error(registry, period)
        return AllowlistInfoResponse(
            period=period,
            merkle_root=tree.root_hex,
            entries=len(tree),
            height=tree.height,
        )

    @app.get("/allowlist/{period}/proof/{address}", response_model=ProofResponse)
    async def allowlist_proof(
        period: int,
        address: str,
        registry: AllowlistRegistry = Depends(get_registry),
    ) -> ProofResponse:
        """Inclusion proof for an address in a period's allowlist."""
        checksummed = _checksum_or_400(address)
        tree = _tree_or_error(registry, period)
        try:
            index = tree.index_of(checksummed)
        except KeyError:
            raise HTTPException(
                status_code=404,
                detail=f"{checksummed} is not in the allowlist for period {period}",
            ) from None

        entry = tree.entries[index]
        return ProofResponse(
            period=period,
            address=entry.address,
            allowed_amount=entry.allowed_amount,
            daily_limit=entry.daily_limit,
            leaf_index=index,
            leaf=f"0x{hash_leaf(entry).hex()}",
            merkle_proof=proof_to_hex(tree.prove(index)),
            merkle_root=tree.root_hex,
        )

    @app.post(
        "/allowlist/{period}/publish",
        response_model=PublishAllowlistResponse,
        dependencies=[Depends(verify_api_token)],
    )
    async def publish_allowlist(
        period: int,
        request: Optional[DryRunRequest] = None,
        settings: Settings = Depends(get_settings),
        registry: AllowlistRegistry = Depends(get_registry),
        evm: EVMClient = Depends(get_evm_client),
    ) -> PublishAllowlistResponse:
        """
        Build the period's tree from its snapshot and publish the root.

        The root goes on-chain through updateMerkleRoot(); proofs for the
        period are then served from the same cached tree.
        """
        dry_run = request.dry_run if request else False
        _require_contract(settings, dry_run)
        tree = _tree_or_error(registry, period)

        if dry_run:
            logger.info("Dry run: would publish allowlist root", period=period, merkle_root=tree.root_hex)
            return PublishAllowlistResponse(
                success=True,
                period=period,
                merkle_root=tree.root_hex,
                entries=len(tree),
                dry_run=True,
            )

        try:
            receipt = await evm.update_merkle_root(tree.root)
            logger.info(
                "Allowlist root published",
                period=period,
                merkle_root=tree.root_hex,
                tx_hash=receipt["transactionHash"].hex(),
            )
            return PublishAllowlistResponse(
                period=period,
                merkle_root=tree.root_hex,
                entries=len(tree),
                **_tx_fields(receipt),
            )
        except Exception as e:
            logger.error("Failed to publish allowlist root", error=str(e), period=period)
            return PublishAllowlistResponse(
                success=False,
                period=period,
                merkle_root=tree.root_hex,
                entries=len(tree),
                error=str(e),
            )


app = create_app()


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "athena_claims_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
