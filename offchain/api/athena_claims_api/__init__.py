"""
Athena Claims API - HTTP service for Merkle-allowlisted token reward claims.

Provides REST endpoints for:
- Claiming period rewards with a Merkle proof
- Serving allowlist roots and per-user proofs
- Publishing Merkle roots and administering the AthenaTokenMerkle contract
- Health checks
"""

__version__ = "0.1.0"
