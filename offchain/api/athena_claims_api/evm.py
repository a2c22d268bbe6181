"""
EVM client for interacting with the AthenaTokenMerkle contract.
"""

from typing import Any, Optional, Sequence

import structlog
from eth_account import Account
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.types import TxReceipt

from .config import Settings

logger = structlog.get_logger()

ADMIN_ROLE = bytes(Web3.keccak(text="ADMIN_ROLE"))


# Contract ABI (minimal)
ATHENA_TOKEN_MERKLE_ABI = [
    {
        "inputs": [
            {"name": "period", "type": "uint256"},
            {"name": "amount", "type": "uint256"},
            {"name": "allowedAmount", "type": "uint256"},
            {"name": "dailyLimit", "type": "uint256"},
            {"name": "merkleProof", "type": "bytes32[]"},
        ],
        "name": "claimReward",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "_merkleRoot", "type": "bytes32"}],
        "name": "updateMerkleRoot",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "merkleRoot",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "pause",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "unpause",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "paused",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "role", "type": "bytes32"},
            {"name": "account", "type": "address"},
        ],
        "name": "grantRole",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "role", "type": "bytes32"},
            {"name": "account", "type": "address"},
        ],
        "name": "revokeRole",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class EVMClient:
    """
    Async EVM client for AthenaTokenMerkle interactions.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.w3 = AsyncWeb3(AsyncHTTPProvider(settings.evm_rpc_url))
        self.account = (
            Account.from_key(settings.private_key) if settings.private_key else None
        )

    @property
    def address(self) -> str:
        """Get account address."""
        if not self.account:
            raise ValueError("No private key configured")
        return self.account.address

    async def check_connectivity(self) -> bool:
        """Check if EVM RPC is reachable."""
        try:
            await self.w3.eth.block_number
            return True
        except Exception:
            return False

    def get_contract(self) -> Any:
        """Get AthenaTokenMerkle contract instance."""
        if not self.settings.athena_token_merkle:
            raise ValueError("ATHENA_TOKEN_MERKLE not configured")
        return self.w3.eth.contract(
            address=self.w3.to_checksum_address(self.settings.athena_token_merkle),
            abi=ATHENA_TOKEN_MERKLE_ABI,
        )

    async def send_function(self, function: Any, gas_limit: Optional[int] = None) -> TxReceipt:
        """Sign and send a contract function call, then wait for its receipt."""
        if not self.account:
            raise ValueError("No private key configured")

        nonce = await self.w3.eth.get_transaction_count(self.address)
        gas_price = await self.w3.eth.gas_price

        tx = await function.build_transaction(
            {
                "chainId": self.settings.chain_id,
                "from": self.address,
                "nonce": nonce,
                "gas": gas_limit or self.settings.tx_gas_limit,
                "gasPrice": gas_price,
            }
        )

        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("Transaction sent", tx_hash=tx_hash.hex(), function=function.fn_name)

        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.settings.tx_timeout_seconds
        )
        if receipt["status"] != 1:
            logger.error("Transaction reverted", tx_hash=tx_hash.hex(), function=function.fn_name)
        return receipt

    async def claim_reward(
        self,
        period: int,
        amount: int,
        allowed_amount: int,
        daily_limit: int,
        merkle_proof: Sequence[bytes],
    ) -> TxReceipt:
        """Call AthenaTokenMerkle.claimReward()."""
        contract = self.get_contract()
        return await self.send_function(
            contract.functions.claimReward(
                period, amount, allowed_amount, daily_limit, list(merkle_proof)
            )
        )

    async def update_merkle_root(self, merkle_root: bytes) -> TxReceipt:
        """Call AthenaTokenMerkle.updateMerkleRoot()."""
        contract = self.get_contract()
        return await self.send_function(contract.functions.updateMerkleRoot(merkle_root))

    async def get_merkle_root(self) -> bytes:
        """Read the currently published root."""
        contract = self.get_contract()
        return bytes(await contract.functions.merkleRoot().call())

    async def pause(self) -> TxReceipt:
        """Call AthenaTokenMerkle.pause()."""
        return await self.send_function(self.get_contract().functions.pause())

    async def unpause(self) -> TxReceipt:
        """Call AthenaTokenMerkle.unpause()."""
        return await self.send_function(self.get_contract().functions.unpause())

    async def is_paused(self) -> bool:
        """Read the contract's paused flag."""
        return await self.get_contract().functions.paused().call()

    async def grant_admin_role(self, account: str) -> TxReceipt:
        """Call AthenaTokenMerkle.grantRole(ADMIN_ROLE, account)."""
        contract = self.get_contract()
        return await self.send_function(
            contract.functions.grantRole(ADMIN_ROLE, self.w3.to_checksum_address(account))
        )

    async def revoke_admin_role(self, account: str) -> TxReceipt:
        """Call AthenaTokenMerkle.revokeRole(ADMIN_ROLE, account)."""
        contract = self.get_contract()
        return await self.send_function(
            contract.functions.revokeRole(ADMIN_ROLE, self.w3.to_checksum_address(account))
        )

