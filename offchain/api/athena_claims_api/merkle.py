"""
Merkle allowlist tree.

Builds the sorted-pair Keccak-256 tree that AthenaTokenMerkle verifies
claims against. Leaves are keccak256(abi.encodePacked(address, uint256, uint256))
over (address, allowedAmount, dailyLimit).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from eth_abi.packed import encode_packed
from eth_utils import to_checksum_address
from web3 import Web3

UINT256_MAX = 2**256 - 1
ADDRESS_SIZE = 20
HASH_SIZE = 32
LEAF_SIZE = ADDRESS_SIZE + 2 * HASH_SIZE


class MerkleError(ValueError):
    """Base class for allowlist tree errors."""


class InvalidEntry(MerkleError):
    """Allowlist entry cannot be encoded."""


class EmptyAllowlist(MerkleError):
    """Tree requested for an allowlist with no entries."""


class IndexOutOfRange(MerkleError):
    """Proof requested for a leaf index outside the snapshot."""


class ProofMismatch(MerkleError):
    """Proof does not reconstruct the expected root."""


@dataclass(frozen=True)
class AllowlistEntry:
    """One (address, allowedAmount, dailyLimit) row of a period snapshot."""

    address: str
    allowed_amount: int
    daily_limit: int

    @classmethod
    def create(cls, address: str, allowed_amount: int, daily_limit: int) -> "AllowlistEntry":
        """Build an entry with the address normalized to checksum form."""
        try:
            checksummed = to_checksum_address(address)
        except (TypeError, ValueError) as e:
            raise InvalidEntry(f"Invalid address {address!r}: {e}") from e
        return cls(address=checksummed, allowed_amount=allowed_amount, daily_limit=daily_limit)


def _address_bytes(address: str) -> bytes:
    value = address[2:] if address[:2] in ("0x", "0X") else address
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise InvalidEntry(f"Address is not hex: {address!r}") from e
    if len(raw) != ADDRESS_SIZE:
        raise InvalidEntry(f"Address must be {ADDRESS_SIZE} bytes, got {len(raw)}")
    return raw


def _check_uint256(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidEntry(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise InvalidEntry(f"{name} out of uint256 range: {value}")


def encode_leaf(entry: AllowlistEntry) -> bytes:
    """
    Encode an entry as abi.encodePacked(address, uint256, uint256).

    Always 84 bytes: the 20-byte address followed by both amounts as
    32-byte big-endian integers.
    """
    raw_address = _address_bytes(entry.address)
    _check_uint256("allowed_amount", entry.allowed_amount)
    _check_uint256("daily_limit", entry.daily_limit)

    return encode_packed(
        ["address", "uint256", "uint256"],
        [f"0x{raw_address.hex()}", entry.allowed_amount, entry.daily_limit],
    )


def keccak(data: bytes) -> bytes:
    """Keccak-256 digest, as computed by the EVM."""
    return bytes(Web3.keccak(data))


def hash_leaf(entry: AllowlistEntry) -> bytes:
    """Leaf hash for an entry."""
    return keccak(encode_leaf(entry))


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Parent of two nodes; operands are sorted so position does not matter."""
    if b < a:
        a, b = b, a
    return keccak(a + b)


class MerkleTree:
    """
    Immutable sorted-pair Merkle tree over one allowlist snapshot.

    Layer 0 holds the leaves in input order; the last layer holds the root.
    A trailing odd node is paired with itself when building the next layer.
    """

    def __init__(self, entries: tuple[AllowlistEntry, ...], layers: tuple[tuple[bytes, ...], ...]):
        self._entries = entries
        self._layers = layers

    @classmethod
    def build(cls, entries: Sequence[AllowlistEntry]) -> "MerkleTree":
        """Build a tree from an ordered allowlist snapshot."""
        if not entries:
            raise EmptyAllowlist("Cannot build a Merkle tree from an empty allowlist")

        level = [hash_leaf(entry) for entry in entries]
        layers = [tuple(level)]

        while len(level) > 1:
            next_level = []
            for i in range(0, len(level), 2):
                left = level[i]
                right = level[i + 1] if i + 1 < len(level) else left
                next_level.append(hash_pair(left, right))
            level = next_level
            layers.append(tuple(level))

        return cls(tuple(entries), tuple(layers))

    @property
    def entries(self) -> tuple[AllowlistEntry, ...]:
        return self._entries

    @property
    def layers(self) -> tuple[tuple[bytes, ...], ...]:
        return self._layers

    @property
    def leaves(self) -> tuple[bytes, ...]:
        return self._layers[0]

    @property
    def root(self) -> bytes:
        return self._layers[-1][0]

    @property
    def root_hex(self) -> str:
        return f"0x{self.root.hex()}"

    @property
    def height(self) -> int:
        return len(self._layers) - 1

    def __len__(self) -> int:
        return len(self._entries)

    def prove(self, index: int) -> list[bytes]:
        """Sibling hashes from leaf to root for the leaf at `index`."""
        if index < 0 or index >= len(self.leaves):
            raise IndexOutOfRange(
                f"Leaf index {index} out of range (snapshot has {len(self.leaves)} leaves)"
            )

        proof = []
        for layer in self._layers[:-1]:
            sibling_index = index ^ 1
            if sibling_index < len(layer):
                proof.append(layer[sibling_index])
            else:
                # Odd trailing node is its own pair partner
                proof.append(layer[index])
            index //= 2
        return proof

    def index_of(self, address: str) -> int:
        """Leaf index of the first entry for `address` (case-insensitive)."""
        wanted = address.lower()
        for i, entry in enumerate(self._entries):
            if entry.address.lower() == wanted:
                return i
        raise KeyError(address)

    def entry_for(self, address: str) -> AllowlistEntry:
        return self._entries[self.index_of(address)]

    def prove_entry(self, entry: AllowlistEntry) -> list[bytes]:
        """Proof for an entry, looked up by its leaf hash."""
        leaf = hash_leaf(entry)
        try:
            index = self.leaves.index(leaf)
        except ValueError:
            raise IndexOutOfRange(f"Entry for {entry.address} is not in this snapshot") from None
        return self.prove(index)


def process_proof(leaf: bytes, proof: Sequence[bytes]) -> bytes:
    """Fold a proof over a leaf and return the reconstructed root."""
    computed = leaf
    for sibling in proof:
        computed = hash_pair(computed, sibling)
    return computed


def verify_proof(leaf: bytes, proof: Sequence[bytes], root: bytes) -> bool:
    """Check a proof the same way the contract's MerkleProof.verify does."""
    return process_proof(leaf, proof) == root


def ensure_proof(leaf: bytes, proof: Sequence[bytes], root: bytes) -> None:
    """Like verify_proof, but raises ProofMismatch on failure."""
    computed = process_proof(leaf, proof)
    if computed != root:
        raise ProofMismatch(
            f"Proof reconstructs 0x{computed.hex()}, expected 0x{root.hex()}"
        )


def parse_bytes32(value: str) -> bytes:
    """Parse a 0x-prefixed (or bare) 32-byte hex string."""
    hex_str = value[2:] if value[:2] in ("0x", "0X") else value
    try:
        raw = bytes.fromhex(hex_str)
    except ValueError as e:
        raise ValueError(f"Not a hex string: {value!r}") from e
    if len(raw) != HASH_SIZE:
        raise ValueError(f"Expected {HASH_SIZE} bytes, got {len(raw)}")
    return raw


def proof_to_hex(proof: Sequence[bytes]) -> list[str]:
    return [f"0x{p.hex()}" for p in proof]
