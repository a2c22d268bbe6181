"""
Tests for the allowlist Merkle tree.
"""

import pytest

from athena_claims_api.merkle import (
    LEAF_SIZE,
    UINT256_MAX,
    AllowlistEntry,
    EmptyAllowlist,
    IndexOutOfRange,
    InvalidEntry,
    MerkleTree,
    ProofMismatch,
    encode_leaf,
    ensure_proof,
    hash_leaf,
    hash_pair,
    keccak,
    parse_bytes32,
    proof_to_hex,
    verify_proof,
)


ADDR_A = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
ADDR_B = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
ADDR_C = "0x90F79bf6EB2c4f870365E785982E1f101E93b906"
ADDR_D = "0x15d34AAf54267DB7D7c367839AAf71A00a2C6A65"
ADDR_E = "0x9965507D1a55bcC2695C58ba16FB37d819B0A4dc"


def make_entries(n: int) -> list[AllowlistEntry]:
    """n distinct entries with synthetic addresses."""
    return [
        AllowlistEntry.create(
            address="0x" + f"{i + 1:040x}",
            allowed_amount=1000 * (i + 1),
            daily_limit=100 * (i + 1),
        )
        for i in range(n)
    ]


class TestLeafEncoding:
    """Tests for leaf encoding."""

    def test_layout_matches_encode_packed(self) -> None:
        """Leaf bytes are address || uint256 || uint256, big-endian."""
        entry = AllowlistEntry.create(ADDR_A, 1000, 250)
        encoded = encode_leaf(entry)

        assert len(encoded) == LEAF_SIZE == 84
        assert encoded[:20] == bytes.fromhex(ADDR_A[2:])
        assert encoded[20:52] == (1000).to_bytes(32, "big")
        assert encoded[52:84] == (250).to_bytes(32, "big")

    def test_address_case_does_not_change_encoding(self) -> None:
        lower = AllowlistEntry(ADDR_A.lower(), 1, 2)
        checksummed = AllowlistEntry(ADDR_A, 1, 2)
        assert encode_leaf(lower) == encode_leaf(checksummed)

    def test_create_checksums_address(self) -> None:
        entry = AllowlistEntry.create(ADDR_A.lower(), 1, 2)
        assert entry.address == ADDR_A

    def test_create_rejects_bad_address(self) -> None:
        with pytest.raises(InvalidEntry):
            AllowlistEntry.create("0x1234", 1, 2)

    def test_short_address_rejected(self) -> None:
        with pytest.raises(InvalidEntry):
            encode_leaf(AllowlistEntry("0x" + "ab" * 19, 1, 2))

    def test_uint256_bounds(self) -> None:
        encode_leaf(AllowlistEntry(ADDR_A, UINT256_MAX, 0))

        with pytest.raises(InvalidEntry):
            encode_leaf(AllowlistEntry(ADDR_A, UINT256_MAX + 1, 0))
        with pytest.raises(InvalidEntry):
            encode_leaf(AllowlistEntry(ADDR_A, 1, -1))

    def test_non_integer_amount_rejected(self) -> None:
        with pytest.raises(InvalidEntry):
            encode_leaf(AllowlistEntry(ADDR_A, "1000", 1))  # type: ignore[arg-type]
        with pytest.raises(InvalidEntry):
            encode_leaf(AllowlistEntry(ADDR_A, True, 1))  # type: ignore[arg-type]

    def test_invalid_entry_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            encode_leaf(AllowlistEntry(ADDR_A, -1, 0))


class TestHasher:
    """Tests for hashing primitives."""

    def test_keccak_not_sha3(self) -> None:
        """Keccak-256 of empty input (differs from NIST SHA3-256)."""
        assert keccak(b"").hex() == (
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    def test_hash_leaf_is_single_keccak(self) -> None:
        entry = AllowlistEntry.create(ADDR_A, 5, 6)
        assert hash_leaf(entry) == keccak(encode_leaf(entry))

    def test_hash_pair_is_order_independent(self) -> None:
        a = keccak(b"a")
        b = keccak(b"b")
        assert hash_pair(a, b) == hash_pair(b, a)
        assert hash_pair(a, b) == keccak(min(a, b) + max(a, b))


class TestTreeBuilding:
    """Tests for tree construction."""

    def test_empty_allowlist_rejected(self) -> None:
        with pytest.raises(EmptyAllowlist):
            MerkleTree.build([])

    def test_deterministic(self) -> None:
        entries = make_entries(7)
        assert MerkleTree.build(entries).root == MerkleTree.build(list(entries)).root

    def test_single_entry_tree(self) -> None:
        entry = AllowlistEntry.create(ADDR_A, 1000, 100)
        tree = MerkleTree.build([entry])

        assert tree.height == 0
        assert tree.root == hash_leaf(entry)
        assert tree.prove(0) == []
        assert verify_proof(hash_leaf(entry), [], tree.root)

    def test_two_entries(self) -> None:
        entries = make_entries(2)
        tree = MerkleTree.build(entries)
        l0, l1 = hash_leaf(entries[0]), hash_leaf(entries[1])

        assert tree.root == hash_pair(l0, l1)
        assert tree.prove(0) == [l1]
        assert tree.prove(1) == [l0]

    def test_odd_layer_duplicates_last_node(self) -> None:
        """Three leaves: the unpaired third leaf is hashed with itself."""
        entries = [
            AllowlistEntry.create(ADDR_A, 100, 10),
            AllowlistEntry.create(ADDR_B, 200, 20),
            AllowlistEntry.create(ADDR_C, 300, 30),
        ]
        tree = MerkleTree.build(entries)

        l0, l1, l2 = (hash_leaf(e) for e in entries)
        layer1 = [
            keccak(min(l0, l1) + max(l0, l1)),
            keccak(l2 + l2),
        ]
        root = keccak(min(layer1) + max(layer1))

        assert list(tree.leaves) == [l0, l1, l2]
        assert list(tree.layers[1]) == layer1
        assert tree.root == root

        proof = tree.prove(2)
        assert proof == [l2, layer1[0]]
        assert verify_proof(l2, proof, root)

    def test_five_entries_duplicate_on_two_levels(self) -> None:
        """Five leaves leave an odd node on layers 0 and 1."""
        entries = [
            AllowlistEntry.create(addr, 10 * i, i)
            for i, addr in enumerate([ADDR_A, ADDR_B, ADDR_C, ADDR_D, ADDR_E], start=1)
        ]
        tree = MerkleTree.build(entries)

        assert [len(layer) for layer in tree.layers] == [5, 3, 2, 1]
        l4 = tree.leaves[4]
        assert tree.layers[1][2] == hash_pair(l4, l4)
        assert tree.layers[2][1] == hash_pair(tree.layers[1][2], tree.layers[1][2])

    def test_input_order_preserved(self) -> None:
        entries = make_entries(4)
        tree = MerkleTree.build(entries)
        assert list(tree.leaves) == [hash_leaf(e) for e in entries]
        assert tree.entries == tuple(entries)

    def test_root_hex(self) -> None:
        tree = MerkleTree.build(make_entries(3))
        assert tree.root_hex == "0x" + tree.root.hex()
        assert len(tree.root) == 32


class TestProofs:
    """Tests for proof generation and verification."""

    @pytest.mark.parametrize("size", [1, 2, 3, 4, 5, 8, 13])
    def test_every_leaf_verifies(self, size: int) -> None:
        tree = MerkleTree.build(make_entries(size))
        for i in range(size):
            proof = tree.prove(i)
            assert len(proof) == tree.height
            assert verify_proof(tree.leaves[i], proof, tree.root)

    def test_proof_for_other_leaf_rejected(self) -> None:
        tree = MerkleTree.build(make_entries(6))
        proof_for_1 = tree.prove(1)
        for j in range(6):
            if j != 1:
                assert not verify_proof(tree.leaves[j], proof_for_1, tree.root)

    def test_tampered_proof_rejected(self) -> None:
        tree = MerkleTree.build(make_entries(8))
        proof = tree.prove(3)

        for i in range(len(proof)):
            for byte_index in (0, 15, 31):
                tampered = list(proof)
                mutated = bytearray(tampered[i])
                mutated[byte_index] ^= 0x01
                tampered[i] = bytes(mutated)
                assert not verify_proof(tree.leaves[3], tampered, tree.root)

    def test_stale_root_rejected(self) -> None:
        old = MerkleTree.build(make_entries(4))
        new = MerkleTree.build(make_entries(5))
        assert not verify_proof(old.leaves[0], old.prove(0), new.root)

    def test_index_out_of_range(self) -> None:
        tree = MerkleTree.build(make_entries(3))
        with pytest.raises(IndexOutOfRange):
            tree.prove(3)
        with pytest.raises(IndexOutOfRange):
            tree.prove(-1)

    def test_ensure_proof_raises_mismatch(self) -> None:
        tree = MerkleTree.build(make_entries(4))
        ensure_proof(tree.leaves[2], tree.prove(2), tree.root)
        with pytest.raises(ProofMismatch):
            ensure_proof(tree.leaves[2], tree.prove(1), tree.root)

    def test_prove_entry_and_lookup(self) -> None:
        entries = make_entries(4)
        tree = MerkleTree.build(entries)

        assert tree.prove_entry(entries[2]) == tree.prove(2)
        assert tree.index_of(entries[2].address.lower()) == 2
        assert tree.entry_for(entries[2].address) == entries[2]

        with pytest.raises(KeyError):
            tree.index_of(ADDR_A)
        with pytest.raises(IndexOutOfRange):
            tree.prove_entry(AllowlistEntry.create(entries[0].address, 1, 1))


class TestHexHelpers:
    """Tests for hex conversion helpers."""

    def test_parse_bytes32(self) -> None:
        assert parse_bytes32("0x" + "ab" * 32) == bytes([0xAB] * 32)
        assert parse_bytes32("cd" * 32) == bytes([0xCD] * 32)

        with pytest.raises(ValueError):
            parse_bytes32("0x1234")
        with pytest.raises(ValueError):
            parse_bytes32("0x" + "zz" * 32)

    def test_proof_to_hex(self) -> None:
        assert proof_to_hex([bytes(32)]) == ["0x" + "00" * 32]
