"""
Tests for allowlist snapshot loading and the per-period registry.
"""

import json
import os
from pathlib import Path

import pytest

from athena_claims_api.allowlist import (
    AllowlistError,
    AllowlistRegistry,
    load_allowlist,
    parse_entries,
)
from athena_claims_api.merkle import AllowlistEntry, EmptyAllowlist, MerkleTree

ADDR_A = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
ADDR_B = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

SNAPSHOT = [
    {"address": ADDR_A.lower(), "allowedAmount": 1000, "dailyLimit": 100},
    {"address": ADDR_B, "allowedAmount": "2000", "dailyLimit": "200"},
]


def write_json(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestParsing:
    """Tests for snapshot parsing."""

    def test_parse_camel_and_snake_case(self) -> None:
        entries = parse_entries(
            [
                {"address": ADDR_A, "allowedAmount": 1, "dailyLimit": 2},
                {"address": ADDR_B, "allowed_amount": 3, "daily_limit": 4},
            ]
        )
        assert entries == [
            AllowlistEntry(ADDR_A, 1, 2),
            AllowlistEntry(ADDR_B, 3, 4),
        ]

    def test_large_amount_as_string(self) -> None:
        big = str(2**200)
        entries = parse_entries([{"address": ADDR_A, "allowedAmount": big, "dailyLimit": "0"}])
        assert entries[0].allowed_amount == 2**200

    def test_missing_field(self) -> None:
        with pytest.raises(AllowlistError, match="Row 0"):
            parse_entries([{"address": ADDR_A, "allowedAmount": 1}])

    def test_negative_or_fractional_amount(self) -> None:
        with pytest.raises(AllowlistError):
            parse_entries([{"address": ADDR_A, "allowedAmount": "-5", "dailyLimit": 1}])
        with pytest.raises(AllowlistError):
            parse_entries([{"address": ADDR_A, "allowedAmount": 1.5, "dailyLimit": 1}])

    def test_invalid_address(self) -> None:
        with pytest.raises(AllowlistError, match="Row 1"):
            parse_entries(
                [
                    {"address": ADDR_A, "allowedAmount": 1, "dailyLimit": 1},
                    {"address": "not-an-address", "allowedAmount": 1, "dailyLimit": 1},
                ]
            )


class TestLoading:
    """Tests for reading snapshot files."""

    def test_load_json(self, tmp_path: Path) -> None:
        entries = load_allowlist(write_json(tmp_path / "1.json", SNAPSHOT))
        assert [e.address for e in entries] == [ADDR_A, ADDR_B]
        assert entries[1].allowed_amount == 2000

    def test_load_json_with_entries_key(self, tmp_path: Path) -> None:
        entries = load_allowlist(write_json(tmp_path / "1.json", {"entries": SNAPSHOT}))
        assert len(entries) == 2

    def test_load_csv(self, tmp_path: Path) -> None:
        path = tmp_path / "2.csv"
        path.write_text(
            "address,allowed_amount,daily_limit\n"
            f"{ADDR_A},1000,100\n"
            f"{ADDR_B},2000,200\n",
            encoding="utf-8",
        )
        entries = load_allowlist(path)
        assert entries == [
            AllowlistEntry(ADDR_A, 1000, 100),
            AllowlistEntry(ADDR_B, 2000, 200),
        ]

    def test_csv_and_json_give_same_root(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "1.csv"
        csv_path.write_text(
            "address,allowed_amount,daily_limit\n"
            f"{ADDR_A},1000,100\n"
            f"{ADDR_B},2000,200\n",
            encoding="utf-8",
        )
        json_path = write_json(tmp_path / "1.json", SNAPSHOT)
        assert (
            MerkleTree.build(load_allowlist(csv_path)).root
            == MerkleTree.build(load_allowlist(json_path)).root
        )

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(AllowlistError, match="not found"):
            load_allowlist(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "1.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(AllowlistError, match="Invalid JSON"):
            load_allowlist(path)

    def test_json_must_be_list(self, tmp_path: Path) -> None:
        with pytest.raises(AllowlistError):
            load_allowlist(write_json(tmp_path / "1.json", {"foo": 1}))


class TestRegistry:
    """Tests for AllowlistRegistry."""

    def test_get_tree_builds_and_caches(self, tmp_path: Path) -> None:
        write_json(tmp_path / "1.json", SNAPSHOT)
        registry = AllowlistRegistry(tmp_path)

        tree = registry.get_tree(1)
        assert len(tree) == 2
        assert registry.get_tree(1) is tree

    def test_unknown_period(self, tmp_path: Path) -> None:
        registry = AllowlistRegistry(tmp_path)
        assert not registry.has_period(9)
        with pytest.raises(AllowlistError):
            registry.get_tree(9)

    def test_changed_snapshot_builds_new_tree(self, tmp_path: Path) -> None:
        path = write_json(tmp_path / "1.json", SNAPSHOT[:1])
        registry = AllowlistRegistry(tmp_path)
        first = registry.get_tree(1)

        write_json(path, SNAPSHOT)
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        second = registry.get_tree(1)
        assert second is not first
        assert len(first) == 1
        assert len(second) == 2

    def test_register_in_memory(self, tmp_path: Path) -> None:
        registry = AllowlistRegistry(tmp_path)
        tree = registry.register(5, [AllowlistEntry.create(ADDR_A, 1, 1)])

        assert registry.has_period(5)
        assert registry.get_tree(5) is tree
        assert registry.periods() == [5]

    def test_snapshot_written_after_register_replaces_tree(self, tmp_path: Path) -> None:
        registry = AllowlistRegistry(tmp_path)
        registered = registry.register(1, [AllowlistEntry.create(ADDR_A, 1, 1)])

        path = write_json(tmp_path / "1.json", SNAPSHOT)
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        loaded = registry.get_tree(1)
        assert loaded is not registered
        assert len(loaded) == 2

    def test_periods_lists_snapshot_files(self, tmp_path: Path) -> None:
        write_json(tmp_path / "3.json", SNAPSHOT)
        write_json(tmp_path / "1.json", SNAPSHOT)
        (tmp_path / "notes.json").write_text("[]", encoding="utf-8")
        assert AllowlistRegistry(tmp_path).periods() == [1, 3]

    def test_empty_snapshot(self, tmp_path: Path) -> None:
        write_json(tmp_path / "1.json", [])
        with pytest.raises(EmptyAllowlist):
            AllowlistRegistry(tmp_path).get_tree(1)
