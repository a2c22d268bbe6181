"""
Allowlist snapshots.

One file per claim period under the allowlist directory:
- <period>.json: list of {"address", "allowedAmount", "dailyLimit"} objects
  (snake_case keys are accepted as well)
- <period>.csv: header row address,allowed_amount,daily_limit

Amounts may be JSON integers or decimal strings (uint256 values do not fit
in a JSON double).
"""

from __future__ import annotations

import csv
import json
import time
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog

from .merkle import AllowlistEntry, MerkleTree, MerkleError

logger = structlog.get_logger()


class AllowlistError(ValueError):
    """Snapshot file is missing or malformed."""


def _parse_amount(value: Any, field: str, row: int) -> int:
    if isinstance(value, bool):
        raise AllowlistError(f"Row {row}: {field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise AllowlistError(f"Row {row}: {field} must be a non-negative integer, got {value!r}")


def _pick(obj: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in obj:
            return obj[key]
    return None


def parse_entries(rows: Iterable[dict[str, Any]]) -> list[AllowlistEntry]:
    """Convert raw rows into allowlist entries, keeping their order."""
    entries = []
    for i, obj in enumerate(rows):
        address = _pick(obj, "address")
        allowed = _pick(obj, "allowedAmount", "allowed_amount")
        limit = _pick(obj, "dailyLimit", "daily_limit")
        if address is None or allowed is None or limit is None:
            raise AllowlistError(f"Row {i}: address, allowedAmount and dailyLimit are required")
        try:
            entries.append(
                AllowlistEntry.create(
                    address=str(address).strip(),
                    allowed_amount=_parse_amount(allowed, "allowedAmount", i),
                    daily_limit=_parse_amount(limit, "dailyLimit", i),
                )
            )
        except MerkleError as e:
            raise AllowlistError(f"Row {i}: {e}") from e
    return entries


def load_allowlist(path: Path) -> list[AllowlistEntry]:
    """Load a snapshot from a JSON or CSV file."""
    if not path.exists():
        raise AllowlistError(f"Allowlist file not found: {path}")

    if path.suffix == ".csv":
        with path.open(newline="", encoding="utf-8") as f:
            return parse_entries(csv.DictReader(f))

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise AllowlistError(f"Invalid JSON in {path}: {e}") from e
    if isinstance(data, dict):
        data = data.get("entries")
    if not isinstance(data, list):
        raise AllowlistError(f"{path} must contain a list of entries")
    return parse_entries(data)


class AllowlistRegistry:
    """
    Per-period allowlist trees.

    Trees are built on first use and cached. A cached tree is rebuilt only
    when the snapshot file is modified after the tree was cached. A tree
    passed to register() counts as cached at registration time, so a
    snapshot file written later for the same period replaces it.
    """

    def __init__(self, allowlist_dir: Path):
        self.allowlist_dir = Path(allowlist_dir)
        self._trees: dict[int, tuple[float, MerkleTree]] = {}

    def snapshot_path(self, period: int) -> Optional[Path]:
        for suffix in (".json", ".csv"):
            candidate = self.allowlist_dir / f"{period}{suffix}"
            if candidate.exists():
                return candidate
        return None

    def has_period(self, period: int) -> bool:
        return period in self._trees or self.snapshot_path(period) is not None

    def periods(self) -> list[int]:
        found = set(self._trees)
        if self.allowlist_dir.is_dir():
            for path in self.allowlist_dir.iterdir():
                if path.suffix in (".json", ".csv") and path.stem.isdigit():
                    found.add(int(path.stem))
        return sorted(found)

    def register(self, period: int, entries: list[AllowlistEntry]) -> MerkleTree:
        """Build and cache a tree for a snapshot supplied in memory."""
        tree = MerkleTree.build(entries)
        self._trees[period] = (time.time(), tree)
        logger.info("Allowlist registered", period=period, entries=len(tree), root=tree.root_hex)
        return tree

    def get_tree(self, period: int) -> MerkleTree:
        """Tree for a period; raises AllowlistError if there is no snapshot."""
        cached = self._trees.get(period)
        path = self.snapshot_path(period)

        if path is None:
            if cached is not None:
                return cached[1]
            raise AllowlistError(f"No allowlist snapshot for period {period}")

        mtime = path.stat().st_mtime
        if cached is not None and cached[0] >= mtime:
            return cached[1]

        tree = MerkleTree.build(load_allowlist(path))
        self._trees[period] = (mtime, tree)
        logger.info(
            "Allowlist loaded",
            period=period,
            path=str(path),
            entries=len(tree),
            root=tree.root_hex,
        )
        return tree
