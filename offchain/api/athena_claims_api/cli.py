"""
CLI entry point for Athena Claims.

Usage:
    # Print the Merkle root of an allowlist snapshot
    athena-claims root allowlists/1.json

    # Print the proof for one address
    athena-claims proof allowlists/1.json 0x7099...

    # Write every entry's proof to a file
    athena-claims proofs allowlists/1.json --output proofs-1.json

    # Run the API server
    athena-claims serve
"""

import json
from pathlib import Path
from typing import Optional

import structlog
import typer

from .allowlist import AllowlistError, load_allowlist
from .merkle import MerkleError, MerkleTree, hash_leaf, parse_bytes32, proof_to_hex, verify_proof

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="athena-claims",
    help="Athena token reward allowlist tooling",
    add_completion=False,
)


def _build_tree(allowlist: Path) -> MerkleTree:
    try:
        return MerkleTree.build(load_allowlist(allowlist))
    except (AllowlistError, MerkleError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _index_or_exit(tree: MerkleTree, address: str) -> int:
    try:
        return tree.index_of(address)
    except KeyError:
        typer.echo(f"Error: {address} is not in the allowlist", err=True)
        raise typer.Exit(code=1)


@app.command()
def root(
    allowlist: Path = typer.Argument(..., help="Allowlist snapshot (.json or .csv)"),
) -> None:
    """
    Print the Merkle root of an allowlist snapshot.
    """
    tree = _build_tree(allowlist)
    typer.echo(f"Entries: {len(tree)}")
    typer.echo(f"Height:  {tree.height}")
    typer.echo(f"Root:    {tree.root_hex}")


@app.command()
def proof(
    allowlist: Path = typer.Argument(..., help="Allowlist snapshot (.json or .csv)"),
    address: str = typer.Argument(..., help="Address to prove"),
    as_json: bool = typer.Option(False, "--json", help="Print the proof as JSON"),
) -> None:
    """
    Print the inclusion proof for one address.
    """
    tree = _build_tree(allowlist)
    index = _index_or_exit(tree, address)
    entry = tree.entries[index]
    hex_proof = proof_to_hex(tree.prove(index))

    if as_json:
        typer.echo(
            json.dumps(
                {
                    "address": entry.address,
                    "allowedAmount": str(entry.allowed_amount),
                    "dailyLimit": str(entry.daily_limit),
                    "leafIndex": index,
                    "merkleProof": hex_proof,
                    "merkleRoot": tree.root_hex,
                },
                indent=2,
            )
        )
        return

    typer.echo(f"Address:       {entry.address}")
    typer.echo(f"Allowed:       {entry.allowed_amount}")
    typer.echo(f"Daily limit:   {entry.daily_limit}")
    typer.echo(f"Leaf index:    {index}")
    typer.echo(f"Root:          {tree.root_hex}")
    typer.echo("Proof:")
    for sibling in hex_proof:
        typer.echo(f"  {sibling}")


@app.command()
def proofs(
    allowlist: Path = typer.Argument(..., help="Allowlist snapshot (.json or .csv)"),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the proofs JSON"),
) -> None:
    """
    Write the root and every entry's proof to a JSON file.
    """
    tree = _build_tree(allowlist)
    claims = {
        entry.address: {
            "allowedAmount": str(entry.allowed_amount),
            "dailyLimit": str(entry.daily_limit),
            "leafIndex": i,
            "merkleProof": proof_to_hex(tree.prove(i)),
        }
        for i, entry in enumerate(tree.entries)
    }
    output.write_text(
        json.dumps({"merkleRoot": tree.root_hex, "claims": claims}, indent=2),
        encoding="utf-8",
    )
    typer.echo(f"Wrote {len(claims)} proofs to {output}")
    typer.echo(f"Root: {tree.root_hex}")


@app.command()
def verify(
    allowlist: Path = typer.Argument(..., help="Allowlist snapshot (.json or .csv)"),
    address: str = typer.Argument(..., help="Address to verify"),
    expected_root: Optional[str] = typer.Option(
        None,
        "--root",
        help="Root to verify against (defaults to the snapshot's own root)",
    ),
) -> None:
    """
    Rebuild an address's proof and check it the way the contract does.
    """
    tree = _build_tree(allowlist)
    index = _index_or_exit(tree, address)
    target = tree.root
    if expected_root:
        try:
            target = parse_bytes32(expected_root)
        except ValueError as e:
            typer.echo(f"Error: invalid --root: {e}", err=True)
            raise typer.Exit(code=1)

    ok = verify_proof(hash_leaf(tree.entries[index]), tree.prove(index), target)
    if ok:
        typer.echo(f"✓ Proof valid against 0x{target.hex()}")
    else:
        typer.echo(f"✗ Proof does not reconstruct 0x{target.hex()}")
        raise typer.Exit(code=1)


@app.command()
def serve() -> None:
    """Run the API server."""
    from .main import run

    run()


@app.command()
def version() -> None:
    """Show the version."""
    from athena_claims_api import __version__
    typer.echo(f"athena-claims v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
