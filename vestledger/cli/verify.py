"""
vestledger verify — journal verification.

Usage:
    vestledger verify <journal>                       Human output (default)
    vestledger verify <journal> --format json         Machine-readable JSON
    vestledger verify <journal> --signer <hex>        Pin the expected host key
    vestledger verify <journal> --quiet               Exit code only

Exit codes (shell-scriptable):
    0  Journal fully valid  (chain + data hashes + signatures)
    1  Journal has violations
    2  Error  (file missing, malformed JSON, parse failure)
"""

import sys
from pathlib import Path
from typing import Optional

import click

from vestledger.cli.output import Color, emit_error, emit_json, row_fail, row_info, row_ok
from vestledger.core.exceptions import LedgerError
from vestledger.ledger.ledger import GENESIS_HASH, load_entries, verify_entries


@click.command(name="verify")
@click.argument("journal", type=click.Path(exists=False))
@click.option("--signer", type=str, default=None, metavar="HEX",
              help="Require every entry to be signed by this public key.")
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
@click.option("--quiet", is_flag=True, default=False,
              help="Suppress all output. Use exit code only (0=valid, 1=invalid, 2=error).")
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
def verify_command(
    journal:  str,
    signer:   Optional[str],
    fmt:      str,
    quiet:    bool,
    no_color: bool,
) -> None:
    """
    Verify a journal — chain integrity, data hashes, signatures.
    """
    Color.configure(not no_color)

    journal_path = Path(journal)
    if not journal_path.exists():
        emit_error(f"Journal not found: {journal}", fmt, quiet)
        sys.exit(2)

    try:
        entries = load_entries(journal_path)
    except LedgerError as e:
        emit_error(str(e), fmt, quiet)
        sys.exit(2)

    violations = verify_entries(entries, signer)
    valid = not violations
    head_hash = entries[-1].compute_hash() if entries else GENESIS_HASH

    by_type = {}
    for entry in entries:
        by_type[entry.entry_type] = by_type.get(entry.entry_type, 0) + 1

    if quiet:
        sys.exit(0 if valid else 1)

    if fmt == "json":
        emit_json({
            "status": "VALID" if valid else "INVALID",
            "journal": str(journal_path),
            "total_entries": len(entries),
            "by_type": by_type,
            "head_hash": head_hash,
            "violations": violations,
        })
    else:
        click.echo()
        click.echo(Color.bold(f"  Journal  {journal_path}"))
        click.echo()
        click.echo(row_info("entries", str(len(entries))))
        for entry_type, count in sorted(by_type.items()):
            click.echo(row_info(f"  {entry_type}", str(count)))
        click.echo(row_info("head hash", head_hash))
        if valid:
            click.echo(row_ok("integrity", "chain, data hashes and signatures verified"))
        else:
            click.echo(row_fail("integrity", f"{len(violations)} violation(s)"))
            for violation in violations:
                click.echo(f"      {Color.red('•')} {violation}")
        click.echo()

    sys.exit(0 if valid else 1)
