"""
vestledger status — per-beneficiary claimed / claimable figures.

Usage:
    vestledger status account.yaml
    vestledger status account.yaml --journal account.jsonl --at 1710000000
    vestledger status account.yaml --format json
"""

import sys
from typing import Optional

import click

from vestledger.cli.output import Color, emit_error, emit_json, open_engine
from vestledger.core.exceptions import VestingError
from vestledger.core.reconcile import ClaimStatus


@click.command(name="status")
@click.argument("config", type=click.Path(exists=True, dir_okay=False))
@click.option("--journal", type=click.Path(dir_okay=False), default=None,
              help="Journal to replay (default: CONFIG with .journal.jsonl suffix).")
@click.option("--at", "at", type=int, default=None, metavar="UNIX",
              help="Evaluate claimable amounts at this time (default: now).")
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
def status_command(
    config:   str,
    journal:  Optional[str],
    at:       Optional[int],
    fmt:      str,
    no_color: bool,
) -> None:
    """
    Summarize a vesting account: lifecycle, custody and each beneficiary.
    """
    Color.configure(not no_color)

    try:
        engine = open_engine(config, journal)
        summary = engine.summary(at)
    except VestingError as e:
        emit_error(str(e), fmt)
        sys.exit(2)

    if fmt == "json":
        emit_json(summary)
        return

    click.echo()
    click.echo(Color.bold(f"  {summary['account']}  [{summary['lifecycle_state']}]"))
    click.echo(f"  claimed {summary['total_claimed']} of {summary['total_deposited']} deposited")
    click.echo()
    for row in summary["beneficiaries"]:
        status = row["status"]
        if status == ClaimStatus.TRANSFER.value:
            tag = Color.green(f"claimable {row['claimable_now']}")
        else:
            tag = Color.yellow(status)
        click.echo(
            f"  {row['identity'][:16]:<16}  "
            f"{row['claimed_tokens']:>14}/{row['allocated_tokens']:<14}  {tag}"
        )
    click.echo()
