"""
vestledger schedule — preview a beneficiary's unlock schedule.

Usage:
    vestledger schedule account.yaml -b <identity>
    vestledger schedule account.yaml -b <identity> --journal account.jsonl
    vestledger schedule account.yaml -b <identity> --activation 1700000000
    vestledger schedule account.yaml -b <identity> --at 1710000000 --format json

Exit codes:
    0  Schedule printed
    2  Error  (bad config, unknown beneficiary, account not released)
"""

import sys
from typing import Optional

import click

from vestledger.cli.output import Color, emit_error, emit_json, open_engine
from vestledger.core.exceptions import VestingError
from vestledger.core.reconcile import bonus_amount, effective_schedule
from vestledger.core.time import format_unix, unix_now


@click.command(name="schedule")
@click.argument("config", type=click.Path(exists=True, dir_okay=False))
@click.option("--beneficiary", "-b", "identity", required=True, help="Beneficiary identity.")
@click.option("--journal", type=click.Path(dir_okay=False), default=None,
              help="Journal to replay (default: CONFIG with .journal.jsonl suffix).")
@click.option("--activation", type=int, default=None, metavar="UNIX",
              help="Assume this activation time when the account is not released yet.")
@click.option("--at", "at", type=int, default=None, metavar="UNIX",
              help="Mark rounds unlocked at this time (default: now).")
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
def schedule_command(
    config:     str,
    identity:   str,
    journal:    Optional[str],
    activation: Optional[int],
    at:         Optional[int],
    fmt:        str,
    no_color:   bool,
) -> None:
    """
    Show the effective schedule (bonus round applied) for one beneficiary.
    """
    Color.configure(not no_color)

    try:
        engine = open_engine(config, journal)
    except VestingError as e:
        emit_error(str(e), fmt)
        sys.exit(2)

    account = engine.account
    beneficiary = account.find_beneficiary(identity)
    if beneficiary is None:
        emit_error(f"Beneficiary {identity} does not exist in account {account.name}", fmt)
        sys.exit(2)

    activation_time = account.activation_time if account.is_active else activation
    if activation_time is None:
        emit_error(
            f"Account {account.name} is not released; pass --activation to preview",
            fmt,
        )
        sys.exit(2)

    at = unix_now() if at is None else at
    start = activation_time + beneficiary.lockup_delay

    rows = []
    cumulative = 0
    for entry in effective_schedule(beneficiary, start):
        cumulative += entry.entitlement
        rows.append({
            **entry.to_dict(),
            "cumulative": cumulative,
            "unlocked": entry.unlock_time <= at,
        })

    if fmt == "json":
        emit_json({
            "account": account.name,
            "identity": identity,
            "activation_time": activation_time,
            "lockup_end": start,
            "bonus": bonus_amount(beneficiary),
            "confirmed_round": beneficiary.confirmed_round,
            "claimed_tokens": beneficiary.claimed_tokens,
            "at": at,
            "rounds": rows,
        })
        return

    click.echo()
    click.echo(Color.bold(f"  Schedule — {account.name} / {identity}"))
    click.echo(f"  lockup ends {format_unix(start)}   "
               f"claimed {beneficiary.claimed_tokens}/{beneficiary.allocated_tokens}")
    click.echo()
    click.echo(Color.dim(f"  {'round':>5}  {'unlock (UTC)':<20}  {'entitlement':>14}  {'cumulative':>14}"))
    for row in rows:
        line = (
            f"  {row['round_index']:>5}  {format_unix(row['unlock_time']):<20}  "
            f"{row['entitlement']:>14}  {row['cumulative']:>14}"
        )
        click.echo(Color.green(line) if row["unlocked"] else line)
    click.echo()
