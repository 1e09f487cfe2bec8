"""
vestledger/cli/__init__.py

VestLedger CLI — root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    vestledger = "vestledger.cli:cli"

Adding a new command:
    1. Create vestledger/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

import logging

import click

from vestledger.cli.keygen import keygen_command
from vestledger.cli.schedule import schedule_command
from vestledger.cli.status import status_command
from vestledger.cli.verify import verify_command


@click.group()
@click.version_option(package_name="vestledger")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log host activity to stderr.")
def cli(verbose: bool) -> None:
    """
    VestLedger — token vesting schedules and claim accounting.

    \b
    Commands:
      schedule  Preview a beneficiary's unlock schedule.
      status    Claimed / claimable figures for every beneficiary.
      verify    Verify a journal — chain, data hashes, signatures.
      keygen    Create an Ed25519 key and print its identity.

    \b
    Quick start:
      vestledger keygen keys/admin.pem
      vestledger schedule account.yaml -b <identity> --activation 1700000000
      vestledger status account.yaml --journal account.journal.jsonl
      vestledger verify account.journal.jsonl --quiet && echo "clean"
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


cli.add_command(schedule_command)
cli.add_command(status_command)
cli.add_command(verify_command)
cli.add_command(keygen_command)
