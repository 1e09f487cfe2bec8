"""
Shared terminal output helpers for the VestLedger CLI.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click

from vestledger.config import load_account_config
from vestledger.ledger.ledger import Ledger
from vestledger.settlement.custody import Custody
from vestledger.settlement.engine import SettlementEngine


class Color:
    """
    Minimal ANSI color wrapper.
    Auto-disables when not a TTY or --no-color is passed.
    """
    _on: bool = True

    @classmethod
    def configure(cls, enabled: bool) -> None:
        cls._on = enabled and sys.stdout.isatty()

    @classmethod
    def green(cls, s: str) -> str:
        return f"\033[32m{s}\033[0m" if cls._on else s

    @classmethod
    def red(cls, s: str) -> str:
        return f"\033[31m{s}\033[0m" if cls._on else s

    @classmethod
    def yellow(cls, s: str) -> str:
        return f"\033[33m{s}\033[0m" if cls._on else s

    @classmethod
    def bold(cls, s: str) -> str:
        return f"\033[1m{s}\033[0m" if cls._on else s

    @classmethod
    def dim(cls, s: str) -> str:
        return f"\033[2m{s}\033[0m" if cls._on else s


def row_ok(label: str, value: str) -> str:
    return f"  {Color.dim(f'{label:<16}')}  {Color.green('✅')}  {value}"


def row_fail(label: str, value: str) -> str:
    return f"  {Color.dim(f'{label:<16}')}  {Color.red('❌')}  {value}"


def row_info(label: str, value: str) -> str:
    return f"  {Color.dim(f'{label:<16}')}     {value}"


def emit_json(payload: dict) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def emit_error(message: str, fmt: str, quiet: bool = False) -> None:
    """Errors go to stderr in human mode and to stdout as JSON in json mode."""
    if quiet:
        return
    if fmt == "json":
        emit_json({"status": "ERROR", "error": message})
    else:
        click.echo(Color.red(f"\n  ❌  Error: {message}\n"), err=True)


def open_engine(config_file: str, journal: Optional[str]) -> SettlementEngine:
    """
    Load an account from YAML and replay its journal read-only.

    The custody built here is a scratch copy for reporting; nothing is
    written back.
    """
    account = load_account_config(Path(config_file))
    ledger_path = Path(journal) if journal else Path(config_file).with_suffix(".journal.jsonl")
    ledger = Ledger(ledger_path)
    return SettlementEngine(account, Custody(), ledger)
