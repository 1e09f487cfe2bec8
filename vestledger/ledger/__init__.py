"""
VestLedger Journal - Immutable Append-Only Log

The journal is the durable record of every vesting action the host
applies. Account state is rebuilt from it on restart.
"""

from vestledger.ledger.ledger import (
    EntryType,
    GENESIS_HASH,
    Ledger,
    LedgerEntry,
    load_entries,
    verify_entries,
)

__all__ = [
    "EntryType",
    "GENESIS_HASH",
    "Ledger",
    "LedgerEntry",
    "load_entries",
    "verify_entries",
]
