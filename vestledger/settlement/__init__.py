"""
VestLedger Settlement

Host-side collaborators around the pure vesting engine:
- Custody: balances with an all-or-nothing transfer primitive
- SettlementEngine: serializes initialize / release / confirm / claim,
  coupling every transfer to its counter update and journal entry

Critical Invariants:
- Settlement does NOT compute entitlements (reconcile() does)
- A failed transfer leaves claimed_tokens unchanged
- A counter update is never kept without its transfer
"""

from vestledger.settlement.custody import Custody, TransferReceipt
from vestledger.settlement.engine import ClaimReceipt, SettlementEngine, custody_holder

__all__ = [
    "ClaimReceipt",
    "Custody",
    "SettlementEngine",
    "TransferReceipt",
    "custody_holder",
]
