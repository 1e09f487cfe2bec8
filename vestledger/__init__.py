"""
vestledger/__init__.py

VestLedger: Token Vesting Entitlement Accounting

Derives a deterministic unlock schedule for each beneficiary of a vesting
account and reconciles it against a cumulative claimed counter, so that
repeated claims never overpay, never underflow and survive retries.

Pure engine:
    generate()   — Schedule Generator
    reconcile()  — Claim Reconciler (returns a ClaimDecision)

Host side:
    SettlementEngine, Custody, Ledger, AuthorizationGate, RuntimeContext
"""

__version__ = "0.3.0"

from vestledger.core.exceptions import (
    VestingError,
    ConfigurationError,
    LifecycleError,
    LedgerError,
    CustodyError,
    AuthorizationError,
    InvalidSenderError,
    RequestExpiredError,
    RequestReplayError,
    ClaimRejectedError,
)
from vestledger.core.models import (
    Beneficiary,
    LifecycleState,
    MAX_BENEFICIARIES,
    ScheduleEntry,
    VestingAccount,
)
from vestledger.core.numeric import U64_MAX, saturating_sub, checked_mul
from vestledger.core.schedule import Schedule, generate
from vestledger.core.reconcile import (
    ClaimDecision,
    ClaimStatus,
    reconcile,
    vesting_schedule,
)
from vestledger.core.crypto import Ed25519KeyManager
from vestledger.authorization.gate import AuthorizationGate, ClaimRequest
from vestledger.ledger.ledger import Ledger, EntryType
from vestledger.settlement.custody import Custody
from vestledger.settlement.engine import ClaimReceipt, SettlementEngine
from vestledger.runtime.context import RuntimeContext

__all__ = [
    # Engine
    "generate",
    "reconcile",
    "vesting_schedule",
    "Schedule",
    "ClaimDecision",
    "ClaimStatus",
    # Model
    "Beneficiary",
    "VestingAccount",
    "LifecycleState",
    "ScheduleEntry",
    "MAX_BENEFICIARIES",
    # Numeric
    "U64_MAX",
    "saturating_sub",
    "checked_mul",
    # Host
    "AuthorizationGate",
    "ClaimRequest",
    "ClaimReceipt",
    "Custody",
    "Ed25519KeyManager",
    "EntryType",
    "Ledger",
    "RuntimeContext",
    "SettlementEngine",
    # Errors
    "VestingError",
    "ConfigurationError",
    "LifecycleError",
    "LedgerError",
    "CustodyError",
    "AuthorizationError",
    "InvalidSenderError",
    "RequestExpiredError",
    "RequestReplayError",
    "ClaimRejectedError",
]
