"""
vestledger/core/models.py

Vesting Data Model

═══════════════════════════════════════════════════════════════════
INVARIANTS — checked by validate(), which runs at construction
(from_dict) and again before activation.
═══════════════════════════════════════════════════════════════════

Beneficiary
    0 <= claimed_tokens <= allocated_tokens
    round_count > 0
    lockup_delay >= 0, round_span >= 0
    0 <= initial_unlock_percent <= 100
    0 <= confirmed_round <= round_count + 1

VestingAccount
    len(beneficiaries) <= max_beneficiaries (<= MAX_BENEFICIARIES)
    identities unique, insertion order preserved
    sum(allocated_tokens) <= total_deposited
    0 <= decimals <= 255
    lifecycle: UNINITIALIZED → ACTIVE, exactly once

Mutation points (host only, never the reconciler):
    Beneficiary.apply_claim()       — claimed_tokens increases
    Beneficiary.confirm()           — confirmed_round increases
    VestingAccount.activate()       — lifecycle + activation_time
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, List, Optional, Union

from vestledger.core.exceptions import ConfigurationError, LifecycleError, VestingError
from vestledger.core.numeric import MAX_DECIMALS, to_fraction


MAX_BENEFICIARIES = 50

Percent = Union[int, float, str, Decimal, Fraction]


class LifecycleState(Enum):
    """Vesting account lifecycle."""
    UNINITIALIZED = "UNINITIALIZED"
    ACTIVE        = "ACTIVE"


@dataclass(frozen=True)
class ScheduleEntry:
    """One round of a schedule. Ephemeral; never persisted."""
    round_index: int
    unlock_time: int
    entitlement: int

    def to_dict(self) -> dict:
        return {
            "round_index": self.round_index,
            "unlock_time": self.unlock_time,
            "entitlement": self.entitlement,
        }


def _require_int(name: str, value: Any, minimum: Optional[int] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            f"{name} must be an integer",
            {name: repr(value)},
        )
    if minimum is not None and value < minimum:
        raise ConfigurationError(
            f"{name} must be >= {minimum}",
            {name: value},
        )


@dataclass
class Beneficiary:
    """A participant's vesting parameters and cumulative claimed counter."""

    identity:               str
    allocated_tokens:       int
    round_count:            int
    round_span:             int
    lockup_delay:           int     = 0
    initial_unlock_percent: Percent = 0
    claimed_tokens:         int     = 0
    confirmed_round:        int     = 0

    def validate(self) -> None:
        """Raise ConfigurationError on any violated invariant."""
        if not isinstance(self.identity, str) or not self.identity:
            raise ConfigurationError("identity must be a non-empty string")

        _require_int("allocated_tokens", self.allocated_tokens, 0)
        _require_int("round_count",      self.round_count,      1)
        _require_int("round_span",       self.round_span,       0)
        _require_int("lockup_delay",     self.lockup_delay,     0)
        _require_int("claimed_tokens",   self.claimed_tokens,   0)
        _require_int("confirmed_round",  self.confirmed_round,  0)

        if self.claimed_tokens > self.allocated_tokens:
            raise ConfigurationError(
                "claimed_tokens exceeds allocated_tokens",
                {
                    "identity": self.identity,
                    "claimed_tokens": self.claimed_tokens,
                    "allocated_tokens": self.allocated_tokens,
                },
            )

        percent = to_fraction(self.initial_unlock_percent)
        if not 0 <= percent <= 100:
            raise ConfigurationError(
                "initial_unlock_percent must be within [0, 100]",
                {"identity": self.identity, "initial_unlock_percent": self.initial_unlock_percent},
            )

        if self.confirmed_round > self.round_count + 1:
            raise ConfigurationError(
                "confirmed_round beyond the last round",
                {"identity": self.identity, "confirmed_round": self.confirmed_round},
            )

    # ── Mutations (host only) ─────────────────────────────────

    def apply_claim(self, amount: int) -> None:
        """Add a successfully transferred amount to the claimed counter."""
        _require_int("amount", amount, 1)
        if self.claimed_tokens + amount > self.allocated_tokens:
            raise VestingError(
                "Claim would exceed allocation",
                {
                    "identity": self.identity,
                    "claimed_tokens": self.claimed_tokens,
                    "amount": amount,
                    "allocated_tokens": self.allocated_tokens,
                },
            )
        self.claimed_tokens += amount

    def revert_claim(self, amount: int) -> None:
        """Undo apply_claim() when the surrounding transaction aborts."""
        if amount > self.claimed_tokens:
            raise VestingError(
                "Cannot revert more than was claimed",
                {"identity": self.identity, "amount": amount},
            )
        self.claimed_tokens -= amount

    def confirm(self, round_index: int) -> None:
        """Raise the confirmed-round gate. It never moves down."""
        _require_int("round_index", round_index, 0)
        if round_index < self.confirmed_round:
            raise LifecycleError(
                "confirmed_round cannot decrease",
                {"identity": self.identity, "current": self.confirmed_round, "requested": round_index},
            )
        if round_index > self.round_count + 1:
            raise LifecycleError(
                "confirmed_round beyond the last round",
                {"identity": self.identity, "round_count": self.round_count, "requested": round_index},
            )
        self.confirmed_round = round_index

    # ── Serialization ─────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "identity":               self.identity,
            "allocated_tokens":       self.allocated_tokens,
            "claimed_tokens":         self.claimed_tokens,
            "lockup_delay":           self.lockup_delay,
            "initial_unlock_percent": str(self.initial_unlock_percent),
            "round_count":            self.round_count,
            "round_span":             self.round_span,
            "confirmed_round":        self.confirmed_round,
        }

    @staticmethod
    def from_dict(data: dict) -> "Beneficiary":
        """Build and validate a beneficiary from a config mapping."""
        try:
            beneficiary = Beneficiary(
                identity=               data["identity"],
                allocated_tokens=       data["allocated_tokens"],
                round_count=            data["round_count"],
                round_span=             data["round_span"],
                lockup_delay=           data.get("lockup_delay", 0),
                initial_unlock_percent= data.get("initial_unlock_percent", 0),
                claimed_tokens=         data.get("claimed_tokens", 0),
                confirmed_round=        data.get("confirmed_round", 0),
            )
        except KeyError as exc:
            raise ConfigurationError(f"Beneficiary missing field {exc}") from exc
        except TypeError as exc:
            raise ConfigurationError(f"Malformed beneficiary: {exc}") from exc
        beneficiary.validate()
        return beneficiary


@dataclass
class VestingAccount:
    """One vesting arrangement: custody totals, lifecycle and beneficiaries."""

    name:              str
    initializer:       str
    total_deposited:   int
    decimals:          int
    beneficiaries:     List[Beneficiary] = field(default_factory=list)
    lifecycle_state:   LifecycleState    = LifecycleState.UNINITIALIZED
    activation_time:   Optional[int]     = None
    max_beneficiaries: int               = MAX_BENEFICIARIES

    @property
    def is_active(self) -> bool:
        return self.lifecycle_state is LifecycleState.ACTIVE

    @property
    def total_allocated(self) -> int:
        return sum(b.allocated_tokens for b in self.beneficiaries)

    @property
    def total_claimed(self) -> int:
        return sum(b.claimed_tokens for b in self.beneficiaries)

    def validate(self) -> None:
        """Raise ConfigurationError on any violated invariant."""
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("account name must be a non-empty string")
        if not isinstance(self.initializer, str) or not self.initializer:
            raise ConfigurationError("initializer must be a non-empty string")

        _require_int("total_deposited", self.total_deposited, 0)
        _require_int("decimals", self.decimals, 0)
        if self.decimals > MAX_DECIMALS:
            raise ConfigurationError(
                f"decimals must be <= {MAX_DECIMALS}",
                {"decimals": self.decimals},
            )

        _require_int("max_beneficiaries", self.max_beneficiaries, 1)
        if self.max_beneficiaries > MAX_BENEFICIARIES:
            raise ConfigurationError(
                f"max_beneficiaries must be <= {MAX_BENEFICIARIES}",
                {"max_beneficiaries": self.max_beneficiaries},
            )
        if len(self.beneficiaries) > self.max_beneficiaries:
            raise ConfigurationError(
                "Too many beneficiaries",
                {"count": len(self.beneficiaries), "max": self.max_beneficiaries},
            )

        seen = set()
        for beneficiary in self.beneficiaries:
            beneficiary.validate()
            if beneficiary.identity in seen:
                raise ConfigurationError(
                    "Duplicate beneficiary identity",
                    {"identity": beneficiary.identity},
                )
            seen.add(beneficiary.identity)

        if self.total_allocated > self.total_deposited:
            raise ConfigurationError(
                "Allocations exceed total_deposited",
                {"total_allocated": self.total_allocated, "total_deposited": self.total_deposited},
            )

        if self.is_active:
            _require_int("activation_time", self.activation_time, 0)
        elif self.activation_time is not None:
            raise ConfigurationError("activation_time set on an inactive account")

    def find_beneficiary(self, identity: str) -> Optional[Beneficiary]:
        """Linear lookup in insertion order; None when absent."""
        for beneficiary in self.beneficiaries:
            if beneficiary.identity == identity:
                return beneficiary
        return None

    def activate(self, now: int) -> None:
        """UNINITIALIZED → ACTIVE. Validates first; refuses a second call."""
        if self.is_active:
            raise LifecycleError(
                "Vesting account is already active",
                {"account": self.name, "activation_time": self.activation_time},
            )
        _require_int("activation_time", now, 0)
        self.validate()
        self.activation_time = now
        self.lifecycle_state = LifecycleState.ACTIVE

    # ── Serialization ─────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "name":              self.name,
            "initializer":       self.initializer,
            "total_deposited":   self.total_deposited,
            "decimals":          self.decimals,
            "max_beneficiaries": self.max_beneficiaries,
            "lifecycle_state":   self.lifecycle_state.value,
            "activation_time":   self.activation_time,
            "beneficiaries":     [b.to_dict() for b in self.beneficiaries],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "VestingAccount":
        """Build and validate an account from a config mapping."""
        if not isinstance(data, dict):
            raise ConfigurationError("Vesting account config must be a mapping")
        raw_beneficiaries = data.get("beneficiaries") or []
        if not isinstance(raw_beneficiaries, list):
            raise ConfigurationError("beneficiaries must be a list")

        try:
            state = LifecycleState(data.get("lifecycle_state", LifecycleState.UNINITIALIZED.value))
        except ValueError as exc:
            raise ConfigurationError(f"Unknown lifecycle_state: {exc}") from exc

        try:
            account = VestingAccount(
                name=              data["name"],
                initializer=       data["initializer"],
                total_deposited=   data["total_deposited"],
                decimals=          data["decimals"],
                beneficiaries=     [Beneficiary.from_dict(b) for b in raw_beneficiaries],
                lifecycle_state=   state,
                activation_time=   data.get("activation_time"),
                max_beneficiaries= data.get("max_beneficiaries", MAX_BENEFICIARIES),
            )
        except KeyError as exc:
            raise ConfigurationError(f"Vesting account missing field {exc}") from exc
        account.validate()
        return account
