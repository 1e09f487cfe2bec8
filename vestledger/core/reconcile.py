"""
vestledger/core/reconcile.py

Claim Reconciler.

Compares what a beneficiary is owed at `now` against what has already
been paid, and decides what (if anything) may be transferred.

Critical Invariants:
- Reconciler does NOT mutate the account or the beneficiary
- Reconciler does NOT transfer, persist, log or retry
- Every outcome is a ClaimDecision; rejections are values, not exceptions
- Configuration errors (round_count == 0, ...) still raise ConfigurationError

Evaluation order (first failing check wins):
    1. account ACTIVE                      → NOT_ACTIVE
    2. beneficiary present                 → BENEFICIARY_NOT_FOUND
    3. now >= lockup_end                   → LOCKUP_NOT_EXPIRED
    4. claimable - claimed > 0             → CLAIM_NOT_ALLOWED
    5. amount * 10**decimals <= U64_MAX    → OVERFLOW
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List

from vestledger.core.exceptions import LifecycleError
from vestledger.core.models import Beneficiary, ScheduleEntry, VestingAccount
from vestledger.core.numeric import percent_of, saturating_sub, scale_to_smallest_unit
from vestledger.core.schedule import generate


class ClaimStatus(Enum):
    """Tagged outcome of reconcile()."""
    TRANSFER              = "TRANSFER"
    NOT_ACTIVE            = "NOT_ACTIVE"
    BENEFICIARY_NOT_FOUND = "BENEFICIARY_NOT_FOUND"
    LOCKUP_NOT_EXPIRED    = "LOCKUP_NOT_EXPIRED"
    CLAIM_NOT_ALLOWED     = "CLAIM_NOT_ALLOWED"
    OVERFLOW              = "OVERFLOW"


@dataclass(frozen=True)
class ClaimDecision:
    """
    Result of reconciling one claim.

    amount          — base units to add to claimed_tokens (TRANSFER only)
    scaled_amount   — amount * 10**decimals, the custody transfer size
    total_claimable — entitlement unlocked at `now` before subtracting claims
    """
    status:          ClaimStatus
    identity:        str
    now:             int
    reason:          str
    amount:          int = 0
    scaled_amount:   int = 0
    total_claimable: int = 0

    @property
    def is_transfer(self) -> bool:
        return self.status is ClaimStatus.TRANSFER

    def to_dict(self) -> dict:
        return {
            "status":          self.status.value,
            "identity":        self.identity,
            "now":             self.now,
            "reason":          self.reason,
            "amount":          str(self.amount),
            "scaled_amount":   str(self.scaled_amount),
            "total_claimable": str(self.total_claimable),
        }


# ─────────────────────────────────────────────────────────────
# Schedule with the bonus round applied
# ─────────────────────────────────────────────────────────────

def bonus_amount(beneficiary: Beneficiary) -> int:
    """Round 0 entitlement: floor(allocated * initial_unlock_percent / 100)."""
    return percent_of(beneficiary.allocated_tokens, beneficiary.initial_unlock_percent)


def lockup_end(beneficiary: Beneficiary, account: VestingAccount) -> int:
    if account.activation_time is None:
        raise LifecycleError(
            "Vesting account has not been released",
            {"account": account.name},
        )
    return account.activation_time + beneficiary.lockup_delay


def effective_schedule(beneficiary: Beneficiary, start_time: int) -> Iterator[ScheduleEntry]:
    """
    Schedule entries the reconciler sums.

    Round 0 carries the bonus. Rounds 1..round_count split the allocation
    left after the bonus, so the full schedule sums to allocated_tokens.
    """
    bonus = bonus_amount(beneficiary)
    schedule = generate(
        start_time=        start_time,
        round_count=       beneficiary.round_count,
        round_span=        beneficiary.round_span,
        total_entitlement= beneficiary.allocated_tokens - bonus,
        confirmed_round=   beneficiary.confirmed_round,
    )
    for entry in schedule:
        if entry.round_index == 0:
            yield ScheduleEntry(0, entry.unlock_time, bonus)
        else:
            yield entry


def vesting_schedule(beneficiary: Beneficiary, account: VestingAccount) -> List[ScheduleEntry]:
    """Preview of a beneficiary's schedule on a released account."""
    return list(effective_schedule(beneficiary, lockup_end(beneficiary, account)))


def claimable_total(beneficiary: Beneficiary, start_time: int, now: int) -> int:
    """Sum of entitlements unlocked by `now` at or above the confirmed round."""
    return sum(
        entry.entitlement
        for entry in effective_schedule(beneficiary, start_time)
        if entry.unlock_time <= now and entry.round_index >= beneficiary.confirmed_round
    )


# ─────────────────────────────────────────────────────────────
# Reconcile
# ─────────────────────────────────────────────────────────────

def reconcile(identity: str, account: VestingAccount, now: int) -> ClaimDecision:
    """
    Decide the incremental amount payable to `identity` at `now`.

    Pure: calling it twice with the same inputs returns the same decision.
    After the host applies a TRANSFER decision, a repeat call at the same
    `now` returns CLAIM_NOT_ALLOWED.
    """
    if not account.is_active:
        return ClaimDecision(
            ClaimStatus.NOT_ACTIVE, identity, now,
            f"Vesting account {account.name} is {account.lifecycle_state.value}",
        )

    beneficiary = account.find_beneficiary(identity)
    if beneficiary is None:
        return ClaimDecision(
            ClaimStatus.BENEFICIARY_NOT_FOUND, identity, now,
            f"Beneficiary {identity} does not exist in account {account.name}",
        )

    start = lockup_end(beneficiary, account)
    if now < start:
        return ClaimDecision(
            ClaimStatus.LOCKUP_NOT_EXPIRED, identity, now,
            f"Lockup ends at {start}, now is {now}",
        )

    total = claimable_total(beneficiary, start, now)
    amount = saturating_sub(total, beneficiary.claimed_tokens)
    if amount == 0:
        return ClaimDecision(
            ClaimStatus.CLAIM_NOT_ALLOWED, identity, now,
            f"Nothing newly unlocked: claimable {total}, claimed {beneficiary.claimed_tokens}",
            total_claimable=total,
        )

    scaled = scale_to_smallest_unit(amount, account.decimals)
    if scaled is None:
        return ClaimDecision(
            ClaimStatus.OVERFLOW, identity, now,
            f"{amount} * 10**{account.decimals} exceeds the transfer range",
            amount=amount,
            total_claimable=total,
        )

    return ClaimDecision(
        ClaimStatus.TRANSFER, identity, now,
        f"Transfer {amount} of {total} claimable",
        amount=amount,
        scaled_amount=scaled,
        total_claimable=total,
    )
