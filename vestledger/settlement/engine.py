"""
Settlement engine: applies vesting actions to an account under one lock.

claim() runs, in this exact order, while holding the lock:
  1. Authorization gate       — signed request, fresh, not replayed
  2. reconcile()              — pure decision, nothing mutated yet
  3. Custody transfer         — raises CustodyError → nothing changed
  4. claimed_tokens += amount
  5. Journal append           — on failure steps 4 and 3 are undone
  6. Nonce consumed
  7. Return ClaimReceipt

A counter update never exists without its transfer, and a transfer
never survives without its counter update and journal entry. A request
whose claim did not commit can be resubmitted while it is fresh.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from vestledger.authorization.gate import AuthorizationGate, ClaimRequest
from vestledger.core.exceptions import (
    ClaimRejectedError,
    ConfigurationError,
    LedgerError,
    LifecycleError,
)
from vestledger.core.models import Beneficiary, LifecycleState, ScheduleEntry, VestingAccount
from vestledger.core.numeric import scale_to_smallest_unit
from vestledger.core.reconcile import ClaimDecision, reconcile, vesting_schedule
from vestledger.core.time import MonotonicClock
from vestledger.ledger.ledger import EntryType, Ledger, LedgerEntry
from vestledger.settlement.custody import Custody


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimReceipt:
    """A claim that was transferred, counted and journaled."""
    decision: ClaimDecision
    destination: str
    entry_index: int

    @property
    def amount(self) -> int:
        return self.decision.amount

    @property
    def scaled_amount(self) -> int:
        return self.decision.scaled_amount

    def to_dict(self) -> dict:
        return {
            **self.decision.to_dict(),
            "destination": self.destination,
            "entry_index": self.entry_index,
        }


def custody_holder(account: VestingAccount) -> str:
    """Custody key under which an account's deposit is held."""
    return f"custody:{account.name}"


class SettlementEngine:
    """
    Host-side driver for one vesting account.

    Owns no vesting logic: decisions come from reconcile(), money moves
    through Custody, durability comes from the Ledger journal. State is
    rebuilt from the journal on construction; `custody` must not already
    hold this account's balances when a non-empty journal is replayed.
    """

    def __init__(
        self,
        account: VestingAccount,
        custody: Custody,
        ledger: Ledger,
        gate: Optional[AuthorizationGate] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        account.validate()
        self.account = account
        self.custody = custody
        self.ledger = ledger
        self.gate = gate or AuthorizationGate()
        self.clock = clock or MonotonicClock()
        self.holder = custody_holder(account)

        self._lock = threading.Lock()
        self._initialized = False

        self._restore_state()

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ── Setup & lifecycle ─────────────────────────────────────

    def initialize(self, funding_source: str) -> LedgerEntry:
        """Move total_deposited * 10**decimals from funding_source into custody."""
        with self._lock:
            if self._initialized:
                raise LifecycleError("Custody already funded", {"account": self.account.name})

            self.account.validate()
            scaled = self._scaled_deposit()

            receipt = None
            if scaled > 0:
                receipt = self.custody.transfer(funding_source, self.holder, scaled)

            try:
                entry = self.ledger.append(EntryType.INITIALIZE, {
                    "account": self.account.name,
                    "funding_source": funding_source,
                    "total_deposited": str(self.account.total_deposited),
                    "decimals": self.account.decimals,
                })
            except Exception:
                if receipt is not None:
                    self.custody.reverse(receipt)
                raise

            self._initialized = True
            logger.info(
                "Initialized %s: %d base units (%d smallest units) in custody",
                self.account.name, self.account.total_deposited, scaled,
            )
            return entry

    def release(self, sender: str, now: Optional[int] = None) -> LedgerEntry:
        """Initializer-only: UNINITIALIZED → ACTIVE at `now`."""
        with self._lock:
            self.gate.authorize_admin(sender, self.account)
            if not self._initialized:
                raise LifecycleError("Custody has not been funded", {"account": self.account.name})

            now = self._now(now)
            self.account.activate(now)
            try:
                entry = self.ledger.append(EntryType.RELEASE, {
                    "account": self.account.name,
                    "activation_time": now,
                    "sender": sender,
                })
            except Exception:
                self.account.lifecycle_state = LifecycleState.UNINITIALIZED
                self.account.activation_time = None
                raise

            logger.info("Released %s at %d", self.account.name, now)
            return entry

    def confirm_round(self, sender: str, identity: str, round_index: int) -> LedgerEntry:
        """Initializer-only: raise a beneficiary's confirmed_round."""
        with self._lock:
            self.gate.authorize_admin(sender, self.account)
            beneficiary = self._beneficiary_or_raise(identity)

            previous = beneficiary.confirmed_round
            beneficiary.confirm(round_index)
            try:
                entry = self.ledger.append(EntryType.CONFIRM, {
                    "account": self.account.name,
                    "identity": identity,
                    "confirmed_round": round_index,
                    "sender": sender,
                })
            except Exception:
                beneficiary.confirmed_round = previous
                raise

            logger.info("Confirmed round %d for %s", round_index, identity)
            return entry

    # ── Claims ────────────────────────────────────────────────

    def preview(self, identity: str, now: Optional[int] = None) -> ClaimDecision:
        """What a claim by `identity` would yield at `now`. Read-only."""
        with self._lock:
            return reconcile(identity, self.account, self._now(now))

    def schedule(self, identity: str) -> List[ScheduleEntry]:
        """Effective schedule for a beneficiary of a released account."""
        with self._lock:
            return vesting_schedule(self._beneficiary_or_raise(identity), self.account)

    def claim(self, request: ClaimRequest, now: Optional[int] = None) -> ClaimReceipt:
        """
        Authorize, reconcile, transfer, count and journal one claim.

        Tokens go to request.destination, which the beneficiary signed.
        The request's nonce is consumed only when the claim commits.

        Raises:
            AuthorizationError  — request rejected by the gate
            ClaimRejectedError  — reconcile() returned a rejection
            CustodyError        — transfer failed; nothing changed
            LedgerError         — journal write failed; transfer undone
        """
        with self._lock:
            now = self._now(now)
            self.gate.authorize_claim(request, self.account, now)

            decision = reconcile(request.identity, self.account, now)
            if not decision.is_transfer:
                logger.info(
                    "Claim by %s rejected: %s (%s)",
                    request.identity, decision.status.value, decision.reason,
                )
                raise ClaimRejectedError(decision)

            beneficiary = self.account.find_beneficiary(request.identity)
            destination = request.destination

            receipt = self.custody.transfer(self.holder, destination, decision.scaled_amount)
            applied = False
            try:
                beneficiary.apply_claim(decision.amount)
                applied = True
                entry = self.ledger.append(EntryType.CLAIM, {
                    "account": self.account.name,
                    "identity": request.identity,
                    "destination": destination,
                    "amount": str(decision.amount),
                    "scaled_amount": str(decision.scaled_amount),
                    "claimed_tokens": str(beneficiary.claimed_tokens),
                    "now": now,
                    "issued_at": request.issued_at,
                    "nonce": request.nonce,
                })
            except Exception:
                if applied:
                    beneficiary.revert_claim(decision.amount)
                self.custody.reverse(receipt)
                raise

            self.gate.consume_nonce(request.identity, request.nonce, request.issued_at, now)

            logger.info(
                "Claim by %s: %d transferred to %s, %d/%d claimed",
                request.identity, decision.amount, destination,
                beneficiary.claimed_tokens, beneficiary.allocated_tokens,
            )
            return ClaimReceipt(decision=decision, destination=destination, entry_index=entry.index)

    # ── Reporting ─────────────────────────────────────────────

    def summary(self, now: Optional[int] = None) -> dict:
        """Per-beneficiary allocation, claimed and claimable-now figures."""
        with self._lock:
            now = self._now(now)
            rows = []
            for beneficiary in self.account.beneficiaries:
                decision = reconcile(beneficiary.identity, self.account, now)
                rows.append({
                    "identity": beneficiary.identity,
                    "allocated_tokens": beneficiary.allocated_tokens,
                    "claimed_tokens": beneficiary.claimed_tokens,
                    "confirmed_round": beneficiary.confirmed_round,
                    "claimable_now": decision.amount if decision.is_transfer else 0,
                    "status": decision.status.value,
                })
            return {
                "account": self.account.name,
                "lifecycle_state": self.account.lifecycle_state.value,
                "activation_time": self.account.activation_time,
                "total_deposited": self.account.total_deposited,
                "total_claimed": self.account.total_claimed,
                "custody_balance": self.custody.balance_of(self.holder),
                "now": now,
                "beneficiaries": rows,
            }

    # ── Internal ──────────────────────────────────────────────

    def _now(self, now: Optional[int]) -> int:
        return self.clock() if now is None else now

    def _scaled_deposit(self) -> int:
        scaled = scale_to_smallest_unit(self.account.total_deposited, self.account.decimals)
        if scaled is None:
            raise ConfigurationError(
                "total_deposited * 10**decimals exceeds the transfer range",
                {"total_deposited": self.account.total_deposited, "decimals": self.account.decimals},
            )
        return scaled

    def _beneficiary_or_raise(self, identity: str) -> Beneficiary:
        beneficiary = self.account.find_beneficiary(identity)
        if beneficiary is None:
            raise LifecycleError(
                "Beneficiary does not exist in account",
                {"account": self.account.name, "identity": identity},
            )
        return beneficiary

    def _restore_state(self) -> None:
        """
        Replay this account's journal entries onto the account and custody.

        Custody is rebuilt from the journal: the deposit is minted into the
        custody holder and every claim is transferred out again. Claim
        nonces are fed back into the gate so a committed request cannot be
        resubmitted after a restart.
        """
        replayed = 0
        for entry in self.ledger.get_all_entries():
            data = entry.data
            if data.get("account") != self.account.name:
                continue

            try:
                if entry.entry_type == EntryType.INITIALIZE:
                    scaled = self._scaled_deposit()
                    if scaled > 0:
                        self.custody.mint(self.holder, scaled)
                    self._initialized = True

                elif entry.entry_type == EntryType.RELEASE:
                    if not self.account.is_active:
                        self.account.activate(data["activation_time"])
                    elif self.account.activation_time != data["activation_time"]:
                        raise LedgerError("Journal activation_time disagrees with config")

                elif entry.entry_type == EntryType.CONFIRM:
                    self._beneficiary_or_raise(data["identity"]).confirm(data["confirmed_round"])

                elif entry.entry_type == EntryType.CLAIM:
                    beneficiary = self._beneficiary_or_raise(data["identity"])
                    self.custody.transfer(self.holder, data["destination"], int(data["scaled_amount"]))
                    beneficiary.apply_claim(int(data["amount"]))
                    if beneficiary.claimed_tokens != int(data["claimed_tokens"]):
                        raise LedgerError("Replayed claimed_tokens disagrees with journal")
                    self.gate.consume_nonce(data["identity"], data["nonce"], data["issued_at"], data["now"])

            except LedgerError as exc:
                raise LedgerError(
                    f"Cannot replay journal entry {entry.index}: {exc.message}",
                    exc.details,
                ) from exc
            except Exception as exc:
                raise LedgerError(
                    f"Cannot replay journal entry {entry.index}: {exc}",
                    {"entry_type": entry.entry_type},
                ) from exc

            replayed += 1

        if replayed:
            logger.info("Restored %s from %d journal entries", self.account.name, replayed)
