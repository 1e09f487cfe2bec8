"""
tests/test_settlement.py

Host-side claim path: authorization → reconcile → transfer → count → journal.

  LIFECYCLE
    initialize moves total_deposited * 10**decimals into custody, once
    release is initializer-only, requires funding, happens once
    confirm_round is initializer-only and journaled

  CLAIMS
    Successful claim transfers scaled amount and bumps claimed_tokens
    Rejections raise ClaimRejectedError and change nothing
    Failed transfer leaves claimed_tokens unchanged and the request usable
    Failed fsync rolls the journal file back; the retry is the only claim on disk
    A rollback that fails too blocks further appends
    Tokens go to the signed destination

  AUTHORIZATION
    Forged, redirected, stale, future, replayed and wrong-account requests are refused
    Nonces are consumed only by committed claims
    The prune horizon follows the latest now, never an earlier one

  DURABILITY
    A new engine over the same journal restores lifecycle, confirmations,
    claimed counters, custody balances and used nonces

  CLOCK
    MonotonicClock never goes backwards; the engine reads it when now is omitted

  CONCURRENCY
    Many threads claiming for many beneficiaries never overpay
"""

import errno
import os
import threading
from dataclasses import replace

import pytest

from vestledger.authorization.gate import AuthorizationGate, ClaimRequest
from vestledger.core.crypto import Ed25519KeyManager
from vestledger.core.exceptions import (
    AuthorizationError,
    ClaimRejectedError,
    CustodyError,
    InvalidSenderError,
    LedgerError,
    LifecycleError,
    RequestExpiredError,
    RequestReplayError,
)
from vestledger.core.models import Beneficiary, LifecycleState, VestingAccount
from vestledger.core.reconcile import ClaimStatus
from vestledger.core.time import MonotonicClock
from vestledger.ledger.ledger import EntryType, Ledger
from vestledger.settlement.custody import Custody
from vestledger.settlement.engine import SettlementEngine, custody_holder


ACTIVATION = 1_700_000_000
DECIMALS = 2


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def host_key():
    return Ed25519KeyManager.generate()


@pytest.fixture
def admin():
    return Ed25519KeyManager.generate()


@pytest.fixture
def alice():
    return Ed25519KeyManager.generate()


@pytest.fixture
def bob():
    return Ed25519KeyManager.generate()


def make_account(admin, *keys, allocated=1_000_000, **overrides) -> VestingAccount:
    beneficiaries = []
    for key in keys:
        params = {
            "identity": key.public_key_hex,
            "allocated_tokens": allocated,
            "round_count": 10,
            "round_span": 10_000,
        }
        params.update(overrides)
        beneficiaries.append(Beneficiary(**params))
    return VestingAccount(
        name="seed-round",
        initializer=admin.public_key_hex,
        total_deposited=allocated * len(keys),
        decimals=DECIMALS,
        beneficiaries=beneficiaries,
    )


def make_engine(account, journal_path, host_key, custody=None) -> SettlementEngine:
    custody = custody if custody is not None else Custody()
    return SettlementEngine(account, custody, Ledger(journal_path, host_key))


def funded_engine(tmp_path, host_key, admin, *keys, **overrides) -> SettlementEngine:
    """Helper: initialized and released engine with a funded treasury."""
    account = make_account(admin, *keys, **overrides)
    custody = Custody()
    custody.mint("treasury", account.total_deposited * 10 ** DECIMALS)
    engine = make_engine(account, tmp_path / "journal.jsonl", host_key, custody)
    engine.initialize("treasury")
    engine.release(admin.public_key_hex, now=ACTIVATION)
    return engine


def claim(engine, key, now):
    return engine.claim(ClaimRequest.create(key, engine.account.name, issued_at=now), now=now)


# ─────────────────────────────────────────────────────────────
# LIFECYCLE
# ─────────────────────────────────────────────────────────────

class TestLifecycle:

    def test_initialize_funds_custody(self, tmp_path, host_key, admin, alice):
        account = make_account(admin, alice)
        custody = Custody({"treasury": 10 ** 9})
        engine = make_engine(account, tmp_path / "j.jsonl", host_key, custody)

        entry = engine.initialize("treasury")

        assert entry.entry_type == EntryType.INITIALIZE
        assert custody.balance_of(custody_holder(account)) == 1_000_000 * 10 ** DECIMALS
        assert custody.balance_of("treasury") == 10 ** 9 - 1_000_000 * 10 ** DECIMALS
        with pytest.raises(LifecycleError):
            engine.initialize("treasury")

    def test_initialize_underfunded(self, tmp_path, host_key, admin, alice):
        account = make_account(admin, alice)
        custody = Custody({"treasury": 5})
        engine = make_engine(account, tmp_path / "j.jsonl", host_key, custody)
        with pytest.raises(CustodyError):
            engine.initialize("treasury")
        assert not engine.initialized
        assert engine.ledger.entries == []

    def test_release_requires_initializer(self, tmp_path, host_key, admin, alice):
        account = make_account(admin, alice)
        engine = make_engine(account, tmp_path / "j.jsonl", host_key, Custody({"treasury": 10 ** 12}))
        engine.initialize("treasury")
        with pytest.raises(InvalidSenderError):
            engine.release(alice.public_key_hex, now=ACTIVATION)
        assert account.lifecycle_state is LifecycleState.UNINITIALIZED

    def test_release_requires_funding(self, tmp_path, host_key, admin, alice):
        engine = make_engine(make_account(admin, alice), tmp_path / "j.jsonl", host_key)
        with pytest.raises(LifecycleError):
            engine.release(admin.public_key_hex, now=ACTIVATION)

    def test_release_once(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        assert engine.account.activation_time == ACTIVATION
        with pytest.raises(LifecycleError):
            engine.release(admin.public_key_hex, now=ACTIVATION + 5)
        assert engine.account.activation_time == ACTIVATION

    def test_confirm_round(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        with pytest.raises(InvalidSenderError):
            engine.confirm_round(alice.public_key_hex, alice.public_key_hex, 3)

        entry = engine.confirm_round(admin.public_key_hex, alice.public_key_hex, 3)
        assert entry.data["confirmed_round"] == 3
        assert engine.preview(alice.public_key_hex, ACTIVATION + 10_000).amount == 800_000

    def test_confirm_unknown_beneficiary(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        with pytest.raises(LifecycleError):
            engine.confirm_round(admin.public_key_hex, "nobody", 1)


# ─────────────────────────────────────────────────────────────
# CLAIMS
# ─────────────────────────────────────────────────────────────

class TestClaims:

    def test_full_claim_then_rejection(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        now = ACTIVATION + 10_000

        receipt = claim(engine, alice, now)

        assert receipt.amount == 1_000_000
        assert receipt.scaled_amount == 1_000_000 * 10 ** DECIMALS
        assert engine.custody.balance_of(alice.public_key_hex) == receipt.scaled_amount
        assert engine.custody.balance_of(engine.holder) == 0
        assert engine.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 1_000_000

        with pytest.raises(ClaimRejectedError) as exc_info:
            claim(engine, alice, now)
        assert exc_info.value.status is ClaimStatus.CLAIM_NOT_ALLOWED

    def test_partial_claims_accumulate(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        amounts = [claim(engine, alice, ACTIVATION + t).amount for t in (1_000, 4_000, 10_000)]
        assert amounts == [100_000, 300_000, 600_000]
        assert len(engine.ledger.get_entries_by_type(EntryType.CLAIM)) == 3

    def test_rejections_change_nothing(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice, lockup_delay=500)
        before = engine.custody.snapshot()
        entries = len(engine.ledger.entries)

        with pytest.raises(ClaimRejectedError) as exc_info:
            claim(engine, alice, ACTIVATION + 100)

        assert exc_info.value.status is ClaimStatus.LOCKUP_NOT_EXPIRED
        assert engine.custody.snapshot() == before
        assert len(engine.ledger.entries) == entries

    def test_not_active(self, tmp_path, host_key, admin, alice):
        account = make_account(admin, alice)
        engine = make_engine(account, tmp_path / "j.jsonl", host_key, Custody({"treasury": 10 ** 12}))
        engine.initialize("treasury")
        with pytest.raises(ClaimRejectedError) as exc_info:
            claim(engine, alice, ACTIVATION + 10_000)
        assert exc_info.value.status is ClaimStatus.NOT_ACTIVE

    def test_stranger_not_found(self, tmp_path, host_key, admin, alice, bob):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        with pytest.raises(ClaimRejectedError) as exc_info:
            claim(engine, bob, ACTIVATION + 10_000)
        assert exc_info.value.status is ClaimStatus.BENEFICIARY_NOT_FOUND

    def test_failed_transfer_leaves_counter(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        # Drain custody behind the engine's back
        drained = engine.custody.transfer(engine.holder, "elsewhere", engine.custody.balance_of(engine.holder))
        request = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION + 10_000)

        with pytest.raises(CustodyError):
            engine.claim(request, now=ACTIVATION + 10_000)

        assert engine.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 0
        assert engine.ledger.get_entries_by_type(EntryType.CLAIM) == []
        assert not engine.gate.is_consumed(alice.public_key_hex, request.nonce)

        # The same signed request goes through once custody is refilled
        engine.custody.reverse(drained)
        assert engine.claim(request, now=ACTIVATION + 10_050).amount == 1_000_000
        assert engine.gate.is_consumed(alice.public_key_hex, request.nonce)

    def test_failed_journal_write_reverts(self, tmp_path, host_key, admin, alice, monkeypatch):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        held_before = engine.custody.balance_of(engine.holder)
        journal = tmp_path / "journal.jsonl"
        size_before = journal.stat().st_size
        real_fsync = os.fsync
        calls = []

        def fsync_fails_once(fd):
            calls.append(fd)
            if len(calls) == 1:
                raise OSError(errno.EIO, "Input/output error")
            return real_fsync(fd)

        monkeypatch.setattr(os, "fsync", fsync_fails_once)
        request = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION + 1_000)

        with pytest.raises(LedgerError):
            engine.claim(request, now=ACTIVATION + 1_000)

        assert engine.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 0
        assert engine.custody.balance_of(engine.holder) == held_before
        assert engine.custody.balance_of(alice.public_key_hex) == 0
        assert engine.ledger.get_entries_by_type(EntryType.CLAIM) == []
        assert journal.stat().st_size == size_before

        assert engine.claim(request, now=ACTIVATION + 1_001).amount == 100_000

        reopened = Ledger(journal, host_key)
        claims = reopened.get_entries_by_type(EntryType.CLAIM)
        assert [e.data["amount"] for e in claims] == ["100000"]
        restored = make_engine(make_account(admin, alice), journal, host_key)
        assert restored.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 100_000

    def test_unrecoverable_write_blocks_journal(self, tmp_path, host_key, admin, alice, monkeypatch):
        engine = funded_engine(tmp_path, host_key, admin, alice)

        def fsync_always_fails(fd):
            raise OSError(errno.EIO, "Input/output error")

        monkeypatch.setattr(os, "fsync", fsync_always_fails)
        with pytest.raises(LedgerError):
            claim(engine, alice, ACTIVATION + 1_000)
        monkeypatch.undo()

        with pytest.raises(LedgerError, match="refuses appends"):
            claim(engine, alice, ACTIVATION + 1_000)
        assert engine.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 0
        assert engine.custody.balance_of(alice.public_key_hex) == 0

    def test_signed_destination(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        request = ClaimRequest.create(
            alice, engine.account.name, issued_at=ACTIVATION + 10_000, destination="alice-cold-wallet",
        )
        receipt = engine.claim(request, now=ACTIVATION + 10_000)
        assert receipt.destination == "alice-cold-wallet"
        assert engine.custody.balance_of("alice-cold-wallet") == receipt.scaled_amount
        entry = engine.ledger.get_entries_by_type(EntryType.CLAIM)[0]
        assert entry.data["destination"] == "alice-cold-wallet"

    def test_default_destination_is_identity(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        receipt = claim(engine, alice, ACTIVATION + 10_000)
        assert receipt.destination == alice.public_key_hex

    def test_summary(self, tmp_path, host_key, admin, alice, bob):
        engine = funded_engine(tmp_path, host_key, admin, alice, bob)
        claim(engine, alice, ACTIVATION + 3_000)
        summary = engine.summary(ACTIVATION + 5_000)
        rows = {row["identity"]: row for row in summary["beneficiaries"]}
        assert rows[alice.public_key_hex]["claimed_tokens"] == 300_000
        assert rows[alice.public_key_hex]["claimable_now"] == 200_000
        assert rows[bob.public_key_hex]["claimable_now"] == 500_000
        assert summary["total_claimed"] == 300_000


# ─────────────────────────────────────────────────────────────
# AUTHORIZATION
# ─────────────────────────────────────────────────────────────

class TestAuthorization:

    def test_forged_signature(self, tmp_path, host_key, admin, alice, bob):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        genuine = ClaimRequest.create(bob, engine.account.name, issued_at=ACTIVATION + 10_000)
        forged = replace(genuine, identity=alice.public_key_hex, destination=bob.public_key_hex)
        with pytest.raises(AuthorizationError):
            engine.claim(forged, now=ACTIVATION + 10_000)
        assert engine.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 0

    def test_redirected_destination(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        signed = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION + 10_000)
        redirected = replace(signed, destination="mallory")

        with pytest.raises(AuthorizationError, match="signature"):
            engine.claim(redirected, now=ACTIVATION + 10_000)

        assert engine.custody.balance_of("mallory") == 0
        assert engine.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 0
        assert engine.claim(signed, now=ACTIVATION + 10_000).destination == alice.public_key_hex

    def test_stale_request(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        request = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION)
        with pytest.raises(RequestExpiredError):
            engine.claim(request, now=ACTIVATION + 10_000)

    def test_future_request(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        request = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION + 20_000)
        with pytest.raises(RequestExpiredError):
            engine.claim(request, now=ACTIVATION + 10_000)

    def test_replayed_request(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        request = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION + 1_000)
        engine.claim(request, now=ACTIVATION + 1_000)
        with pytest.raises(RequestReplayError):
            engine.claim(request, now=ACTIVATION + 1_200)

    def test_rejected_claim_keeps_request_usable(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice, lockup_delay=100, initial_unlock_percent=10)
        request = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION + 50)
        with pytest.raises(ClaimRejectedError) as exc_info:
            engine.claim(request, now=ACTIVATION + 50)
        assert exc_info.value.status is ClaimStatus.LOCKUP_NOT_EXPIRED
        assert not engine.gate.is_consumed(alice.public_key_hex, request.nonce)

        assert engine.claim(request, now=ACTIVATION + 100).amount == 100_000

    def test_wrong_account(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        request = ClaimRequest.create(alice, "other-round", issued_at=ACTIVATION + 1_000)
        with pytest.raises(AuthorizationError):
            engine.claim(request, now=ACTIVATION + 1_000)

    def test_request_round_trip(self, alice):
        request = ClaimRequest.create(alice, "seed-round", issued_at=123, destination="vault")
        again = ClaimRequest.from_dict(request.to_dict())
        assert again == request
        assert again.destination == "vault"
        assert Ed25519KeyManager.verify_detached(again.canonical_bytes(), again.signature, alice.public_key_hex)

    def test_gate_standalone(self, admin, alice):
        gate = AuthorizationGate(ttl_seconds=60)
        account = make_account(admin, alice)
        gate.authorize_claim(ClaimRequest.create(alice, account.name, issued_at=1_000), account, now=1_030)
        with pytest.raises(RequestExpiredError):
            gate.authorize_claim(ClaimRequest.create(alice, account.name, issued_at=1_000), account, now=1_061)

    def test_gate_horizon_ignores_out_of_order_now(self, admin, alice):
        gate = AuthorizationGate(ttl_seconds=300)
        account = make_account(admin, alice)
        early = ClaimRequest.create(alice, account.name, issued_at=9_500)
        gate.authorize_claim(early, account, now=9_500)
        gate.consume_nonce(alice.public_key_hex, early.nonce, early.issued_at, now=9_500)

        # A later commit moves the horizon to 10_000 - 300; an earlier `now` cannot pull it back
        late = ClaimRequest.create(alice, account.name, issued_at=10_000)
        gate.consume_nonce(alice.public_key_hex, late.nonce, late.issued_at, now=10_000)
        assert gate.prune_horizon == 9_700
        gate.consume_nonce(alice.public_key_hex, "0" * 32, 9_800, now=9_800)
        assert gate.prune_horizon == 9_700

        # early was pruned, but it can no longer pass freshness either
        assert not gate.is_consumed(alice.public_key_hex, early.nonce)
        with pytest.raises(RequestExpiredError):
            gate.authorize_claim(early, account, now=9_600)

    def test_gate_keeps_nonces_inside_horizon(self, admin, alice):
        gate = AuthorizationGate(ttl_seconds=300)
        account = make_account(admin, alice)
        request = ClaimRequest.create(alice, account.name, issued_at=1_000)
        gate.consume_nonce(alice.public_key_hex, request.nonce, request.issued_at, now=1_000)
        gate.consume_nonce(alice.public_key_hex, "f" * 32, 1_290, now=1_290)
        with pytest.raises(RequestReplayError):
            gate.authorize_claim(request, account, now=1_100)


# ─────────────────────────────────────────────────────────────
# DURABILITY
# ─────────────────────────────────────────────────────────────

class TestDurability:

    def test_restore_from_journal(self, tmp_path, host_key, admin, alice, bob):
        engine = funded_engine(tmp_path, host_key, admin, alice, bob)
        engine.confirm_round(admin.public_key_hex, bob.public_key_hex, 2)
        claim(engine, alice, ACTIVATION + 4_000)
        claim(engine, bob, ACTIVATION + 6_000)

        restored = make_engine(make_account(admin, alice, bob), tmp_path / "journal.jsonl", host_key)

        assert restored.initialized
        assert restored.account.is_active
        assert restored.account.activation_time == ACTIVATION
        a = restored.account.find_beneficiary(alice.public_key_hex)
        b = restored.account.find_beneficiary(bob.public_key_hex)
        assert a.claimed_tokens == 400_000
        assert b.confirmed_round == 2
        assert b.claimed_tokens == 500_000
        assert restored.custody.balance_of(restored.holder) == engine.custody.balance_of(engine.holder)

        assert claim(restored, alice, ACTIVATION + 6_000).amount == 200_000
        assert claim(restored, alice, ACTIVATION + 10_000).amount == 400_000

    def test_restart_rejects_committed_request(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        request = ClaimRequest.create(alice, engine.account.name, issued_at=ACTIVATION + 1_000)
        engine.claim(request, now=ACTIVATION + 1_000)

        restored = make_engine(make_account(admin, alice), tmp_path / "journal.jsonl", host_key)
        assert restored.gate.is_consumed(alice.public_key_hex, request.nonce)

        with pytest.raises(RequestReplayError):
            restored.claim(request, now=ACTIVATION + 1_100)
        assert restored.account.find_beneficiary(alice.public_key_hex).claimed_tokens == 100_000

    def test_tampered_journal_refused(self, tmp_path, host_key, admin, alice):
        engine = funded_engine(tmp_path, host_key, admin, alice)
        claim(engine, alice, ACTIVATION + 4_000)

        path = tmp_path / "journal.jsonl"
        path.write_text(path.read_text().replace('"amount": "400000"', '"amount": "900000"'))

        with pytest.raises(LedgerError):
            make_engine(make_account(admin, alice), path, host_key)


# ─────────────────────────────────────────────────────────────
# CONCURRENCY
# ─────────────────────────────────────────────────────────────

class TestConcurrency:

    def test_concurrent_claims_never_overpay(self, tmp_path, host_key, admin):
        keys = [Ed25519KeyManager.generate() for _ in range(5)]
        engine = funded_engine(tmp_path, host_key, admin, *keys)
        now = ACTIVATION + 10_000
        errors = []
        paid = []
        lock = threading.Lock()

        def hammer(key):
            for _ in range(10):
                try:
                    receipt = claim(engine, key, now)
                    with lock:
                        paid.append(receipt.amount)
                except ClaimRejectedError as e:
                    if e.status is not ClaimStatus.CLAIM_NOT_ALLOWED:
                        errors.append(str(e))
                except Exception as e:
                    errors.append(repr(e))

        threads = [threading.Thread(target=hammer, args=(k,)) for k in keys for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(paid) == [1_000_000] * 5
        assert engine.account.total_claimed == engine.account.total_deposited
        assert engine.custody.balance_of(engine.holder) == 0
        assert len(engine.ledger.get_entries_by_type(EntryType.CLAIM)) == 5


# ─────────────────────────────────────────────────────────────
# CLOCK
# ─────────────────────────────────────────────────────────────

class TestClock:

    def test_monotonic_clock_holds_on_step_back(self):
        readings = iter([100, 105, 90, 104, 106])
        clock = MonotonicClock(lambda: next(readings))
        assert [clock() for _ in range(5)] == [100, 105, 105, 105, 106]

    def test_engine_uses_clock_when_now_omitted(self, tmp_path, host_key, admin, alice):
        account = make_account(admin, alice)
        custody = Custody({"treasury": 10 ** 12})
        engine = SettlementEngine(
            account, custody, Ledger(tmp_path / "j.jsonl", host_key),
            clock=MonotonicClock(lambda: ACTIVATION),
        )
        engine.initialize("treasury")
        engine.release(admin.public_key_hex)
        assert account.activation_time == ACTIVATION
        assert engine.preview(alice.public_key_hex).status is ClaimStatus.CLAIM_NOT_ALLOWED
