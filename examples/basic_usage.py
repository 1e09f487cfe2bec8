"""
VestLedger: Basic Usage Example

Demonstrates:
- Building an account with two beneficiaries
- Funding custody and releasing the account
- Signed claims at different points in the schedule
- Restoring state from the journal
"""

import tempfile
from pathlib import Path

from vestledger import (
    Beneficiary,
    ClaimRejectedError,
    ClaimRequest,
    Custody,
    Ed25519KeyManager,
    Ledger,
    SettlementEngine,
    VestingAccount,
)

ACTIVATION = 1_700_000_000
DAY = 86_400


def build_account(admin, alice, bob) -> VestingAccount:
    return VestingAccount(
        name="seed-round",
        initializer=admin.public_key_hex,
        total_deposited=3_000_000,
        decimals=6,
        beneficiaries=[
            Beneficiary(
                identity=alice.public_key_hex,
                allocated_tokens=2_000_000,
                initial_unlock_percent=10,
                lockup_delay=30 * DAY,
                round_count=12,
                round_span=360 * DAY,
            ),
            Beneficiary(
                identity=bob.public_key_hex,
                allocated_tokens=1_000_000,
                round_count=4,
                round_span=120 * DAY,
            ),
        ],
    )


def main():
    print("=" * 60)
    print("VestLedger: Basic Usage Example")
    print("=" * 60)
    print()

    host, admin = Ed25519KeyManager.generate(), Ed25519KeyManager.generate()
    alice, bob = Ed25519KeyManager.generate(), Ed25519KeyManager.generate()
    journal = Path(tempfile.mkdtemp()) / "seed-round.journal.jsonl"

    # 1️⃣ Fund and release
    print("1️⃣ Funding custody and releasing the account...")
    custody = Custody({"treasury": 10 ** 13})
    engine = SettlementEngine(build_account(admin, alice, bob), custody, Ledger(journal, host))
    engine.initialize("treasury")
    engine.release(admin.public_key_hex, now=ACTIVATION)
    print(f"✅ {custody.balance_of(engine.holder)} smallest units in custody")
    print()

    # 2️⃣ Alice's schedule
    print("2️⃣ Alice's schedule (round 0 is the initial unlock):")
    for entry in engine.schedule(alice.public_key_hex)[:4]:
        print(f"  round {entry.round_index:>2}  t={entry.unlock_time}  {entry.entitlement}")
    print("  ...")
    print()

    # 3️⃣ Claims
    print("3️⃣ Claiming...")
    for who, key, offset in [("alice", alice, 10 * DAY), ("alice", alice, 100 * DAY), ("bob", bob, 100 * DAY)]:
        now = ACTIVATION + offset
        request = ClaimRequest.create(key, "seed-round", issued_at=now)
        try:
            receipt = engine.claim(request, now=now)
            print(f"  ✅ {who} @ +{offset // DAY}d: {receipt.amount}")
        except ClaimRejectedError as e:
            print(f"  ⛔ {who} @ +{offset // DAY}d: {e.status.value}")
    print()

    # 4️⃣ Restore from journal
    print("4️⃣ Restoring from the journal...")
    restored = SettlementEngine(build_account(admin, alice, bob), Custody(), Ledger(journal, host))
    for row in restored.summary(ACTIVATION + 100 * DAY)["beneficiaries"]:
        print(f"  {row['identity'][:12]}…  claimed {row['claimed_tokens']}/{row['allocated_tokens']}")
    print()
    print(f"Journal: {journal}")
    print(f"Verify with: vestledger verify {journal} --signer {host.public_key_hex}")


if __name__ == "__main__":
    main()
