"""
Journal implementation for VestLedger.

One JSON line per entry. Each entry commits to:
    - its position (index)
    - the previous entry's hash (GENESIS_HASH for index 0)
    - the SHA-256 of its canonical data
and is signed with the host's Ed25519 key over its own hash.

Entry types:
    initialize — custody funded for an account
    release    — account activated at activation_time
    confirm    — a beneficiary's confirmed_round raised
    claim      — a transfer applied to a beneficiary's claimed_tokens
"""

import json
import logging
import os
import threading
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from vestledger.core.canonical import canonical_hash
from vestledger.core.crypto import Ed25519KeyManager
from vestledger.core.exceptions import LedgerError
from vestledger.core.time import journal_timestamp


logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


class EntryType:
    """Journal entry_type constants."""
    INITIALIZE = "initialize"
    RELEASE    = "release"
    CONFIRM    = "confirm"
    CLAIM      = "claim"


_VALID_ENTRY_TYPES = {
    EntryType.INITIALIZE,
    EntryType.RELEASE,
    EntryType.CONFIRM,
    EntryType.CLAIM,
}


@dataclass
class LedgerEntry:
    """A single entry in the journal"""
    index: int
    previous_hash: str
    timestamp: str
    entry_type: str
    data: dict
    data_hash: str
    signer_public_key: str
    signature: str

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization"""
        return {
            "index": self.index,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "entry_type": self.entry_type,
            "data": self.data,
            "data_hash": self.data_hash,
            "signer_public_key": self.signer_public_key,
            "signature": self.signature,
        }

    @staticmethod
    def from_dict(data: dict) -> "LedgerEntry":
        """Create entry from dictionary"""
        return LedgerEntry(
            index=data["index"],
            previous_hash=data["previous_hash"],
            timestamp=data["timestamp"],
            entry_type=data["entry_type"],
            data=data["data"],
            data_hash=data["data_hash"],
            signer_public_key=data["signer_public_key"],
            signature=data["signature"],
        )

    def compute_hash(self) -> str:
        """Hash of this entry for chaining and signing (signature excluded)"""
        return canonical_hash({
            "index": self.index,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "entry_type": self.entry_type,
            "data_hash": self.data_hash,
            "signer_public_key": self.signer_public_key,
        })


class Ledger:
    """
    Append-only, hash-chained, signed journal of vesting actions.

    Existing files are loaded and verified on construction; a journal
    that does not verify is never appended to. Without a signing_key the
    journal is read-only; trusted_signer then pins the expected signer
    (None accepts whichever key signed each entry).
    """

    GENESIS_HASH = GENESIS_HASH

    def __init__(
        self,
        ledger_path: Path,
        signing_key: Optional[Ed25519KeyManager] = None,
        trusted_signer: Optional[str] = None,
    ):
        self.ledger_path = Path(ledger_path)
        self.signing_key = signing_key
        if trusted_signer is None and signing_key is not None:
            trusted_signer = signing_key.public_key_hex
        self.trusted_signer = trusted_signer
        self.entries: List[LedgerEntry] = []
        self._poisoned: Optional[str] = None
        self._lock = threading.Lock()

        if self.ledger_path.exists():
            self.entries, torn_tail = _read_entries(self.ledger_path)
            self.verify_or_raise()
            if torn_tail:
                self._drop_torn_tail()
            logger.debug("Loaded %d journal entries from %s", len(self.entries), self.ledger_path)

    # ── Appends ───────────────────────────────────────────────

    def append(self, entry_type: str, data: dict) -> LedgerEntry:
        """Create, sign and durably append one entry."""
        if self.signing_key is None:
            raise LedgerError("Journal is read-only", {"path": str(self.ledger_path)})
        if self._poisoned:
            raise LedgerError(f"Journal refuses appends: {self._poisoned}", {"path": str(self.ledger_path)})
        if entry_type not in _VALID_ENTRY_TYPES:
            raise LedgerError(f"Unknown entry_type: {entry_type}")

        with self._lock:
            entry = LedgerEntry(
                index=len(self.entries),
                previous_hash=self.entries[-1].compute_hash() if self.entries else GENESIS_HASH,
                timestamp=journal_timestamp(),
                entry_type=entry_type,
                data=data,
                data_hash=canonical_hash(data),
                signer_public_key=self.signing_key.public_key_hex,
                signature="",
            )
            entry.signature = self.signing_key.sign(bytes.fromhex(entry.compute_hash()))

            self._write_entry(entry)
            self.entries.append(entry)
            return entry

    # ── Queries ───────────────────────────────────────────────

    def get_all_entries(self) -> List[LedgerEntry]:
        """Get all journal entries"""
        return self.entries.copy()

    def get_entries_by_type(self, entry_type: str) -> List[LedgerEntry]:
        """Get all entries of a specific type"""
        return [e for e in self.entries if e.entry_type == entry_type]

    def head_hash(self) -> str:
        """Hash the next entry will link to."""
        return self.entries[-1].compute_hash() if self.entries else GENESIS_HASH

    def get_stats(self) -> dict:
        """Get journal statistics"""
        type_counts = {}
        for entry in self.entries:
            type_counts[entry.entry_type] = type_counts.get(entry.entry_type, 0) + 1

        return {
            "total_entries": len(self.entries),
            "by_type": type_counts,
            "head_hash": self.head_hash(),
            "first_entry_time": self.entries[0].timestamp if self.entries else None,
            "last_entry_time": self.entries[-1].timestamp if self.entries else None,
        }

    # ── Verification ──────────────────────────────────────────

    def verify_or_raise(self) -> None:
        """Verify journal integrity or raise LedgerError on the first violation"""
        violations = verify_entries(self.entries, self.trusted_signer)
        if violations:
            raise LedgerError(violations[0])

    # ── Internal ──────────────────────────────────────────────

    def _drop_torn_tail(self) -> None:
        """Rewrite the journal without a half-written last line."""
        warnings.warn(
            f"Journal {self.ledger_path} ends in a half-written entry; "
            f"it was discarded and {len(self.entries)} entries kept.",
            RuntimeWarning,
            stacklevel=3,
        )
        if self.signing_key is None:
            return

        temp_path = self.ledger_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                for entry in self.entries:
                    f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.ledger_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise LedgerError(f"Failed to repair journal: {e}") from e

    def _write_entry(self, entry: LedgerEntry) -> None:
        """
        Append one line and fsync. The in-memory list only grows after this returns.

        On any OSError the file is truncated back to its size before the
        write, so a failed append leaves no partial or orphan line. If that
        rollback fails too, the journal is poisoned and refuses appends.
        """
        line = (json.dumps(entry.to_dict(), ensure_ascii=False) + "\n").encode("utf-8")
        try:
            self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
            f = open(self.ledger_path, "ab", buffering=0)
        except OSError as e:
            raise LedgerError(f"Failed to open journal: {e}") from e

        with f:
            offset = f.seek(0, os.SEEK_END)
            try:
                view = memoryview(line)
                while view:
                    view = view[f.write(view):]
                os.fsync(f.fileno())
            except OSError as e:
                self._roll_back(f, offset)
                raise LedgerError(
                    f"Failed to write journal entry {entry.index}: {e}",
                    {"path": str(self.ledger_path)},
                ) from e

    def _roll_back(self, f, offset: int) -> None:
        try:
            f.truncate(offset)
            os.fsync(f.fileno())
        except OSError as e:
            self._poisoned = f"rollback to byte {offset} failed: {e}"
            logger.error("Journal %s is unusable: %s", self.ledger_path, self._poisoned)
        else:
            logger.warning("Rolled journal %s back to byte %d after a failed write", self.ledger_path, offset)


def load_entries(ledger_path: Path) -> List[LedgerEntry]:
    """Parse a JSONL journal. Raises LedgerError on any malformed line."""
    entries, torn_tail = _read_entries(ledger_path)
    if torn_tail:
        raise LedgerError(f"Truncated last line in {ledger_path}")
    return entries


def _read_entries(ledger_path: Path) -> Tuple[List[LedgerEntry], bool]:
    """
    Parse a JSONL journal.

    A last line that is not valid JSON and has no trailing newline is a
    torn write from a crash mid-append; it is reported via the returned
    flag instead of raising. Corruption anywhere else raises LedgerError.
    """
    try:
        with open(ledger_path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError as e:
        raise LedgerError(f"Failed to load journal: {e}") from e

    entries = []
    for line_num, raw in enumerate(lines, 1):
        line = raw.strip()
        if not line:
            continue
        try:
            entries.append(LedgerEntry.from_dict(json.loads(line)))
        except json.JSONDecodeError as e:
            if line_num == len(lines) and not raw.endswith("\n"):
                return entries, True
            raise LedgerError(f"Invalid JSON at line {line_num}: {e}") from e
        except (KeyError, TypeError) as e:
            raise LedgerError(f"Malformed entry at line {line_num}: {e}") from e
    return entries, False


def verify_entries(
    entries: List[LedgerEntry],
    trusted_signer: Optional[str] = None,
) -> List[str]:
    """
    Check a sequence of entries. Returns human-readable violations (empty = valid).

    Checks per entry: index, entry_type, data hash, chain link, signer,
    signature.
    """
    violations = []
    previous_hash = GENESIS_HASH

    for position, entry in enumerate(entries):
        if entry.index != position:
            violations.append(f"Index gap at position {position}: entry claims index {entry.index}")

        if entry.entry_type not in _VALID_ENTRY_TYPES:
            violations.append(f"Unknown entry_type '{entry.entry_type}' at index {entry.index}")

        if canonical_hash(entry.data) != entry.data_hash:
            violations.append(f"Data hash mismatch at index {entry.index}")

        if entry.previous_hash != previous_hash:
            violations.append(
                f"Chain break at index {entry.index}: "
                f"expected {previous_hash}, got {entry.previous_hash}"
            )

        if trusted_signer is not None and entry.signer_public_key != trusted_signer:
            violations.append(f"Untrusted signer at index {entry.index}")

        entry_hash = entry.compute_hash()
        if not Ed25519KeyManager.verify_detached(
            bytes.fromhex(entry_hash), entry.signature, entry.signer_public_key
        ):
            violations.append(f"Invalid signature at index {entry.index}")

        previous_hash = entry_hash

    return violations
