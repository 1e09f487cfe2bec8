"""
Runtime context for a VestLedger host process.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from vestledger.authorization.gate import AuthorizationGate
from vestledger.config import load_account_config
from vestledger.core.crypto import Ed25519KeyManager
from vestledger.core.models import VestingAccount
from vestledger.ledger.ledger import Ledger
from vestledger.settlement.custody import Custody
from vestledger.settlement.engine import SettlementEngine


@dataclass
class RuntimeContext:
    """Everything needed to serve one vesting account."""

    account: VestingAccount
    settlement_engine: SettlementEngine
    ledger: Ledger
    custody: Custody
    key_manager: Ed25519KeyManager

    @classmethod
    def from_config(
        cls,
        config_file: Path,
        ledger_path: Path,
        key_path: Optional[Path] = None,
        custody: Optional[Custody] = None,
        ttl_seconds: Optional[int] = None,
    ) -> "RuntimeContext":
        """
        Build a context from a YAML account config and a journal path.

        The journal signing key is loaded from key_path when it exists,
        otherwise generated (and saved to key_path if one was given).
        """
        if key_path:
            key_manager = Ed25519KeyManager.load_or_generate(Path(key_path))
        else:
            key_manager = Ed25519KeyManager.generate()

        account = load_account_config(config_file)
        ledger = Ledger(ledger_path, key_manager)
        custody = custody if custody is not None else Custody()
        gate = AuthorizationGate(ttl_seconds=ttl_seconds) if ttl_seconds else AuthorizationGate()
        settlement_engine = SettlementEngine(account, custody, ledger, gate=gate)

        return cls(
            account=account,
            settlement_engine=settlement_engine,
            ledger=ledger,
            custody=custody,
            key_manager=key_manager,
        )

    def __repr__(self) -> str:
        return (
            f"RuntimeContext("
            f"account={self.account.name!r}, "
            f"state={self.account.lifecycle_state.value}, "
            f"ledger_entries={len(self.ledger.entries)})"
        )
