"""
In-memory custody balances with an atomic transfer primitive.

Balances are in the smallest transfer unit (base units * 10**decimals).
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict

from vestledger.core.exceptions import CustodyError
from vestledger.core.numeric import U64_MAX


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferReceipt:
    """What moved where. Used to reverse a transfer."""
    source: str
    destination: str
    amount: int


class Custody:
    """
    Token balances keyed by holder.

    transfer() either moves the full amount or raises CustodyError and
    leaves both balances untouched.
    """

    def __init__(self, balances: Dict[str, int] = None):
        self._balances: Dict[str, int] = dict(balances or {})
        self._lock = threading.Lock()

    def balance_of(self, holder: str) -> int:
        with self._lock:
            return self._balances.get(holder, 0)

    def mint(self, holder: str, amount: int) -> None:
        """Credit a holder out of thin air (funding wallets in setups and tests)."""
        with self._lock:
            self._check_amount(amount)
            new_balance = self._balances.get(holder, 0) + amount
            if new_balance > U64_MAX:
                raise CustodyError("Balance overflow", {"holder": holder})
            self._balances[holder] = new_balance

    def transfer(self, source: str, destination: str, amount: int) -> TransferReceipt:
        """Debit source, credit destination by amount. All or nothing."""
        with self._lock:
            self._check_amount(amount)
            if source == destination:
                raise CustodyError("Source and destination are the same", {"holder": source})

            available = self._balances.get(source, 0)
            if available < amount:
                raise CustodyError(
                    "Insufficient custody balance",
                    {"source": source, "available": available, "requested": amount},
                )

            credited = self._balances.get(destination, 0) + amount
            if credited > U64_MAX:
                raise CustodyError("Balance overflow", {"holder": destination})

            self._balances[source] = available - amount
            self._balances[destination] = credited

        logger.debug("Transferred %d from %s to %s", amount, source, destination)
        return TransferReceipt(source, destination, amount)

    def reverse(self, receipt: TransferReceipt) -> TransferReceipt:
        """Move a completed transfer back."""
        logger.warning(
            "Reversing transfer of %d from %s to %s",
            receipt.amount, receipt.source, receipt.destination,
        )
        return self.transfer(receipt.destination, receipt.source, receipt.amount)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._balances)

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise CustodyError("Transfer amount must be a positive integer", {"amount": amount})
        if amount > U64_MAX:
            raise CustodyError("Transfer amount exceeds range", {"amount": amount})
