"""
Authorization gate for VestLedger.

Claims are authorized by a ClaimRequest signed with the beneficiary's
Ed25519 key; the beneficiary identity IS the 64-char public key hex.
The payout destination is part of the signed bytes.

PROTOCOL INVARIANT: Validation order matters for explainability and efficiency.
Order: Identity → Freshness → Signature → Nonce
authorize_claim() only checks the nonce. consume_nonce() marks it used,
and the settlement engine calls it once the claim is journaled (and again
for every claim while replaying the journal).

Admin actions (release, confirm) are gated on sender == initializer.
"""

import secrets
import threading
from dataclasses import dataclass, replace
from typing import Dict, Optional

from vestledger.core.canonical import canonicalize
from vestledger.core.crypto import Ed25519KeyManager, is_public_key_hex
from vestledger.core.exceptions import (
    AuthorizationError,
    InvalidSenderError,
    RequestExpiredError,
    RequestReplayError,
)
from vestledger.core.models import VestingAccount


DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_SKEW_SECONDS = 30
_NONCE_HEX_LENGTH = 32


@dataclass(frozen=True)
class ClaimRequest:
    """A beneficiary's signed request to claim from one account into one destination."""
    identity: str
    account: str
    issued_at: int
    nonce: str
    destination: str
    signature: str = ""

    def to_dict_for_signing(self) -> dict:
        return {
            "identity": self.identity,
            "account": self.account,
            "issued_at": self.issued_at,
            "nonce": self.nonce,
            "destination": self.destination,
        }

    def canonical_bytes(self) -> bytes:
        return canonicalize(self.to_dict_for_signing())

    def to_dict(self) -> dict:
        return {**self.to_dict_for_signing(), "signature": self.signature}

    @staticmethod
    def from_dict(data: dict) -> "ClaimRequest":
        return ClaimRequest(
            identity=data["identity"],
            account=data["account"],
            issued_at=data["issued_at"],
            nonce=data["nonce"],
            destination=data["destination"],
            signature=data.get("signature", ""),
        )

    @classmethod
    def create(
        cls,
        key: Ed25519KeyManager,
        account: str,
        issued_at: int,
        destination: Optional[str] = None,
    ) -> "ClaimRequest":
        """Build and sign a request for the key's own identity (paid to itself by default)."""
        request = cls(
            identity=key.public_key_hex,
            account=account,
            issued_at=issued_at,
            nonce=secrets.token_hex(16),
            destination=destination or key.public_key_hex,
        )
        return replace(request, signature=key.sign(request.canonical_bytes()))


class AuthorizationGate:
    """
    Verifies claim requests and admin senders.

    Used nonces are remembered per identity until they fall behind the
    prune horizon: the latest `now` seen minus the TTL. Requests issued
    before that horizon are refused as expired, even when the caller's
    own `now` would still call them fresh.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_skew_seconds: int = DEFAULT_MAX_SKEW_SECONDS,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_skew_seconds = max_skew_seconds
        self._seen_nonces: Dict[str, Dict[str, int]] = {}
        self._latest_now: Optional[int] = None
        self._lock = threading.Lock()

    @property
    def prune_horizon(self) -> Optional[int]:
        if self._latest_now is None:
            return None
        return self._latest_now - self.ttl_seconds

    def authorize_claim(self, request: ClaimRequest, account: VestingAccount, now: int) -> None:
        """Raise AuthorizationError (or a subclass) unless the request is valid. Consumes nothing."""
        # Identity FIRST (structural)
        if not is_public_key_hex(request.identity):
            raise AuthorizationError(
                "Claim identity is not an Ed25519 public key",
                {"identity": request.identity},
            )
        if request.account != account.name:
            raise AuthorizationError(
                "Claim request is for a different account",
                {"expected": account.name, "got": request.account},
            )
        if not isinstance(request.nonce, str) or len(request.nonce) != _NONCE_HEX_LENGTH:
            raise AuthorizationError("Malformed nonce", {"nonce": request.nonce})
        if not isinstance(request.destination, str) or not request.destination:
            raise AuthorizationError("Missing destination", {"identity": request.identity})
        if isinstance(request.issued_at, bool) or not isinstance(request.issued_at, int):
            raise AuthorizationError("issued_at must be unix seconds", {"issued_at": request.issued_at})

        # Freshness SECOND (temporal)
        if request.issued_at > now + self.max_skew_seconds:
            raise RequestExpiredError(
                "Claim request issued in the future",
                {"issued_at": request.issued_at, "now": now},
            )
        horizon = self.prune_horizon
        if now - request.issued_at > self.ttl_seconds or (horizon is not None and request.issued_at < horizon):
            raise RequestExpiredError(
                "Claim request has expired",
                {"issued_at": request.issued_at, "now": now, "ttl": self.ttl_seconds},
            )

        # Signature THIRD (cryptographic, slow)
        if not Ed25519KeyManager.verify_detached(
            request.canonical_bytes(), request.signature, request.identity
        ):
            raise AuthorizationError("Invalid claim signature", {"identity": request.identity})

        # Nonce LAST
        with self._lock:
            if request.nonce in self._seen_nonces.get(request.identity, {}):
                raise RequestReplayError(
                    "Claim request nonce already used",
                    {"identity": request.identity, "nonce": request.nonce},
                )

    def consume_nonce(self, identity: str, nonce: str, issued_at: int, now: int) -> None:
        """Mark a nonce used and prune nonces behind the horizon."""
        with self._lock:
            seen = self._seen_nonces.setdefault(identity, {})
            if nonce in seen:
                raise RequestReplayError(
                    "Claim request nonce already used",
                    {"identity": identity, "nonce": nonce},
                )
            seen[nonce] = issued_at

            if self._latest_now is None or now > self._latest_now:
                self._latest_now = now
            horizon = self._latest_now - self.ttl_seconds
            for used, used_at in list(seen.items()):
                if used_at < horizon:
                    del seen[used]

    def is_consumed(self, identity: str, nonce: str) -> bool:
        with self._lock:
            return nonce in self._seen_nonces.get(identity, {})

    @staticmethod
    def authorize_admin(sender: str, account: VestingAccount) -> None:
        """Only the account initializer may release or confirm."""
        if sender != account.initializer:
            raise InvalidSenderError(
                "Sender is not owner of the vesting account",
                {"account": account.name, "sender": sender},
            )
