"""
VestLedger Authorization Gate

Decides whether a caller may act before the engine runs:
- ClaimRequest: beneficiary-signed claim (Ed25519)
- AuthorizationGate: identity, freshness, signature and replay checks
- Admin actions: sender must be the account initializer
"""

from vestledger.authorization.gate import AuthorizationGate, ClaimRequest

__all__ = ["AuthorizationGate", "ClaimRequest"]
