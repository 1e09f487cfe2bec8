"""
VestLedger Exception Hierarchy

All exceptions inherit from VestingError for easy catching.
"""


class VestingError(Exception):
    """Base exception for all VestLedger errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(VestingError):
    """Raised when a vesting account or beneficiary is misconfigured (fatal)"""
    pass


class LifecycleError(VestingError):
    """Raised when a lifecycle action is not valid in the current state"""
    pass


class LedgerError(VestingError):
    """Raised when journal operations fail"""
    pass


class CustodyError(VestingError):
    """Raised when a custody transfer cannot be performed"""
    pass


class AuthorizationError(VestingError):
    """Raised when authorization fails"""
    pass


class InvalidSenderError(AuthorizationError):
    """Raised when an admin action is not sent by the account initializer"""
    pass


class RequestExpiredError(AuthorizationError):
    """Raised when a signed claim request is stale or from the future"""
    pass


class RequestReplayError(AuthorizationError):
    """Raised when a claim request nonce is reused"""
    pass


class ClaimRejectedError(VestingError):
    """Raised by the host when the reconciler rejects a claim"""

    def __init__(self, decision):
        super().__init__(
            decision.reason,
            {"status": decision.status.value, "identity": decision.identity},
        )
        self.decision = decision
        self.status = decision.status
