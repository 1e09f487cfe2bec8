"""
VestLedger Runtime

Wires config, journal, custody and the settlement engine together.
"""

from vestledger.runtime.context import RuntimeContext

__all__ = ["RuntimeContext"]
