"""Points ledger service package."""

from .ledger import InsufficientBalanceError, PointsLedger

__all__ = ["InsufficientBalanceError", "PointsLedger"]
