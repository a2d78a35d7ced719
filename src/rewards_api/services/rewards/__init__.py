"""Reward redemption, validation and fraud services."""

from .catalog import RewardCatalogReader
from .fraud import FraudGuard, ReachabilityProbe
from .redemption import RedemptionService
from .results import (
    CancelErrorCode,
    CancelFailure,
    CancelSuccess,
    ErrorCategory,
    RedeemErrorCode,
    RedeemFailure,
    RedeemSuccess,
    RedemptionStatusView,
    ValidationErrorCode,
    ValidationFailure,
    ValidationSuccess,
)
from .validation import ValidationEngine, ValidationMetadata

__all__ = [
    "CancelErrorCode",
    "CancelFailure",
    "CancelSuccess",
    "ErrorCategory",
    "FraudGuard",
    "ReachabilityProbe",
    "RedeemErrorCode",
    "RedeemFailure",
    "RedeemSuccess",
    "RedemptionService",
    "RedemptionStatusView",
    "RewardCatalogReader",
    "ValidationEngine",
    "ValidationErrorCode",
    "ValidationFailure",
    "ValidationMetadata",
    "ValidationSuccess",
]
