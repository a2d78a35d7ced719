"""Typed outcomes for redemption, validation and cancellation.

Expected rejections are returned as values rather than raised. Every error code
belongs to one ``ErrorCategory`` so the HTTP layer can pick a status without
inspecting messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from rewards_api.models.rewards import RedemptionStatus, RewardValidationType, ValidationMethod


class ErrorCategory(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"
    INELIGIBLE_ACCOUNT = "ineligible_account"
    INSUFFICIENT_AVAILABILITY = "insufficient_availability"
    TRANSIENT_STORE_ERROR = "transient_store_error"
    UNAUTHENTICATED = "unauthenticated"


class ValidationErrorCode(str, Enum):
    CODE_NOT_FOUND = "CODE_NOT_FOUND"
    ALREADY_VALIDATED = "ALREADY_VALIDATED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _VALIDATION_CATEGORIES[self]


class RedeemErrorCode(str, Enum):
    REWARD_NOT_FOUND = "REWARD_NOT_FOUND"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    REWARD_INACTIVE = "REWARD_INACTIVE"
    SOLD_OUT = "SOLD_OUT"
    REWARD_EXPIRED = "REWARD_EXPIRED"
    REWARD_NOT_YET_VALID = "REWARD_NOT_YET_VALID"
    INVALID_DAY = "INVALID_DAY"
    INVALID_TIME = "INVALID_TIME"
    MIN_BALANCE_NOT_MET = "MIN_BALANCE_NOT_MET"
    LEVEL_TOO_LOW = "LEVEL_TOO_LOW"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    FREQUENCY_LIMIT = "FREQUENCY_LIMIT"
    RATE_LIMITED = "RATE_LIMITED"
    STORE_ERROR = "STORE_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _REDEEM_CATEGORIES.get(self, ErrorCategory.INELIGIBLE_ACCOUNT)


class CancelErrorCode(str, Enum):
    REDEMPTION_NOT_FOUND = "REDEMPTION_NOT_FOUND"
    NOT_PERMITTED = "NOT_PERMITTED"
    ALREADY_VALIDATED = "ALREADY_VALIDATED"
    NOT_CANCELLABLE = "NOT_CANCELLABLE"
    STORE_ERROR = "STORE_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _CANCEL_CATEGORIES[self]


_VALIDATION_CATEGORIES = {
    ValidationErrorCode.CODE_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ValidationErrorCode.ALREADY_VALIDATED: ErrorCategory.ALREADY_USED,
    ValidationErrorCode.EXPIRED: ErrorCategory.EXPIRED,
    ValidationErrorCode.CANCELLED: ErrorCategory.EXPIRED,
    ValidationErrorCode.NETWORK_UNAVAILABLE: ErrorCategory.TRANSIENT_STORE_ERROR,
    ValidationErrorCode.VALIDATION_ERROR: ErrorCategory.TRANSIENT_STORE_ERROR,
}

_REDEEM_CATEGORIES = {
    RedeemErrorCode.REWARD_NOT_FOUND: ErrorCategory.NOT_FOUND,
    RedeemErrorCode.ACCOUNT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    RedeemErrorCode.SOLD_OUT: ErrorCategory.INSUFFICIENT_AVAILABILITY,
    RedeemErrorCode.REWARD_EXPIRED: ErrorCategory.EXPIRED,
    RedeemErrorCode.STORE_ERROR: ErrorCategory.TRANSIENT_STORE_ERROR,
}

_CANCEL_CATEGORIES = {
    CancelErrorCode.REDEMPTION_NOT_FOUND: ErrorCategory.NOT_FOUND,
    CancelErrorCode.NOT_PERMITTED: ErrorCategory.UNAUTHENTICATED,
    CancelErrorCode.ALREADY_VALIDATED: ErrorCategory.ALREADY_USED,
    CancelErrorCode.NOT_CANCELLABLE: ErrorCategory.ALREADY_USED,
    CancelErrorCode.STORE_ERROR: ErrorCategory.TRANSIENT_STORE_ERROR,
}


@dataclass(frozen=True, slots=True)
class EligibilityRejection:
    """First failed creation-time check, with its user-facing reason."""

    code: RedeemErrorCode
    message: str
    next_available_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class FrequencyDecision:
    allowed: bool
    message: str | None = None
    last_redeemed_at: datetime | None = None
    next_available_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    window_days: int
    message: str | None = None


@dataclass(frozen=True, slots=True)
class ValidationSuccess:
    redemption_id: UUID
    reward_id: UUID
    account_id: UUID
    reward_title: str | None
    validated_at: datetime
    validated_by: str | None
    method: ValidationMethod

    ok = True


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    code: ValidationErrorCode
    message: str
    redemption_id: UUID | None = None
    validated_at: datetime | None = None
    validated_by: str | None = None

    ok = False

    @property
    def category(self) -> ErrorCategory:
        return self.code.category


@dataclass(frozen=True, slots=True)
class RedemptionStatusView:
    """Read-only state of a code, used to re-check after a timeout."""

    redemption_id: UUID
    status: RedemptionStatus
    validated: bool
    validated_at: datetime | None
    validated_by: str | None
    expires_at: datetime | None


@dataclass(frozen=True, slots=True)
class RedeemSuccess:
    redemption_id: UUID
    code: str
    validation_type: RewardValidationType
    points_spent: int
    balance_after: int
    expires_at: datetime | None
    qr_image_url: str | None

    ok = True


@dataclass(frozen=True, slots=True)
class RedeemFailure:
    code: RedeemErrorCode
    message: str
    next_available_at: datetime | None = None

    ok = False

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    @classmethod
    def from_rejection(cls, rejection: EligibilityRejection) -> "RedeemFailure":
        return cls(
            code=rejection.code,
            message=rejection.message,
            next_available_at=rejection.next_available_at,
        )


@dataclass(frozen=True, slots=True)
class CancelSuccess:
    redemption_id: UUID
    refunded_points: int
    cancelled_at: datetime

    ok = True


@dataclass(frozen=True, slots=True)
class CancelFailure:
    code: CancelErrorCode
    message: str

    ok = False

    @property
    def category(self) -> ErrorCategory:
        return self.code.category


ValidationResult = ValidationSuccess | ValidationFailure
RedeemResult = RedeemSuccess | RedeemFailure
CancelResult = CancelSuccess | CancelFailure
