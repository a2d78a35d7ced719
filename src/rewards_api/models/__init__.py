"""SQLAlchemy models package."""

# Import all models
from .account import Account, AccountTypeEnum  # noqa: F401
from .ledger import LedgerDirection, PointsLedgerEntry  # noqa: F401
from .notification import (  # noqa: F401
    Notification,
    NotificationChannelEnum,
    NotificationStatusEnum,
)
from .offers import OfferRedemption, OfferType, SpecialOffer  # noqa: F401
from .rewards import (  # noqa: F401
    RedemptionFrequency,
    Redemption,
    RedemptionStatus,
    Reward,
    RewardValidationType,
    ValidationAuditEntry,
    ValidationMethod,
)
