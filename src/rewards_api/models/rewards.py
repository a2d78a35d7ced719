"""Reward catalog, redemption and validation audit models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class RedemptionFrequency(str, Enum):
    """How often one account may redeem the same reward."""

    ONCE = "once"
    ONCE_PER_DAY = "once_per_day"
    ONCE_PER_WEEK = "once_per_week"
    UNLIMITED = "unlimited"


class RewardValidationType(str, Enum):
    """Physical rewards are scanned as QR codes, online rewards typed in."""

    PHYSICAL = "physical"
    ONLINE = "online"


class RedemptionStatus(str, Enum):
    """Lifecycle for reward and offer redemptions."""

    PENDING = "pending"
    REDEEMED = "redeemed"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ValidationMethod(str, Enum):
    QR_SCAN = "qr_scan"
    CODE_ENTRY = "code_entry"


class Reward(Base):
    """Catalog entry a business offers in exchange for points."""

    __tablename__ = "rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    business_id = Column(
        UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    points_cost = Column(Integer, nullable=False)
    total_available = Column(Integer, nullable=False, default=0, server_default="0")
    claimed = Column(Integer, nullable=False, default=0, server_default="0")
    unlimited = Column(Boolean, nullable=False, default=False, server_default="false")
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    redemption_frequency = Column(
        SqlEnum(RedemptionFrequency, name="reward_redemption_frequency"),
        nullable=False,
        default=RedemptionFrequency.UNLIMITED,
    )
    validation_type = Column(
        SqlEnum(RewardValidationType, name="reward_validation_type"),
        nullable=False,
        default=RewardValidationType.PHYSICAL,
    )
    valid_from = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    # Stamped onto each redemption as its expiry.
    valid_until = Column(DateTime(timezone=True), nullable=True)
    # ISO weekdays, 1 = Monday .. 7 = Sunday
    valid_days = Column(JSON, nullable=True)
    valid_time_start = Column(String(5), nullable=True)
    valid_time_end = Column(String(5), nullable=True)
    min_points_required = Column(Integer, nullable=True)
    min_purchase_amount = Column(Numeric(12, 2), nullable=True)
    level_required = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    business = relationship("Account")
    redemptions = relationship("Redemption", back_populates="reward")

    @property
    def sold_out(self) -> bool:
        return not self.unlimited and (self.claimed or 0) >= (self.total_available or 0)


class Redemption(Base):
    """One account's claim on one reward, validated at most once."""

    __tablename__ = "reward_redemptions"
    __table_args__ = (
        Index("ix_reward_redemptions_business_qr_code", "business_id", "qr_code"),
        Index("ix_reward_redemptions_business_alphanumeric_code", "business_id", "alphanumeric_code"),
        Index("ix_reward_redemptions_account_reward", "account_id", "reward_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    reward_id = Column(UUID(as_uuid=True), ForeignKey("rewards.id"), nullable=False)
    business_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    reward_snapshot = Column(JSON, nullable=False, default=dict)
    points_spent = Column(Integer, nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    status = Column(
        SqlEnum(RedemptionStatus, name="reward_redemption_status"),
        nullable=False,
        default=RedemptionStatus.PENDING,
    )
    qr_code = Column(String, nullable=True)
    alphanumeric_code = Column(String, nullable=True)
    validation_token = Column(String(64), nullable=False)
    validated = Column(Boolean, nullable=False, default=False, server_default="false")
    validated_at = Column(DateTime(timezone=True), nullable=True)
    validated_by = Column(String, nullable=True)
    validation_method = Column(SqlEnum(ValidationMethod, name="reward_validation_method"), nullable=True)
    validation_ip = Column(String, nullable=True)
    validation_device_id = Column(String, nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    reward = relationship("Reward", back_populates="redemptions")

    @property
    def code(self) -> str | None:
        return self.qr_code or self.alphanumeric_code


class ValidationAuditEntry(Base):
    """Write-once record of a validation attempt."""

    __tablename__ = "reward_validation_audit"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    redemption_id = Column(UUID(as_uuid=True), ForeignKey("reward_redemptions.id"), nullable=True)
    reward_id = Column(UUID(as_uuid=True), nullable=True)
    account_id = Column(UUID(as_uuid=True), nullable=True)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    validated_by = Column(String, nullable=True)
    validation_method = Column(SqlEnum(ValidationMethod, name="reward_validation_method"), nullable=True)
    code = Column(String, nullable=True)
    success = Column(Boolean, nullable=False)
    outcome = Column(String(32), nullable=False)
    reason = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    device_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
