"""Promo-code special offers and their redemptions."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base
from rewards_api.models.rewards import RedemptionStatus


class OfferType(str, Enum):
    PERCENTAGE_OFF = "percentage_off"
    FIXED_AMOUNT_OFF = "fixed_amount_off"
    FREE_ITEM = "free_item"
    BUY_ONE_GET_ONE = "buy_one_get_one"
    FREE_SHIPPING = "free_shipping"


class SpecialOffer(Base):
    """Business promo code crediting points on use."""

    __tablename__ = "special_offers"
    __table_args__ = (
        UniqueConstraint("business_id", "offer_code", name="uq_special_offers_business_code"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    business_id = Column(
        UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    offer_type = Column(SqlEnum(OfferType, name="special_offer_type"), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=True)
    offer_code = Column(String(64), nullable=False)
    min_purchase_amount = Column(Numeric(12, 2), nullable=True)
    max_redemptions_total = Column(Integer, nullable=True)
    max_redemptions_per_user = Column(Integer, nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    total_redemptions = Column(Integer, nullable=False, default=0, server_default="0")
    reward_points = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    redemptions = relationship("OfferRedemption", back_populates="offer")


class OfferRedemption(Base):
    __tablename__ = "offer_redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("special_offers.id"), nullable=False, index=True)
    offer_code = Column(String(64), nullable=False)
    business_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True)
    status = Column(
        SqlEnum(RedemptionStatus, name="offer_redemption_status"),
        nullable=False,
        default=RedemptionStatus.REDEEMED,
    )
    redeemed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    purchase_amount = Column(Numeric(12, 2), nullable=True)
    order_number = Column(String, nullable=True)
    points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    points_awarded = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    offer = relationship("SpecialOffer", back_populates="redemptions")
