from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from rewards_api.db.base import Base


class AccountTypeEnum(str, Enum):
    CUSTOMER = "customer"
    BUSINESS = "business"


class Account(Base):
    """Customer or business account holding a spendable points balance."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="ck_accounts_points_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=True, unique=True, index=True)
    display_name = Column(String, nullable=True)
    account_type = Column(
        String(length=16),
        nullable=False,
        default=AccountTypeEnum.CUSTOMER.value,
        server_default=AccountTypeEnum.CUSTOMER.value,
    )
    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    level = Column(Integer, nullable=False, default=1, server_default="1")
    push_token = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def label(self) -> str:
        return self.display_name or self.email or str(self.id)
