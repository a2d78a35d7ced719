"""Points ledger persisted alongside account balances."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from rewards_api.db.base import Base


class LedgerDirection(str, Enum):
    """Whether an entry adds to or removes from the balance."""

    CREDIT = "credit"
    DEBIT = "debit"


class PointsLedgerEntry(Base):
    """Append-only record of a balance movement."""

    __tablename__ = "points_ledger_entries"
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "reference_id",
            "direction",
            name="uq_points_ledger_entries_account_reference_direction",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    direction = Column(SqlEnum(LedgerDirection, name="points_ledger_direction"), nullable=False)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    reference_id = Column(String, nullable=False)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
