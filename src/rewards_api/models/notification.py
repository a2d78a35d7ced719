from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from rewards_api.db.base import Base


class NotificationStatusEnum(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationChannelEnum(str, Enum):
    IN_APP = "in_app"
    PUSH = "push"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    channel = Column(
        SqlEnum(NotificationChannelEnum, name="notification_channel_enum"),
        nullable=False,
        default=NotificationChannelEnum.IN_APP,
    )
    status = Column(
        SqlEnum(NotificationStatusEnum, name="notification_status_enum"),
        nullable=False,
        default=NotificationStatusEnum.PENDING,
    )
    notification_type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    link = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
