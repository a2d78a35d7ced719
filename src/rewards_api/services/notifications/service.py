"""Account notifications persisted in-app and mirrored to push."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.clock import utcnow
from rewards_api.models.account import Account
from rewards_api.models.notification import (
    Notification,
    NotificationChannelEnum,
    NotificationStatusEnum,
)

from .backend import LoggingPushBackend, PushBackend


REWARD_REDEEMED = "REWARD_REDEEMED"
REWARD_CANCELLED = "REWARD_CANCELLED"
POINTS_ACTIVITY = "POINTS_ACTIVITY"


@dataclass(frozen=True)
class NotificationPayload:
    type: str
    title: str
    message: str
    link: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    account_id: UUID
    notification_type: str
    title: str
    channel: NotificationChannelEnum


class NotificationService:
    """Coordinates notification delivery via a pluggable push backend."""

    def __init__(
        self,
        db_session: AsyncSession,
        backend: Optional[PushBackend] = None,
    ) -> None:
        self._db = db_session
        self._backend = backend or LoggingPushBackend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Expose events (useful for tests when using in-memory backend)."""
        return self._events

    async def notify(self, account_id: UUID, payload: NotificationPayload) -> Notification:
        """Persist the notification and push it when the account has a device token.

        Backend failures mark the row failed, are committed, and re-raised.
        """

        push_token = await self._resolve_push_token(account_id)
        notification = Notification(
            account_id=account_id,
            channel=NotificationChannelEnum.PUSH if push_token else NotificationChannelEnum.IN_APP,
            status=NotificationStatusEnum.PENDING,
            notification_type=payload.type,
            title=payload.title,
            message=payload.message,
            link=payload.link,
        )
        self._db.add(notification)
        await self._db.flush()

        if push_token:
            try:
                await self._backend.send_push(
                    push_token,
                    payload.title,
                    payload.message,
                    metadata={"type": payload.type, "link": payload.link or "", **_stringify(payload.metadata)},
                )
            except Exception as exc:
                notification.status = NotificationStatusEnum.FAILED
                notification.error = str(exc)
                await self._db.commit()
                logger.warning(
                    "Push delivery failed",
                    account_id=str(account_id),
                    notification_type=payload.type,
                    error=str(exc),
                )
                raise

        notification.status = NotificationStatusEnum.SENT
        notification.sent_at = utcnow()
        await self._db.commit()
        self._events.append(
            NotificationEvent(
                account_id=account_id,
                notification_type=payload.type,
                title=payload.title,
                channel=notification.channel,
            )
        )
        logger.info("Notification delivered", account_id=str(account_id), notification_type=payload.type)
        return notification

    async def list_notifications(self, account_id: UUID, *, limit: int = 50) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.account_id == account_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def _resolve_push_token(self, account_id: UUID) -> str | None:
        result = await self._db.execute(select(Account.push_token).where(Account.id == account_id))
        return result.scalar_one_or_none()


def _stringify(values: dict[str, Any]) -> dict[str, str]:
    return {key: str(value) for key, value in values.items() if value is not None}
