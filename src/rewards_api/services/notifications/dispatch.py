"""Fire-and-forget notification delivery on dedicated sessions."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .backend import PushBackend
from .service import NotificationPayload, NotificationService


class Notifier(Protocol):
    async def notify(self, account_id: UUID, payload: NotificationPayload) -> Any:
        ...


_pending: set[asyncio.Task] = set()


class DetachedNotifier:
    """Deliver notifications from a background task so request handlers never wait on push I/O.

    Each delivery opens its own session; the caller's transaction is already
    committed and its session may be closed by the time the task runs. With
    ``detach=False`` the delivery is awaited in place, still on its own session.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        backend: Optional[PushBackend] = None,
        *,
        detach: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._backend = backend
        self._detach = detach

    async def notify(self, account_id: UUID, payload: NotificationPayload) -> None:
        if not self._detach:
            await self._deliver(account_id, payload)
            return

        task = asyncio.get_running_loop().create_task(self._deliver(account_id, payload))
        _pending.add(task)
        task.add_done_callback(_pending.discard)

    async def _deliver(self, account_id: UUID, payload: NotificationPayload) -> None:
        async with self._session_factory() as session:
            service = NotificationService(session, backend=self._backend)
            try:
                await service.notify(account_id, payload)
            except Exception:
                logger.exception(
                    "Detached notification delivery failed",
                    account_id=str(account_id),
                    notification_type=payload.type,
                )


def pending_notification_count() -> int:
    return len(_pending)


async def wait_for_pending_notifications(timeout: float | None = None) -> None:
    """Block until in-flight deliveries finish; used on shutdown and in tests."""

    if not _pending:
        return
    _, still_running = await asyncio.wait(set(_pending), timeout=timeout)
    if still_running:
        logger.warning("Notification deliveries still running at shutdown", pending=len(still_running))


__all__ = ["DetachedNotifier", "Notifier", "pending_notification_count", "wait_for_pending_notifications"]
