"""Recurring sweep that expires stale reward redemptions."""

from __future__ import annotations

import inspect
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.services.rewards import RedemptionService

SessionFactory = Callable[[], AsyncSession]

JOB_ID = "reward-redemption-expiry"


async def run_expiry_sweep(*, session_factory: SessionFactory) -> int:
    """Expire unvalidated redemptions once and return how many changed."""

    async with session_factory() as session:
        service = RedemptionService(session)
        return await service.expire_redemptions()


class RedemptionExpiryScheduler:
    """Run the redemption expiry sweep on a fixed interval."""

    def __init__(self, *, session_factory: SessionFactory, interval_seconds: int) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Redemption expiry scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Redemption expiry scheduler stopped")

    async def _run(self) -> int:
        try:
            expired = await run_expiry_sweep(session_factory=self._session_factory)
        except SQLAlchemyError:
            logger.exception("Redemption expiry sweep failed")
            return 0
        logger.info("Redemption expiry sweep completed", expired=expired)
        return expired


__all__ = ["RedemptionExpiryScheduler", "run_expiry_sweep"]
