"""Reward catalog reads and business-side management."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.clock import ensure_aware, utcnow
from rewards_api.models.account import Account, AccountTypeEnum
from rewards_api.models.rewards import Reward


EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "points_cost",
        "total_available",
        "unlimited",
        "active",
        "redemption_frequency",
        "validation_type",
        "valid_from",
        "expires_at",
        "valid_until",
        "valid_days",
        "valid_time_start",
        "valid_time_end",
        "min_points_required",
        "min_purchase_amount",
        "level_required",
    }
)


def _check_fields(values: dict[str, Any]) -> None:
    unknown = set(values) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported reward fields: {', '.join(sorted(unknown))}")
    if "points_cost" in values and (values["points_cost"] is None or values["points_cost"] <= 0):
        raise ValueError("Reward points cost must be positive")
    if values.get("total_available") is not None and values["total_available"] < 0:
        raise ValueError("Reward availability cannot be negative")
    for day in values.get("valid_days") or []:
        if int(day) not in range(1, 8):
            raise ValueError("Valid days must be ISO weekdays between 1 and 7")
    for key in ("valid_from", "expires_at", "valid_until"):
        if values.get(key) is not None:
            values[key] = ensure_aware(values[key])


class RewardCatalogReader:
    """Look up and maintain the rewards a business offers."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_reward(self, reward_id: UUID) -> Reward | None:
        return await self._db.get(Reward, reward_id)

    async def list_active_rewards(
        self,
        *,
        business_id: UUID | None = None,
        now: datetime | None = None,
    ) -> list[Reward]:
        """Return redeemable rewards ordered by cost."""

        now = ensure_aware(now or utcnow())
        stmt = (
            select(Reward)
            .where(
                Reward.active.is_(True),
                or_(Reward.expires_at.is_(None), Reward.expires_at >= now),
                or_(Reward.valid_from.is_(None), Reward.valid_from <= now),
                or_(Reward.unlimited.is_(True), Reward.claimed < Reward.total_available),
            )
            .order_by(Reward.points_cost.asc(), Reward.created_at.asc())
        )
        if business_id is not None:
            stmt = stmt.where(Reward.business_id == business_id)
        result = await self._db.execute(stmt)
        rewards = list(result.scalars().all())
        logger.debug("Fetched active rewards", count=len(rewards), business_id=str(business_id) if business_id else None)
        return rewards

    async def list_business_rewards(self, business_id: UUID) -> list[Reward]:
        stmt = select(Reward).where(Reward.business_id == business_id).order_by(Reward.created_at.desc())
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def create_reward(self, business_id: UUID, *, title: str, points_cost: int, **attributes: Any) -> Reward:
        values = {"title": title, "points_cost": points_cost, **attributes}
        _check_fields(values)

        business = await self._db.get(Account, business_id)
        if business is None or business.account_type != AccountTypeEnum.BUSINESS.value:
            raise ValueError("Rewards can only be created by business accounts")

        reward = Reward(business_id=business_id, claimed=0, **values)
        self._db.add(reward)
        await self._db.flush()
        logger.info("Created reward", reward_id=str(reward.id), business_id=str(business_id), points_cost=points_cost)
        return reward

    async def update_reward(self, reward: Reward, **changes: Any) -> Reward:
        """Apply business edits; the claimed counter is never editable."""

        _check_fields(changes)
        for key, value in changes.items():
            setattr(reward, key, value)
        await self._db.flush()
        logger.info("Updated reward", reward_id=str(reward.id), fields=sorted(changes))
        return reward

    async def deactivate_reward(self, reward: Reward) -> Reward:
        if reward.active:
            reward.active = False
            await self._db.flush()
            logger.info("Deactivated reward", reward_id=str(reward.id))
        return reward


__all__ = ["EDITABLE_FIELDS", "RewardCatalogReader"]
