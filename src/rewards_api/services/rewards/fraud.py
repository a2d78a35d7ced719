"""Abuse gates for redemption creation and validation."""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

import httpx
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.clock import ensure_aware, utcnow
from rewards_api.core.settings import Settings, get_settings
from rewards_api.models.account import Account
from rewards_api.models.offers import OfferRedemption
from rewards_api.models.rewards import (
    Redemption,
    RedemptionFrequency,
    RedemptionStatus,
    Reward,
)

from .results import EligibilityRejection, FrequencyDecision, RateLimitDecision, RedeemErrorCode


WEEKDAY_NAMES = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}

FREQUENCY_WINDOWS = {
    RedemptionFrequency.ONCE_PER_DAY: timedelta(days=1),
    RedemptionFrequency.ONCE_PER_WEEK: timedelta(days=7),
}

_FREQUENCY_MESSAGES = {
    RedemptionFrequency.ONCE: "You have already redeemed this reward. It can only be redeemed once per user.",
    RedemptionFrequency.ONCE_PER_DAY: "You can redeem this reward once per day.",
    RedemptionFrequency.ONCE_PER_WEEK: "You can redeem this reward once per week.",
}


class ReachabilityProbe:
    """HEAD a well-known host to decide whether a validator is online."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = http_client

    async def verify_online_connection(self) -> bool:
        if not self._settings.reachability_probe_enabled:
            return True

        url = self._settings.reachability_probe_url
        client = self._client or httpx.AsyncClient(timeout=self._settings.reachability_timeout_seconds)
        owns_client = self._client is None
        try:
            response = await client.head(url)
        except httpx.HTTPError as exc:
            logger.warning("Reachability probe failed", url=url, error=str(exc))
            return False
        finally:
            if owns_client:
                await client.aclose()

        if not response.is_success:
            logger.warning("Reachability probe returned error status", url=url, status_code=response.status_code)
            return False
        return True


class FraudGuard:
    """Eligibility, frequency and rate-limit checks run before any write."""

    def __init__(self, db_session: AsyncSession, *, settings: Settings | None = None) -> None:
        self._db = db_session
        self._settings = settings or get_settings()
        self._zone = ZoneInfo(self._settings.rewards_timezone)

    def evaluate_eligibility(
        self,
        reward: Reward,
        account: Account,
        *,
        now: datetime | None = None,
    ) -> EligibilityRejection | None:
        """Return the first failed check, cheapest first, or ``None``."""

        now = ensure_aware(now or utcnow())

        if not reward.active:
            return EligibilityRejection(RedeemErrorCode.REWARD_INACTIVE, "Reward is no longer active")

        if reward.sold_out:
            return EligibilityRejection(RedeemErrorCode.SOLD_OUT, "Reward is no longer available")

        if reward.expires_at is not None and ensure_aware(reward.expires_at) < now:
            return EligibilityRejection(RedeemErrorCode.REWARD_EXPIRED, "This reward has expired")
        if reward.valid_from is not None and ensure_aware(reward.valid_from) > now:
            return EligibilityRejection(RedeemErrorCode.REWARD_NOT_YET_VALID, "This reward is not available yet")

        local_now = now.astimezone(self._zone)
        valid_days = [int(day) for day in reward.valid_days or []]
        if valid_days and local_now.isoweekday() not in valid_days:
            day_names = ", ".join(WEEKDAY_NAMES[day] for day in sorted(valid_days) if day in WEEKDAY_NAMES)
            return EligibilityRejection(RedeemErrorCode.INVALID_DAY, f"This reward is only valid on: {day_names}")

        if reward.valid_time_start and reward.valid_time_end:
            current = local_now.strftime("%H:%M")
            if not reward.valid_time_start <= current <= reward.valid_time_end:
                return EligibilityRejection(
                    RedeemErrorCode.INVALID_TIME,
                    f"This reward is only valid between {reward.valid_time_start} and {reward.valid_time_end}",
                )

        balance = account.points_balance or 0
        if reward.min_points_required and balance < reward.min_points_required:
            return EligibilityRejection(
                RedeemErrorCode.MIN_BALANCE_NOT_MET,
                f"You need at least {reward.min_points_required} points balance to redeem this reward",
            )

        if reward.level_required and (account.level or 0) < reward.level_required:
            return EligibilityRejection(
                RedeemErrorCode.LEVEL_TOO_LOW,
                f"This reward requires Level {reward.level_required} or higher",
            )

        if balance < reward.points_cost:
            return EligibilityRejection(
                RedeemErrorCode.INSUFFICIENT_POINTS,
                f"You need {reward.points_cost} points but only have {balance}",
            )

        return None

    async def check_frequency(
        self,
        account_id: UUID,
        reward: Reward,
        *,
        now: datetime | None = None,
    ) -> FrequencyDecision:
        """Apply the reward's per-account frequency policy as a sliding window."""

        policy = reward.redemption_frequency or RedemptionFrequency.UNLIMITED
        if policy is RedemptionFrequency.UNLIMITED:
            return FrequencyDecision(allowed=True)

        stmt = (
            select(Redemption.redeemed_at)
            .where(
                Redemption.account_id == account_id,
                Redemption.reward_id == reward.id,
                Redemption.status != RedemptionStatus.CANCELLED,
            )
            .order_by(Redemption.redeemed_at.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        last = result.scalar_one_or_none()
        if last is None:
            return FrequencyDecision(allowed=True)

        last = ensure_aware(last)
        if policy is RedemptionFrequency.ONCE:
            return FrequencyDecision(
                allowed=False,
                message=_FREQUENCY_MESSAGES[policy],
                last_redeemed_at=last,
            )

        window = FREQUENCY_WINDOWS[policy]
        now = ensure_aware(now or utcnow())
        if now - last < window:
            return FrequencyDecision(
                allowed=False,
                message=_FREQUENCY_MESSAGES[policy],
                last_redeemed_at=last,
                next_available_at=last + window,
            )
        return FrequencyDecision(allowed=True, last_redeemed_at=last)

    async def check_reward_rate_limit(
        self,
        account_id: UUID,
        business_id: UUID,
        *,
        now: datetime | None = None,
    ) -> RateLimitDecision:
        since = self._window_start(now)
        stmt = select(func.count(Redemption.id)).where(
            Redemption.account_id == account_id,
            Redemption.business_id == business_id,
            Redemption.status != RedemptionStatus.CANCELLED,
            Redemption.redeemed_at >= since,
        )
        count = int((await self._db.execute(stmt)).scalar_one() or 0)
        return self._decide(count, noun="rewards")

    async def check_offer_rate_limit(
        self,
        account_id: UUID,
        business_id: UUID,
        *,
        now: datetime | None = None,
    ) -> RateLimitDecision:
        since = self._window_start(now)
        stmt = select(func.count(OfferRedemption.id)).where(
            OfferRedemption.account_id == account_id,
            OfferRedemption.business_id == business_id,
            OfferRedemption.status == RedemptionStatus.REDEEMED,
            OfferRedemption.redeemed_at >= since,
        )
        count = int((await self._db.execute(stmt)).scalar_one() or 0)
        return self._decide(count, noun="offers")

    def _window_start(self, now: datetime | None) -> datetime:
        now = ensure_aware(now or utcnow())
        return now - timedelta(days=self._settings.redemption_rate_limit_window_days)

    def _decide(self, count: int, *, noun: str) -> RateLimitDecision:
        limit = self._settings.redemption_rate_limit_max
        days = self._settings.redemption_rate_limit_window_days
        if count >= limit:
            return RateLimitDecision(
                allowed=False,
                count=count,
                limit=limit,
                window_days=days,
                message=f"You have reached the redemption limit ({limit} {noun} per {days} days)",
            )
        return RateLimitDecision(allowed=True, count=count, limit=limit, window_days=days)


__all__ = ["FraudGuard", "ReachabilityProbe", "WEEKDAY_NAMES"]
