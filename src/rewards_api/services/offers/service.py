"""Promo-code special offers that credit points on redemption."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rewards_api.core.clock import ensure_aware, utcnow
from rewards_api.core.settings import Settings, get_settings
from rewards_api.models.account import Account, AccountTypeEnum
from rewards_api.models.offers import OfferRedemption, OfferType, SpecialOffer
from rewards_api.models.rewards import RedemptionStatus
from rewards_api.observability.rewards import get_rewards_store
from rewards_api.services.ledger import PointsLedger
from rewards_api.services.notifications import (
    POINTS_ACTIVITY,
    NotificationPayload,
    NotificationService,
    Notifier,
)
from rewards_api.services.rewards.codes import normalize_code
from rewards_api.services.rewards.fraud import FraudGuard
from rewards_api.services.rewards.results import ErrorCategory


class DuplicateOfferCodeError(ValueError):
    def __init__(self, offer_code: str) -> None:
        super().__init__("Offer code already exists. Please use a unique code.")
        self.offer_code = offer_code


class OfferErrorCode(str, Enum):
    OFFER_NOT_FOUND = "OFFER_NOT_FOUND"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    OFFER_NOT_STARTED = "OFFER_NOT_STARTED"
    OFFER_EXPIRED = "OFFER_EXPIRED"
    OFFER_EXHAUSTED = "OFFER_EXHAUSTED"
    PER_USER_LIMIT = "PER_USER_LIMIT"
    RATE_LIMITED = "RATE_LIMITED"
    MIN_PURCHASE_NOT_MET = "MIN_PURCHASE_NOT_MET"
    STORE_ERROR = "STORE_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _OFFER_CATEGORIES.get(self, ErrorCategory.INELIGIBLE_ACCOUNT)


_OFFER_CATEGORIES = {
    OfferErrorCode.OFFER_NOT_FOUND: ErrorCategory.NOT_FOUND,
    OfferErrorCode.ACCOUNT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    OfferErrorCode.OFFER_NOT_STARTED: ErrorCategory.EXPIRED,
    OfferErrorCode.OFFER_EXPIRED: ErrorCategory.EXPIRED,
    OfferErrorCode.OFFER_EXHAUSTED: ErrorCategory.INSUFFICIENT_AVAILABILITY,
    OfferErrorCode.STORE_ERROR: ErrorCategory.TRANSIENT_STORE_ERROR,
}


@dataclass(frozen=True, slots=True)
class OfferRedeemSuccess:
    redemption_id: UUID
    offer_id: UUID
    points_earned: int
    balance_after: int | None

    ok = True


@dataclass(frozen=True, slots=True)
class OfferRedeemFailure:
    code: OfferErrorCode
    message: str

    ok = False

    @property
    def category(self) -> ErrorCategory:
        return self.code.category


@dataclass(frozen=True, slots=True)
class OfferStats:
    total_redemptions: int
    unique_users: int
    total_revenue: Decimal
    average_order_value: Decimal


OfferRedeemResult = OfferRedeemSuccess | OfferRedeemFailure


class OfferService:
    """Create and redeem business promo codes."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        notification_service: Notifier | None = None,
        fraud_guard: FraudGuard | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._db = db_session
        self._settings = settings or get_settings()
        self._notifications = notification_service or NotificationService(db_session)
        self._guard = fraud_guard or FraudGuard(db_session, settings=self._settings)
        self._ledger = PointsLedger(db_session)
        self._metrics = get_rewards_store()

    async def create_offer(
        self,
        business_id: UUID,
        *,
        title: str,
        offer_type: OfferType,
        offer_code: str,
        starts_at: datetime,
        expires_at: datetime,
        reward_points: int = 0,
        description: str | None = None,
        discount_value: Decimal | None = None,
        min_purchase_amount: Decimal | None = None,
        max_redemptions_total: int | None = None,
        max_redemptions_per_user: int | None = None,
    ) -> SpecialOffer:
        code = normalize_code(offer_code)
        if not code:
            raise ValueError("Offer code is required")
        if reward_points < 0:
            raise ValueError("Offer reward points cannot be negative")
        starts_at = ensure_aware(starts_at)
        expires_at = ensure_aware(expires_at)
        if expires_at <= starts_at:
            raise ValueError("Offer must expire after it starts")

        business = await self._db.get(Account, business_id)
        if business is None or business.account_type != AccountTypeEnum.BUSINESS.value:
            raise ValueError("Offers can only be created by business accounts")

        existing = await self._db.execute(
            select(SpecialOffer.id).where(SpecialOffer.business_id == business_id, SpecialOffer.offer_code == code)
        )
        if existing.first() is not None:
            raise DuplicateOfferCodeError(code)

        offer = SpecialOffer(
            id=uuid4(),
            business_id=business_id,
            title=title,
            description=description,
            offer_type=offer_type,
            discount_value=discount_value,
            offer_code=code,
            min_purchase_amount=min_purchase_amount,
            max_redemptions_total=max_redemptions_total,
            max_redemptions_per_user=max_redemptions_per_user,
            starts_at=starts_at,
            expires_at=expires_at,
            is_active=True,
            total_redemptions=0,
            reward_points=reward_points,
        )
        self._db.add(offer)
        await self._db.flush()
        logger.info("Created special offer", offer_id=str(offer.id), business_id=str(business_id), offer_code=code)
        return offer

    async def get_offer(self, offer_id: UUID) -> SpecialOffer | None:
        return await self._db.get(SpecialOffer, offer_id)

    async def get_offer_by_code(self, business_id: UUID, offer_code: str) -> SpecialOffer | None:
        stmt = select(SpecialOffer).where(
            SpecialOffer.business_id == business_id,
            SpecialOffer.offer_code == normalize_code(offer_code),
            SpecialOffer.is_active.is_(True),
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_business_offers(self, business_id: UUID, *, active_only: bool = False) -> list[SpecialOffer]:
        stmt = select(SpecialOffer).where(SpecialOffer.business_id == business_id)
        if active_only:
            stmt = stmt.where(SpecialOffer.is_active.is_(True))
        result = await self._db.execute(stmt.order_by(SpecialOffer.created_at.desc()))
        return list(result.scalars().all())

    async def deactivate_offer(self, offer: SpecialOffer) -> SpecialOffer:
        if offer.is_active:
            offer.is_active = False
            await self._db.flush()
            logger.info("Deactivated special offer", offer_id=str(offer.id))
        return offer

    async def list_account_offer_redemptions(self, account_id: UUID, *, limit: int = 50) -> list[OfferRedemption]:
        """Offer redemption history for one account, newest first."""

        stmt = (
            select(OfferRedemption)
            .options(selectinload(OfferRedemption.offer))
            .where(OfferRedemption.account_id == account_id)
            .order_by(OfferRedemption.redeemed_at.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def redeem_offer(
        self,
        account_id: UUID,
        business_id: UUID,
        offer_code: str,
        purchase_amount: Decimal | None = None,
        order_number: str | None = None,
        *,
        now: datetime | None = None,
    ) -> OfferRedeemResult:
        now = ensure_aware(now or utcnow())

        offer = await self.get_offer_by_code(business_id, offer_code)
        if offer is None:
            return self._fail(OfferErrorCode.OFFER_NOT_FOUND, "Invalid offer code")
        if await self._db.get(Account, account_id) is None:
            return self._fail(OfferErrorCode.ACCOUNT_NOT_FOUND, "Account not found")

        if now < ensure_aware(offer.starts_at):
            return self._fail(OfferErrorCode.OFFER_NOT_STARTED, "This offer is not active yet")
        if now > ensure_aware(offer.expires_at):
            return self._fail(OfferErrorCode.OFFER_EXPIRED, "This offer has expired")

        if offer.max_redemptions_total and (offer.total_redemptions or 0) >= offer.max_redemptions_total:
            return self._fail(OfferErrorCode.OFFER_EXHAUSTED, "This offer has reached its redemption limit")

        if offer.max_redemptions_per_user:
            used = await self._count_account_redemptions(offer.id, account_id)
            if used >= offer.max_redemptions_per_user:
                return self._fail(
                    OfferErrorCode.PER_USER_LIMIT,
                    f"You can only redeem this offer {offer.max_redemptions_per_user} time(s)",
                )

        rate_limit = await self._guard.check_offer_rate_limit(account_id, business_id, now=now)
        if not rate_limit.allowed:
            return self._fail(OfferErrorCode.RATE_LIMITED, rate_limit.message or "Rate limit reached")

        # The minimum applies only when the caller reports a purchase amount.
        if offer.min_purchase_amount is not None and purchase_amount is not None:
            required = Decimal(offer.min_purchase_amount)
            if Decimal(purchase_amount) < required:
                return self._fail(
                    OfferErrorCode.MIN_PURCHASE_NOT_MET,
                    f"Minimum purchase amount of ${required:.2f} required",
                )

        points = int(offer.reward_points or 0)
        balance_after: int | None = None
        try:
            redemption = OfferRedemption(
                id=uuid4(),
                offer_id=offer.id,
                offer_code=offer.offer_code,
                business_id=business_id,
                account_id=account_id,
                status=RedemptionStatus.REDEEMED,
                redeemed_at=now,
                purchase_amount=purchase_amount,
                order_number=order_number,
                points_earned=points,
                points_awarded=False,
            )
            self._db.add(redemption)
            await self._db.flush()

            await self._db.execute(
                update(SpecialOffer)
                .where(SpecialOffer.id == offer.id)
                .values(total_redemptions=SpecialOffer.total_redemptions + 1)
                .execution_options(synchronize_session="fetch")
            )

            if points > 0:
                entry = await self._ledger.credit(
                    account_id,
                    points,
                    "offer_redemption",
                    str(redemption.id),
                    metadata={"offer_id": str(offer.id), "offer_code": offer.offer_code},
                )
                balance_after = entry.balance_after
            redemption.points_awarded = True
            await self._db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to persist offer redemption", offer_id=str(offer.id), account_id=str(account_id))
            await self._db.rollback()
            return self._fail(OfferErrorCode.STORE_ERROR, "Unable to redeem this offer right now. Please try again.")

        logger.info(
            "Redeemed special offer",
            offer_id=str(offer.id),
            redemption_id=str(redemption.id),
            account_id=str(account_id),
            points=points,
        )
        self._metrics.record_offer_redemption("redeemed")

        success = OfferRedeemSuccess(
            redemption_id=redemption.id,
            offer_id=offer.id,
            points_earned=points,
            balance_after=balance_after,
        )
        try:
            await self._notifications.notify(
                account_id,
                NotificationPayload(
                    type=POINTS_ACTIVITY,
                    title="Offer Redeemed!",
                    message=f'You\'ve earned {points} points by redeeming "{offer.title}"!',
                    link="/wallet",
                    metadata={"offer_id": str(offer.id)},
                ),
            )
        except Exception:
            logger.exception("Failed to deliver offer notification", account_id=str(account_id))
            await self._db.rollback()
        return success

    async def offer_stats(self, offer_id: UUID) -> OfferStats:
        stmt = select(
            func.count(OfferRedemption.id),
            func.count(func.distinct(OfferRedemption.account_id)),
            func.coalesce(func.sum(OfferRedemption.purchase_amount), 0),
        ).where(
            OfferRedemption.offer_id == offer_id,
            OfferRedemption.status == RedemptionStatus.REDEEMED,
        )
        total, unique_users, revenue = (await self._db.execute(stmt)).one()
        total = int(total or 0)
        revenue = Decimal(str(revenue or 0))
        average = (revenue / total).quantize(Decimal("0.01")) if total else Decimal("0")
        return OfferStats(
            total_redemptions=total,
            unique_users=int(unique_users or 0),
            total_revenue=revenue,
            average_order_value=average,
        )

    async def _count_account_redemptions(self, offer_id: UUID, account_id: UUID) -> int:
        stmt = select(func.count(OfferRedemption.id)).where(
            OfferRedemption.offer_id == offer_id,
            OfferRedemption.account_id == account_id,
            OfferRedemption.status == RedemptionStatus.REDEEMED,
        )
        return int((await self._db.execute(stmt)).scalar_one() or 0)

    def _fail(self, code: OfferErrorCode, message: str) -> OfferRedeemFailure:
        logger.info("Rejected offer redemption", error=code.value, reason=message)
        self._metrics.record_offer_redemption(code.value)
        return OfferRedeemFailure(code=code, message=message)


__all__ = [
    "DuplicateOfferCodeError",
    "OfferErrorCode",
    "OfferRedeemFailure",
    "OfferRedeemSuccess",
    "OfferService",
    "OfferStats",
]
