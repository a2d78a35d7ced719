"""Reward redemption creation, cancellation and expiry."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.clock import ensure_aware, utcnow
from rewards_api.core.settings import Settings, get_settings
from rewards_api.models.account import Account
from rewards_api.models.rewards import (
    Redemption,
    RedemptionStatus,
    Reward,
    RewardValidationType,
)
from rewards_api.observability.rewards import get_rewards_store
from rewards_api.services.ledger import InsufficientBalanceError, PointsLedger
from rewards_api.services.notifications import (
    REWARD_CANCELLED,
    REWARD_REDEEMED,
    NotificationPayload,
    NotificationService,
    Notifier,
)

from .catalog import RewardCatalogReader
from .codes import (
    generate_alphanumeric_code,
    generate_qr_code,
    generate_validation_token,
    qr_image_url,
)
from .fraud import FraudGuard
from .results import (
    CancelErrorCode,
    CancelFailure,
    CancelResult,
    CancelSuccess,
    RedeemErrorCode,
    RedeemFailure,
    RedeemResult,
    RedeemSuccess,
)


MSG_STORE_ERROR = "Unable to redeem this reward right now. Please try again."


class RedemptionService:
    """Turn points into one-time reward codes.

    ``redeem`` runs every fraud and eligibility gate before writing anything.
    The redemption row, the ``claimed`` increment and both ledger movements are
    then committed together; notifications go out after the commit and can
    never undo it.
    """

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
        self._catalog = RewardCatalogReader(db_session)
        self._ledger = PointsLedger(db_session)
        self._metrics = get_rewards_store()

    async def redeem(
        self,
        account_id: UUID,
        reward_id: UUID,
        *,
        now: datetime | None = None,
    ) -> RedeemResult:
        now = ensure_aware(now or utcnow())

        reward = await self._catalog.get_reward(reward_id)
        if reward is None:
            return self._fail(RedeemFailure(RedeemErrorCode.REWARD_NOT_FOUND, "Reward not found"))
        account = await self._db.get(Account, account_id)
        if account is None:
            return self._fail(RedeemFailure(RedeemErrorCode.ACCOUNT_NOT_FOUND, "Account not found"))

        rejection = self._guard.evaluate_eligibility(reward, account, now=now)
        if rejection is not None:
            return self._fail(RedeemFailure.from_rejection(rejection))

        frequency = await self._guard.check_frequency(account_id, reward, now=now)
        if not frequency.allowed:
            return self._fail(
                RedeemFailure(
                    RedeemErrorCode.FREQUENCY_LIMIT,
                    frequency.message or "Redemption frequency limit reached",
                    next_available_at=frequency.next_available_at,
                )
            )

        rate_limit = await self._guard.check_reward_rate_limit(account_id, reward.business_id, now=now)
        if not rate_limit.allowed:
            return self._fail(RedeemFailure(RedeemErrorCode.RATE_LIMITED, rate_limit.message or "Rate limit reached"))

        business = await self._db.get(Account, reward.business_id)
        redemption_id = uuid4()
        qr_code: str | None = None
        alphanumeric_code: str | None = None
        if reward.validation_type == RewardValidationType.ONLINE:
            alphanumeric_code = generate_alphanumeric_code(redemption_id, now=now)
        else:
            qr_code = generate_qr_code(redemption_id, account_id, reward.business_id, now=now)
        code = qr_code or alphanumeric_code
        cost = int(reward.points_cost)
        ledger_metadata = {"reward_id": str(reward.id), "reward_title": reward.title}

        try:
            redemption = Redemption(
                id=redemption_id,
                account_id=account_id,
                reward_id=reward.id,
                business_id=reward.business_id,
                reward_snapshot=self._snapshot(reward, business),
                points_spent=cost,
                redeemed_at=now,
                status=RedemptionStatus.PENDING,
                qr_code=qr_code,
                alphanumeric_code=alphanumeric_code,
                validation_token=generate_validation_token(redemption_id, code, now=now),
                validated=False,
                expires_at=ensure_aware(reward.valid_until) if reward.valid_until else None,
            )
            self._db.add(redemption)
            await self._db.flush()

            if not reward.unlimited:
                await self._db.execute(
                    update(Reward)
                    .where(Reward.id == reward.id)
                    .values(claimed=Reward.claimed + 1)
                    .execution_options(synchronize_session="fetch")
                )

            debit = await self._ledger.debit(
                account_id, cost, "reward_redemption", str(redemption_id), metadata=ledger_metadata
            )
            await self._ledger.credit(
                reward.business_id,
                cost,
                "reward_redemption_received",
                str(redemption_id),
                metadata={**ledger_metadata, "customer_id": str(account_id)},
            )
            await self._db.commit()
        except InsufficientBalanceError as exc:
            await self._db.rollback()
            return self._fail(
                RedeemFailure(
                    RedeemErrorCode.INSUFFICIENT_POINTS,
                    f"You need {cost} points but only have {exc.available}",
                )
            )
        except SQLAlchemyError:
            logger.exception("Failed to persist reward redemption", reward_id=str(reward_id), account_id=str(account_id))
            await self._db.rollback()
            return self._fail(RedeemFailure(RedeemErrorCode.STORE_ERROR, MSG_STORE_ERROR))

        logger.info(
            "Created reward redemption",
            redemption_id=str(redemption_id),
            reward_id=str(reward_id),
            account_id=str(account_id),
            points=cost,
            validation_type=reward.validation_type.value,
        )
        self._metrics.record_redemption("redeemed")

        success = RedeemSuccess(
            redemption_id=redemption_id,
            code=code,
            validation_type=reward.validation_type,
            points_spent=cost,
            balance_after=debit.balance_after,
            expires_at=redemption.expires_at,
            qr_image_url=qr_image_url(qr_code, settings=self._settings) if qr_code else None,
        )
        await self._notify_redeemed(redemption, account, business)
        return success

    async def cancel_redemption(
        self,
        redemption_id: UUID,
        actor_account_id: UUID,
        reason: str | None = None,
        *,
        now: datetime | None = None,
    ) -> CancelResult:
        """Cancel an unvalidated redemption, refunding the customer.

        Only the redeeming account or the owning business may cancel. The
        business credit is reversed under a ``cancel:{id}`` ledger reference.
        """

        now = ensure_aware(now or utcnow())
        redemption = await self._db.get(Redemption, redemption_id)
        if redemption is None:
            return CancelFailure(CancelErrorCode.REDEMPTION_NOT_FOUND, "Redemption not found")
        if actor_account_id not in (redemption.account_id, redemption.business_id):
            return CancelFailure(CancelErrorCode.NOT_PERMITTED, "You are not allowed to cancel this redemption")
        if redemption.validated:
            return CancelFailure(
                CancelErrorCode.ALREADY_VALIDATED,
                "This redemption was already used and can no longer be cancelled",
            )

        ref_id = f"cancel:{redemption_id}"
        points = int(redemption.points_spent or 0)
        try:
            outcome = await self._db.execute(
                update(Redemption)
                .where(
                    Redemption.id == redemption_id,
                    Redemption.validated.is_(False),
                    Redemption.status == RedemptionStatus.PENDING,
                )
                .values(
                    status=RedemptionStatus.CANCELLED,
                    cancelled_at=now,
                    cancellation_reason=reason,
                    updated_at=now,
                )
                .execution_options(synchronize_session="fetch")
            )
            if outcome.rowcount != 1:
                await self._db.rollback()
                return CancelFailure(
                    CancelErrorCode.NOT_CANCELLABLE,
                    "Only pending redemptions can be cancelled",
                )

            reward = await self._db.get(Reward, redemption.reward_id)
            if reward is not None and not reward.unlimited:
                await self._db.execute(
                    update(Reward)
                    .where(Reward.id == reward.id, Reward.claimed > 0)
                    .values(claimed=Reward.claimed - 1)
                    .execution_options(synchronize_session="fetch")
                )

            if points > 0:
                metadata = {"redemption_id": str(redemption_id), "reason": reason}
                await self._ledger.debit(
                    redemption.business_id, points, "reward_cancellation_reversal", ref_id, metadata=metadata
                )
                await self._ledger.credit(
                    redemption.account_id, points, "reward_cancellation_refund", ref_id, metadata=metadata
                )
            await self._db.commit()
        except InsufficientBalanceError:
            await self._db.rollback()
            logger.warning("Business balance too low to reverse redemption", redemption_id=str(redemption_id))
            return CancelFailure(
                CancelErrorCode.NOT_CANCELLABLE,
                "The business can no longer reverse the points for this redemption",
            )
        except SQLAlchemyError:
            logger.exception("Failed to cancel redemption", redemption_id=str(redemption_id))
            await self._db.rollback()
            return CancelFailure(CancelErrorCode.STORE_ERROR, "Unable to cancel this redemption right now. Please try again.")

        logger.info(
            "Cancelled reward redemption",
            redemption_id=str(redemption_id),
            actor_account_id=str(actor_account_id),
            reason=reason,
        )
        self._metrics.record_redemption("cancelled")

        title = (redemption.reward_snapshot or {}).get("title", "your reward")
        await self._safe_notify(
            redemption.account_id,
            NotificationPayload(
                type=REWARD_CANCELLED,
                title="Redemption Cancelled",
                message=f"Your redemption of {title} was cancelled and {points} points were refunded.",
                link=f"/rewards/redemptions/{redemption_id}",
            ),
        )
        return CancelSuccess(redemption_id=redemption_id, refunded_points=points, cancelled_at=now)

    async def expire_redemptions(self, *, now: datetime | None = None) -> int:
        """Mark unvalidated pending redemptions past their expiry as expired."""

        now = ensure_aware(now or utcnow())
        outcome = await self._db.execute(
            update(Redemption)
            .where(
                Redemption.validated.is_(False),
                Redemption.status == RedemptionStatus.PENDING,
                Redemption.expires_at.is_not(None),
                Redemption.expires_at < now,
            )
            .values(status=RedemptionStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        expired = int(outcome.rowcount or 0)
        if expired:
            logger.info("Expired stale reward redemptions", count=expired)
        return expired

    async def get_redemption(self, redemption_id: UUID) -> Redemption | None:
        return await self._db.get(Redemption, redemption_id)

    async def list_account_redemptions(self, account_id: UUID, *, limit: int = 50) -> list[Redemption]:
        stmt = (
            select(Redemption)
            .where(Redemption.account_id == account_id)
            .order_by(Redemption.redeemed_at.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def list_business_redemptions(
        self,
        business_id: UUID,
        *,
        status: RedemptionStatus | None = None,
        limit: int = 100,
    ) -> list[Redemption]:
        stmt = select(Redemption).where(Redemption.business_id == business_id)
        if status is not None:
            stmt = stmt.where(Redemption.status == status)
        stmt = stmt.order_by(Redemption.redeemed_at.desc()).limit(limit)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _snapshot(reward: Reward, business: Account | None) -> dict[str, Any]:
        return {
            "title": reward.title,
            "description": reward.description,
            "category": reward.category,
            "points_cost": reward.points_cost,
            "validation_type": reward.validation_type.value,
            "business_id": str(reward.business_id),
            "business_name": business.label if business else None,
        }

    async def _notify_redeemed(self, redemption: Redemption, account: Account, business: Account | None) -> None:
        # Payloads are built up front; a failed delivery rolls back and expires loaded rows.
        snapshot = redemption.reward_snapshot or {}
        title = snapshot.get("title", "a reward")
        business_name = snapshot.get("business_name") or "the business"
        link = f"/rewards/redemptions/{redemption.id}"
        metadata = {"redemption_id": str(redemption.id)}
        deliveries = [
            (
                redemption.account_id,
                NotificationPayload(
                    type=REWARD_REDEEMED,
                    title="Reward Redeemed!",
                    message=(
                        f"You redeemed {title} for {redemption.points_spent} points. "
                        f"Show your code at {business_name}."
                    ),
                    link=link,
                    metadata=metadata,
                ),
            )
        ]
        if business is not None:
            deliveries.append(
                (
                    business.id,
                    NotificationPayload(
                        type=REWARD_REDEEMED,
                        title="Reward Redeemed",
                        message=f"{account.label} redeemed {title} (+{redemption.points_spent} points).",
                        link=link,
                        metadata=metadata,
                    ),
                )
            )
        for recipient_id, payload in deliveries:
            await self._safe_notify(recipient_id, payload)

    async def _safe_notify(self, account_id: UUID, payload: NotificationPayload) -> None:
        try:
            await self._notifications.notify(account_id, payload)
        except Exception:
            logger.exception("Failed to deliver redemption notification", account_id=str(account_id), type=payload.type)
            await self._db.rollback()

    def _fail(self, failure: RedeemFailure) -> RedeemFailure:
        logger.info("Rejected reward redemption", error=failure.code.value, reason=failure.message)
        self._metrics.record_redemption(failure.code.value)
        return failure


__all__ = ["RedemptionService"]
