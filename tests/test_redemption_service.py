import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
from sqlalchemy import func, select

from rewards_api.core.settings import Settings
from rewards_api.models.account import Account
from rewards_api.models.ledger import LedgerDirection, PointsLedgerEntry
from rewards_api.models.notification import Notification, NotificationStatusEnum
from rewards_api.models.rewards import (
    Redemption,
    RedemptionFrequency,
    RedemptionStatus,
    Reward,
    RewardValidationType,
)
from rewards_api.observability.rewards import get_rewards_store
from rewards_api.services.notifications import (
    DetachedNotifier,
    InMemoryPushBackend,
    NotificationService,
    REWARD_REDEEMED,
    pending_notification_count,
    wait_for_pending_notifications,
)
from rewards_api.services.rewards import (
    CancelErrorCode,
    CancelFailure,
    CancelSuccess,
    ErrorCategory,
    RedeemErrorCode,
    RedeemFailure,
    RedeemSuccess,
    RedemptionService,
    ValidationEngine,
    ValidationErrorCode,
    ValidationSuccess,
)
from rewards_api.services.rewards.codes import CodeType, detect_code_type


NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


async def _balances(session, *accounts: Account) -> list[int]:
    values = []
    for account in accounts:
        await session.refresh(account)
        values.append(account.points_balance)
    return values


@pytest.mark.asyncio
async def test_redeem_moves_points_and_issues_qr_code(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True, points=0)
        customer = await make_account(session, points=250)
        reward = await make_reward(session, business, points_cost=100, valid_until=NOW + timedelta(days=14))
        await session.commit()

        service = RedemptionService(session)
        result = await service.redeem(customer.id, reward.id, now=NOW)

        assert isinstance(result, RedeemSuccess)
        assert detect_code_type(result.code) is CodeType.QR
        assert result.validation_type is RewardValidationType.PHYSICAL
        assert result.points_spent == 100
        assert result.balance_after == 150
        assert result.expires_at == NOW + timedelta(days=14)
        assert result.qr_image_url is not None and "data=" in result.qr_image_url

        customer_balance, business_balance = await _balances(session, customer, business)
        assert customer_balance == 150
        assert business_balance == 100
        await session.refresh(reward)
        assert reward.claimed == 1

        redemption = await service.get_redemption(result.redemption_id)
        assert redemption.status == RedemptionStatus.PENDING
        assert redemption.validated is False
        assert redemption.reward_snapshot["title"] == "Free coffee"
        assert redemption.reward_snapshot["business_name"] == "Corner Cafe"

        entries = (
            await session.execute(
                select(PointsLedgerEntry).where(PointsLedgerEntry.reference_id == str(result.redemption_id))
            )
        ).scalars().all()
        assert {(entry.account_id, entry.direction) for entry in entries} == {
            (customer.id, LedgerDirection.DEBIT),
            (business.id, LedgerDirection.CREDIT),
        }


@pytest.mark.asyncio
async def test_online_reward_issues_alphanumeric_code(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=100)
        reward = await make_reward(session, business, validation_type=RewardValidationType.ONLINE)
        await session.commit()

        result = await RedemptionService(session).redeem(customer.id, reward.id, now=NOW)

        assert detect_code_type(result.code) is CodeType.ALPHANUMERIC
        assert result.qr_image_url is None


@pytest.mark.asyncio
async def test_points_are_conserved_across_redemptions(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True, points=40)
        first = await make_account(session, points=300)
        second = await make_account(session, points=120)
        reward = await make_reward(session, business, points_cost=60, unlimited=True)
        await session.commit()
        total_before = sum(await _balances(session, business, first, second))

        service = RedemptionService(session)
        for offset, account in enumerate([first, second, first, second]):
            await service.redeem(account.id, reward.id, now=NOW + timedelta(minutes=offset))

        assert sum(await _balances(session, business, first, second)) == total_before
        await session.refresh(reward)
        assert reward.claimed == 0


@pytest.mark.asyncio
async def test_failed_redemption_leaves_state_untouched(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=50)
        reward = await make_reward(session, business, points_cost=100)
        await session.commit()

        result = await RedemptionService(session).redeem(customer.id, reward.id, now=NOW)

        assert isinstance(result, RedeemFailure)
        assert result.code is RedeemErrorCode.INSUFFICIENT_POINTS
        assert result.category is ErrorCategory.INELIGIBLE_ACCOUNT
        assert result.message == "You need 100 points but only have 50"
        assert await _balances(session, customer, business) == [50, 0]
        await session.refresh(reward)
        assert reward.claimed == 0
        count = (await session.execute(select(func.count(Redemption.id)))).scalar_one()
        assert count == 0
        assert get_rewards_store().snapshot().redemptions == {"INSUFFICIENT_POINTS": 1}


@pytest.mark.asyncio
async def test_last_unit_sells_out(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        first = await make_account(session, points=500)
        second = await make_account(session, points=500)
        reward = await make_reward(session, business, total_available=1)
        await session.commit()

        service = RedemptionService(session)
        assert isinstance(await service.redeem(first.id, reward.id, now=NOW), RedeemSuccess)

        result = await service.redeem(second.id, reward.id, now=NOW)
        assert result.code is RedeemErrorCode.SOLD_OUT
        assert result.category is ErrorCategory.INSUFFICIENT_AVAILABILITY


@pytest.mark.asyncio
async def test_missing_reward_and_account(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=500)
        reward = await make_reward(session, business)
        await session.commit()

        service = RedemptionService(session)
        missing_reward = await service.redeem(customer.id, business.id, now=NOW)
        assert missing_reward.code is RedeemErrorCode.REWARD_NOT_FOUND
        assert missing_reward.category is ErrorCategory.NOT_FOUND

        missing_account = await service.redeem(UUID(int=1), reward.id, now=NOW)
        assert missing_account.code is RedeemErrorCode.ACCOUNT_NOT_FOUND


@pytest.mark.asyncio
async def test_frequency_and_rate_limits_are_enforced(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=1000)
        daily = await make_reward(
            session, business, points_cost=10, redemption_frequency=RedemptionFrequency.ONCE_PER_DAY
        )
        other = await make_reward(session, business, title="Muffin", points_cost=10)
        await session.commit()

        service = RedemptionService(session, settings=Settings(redemption_rate_limit_max=2))
        assert (await service.redeem(customer.id, daily.id, now=NOW)).ok

        blocked = await service.redeem(customer.id, daily.id, now=NOW + timedelta(hours=23, minutes=59))
        assert blocked.code is RedeemErrorCode.FREQUENCY_LIMIT
        assert blocked.next_available_at == NOW + timedelta(days=1)

        assert (await service.redeem(customer.id, other.id, now=NOW + timedelta(hours=1))).ok

        limited = await service.redeem(customer.id, daily.id, now=NOW + timedelta(hours=24, minutes=1))
        assert limited.code is RedeemErrorCode.RATE_LIMITED
        assert limited.message == "You have reached the redemption limit (2 rewards per 30 days)"


@pytest.mark.asyncio
async def test_notifications_reach_customer_and_business(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True, push_token="biz-device")
        customer = await make_account(session, points=200, name="Dana")
        reward = await make_reward(session, business)
        await session.commit()

        backend = InMemoryPushBackend()
        notifications = NotificationService(session, backend=backend)
        result = await RedemptionService(session, notification_service=notifications).redeem(
            customer.id, reward.id, now=NOW
        )
        assert result.ok

        assert [(event.account_id, event.notification_type) for event in notifications.sent_events] == [
            (customer.id, REWARD_REDEEMED),
            (business.id, REWARD_REDEEMED),
        ]
        assert len(backend.sent_messages) == 1
        assert backend.sent_messages[0]["recipient"] == "biz-device"
        assert "Dana redeemed Free coffee" in backend.sent_messages[0]["body"]


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_redemption(session_factory, make_account, make_reward) -> None:
    class FailingBackend:
        async def send_push(self, recipient, title, body, *, metadata=None):
            raise RuntimeError("push gateway down")

    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=200, push_token="member-device")
        reward = await make_reward(session, business)
        await session.commit()

        notifications = NotificationService(session, backend=FailingBackend())
        result = await RedemptionService(session, notification_service=notifications).redeem(
            customer.id, reward.id, now=NOW
        )

        assert isinstance(result, RedeemSuccess)
        assert await _balances(session, customer) == [100]
        failed = (await session.execute(select(Notification).where(Notification.account_id == customer.id))).scalars()
        assert [row.error for row in failed] == ["push gateway down"]


@pytest.mark.asyncio
async def test_redeem_then_validate_end_to_end(session_factory, make_account, make_reward, probe) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=300)
        reward = await make_reward(session, business, points_cost=120, total_available=5)
        await session.commit()

        redeemed = await RedemptionService(session).redeem(customer.id, reward.id, now=NOW)
        assert redeemed.ok

    engine = ValidationEngine(session_factory, probe=probe)
    first = await engine.validate(redeemed.code, business.id, "staff-1", now=NOW + timedelta(minutes=10))
    second = await engine.validate(redeemed.code, business.id, "staff-2", now=NOW + timedelta(minutes=11))

    assert isinstance(first, ValidationSuccess)
    assert second.code is ValidationErrorCode.ALREADY_VALIDATED

    async with session_factory() as session:
        stored_customer = await session.get(Account, customer.id)
        stored_business = await session.get(Account, business.id)
        stored_reward = await session.get(Reward, reward.id)
        assert stored_customer.points_balance == 180
        assert stored_business.points_balance == 120
        assert stored_reward.claimed == 1


@pytest.mark.asyncio
async def test_cancel_refunds_and_releases_stock(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=300)
        reward = await make_reward(session, business, points_cost=100, total_available=1)
        await session.commit()

        service = RedemptionService(session)
        redeemed = await service.redeem(customer.id, reward.id, now=NOW)

        result = await service.cancel_redemption(redeemed.redemption_id, customer.id, "Changed my mind", now=NOW)

        assert isinstance(result, CancelSuccess)
        assert result.refunded_points == 100
        assert await _balances(session, customer, business) == [300, 0]
        await session.refresh(reward)
        assert reward.claimed == 0

        redemption = await service.get_redemption(redeemed.redemption_id)
        await session.refresh(redemption)
        assert redemption.status == RedemptionStatus.CANCELLED
        assert redemption.cancellation_reason == "Changed my mind"

        refund = (
            await session.execute(
                select(PointsLedgerEntry).where(
                    PointsLedgerEntry.reference_id == f"cancel:{redeemed.redemption_id}",
                    PointsLedgerEntry.account_id == customer.id,
                )
            )
        ).scalar_one()
        assert refund.direction == LedgerDirection.CREDIT

        repeat = await service.cancel_redemption(redeemed.redemption_id, customer.id, now=NOW)
        assert isinstance(repeat, CancelFailure)
        assert repeat.code is CancelErrorCode.NOT_CANCELLABLE


@pytest.mark.asyncio
async def test_cancel_rules(session_factory, make_account, make_reward, probe) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=300)
        stranger = await make_account(session, points=0)
        reward = await make_reward(session, business, points_cost=100)
        await session.commit()

        service = RedemptionService(session)
        redeemed = await service.redeem(customer.id, reward.id, now=NOW)

        denied = await service.cancel_redemption(redeemed.redemption_id, stranger.id, now=NOW)
        assert denied.code is CancelErrorCode.NOT_PERMITTED

        missing = await service.cancel_redemption(stranger.id, customer.id, now=NOW)
        assert missing.code is CancelErrorCode.REDEMPTION_NOT_FOUND

    engine = ValidationEngine(session_factory, probe=probe)
    assert (await engine.validate(redeemed.code, business.id, "staff", now=NOW)).ok

    async with session_factory() as session:
        used = await RedemptionService(session).cancel_redemption(redeemed.redemption_id, business.id, now=NOW)
        assert used.code is CancelErrorCode.ALREADY_VALIDATED


@pytest.mark.asyncio
async def test_expire_redemptions_marks_stale_codes(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=500)
        short = await make_reward(session, business, valid_until=NOW + timedelta(days=1))
        lasting = await make_reward(session, business, title="Muffin", valid_until=NOW + timedelta(days=30))
        await session.commit()

        service = RedemptionService(session)
        stale = await service.redeem(customer.id, short.id, now=NOW)
        fresh = await service.redeem(customer.id, lasting.id, now=NOW)

        expired = await service.expire_redemptions(now=NOW + timedelta(days=2))
        assert expired == 1

        stale_row = await service.get_redemption(stale.redemption_id)
        fresh_row = await service.get_redemption(fresh.redemption_id)
        await session.refresh(stale_row)
        await session.refresh(fresh_row)
        assert stale_row.status == RedemptionStatus.EXPIRED
        assert fresh_row.status == RedemptionStatus.PENDING

        expired_list = await service.list_business_redemptions(business.id, status=RedemptionStatus.EXPIRED)
        assert [row.id for row in expired_list] == [stale.redemption_id]
        assert len(await service.list_account_redemptions(customer.id)) == 2


@pytest.mark.asyncio
async def test_failed_notification_flush_does_not_block_the_next_one(session_factory, make_account, make_reward) -> None:
    class FlushFailsOnce:
        def __init__(self, session) -> None:
            self._session = session
            self._delegate = NotificationService(session)
            self.attempts = 0

        async def notify(self, account_id, payload):
            self.attempts += 1
            if self.attempts == 1:
                self._session.add(Notification(account_id=account_id, notification_type=payload.type, title=None))
                await self._session.flush()
            return await self._delegate.notify(account_id, payload)

    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=200)
        reward = await make_reward(session, business)
        await session.commit()
        business_id, customer_id, reward_id = business.id, customer.id, reward.id

        notifier = FlushFailsOnce(session)
        result = await RedemptionService(session, notification_service=notifier).redeem(
            customer_id, reward_id, now=NOW
        )

        assert isinstance(result, RedeemSuccess)
        assert result.balance_after == 100
        assert notifier.attempts == 2
        rows = (await session.execute(select(Notification))).scalars().all()
        assert [(row.account_id, row.status) for row in rows] == [(business_id, NotificationStatusEnum.SENT)]


@pytest.mark.asyncio
async def test_detached_notifications_do_not_hold_up_redeem(file_session_factory, make_account, make_reward) -> None:
    class GatedBackend:
        def __init__(self) -> None:
            self.release = asyncio.Event()
            self.recipients: list[str] = []

        async def send_push(self, recipient, title, body, *, metadata=None):
            await self.release.wait()
            self.recipients.append(recipient)

    async with file_session_factory() as session:
        business = await make_account(session, business=True, push_token="biz-device")
        customer = await make_account(session, points=200, push_token="member-device")
        reward = await make_reward(session, business)
        await session.commit()
        customer_id, reward_id = customer.id, reward.id

    backend = GatedBackend()
    notifier = DetachedNotifier(file_session_factory, backend)
    async with file_session_factory() as session:
        result = await RedemptionService(session, notification_service=notifier).redeem(
            customer_id, reward_id, now=NOW
        )

    assert isinstance(result, RedeemSuccess)
    assert backend.recipients == []
    assert pending_notification_count() == 2

    backend.release.set()
    await wait_for_pending_notifications(timeout=10)

    assert pending_notification_count() == 0
    assert sorted(backend.recipients) == ["biz-device", "member-device"]
    async with file_session_factory() as session:
        rows = (await session.execute(select(Notification))).scalars().all()
    assert len(rows) == 2
    assert {row.status for row in rows} == {NotificationStatusEnum.SENT}
