from datetime import datetime, timedelta, timezone

import pytest

from rewards_api.models.rewards import RedemptionStatus
from rewards_api.scheduling import RedemptionExpiryScheduler, run_expiry_sweep
from rewards_api.services.rewards import RedemptionService


@pytest.mark.asyncio
async def test_sweep_expires_past_due_redemptions(session_factory, make_account, make_reward) -> None:
    past = datetime.now(timezone.utc) - timedelta(days=3)
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session, points=300)
        reward = await make_reward(session, business, valid_until=past + timedelta(days=1))
        await session.commit()
        redeemed = await RedemptionService(session).redeem(customer.id, reward.id, now=past)
        assert redeemed.ok

    assert await run_expiry_sweep(session_factory=session_factory) == 1
    assert await run_expiry_sweep(session_factory=session_factory) == 0

    async with session_factory() as session:
        redemption = await RedemptionService(session).get_redemption(redeemed.redemption_id)
        assert redemption.status == RedemptionStatus.EXPIRED


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(session_factory) -> None:
    scheduler = RedemptionExpiryScheduler(session_factory=session_factory, interval_seconds=3600)
    assert not scheduler.is_running

    scheduler.start()
    assert scheduler.is_running

    await scheduler.stop()
    assert not scheduler.is_running
