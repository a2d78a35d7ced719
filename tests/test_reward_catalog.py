from datetime import datetime, timedelta, timezone

import pytest

from rewards_api.services.rewards import RewardCatalogReader


NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_create_update_and_deactivate(session_factory, make_account) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        catalog = RewardCatalogReader(session)

        reward = await catalog.create_reward(business.id, title="Free coffee", points_cost=80, total_available=3)
        await catalog.update_reward(reward, points_cost=90, valid_days=[1, 2])
        await session.commit()

        stored = await catalog.get_reward(reward.id)
        assert stored.points_cost == 90
        assert stored.valid_days == [1, 2]
        assert stored.claimed == 0

        await catalog.deactivate_reward(stored)
        await session.commit()
        assert stored.active is False


@pytest.mark.asyncio
async def test_invalid_changes_are_rejected(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        customer = await make_account(session)
        reward = await make_reward(session, business)
        catalog = RewardCatalogReader(session)

        with pytest.raises(ValueError, match="claimed"):
            await catalog.update_reward(reward, claimed=0)
        with pytest.raises(ValueError, match="positive"):
            await catalog.update_reward(reward, points_cost=0)
        with pytest.raises(ValueError, match="weekdays"):
            await catalog.update_reward(reward, valid_days=[0])
        with pytest.raises(ValueError, match="business accounts"):
            await catalog.create_reward(customer.id, title="Nope", points_cost=10)


@pytest.mark.asyncio
async def test_list_active_rewards_filters_and_sorts(session_factory, make_account, make_reward) -> None:
    async with session_factory() as session:
        business = await make_account(session, business=True)
        other_business = await make_account(session, business=True, name="Bakery")
        await make_reward(session, business, title="Pricey", points_cost=500)
        await make_reward(session, business, title="Cheap", points_cost=50)
        await make_reward(session, business, title="Inactive", active=False)
        await make_reward(session, business, title="Sold out", claimed=10)
        await make_reward(session, business, title="Expired", expires_at=NOW - timedelta(days=1))
        await make_reward(session, business, title="Upcoming", valid_from=NOW + timedelta(days=1))
        await make_reward(session, business, title="Endless", points_cost=200, claimed=99, unlimited=True)
        await make_reward(session, other_business, title="Croissant", points_cost=10)
        await session.commit()

        catalog = RewardCatalogReader(session)
        titles = [reward.title for reward in await catalog.list_active_rewards(business_id=business.id, now=NOW)]
        assert titles == ["Cheap", "Endless", "Pricey"]

        everything = await catalog.list_active_rewards(now=NOW)
        assert [reward.title for reward in everything][0] == "Croissant"
        assert len(await catalog.list_business_rewards(business.id)) == 7
