"""Seed a development business, customer and reward into the API database."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.db.session import async_session
from rewards_api.models.account import Account, AccountTypeEnum
from rewards_api.services.rewards import RewardCatalogReader


class SeedAccount(TypedDict):
    email: str
    display_name: str
    account_type: str
    points_balance: int


DEV_ACCOUNTS: list[SeedAccount] = [
    {
        "email": os.getenv("DEV_BUSINESS_EMAIL", "cafe@rewards.dev").lower(),
        "display_name": "Corner Cafe",
        "account_type": AccountTypeEnum.BUSINESS.value,
        "points_balance": 0,
    },
    {
        "email": os.getenv("DEV_CUSTOMER_EMAIL", "customer@rewards.dev").lower(),
        "display_name": "Customer QA",
        "account_type": AccountTypeEnum.CUSTOMER.value,
        "points_balance": 500,
    },
]


async def seed_accounts(session: AsyncSession) -> dict[str, Account]:
    seeded: dict[str, Account] = {}
    for payload in DEV_ACCOUNTS:
        existing = await session.execute(select(Account).where(Account.email == payload["email"]))
        record = existing.scalar_one_or_none()
        if record is None:
            record = Account(**payload)
            session.add(record)
        else:
            record.display_name = payload["display_name"]
        seeded[payload["account_type"]] = record
    await session.flush()

    business = seeded[AccountTypeEnum.BUSINESS.value]
    catalog = RewardCatalogReader(session)
    if not await catalog.list_business_rewards(business.id):
        await catalog.create_reward(business.id, title="Free coffee", points_cost=100, total_available=50)
    await session.commit()
    return seeded


async def main() -> None:
    async with async_session() as session:
        seeded = await seed_accounts(session)
    for account_type, account in seeded.items():
        logger.info("Seeded dev account", account_type=account_type, account_id=str(account.id), email=account.email)


if __name__ == "__main__":
    asyncio.run(main())
