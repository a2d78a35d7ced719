import os
import sys
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("REACHABILITY_PROBE_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rewards_api.api.dependencies.services import get_notifier, get_push_backend, get_reachability_probe  # noqa: E402
from rewards_api.app import create_app  # noqa: E402
from rewards_api.core.settings import Settings  # noqa: E402
from rewards_api.db.base import Base  # noqa: E402
from rewards_api.db.session import build_engine, get_session, get_session_factory  # noqa: E402
from rewards_api.models.account import Account, AccountTypeEnum  # noqa: E402
from rewards_api.models.rewards import Reward  # noqa: E402
from rewards_api.observability.rewards import get_rewards_store  # noqa: E402
from rewards_api.services.notifications import DetachedNotifier, InMemoryPushBackend  # noqa: E402
from rewards_api.services.rewards import ReachabilityProbe  # noqa: E402


@pytest.fixture
def offline_settings() -> Settings:
    return Settings(reachability_probe_enabled=False, tracing_enabled=False)


@pytest.fixture
def probe(offline_settings) -> ReachabilityProbe:
    return ReachabilityProbe(settings=offline_settings)


@pytest.fixture(autouse=True)
def reset_rewards_store():
    get_rewards_store().reset()
    yield
    get_rewards_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database whose writers contend like separate validator devices."""

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def push_backend() -> InMemoryPushBackend:
    return InMemoryPushBackend()


@pytest_asyncio.fixture
async def app_with_db(session_factory, probe, push_backend):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_reachability_probe] = lambda: probe
    app.dependency_overrides[get_push_backend] = lambda: push_backend
    app.dependency_overrides[get_notifier] = lambda: DetachedNotifier(session_factory, push_backend, detach=False)

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_account():
    async def _make(
        session: AsyncSession,
        *,
        business: bool = False,
        points: int = 0,
        level: int = 1,
        name: str | None = None,
        push_token: str | None = None,
    ) -> Account:
        account = Account(
            display_name=name or ("Corner Cafe" if business else "Member"),
            account_type=(AccountTypeEnum.BUSINESS if business else AccountTypeEnum.CUSTOMER).value,
            points_balance=points,
            level=level,
            push_token=push_token,
        )
        session.add(account)
        await session.flush()
        return account

    return _make


@pytest.fixture
def make_reward():
    async def _make(session: AsyncSession, business: Account, **overrides) -> Reward:
        values = {
            "title": "Free coffee",
            "points_cost": 100,
            "total_available": 10,
            "claimed": 0,
            "active": True,
        }
        values.update(overrides)
        reward = Reward(business_id=business.id, **values)
        session.add(reward)
        await session.flush()
        return reward

    return _make
