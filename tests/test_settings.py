import pytest
from pydantic import ValidationError

from rewards_api.core.settings import Settings


def test_rewards_timezone_accepts_iana_names() -> None:
    settings = Settings(rewards_timezone="Europe/Berlin")

    assert settings.rewards_timezone == "Europe/Berlin"


@pytest.mark.parametrize("zone", ["Mars/Olympus_Mons", ""])
def test_rewards_timezone_rejects_unknown_zone_at_load(zone: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        Settings(rewards_timezone=zone)

    assert "Unknown rewards timezone" in str(excinfo.value)


def test_sync_database_urls_are_upgraded_to_async_drivers() -> None:
    settings = Settings(database_url="postgresql://rewards:secret@db/rewards")

    assert settings.database_url == "postgresql+asyncpg://rewards:secret@db/rewards"
