"""Observability endpoints for reward redemption counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rewards_api.api.dependencies.security import require_validator_api_key
from rewards_api.observability.rewards import get_rewards_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/rewards",
    dependencies=[Depends(require_validator_api_key)],
    summary="Reward redemption observability snapshot",
)
async def get_rewards_snapshot() -> dict[str, object]:
    """Redemption, validation and offer outcome counters."""
    store = get_rewards_store()
    return store.snapshot().as_dict()
