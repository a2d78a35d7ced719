"""API-key guard for validator devices and business administration."""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from rewards_api.core.settings import settings


async def require_validator_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Reject requests without the shared validator key; open when no key is configured."""

    expected = settings.validator_api_key
    if not expected:
        return

    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
