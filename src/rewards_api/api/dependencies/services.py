"""Overridable collaborators for reward endpoints."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards_api.core.settings import get_settings
from rewards_api.db.session import get_session_factory
from rewards_api.services.notifications import (
    DetachedNotifier,
    LoggingPushBackend,
    Notifier,
    PushBackend,
    WebhookPushBackend,
)
from rewards_api.services.rewards import ReachabilityProbe


def get_reachability_probe() -> ReachabilityProbe:
    return ReachabilityProbe(settings=get_settings())


def get_push_backend() -> PushBackend:
    settings = get_settings()
    if settings.push_webhook_url:
        return WebhookPushBackend(
            settings.push_webhook_url,
            auth_token=settings.push_webhook_token,
            timeout_seconds=settings.push_timeout_seconds,
        )
    return LoggingPushBackend()


def get_notifier(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    backend: PushBackend = Depends(get_push_backend),
) -> Notifier:
    """Notifications leave the request path and run on their own sessions."""

    return DetachedNotifier(session_factory, backend)
