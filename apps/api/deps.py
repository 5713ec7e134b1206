"""FastAPI dependencies: container, per-request session, cron auth."""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.container import ServiceContainer

_BEARER = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not initialised")
    return container


async def get_session(
    container: ServiceContainer = Depends(get_container),
) -> AsyncIterator[AsyncSession]:
    async with container.session_factory() as session:
        yield session


async def verify_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(_BEARER),
    container: ServiceContainer = Depends(get_container),
) -> None:
    """Validate the bearer token using constant-time comparison."""
    expected = container.settings.cron_secret.get_secret_value()
    if not expected:
        raise HTTPException(status_code=500, detail="CRON_SECRET not configured on server")

    token = credentials.credentials if credentials is not None else None
    if token is None or not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
