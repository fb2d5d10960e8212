from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import cast

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import AppContainer
from app.core.security import tokens_match
from app.domain.errors import Forbidden


def get_container(request: Request) -> AppContainer:
    return cast(AppContainer, request.app.state.container)


async def get_db_session(
    container: AppContainer = Depends(get_container),
) -> AsyncGenerator[AsyncSession, None]:
    async with container.session_factory() as session:
        yield session


def require_admin(
    container: AppContainer = Depends(get_container),
    x_admin_token: str | None = Header(default=None),
) -> None:
    if not tokens_match(x_admin_token, container.settings.admin_api_token):
        raise Forbidden("Admin token required")
