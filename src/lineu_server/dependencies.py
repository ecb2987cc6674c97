from collections.abc import AsyncIterator
from typing import Protocol, cast

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from lineu_core.config.settings import Settings


class HasSettings(Protocol):
    settings: Settings


async def get_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.get_db_session() as session:
        yield session


async def get_readonly_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.get_db_session(read_only=True) as session:
        yield session


def get_settings(request: Request) -> Settings:
    state = cast(HasSettings, request.app.state)
    return getattr(state, "settings", Settings())
