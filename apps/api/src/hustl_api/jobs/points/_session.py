from __future__ import annotations

import inspect
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def open_session(session_factory: SessionFactory) -> AsyncSession:
    """Resolve sync or async session factories to a session."""

    maybe_session = session_factory()
    if inspect.isawaitable(maybe_session):
        return await maybe_session
    return maybe_session
