"""Keyed per-user mutex for ledger writes."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator
from uuid import UUID

from loguru import logger

from .errors import LedgerContentionError


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class UserLockRegistry:
    """Hand out one asyncio lock per user id.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so the registry only grows with the number of users currently being
    written. Writes for different users never share a lock.
    """

    def __init__(self) -> None:
        self._entries: dict[UUID, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, user_id: UUID) -> bool:
        entry = self._entries.get(user_id)
        return bool(entry and entry.lock.locked())

    @asynccontextmanager
    async def hold(self, user_id: UUID, *, timeout: float | None = None) -> AsyncIterator[None]:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = _LockEntry()
            self._entries[user_id] = entry
        entry.holders += 1

        try:
            try:
                if timeout is None:
                    await entry.lock.acquire()
                else:
                    await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError as exc:
                logger.warning("Timed out waiting for ledger lock", user_id=str(user_id), timeout_seconds=timeout)
                raise LedgerContentionError(
                    "Timed out waiting for the account lock",
                    userId=str(user_id),
                    timeoutSeconds=timeout,
                ) from exc

            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._entries.get(user_id) is entry:
                del self._entries[user_id]


_USER_LOCKS = UserLockRegistry()


def get_user_lock_registry() -> UserLockRegistry:
    return _USER_LOCKS


__all__ = ["UserLockRegistry", "get_user_lock_registry"]
