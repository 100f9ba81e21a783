"""Fan ledger events out to registered sinks without affecting the caller."""

from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

from loguru import logger

from hustl_api.core.settings import settings

from .backend import LedgerEventSink, LoggingEventSink
from .events import LedgerEvent


class LedgerEventPublisher:
    """Deliver events to every sink, bounding each delivery by a timeout.

    Publishing happens after the ledger write has committed. A failing or slow
    sink is logged and skipped; it never propagates into the ledger operation.
    """

    def __init__(
        self,
        sinks: Sequence[LedgerEventSink] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self._sinks: list[LedgerEventSink] = list(sinks) if sinks is not None else [LoggingEventSink()]
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.notification_timeout_seconds

    @property
    def sinks(self) -> tuple[LedgerEventSink, ...]:
        return tuple(self._sinks)

    def replace_sinks(self, sinks: Iterable[LedgerEventSink]) -> None:
        self._sinks = list(sinks)

    async def publish(self, event: LedgerEvent) -> None:
        for sink in self._sinks:
            try:
                await asyncio.wait_for(sink.deliver(event), timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Ledger event delivery timed out",
                    event_type=event.event_type.value,
                    sink=type(sink).__name__,
                    timeout_seconds=self._timeout,
                )
            except Exception:
                logger.exception(
                    "Ledger event delivery failed",
                    event_type=event.event_type.value,
                    sink=type(sink).__name__,
                )

    async def publish_all(self, events: Iterable[LedgerEvent]) -> None:
        for event in events:
            await self.publish(event)


_PUBLISHER = LedgerEventPublisher()


def get_event_publisher() -> LedgerEventPublisher:
    return _PUBLISHER


__all__ = ["LedgerEventPublisher", "get_event_publisher"]
