"""Delivery sinks for ledger events."""

from __future__ import annotations

from typing import List, Protocol

from loguru import logger

from .events import LedgerEvent


class LedgerEventSink(Protocol):
    """Minimal protocol for anything that receives ledger events."""

    async def deliver(self, event: LedgerEvent) -> None:
        ...


class LoggingEventSink:
    """Default sink: emit the event as a structured log line for log shippers."""

    async def deliver(self, event: LedgerEvent) -> None:
        logger.bind(event=event.as_dict()).info("Ledger event emitted", event_type=event.event_type.value)


class InMemoryEventSink:
    """Test sink storing delivered events in memory."""

    def __init__(self) -> None:
        self.events: List[LedgerEvent] = []

    async def deliver(self, event: LedgerEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[LedgerEvent]:
        return [event for event in self.events if event.event_type.value == event_type]

    def clear(self) -> None:
        self.events.clear()


__all__ = ["InMemoryEventSink", "LedgerEventSink", "LoggingEventSink"]
