"""Ledger event publishing."""

from .backend import InMemoryEventSink, LedgerEventSink, LoggingEventSink
from .events import LedgerEvent, LedgerEventType
from .publisher import LedgerEventPublisher, get_event_publisher

__all__ = [
    "InMemoryEventSink",
    "LedgerEvent",
    "LedgerEventPublisher",
    "LedgerEventSink",
    "LedgerEventType",
    "LoggingEventSink",
    "get_event_publisher",
]
