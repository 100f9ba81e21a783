import asyncio
from uuid import uuid4

import pytest

from hustl_api.observability.points import PointsObservabilityStore, get_points_store
from hustl_api.observability.tracing import parse_otlp_headers
from hustl_api.services.notifications import (
    InMemoryEventSink,
    LedgerEvent,
    LedgerEventPublisher,
    LedgerEventType,
)
from hustl_api.services.points import AwardEngine, PointsLedger, RedemptionWorkflow


class _ExplodingSink:
    async def deliver(self, event: LedgerEvent) -> None:
        raise RuntimeError("smtp down")


class _SlowSink:
    async def deliver(self, event: LedgerEvent) -> None:
        await asyncio.sleep(1)


@pytest.mark.asyncio
async def test_publisher_isolates_failing_sinks() -> None:
    healthy = InMemoryEventSink()
    publisher = LedgerEventPublisher([_ExplodingSink(), _SlowSink(), healthy], timeout_seconds=0.01)
    event = LedgerEvent(event_type=LedgerEventType.BALANCE_CHANGED, user_id=uuid4(), payload={"amount": 5})

    await publisher.publish(event)

    assert healthy.events == [event]
    assert event.as_dict()["type"] == "balance.changed"


@pytest.mark.asyncio
async def test_failing_sink_does_not_undo_ledger_write(session_factory, ledger_events) -> None:
    publisher = LedgerEventPublisher([_ExplodingSink()])
    user_id = uuid4()

    async with session_factory() as session:
        ledger = PointsLedger(session, publisher=publisher)
        await AwardEngine(session, ledger=ledger).award_manual(user_id, 40, uuid4(), "Seed")

        assert await ledger.current_points(user_id) == 40
    assert ledger_events.events == []


@pytest.mark.asyncio
async def test_store_counts_ledger_activity(session_factory) -> None:
    user_id = uuid4()

    async with session_factory() as session:
        await AwardEngine(session).award_manual(user_id, 100, uuid4(), "Seed")
        workflow = RedemptionWorkflow(session)
        approved = await workflow.request_redemption(user_id, 10, "cash")
        await workflow.process_redemption(approved.id, uuid4(), "approve")
        cancelled = await workflow.request_redemption(user_id, 10, "cash")
        await workflow.cancel_redemption(cancelled.id, user_id)

    snapshot = get_points_store().snapshot()
    assert snapshot.transactions == {"credit": 1, "debit": 1}
    assert snapshot.provenance == {"manual_award": 1, "redemption": 1}
    assert snapshot.reservations == {"reserved": 2, "completed": 1, "cancelled": 1}
    assert snapshot.redemptions == {"requested": 2, "approve": 1, "cancelled": 1}
    assert snapshot.as_dict()["last_consistency_run"] is None


def test_store_reset_and_consistency_run() -> None:
    store = PointsObservabilityStore()
    store.record_write_retry()
    store.record_contention_failure()
    store.record_consistency_run(checked_users=4, mismatches=2, corrected=1, total_discrepancy=30)

    payload = store.snapshot().as_dict()
    assert payload["write_retries"] == 1
    assert payload["contention_failures"] == 1
    assert payload["last_consistency_run"]["mismatches"] == 2
    assert payload["last_consistency_run"]["corrected"] == 1

    store.reset()
    assert store.snapshot().last_consistency_run is None
    assert store.snapshot().write_retries == 0


def test_parse_otlp_headers() -> None:
    assert parse_otlp_headers(None) is None
    assert parse_otlp_headers("") is None
    assert parse_otlp_headers("api-key=abc, x-team = points ,broken") == {"api-key": "abc", "x-team": "points"}
