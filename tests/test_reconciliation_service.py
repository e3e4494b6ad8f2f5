# tests/test_reconciliation_service.py
import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock
import pytest
from bundleshop.models.order import PaymentStatus, FulfillmentStatus
from bundleshop.services.reconciliation_service import ReconciliationService


@pytest.fixture
def reconciliation(order_store, fulfillment, clock):
    return ReconciliationService(order_store, fulfillment, clock=clock)


def in_flight(order_store, clock, age: timedelta, status=FulfillmentStatus.PROCESSING):
    touched = clock() - age
    return order_store.seed(payment_status=PaymentStatus.PAID, fulfillment_status=status,
                            created_at=touched, updated_at=touched)


class TestSweep:
    async def test_stuck_threshold_is_exclusive(self, reconciliation, order_store, clock):
        in_flight(order_store, clock, timedelta(minutes=30))
        older = in_flight(order_store, clock, timedelta(minutes=30, seconds=1))

        result = await reconciliation.sweep(stuck_after_minutes=30)

        assert result == {"processed": 1, "flagged": 1, "auto_fulfilled": 0, "errors": []}
        assert await reconciliation.stuck_count(30) == 1
        assert order_store.rows[older.id].fulfillment_status == FulfillmentStatus.PROCESSING

    async def test_auto_fulfill_threshold_is_inclusive(self, reconciliation, order_store, clock):
        exactly = in_flight(order_store, clock, timedelta(minutes=60))
        just_under = in_flight(order_store, clock, timedelta(minutes=59, seconds=59))

        result = await reconciliation.sweep(stuck_after_minutes=30, auto_fulfill_after_minutes=60)

        assert result["processed"] == 2
        assert result["auto_fulfilled"] == 1
        assert result["flagged"] == 1
        assert order_store.rows[exactly.id].fulfillment_status == FulfillmentStatus.FULFILLED
        assert order_store.rows[exactly.id].supplier_reference.startswith("AUTO_FULFILLED_")
        assert order_store.rows[just_under.id].fulfillment_status == FulfillmentStatus.PROCESSING

    async def test_auto_fulfill_disabled_by_default(self, reconciliation, order_store, clock):
        order = in_flight(order_store, clock, timedelta(days=2), status=FulfillmentStatus.QUEUED)

        result = await reconciliation.sweep(stuck_after_minutes=30)

        assert result["flagged"] == 1
        assert result["auto_fulfilled"] == 0
        assert order_store.rows[order.id].fulfillment_status == FulfillmentStatus.QUEUED
        assert order_store.writes == 0

    async def test_settled_orders_are_ignored(self, reconciliation, order_store, clock):
        for status in (FulfillmentStatus.FULFILLED, FulfillmentStatus.FAILED, FulfillmentStatus.PAID):
            in_flight(order_store, clock, timedelta(hours=5), status=status)

        result = await reconciliation.sweep(stuck_after_minutes=30, auto_fulfill_after_minutes=60)

        assert result["processed"] == 0

    async def test_order_touched_during_sweep_is_left_alone(self, reconciliation, order_store, clock, fulfillment):
        order = in_flight(order_store, clock, timedelta(hours=2))
        stale = order.model_copy()
        # A webhook lands between the sweep's read and its write
        clock.advance(seconds=1)
        await order_store.transition(order.id, FulfillmentStatus.FAILED,
                                     from_statuses=(FulfillmentStatus.PROCESSING,))
        await order_store.transition(order.id, FulfillmentStatus.PROCESSING,
                                     from_statuses=(FulfillmentStatus.FAILED,))

        assert await fulfillment.auto_fulfill(stale) is None
        assert order_store.rows[order.id].fulfillment_status == FulfillmentStatus.PROCESSING

    async def test_concurrent_sweeps_fulfill_once(self, reconciliation, order_store, clock):
        in_flight(order_store, clock, timedelta(hours=2))

        first, second = await asyncio.gather(
            reconciliation.sweep(30, 60),
            reconciliation.sweep(30, 60)
        )

        assert first["auto_fulfilled"] + second["auto_fulfilled"] == 1
        assert order_store.writes == 1

    async def test_store_error_is_reported(self, reconciliation, order_store):
        order_store.get_stuck_orders = AsyncMock(side_effect=ConnectionError("pool closed"))

        result = await reconciliation.sweep(30)

        assert result["processed"] == 0
        assert result["errors"] == ["pool closed"]

    async def test_per_order_error_does_not_stop_sweep(self, reconciliation, order_store, clock, fulfillment, caplog):
        first = in_flight(order_store, clock, timedelta(hours=3))
        in_flight(order_store, clock, timedelta(hours=2))
        original = fulfillment.auto_fulfill

        async def flaky(order):
            if order.id == first.id:
                raise RuntimeError("deadlock detected")
            return await original(order)

        fulfillment.auto_fulfill = flaky

        with caplog.at_level(logging.ERROR, logger="bundleshop.services.reconciliation_service"):
            result = await reconciliation.sweep(30, 60)

        assert result["auto_fulfilled"] == 1
        assert result["errors"] == [f"Order {first.id}: deadlock detected"]
        assert any(
            r.levelno == logging.ERROR and f"Reconciliation failed for order {first.id}" in r.getMessage()
            for r in caplog.records
        )


class TestSchedule:
    async def test_start_and_stop(self, reconciliation):
        reconciliation.sweep = AsyncMock()

        task = reconciliation.start(interval_seconds=3600)
        await asyncio.sleep(0)
        await reconciliation.stop()

        assert task.cancelled()
        reconciliation.sweep.assert_not_awaited()
