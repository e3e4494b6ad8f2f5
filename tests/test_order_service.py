# tests/test_order_service.py
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
import pytest
from bundleshop.models.order import PaymentStatus, FulfillmentStatus
from bundleshop.services.order_service import OrderService

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def row(order_id=1, **fields):
    data = {
        'id': order_id,
        'user_id': 42,
        'service_type': "MTN_EXPRESS",
        'amount': Decimal("7.00"),
        'beneficiary_phone': "0241234567",
        'payment_reference': "PAY_1",
        'supplier_request_id': "PAY_1",
        'payment_status': "PAID",
        'fulfillment_status': "PROCESSING",
        'created_at': NOW,
        'updated_at': NOW,
    }
    data.update(fields)
    return data


class FakePool:
    """Stands in for an asyncpg pool; every acquire hands out the same connection"""

    def __init__(self):
        self.conn = MagicMock()
        self.conn.fetchrow = AsyncMock(return_value=None)
        self.conn.fetch = AsyncMock(return_value=[])
        self.conn.fetchval = AsyncMock(return_value=0)
        self.conn.execute = AsyncMock(return_value="UPDATE 0")

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def store(pool):
    return OrderService(SimpleNamespace(pool=pool))


def sent(mock):
    """Whitespace-normalised SQL and the positional parameters of the last call"""
    query, *params = mock.await_args.args
    return " ".join(query.split()), params


class TestTransition:
    async def test_fields_are_numbered_after_status(self, store, pool):
        pool.conn.fetchrow.return_value = row(fulfillment_status="FULFILLED", supplier_reference="WN-9")

        order = await store.transition(
            1, FulfillmentStatus.FULFILLED, from_statuses=(FulfillmentStatus.PROCESSING,),
            supplier_reference="WN-9", last_error=None
        )

        query, params = sent(pool.conn.fetchrow)
        assert query == (
            "UPDATE orders SET fulfillment_status = $1, updated_at = CURRENT_TIMESTAMP"
            " , supplier_reference = $2, last_error = $3"
            " WHERE id = $4 AND fulfillment_status = ANY($5::text[]) RETURNING *"
        )
        assert params == ["FULFILLED", "WN-9", None, 1, ["PROCESSING"]]
        assert order.fulfillment_status == FulfillmentStatus.FULFILLED
        assert order.supplier_reference == "WN-9"

    async def test_expected_updated_at_is_guarded(self, store, pool):
        await store.transition(
            7, FulfillmentStatus.FULFILLED,
            from_statuses=(FulfillmentStatus.QUEUED, FulfillmentStatus.PROCESSING),
            expected_updated_at=NOW
        )

        query, params = sent(pool.conn.fetchrow)
        assert query.endswith(
            "WHERE id = $2 AND fulfillment_status = ANY($3::text[]) AND updated_at = $4 RETURNING *"
        )
        assert params == ["FULFILLED", 7, ["QUEUED", "PROCESSING"], NOW]

    async def test_no_match_returns_none(self, store, pool):
        result = await store.transition(1, FulfillmentStatus.PAID, from_statuses=(FulfillmentStatus.PROCESSING,))
        assert result is None

    async def test_status_columns_cannot_ride_along(self, store, pool):
        with pytest.raises(ValueError):
            await store.transition(1, FulfillmentStatus.PAID, from_statuses=(FulfillmentStatus.FAILED,),
                                   payment_status="REFUNDED")
        pool.conn.fetchrow.assert_not_awaited()


class TestPaymentClaims:
    async def test_claim_payment(self, store, pool):
        pool.conn.fetch.return_value = [
            row(2, fulfillment_status="QUEUED"),
            row(1, fulfillment_status="QUEUED"),
        ]

        claimed = await store.claim_payment("PAY_1")

        query, params = sent(pool.conn.fetch)
        assert "SET payment_status = $2, fulfillment_status = $3" in query
        assert "WHERE payment_reference = $1 AND payment_status = $4 RETURNING *" in query
        assert params == ["PAY_1", "PAID", "QUEUED", "PENDING"]
        assert [o.id for o in claimed] == [1, 2]

    async def test_lost_claim_is_empty(self, store, pool):
        assert await store.claim_payment("PAY_1") == []

    async def test_fail_payment(self, store, pool):
        pool.conn.fetch.return_value = [row(payment_status="FAILED", fulfillment_status="FAILED",
                                            last_error="Amount mismatch")]

        failed = await store.fail_payment("PAY_1", "Amount mismatch")

        query, params = sent(pool.conn.fetch)
        assert "last_error = $4" in query
        assert "WHERE payment_reference = $1 AND payment_status = $5" in query
        assert params == ["PAY_1", "FAILED", "FAILED", "Amount mismatch", "PENDING"]
        assert failed[0].payment_status == PaymentStatus.FAILED


async def test_get_stuck_orders(store, pool):
    pool.conn.fetch.return_value = [row(fulfillment_status="QUEUED")]

    stuck = await store.get_stuck_orders(NOW)

    query, params = sent(pool.conn.fetch)
    assert "WHERE fulfillment_status = ANY($1::text[]) AND updated_at < $2 ORDER BY updated_at" in query
    assert params == [["QUEUED", "PROCESSING"], NOW]
    assert stuck[0].fulfillment_status == FulfillmentStatus.QUEUED


async def test_count_stuck_orders(store, pool):
    pool.conn.fetchval.return_value = 3
    assert await store.count_stuck_orders(NOW) == 3


@pytest.mark.parametrize("status,expected", [("UPDATE 1", True), ("UPDATE 0", False)])
async def test_set_supplier_reference(store, pool, status, expected):
    pool.conn.execute.return_value = status

    assert await store.set_supplier_reference(5, "WN-5") is expected
    query, params = sent(pool.conn.execute)
    assert "supplier_reference IS DISTINCT FROM $1" in query
    assert "fulfillment_status" not in query
    assert params == ["WN-5", 5]


async def test_search_numbers_only_given_filters(store, pool):
    await store.search_orders({'payment_status': PaymentStatus.PAID, 'user_id': 9, 'limit': 10})

    query, params = sent(pool.conn.fetch)
    assert query == ("SELECT * FROM orders WHERE 1=1 AND payment_status = $1 AND user_id = $2"
                     " ORDER BY created_at DESC LIMIT $3")
    assert params == ["PAID", 9, 10]


async def test_force_status_leaves_unset_axis(store, pool):
    await store.force_status(3, payment_status=PaymentStatus.REFUNDED)

    query, params = sent(pool.conn.fetchrow)
    assert "COALESCE($1, fulfillment_status)" in query
    assert params == [None, "REFUNDED", 3]
