# bundleshop/services/order_service.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from ..models.order import Order, PaymentStatus, FulfillmentStatus, IN_FLIGHT_STATUSES


def _values(statuses: Sequence[FulfillmentStatus]) -> List[str]:
    return [FulfillmentStatus(s).value for s in statuses]


class OrderService:
    """Durable order store.

    Status columns are written only through the guarded methods below, each of
    which states the statuses it is allowed to move an order out of. Callers get
    ``None`` (or an empty list) back when the guard did not match, meaning some
    other writer got there first.
    """

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_order(row) -> Order:
        return Order.model_validate(dict(row))

    async def create_orders(self, orders: List[Dict[str, Any]]) -> List[Order]:
        """Insert one or more PENDING_PAYMENT orders in a single transaction"""
        created = []
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                for item in orders:
                    row = await conn.fetchrow("""
                        INSERT INTO orders (
                            user_id, service_type, amount, cost_price,
                            beneficiary_phone, payment_reference, supplier_request_id,
                            supplier_package_id, payment_status, fulfillment_status
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        RETURNING *
                    """,
                        item['user_id'],
                        item['service_type'],
                        item['amount'],
                        item.get('cost_price'),
                        item['beneficiary_phone'],
                        item['payment_reference'],
                        item['supplier_request_id'],
                        item.get('supplier_package_id'),
                        PaymentStatus.PENDING.value,
                        FulfillmentStatus.PENDING_PAYMENT.value
                    )
                    created.append(self._to_order(row))
        return created

    async def get_order(self, order_id: int) -> Optional[Order]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1", order_id)
            return self._to_order(row) if row else None

    async def get_orders_by_reference(self, reference: str) -> List[Order]:
        """All orders funded by one payment, oldest first"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM orders
                WHERE payment_reference = $1
                ORDER BY id
            """, reference)
            return [self._to_order(row) for row in rows]

    async def get_order_by_request_id(self, request_id: str) -> Optional[Order]:
        """Look up by the id we sent the supplier when placing the order"""
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM orders WHERE supplier_request_id = $1", request_id
            )
            return self._to_order(row) if row else None

    async def get_user_orders(self, user_id: int, limit: int = 20) -> List[Order]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM orders
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2
            """, user_id, limit)
            return [self._to_order(row) for row in rows]

    async def search_orders(self, search_params: Dict[str, Any]) -> List[Order]:
        """Operator listing with optional filters"""
        query = "SELECT * FROM orders WHERE 1=1"
        params = []
        param_index = 1

        if search_params.get('fulfillment_status'):
            query += f" AND fulfillment_status = ${param_index}"
            params.append(FulfillmentStatus(search_params['fulfillment_status']).value)
            param_index += 1

        if search_params.get('payment_status'):
            query += f" AND payment_status = ${param_index}"
            params.append(PaymentStatus(search_params['payment_status']).value)
            param_index += 1

        if search_params.get('user_id'):
            query += f" AND user_id = ${param_index}"
            params.append(search_params['user_id'])
            param_index += 1

        query += " ORDER BY created_at DESC"

        query += f" LIMIT ${param_index}"
        params.append(search_params.get('limit', 50))

        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
            return [self._to_order(row) for row in rows]

    async def claim_payment(self, reference: str) -> List[Order]:
        """Compare-and-set PENDING -> PAID/QUEUED for every order on a reference.

        Only one concurrent caller receives rows; everyone else gets an empty list.
        """
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                UPDATE orders
                SET payment_status = $2,
                    fulfillment_status = $3,
                    updated_at = CURRENT_TIMESTAMP
                WHERE payment_reference = $1 AND payment_status = $4
                RETURNING *
            """,
                reference,
                PaymentStatus.PAID.value,
                FulfillmentStatus.QUEUED.value,
                PaymentStatus.PENDING.value
            )
            return sorted((self._to_order(row) for row in rows), key=lambda o: o.id)

    async def fail_payment(self, reference: str, reason: str) -> List[Order]:
        """Stamp FAILED on both axes for a payment that did not add up"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                UPDATE orders
                SET payment_status = $2,
                    fulfillment_status = $3,
                    last_error = $4,
                    updated_at = CURRENT_TIMESTAMP
                WHERE payment_reference = $1 AND payment_status = $5
                RETURNING *
            """,
                reference,
                PaymentStatus.FAILED.value,
                FulfillmentStatus.FAILED.value,
                reason,
                PaymentStatus.PENDING.value
            )
            return [self._to_order(row) for row in rows]

    async def transition(self, order_id: int, new_status: FulfillmentStatus,
                         from_statuses: Sequence[FulfillmentStatus],
                         expected_updated_at: Optional[datetime] = None,
                         **fields) -> Optional[Order]:
        """Guarded fulfillment transition.

        ``fields`` may carry supplier_reference, supplier_response and last_error.
        When ``expected_updated_at`` is given the row must also be untouched
        since it was read.
        """
        allowed = {'supplier_reference', 'supplier_response', 'last_error'}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot set {', '.join(sorted(unknown))} through a transition")

        query = """
            UPDATE orders
            SET fulfillment_status = $1,
                updated_at = CURRENT_TIMESTAMP
        """
        params: List[Any] = [FulfillmentStatus(new_status).value]
        for name, value in fields.items():
            params.append(value)
            query += f", {name} = ${len(params)}"

        params.append(order_id)
        query += f" WHERE id = ${len(params)}"
        params.append(_values(from_statuses))
        query += f" AND fulfillment_status = ANY(${len(params)}::text[])"
        if expected_updated_at is not None:
            params.append(expected_updated_at)
            query += f" AND updated_at = ${len(params)}"
        query += " RETURNING *"

        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
            return self._to_order(row) if row else None

    async def set_supplier_reference(self, order_id: int, supplier_reference: str) -> bool:
        """Record the supplier's id without touching status"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE orders
                SET supplier_reference = $1
                WHERE id = $2 AND supplier_reference IS DISTINCT FROM $1
            """, supplier_reference, order_id)
            return result == "UPDATE 1"

    async def force_status(self, order_id: int,
                           fulfillment_status: Optional[FulfillmentStatus] = None,
                           payment_status: Optional[PaymentStatus] = None) -> Optional[Order]:
        """Operator override on either status axis"""
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE orders
                SET fulfillment_status = COALESCE($1, fulfillment_status),
                    payment_status = COALESCE($2, payment_status),
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = $3
                RETURNING *
            """,
                FulfillmentStatus(fulfillment_status).value if fulfillment_status else None,
                PaymentStatus(payment_status).value if payment_status else None,
                order_id
            )
            return self._to_order(row) if row else None

    async def get_stuck_orders(self, cutoff: datetime) -> List[Order]:
        """In-flight orders not updated since ``cutoff`` (strictly older)"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM orders
                WHERE fulfillment_status = ANY($1::text[])
                  AND updated_at < $2
                ORDER BY updated_at
            """, _values(IN_FLIGHT_STATUSES), cutoff)
            return [self._to_order(row) for row in rows]

    async def count_stuck_orders(self, cutoff: datetime) -> int:
        async with self.db.pool.acquire() as conn:
            count = await conn.fetchval("""
                SELECT COUNT(*) FROM orders
                WHERE fulfillment_status = ANY($1::text[])
                  AND updated_at < $2
            """, _values(IN_FLIGHT_STATUSES), cutoff)
            return int(count or 0)
