# tests/conftest.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock
import pytest
from bundleshop.models.order import Order, PaymentStatus, FulfillmentStatus, ServiceType, IN_FLIGHT_STATUSES
from bundleshop.models.payment import Checkout, PaymentVerification
from bundleshop.models.product import Balance, Product
from bundleshop.services.fulfillment_service import FulfillmentService
from bundleshop.services.settings_service import SettingsService
from bundleshop.services.supplier_service import SupplierService


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class InMemoryOrderService:
    """OrderService double with the same guard semantics, counting writes"""

    def __init__(self, clock):
        self.clock = clock
        self.rows: Dict[int, Order] = {}
        self.writes = 0
        self._next_id = 1

    def _save(self, order: Order, **changes) -> Order:
        changes['updated_at'] = self.clock()
        updated = order.model_copy(update=changes)
        self.rows[order.id] = updated
        self.writes += 1
        return updated.model_copy()

    def seed(self, **fields) -> Order:
        """Insert an order directly in any state"""
        now = self.clock()
        row = {
            'id': self._next_id,
            'user_id': 42,
            'service_type': ServiceType.MTN_EXPRESS,
            'amount': Decimal("7.00"),
            'cost_price': Decimal("6.50"),
            'beneficiary_phone': "0241234567",
            'payment_reference': f"PAY_seed_{self._next_id}",
            'supplier_package_id': "pkg-1",
            'created_at': now,
            'updated_at': now,
        }
        row.update(fields)
        row.setdefault('supplier_request_id', row['payment_reference'])
        order = Order.model_validate(row)
        self.rows[order.id] = order
        self._next_id += 1
        return order.model_copy()

    async def create_orders(self, orders: List[Dict[str, Any]]) -> List[Order]:
        return [self.seed(**item) for item in orders]

    async def get_order(self, order_id: int) -> Optional[Order]:
        order = self.rows.get(order_id)
        return order.model_copy() if order else None

    async def get_orders_by_reference(self, reference: str) -> List[Order]:
        return [o.model_copy() for o in sorted(self.rows.values(), key=lambda o: o.id)
                if o.payment_reference == reference]

    async def get_order_by_request_id(self, request_id: str) -> Optional[Order]:
        for order in self.rows.values():
            if order.supplier_request_id == request_id:
                return order.model_copy()
        return None

    async def get_user_orders(self, user_id: int, limit: int = 20) -> List[Order]:
        orders = [o for o in self.rows.values() if o.user_id == user_id]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)[:limit]

    async def search_orders(self, search_params: Dict[str, Any]) -> List[Order]:
        orders = list(self.rows.values())
        if search_params.get('fulfillment_status'):
            orders = [o for o in orders if o.fulfillment_status == search_params['fulfillment_status']]
        if search_params.get('payment_status'):
            orders = [o for o in orders if o.payment_status == search_params['payment_status']]
        if search_params.get('user_id'):
            orders = [o for o in orders if o.user_id == search_params['user_id']]
        return orders[:search_params.get('limit', 50)]

    async def claim_payment(self, reference: str) -> List[Order]:
        return [
            self._save(o, payment_status=PaymentStatus.PAID, fulfillment_status=FulfillmentStatus.QUEUED)
            for o in sorted(self.rows.values(), key=lambda o: o.id)
            if o.payment_reference == reference and o.payment_status == PaymentStatus.PENDING
        ]

    async def fail_payment(self, reference: str, reason: str) -> List[Order]:
        return [
            self._save(o, payment_status=PaymentStatus.FAILED,
                       fulfillment_status=FulfillmentStatus.FAILED, last_error=reason)
            for o in sorted(self.rows.values(), key=lambda o: o.id)
            if o.payment_reference == reference and o.payment_status == PaymentStatus.PENDING
        ]

    async def transition(self, order_id: int, new_status: FulfillmentStatus,
                         from_statuses: Sequence[FulfillmentStatus],
                         expected_updated_at: Optional[datetime] = None,
                         **fields) -> Optional[Order]:
        unknown = set(fields) - {'supplier_reference', 'supplier_response', 'last_error'}
        if unknown:
            raise ValueError(f"Cannot set {', '.join(sorted(unknown))} through a transition")
        order = self.rows.get(order_id)
        if not order or order.fulfillment_status not in from_statuses:
            return None
        if expected_updated_at is not None and order.updated_at != expected_updated_at:
            return None
        return self._save(order, fulfillment_status=new_status, **fields)

    async def set_supplier_reference(self, order_id: int, supplier_reference: str) -> bool:
        order = self.rows.get(order_id)
        if not order or order.supplier_reference == supplier_reference:
            return False
        # Status-free write: updated_at stays as it was
        self.rows[order_id] = order.model_copy(update={'supplier_reference': supplier_reference})
        self.writes += 1
        return True

    async def force_status(self, order_id: int,
                           fulfillment_status: Optional[FulfillmentStatus] = None,
                           payment_status: Optional[PaymentStatus] = None) -> Optional[Order]:
        order = self.rows.get(order_id)
        if not order:
            return None
        return self._save(
            order,
            fulfillment_status=fulfillment_status or order.fulfillment_status,
            payment_status=payment_status or order.payment_status
        )

    async def get_stuck_orders(self, cutoff: datetime) -> List[Order]:
        stuck = [o for o in self.rows.values()
                 if o.fulfillment_status in IN_FLIGHT_STATUSES and o.last_touched_at < cutoff]
        return [o.model_copy() for o in sorted(stuck, key=lambda o: o.last_touched_at)]

    async def count_stuck_orders(self, cutoff: datetime) -> int:
        return len(await self.get_stuck_orders(cutoff))


class FakeProductService:
    def __init__(self, products: List[Product]):
        self.products = {p.id: p for p in products}

    async def get_product(self, product_id: int) -> Optional[Product]:
        return self.products.get(product_id)

    async def get_active_products(self) -> List[Product]:
        return [p for p in self.products.values() if p.is_active]


def make_product(product_id: int, price: str, service_type=ServiceType.MTN_EXPRESS,
                 cost_price: Optional[str] = None, **fields) -> Product:
    return Product(
        id=product_id,
        name=f"Bundle {product_id}",
        service_type=service_type,
        price=Decimal(price),
        cost_price=Decimal(cost_price) if cost_price else None,
        supplier_package_id=fields.pop('supplier_package_id', f"pkg-{product_id}"),
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        **fields
    )


def verification(amount: str, succeeded: bool = True) -> PaymentVerification:
    return PaymentVerification(
        succeeded=succeeded,
        amount_paid=Decimal(amount),
        currency="GHS",
        gateway_status="success" if succeeded else "abandoned"
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def order_store(clock):
    return InMemoryOrderService(clock)


@pytest.fixture
def products():
    return FakeProductService([
        make_product(1, "7.00", cost_price="6.50"),
        make_product(2, "2.50", service_type=ServiceType.AT, cost_price="2.20"),
        make_product(3, "2.00", service_type=ServiceType.TELECEL),
        make_product(4, "5.00", is_active=False),
        make_product(5, "3.00", supplier_package_id=None),
    ])


@pytest.fixture
def settings():
    service = SettingsService(db=None)
    service.update_setting = AsyncMock(return_value=True)
    return service


@pytest.fixture
def gateway():
    gateway = AsyncMock()

    async def initialize(email, amount, reference, return_url=None):
        return Checkout(
            checkout_url=f"https://checkout.paystack.com/{reference}",
            access_code="acc_123",
            reference=reference
        )

    gateway.initialize.side_effect = initialize
    gateway.verify.return_value = verification("7.00")
    gateway.validate_webhook_signature = MagicMock(return_value=True)
    return gateway


@pytest.fixture
def supplier():
    supplier = MagicMock()
    supplier.place_order = AsyncMock(return_value={"success": True, "data": {"order_id": "WN-1001"}})
    supplier.get_balance = AsyncMock(return_value=Balance(balance=Decimal("100.00"), currency="GHS"))
    supplier.list_catalog = AsyncMock(return_value=[])
    supplier.extract_order_id = SupplierService.extract_order_id
    return supplier


@pytest.fixture
def fulfillment(order_store, products, gateway, supplier, settings):
    return FulfillmentService(order_store, products, gateway, supplier, settings)
