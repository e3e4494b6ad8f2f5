# bundleshop/services/fulfillment_service.py
import asyncio
import logging
import time
import uuid
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Optional, Set
from pydantic import ValidationError
from ..config import Config
from ..constants import (
    TAMPER_TOLERANCE,
    SINGLE_REFERENCE_PREFIX,
    BULK_REFERENCE_PREFIX,
    AUTO_FULFILLED_PREFIX,
)
from ..exceptions import GatewayError, SupplierError, OrderValidationError, ServiceDisabledError
from ..models.order import (
    Order,
    PaymentStatus,
    FulfillmentStatus,
    ResultCode,
    PurchaseRequest,
    BulkPurchaseRequest,
    SupplierWebhook,
    RETRYABLE_STATUSES,
    IN_FLIGHT_STATUSES,
    WEBHOOK_UPDATABLE_STATUSES,
)
from ..models.product import Balance, Product
from ..models.settings import ServiceSettings
from .supplier_service import map_supplier_status


def _result(success: bool, code: ResultCode, **extra) -> Dict[str, Any]:
    return {"success": success, "code": code, **extra}


class FulfillmentDispatcher:
    """Owns the background tasks that place supplier orders after payment.

    Failures surface through the done-callback log instead of vanishing, and
    ``drain()`` lets shutdown (and tests) wait for in-flight work.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, work: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(work)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            self.logger.warning(f"Dispatch {task.get_name()} was cancelled; orders stay QUEUED for the sweeper")
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Dispatch {task.get_name()} crashed", exc_info=error)

    async def drain(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class FulfillmentService:
    """Order lifecycle state machine.

    Every status change goes through here: customer purchases, payment
    confirmation (client return trip or gateway webhook), supplier webhooks,
    operator retries and overrides, and the sweeper's auto-fulfill.
    """

    def __init__(self, orders, products, gateway, supplier, settings,
                 dispatcher: Optional[FulfillmentDispatcher] = None):
        self.orders = orders
        self.products = products
        self.gateway = gateway
        self.supplier = supplier
        self.settings = settings
        self.dispatcher = dispatcher or FulfillmentDispatcher()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------ purchase

    @staticmethod
    def _new_reference(prefix: str, user_id: int) -> str:
        return f"{prefix}_{int(time.time() * 1000)}_{user_id}_{uuid.uuid4().hex[:6]}"

    async def _freeze_product(self, product_id: int, snapshot: ServiceSettings) -> Product:
        product = await self.products.get_product(product_id)
        if not product or not product.is_active:
            raise OrderValidationError(f"Product {product_id} not found")
        if not snapshot.is_enabled(product.service_type):
            raise ServiceDisabledError(f"{product.service_type.value} is currently unavailable")
        if not product.supplier_package_id:
            raise OrderValidationError(f"Product {product_id} is not linked to a supplier package")
        return product

    @staticmethod
    def _order_row(user_id: int, product: Product, phone: str, reference: str,
                   request_id: str) -> Dict[str, Any]:
        return {
            'user_id': user_id,
            'service_type': product.service_type.value,
            'amount': product.price,
            'cost_price': product.cost_price,
            'beneficiary_phone': phone,
            'payment_reference': reference,
            'supplier_request_id': request_id,
            'supplier_package_id': product.supplier_package_id,
        }

    async def _start_checkout(self, email: str, orders: List[Order], reference: str) -> Dict[str, Any]:
        total = sum((o.amount for o in orders), Decimal("0"))
        try:
            checkout = await self.gateway.initialize(
                email, total, reference, f"{Config.CLIENT_URL.rstrip('/')}/verify"
            )
        except GatewayError as e:
            # Orders stay PENDING_PAYMENT; nothing to undo
            self.logger.error(f"Checkout init failed for {reference}: {e.message} {e.body}")
            return _result(False, ResultCode.GATEWAY_ERROR, error="Payment initialization failed",
                           payment_reference=reference)

        return _result(
            True, ResultCode.OK,
            orders=orders,
            payment_reference=reference,
            checkout_url=checkout.checkout_url,
            access_code=checkout.access_code,
            total_amount=total,
            count=len(orders)
        )

    async def initiate_purchase(self, request: PurchaseRequest) -> Dict[str, Any]:
        """Create one pending order and a hosted checkout for it"""
        snapshot = self.settings.current()
        try:
            product = await self._freeze_product(request.product_id, snapshot)
        except ServiceDisabledError as e:
            return _result(False, ResultCode.SERVICE_DISABLED, error=str(e))
        except OrderValidationError as e:
            return _result(False, ResultCode.VALIDATION_ERROR, error=str(e))

        reference = self._new_reference(SINGLE_REFERENCE_PREFIX, request.user_id)
        orders = await self.orders.create_orders([
            self._order_row(request.user_id, product, request.beneficiary_phone, reference, reference)
        ])
        self.logger.info(f"Order {orders[0].id} created: ref={reference} amount={product.price}")
        return await self._start_checkout(request.email, orders, reference)

    async def initiate_bulk_purchase(self, request: BulkPurchaseRequest) -> Dict[str, Any]:
        """N orders funded by one payment; any bad item rejects the batch"""
        if not request.orders:
            return _result(False, ResultCode.VALIDATION_ERROR, error="No orders provided")

        snapshot = self.settings.current()
        reference = self._new_reference(BULK_REFERENCE_PREFIX, request.user_id)
        rows = []
        try:
            for n, item in enumerate(request.orders, start=1):
                product = await self._freeze_product(item.product_id, snapshot)
                rows.append(self._order_row(
                    request.user_id, product, item.beneficiary_phone, reference, f"{reference}-{n}"
                ))
        except ServiceDisabledError as e:
            return _result(False, ResultCode.SERVICE_DISABLED, error=str(e))
        except OrderValidationError as e:
            return _result(False, ResultCode.VALIDATION_ERROR, error=str(e))

        orders = await self.orders.create_orders(rows)
        self.logger.info(f"Bulk purchase {reference}: {len(orders)} orders created")
        return await self._start_checkout(request.email, orders, reference)

    # ------------------------------------------------------------------ payment

    async def confirm_payment(self, reference: str) -> Dict[str, Any]:
        """Mark the orders on ``reference`` paid and hand them to the supplier.

        Safe to replay: once the orders are PAID, later calls return
        ALREADY_PROCESSED without writing or dispatching anything.
        """
        orders = await self.orders.get_orders_by_reference(reference)
        if not orders:
            return _result(False, ResultCode.NOT_FOUND, error="Order not found")

        first = orders[0]
        if first.payment_status == PaymentStatus.PAID:
            return _result(True, ResultCode.ALREADY_PROCESSED,
                           message="Orders already processed", count=len(orders))
        if first.payment_status != PaymentStatus.PENDING:
            return _result(False, ResultCode.PAYMENT_FAILED,
                           error=f"Payment is {first.payment_status.value}", count=len(orders))

        try:
            verification = await self.gateway.verify(reference)
        except GatewayError as e:
            self.logger.error(f"Verify failed for {reference}: {e.message} {e.body}")
            return _result(False, ResultCode.GATEWAY_ERROR, error="Payment verification failed")

        if not verification.succeeded:
            self.logger.info(f"Payment {reference} not successful: {verification.gateway_status}")
            return _result(False, ResultCode.PAYMENT_FAILED, error="Payment verification failed")

        expected = sum((o.amount for o in orders), Decimal("0"))
        paid = verification.amount_paid
        if abs(expected - paid) > TAMPER_TOLERANCE:
            reason = f"Amount mismatch: expected {expected}, paid {paid}"
            failed = await self.orders.fail_payment(reference, reason)
            self.logger.critical(
                f"Possible tampering on {reference}: {reason}; {len(failed)} orders failed"
            )
            return _result(False, ResultCode.TAMPERED, error="Payment amount mismatch",
                           expected=expected, paid=paid, count=len(failed))

        claimed = await self.orders.claim_payment(reference)
        if not claimed:
            # Someone else confirmed between our read and the update
            return _result(True, ResultCode.ALREADY_PROCESSED,
                           message="Orders already processed", count=len(orders))

        self.dispatcher.submit(self.fulfill_orders(claimed), name=f"fulfill-{reference}")
        self.logger.info(f"Payment {reference} confirmed ({paid}); {len(claimed)} orders queued")
        return _result(True, ResultCode.OK,
                       message="Payment successful. Orders are processing.", count=len(claimed))

    async def fulfill_orders(self, orders: List[Order]) -> Dict[str, List[int]]:
        """Place each order with the supplier; one failure never stops the rest"""
        outcome = {"processing": [], "failed": []}
        for order in orders:
            try:
                ack = await self.supplier.place_order(
                    order.service_type, order.supplier_package_id,
                    order.beneficiary_phone, order.supplier_request_id
                )
            except SupplierError as e:
                self.logger.error(f"Fulfillment failed for order {order.id}: {e.message} {e.body}")
                await self.orders.transition(
                    order.id, FulfillmentStatus.FAILED,
                    from_statuses=(FulfillmentStatus.QUEUED, FulfillmentStatus.PAID),
                    last_error=e.message
                )
                outcome["failed"].append(order.id)
                continue
            except Exception as e:
                self.logger.exception(f"Unexpected error placing order {order.id}")
                await self.orders.transition(
                    order.id, FulfillmentStatus.FAILED,
                    from_statuses=(FulfillmentStatus.QUEUED, FulfillmentStatus.PAID),
                    last_error=repr(e)
                )
                outcome["failed"].append(order.id)
                continue

            updated = await self.orders.transition(
                order.id, FulfillmentStatus.PROCESSING,
                from_statuses=(FulfillmentStatus.QUEUED, FulfillmentStatus.PAID),
                supplier_reference=self.supplier.extract_order_id(ack),
                supplier_response=ack
            )
            if updated is None:
                self.logger.info(f"Order {order.id} moved on before placement was recorded")
            outcome["processing"].append(order.id)

        self.logger.info(
            f"Dispatch done: {len(outcome['processing'])} processing, {len(outcome['failed'])} failed"
        )
        return outcome

    # ------------------------------------------------------------------ retry

    async def supplier_balance(self) -> Optional[Balance]:
        """Supplier balance, or None when it cannot be fetched"""
        try:
            return await self.supplier.get_balance()
        except SupplierError as e:
            self.logger.warning(f"Balance check failed: {e.message}")
            return None

    async def retry_order(self, order_id: int) -> Dict[str, Any]:
        """Operator-triggered resubmission of one order"""
        order = await self.orders.get_order(order_id)
        if not order:
            return _result(False, ResultCode.NOT_FOUND, error="Order not found")

        if order.fulfillment_status not in RETRYABLE_STATUSES:
            return _result(False, ResultCode.INVALID_STATUS,
                           error=f"Cannot retry order in status {order.fulfillment_status.value}",
                           status=order.fulfillment_status)
        if order.payment_status != PaymentStatus.PAID:
            return _result(False, ResultCode.INVALID_STATUS,
                           error=f"Cannot retry order with payment {order.payment_status.value}",
                           status=order.fulfillment_status)

        balance = await self.supplier_balance()
        if balance is not None and balance.balance < order.frozen_cost:
            return _result(False, ResultCode.INSUFFICIENT_BALANCE,
                           error="Supplier balance too low", balance=balance,
                           required=order.frozen_cost)

        claimed = await self.orders.transition(
            order.id, FulfillmentStatus.PROCESSING, from_statuses=RETRYABLE_STATUSES
        )
        if claimed is None:
            current = await self.orders.get_order(order.id)
            status = current.fulfillment_status if current else order.fulfillment_status
            return _result(False, ResultCode.INVALID_STATUS,
                           error=f"Cannot retry order in status {status.value}", status=status)

        try:
            ack = await self.supplier.place_order(
                order.service_type, order.supplier_package_id,
                order.beneficiary_phone, order.supplier_request_id
            )
        except SupplierError as e:
            await self.orders.transition(
                order.id, FulfillmentStatus.PAID,
                from_statuses=(FulfillmentStatus.PROCESSING,),
                last_error=e.message
            )
            self.logger.error(f"Retry of order {order.id} failed: {e.message} {e.body}")
            if e.is_insufficient_balance:
                return _result(False, ResultCode.INSUFFICIENT_BALANCE, error=e.message,
                               balance=await self.supplier_balance())
            return _result(False, ResultCode.SUPPLIER_ERROR, error=e.message)
        except Exception as e:
            self.logger.exception(f"Unexpected error retrying order {order.id}")
            await self.orders.transition(
                order.id, FulfillmentStatus.PAID,
                from_statuses=(FulfillmentStatus.PROCESSING,),
                last_error=repr(e)
            )
            return _result(False, ResultCode.SUPPLIER_ERROR, error=repr(e))

        updated = await self.orders.transition(
            order.id, FulfillmentStatus.FULFILLED,
            from_statuses=(FulfillmentStatus.PROCESSING,),
            supplier_reference=self.supplier.extract_order_id(ack),
            supplier_response=ack,
            last_error=None
        )
        self.logger.info(f"Order {order.id} retried successfully")
        return _result(True, ResultCode.OK, order=updated or await self.orders.get_order(order.id))

    # ------------------------------------------------------------------ supplier webhook

    async def handle_supplier_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a supplier status update. Always acknowledges."""
        try:
            webhook = SupplierWebhook.model_validate(payload)
        except ValidationError as e:
            self.logger.error(f"Supplier webhook rejected: {e.errors()} payload={payload}")
            return {"received": True, "action": "ignored"}

        try:
            return await self._apply_supplier_update(webhook)
        except Exception:
            self.logger.exception(f"Supplier webhook processing error: {payload}")
            return {"received": True, "error": "Processing error logged"}

    async def _find_webhook_order(self, reference: str) -> Optional[Order]:
        order = await self.orders.get_order_by_request_id(reference)
        if order:
            return order
        matches = await self.orders.get_orders_by_reference(reference)
        return matches[0] if len(matches) == 1 else None

    async def _apply_supplier_update(self, webhook: SupplierWebhook) -> Dict[str, Any]:
        data = webhook.data
        order = await self._find_webhook_order(data.payment_reference)
        if not order:
            self.logger.warning(f"Supplier webhook: no order for reference {data.payment_reference}")
            return {"received": True, "action": "unknown_reference"}

        new_status = map_supplier_status(data.status)
        supplier_id = data.order_id or None
        id_changed = bool(supplier_id) and supplier_id != order.supplier_reference

        if new_status and new_status != order.fulfillment_status:
            if order.fulfillment_status not in WEBHOOK_UPDATABLE_STATUSES:
                self.logger.warning(
                    f"Order {order.id}: ignoring supplier status {data.status} while {order.fulfillment_status.value}"
                )
            else:
                fields = {'supplier_reference': supplier_id} if id_changed else {}
                updated = await self.orders.transition(
                    order.id, new_status, from_statuses=(order.fulfillment_status,), **fields
                )
                if updated:
                    self.logger.info(
                        f"Order {order.id} updated: {order.fulfillment_status.value} -> {new_status.value} "
                        f"(supplier order {supplier_id})"
                    )
                    return {"received": True, "order_id": order.id, "new_status": new_status}
                self.logger.info(f"Order {order.id} changed concurrently; webhook status not applied")

        if id_changed:
            await self.orders.set_supplier_reference(order.id, supplier_id)
        self.logger.info(f"Order {order.id} status unchanged: {order.fulfillment_status.value}")
        return {"received": True, "order_id": order.id, "new_status": order.fulfillment_status}

    # ------------------------------------------------------------------ sweeper / operator

    async def auto_fulfill(self, order: Order) -> Optional[Order]:
        """Sweeper path: stamp FULFILLED only if nobody touched the order since it was read"""
        return await self.orders.transition(
            order.id, FulfillmentStatus.FULFILLED,
            from_statuses=IN_FLIGHT_STATUSES,
            expected_updated_at=order.updated_at or order.created_at,
            supplier_reference=f"{AUTO_FULFILLED_PREFIX}_{int(time.time() * 1000)}"
        )

    async def force_status(self, order_id: int,
                           fulfillment_status: Optional[FulfillmentStatus] = None,
                           payment_status: Optional[PaymentStatus] = None,
                           operator: Any = None) -> Dict[str, Any]:
        """Operator override; either axis may be set"""
        if fulfillment_status is None and payment_status is None:
            return _result(False, ResultCode.VALIDATION_ERROR, error="No status given")

        order = await self.orders.get_order(order_id)
        if not order:
            return _result(False, ResultCode.NOT_FOUND, error="Order not found")

        updated = await self.orders.force_status(order_id, fulfillment_status, payment_status)
        self.logger.warning(
            f"Operator {operator} updated order {order_id}: "
            f"{order.payment_status.value}/{order.fulfillment_status.value} -> "
            f"{updated.payment_status.value}/{updated.fulfillment_status.value}"
        )
        return _result(True, ResultCode.OK, order=updated,
                       old_status=order.fulfillment_status, new_status=updated.fulfillment_status)
