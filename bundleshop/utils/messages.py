# bundleshop/utils/messages.py
from typing import Any, Dict, List, Optional
from ..models.order import Order, PaymentStatus, FulfillmentStatus, ResultCode
from ..models.product import Balance, CatalogItem, Product
from ..utils.formatters import format_price, format_datetime

STATUS_EMOJI = {
    FulfillmentStatus.PENDING_PAYMENT: "💳",
    FulfillmentStatus.PAID: "✅",
    FulfillmentStatus.QUEUED: "⏳",
    FulfillmentStatus.PROCESSING: "🔄",
    FulfillmentStatus.FULFILLED: "📦",
    FulfillmentStatus.FAILED: "❌",
}

class Messages:
    @staticmethod
    def customer_status(order: Order) -> str:
        """The only statuses a customer ever sees"""
        if order.payment_status in (PaymentStatus.FAILED, PaymentStatus.REFUNDED):
            return "payment failed"
        if order.fulfillment_status == FulfillmentStatus.PENDING_PAYMENT:
            return "awaiting payment"
        if order.fulfillment_status == FulfillmentStatus.FULFILLED:
            return "delivered"
        return "processing"

    @staticmethod
    def customer_order_view(order: Order) -> Dict[str, Any]:
        return {
            "id": order.id,
            "service_type": order.service_type.value,
            "amount": f"{order.amount:.2f}",
            "beneficiary_phone": order.beneficiary_phone,
            "payment_reference": order.payment_reference,
            "status": Messages.customer_status(order),
            "created_at": order.created_at.isoformat(),
        }

    @staticmethod
    def customer_product_view(product: Product) -> Dict[str, Any]:
        return {
            "id": product.id,
            "name": product.name,
            "service_type": product.service_type.value,
            "data_amount": product.data_amount,
            "price": f"{product.price:.2f}",
        }

    @staticmethod
    def customer_error(code: Optional[ResultCode]) -> str:
        if code in (ResultCode.TAMPERED, ResultCode.PAYMENT_FAILED):
            return "Payment failed"
        if code == ResultCode.GATEWAY_ERROR:
            return "Payment could not be processed right now, please try again"
        if code == ResultCode.NOT_FOUND:
            return "Order not found"
        if code == ResultCode.SERVICE_DISABLED:
            return "This network is temporarily unavailable"
        if code == ResultCode.VALIDATION_ERROR:
            return "Invalid order"
        return "Something went wrong"

    @staticmethod
    def format_order(order: Order) -> str:
        """Full operator view of one order"""
        lines = [
            f"🛍 Order #{order.id}",
            "------------------",
            f"📡 {order.service_type.value} → {order.beneficiary_phone}",
            f"💰 {format_price(order.amount)} (cost {format_price(order.frozen_cost)})",
            f"💳 Payment: {order.payment_status.value}",
            f"📊 Fulfillment: {STATUS_EMOJI[order.fulfillment_status]} {order.fulfillment_status.value}",
            f"🔑 Ref: {order.payment_reference}",
            f"🏷 Supplier ref: {order.supplier_reference or '-'}",
            f"🕒 Created: {format_datetime(order.created_at)}",
            f"🕒 Updated: {format_datetime(order.last_touched_at)}",
        ]
        if order.last_error:
            lines.append(f"⚠️ Last error: {order.last_error}")
        return "\n".join(lines)

    @staticmethod
    def format_order_line(order: Order) -> str:
        return (
            f"#{order.id} {STATUS_EMOJI[order.fulfillment_status]} {order.fulfillment_status.value} "
            f"| {order.service_type.value} {order.beneficiary_phone} | {format_price(order.amount)}"
        )

    @staticmethod
    def format_order_list(orders: List[Order]) -> str:
        if not orders:
            return "No orders found."
        return "\n".join(Messages.format_order_line(o) for o in orders)

    @staticmethod
    def format_balance(balance: Optional[Balance]) -> str:
        if balance is None:
            return "⚠️ Supplier balance unavailable right now."
        return f"💼 Supplier balance: {balance.currency} {balance.balance:,.2f}"

    @staticmethod
    def format_retry(result: Dict[str, Any]) -> str:
        code = result["code"]
        if result.get("success"):
            return f"✅ Order #{result['order'].id} fulfilled."
        if code == ResultCode.INSUFFICIENT_BALANCE:
            return (
                "💸 Insufficient supplier balance.\n"
                f"{Messages.format_balance(result.get('balance'))}\n"
                "Top up the supplier wallet, then retry."
            )
        return f"❌ {code.value}: {result.get('error')}"

    @staticmethod
    def format_sweep(result: Dict[str, Any]) -> str:
        text = (
            "🧹 Reconciliation finished\n"
            f"Processed: {result['processed']}\n"
            f"Flagged: {result['flagged']}\n"
            f"Auto-fulfilled: {result['auto_fulfilled']}"
        )
        if result["errors"]:
            text += "\nErrors:\n" + "\n".join(result["errors"])
        return text

    @staticmethod
    def format_catalog(items: List[CatalogItem]) -> str:
        if not items:
            return "Supplier catalog is empty."
        return "\n".join(
            f"{item.service_family} | {item.id} | {item.name} | {item.price:,.2f}"
            for item in items
        )
