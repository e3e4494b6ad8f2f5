# bundleshop/utils/keyboards.py
from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from ..models.order import Order, RETRYABLE_STATUSES, PaymentStatus

class Keyboards:
    @staticmethod
    def order_actions(order: Order) -> InlineKeyboardMarkup:
        """Buttons under an operator's order view"""
        keyboard = []
        if order.fulfillment_status in RETRYABLE_STATUSES and order.payment_status == PaymentStatus.PAID:
            keyboard.append([InlineKeyboardButton("🔁 Retry", callback_data=f"retry_{order.id}")])
        keyboard.append([InlineKeyboardButton("🔄 Refresh", callback_data=f"order_{order.id}")])
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def admin_menu() -> InlineKeyboardMarkup:
        keyboard = [
            [InlineKeyboardButton("🧹 Run sweep", callback_data="admin_sweep"),
             InlineKeyboardButton("⏳ Stuck orders", callback_data="admin_stuck")],
            [InlineKeyboardButton("💼 Supplier balance", callback_data="admin_balance"),
             InlineKeyboardButton("❌ Failed orders", callback_data="admin_failed")],
        ]
        return InlineKeyboardMarkup(keyboard)
