# bundleshop/handlers/user_handlers.py
from telegram import Update
from telegram.ext import ContextTypes
from .base_handler import BaseHandler

class UserHandler(BaseHandler):
    """Customer commands: order tracking only"""
    def __init__(self, orders):
        super().__init__()
        self.orders = orders

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user = update.effective_user
        await update.message.reply_text(
            f"Hello {user.first_name}! 👋\n\n"
            "Use /track <payment reference> to follow your data bundle order."
        )

    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(
            "/track <reference> - status of the orders paid with that reference"
        )

    async def track(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not context.args:
            await update.message.reply_text("Usage: /track <payment reference>")
            return

        orders = await self.orders.get_orders_by_reference(context.args[0])
        if not orders:
            await update.message.reply_text("❌ No order found for that reference.")
            return

        lines = [
            f"#{order.id} {order.service_type.value} → {order.beneficiary_phone}: "
            f"{self.messages.customer_status(order)}"
            for order in orders
        ]
        await update.message.reply_text("\n".join(lines))
