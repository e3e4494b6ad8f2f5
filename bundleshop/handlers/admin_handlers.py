# bundleshop/handlers/admin_handlers.py
import logging
from telegram import Update
from telegram.ext import ContextTypes
from .base_handler import BaseHandler, admin_only
from ..config import Config
from ..constants import ORDERS_PAGE_SIZE
from ..exceptions import SupplierError
from ..models.order import FulfillmentStatus, PaymentStatus, ServiceType

class AdminHandler(BaseHandler):
    """Operator console"""

    def __init__(self, fulfillment, orders, reconciliation, settings):
        super().__init__()
        self.fulfillment = fulfillment
        self.orders = orders
        self.reconciliation = reconciliation
        self.settings = settings
        self.logger = logging.getLogger(__name__)

    @admin_only
    async def admin_panel(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        count = await self.reconciliation.stuck_count(Config.STUCK_AFTER_MINUTES)
        await update.message.reply_text(
            "🔧 Operator panel\n\n"
            f"Stuck orders: {count}\n"
            f"Settings version: {self.settings.current().version}\n\n"
            "/orders [STATUS] · /order <id> · /retry <id>\n"
            "/setstatus <id> fulfillment|payment <STATUS>\n"
            "/sweep [stuck_min] [auto_min] · /stuck · /balance · /catalog\n"
            "/toggle <SERVICE> on|off",
            reply_markup=self.keyboards.admin_menu()
        )

    @admin_only
    async def list_orders(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        params = {'limit': ORDERS_PAGE_SIZE}
        if context.args:
            try:
                params['fulfillment_status'] = FulfillmentStatus(context.args[0].upper())
            except ValueError:
                await update.message.reply_text(
                    f"Unknown status. Use one of: {', '.join(s.value for s in FulfillmentStatus)}"
                )
                return
        orders = await self.orders.search_orders(params)
        await self.reply(update, self.messages.format_order_list(orders))

    @admin_only
    async def show_order(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        order_id = self._order_id_arg(context)
        if order_id is None:
            await update.message.reply_text("Usage: /order <id>")
            return
        await self._send_order(update, order_id)

    async def _send_order(self, update: Update, order_id: int):
        order = await self.orders.get_order(order_id)
        if not order:
            await self.reply(update, "❌ Order not found.")
            return
        await self.reply(
            update,
            self.messages.format_order(order),
            reply_markup=self.keyboards.order_actions(order)
        )

    @admin_only
    async def retry_order(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        order_id = self._order_id_arg(context)
        if order_id is None:
            await update.message.reply_text("Usage: /retry <id>")
            return
        await self._retry(update, order_id)

    async def _retry(self, update: Update, order_id: int):
        self.logger.info(f"Operator {update.effective_user.id} retrying order {order_id}")
        result = await self.fulfillment.retry_order(order_id)
        await self.reply(update, self.messages.format_retry(result))

    @admin_only
    async def set_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        usage = "Usage: /setstatus <id> fulfillment|payment <STATUS>"
        if len(context.args or []) != 3 or not context.args[0].isdigit():
            await update.message.reply_text(usage)
            return

        order_id, axis, value = int(context.args[0]), context.args[1].lower(), context.args[2].upper()
        try:
            if axis == "fulfillment":
                kwargs = {'fulfillment_status': FulfillmentStatus(value)}
            elif axis == "payment":
                kwargs = {'payment_status': PaymentStatus(value)}
            else:
                await update.message.reply_text(usage)
                return
        except ValueError:
            await update.message.reply_text(f"❌ Invalid {axis} status: {value}")
            return

        result = await self.fulfillment.force_status(
            order_id, operator=update.effective_user.id, **kwargs
        )
        if not result["success"]:
            await update.message.reply_text(f"❌ {result['error']}")
            return
        await update.message.reply_text(
            f"✅ Order #{order_id}: {result['old_status'].value} → {result['new_status'].value}"
        )

    @admin_only
    async def sweep(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = [a for a in (context.args or []) if a.isdigit()]
        stuck = int(args[0]) if args else Config.STUCK_AFTER_MINUTES
        auto = int(args[1]) if len(args) > 1 else None
        self.logger.info(f"Operator {update.effective_user.id} triggered reconciliation")
        result = await self.reconciliation.sweep(stuck, auto)
        await self.reply(update, self.messages.format_sweep(result))

    @admin_only
    async def stuck(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        count = await self.reconciliation.stuck_count(Config.STUCK_AFTER_MINUTES)
        await self.reply(update, f"⏳ Stuck orders (> {Config.STUCK_AFTER_MINUTES} min): {count}")

    @admin_only
    async def balance(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        balance = await self.fulfillment.supplier_balance()
        await self.reply(update, self.messages.format_balance(balance))

    @admin_only
    async def catalog(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            items = await self.fulfillment.supplier.list_catalog()
        except SupplierError as e:
            self.logger.error(f"Catalog fetch failed: {e}")
            await update.message.reply_text("❌ Could not load the supplier catalog.")
            return
        # Telegram caps messages at 4096 characters
        await update.message.reply_text(self.messages.format_catalog(items)[:4000])

    @admin_only
    async def toggle_service(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = context.args or []
        if len(args) != 2 or args[1].lower() not in ("on", "off"):
            await update.message.reply_text("Usage: /toggle <SERVICE> on|off")
            return
        try:
            service_type = ServiceType(args[0].upper())
        except ValueError:
            await update.message.reply_text(
                f"Unknown service. Use one of: {', '.join(s.value for s in ServiceType)}"
            )
            return

        snapshot = await self.settings.set_service_enabled(service_type, args[1].lower() == "on")
        await update.message.reply_text(
            f"✅ {service_type.value} {'enabled' if snapshot.is_enabled(service_type) else 'disabled'} "
            f"(settings v{snapshot.version})"
        )

    @admin_only
    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        data = update.callback_query.data
        if data.startswith("retry_"):
            await self._retry(update, int(data.split("_", 1)[1]))
        elif data.startswith("order_"):
            await self._send_order(update, int(data.split("_", 1)[1]))
        elif data == "admin_sweep":
            result = await self.reconciliation.sweep(Config.STUCK_AFTER_MINUTES, None)
            await self.reply(update, self.messages.format_sweep(result))
        elif data == "admin_stuck":
            count = await self.reconciliation.stuck_count(Config.STUCK_AFTER_MINUTES)
            await self.reply(update, f"⏳ Stuck orders: {count}")
        elif data == "admin_balance":
            await self.reply(update, self.messages.format_balance(await self.fulfillment.supplier_balance()))
        elif data == "admin_failed":
            orders = await self.orders.search_orders({
                'fulfillment_status': FulfillmentStatus.FAILED, 'limit': ORDERS_PAGE_SIZE
            })
            await self.reply(update, self.messages.format_order_list(orders))
        else:
            await update.callback_query.answer()

    @staticmethod
    def _order_id_arg(context: ContextTypes.DEFAULT_TYPE):
        if context.args and context.args[0].isdigit():
            return int(context.args[0])
        return None
