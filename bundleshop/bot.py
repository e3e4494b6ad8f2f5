# bundleshop/bot.py
import logging
from telegram.ext import Application, CommandHandler, CallbackQueryHandler
from .config import Config
from .handlers import UserHandler, AdminHandler

class DataBundleBot:
    def __init__(self, fulfillment, orders, reconciliation, settings, token: str = None):
        """Build the Telegram application"""
        self.logger = logging.getLogger(__name__)
        self.application = Application.builder().token(token or Config.TELEGRAM_TOKEN).build()
        self.user_handler = UserHandler(orders)
        self.admin_handler = AdminHandler(fulfillment, orders, reconciliation, settings)
        self.setup_handlers()

    def setup_handlers(self):
        # Customer commands
        self.application.add_handler(CommandHandler("start", self.user_handler.start))
        self.application.add_handler(CommandHandler("help", self.user_handler.help))
        self.application.add_handler(CommandHandler("track", self.user_handler.track))

        # Operator commands
        admin = self.admin_handler
        self.application.add_handler(CommandHandler("admin", admin.admin_panel))
        self.application.add_handler(CommandHandler("orders", admin.list_orders))
        self.application.add_handler(CommandHandler("order", admin.show_order))
        self.application.add_handler(CommandHandler("retry", admin.retry_order))
        self.application.add_handler(CommandHandler("setstatus", admin.set_status))
        self.application.add_handler(CommandHandler("sweep", admin.sweep))
        self.application.add_handler(CommandHandler("stuck", admin.stuck))
        self.application.add_handler(CommandHandler("balance", admin.balance))
        self.application.add_handler(CommandHandler("catalog", admin.catalog))
        self.application.add_handler(CommandHandler("toggle", admin.toggle_service))
        self.application.add_handler(
            CallbackQueryHandler(admin.handle_callback, pattern=r"^(retry_|order_|admin_)")
        )

    async def start(self):
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()
        self.logger.info("Telegram bot polling")

    async def stop(self):
        if self.application.updater.running:
            await self.application.updater.stop()
        if self.application.running:
            await self.application.stop()
        await self.application.shutdown()
