# main.py
import asyncio
import logging
from bundleshop.bot import DataBundleBot
from bundleshop.config import Config, setup_logging
from bundleshop.database.database import Database
from bundleshop.services.order_service import OrderService
from bundleshop.services.product_service import ProductService
from bundleshop.services.payment_service import PaymentService
from bundleshop.services.supplier_service import SupplierService
from bundleshop.services.settings_service import SettingsService
from bundleshop.services.fulfillment_service import FulfillmentService
from bundleshop.services.reconciliation_service import ReconciliationService
from bundleshop.web.server import WebServer

async def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)
    Config.validate()

    db = Database()
    await db.connect()

    orders = OrderService(db)
    settings = SettingsService(db)
    await settings.load()
    fulfillment = FulfillmentService(
        orders=orders,
        products=ProductService(db),
        gateway=PaymentService(),
        supplier=SupplierService(),
        settings=settings
    )
    reconciliation = ReconciliationService(orders, fulfillment)
    web_server = WebServer(fulfillment, orders, reconciliation, settings, fulfillment.gateway)
    bot = DataBundleBot(fulfillment, orders, reconciliation, settings)

    try:
        await web_server.start()
        reconciliation.start()
        await bot.start()
        logger.info("Shop is running")
        await asyncio.Event().wait()
    except Exception as e:
        logger.error(f"Error running shop: {e}", exc_info=True)
        raise
    finally:
        await bot.stop()
        await reconciliation.stop()
        await web_server.stop()
        # Let placed orders finish recording before the pool goes away
        await fulfillment.dispatcher.drain()
        await db.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
