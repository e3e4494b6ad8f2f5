# bundleshop/web/server.py
import json
import logging
from typing import Any, Dict, Optional
from aiohttp import web
from pydantic import ValidationError
from ..config import Config
from ..constants import PAYSTACK_SIGNATURE_HEADER, PAYSTACK_SUCCESS_EVENT
from ..models.order import ResultCode, PurchaseRequest, BulkPurchaseRequest
from ..utils.formatters import to_jsonable
from ..utils.messages import Messages
from ..utils.security import bearer_matches

HTTP_STATUS = {
    ResultCode.OK: 200,
    ResultCode.ALREADY_PROCESSED: 200,
    ResultCode.VALIDATION_ERROR: 400,
    ResultCode.SERVICE_DISABLED: 400,
    ResultCode.PAYMENT_FAILED: 400,
    ResultCode.TAMPERED: 400,
    ResultCode.NOT_FOUND: 404,
    ResultCode.INVALID_STATUS: 409,
    ResultCode.INSUFFICIENT_BALANCE: 402,
    ResultCode.GATEWAY_ERROR: 502,
    ResultCode.SUPPLIER_ERROR: 502,
}


class WebServer:
    """HTTP surface: customer checkout API, webhooks and the cron trigger"""

    def __init__(self, fulfillment, orders, reconciliation, settings, gateway,
                 cron_secret: Optional[str] = None):
        self.fulfillment = fulfillment
        self.orders = orders
        self.reconciliation = reconciliation
        self.settings = settings
        self.gateway = gateway
        self.cron_secret = Config.CRON_SECRET if cron_secret is None else cron_secret
        self.logger = logging.getLogger(__name__)
        self._runner: Optional[web.AppRunner] = None
        self.app = self.build_app()

    def build_app(self) -> web.Application:
        app = web.Application()
        app.add_routes([
            web.get('/health', self.health),
            web.get('/api/products', self.list_products),
            web.post('/api/orders/init', self.init_order),
            web.post('/api/orders/bulk-init', self.bulk_init_order),
            web.post('/api/orders/verify', self.verify_order),
            web.get('/api/orders/user/{user_id}', self.user_orders),
            web.post('/webhooks/paystack', self.paystack_webhook),
            web.post('/webhooks/wirenet', self.wirenet_webhook),
            web.get('/webhooks/wirenet', self.wirenet_health),
            web.post('/webhooks/wirenet/settings', self.wirenet_settings_webhook),
            web.get('/cron/reconcile', self.cron_reconcile),
        ])
        return app

    @staticmethod
    def _respond(result: Dict[str, Any], customer_facing: bool = False) -> web.Response:
        status = HTTP_STATUS.get(result.get("code"), 500)
        body = to_jsonable(result)
        if customer_facing and "orders" in result:
            body["orders"] = [Messages.customer_order_view(order) for order in result["orders"]]
        if customer_facing and not result.get("success"):
            body = {
                "success": False,
                "code": body.get("code"),
                "message": Messages.customer_error(result.get("code"))
            }
        return web.json_response(body, status=status)

    @staticmethod
    async def _read_json(request: web.Request) -> Dict[str, Any]:
        try:
            data = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(text=json.dumps({"message": "Invalid JSON"}),
                                     content_type="application/json")
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(text=json.dumps({"message": "Expected a JSON object"}),
                                     content_type="application/json")
        return data

    @staticmethod
    def _invalid(error: ValidationError) -> web.Response:
        return web.json_response(
            {"success": False, "code": ResultCode.VALIDATION_ERROR.value,
             "errors": json.loads(error.json(include_url=False))},
            status=400
        )

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "settings_version": self.settings.current().version,
            "pending_dispatches": self.fulfillment.dispatcher.pending
        })

    async def list_products(self, request: web.Request) -> web.Response:
        snapshot = self.settings.current()
        products = await self.fulfillment.products.get_active_products()
        return web.json_response([
            Messages.customer_product_view(product)
            for product in products if snapshot.is_enabled(product.service_type)
        ])

    async def init_order(self, request: web.Request) -> web.Response:
        data = await self._read_json(request)
        try:
            purchase = PurchaseRequest.model_validate(data)
        except ValidationError as e:
            return self._invalid(e)
        result = await self.fulfillment.initiate_purchase(purchase)
        return self._respond(result, customer_facing=True)

    async def bulk_init_order(self, request: web.Request) -> web.Response:
        data = await self._read_json(request)
        try:
            purchase = BulkPurchaseRequest.model_validate(data)
        except ValidationError as e:
            return self._invalid(e)
        result = await self.fulfillment.initiate_bulk_purchase(purchase)
        return self._respond(result, customer_facing=True)

    async def verify_order(self, request: web.Request) -> web.Response:
        data = await self._read_json(request)
        reference = str(data.get("reference") or "").strip()
        if not reference:
            return web.json_response({"success": False, "code": ResultCode.VALIDATION_ERROR.value,
                                      "message": "reference is required"}, status=400)
        result = await self.fulfillment.confirm_payment(reference)
        return self._respond(result, customer_facing=True)

    async def user_orders(self, request: web.Request) -> web.Response:
        try:
            user_id = int(request.match_info['user_id'])
        except ValueError:
            raise web.HTTPNotFound()
        orders = await self.orders.get_user_orders(user_id)
        return web.json_response([Messages.customer_order_view(order) for order in orders])

    async def paystack_webhook(self, request: web.Request) -> web.Response:
        # Signature covers the bytes exactly as sent
        raw_body = await request.read()
        signature = request.headers.get(PAYSTACK_SIGNATURE_HEADER)
        if not self.gateway.validate_webhook_signature(raw_body, signature):
            self.logger.warning("Paystack webhook with invalid signature rejected")
            return web.json_response({"message": "Invalid signature"}, status=401)

        try:
            event = json.loads(raw_body)
        except ValueError:
            return web.json_response({"message": "Invalid JSON"}, status=400)
        if not isinstance(event, dict):
            return web.json_response({"message": "Invalid JSON"}, status=400)

        event_name = event.get("event")
        data = event.get("data")
        reference = data.get("reference") if isinstance(data, dict) else None
        self.logger.info(f"Paystack webhook received: {event_name} ref={reference}")

        if event_name == PAYSTACK_SUCCESS_EVENT and reference:
            result = await self.fulfillment.confirm_payment(reference)
            self.logger.info(f"Paystack webhook {reference}: {result['code'].value}")
        return web.json_response({"received": True})

    async def wirenet_webhook(self, request: web.Request) -> web.Response:
        try:
            payload = await request.json()
        except ValueError:
            self.logger.error("WireNet webhook with unreadable body")
            return web.json_response({"received": True, "error": "Invalid JSON"})
        self.logger.info(f"WireNet webhook received: {payload}")
        if not isinstance(payload, dict):
            return web.json_response({"received": True, "action": "ignored"})
        result = await self.fulfillment.handle_supplier_webhook(payload)
        return web.json_response(to_jsonable(result))

    async def wirenet_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "WireNet webhook endpoint active"})

    async def wirenet_settings_webhook(self, request: web.Request) -> web.Response:
        try:
            payload = await request.json()
        except ValueError:
            return web.json_response({"received": True, "error": "Invalid JSON"})
        try:
            snapshot = await self.settings.apply_supplier_settings(payload if isinstance(payload, dict) else {})
        except Exception:
            self.logger.exception(f"WireNet settings webhook failed: {payload}")
            return web.json_response({"received": True, "error": "Processing error logged"})
        return web.json_response({"received": True, "settings_version": snapshot.version})

    async def cron_reconcile(self, request: web.Request) -> web.Response:
        if not bearer_matches(self.cron_secret, request.headers.get("Authorization")):
            self.logger.warning("Cron reconciliation: unauthorized attempt")
            return web.json_response({"message": "Unauthorized"}, status=401)

        result = await self.reconciliation.sweep(
            Config.STUCK_AFTER_MINUTES, Config.AUTO_FULFILL_AFTER_MINUTES
        )
        return web.json_response({"success": True, **result})

    async def start(self, host: Optional[str] = None, port: Optional[int] = None):
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host or Config.WEB_HOST, port or Config.WEB_PORT)
        await site.start()
        self.logger.info(f"Web server listening on {host or Config.WEB_HOST}:{port or Config.WEB_PORT}")

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
