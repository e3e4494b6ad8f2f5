# bundleshop/services/payment_service.py
import asyncio
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import aiohttp
from ..config import Config
from ..exceptions import GatewayError
from ..models.payment import Checkout, PaymentVerification
from ..utils.security import verify_signature


def to_minor_units(amount: Decimal) -> int:
    """GHS -> pesewas"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Any) -> Decimal:
    return (Decimal(str(amount or 0)) / 100).quantize(Decimal("0.01"))


class PaymentService:
    """Paystack adapter: hosted checkout, verification and webhook signatures"""

    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: int = 20):
        self.secret_key = secret_key if secret_key is not None else Config.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or Config.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logging.getLogger(__name__)

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json"
        }

    async def _request(self, method: str, path: str, **kwargs) -> tuple:
        if not self.secret_key:
            raise GatewayError("Paystack secret key is missing")
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=self._headers,
                    **kwargs
                ) as response:
                    text = await response.text(errors="replace")
                    try:
                        body = json.loads(text)
                    except ValueError:
                        body = {"message": text}
                    return response.status, body if isinstance(body, dict) else {"message": body}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Paystack {method} {path} failed: {e!r}")
            raise GatewayError(f"Payment gateway unreachable: {e!r}") from e

    async def initialize(self, payer_email: str, amount: Decimal, reference: str,
                         return_url: Optional[str] = None) -> Checkout:
        """Start a hosted checkout for ``amount`` (major units)"""
        payload = {
            "email": payer_email,
            "amount": to_minor_units(amount),
            "reference": reference,
        }
        if return_url:
            payload["callback_url"] = return_url

        status, body = await self._request("POST", "/transaction/initialize", json=payload)
        data = body.get("data") or {}
        if status != 200 or not body.get("status") or not data.get("authorization_url"):
            self.logger.error(f"Paystack init error for {reference}: {status} {body}")
            raise GatewayError("Payment initialization failed", status=status, body=body)

        return Checkout(
            checkout_url=data["authorization_url"],
            access_code=data.get("access_code"),
            reference=data.get("reference") or reference
        )

    async def verify(self, reference: str) -> PaymentVerification:
        """Ask the gateway how a payment ended.

        An unknown or abandoned payment is ``succeeded=False``; only transport and
        auth problems raise.
        """
        status, body = await self._request("GET", f"/transaction/verify/{reference}")

        if status in (401, 403) or status >= 500:
            self.logger.error(f"Paystack verification error for {reference}: {status} {body}")
            raise GatewayError("Payment verification failed", status=status, body=body)

        data = body.get("data") or {}
        if status != 200 or not isinstance(data, dict):
            return PaymentVerification(succeeded=False, gateway_status=body.get("message"), raw=body)

        gateway_status = data.get("status")
        return PaymentVerification(
            succeeded=bool(body.get("status")) and gateway_status == "success",
            amount_paid=from_minor_units(data.get("amount")),
            currency=data.get("currency"),
            gateway_status=gateway_status,
            raw=data
        )

    def validate_webhook_signature(self, raw_body: bytes, signature_header: Optional[str]) -> bool:
        """HMAC-SHA512 of the raw request bytes, keyed with the secret key"""
        return verify_signature(self.secret_key, raw_body, signature_header)
