# bundleshop/services/supplier_service.py
import asyncio
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Dict, List, Optional
import aiohttp
from ..config import Config
from ..constants import (
    SUPPLIER_SERVICE_MAP,
    SUPPLIER_FULFILLED_STATUSES,
    SUPPLIER_FAILED_STATUSES,
    SUPPLIER_PROCESSING_STATUSES,
    INSUFFICIENT_BALANCE_MARKERS,
)
from ..exceptions import SupplierError, UnknownServiceType
from ..models.order import FulfillmentStatus, ServiceType
from ..models.product import Balance, CatalogItem

# Every supplier status word maps to exactly one internal state
SUPPLIER_STATUS_TABLE: Dict[str, FulfillmentStatus] = {
    **{s: FulfillmentStatus.FULFILLED for s in SUPPLIER_FULFILLED_STATUSES},
    **{s: FulfillmentStatus.FAILED for s in SUPPLIER_FAILED_STATUSES},
    **{s: FulfillmentStatus.PROCESSING for s in SUPPLIER_PROCESSING_STATUSES},
}


def map_supplier_status(status: Optional[str]) -> Optional[FulfillmentStatus]:
    """Supplier status -> fulfillment status, or None to leave the order as is"""
    if not status:
        return None
    key = str(status).strip().upper().replace("-", "_").replace(" ", "_")
    return SUPPLIER_STATUS_TABLE.get(key)


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")


class SupplierService:
    """WireNet wholesale API adapter"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[int] = None):
        self.api_key = api_key if api_key is not None else Config.WIRENET_API_KEY
        self.base_url = (base_url or Config.WIRENET_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.SUPPLIER_TIMEOUT_SECONDS)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def supplier_service_id(service_type: str) -> str:
        key = service_type.value if isinstance(service_type, ServiceType) else str(service_type)
        service_id = SUPPLIER_SERVICE_MAP.get(key)
        if not service_id:
            raise UnknownServiceType(key)
        return service_id

    @staticmethod
    def is_insufficient_balance(message: Any, code: Any = None, status: Optional[int] = None) -> bool:
        """Does a supplier error mean our wholesale wallet is empty?"""
        if status == 402:
            return True
        if code and "BALANCE" in str(code).upper():
            return True
        text = str(message or "").lower()
        return any(marker in text for marker in INSUFFICIENT_BALANCE_MARKERS)

    def _error_from_response(self, status: int, body: Any) -> SupplierError:
        if isinstance(body, dict):
            message = body.get("message") or body.get("error") or f"HTTP {status}"
            code = body.get("code") or body.get("error_code")
        else:
            message, code = str(body) or f"HTTP {status}", None
        return SupplierError(
            str(message),
            is_insufficient_balance=self.is_insufficient_balance(message, code, status),
            status=status,
            body=body
        )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method, f"{self.base_url}{path}", headers=headers, **kwargs
                ) as response:
                    text = await response.text(errors="replace")
                    try:
                        body = json.loads(text)
                    except ValueError:
                        body = text
                    if not 200 <= response.status < 300:
                        error = self._error_from_response(response.status, body)
                        self.logger.error(f"WireNet {method} {path} -> {response.status}: {body}")
                        raise error
                    return body
        except asyncio.TimeoutError as e:
            self.logger.error(f"WireNet {method} {path} timed out")
            raise SupplierError("Supplier request timed out") from e
        except aiohttp.ClientError as e:
            self.logger.error(f"WireNet {method} {path} failed: {e!r}")
            raise SupplierError(f"Supplier unreachable: {e!r}") from e

    async def place_order(self, service_type: str, package_id: Optional[str], phone: str,
                          idempotency_key: str) -> Dict[str, Any]:
        """Submit one bundle; returns the supplier's acknowledgment"""
        service_id = self.supplier_service_id(service_type)
        if not package_id:
            raise SupplierError(f"Missing supplier package id for {service_type}")

        payload = {
            "service_id": service_id,
            "package_id": package_id,
            "phone_number": phone,
            "request_id": idempotency_key
        }
        self.logger.info(f"Placing WireNet order: ref={idempotency_key} service={service_id} pkg={package_id}")
        body = await self._request("POST", "/orders", json=payload)
        if isinstance(body, dict) and body.get("success") is False:
            raise self._error_from_response(200, body)
        return body if isinstance(body, dict) else {"raw": body}

    @staticmethod
    def extract_order_id(ack: Dict[str, Any]) -> Optional[str]:
        data = ack.get("data") if isinstance(ack.get("data"), dict) else ack
        order_id = data.get("order_id") or data.get("id") or data.get("reference")
        return str(order_id) if order_id else None

    async def get_balance(self) -> Balance:
        body = await self._request("GET", "/balance")
        data = body.get("data", body) if isinstance(body, dict) else {}
        if not isinstance(data, dict) or "balance" not in data:
            raise SupplierError("Unexpected balance response", body=body)
        return Balance(
            balance=_to_decimal(data["balance"]),
            currency=data.get("currency") or Config.CURRENCY
        )

    @staticmethod
    def _normalize_packages(data: Any) -> List[CatalogItem]:
        """Flat list or {family: [packages]} -> CatalogItems"""
        if isinstance(data, dict):
            pairs = [
                (family, package)
                for family, packages in data.items() if isinstance(packages, list)
                for package in packages
            ]
        elif isinstance(data, list):
            pairs = [(None, package) for package in data]
        else:
            pairs = []

        items = []
        for family, package in pairs:
            if not isinstance(package, dict) or package.get("id") is None:
                continue
            items.append(CatalogItem(
                id=str(package["id"]),
                name=str(package.get("name") or package.get("package") or package["id"]),
                price=_to_decimal(package.get("price")),
                service_family=str(family or package.get("service") or package.get("provider") or "unknown")
            ))
        return items

    async def iter_catalog(self) -> AsyncIterator[CatalogItem]:
        """Yield supplier packages page by page; each call starts over"""
        page = 1
        while True:
            body = await self._request("GET", "/packages", params={"page": page})
            data = body.get("data", []) if isinstance(body, dict) else body
            for item in self._normalize_packages(data):
                yield item

            meta = body.get("meta") if isinstance(body, dict) else None
            if not isinstance(meta, dict):
                break
            try:
                last_page = int(meta.get("last_page") or page)
            except (TypeError, ValueError):
                self.logger.warning(f"WireNet catalog: bad last_page {meta.get('last_page')!r}, stopping")
                break
            if page >= last_page:
                break
            page += 1

    async def list_catalog(self) -> List[CatalogItem]:
        return [item async for item in self.iter_catalog()]
