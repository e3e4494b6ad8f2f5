# bundleshop/models/order.py
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from .base import TimeStampedModel

class ServiceType(str, Enum):
    MTN_UP2U = "MTN_UP2U"
    MTN_EXPRESS = "MTN_EXPRESS"
    AT = "AT"
    TELECEL = "TELECEL"

class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

class FulfillmentStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    FULFILLED = "FULFILLED"
    FAILED = "FAILED"

RETRYABLE_STATUSES = (FulfillmentStatus.PAID, FulfillmentStatus.QUEUED, FulfillmentStatus.FAILED)
IN_FLIGHT_STATUSES = (FulfillmentStatus.QUEUED, FulfillmentStatus.PROCESSING)
# A supplier webhook may move an order only out of these
WEBHOOK_UPDATABLE_STATUSES = (
    FulfillmentStatus.PAID,
    FulfillmentStatus.QUEUED,
    FulfillmentStatus.PROCESSING,
    FulfillmentStatus.FAILED,
)

class ResultCode(str, Enum):
    OK = "OK"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    TAMPERED = "TAMPERED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVICE_DISABLED = "SERVICE_DISABLED"
    INVALID_STATUS = "INVALID_STATUS"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    SUPPLIER_ERROR = "SUPPLIER_ERROR"

class Order(TimeStampedModel):
    """A single fulfillment order; bulk purchases share a payment reference"""
    id: int
    user_id: int
    service_type: ServiceType
    amount: Decimal
    cost_price: Optional[Decimal] = None
    beneficiary_phone: str
    payment_reference: str
    supplier_request_id: str
    supplier_reference: Optional[str] = None
    supplier_package_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.PENDING_PAYMENT
    supplier_response: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None

    @property
    def frozen_cost(self) -> Decimal:
        """What the supplier will charge us; falls back to the selling price"""
        return self.cost_price if self.cost_price is not None else self.amount

def _clean_phone(value: str) -> str:
    value = value.strip().replace(" ", "")
    if not value.lstrip("+").isdigit():
        raise ValueError("beneficiary_phone must contain digits only")
    return value

class PurchaseRequest(BaseModel):
    """Single purchase as posted by the client"""
    user_id: int
    email: str
    product_id: int
    beneficiary_phone: str = Field(min_length=9, max_length=15)

    @field_validator("beneficiary_phone")
    @classmethod
    def digits_only(cls, value: str) -> str:
        return _clean_phone(value)

class BulkPurchaseItem(BaseModel):
    product_id: int
    beneficiary_phone: str = Field(min_length=9, max_length=15)

    @field_validator("beneficiary_phone")
    @classmethod
    def digits_only(cls, value: str) -> str:
        return _clean_phone(value)

class BulkPurchaseRequest(BaseModel):
    user_id: int
    email: str
    orders: List[BulkPurchaseItem]

class SupplierWebhookData(BaseModel):
    """Body of a supplier `order.update` event"""
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    payment_reference: str
    status: Optional[str] = None
    order_id: Optional[str] = None
    service: Optional[str] = None
    customer_phone: Optional[str] = None
    updated_at: Optional[str] = None

class SupplierWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None
    data: SupplierWebhookData
