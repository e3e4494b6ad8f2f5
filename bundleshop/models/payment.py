# bundleshop/models/payment.py
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel

class Checkout(BaseModel):
    """Hosted checkout handle returned by the gateway"""
    checkout_url: str
    access_code: Optional[str] = None
    reference: str

class PaymentVerification(BaseModel):
    succeeded: bool
    amount_paid: Decimal = Decimal("0")
    currency: Optional[str] = None
    gateway_status: Optional[str] = None
    raw: Dict[str, Any] = {}
