# bundleshop/models/product.py
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel
from .base import TimeStampedModel
from .order import ServiceType

class Product(TimeStampedModel):
    """Catalog product as sold to customers (read-only here)"""
    id: int
    name: str
    service_type: ServiceType
    price: Decimal
    cost_price: Optional[Decimal] = None
    data_amount: Optional[str] = None
    supplier_package_id: Optional[str] = None
    is_active: bool = True

class CatalogItem(BaseModel):
    """A package on the supplier side, normalized"""
    id: str
    name: str
    price: Decimal
    service_family: str

class Balance(BaseModel):
    """Supplier wallet balance; fetched on demand, never stored"""
    balance: Decimal
    currency: str
