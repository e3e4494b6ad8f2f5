# bundleshop/utils/formatters.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
import pytz
from pydantic import BaseModel
from ..config import Config

def format_price(amount: Decimal) -> str:
    """Money with two decimals and the shop currency"""
    return f"{Config.CURRENCY} {Decimal(amount):,.2f}"

def format_datetime(dt: datetime) -> str:
    """Local shop time"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(local_tz).strftime("%Y-%m-%d %H:%M")

def to_jsonable(value: Any) -> Any:
    """Models, decimals and enums -> plain JSON types"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value
