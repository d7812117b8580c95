"""
Canonical order model every marketplace provider maps into.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from channel_sync.core.enums import OrderStatus


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None


class OrderLineItem(BaseModel):
    external_item_id: Optional[str] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    quantity: int = 1
    unit_price: Optional[Decimal] = None


class CanonicalOrder(BaseModel):
    platform: str
    external_order_id: str
    status: OrderStatus
    raw_status: Optional[str] = None
    customer: Optional[CustomerInfo] = None
    total_value: Optional[Decimal] = None
    currency: Optional[str] = None
    items: List[OrderLineItem] = Field(default_factory=list)
    ordered_at: datetime

    @property
    def key(self):
        return (self.platform, self.external_order_id)
