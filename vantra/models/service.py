from __future__ import annotations
from typing import Optional

from .common import ApiRecord, RECURRING


class ServiceInstance(ApiRecord):
    """A billable line attached to one client, optionally born from a combo."""

    id: Optional[str] = None
    client_id: Optional[str] = None
    catalog_item_id: Optional[str] = None
    name: str = ""
    description: str = ""
    unit_price: float = 0.0
    quantity: int = 1
    is_active: bool = True
    service_type: str = RECURRING
    origin_plan_id: Optional[str] = None
    start_date: Optional[str] = None

    @property
    def total(self) -> float:
        return self.unit_price * self.quantity

    @property
    def is_recurring(self) -> bool:
        return self.service_type == RECURRING
