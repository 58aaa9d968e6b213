from __future__ import annotations
from pydantic import Field
from typing import List, Literal, Optional
from datetime import date

from .common import ApiRecord, gen_id, utcnow_iso

InvoiceStatus = Literal["pending", "paid"]


class InvoiceLine(ApiRecord):
    description: str
    quantity: float = 1.0
    unit_price: float = 0.0

    @property
    def total(self) -> float:
        return self.quantity * self.unit_price


class Invoice(ApiRecord):
    id: str = Field(default_factory=gen_id)
    number: Optional[str] = None
    invoice_type: str = "A"
    status: InvoiceStatus = "pending"

    client_id: str
    client_name: Optional[str] = None

    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None

    lines: List[InvoiceLine] = Field(default_factory=list)
    total: float = 0.0

    created_at: str = Field(default_factory=utcnow_iso)
    notes: Optional[str] = None

    def recompute_total(self) -> float:
        self.total = sum(ln.total for ln in self.lines)
        return self.total
