from __future__ import annotations
from typing import List, Mapping, Optional

from pydantic import Field

from .common import ApiRecord, RECURRING


class CatalogItem(ApiRecord):
    id: Optional[str] = None
    name: str = ""
    price: float = 0.0
    description: str = ""
    service_type: str = RECURRING


class ComboMember(ApiRecord):
    catalog_item_id: Optional[str] = None
    quantity: int = 1
    # price recorded on the combo itself, used only if the catalog lost the item
    price: float = 0.0


class Combo(ApiRecord):
    """A named bundle of catalog items. Membership is fixed once created."""

    id: Optional[str] = None
    name: str = ""
    description: str = ""
    members: List[ComboMember] = Field(default_factory=list)
    # manual override; 0/None means "sum of the members"
    price: Optional[float] = None

    @property
    def has_custom_price(self) -> bool:
        return bool(self.price)

    def members_total(self, catalog: Mapping[str, CatalogItem]) -> float:
        total = 0.0
        for m in self.members:
            item = catalog.get(m.catalog_item_id) if m.catalog_item_id else None
            unit = item.price if item is not None else m.price
            total += unit * m.quantity
        return total

    def effective_price(self, catalog: Mapping[str, CatalogItem]) -> float:
        if self.has_custom_price:
            return float(self.price)  # type: ignore[arg-type]
        return self.members_total(catalog)
