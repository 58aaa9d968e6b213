from __future__ import annotations
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .common import gen_id, RECURRING


class SingleItem(BaseModel):
    type: Literal["single"] = "single"
    key: str = Field(default_factory=gen_id)  # row identity inside the editor
    remote_id: Optional[str] = None  # service instance id once persisted
    catalog_item_id: Optional[str] = None
    name: str = ""
    price: float = 0.0
    quantity: int = 1
    service_type: str = RECURRING
    # typed by the operator, must exist in the catalog before assignment
    should_create_in_catalog: bool = False

    @property
    def persisted(self) -> bool:
        return self.remote_id is not None

    @property
    def total(self) -> float:
        return self.price * self.quantity


class PackageItem(BaseModel):
    type: Literal["package"] = "package"
    key: str = Field(default_factory=gen_id)
    origin_plan_id: str
    name: str = ""
    members: List[SingleItem] = Field(default_factory=list)
    # combo override price; 0/None -> sum of members
    price: Optional[float] = None

    @property
    def persisted(self) -> bool:
        return any(m.persisted for m in self.members)

    @property
    def remote_ids(self) -> List[str]:
        return [m.remote_id for m in self.members if m.remote_id is not None]

    @property
    def total(self) -> float:
        if self.price:
            return float(self.price)
        return sum(m.total for m in self.members)


BudgetItem = Annotated[Union[SingleItem, PackageItem], Field(discriminator="type")]


class Budget(BaseModel):
    """Serializable snapshot of an editor's rows."""

    client_id: Optional[str] = None
    items: List[BudgetItem] = Field(default_factory=list)
