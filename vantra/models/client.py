from __future__ import annotations
from typing import Any, Dict, Optional

from pydantic import Field

from .common import ApiRecord, utcnow_iso

DEFAULT_NAME = "Sin Nombre"
DEFAULT_TAX_CONDITION = "consumidor_final"
DEFAULT_STATUS = "potential"
DEFAULT_PLAN = "Sin Plan"


class Client(ApiRecord):
    id: Optional[str] = None

    # identity
    name: str = DEFAULT_NAME
    business_name: str = ""
    contact_name: str = ""
    dni: str = ""
    alt_contact: str = ""

    # tax / legal
    cuit: str = ""
    tax_id: str = ""
    tax_condition: str = DEFAULT_TAX_CONDITION
    internal_code: str = ""

    # contact
    email: str = ""
    phone: str = ""
    whatsapp: str = ""
    address: str = ""
    city: str = ""
    zip_code: str = ""
    province: str = ""

    # pipeline: status is a Kanban column id, free-form
    category: str = ""
    status: str = DEFAULT_STATUS
    is_active: bool = True

    # financial, negative balance = debt
    balance: float = 0.0
    debt: float = 0.0
    service_plan: str = DEFAULT_PLAN
    price_list_id: Optional[Any] = None
    price_list_name: Optional[str] = None

    obs: str = ""
    internal_obs: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: str = Field(default_factory=utcnow_iso)
