from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from vantra.adapters import (
    adapt_catalog_item,
    adapt_combo,
    adapt_combo_for_api,
    unwrap_list,
    unwrap_record,
)
from vantra.api.resources import Api
from vantra.models.catalog import CatalogItem, Combo
from vantra.models.common import RECURRING, to_amount

logger = logging.getLogger(__name__)


# ----------------- Catalog snapshot ----------------- #

class CatalogSnapshot:
    """
    Catalog and combos as loaded at one point in time.
    Combo prices are computed against this snapshot; it is not refreshed
    behind the caller's back.
    """

    def __init__(self, items: List[CatalogItem], combos: List[Combo]) -> None:
        self.items: Dict[str, CatalogItem] = {i.id: i for i in items if i.id}
        self.combos: Dict[str, Combo] = {c.id: c for c in combos if c.id}

    def item(self, item_id: str) -> CatalogItem:
        try:
            return self.items[item_id]
        except KeyError:
            raise KeyError(f"Unknown catalog item: {item_id}") from None

    def combo(self, combo_id: str) -> Combo:
        try:
            return self.combos[combo_id]
        except KeyError:
            raise KeyError(f"Unknown combo: {combo_id}") from None

    def combo_price(self, combo_id: str) -> float:
        return self.combo(combo_id).effective_price(self.items)


# ----------------- Service Catalogue ----------------- #

class CatalogService:
    """
    Catalog items, combos and plans on the backend.
    - records are read through the adapters (legacy field names accepted)
    - price strings with a decimal comma are accepted on create/update
    """

    def __init__(self, api: Api) -> None:
        self.api = api

    # ---------- Helpers ---------- #

    @staticmethod
    def _parse_price(value: Any) -> float:
        if isinstance(value, str):
            value = value.strip().replace(",", ".")
        return max(0.0, to_amount(value))

    @classmethod
    def _item_payload(cls, data: Mapping[str, Any]) -> Dict[str, Any]:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValueError("Catalog item requires a name")
        service_type = data.get("service_type") or data.get("type") or RECURRING
        return {
            "name": name,
            "description": str(data.get("description") or ""),
            "price": cls._parse_price(data.get("price")),
            "type": service_type,
            "is_recurrent": service_type == RECURRING,
        }

    # ---------- Catalog items ---------- #

    def list_items(self) -> List[CatalogItem]:
        return [adapt_catalog_item(r) for r in unwrap_list(self.api.catalog.get_all())]

    def create_item(self, data: Mapping[str, Any]) -> CatalogItem:
        payload = self._item_payload(data)
        created = unwrap_record(self.api.catalog.create(payload))
        item = adapt_catalog_item({**payload, **created})
        if not item.id:
            raise ValueError(f"Catalog item '{payload['name']}' was created without an id")
        logger.info("Catalog item created: %s (%s)", item.name, item.id)
        return item

    def update_item(self, item_id: str, data: Mapping[str, Any]) -> CatalogItem:
        payload = self._item_payload(data)
        updated = unwrap_record(self.api.catalog.update(item_id, payload))
        return adapt_catalog_item({"id": item_id, **payload, **updated})

    def delete_item(self, item_id: str) -> None:
        self.api.catalog.remove(item_id)

    # ---------- Combos ---------- #

    def list_combos(self) -> List[Combo]:
        return [adapt_combo(r) for r in unwrap_list(self.api.combos.get_all())]

    def create_combo(self, combo: Combo) -> Combo:
        if not combo.members:
            raise ValueError("A combo needs at least one member")
        payload = adapt_combo_for_api(combo)
        created = unwrap_record(self.api.combos.create(payload))
        return adapt_combo({**payload, **created})

    def update_combo(self, combo: Combo) -> Combo:
        """Whole combo in the PATCH body: omitted members would be cleared on the server."""
        if not combo.id:
            raise ValueError("update_combo requires a combo id")
        payload = adapt_combo_for_api(combo)
        updated = unwrap_record(self.api.combos.update(combo.id, payload))
        return adapt_combo({"id": combo.id, **payload, **updated})

    def delete_combo(self, combo_id: str) -> None:
        self.api.combos.remove(combo_id)

    # ---------- Plans ---------- #

    def list_plans(self) -> List[Dict[str, Any]]:
        return unwrap_list(self.api.plans.get_all())

    def create_plan(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return unwrap_record(self.api.plans.create(dict(data)))

    def update_plan(self, plan_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        return unwrap_record(self.api.plans.update(plan_id, dict(data)))

    def delete_plan(self, plan_id: str) -> None:
        self.api.plans.remove(plan_id)

    # ---------- Snapshot ---------- #

    def snapshot(self) -> CatalogSnapshot:
        items = self.list_items()
        combos = self.list_combos()
        logger.debug("Catalog snapshot: %d items, %d combos", len(items), len(combos))
        return CatalogSnapshot(items, combos)

    def combo_price(self, combo_id: str, snapshot: Optional[CatalogSnapshot] = None) -> float:
        snap = snapshot or self.snapshot()
        return snap.combo_price(combo_id)
