"""Budget editing and its reconciliation with a client's service instances.

A budget is the list a client pays for: single catalog items and combos
(packages). The editor works on an in-memory copy; ``plan_sync`` diffs it
against the instances loaded from the server and ``BudgetReconciler``
applies the diff with the least destructive calls the backend offers.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from vantra.adapters import adapt_service_instance, adapt_service_instance_for_api, unwrap_list, unwrap_record
from vantra.api.resources import Api
from vantra.exceptions import ApiError, CatalogCreationError, SyncError
from vantra.models.budget import Budget, BudgetItem, PackageItem, SingleItem
from vantra.models.catalog import CatalogItem
from vantra.models.common import RECURRING
from vantra.models.service import ServiceInstance
from vantra.services.catalog_service import CatalogSnapshot

logger = logging.getLogger(__name__)


# ----------------- Editor ----------------- #

class BudgetEditor:
    """Editable rows of one client's budget, priced against a catalog snapshot."""

    def __init__(self, snapshot: CatalogSnapshot, items: Optional[Sequence[BudgetItem]] = None) -> None:
        self.snapshot = snapshot
        self._items: List[BudgetItem] = list(items or [])

    @classmethod
    def from_instances(cls, instances: Sequence[ServiceInstance], snapshot: CatalogSnapshot) -> "BudgetEditor":
        """Standalone instances become singles; instances sharing an origin combo become one package."""
        items: List[BudgetItem] = []
        packages: Dict[str, PackageItem] = {}
        for inst in instances:
            member = SingleItem(
                remote_id=inst.id,
                catalog_item_id=inst.catalog_item_id,
                name=inst.name,
                price=inst.unit_price,
                quantity=inst.quantity,
                service_type=inst.service_type,
            )
            plan_id = inst.origin_plan_id
            if not plan_id:
                items.append(member)
                continue
            pkg = packages.get(plan_id)
            if pkg is None:
                combo = snapshot.combos.get(plan_id)
                pkg = PackageItem(
                    origin_plan_id=plan_id,
                    name=combo.name if combo else "Combo",
                    price=combo.price if combo else None,
                )
                packages[plan_id] = pkg
                items.append(pkg)
            pkg.members.append(member)
        return cls(snapshot, items)

    @property
    def items(self) -> List[BudgetItem]:
        return list(self._items)

    def _index(self, key: str) -> int:
        for idx, it in enumerate(self._items):
            if it.key == key:
                return idx
        raise KeyError(f"No budget row with key {key}")

    # ---------- Adding ---------- #

    def add_catalog_item(self, catalog_item_id: str, quantity: int = 1) -> SingleItem:
        cat = self.snapshot.item(catalog_item_id)
        item = SingleItem(
            catalog_item_id=cat.id,
            name=cat.name,
            price=cat.price,
            quantity=max(1, int(quantity)),
            service_type=cat.service_type,
        )
        self._items.append(item)
        return item

    def add_custom_item(self, name: str, price: float, quantity: int = 1,
                        service_type: str = RECURRING) -> SingleItem:
        name = (name or "").strip()
        if not name:
            raise ValueError("A custom item needs a name")
        item = SingleItem(
            name=name,
            price=float(price),
            quantity=max(1, int(quantity)),
            service_type=service_type,
            should_create_in_catalog=True,
        )
        self._items.append(item)
        return item

    def add_combo(self, combo_id: str) -> PackageItem:
        combo = self.snapshot.combo(combo_id)
        members: List[SingleItem] = []
        for m in combo.members:
            cat = self.snapshot.items.get(m.catalog_item_id) if m.catalog_item_id else None
            members.append(SingleItem(
                catalog_item_id=m.catalog_item_id,
                name=cat.name if cat else (m.catalog_item_id or ""),
                price=cat.price if cat else m.price,
                quantity=m.quantity,
                service_type=cat.service_type if cat else RECURRING,
            ))
        pkg = PackageItem(
            origin_plan_id=combo_id,
            name=combo.name,
            members=members,
            price=combo.price if combo.has_custom_price else None,
        )
        self._items.append(pkg)
        return pkg

    # ---------- Editing ---------- #

    def remove(self, key: str) -> BudgetItem:
        return self._items.pop(self._index(key))

    def update_item(self, key: str, price: Optional[float] = None, quantity: Optional[int] = None,
                    name: Optional[str] = None) -> BudgetItem:
        idx = self._index(key)
        item = self._items[idx]
        if isinstance(item, PackageItem) and item.persisted and (price is not None or name is not None):
            # the saved bundle is priced and named by its combo record
            raise ValueError("A saved package cannot be renamed or repriced; edit the combo instead")
        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if price is not None:
            changes["price"] = float(price)
        if quantity is not None:
            if isinstance(item, PackageItem):
                raise ValueError("A package has no quantity")
            changes["quantity"] = max(1, int(quantity))
        updated = item.model_copy(update=changes)
        self._items[idx] = updated
        return updated

    # ---------- Totals ---------- #

    def total(self) -> float:
        return sum(it.total for it in self._items)

    def recurring_total(self) -> float:
        total = 0.0
        for it in self._items:
            if isinstance(it, PackageItem):
                if any(m.service_type == RECURRING for m in it.members):
                    total += it.total
            elif it.service_type == RECURRING:
                total += it.total
        return total

    def to_budget(self, client_id: Optional[str] = None) -> Budget:
        return Budget(client_id=client_id, items=self.items)


# ----------------- Planning ----------------- #

@dataclass
class SyncPlan:
    new_singles: List[SingleItem] = field(default_factory=list)
    new_packages: List[PackageItem] = field(default_factory=list)
    # subset of new_singles that must exist in the catalog first
    custom_items: List[SingleItem] = field(default_factory=list)
    updates: List[Tuple[ServiceInstance, SingleItem]] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.new_singles or self.new_packages or self.updates or self.deletes)


def _differs(instance: ServiceInstance, item: SingleItem) -> bool:
    return (
        instance.name != item.name
        or instance.unit_price != item.price
        or instance.quantity != item.quantity
    )


def plan_sync(previous: Sequence[ServiceInstance], current: Sequence[BudgetItem]) -> SyncPlan:
    """Diff loaded instances against edited rows. Pure; no I/O."""
    plan = SyncPlan()
    by_id = {inst.id: inst for inst in previous if inst.id}
    kept: set = set()

    for item in current:
        if isinstance(item, PackageItem):
            if item.persisted:
                kept.update(item.remote_ids)
            else:
                plan.new_packages.append(item)
            continue

        if not item.persisted:
            plan.new_singles.append(item)
            if item.should_create_in_catalog:
                plan.custom_items.append(item)
            continue

        kept.add(item.remote_id)
        loaded = by_id.get(item.remote_id)
        if loaded is not None and _differs(loaded, item):
            plan.updates.append((loaded, item))

    plan.deletes = [inst_id for inst_id in by_id if inst_id not in kept]
    return plan


# ----------------- Explosion ----------------- #

def _single_row(item: SingleItem, catalog: Mapping[str, CatalogItem],
                origin_plan_id: Optional[str] = None) -> Dict[str, Any]:
    cat = catalog.get(item.catalog_item_id) if item.catalog_item_id else None
    if cat is None:
        logger.warning("Budget row '%s' has no catalog reference (%s); sent as is",
                       item.name, item.catalog_item_id)
    return {
        "id": item.remote_id,
        "catalog_item_id": item.catalog_item_id,
        "name": item.name or (cat.name if cat else ""),
        "price": item.price,
        "quantity": item.quantity,
        "type": item.service_type,
        "origin_plan_id": origin_plan_id,
    }


def explode_budget(items: Sequence[BudgetItem], catalog: Mapping[str, CatalogItem]) -> List[Dict[str, Any]]:
    """One row per billable line; package members carry their combo id."""
    rows: List[Dict[str, Any]] = []
    for item in items:
        if isinstance(item, PackageItem):
            rows.extend(_single_row(m, catalog, item.origin_plan_id) for m in item.members)
        else:
            rows.append(_single_row(item, catalog))
    return rows


# ----------------- Reconciler ----------------- #

@dataclass
class SyncResult:
    plan: SyncPlan
    instances: List[ServiceInstance]
    # editor key -> catalog id of the custom items created during the save
    created_catalog_ids: Dict[str, str] = field(default_factory=dict)


class BudgetReconciler:
    def __init__(self, api: Api, max_workers: int = 4) -> None:
        self.api = api
        self.max_workers = max_workers

    # ---------- Steps ---------- #

    def _create_catalog_item(self, item: SingleItem) -> str:
        payload = {
            "name": item.name,
            "description": "",
            "price": item.price,
            "type": item.service_type,
            "is_recurrent": item.service_type == RECURRING,
        }
        created = unwrap_record(self.api.catalog.create(payload))
        if not created.get("id"):
            raise ApiError(f"Catalog item '{item.name}' created without an id")
        return str(created["id"])

    def create_custom_items(self, items: Sequence[SingleItem]) -> Dict[str, str]:
        """All creations run together; any failure aborts. Items already created stay in the catalog."""
        if not items:
            return {}
        created: Dict[str, str] = {}
        failures: List[str] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self._create_catalog_item, it): it for it in items}
            for fut in as_completed(futures):
                it = futures[fut]
                try:
                    created[it.key] = fut.result()
                except ApiError as e:
                    logger.error("Catalog creation failed for '%s': %s", it.name, e)
                    failures.append(it.name)
        if failures:
            raise CatalogCreationError(
                f"Could not create catalog item(s): {', '.join(sorted(failures))}",
                created=created,
            )
        logger.info("Created %d custom catalog item(s)", len(created))
        return created

    @staticmethod
    def _assign_payload(item: SingleItem, catalog_item_id: Optional[str]) -> Dict[str, Any]:
        if not catalog_item_id:
            logger.warning("Assigning '%s' without a catalog reference", item.name)
        return {
            "catalog_item_id": catalog_item_id,
            "name": item.name,
            "price": item.price,
            "quantity": item.quantity,
            "type": item.service_type,
            "origin_combo_id": None,
        }

    def reload(self, client_id: str) -> List[ServiceInstance]:
        rows = unwrap_list(self.api.services.list_for_client(client_id))
        return [adapt_service_instance(r) for r in rows]

    # ---------- Save cycles ---------- #

    def save(self, client_id: str, previous: Sequence[ServiceInstance],
             current: Sequence[BudgetItem]) -> SyncResult:
        """
        Apply the diff between loaded instances and edited rows, then return
        the server's view of the client's instances.

        Order: custom catalog items, new singles, new combos, updates, deletes.
        A failure part way leaves the earlier writes in place (SyncError).
        """
        plan = plan_sync(previous, current)
        if plan.is_empty:
            logger.info("Budget of client %s unchanged", client_id)
            return SyncResult(plan=plan, instances=list(previous))

        created = self.create_custom_items(plan.custom_items)

        step = "assign"
        try:
            for item in plan.new_singles:
                catalog_id = created.get(item.key, item.catalog_item_id)
                self.api.services.assign_to_client(client_id, self._assign_payload(item, catalog_id))

            step = "assign combo"
            for pkg in plan.new_packages:
                self.api.combos.assign_to_client(client_id, pkg.origin_plan_id)

            step = "update"
            for loaded, item in plan.updates:
                merged = loaded.model_copy(update={
                    "name": item.name, "unit_price": item.price, "quantity": item.quantity,
                })
                self.api.services.update(loaded.id, adapt_service_instance_for_api(merged))

            step = "remove"
            for inst_id in plan.deletes:
                self.api.services.remove(inst_id)
        except ApiError as e:
            logger.error("Budget sync of client %s stopped at %s: %s", client_id, step, e)
            raise SyncError(f"Budget sync stopped at step '{step}': {e}") from e

        logger.info(
            "Budget of client %s saved: %d single(s), %d combo(s), %d update(s), %d removal(s)",
            client_id, len(plan.new_singles), len(plan.new_packages), len(plan.updates), len(plan.deletes),
        )
        return SyncResult(plan=plan, instances=self.reload(client_id), created_catalog_ids=created)

    def push_full(self, client_id: str, items: Sequence[BudgetItem],
                  catalog: Optional[Mapping[str, CatalogItem]] = None) -> SyncResult:
        """Replace the client's whole instance list in one bulk call."""
        customs = [it for it in items if isinstance(it, SingleItem) and it.should_create_in_catalog
                   and not it.persisted]
        created = self.create_custom_items(customs)

        resolved: List[BudgetItem] = []
        for it in items:
            if isinstance(it, SingleItem) and it.key in created:
                it = it.model_copy(update={"catalog_item_id": created[it.key], "should_create_in_catalog": False})
            resolved.append(it)

        known = dict(catalog or {})
        for it in resolved:
            if isinstance(it, SingleItem) and it.key in created:
                known[created[it.key]] = CatalogItem(id=created[it.key], name=it.name, price=it.price,
                                                     service_type=it.service_type)

        rows = explode_budget(resolved, known)
        try:
            self.api.services.sync(client_id, rows)
        except ApiError as e:
            logger.error("Bulk sync of client %s failed: %s", client_id, e)
            raise SyncError(f"Bulk sync failed: {e}") from e

        logger.info("Budget of client %s pushed in full (%d rows)", client_id, len(rows))
        return SyncResult(plan=SyncPlan(), instances=self.reload(client_id), created_catalog_ids=created)
