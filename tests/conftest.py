import sys
from pathlib import Path

import pytest

# Ensure `vantra` is importable when running tests from repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vantra.config import Settings  # noqa: E402
from vantra.exceptions import ApiError  # noqa: E402


class _FakeResource:
    """Records every call on the shared log as (name, args)."""

    name = ""

    def __init__(self, backend):
        self.backend = backend

    def _log(self, method, *args):
        self.backend.calls.append((f"{self.name}.{method}", args))

    def _new_id(self, prefix):
        self.backend.seq += 1
        return f"{prefix}-{self.backend.seq}"


class FakeClients(_FakeResource):
    name = "clients"

    def __init__(self, backend):
        super().__init__(backend)
        self.records = {}

    def get_all(self, limit=100, page=1, is_active=None):
        self._log("get_all", limit, page, is_active)
        if limit > 100:
            raise ApiError("limit must be <= 100", status_code=400)
        rows = [r for r in self.records.values() if is_active is None or r.get("is_active") == is_active]
        pages = max(1, -(-len(rows) // limit))
        start = (page - 1) * limit
        return {"data": rows[start:start + limit], "pagination": {"totalPages": pages}}

    def get(self, client_id):
        self._log("get", client_id)
        if client_id not in self.records:
            raise ApiError("Client not found", status_code=404)
        return {"data": dict(self.records[client_id])}

    def create(self, data):
        self._log("create", data)
        cid = self._new_id("cli")
        self.records[cid] = {"id": cid, "created_at": "2026-01-01T00:00:00+00:00", **data}
        return {"data": dict(self.records[cid])}

    def update(self, client_id, data):
        # merge-by-presence: whatever is not in the body is lost
        self._log("update", client_id, data)
        old = self.records[client_id]
        self.records[client_id] = {"id": client_id, "created_at": old.get("created_at"), **data}
        return {"data": dict(self.records[client_id])}

    def delete(self, client_id):
        self._log("delete", client_id)
        self.records.pop(client_id, None)


class FakeCatalog(_FakeResource):
    name = "catalog"

    def __init__(self, backend):
        super().__init__(backend)
        self.records = {}
        self.fail_on = set()

    def get_all(self):
        self._log("get_all")
        return list(self.records.values())

    def create(self, data):
        self._log("create", data)
        if data.get("name") in self.fail_on:
            raise ApiError("Internal error", status_code=500)
        cid = self._new_id("cat")
        self.records[cid] = {"id": cid, **data}
        return dict(self.records[cid])

    def update(self, item_id, data):
        self._log("update", item_id, data)
        self.records[item_id] = {"id": item_id, **data}
        return dict(self.records[item_id])

    def remove(self, item_id):
        self._log("remove", item_id)
        self.records.pop(item_id, None)


class FakeServices(_FakeResource):
    name = "services"

    def __init__(self, backend):
        super().__init__(backend)
        self.records = {}
        self.fail_on_remove = set()

    def _insert(self, client_id, data):
        sid = self._new_id("srv")
        self.records[sid] = {
            "id": sid,
            "client_id": client_id,
            "catalog_item_id": data.get("catalog_item_id"),
            "name": data.get("name", ""),
            "unit_price": data.get("price", data.get("unit_price", 0)),
            "quantity": data.get("quantity", 1),
            "type": data.get("type", "recurring"),
            "is_active": True,
            "origin_plan_id": data.get("origin_plan_id") or data.get("origin_combo_id"),
        }
        return dict(self.records[sid])

    def list_for_client(self, client_id):
        self._log("list_for_client", client_id)
        return [dict(r) for r in self.records.values() if r["client_id"] == client_id]

    def get(self, service_id):
        self._log("get", service_id)
        return dict(self.records[service_id])

    def assign_to_client(self, client_id, data):
        self._log("assign_to_client", client_id, data)
        return self._insert(client_id, data)

    def update(self, service_id, data):
        self._log("update", service_id, data)
        self.records[service_id] = {"id": service_id, **data}
        return dict(self.records[service_id])

    def remove(self, service_id):
        self._log("remove", service_id)
        if service_id in self.fail_on_remove or service_id not in self.records:
            raise ApiError("Service not found", status_code=404)
        del self.records[service_id]

    def reactivate(self, service_id):
        self._log("reactivate", service_id)
        self.records[service_id]["is_active"] = True
        return dict(self.records[service_id])

    def sync(self, client_id, services):
        self._log("sync", client_id, services)
        for sid in [k for k, r in self.records.items() if r["client_id"] == client_id]:
            del self.records[sid]
        for row in services:
            self._insert(client_id, row)
        return {"ok": True}


class FakeCombos(_FakeResource):
    name = "combos"

    def __init__(self, backend):
        super().__init__(backend)
        self.records = {}

    def get_all(self):
        self._log("get_all")
        return {"data": list(self.records.values())}

    def create(self, data):
        self._log("create", data)
        cid = self._new_id("combo")
        self.records[cid] = {"id": cid, **data}
        return dict(self.records[cid])

    def update(self, combo_id, data):
        # merge-by-presence, as for clients
        self._log("update", combo_id, data)
        self.records[combo_id] = {"id": combo_id, **data}
        return dict(self.records[combo_id])

    def remove(self, combo_id):
        self._log("remove", combo_id)
        self.records.pop(combo_id, None)

    def assign_to_client(self, client_id, combo_id):
        # the server explodes the bundle into one instance per member
        self._log("assign_to_client", client_id, combo_id)
        combo = self.records[combo_id]
        catalog = self.backend.catalog.records
        for m in combo.get("items", []):
            cat = catalog.get(m["catalog_item_id"], {})
            self.backend.services._insert(client_id, {
                "catalog_item_id": m["catalog_item_id"],
                "name": cat.get("name", ""),
                "price": cat.get("price", m.get("price", 0)),
                "quantity": m.get("quantity", 1),
                "origin_plan_id": combo_id,
            })
        return {"ok": True}


class FakeInvoices(_FakeResource):
    name = "invoices"

    def __init__(self, backend):
        super().__init__(backend)
        self.records = {}
        self.pdf_fails = False

    def get_all(self, client_id=None):
        self._log("get_all", client_id)
        return [dict(r) for r in self.records.values() if client_id is None or r.get("client_id") == client_id]

    def get(self, invoice_id):
        self._log("get", invoice_id)
        if invoice_id not in self.records:
            raise ApiError("Invoice not found", status_code=404)
        return {"data": dict(self.records[invoice_id])}

    def create(self, data):
        self._log("create", data)
        iid = self._new_id("inv")
        self.records[iid] = {"id": iid, **data}
        return {"data": dict(self.records[iid])}

    def update(self, invoice_id, data):
        self._log("update", invoice_id, data)
        self.records[invoice_id] = {"id": invoice_id, **data}
        return dict(self.records[invoice_id])

    def get_pdf(self, invoice_id):
        self._log("get_pdf", invoice_id)
        if self.pdf_fails:
            raise ApiError("Error 500: Internal Server Error", status_code=500)
        return b"%PDF-1.4 server"


class FakePlans(_FakeResource):
    name = "plans"

    def __init__(self, backend):
        super().__init__(backend)
        self.records = {}

    def get_all(self):
        self._log("get_all")
        return list(self.records.values())

    def create(self, data):
        self._log("create", data)
        pid = self._new_id("plan")
        self.records[pid] = {"id": pid, **data}
        return dict(self.records[pid])

    def update(self, plan_id, data):
        self._log("update", plan_id, data)
        self.records[plan_id] = {"id": plan_id, **data}
        return dict(self.records[plan_id])

    def remove(self, plan_id):
        self._log("remove", plan_id)
        self.records.pop(plan_id, None)


class FakeApi:
    """In-memory backend with the same surface as vantra.api.resources.Api."""

    def __init__(self):
        self.calls = []
        self.seq = 0
        self.clients = FakeClients(self)
        self.catalog = FakeCatalog(self)
        self.services = FakeServices(self)
        self.combos = FakeCombos(self)
        self.invoices = FakeInvoices(self)
        self.plans = FakePlans(self)

    def calls_to(self, name):
        return [args for call, args in self.calls if call == name]


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def seeded_api(fake_api):
    """Catalog with an internet plan and a two-item combo, one client with one service."""
    fake_api.catalog.records.update({
        "cat-fibra": {"id": "cat-fibra", "name": "Internet Fibra 300Mb", "price": 45000, "type": "recurring"},
        "cat-ip": {"id": "cat-ip", "name": "IP Fija", "price": 8000, "type": "recurring"},
        "cat-router": {"id": "cat-router", "name": "Router WiFi 6", "price": 12000, "type": "recurring"},
        "cat-install": {"id": "cat-install", "name": "Instalacion", "price": 20000, "type": "one_time"},
    })
    fake_api.combos.records["combo-emp"] = {
        "id": "combo-emp",
        "name": "Pack Emprendedor",
        "items": [
            {"catalog_item_id": "cat-fibra", "quantity": 1},
            {"catalog_item_id": "cat-router", "quantity": 1},
        ],
        "price": 0,
    }
    fake_api.clients.records["cli-1"] = {
        "id": "cli-1",
        "company_name": "Panaderia Sol",
        "tax_id": "30-71234567-9",
        "email_billing": "sol@example.com",
        "tax_condition": "responsable_inscripto",
        "phone_whatsapp": "+54 11 5555-0000",
        "address": "Av. Siempre Viva 742",
        "localidad": "Rosario",
        "codigopostal": "2000",
        "provincia": "Santa Fe",
        "categoria": "comercio",
        "nombre": "Ana",
        "dni": "30111222",
        "status": "contacted",
        "is_active": True,
        "obsinterna": "<p>Cliente <b>VIP</b></p>",
        "current_balance": -1500.5,
        "idlista": 3,
        "lista": "Mayorista",
        "created_at": "2025-05-01T10:00:00+00:00",
    }
    fake_api.services.records["srv-ip"] = {
        "id": "srv-ip", "client_id": "cli-1", "catalog_item_id": "cat-ip", "name": "IP Fija",
        "unit_price": 8000, "quantity": 1, "type": "recurring", "is_active": True, "origin_plan_id": None,
    }
    return fake_api


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_url="https://api.example.test",
        api_key="test-key",
        data_dir=tmp_path / "data",
        exports_dir=tmp_path / "exports",
    )
