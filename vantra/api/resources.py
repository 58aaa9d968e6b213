from __future__ import annotations

from typing import Any, Dict, List, Optional

from vantra.api.http import ApiClient
from vantra.config import Settings


class _Resource:
    path = ""

    def __init__(self, http: ApiClient) -> None:
        self.http = http

    def _item(self, obj_id: Any) -> str:
        return f"{self.path}/{obj_id}"


class ClientsAPI(_Resource):
    path = "/v1/clients"
    MAX_PAGE_SIZE = 100  # the backend answers 400 above this

    def get_all(self, **params: Any) -> Any:
        return self.http.get(self.path, **params)

    def get(self, client_id: str) -> Any:
        return self.http.get(self._item(client_id))

    def create(self, data: Dict[str, Any]) -> Any:
        return self.http.post(self.path, data)

    def update(self, client_id: str, data: Dict[str, Any]) -> Any:
        """PATCH is destructive on this backend: send full records only."""
        return self.http.patch(self._item(client_id), data)

    def delete(self, client_id: str) -> Any:
        return self.http.delete(self._item(client_id))


class ServicesAPI(_Resource):
    """Service instances (billable lines of a client)."""

    path = "/v1/services"

    def list_for_client(self, client_id: str) -> Any:
        return self.http.get(self.path, client_id=client_id)

    def get(self, service_id: str) -> Any:
        return self.http.get(self._item(service_id))

    def assign_to_client(self, client_id: str, data: Dict[str, Any]) -> Any:
        return self.http.post(self.path, {**data, "client_id": client_id})

    def update(self, service_id: str, data: Dict[str, Any]) -> Any:
        return self.http.patch(self._item(service_id), data)

    def remove(self, service_id: str) -> Any:
        return self.http.delete(self._item(service_id))

    def reactivate(self, service_id: str) -> Any:
        return self.http.post(f"{self._item(service_id)}/reactivate")

    def sync(self, client_id: str, services: List[Dict[str, Any]]) -> Any:
        return self.http.post(f"{self.path}/sync", {"client_id": client_id, "services": services})


class CatalogAPI(_Resource):
    path = "/v1/catalog"

    def get_all(self, **params: Any) -> Any:
        return self.http.get(self.path, **params)

    def create(self, data: Dict[str, Any]) -> Any:
        return self.http.post(self.path, data)

    def update(self, item_id: str, data: Dict[str, Any]) -> Any:
        return self.http.patch(self._item(item_id), data)

    def remove(self, item_id: str) -> Any:
        return self.http.delete(self._item(item_id))


class CombosAPI(_Resource):
    path = "/v1/combos"

    def get_all(self, **params: Any) -> Any:
        return self.http.get(self.path, **params)

    def create(self, data: Dict[str, Any]) -> Any:
        return self.http.post(self.path, data)

    def update(self, combo_id: str, data: Dict[str, Any]) -> Any:
        return self.http.patch(self._item(combo_id), data)

    def remove(self, combo_id: str) -> Any:
        return self.http.delete(self._item(combo_id))

    def assign_to_client(self, client_id: str, combo_id: str) -> Any:
        """Server side explodes the bundle into one instance per member."""
        return self.http.post(f"{self._item(combo_id)}/assign", {"client_id": client_id})


class InvoicesAPI(_Resource):
    path = "/v1/invoices"

    def get_all(self, **params: Any) -> Any:
        return self.http.get(self.path, **params)

    def get(self, invoice_id: str) -> Any:
        return self.http.get(self._item(invoice_id))

    def create(self, data: Dict[str, Any]) -> Any:
        return self.http.post(self.path, data)

    def update(self, invoice_id: str, data: Dict[str, Any]) -> Any:
        return self.http.patch(self._item(invoice_id), data)

    def get_pdf(self, invoice_id: str) -> bytes:
        return self.http.request("GET", f"{self._item(invoice_id)}/pdf", raw=True)


class PlansAPI(_Resource):
    path = "/v1/plans"

    def get_all(self, **params: Any) -> Any:
        return self.http.get(self.path, **params)

    def create(self, data: Dict[str, Any]) -> Any:
        return self.http.post(self.path, data)

    def update(self, plan_id: str, data: Dict[str, Any]) -> Any:
        return self.http.patch(self._item(plan_id), data)

    def remove(self, plan_id: str) -> Any:
        return self.http.delete(self._item(plan_id))


class Api:
    """All endpoint groups over one shared ApiClient."""

    def __init__(self, http: ApiClient) -> None:
        self.http = http
        self.clients = ClientsAPI(http)
        self.services = ServicesAPI(http)
        self.catalog = CatalogAPI(http)
        self.combos = CombosAPI(http)
        self.invoices = InvoicesAPI(http)
        self.plans = PlansAPI(http)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Api":
        return cls(ApiClient(settings))
