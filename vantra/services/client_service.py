from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from vantra.adapters import adapt_client, adapt_client_for_api, total_pages, unwrap_list, unwrap_record
from vantra.api.resources import Api, ClientsAPI
from vantra.exceptions import ApiError
from vantra.models.client import Client, DEFAULT_STATUS

logger = logging.getLogger(__name__)

# keys the backend owns; echoing them back in a PATCH is pointless
READ_ONLY_FIELDS = frozenset({"id", "created_at", "updated_at"})
UNKNOWN_CLIENT = "Desconocido"


@dataclass(frozen=True)
class StatusColumn:
    id: str
    title: str


DEFAULT_STATUSES: List[StatusColumn] = [
    StatusColumn("potential", "POTENCIAL"),
    StatusColumn("contacted", "CONTACTADO"),
    StatusColumn("budgeted", "PRESUPUESTADO"),
    StatusColumn("to_bill", "A FACTURAR"),
    StatusColumn("billed", "FACTURADO"),
]


class ClientService:
    def __init__(self, api: Api, max_workers: int = 4):
        self.api = api
        self.max_workers = max_workers

    # ----- Read ----- #

    def list_raw(self, is_active: Optional[bool] = None) -> List[Dict[str, Any]]:
        """Every client record, all pages. Pages 2..n are fetched in parallel."""
        page_size = ClientsAPI.MAX_PAGE_SIZE
        first = self.api.clients.get_all(limit=page_size, page=1, is_active=is_active)
        rows = unwrap_list(first)
        pages = total_pages(first)
        if pages > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                rest = pool.map(
                    lambda p: self.api.clients.get_all(limit=page_size, page=p, is_active=is_active),
                    range(2, pages + 1),
                )
                for resp in rest:
                    rows.extend(unwrap_list(resp))
        logger.info("Loaded %d clients (%d pages)", len(rows), pages)
        return rows

    def list_clients(self, is_active: Optional[bool] = None) -> List[Client]:
        return [adapt_client(d) for d in self.list_raw(is_active=is_active)]

    def get_raw(self, client_id: str) -> Dict[str, Any]:
        record = unwrap_record(self.api.clients.get(client_id))
        if not record:
            raise ApiError(f"Client {client_id} not found", status_code=404)
        return record

    def get_client(self, client_id: str) -> Client:
        return adapt_client(self.get_raw(client_id))

    # ----- Write ----- #

    def create_client(self, client: Client) -> Client:
        payload = adapt_client_for_api(client)
        payload["status"] = payload.get("status") or DEFAULT_STATUS
        payload["is_active"] = True
        created = unwrap_record(self.api.clients.create(payload))
        # some deployments answer 201 with an empty body
        return adapt_client(created or payload)

    def update_client_field(self, client_id: str, changes: Mapping[str, Any]) -> Client:
        """
        The one place a client PATCH body is built.

        The backend clears every field absent from a PATCH body, so a change
        of one field is sent as: current full record (fresh from the server)
        + adapted UI record with the change applied.
        """
        unknown = set(changes) - set(Client.model_fields)
        if unknown:
            raise ValueError(f"Unknown client field(s): {', '.join(sorted(unknown))}")

        raw = self.get_raw(client_id)
        current = adapt_client(raw)
        merged = current.model_copy(update=dict(changes))
        if "balance" in changes:
            merged.debt = abs(merged.balance) if merged.balance < 0 else 0.0

        payload = {k: v for k, v in raw.items() if k not in READ_ONLY_FIELDS}
        payload.update(adapt_client_for_api(merged))

        logger.debug("PATCH client %s with %d fields (changed: %s)", client_id, len(payload), sorted(changes))
        updated = unwrap_record(self.api.clients.update(client_id, payload))
        return adapt_client({**raw, **payload, **updated})

    def update_client(self, client: Client) -> Client:
        if not client.id:
            raise ValueError("update_client requires a client id")
        changes = client.model_dump(exclude={"id", "created_at", "debt"})
        return self.update_client_field(client.id, changes)

    def set_status(self, client_id: str, status: str) -> Client:
        return self.update_client_field(client_id, {"status": status})

    def deactivate(self, client_id: str) -> Client:
        return self.update_client_field(client_id, {"is_active": False})

    def reactivate(self, client_id: str) -> Client:
        return self.update_client_field(client_id, {"is_active": True})


class ClientDirectory:
    """id -> display name, built from one full listing."""

    def __init__(self, clients: Sequence[Mapping[str, Any]] = ()):
        self._names: Dict[str, str] = {}
        for c in clients:
            cid = c.get("id")
            if cid is None:
                continue
            self._names[str(cid)] = c.get("company_name") or c.get("name") or "Sin Nombre"

    @classmethod
    def load(cls, service: ClientService) -> "ClientDirectory":
        return cls(service.list_raw())

    def __len__(self) -> int:
        return len(self._names)

    def name_of(self, client_id: Any) -> str:
        if not client_id:
            return UNKNOWN_CLIENT
        return self._names.get(str(client_id), UNKNOWN_CLIENT)


# ----- Pipeline (Kanban) ----- #

def build_board(clients: Sequence[Client], statuses: Sequence[StatusColumn] = DEFAULT_STATUSES) -> Dict[str, List[Client]]:
    """Column id -> clients, in column order. Unknown statuses get their own column at the end."""
    board: Dict[str, List[Client]] = {s.id: [] for s in statuses}
    for c in clients:
        board.setdefault(c.status, []).append(c)
    return board


def drop_column(board: Dict[str, List[Client]], column_id: str) -> Dict[str, List[Client]]:
    """Remove a column; its clients go back to the default column. Local only."""
    if column_id == DEFAULT_STATUS or column_id not in board:
        return board
    moved = [c.model_copy(update={"status": DEFAULT_STATUS}) for c in board.pop(column_id)]
    board.setdefault(DEFAULT_STATUS, []).extend(moved)
    return board
