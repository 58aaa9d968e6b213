from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TypeVar

from vantra.api.resources import Api
from vantra.config import Settings, load_settings
from vantra.exceptions import CatalogCreationError, ConfigurationError, VantraError
from vantra.models.budget import BudgetItem
from vantra.models.client import Client
from vantra.models.invoice import Invoice
from vantra.models.service import ServiceInstance
from vantra.services.budget_service import BudgetReconciler, SyncResult
from vantra.services.client_service import ClientService
from vantra.services.instance_service import InstanceService
from vantra.services.invoice_service import InvoiceService
from vantra.services.notifications import Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkflowService:
    """
    What the screens call. Each step runs one service operation; failures are
    logged with their details and the user only gets a short toast.
    A missing API configuration is not recoverable and propagates.
    """

    def __init__(self, api: Optional[Api] = None, settings: Optional[Settings] = None,
                 notifier: Optional[Notifier] = None) -> None:
        self.settings = settings or load_settings()
        self.api = api or Api.from_settings(self.settings)
        self.notifier = notifier or Notifier()
        self.clients = ClientService(self.api)
        self.instances = InstanceService(self.api)
        self.budgets = BudgetReconciler(self.api)
        self.invoices = InvoiceService(self.api, self.settings)
        self.saving = False

    def _run(self, action: str, fn: Callable[[], T], error_message: str,
             success_message: Optional[str] = None) -> Optional[T]:
        try:
            result = fn()
        except ConfigurationError:
            raise
        except VantraError as e:
            logger.error("%s failed: %s", action, e)
            self.notifier.error(error_message)
            return None
        if success_message:
            self.notifier.success(success_message)
        return result

    # Budget
    def save_budget(self, client_id: str, previous: Sequence[ServiceInstance],
                    current: Sequence[BudgetItem]) -> Optional[List[ServiceInstance]]:
        """Returns the reloaded instances, or None when the save failed."""
        if self.saving:
            logger.warning("Budget save of client %s ignored: a save is already running", client_id)
            return None
        self.saving = True
        try:
            result = self.budgets.save(client_id, previous, current)
        except ConfigurationError:
            raise
        except CatalogCreationError as e:
            logger.error("Budget save of client %s: %s (created: %s)", client_id, e, e.created)
            self.notifier.error("Error al crear servicios personalizados")
            return None
        except VantraError as e:
            logger.error("Budget save of client %s failed: %s", client_id, e)
            self.notifier.error("Error al guardar el presupuesto")
            return None
        finally:
            self.saving = False

        self.notifier.success("Presupuesto actualizado")
        return result.instances

    def push_budget(self, client_id: str, items: Sequence[BudgetItem]) -> Optional[SyncResult]:
        return self._run(
            f"Bulk budget push of client {client_id}",
            lambda: self.budgets.push_full(client_id, items),
            "Error al sincronizar servicios",
            "Servicios sincronizados",
        )

    # Clients
    def change_status(self, client_id: str, status: str) -> Optional[Client]:
        return self._run(
            f"Status change of client {client_id} to {status}",
            lambda: self.clients.set_status(client_id, status),
            "Error al actualizar estado",
        )

    def deactivate_client(self, client_id: str) -> Optional[Client]:
        return self._run(
            f"Deactivation of client {client_id}",
            lambda: self.clients.deactivate(client_id),
            "Error al dar de baja el cliente",
            "Cliente dado de baja",
        )

    def reactivate_client(self, client_id: str) -> Optional[Client]:
        return self._run(
            f"Reactivation of client {client_id}",
            lambda: self.clients.reactivate(client_id),
            "Error al reactivar el cliente",
            "Cliente reactivado",
        )

    # Invoices
    def generate_invoice(self, client: Client) -> Optional[Invoice]:
        if not client.id:
            raise ValueError("generate_invoice requires a saved client")

        def _do() -> Invoice:
            active = self.instances.list_for_client(client.id, include_inactive=False)
            inv = self.invoices.build_invoice(client.id, active, client_name=client.name)
            return self.invoices.create_invoice(inv)

        try:
            return self._run(
                f"Invoice generation for client {client.id}",
                _do,
                "Error al generar la factura",
                "Factura generada",
            )
        except ValueError as e:
            logger.info("No invoice for client %s: %s", client.id, e)
            self.notifier.warning("El cliente no tiene servicios activos")
            return None

    def download_pdf(self, invoice_id: str, out_dir: Optional[str] = None) -> Optional[Path]:
        try:
            return self._run(
                f"PDF download of invoice {invoice_id}",
                lambda: self.invoices.export_invoice_pdf(invoice_id, out_dir=out_dir),
                "Error al descargar el PDF",
            )
        except RuntimeError as e:
            # no PDF engine on this machine
            logger.error("Local PDF rendering unavailable: %s", e)
            self.notifier.error("Error al generar el PDF")
            return None
