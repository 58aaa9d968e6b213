from __future__ import annotations

import logging
from typing import Any, List, Mapping

from vantra.adapters import adapt_service_instance, adapt_service_instance_for_api, unwrap_list, unwrap_record
from vantra.api.resources import Api
from vantra.models.service import ServiceInstance

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"name", "description", "unit_price", "quantity", "is_active", "start_date"})


class InstanceService:
    """Service instances of one client, edited one at a time."""

    def __init__(self, api: Api) -> None:
        self.api = api

    def list_for_client(self, client_id: str, include_inactive: bool = True) -> List[ServiceInstance]:
        rows = unwrap_list(self.api.services.list_for_client(client_id))
        instances = [adapt_service_instance(r) for r in rows]
        if not include_inactive:
            instances = [i for i in instances if i.is_active]
        return instances

    def update_instance(self, instance: ServiceInstance, changes: Mapping[str, Any]) -> ServiceInstance:
        """
        PATCH bodies always carry the whole instance: omitted fields would be
        cleared on the server, same as for clients.
        """
        if not instance.id:
            raise ValueError("update_instance requires an instance id")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Field(s) not editable on a service instance: {', '.join(sorted(unknown))}")

        merged = instance.model_copy(update=dict(changes))
        payload = adapt_service_instance_for_api(merged)
        updated = unwrap_record(self.api.services.update(instance.id, payload))
        logger.debug("Service instance %s updated (%s)", instance.id, sorted(changes))
        return adapt_service_instance({**payload, "id": instance.id, **updated})

    def reactivate(self, instance_id: str) -> ServiceInstance:
        resp = unwrap_record(self.api.services.reactivate(instance_id))
        if resp:
            return adapt_service_instance(resp)
        return adapt_service_instance(unwrap_record(self.api.services.get(instance_id)))

    def remove(self, instance_id: str) -> None:
        self.api.services.remove(instance_id)
        logger.info("Service instance %s removed", instance_id)
