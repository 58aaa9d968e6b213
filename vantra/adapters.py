"""
Translation between the backend's records (snake_case, Spanish legacy names,
sometimes wrapped in {"data": ...}) and the models the rest of the package uses.

Every adapt_* function is total: whatever the backend sends, it returns a model
with defaults filled in. HTTP failures are the caller's business.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from vantra.models.catalog import CatalogItem, Combo, ComboMember
from vantra.models.client import (
    Client,
    DEFAULT_NAME,
    DEFAULT_PLAN,
    DEFAULT_STATUS,
    DEFAULT_TAX_CONDITION,
)
from vantra.models.common import ONE_TIME, RECURRING, to_amount, utcnow_iso
from vantra.models.invoice import Invoice, InvoiceLine
from vantra.models.service import ServiceInstance

logger = logging.getLogger(__name__)

_BLOCK_END = re.compile(r"<br\s*/?>|</p>|</div>|</li>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_ENTITIES = (("&nbsp;", " "), ("&amp;", "&"), ("&lt;", "<"), ("&gt;", ">"))


# ---------- Helpers ---------- #

def strip_html(html: Optional[str]) -> str:
    """Rich-text notes -> plain text. Breaks and block ends become newlines."""
    if not html:
        return ""
    text = _BLOCK_END.sub("\n", str(html))
    text = _TAG.sub("", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text.strip()


def _str(v: Any) -> str:
    return "" if v is None else str(v)


def _pick(d: Mapping[str, Any], *keys: str) -> Any:
    """First key whose value is not None (JS `??` chain)."""
    for k in keys:
        v = d.get(k)
        if v is not None:
            return v
    return None


def _pick_truthy(d: Mapping[str, Any], *keys: str) -> Any:
    """First key with a truthy value (JS `||` chain)."""
    for k in keys:
        v = d.get(k)
        if v:
            return v
    return None


def _as_bool(v: Any, default: bool = True) -> bool:
    if v is None:
        return default
    return v is True or (type(v) is int and v == 1) or v == "true"


def _as_qty(v: Any) -> int:
    try:
        q = int(float(v))
    except (TypeError, ValueError):
        return 1
    return q if q > 0 else 1


def _as_id(v: Any) -> Optional[str]:
    if v is None or v == "":
        return None
    return str(v)


def _service_type(d: Mapping[str, Any]) -> str:
    t = d.get("type") or d.get("service_type")
    if t in (RECURRING, ONE_TIME):
        return t
    if t == "one-time" or t == "unique":
        return ONE_TIME
    rec = d.get("is_recurrent")
    if rec is not None:
        return RECURRING if _as_bool(rec) else ONE_TIME
    return RECURRING


# ---------- Envelopes ---------- #

def unwrap_list(response: Any) -> List[Dict[str, Any]]:
    """Bare array or {"data": [...]} -> list of dicts."""
    if isinstance(response, list):
        rows = response
    elif isinstance(response, dict):
        rows = response.get("data")
        if rows is None:
            rows = response.get("items", [])
    else:
        rows = []
    if not isinstance(rows, list):
        return []
    return [r for r in rows if isinstance(r, dict)]


def unwrap_record(response: Any) -> Dict[str, Any]:
    """Record or {"data": {...}} -> dict (empty when the body was empty)."""
    if not isinstance(response, dict):
        return {}
    inner = response.get("data")
    if isinstance(inner, dict):
        return inner
    return response


def total_pages(response: Any) -> int:
    if not isinstance(response, dict):
        return 1
    pagination = response.get("pagination") or {}
    try:
        return max(1, int(pagination.get("totalPages") or 1))
    except (TypeError, ValueError, AttributeError):
        return 1


# ---------- Clients ---------- #

def adapt_client(api_client: Mapping[str, Any]) -> Client:
    d = api_client if isinstance(api_client, Mapping) else {}

    balance = to_amount(_pick(d, "current_balance", "saldo", "balance"))
    debt = abs(balance) if balance < 0 else 0.0
    company = _str(d.get("company_name"))
    display = _pick_truthy(d, "company_name", "business_name", "name") or DEFAULT_NAME
    metadata = d.get("metadata")

    return Client(
        id=_as_id(d.get("id")),
        name=_str(display),
        business_name=company,
        contact_name=_str(_pick_truthy(d, "nombre", "contact_name")),
        dni=_str(d.get("dni")),
        alt_contact=_str(d.get("contacto")),
        cuit=_str(_pick_truthy(d, "tax_id", "cuit")),
        tax_id=_str(d.get("tax_id")),
        tax_condition=_str(d.get("tax_condition")) or DEFAULT_TAX_CONDITION,
        internal_code=_str(d.get("internal_code")),
        email=_str(_pick_truthy(d, "email_billing", "email")),
        phone=_str(d.get("phone_whatsapp")),
        whatsapp=_str(d.get("phone_whatsapp")),
        address=_str(d.get("address")),
        city=_str(d.get("localidad")),
        zip_code=_str(d.get("codigopostal")),
        province=_str(d.get("provincia")),
        category=_str(d.get("categoria")),
        status=_str(d.get("status")) or DEFAULT_STATUS,
        is_active=_as_bool(d.get("is_active"), default=True),
        balance=balance,
        debt=debt,
        service_plan=_str(_pick_truthy(d, "service_plan", "plan_name")) or DEFAULT_PLAN,
        price_list_id=d.get("idlista"),
        price_list_name=_str(d.get("lista")) or None,
        obs=strip_html(d.get("observacion")),
        internal_obs=strip_html(d.get("obsinterna")),
        metadata=metadata if isinstance(metadata, dict) else {},
        created_at=_str(d.get("created_at")) or utcnow_iso(),
    )


def adapt_client_for_api(client: Client | Mapping[str, Any]) -> Dict[str, Any]:
    """
    Writable fields only. Callers never PATCH this alone: the backend clears
    what is missing, see ClientService.update_client_field.
    """
    c = client if isinstance(client, Client) else Client.model_validate(dict(client))
    return {
        # required by the backend
        "company_name": c.business_name or (c.name if c.name != DEFAULT_NAME else ""),
        "tax_id": c.cuit or c.tax_id,
        "email_billing": c.email,
        # optional
        "tax_condition": c.tax_condition,
        "phone_whatsapp": c.phone or c.whatsapp,
        "address": c.address,
        "localidad": c.city,
        "codigopostal": c.zip_code,
        "provincia": c.province,
        "categoria": c.category,
        # contact
        "nombre": c.contact_name or c.name,
        "dni": c.dni,
        # pipeline
        "status": c.status,
        "is_active": c.is_active,
        # notes (plain text, the HTML is gone)
        "obsinterna": c.internal_obs,
        # financial
        "current_balance": c.balance,
    }


# ---------- Catalog & combos ---------- #

def adapt_catalog_item(raw: Mapping[str, Any]) -> CatalogItem:
    d = raw if isinstance(raw, Mapping) else {}
    return CatalogItem(
        id=_as_id(d.get("id")),
        name=_str(_pick_truthy(d, "name", "description", "label")),
        price=to_amount(_pick(d, "price", "unit_price", "list_price")),
        description=_str(_pick_truthy(d, "desc", "description")),
        service_type=_service_type(d),
    )


def adapt_combo(raw: Mapping[str, Any]) -> Combo:
    d = raw if isinstance(raw, Mapping) else {}
    raw_members = _pick(d, "items", "services", "members") or []
    members: List[ComboMember] = []
    for m in raw_members if isinstance(raw_members, list) else []:
        if not isinstance(m, Mapping):
            continue
        members.append(ComboMember(
            catalog_item_id=_as_id(_pick(m, "catalog_item_id", "service_id", "catalog_id", "id")),
            quantity=_as_qty(m.get("quantity", 1)),
            price=to_amount(_pick(m, "price", "unit_price")),
        ))

    price = _pick(d, "price", "custom_price", "customPriceValue")
    if d.get("is_custom_price") is False or d.get("isCustomPrice") is False:
        price = None
    price_val = to_amount(price) if price is not None else None

    return Combo(
        id=_as_id(d.get("id")),
        name=_str(d.get("name")),
        description=_str(d.get("description")),
        members=members,
        price=price_val or None,
    )


def adapt_combo_for_api(combo: Combo) -> Dict[str, Any]:
    return {
        "name": combo.name,
        "description": combo.description,
        "items": [
            {"catalog_item_id": m.catalog_item_id, "quantity": m.quantity, "price": m.price}
            for m in combo.members
        ],
        "price": combo.price or 0,
        "is_custom_price": combo.has_custom_price,
    }


# ---------- Service instances ---------- #

def adapt_service_instance(raw: Mapping[str, Any]) -> ServiceInstance:
    d = raw if isinstance(raw, Mapping) else {}
    return ServiceInstance(
        id=_as_id(d.get("id")),
        client_id=_as_id(d.get("client_id")),
        catalog_item_id=_as_id(_pick(d, "catalog_item_id", "service_id", "catalog_id")),
        name=_str(_pick_truthy(d, "name", "description")),
        description=_str(d.get("description")),
        unit_price=to_amount(_pick(d, "unit_price", "price")),
        quantity=_as_qty(d.get("quantity", 1)),
        is_active=_as_bool(d.get("is_active"), default=True),
        service_type=_service_type(d),
        origin_plan_id=_as_id(_pick(d, "origin_plan_id", "origin_combo_id")),
        start_date=_str(_pick(d, "start_date", "startDate")) or None,
    )


def adapt_service_instance_for_api(instance: ServiceInstance) -> Dict[str, Any]:
    return {
        "client_id": instance.client_id,
        "catalog_item_id": instance.catalog_item_id,
        "name": instance.name,
        "description": instance.description,
        "unit_price": instance.unit_price,
        "quantity": instance.quantity,
        "is_active": instance.is_active,
        "type": instance.service_type,
        "is_recurrent": instance.is_recurring,
        "origin_plan_id": instance.origin_plan_id,
        "start_date": instance.start_date,
    }


# ---------- Invoices ---------- #

def adapt_invoice(raw: Mapping[str, Any]) -> Optional[Invoice]:
    """None when the record is too broken to be an invoice (no client)."""
    d = raw if isinstance(raw, Mapping) else {}
    client_id = _as_id(_pick(d, "client_id", "clientId"))
    if client_id is None:
        logger.warning("Invoice record without client id ignored: %r", d.get("id"))
        return None

    lines: List[InvoiceLine] = []
    for ln in _pick(d, "items", "lines") or []:
        if not isinstance(ln, Mapping):
            continue
        lines.append(InvoiceLine(
            description=_str(_pick_truthy(ln, "description", "name")),
            quantity=to_amount(ln.get("quantity"), default=1.0),
            unit_price=to_amount(_pick(ln, "unit_price", "price")),
        ))

    status = _str(d.get("status")).lower()
    payload: Dict[str, Any] = {
        "number": _pick(d, "number", "invoice_number"),
        "invoice_type": _str(_pick(d, "invoice_type", "invoiceType")) or "A",
        "status": "paid" if status == "paid" else "pending",
        "client_id": client_id,
        "client_name": d.get("client_name"),
        "lines": lines,
        "notes": d.get("notes"),
    }
    if d.get("id") is not None:
        payload["id"] = str(d["id"])
    issue = _pick(d, "issue_date", "date")
    if issue:
        payload["issue_date"] = str(issue)[:10]
    due = _pick(d, "due_date", "dueDate")
    if due:
        payload["due_date"] = str(due)[:10]
    if d.get("created_at"):
        payload["created_at"] = str(d["created_at"])

    try:
        inv = Invoice.model_validate(payload)
    except ValueError as e:
        logger.warning("Invoice record %r could not be read: %s", d.get("id"), e)
        return None
    total = _pick(d, "total", "total_amount")
    inv.total = to_amount(total) if total is not None else inv.recompute_total()
    return inv


def adapt_invoice_for_api(invoice: Invoice) -> Dict[str, Any]:
    return {
        "client_id": invoice.client_id,
        "number": invoice.number,
        "invoice_type": invoice.invoice_type,
        "issue_date": invoice.issue_date.isoformat(),
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "items": [
            {"description": ln.description, "quantity": ln.quantity, "unit_price": ln.unit_price}
            for ln in invoice.lines
        ],
        "total": invoice.total,
        "status": invoice.status,
    }
