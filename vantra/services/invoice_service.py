from __future__ import annotations

import logging
import os
import re
from datetime import date, timedelta
from pathlib import Path
from shutil import which
from typing import List, Optional, Sequence

import pdfkit  # used when wkhtmltopdf is available
from jinja2 import Environment, FileSystemLoader, select_autoescape

from vantra.adapters import adapt_invoice, adapt_invoice_for_api, unwrap_list, unwrap_record
from vantra.api.resources import Api
from vantra.config import Settings, load_settings
from vantra.exceptions import ApiError
from vantra.models.invoice import Invoice, InvoiceLine
from vantra.models.service import ServiceInstance
from vantra.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"
NUMBER_PREFIX = "A-0001-"
_NUMBER_RE = re.compile(r"^A-0001-(\d{8})$")
INVOICE_STATUSES = ("pending", "paid")


# ---------- Helpers ----------
def _money(value: float) -> str:
    # 45000.5 -> "$ 45.000,50"
    s = f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"$ {s}"


def _slug(text: str) -> str:
    text = re.sub(r"[^\w\s-]", "", text or "", flags=re.UNICODE).strip()
    return re.sub(r"[\s]+", "_", text) or "cliente"


def _clean_path(p: str) -> str:
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    return os.path.normpath(p)


def _find_wkhtmltopdf(settings: Settings) -> Optional[str]:
    """
    Locate wkhtmltopdf:
    - WKHTMLTOPDF / WKHTMLTOPDF_CMD or settings.json pdf.wkhtmltopdf_path (see load_settings)
    - PATH
    """
    if settings.wkhtmltopdf_path:
        path = _clean_path(settings.wkhtmltopdf_path)
        if Path(path).is_file():
            return path
        logger.warning("Configured wkhtmltopdf not found: %s", path)

    found = which("wkhtmltopdf")
    if found:
        return _clean_path(found)
    return None


def _render_pdf_with_weasyprint(html: str, base_url: Optional[str]) -> bytes:
    """Fallback when wkhtmltopdf is missing or fails."""
    try:
        from weasyprint import HTML
    except ImportError as e:
        raise RuntimeError(
            "No wkhtmltopdf found and WeasyPrint is not installed. "
            "Install WeasyPrint (pip install vantra[pdf]) or configure WKHTMLTOPDF.\n"
            f"Details: {e}"
        ) from e
    return HTML(string=html, base_url=base_url).write_pdf()


# ---------- Service ----------
class InvoiceService:
    """
    Invoices of the billing backend, with a local JSON copy of every invoice
    seen or created. The copy feeds invoice numbering and the PDF fallback
    when the backend cannot render one.
    """

    def __init__(self, api: Api, settings: Optional[Settings] = None,
                 repo: Optional[JsonRepository] = None) -> None:
        self.api = api
        self.settings = settings or load_settings()
        self.repo = repo or JsonRepository(
            self.settings.data_dir / "invoices.json", entity_name="invoice", key="id"
        )

    # ----------- cache -----------
    def _cache(self, inv: Invoice) -> None:
        self.repo.upsert(inv)

    def cached(self, invoice_id: str) -> Optional[Invoice]:
        d = self.repo.get_by_id(invoice_id)
        return adapt_invoice(d) if d else None

    # ----------- numbering -----------
    def _next_number(self) -> str:
        last = 0
        for d in self.repo.list_all():
            m = _NUMBER_RE.match(str(d.get("number") or ""))
            if m:
                last = max(last, int(m.group(1)))
        return f"{NUMBER_PREFIX}{last + 1:08d}"

    # ----------- building -----------
    def build_invoice(self, client_id: str, instances: Sequence[ServiceInstance],
                      issue_date: Optional[date] = None, client_name: Optional[str] = None) -> Invoice:
        lines = [
            InvoiceLine(description=i.name or i.description, quantity=i.quantity, unit_price=i.unit_price)
            for i in instances if i.is_active
        ]
        if not lines:
            raise ValueError(f"Client {client_id} has no active services to invoice")

        issued = issue_date or date.today()
        inv = Invoice(
            number=self._next_number(),
            client_id=client_id,
            client_name=client_name,
            issue_date=issued,
            due_date=issued + timedelta(days=self.settings.invoice_due_days),
            lines=lines,
        )
        inv.recompute_total()
        return inv

    # ----------- API -----------
    def create_invoice(self, inv: Invoice) -> Invoice:
        payload = adapt_invoice_for_api(inv)
        created = unwrap_record(self.api.invoices.create(payload))
        saved = adapt_invoice({**payload, "id": inv.id, "client_name": inv.client_name, **created}) or inv
        self._cache(saved)
        logger.info("Invoice %s created for client %s (total %.2f)", saved.number, saved.client_id, saved.total)
        return saved

    def list_client_invoices(self, client_id: str) -> List[Invoice]:
        rows = unwrap_list(self.api.invoices.get_all(client_id=client_id))
        out: List[Invoice] = []
        for r in rows:
            inv = adapt_invoice(r)
            if inv is None or inv.client_id != str(client_id):
                continue
            self._cache(inv)
            out.append(inv)
        out.sort(key=lambda i: (i.issue_date, i.created_at), reverse=True)
        return out

    def set_status(self, invoice_id: str, status: str) -> Invoice:
        if status not in INVOICE_STATUSES:
            raise ValueError(f"Unknown invoice status: {status}")
        # the PATCH body must carry the whole invoice
        known = self.cached(invoice_id) or adapt_invoice(unwrap_record(self.api.invoices.get(invoice_id)))
        if known is None:
            raise ApiError(f"Invoice {invoice_id} could not be loaded before its status change")
        payload = adapt_invoice_for_api(known.model_copy(update={"status": status}))
        updated = unwrap_record(self.api.invoices.update(invoice_id, payload))
        inv = adapt_invoice({**payload, "id": invoice_id, "client_name": known.client_name, **updated})
        if inv is None:
            raise ApiError(f"Invoice {invoice_id} could not be read back after update")
        self._cache(inv)
        return inv

    # ----------- PDF -----------
    def _render_invoice_html(self, inv: Invoice) -> str:
        env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        tpl = env.get_template("invoice.html")
        company = self.settings.company
        ctx = {
            "invoice": {
                "number": inv.number or inv.id,
                "invoice_type": inv.invoice_type,
                "issue_date": inv.issue_date.strftime("%d/%m/%Y"),
                "due_date": inv.due_date.strftime("%d/%m/%Y") if inv.due_date else "",
                "lines": [
                    {
                        "description": ln.description,
                        "quantity": f"{ln.quantity:g}",
                        "unit_price": _money(ln.unit_price),
                        "total": _money(ln.total),
                    } for ln in inv.lines
                ],
                "total": _money(inv.total),
                "notes": inv.notes,
            },
            "client": {"name": inv.client_name or "Cliente"},
            "company": {
                "name": company.get("name", "Vantra"),
                "address": company.get("address", ""),
                "tax_id": company.get("tax_id", ""),
                "email": company.get("email", ""),
            },
        }
        return tpl.render(**ctx)

    def render_pdf(self, inv: Invoice) -> bytes:
        """wkhtmltopdf (pdfkit) first, WeasyPrint otherwise."""
        html = self._render_invoice_html(inv)

        wkhtml = _find_wkhtmltopdf(self.settings)
        if wkhtml:
            try:
                config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {"quiet": "", "encoding": "UTF-8"}
                return pdfkit.from_string(html, False, options=options, configuration=config)
            except OSError as e:
                logger.warning("wkhtmltopdf failed (%s). Falling back to WeasyPrint...", e)

        return _render_pdf_with_weasyprint(html, base_url=str(TEMPLATES_DIR))

    def get_invoice_pdf(self, invoice_id: str) -> bytes:
        """Backend PDF; on failure, rendered locally from the cached invoice."""
        try:
            pdf = self.api.invoices.get_pdf(invoice_id)
            if pdf:
                return pdf
            logger.warning("Empty PDF for invoice %s, rendering locally", invoice_id)
        except ApiError as e:
            logger.warning("PDF download failed for invoice %s (%s), rendering locally", invoice_id, e)

        inv = self.cached(invoice_id)
        if inv is None:
            raise ApiError(f"Invoice {invoice_id} has no PDF and is not in the local cache")
        return self.render_pdf(inv)

    def export_invoice_pdf(self, invoice_id: str, out_dir: Optional[str] = None) -> Path:
        pdf = self.get_invoice_pdf(invoice_id)
        inv = self.cached(invoice_id)

        exports_dir = Path(out_dir) if out_dir else self.settings.exports_dir / "facturas"
        exports_dir.mkdir(parents=True, exist_ok=True)
        number = (inv.number if inv and inv.number else invoice_id)
        client = _slug(inv.client_name if inv and inv.client_name else "")
        out_path = exports_dir / f"{number} ({client}).pdf"
        out_path.write_bytes(pdf)
        logger.info("Invoice PDF written to %s", out_path)
        return out_path
