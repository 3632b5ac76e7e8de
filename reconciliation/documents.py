"""
Invoice document rendering.

Renders an invoice to a standalone HTML document with a sandboxed Jinja2
template and writes it under ``documents_dir``.  The file name doubles as the
document's file id and is stored on the invoice.

Operators can replace the built-in layout by placing
``invoice_document.html.j2`` in $CONFIG_DIR.
"""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from jinja2 import BaseLoader, FileSystemLoader, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from models.money import format_money
from .stores import InvoiceStore, JobStore

logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = "invoice_document.html.j2"

DEFAULT_INVOICE_TEMPLATE = """\
<!DOCTYPE html>
<!--
  Invoice document template.  Copy to config/invoice_document.html.j2 to customise.
  Variables: invoice, job, from_name, to_name, amount, due_date, issued_date,
             generated_at.  Values are HTML-escaped automatically.
-->
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Invoice {{ invoice.invoice_no }}</title>
</head>
<body>
  <header>
    <h1>{{ from_name | upper }}</h1>
    <h2>INVOICE {{ invoice.invoice_no }}</h2>
  </header>
  <table>
    <tr><th>Bill to</th><td>{{ to_name }}</td></tr>
    {% if job %}<tr><th>Job</th><td>{{ job.job_no }}</td></tr>
    {% if job.customer_po_number %}<tr><th>Customer PO#</th><td>{{ job.customer_po_number }}</td></tr>
    {% endif %}{% endif %}
    {% if issued_date %}<tr><th>Issued</th><td>{{ issued_date }}</td></tr>
    {% endif %}
    {% if due_date %}<tr><th>Due</th><td>{{ due_date }}</td></tr>
    {% endif %}
  </table>
  <p class="total">Amount due: <strong>{{ amount }}</strong></p>
  <footer>Generated {{ generated_at }}</footer>
</body>
</html>
"""


def _date_part(iso: Optional[str]) -> Optional[str]:
    return iso[:10] if iso else None


class TemplateDocumentRenderer:
    """Renders invoices to HTML files and records the file id on the invoice."""

    def __init__(
        self,
        invoices: InvoiceStore,
        jobs: JobStore,
        documents_dir: Path,
        company_names: Optional[dict[str, str]] = None,
        template_dir: Optional[Path] = None,
    ) -> None:
        self.invoices = invoices
        self.jobs = jobs
        self.documents_dir = Path(documents_dir)
        self.company_names = company_names or {}
        self.template_dir = template_dir

    def _template(self):
        if self.template_dir and (self.template_dir / TEMPLATE_FILENAME).exists():
            env = SandboxedEnvironment(
                loader=FileSystemLoader(str(self.template_dir)),
                autoescape=select_autoescape(["html", "j2"]),
                keep_trailing_newline=True,
            )
            return env.get_template(TEMPLATE_FILENAME)
        env = SandboxedEnvironment(loader=BaseLoader(), autoescape=True, keep_trailing_newline=True)
        return env.from_string(DEFAULT_INVOICE_TEMPLATE)

    def render_html(self, invoice_id: str) -> str:
        invoice = self.invoices.require(invoice_id)
        job = self.jobs.get(invoice.job_id) if invoice.job_id else None
        return self._template().render(
            invoice=invoice,
            job=job,
            from_name=self.company_names.get(invoice.from_company_id, invoice.from_company_id),
            to_name=self.company_names.get(invoice.to_company_id, invoice.to_company_id),
            amount=format_money(invoice.amount),
            due_date=_date_part(invoice.due_at),
            issued_date=_date_part(invoice.issued_at),
            generated_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        )

    def render_document(self, document_id: str) -> str:
        """Render the invoice, write it to disk and return the file id."""
        invoice = self.invoices.require(document_id)
        html = self.render_html(document_id)

        self.documents_dir.mkdir(parents=True, exist_ok=True)
        file_id = f"{invoice.invoice_no}.html"
        (self.documents_dir / file_id).write_text(html, encoding="utf-8")
        self.invoices.write_fields(document_id, {"file_id": file_id})

        logger.info("Rendered invoice %s → %s", invoice.invoice_no, file_id)
        return file_id
