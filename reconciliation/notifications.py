"""
Outbound notification dispatch.

WebhookNotifier POSTs a JSON payload

    {"recipient": ..., "subject": ..., "body": ..., "attachments": [...]}

to NOTIFY_WEBHOOK_URL (a mail relay, chat hook, etc).  Every call returns a
dict describing the outcome ("success", "failed" or "skipped") instead of
raising, so callers only need to log it.

Subject and body of invoice notices are rendered from sandboxed Jinja2
templates; operators can override them with ``invoice_notice_subject.j2`` /
``invoice_notice_body.j2`` in $CONFIG_DIR.
"""
import json
import logging
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import BaseLoader, FileSystemLoader, TemplateNotFound
from jinja2.sandbox import SandboxedEnvironment

from models.invoice import Invoice
from models.job import Job
from models.money import format_money

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED  = "failed"
STATUS_SKIPPED = "skipped"

DEFAULT_SUBJECT_TEMPLATE = "Invoice {{ invoice.invoice_no }} for job {{ job.job_no }}"

DEFAULT_BODY_TEMPLATE = """\
Hello {{ to_name }},

{{ from_name }} has issued invoice {{ invoice.invoice_no }} for job {{ job.job_no }}.

Amount due: {{ amount }}
{% if invoice.due_at %}Due date:   {{ invoice.due_at[:10] }}
{% endif %}
{% if attachments %}The invoice document is attached.
{% endif %}"""


class InvoiceNoticeTemplates:
    """Renders the subject and body of an invoice notice."""

    def __init__(self, template_dir: Optional[Path] = None) -> None:
        self.template_dir = template_dir
        self._default_env = SandboxedEnvironment(loader=BaseLoader(), keep_trailing_newline=True)
        self._file_env = (
            SandboxedEnvironment(loader=FileSystemLoader(str(template_dir)), keep_trailing_newline=True)
            if template_dir else None
        )

    def _get(self, name: str, default: str):
        if self._file_env is not None:
            try:
                return self._file_env.get_template(name)
            except TemplateNotFound:
                pass
        return self._default_env.from_string(default)

    def render(
        self,
        invoice: Invoice,
        job: Job,
        from_name: str,
        to_name: str,
        attachments: Optional[list] = None,
    ) -> tuple[str, str]:
        context = {
            "invoice": invoice,
            "job": job,
            "from_name": from_name,
            "to_name": to_name,
            "amount": format_money(invoice.amount),
            "attachments": attachments or [],
        }
        subject = self._get("invoice_notice_subject.j2", DEFAULT_SUBJECT_TEMPLATE).render(**context)
        body = self._get("invoice_notice_body.j2", DEFAULT_BODY_TEMPLATE).render(**context)
        return subject.strip(), body


class WebhookNotifier:
    """Sends notifications as JSON to a configured webhook URL."""

    def __init__(
        self,
        url: Optional[str],
        headers_json: Optional[str] = None,
        timeout: int = 30,
    ) -> None:
        self.url = url
        self.headers_json = headers_json
        self.timeout = timeout

    def send_notification(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachments: Optional[list[str]] = None,
    ) -> Dict[str, Any]:
        """Fire-and-forget.  Returns the outcome; never raises."""
        if not self.url:
            return {"status": STATUS_SKIPPED, "reason": "NOTIFY_WEBHOOK_URL not configured"}

        payload = json.dumps({
            "recipient": recipient,
            "subject": subject,
            "body": body,
            "attachments": attachments or [],
        }).encode("utf-8")

        req = urllib.request.Request(self.url, data=payload, method="POST")
        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("User-Agent", "Printchain-Reconciliation-Notifier/1.0")

        if self.headers_json:
            try:
                for k, v in json.loads(self.headers_json).items():
                    req.add_header(k, str(v))
            except (json.JSONDecodeError, AttributeError) as e:
                logger.warning("Failed to parse NOTIFY_WEBHOOK_HEADERS: %s", e)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                status_code = response.getcode()
                logger.info("Notification sent to %s: HTTP %d", recipient, status_code)
                return {"status": STATUS_SUCCESS, "status_code": status_code}
        except urllib.error.HTTPError as e:
            resp_body = e.read().decode("utf-8", errors="replace") if e.fp else str(e)
            logger.error("Notification to %s failed: HTTP %d - %s", recipient, e.code, resp_body)
            return {"status": STATUS_FAILED, "status_code": e.code, "error": resp_body[:500]}
        except Exception as e:
            logger.error("Notification to %s failed: %s", recipient, e)
            return {"status": STATUS_FAILED, "error": str(e)}
