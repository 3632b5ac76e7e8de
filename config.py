"""
Central configuration for the reconciliation engine.

All paths, tolerances, payment terms and company identifiers are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/reconciliation_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_OUTPUT_DIR     = PROJECT_ROOT / "output"
DEFAULT_DB_PATH        = DEFAULT_OUTPUT_DIR / "reconciliation.db"
DEFAULT_DOCUMENTS_DIR  = DEFAULT_OUTPUT_DIR / "documents"
SETTINGS_FILENAME      = "reconciliation_settings.json"


def config_dir() -> Path:
    return Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))


@dataclass
class Config:
    # --- Storage ---
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    documents_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DOCUMENTS_DIR", str(DEFAULT_DOCUMENTS_DIR)))
    )

    # --- Reconciliation ---
    amount_tolerance: Decimal = Decimal("0.01")   # $0.01 for every amount comparison
    audit_batch_size: int = field(
        default_factory=lambda: int(os.getenv("AUDIT_BATCH_SIZE", "200"))
    )
    # Fallback split for auto POs created without an explicit vendor amount
    auto_po_vendor_rate: Decimal = Decimal("0.80")

    # --- Invoice terms (days from issue) ---
    invoice_due_days: int = 30
    jd_invoice_due_days: int = 10     # JD → Bradford is Net 10

    # --- Company identifiers in the default routing ---
    impact_company_id: str = field(
        default_factory=lambda: os.getenv("IMPACT_COMPANY_ID", "impact-direct")
    )
    bradford_company_id: str = field(
        default_factory=lambda: os.getenv("BRADFORD_COMPANY_ID", "bradford")
    )
    jd_company_id: str = field(
        default_factory=lambda: os.getenv("JD_COMPANY_ID", "jd-graphic")
    )

    # --- Notifications ---
    notify_webhook_url: Optional[str] = field(
        default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_URL")
    )
    notify_webhook_headers_json: Optional[str] = field(
        default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_HEADERS")
    )
    # JSON object: { "<company id>": "<email>", … }
    notification_recipients_json: Optional[str] = field(
        default_factory=lambda: os.getenv("NOTIFICATION_RECIPIENTS")
    )

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from reconciliation_settings.json if present."""
        settings_file = config_dir() / SETTINGS_FILENAME
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "amount_tolerance":             Decimal,
            "audit_batch_size":             int,
            "auto_po_vendor_rate":          Decimal,
            "invoice_due_days":             int,
            "jd_invoice_due_days":          int,
            "notify_webhook_url":           str,
            "notify_webhook_headers_json":  str,
            "notification_recipients_json": str,
        }
        # Environment variables win over the settings file
        _env_names = {
            "audit_batch_size":             "AUDIT_BATCH_SIZE",
            "notify_webhook_url":           "NOTIFY_WEBHOOK_URL",
            "notify_webhook_headers_json":  "NOTIFY_WEBHOOK_HEADERS",
            "notification_recipients_json": "NOTIFICATION_RECIPIENTS",
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key not in _type_map or not hasattr(self, key):
                    continue
                if key in _env_names and os.getenv(_env_names[key]) is not None:
                    continue
                caster = _type_map[key]
                setattr(self, key, caster(str(val)) if caster is Decimal else caster(val))
        except Exception as exc:
            logger.warning("Failed to load %s: %s", SETTINGS_FILENAME, exc)

    @property
    def notification_recipients(self) -> dict[str, str]:
        if not self.notification_recipients_json:
            return {}
        try:
            return dict(json.loads(self.notification_recipients_json))
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            logger.warning("Failed to parse NOTIFICATION_RECIPIENTS: %s", exc)
            return {}

    def ensure_output_dir(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.documents_dir.mkdir(parents=True, exist_ok=True)
