"""
Overdue Reminders -- Configuration Module

Centralizes all configuration for the overdue reminder generator.
Loads defaults from dataclasses, then overlays any overrides from config.yaml.

Usage:
    from overdue_reminders.config import get_config
    cfg = get_config()                         # loads config.yaml if present
    cfg = get_config("path/to/custom.yaml")    # loads a specific file
    print(cfg.dispatch.concurrency_limit)      # 5
    print(cfg.aging.buckets[2].label)          # "61+"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

# ---------------------------------------------------------------------------
# Path constants -- everything relative to the project root
# ---------------------------------------------------------------------------
_THIS_DIR = Path(__file__).resolve().parent          # overdue_reminders/
PROJECT_ROOT = _THIS_DIR.parent                       # repository root
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"

ACCESS_TOKEN_ENV = "REMINDERS_ACCESS_TOKEN"


# ===================================================================
# 1. Column Aliases
# ===================================================================

@dataclass
class ColumnAliases:
    """Ordered header aliases per canonical field (matched case-insensitively).

    Order matters: the first alias that matches a header wins, so more
    specific names go before generic ones.
    """
    customer: list[str] = field(default_factory=lambda: [
        "customer",
        "customer name",
        "account name",
        "client",
        "client name",
        "trading name",
    ])
    email: list[str] = field(default_factory=lambda: [
        "email",
        "e-mail",
        "email address",
        "contact email",
    ])
    invoice: list[str] = field(default_factory=lambda: [
        "invoice",
        "invoice number",
        "invoice #",
        "inv#",
        "doc",
        "document",
        "invoice id",
        "invoiceid",
        "inv id",
    ])
    amount: list[str] = field(default_factory=lambda: [
        "amount",
        "total",
        "debit",
        "balance",
        "amount due",
        "outstanding",
        "total overdue",
        "overdue total",
        "total_overdue",
    ])
    due_date: list[str] = field(default_factory=lambda: [
        "duedate",
        "due date",
        "due",
        "terms date",
    ])

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "customer": list(self.customer),
            "email": list(self.email),
            "invoice": list(self.invoice),
            "amount": list(self.amount),
            "due_date": list(self.due_date),
        }


# ===================================================================
# 2. Aging Buckets
# ===================================================================

@dataclass
class AgingBucketSpec:
    """One aging bucket: inclusive day range, open-ended when max_days is None."""
    label: str
    min_days: Optional[int]
    max_days: Optional[int]

    def contains(self, days: int) -> bool:
        if self.min_days is not None and days < self.min_days:
            return False
        if self.max_days is not None and days > self.max_days:
            return False
        return True


DEFAULT_BUCKETS: list[AgingBucketSpec] = [
    # Not-yet-due (negative) day counts land in the first bucket.
    AgingBucketSpec(label="0-30", min_days=None, max_days=30),
    AgingBucketSpec(label="31-60", min_days=31, max_days=60),
    AgingBucketSpec(label="61+", min_days=61, max_days=None),
]


@dataclass
class AgingConfig:
    """Dashboard aggregation settings."""
    buckets: list[AgingBucketSpec] = field(
        default_factory=lambda: [
            AgingBucketSpec(b.label, b.min_days, b.max_days) for b in DEFAULT_BUCKETS
        ]
    )
    top_n: int = 10


# ===================================================================
# 3. Templates
# ===================================================================

@dataclass
class TemplateSettings:
    """Which reminder template to use and how subjects are built."""
    default_template: str = "Friendly"
    # Inline custom template text; takes effect when default_template == "Custom"
    custom_template: str = ""
    # Alternatively, a file holding the custom template (relative to project root)
    custom_template_file: str = ""
    subject_template: str = "{company} Overdue Invoices - {customer}"
    currency_symbol: str = "$"
    empty_lines_text: str = "(none)"

    def load_custom_template(self) -> str:
        """Return the custom template text, reading custom_template_file if set."""
        if self.custom_template:
            return self.custom_template
        if self.custom_template_file:
            p = Path(self.custom_template_file)
            if not p.is_absolute():
                p = PROJECT_ROOT / p
            return p.read_text(encoding="utf-8")
        return ""


# ===================================================================
# 4. Sender Info
# ===================================================================

@dataclass
class SenderInfo:
    """Identity used in subjects and Reply-To headers."""
    company: str = "Paramount Liquor"
    # Applied to every rendered message when set
    reply_to: str = ""
    # Drafts always carry a Reply-To; this is used when nothing else is set
    default_reply_to: str = "accounts@yourcompany.com"

    def draft_reply_to(self) -> str:
        return self.reply_to or self.default_reply_to


# ===================================================================
# 5. Dispatch / Transport Settings
# ===================================================================

@dataclass
class DispatchSettings:
    """Bounded-concurrency send settings and provider endpoints."""
    concurrency_limit: int = 5
    timeout_seconds: float = 30.0
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    gmail_base_url: str = "https://gmail.googleapis.com/gmail/v1"
    draft_batch_size: int = 20          # Graph $batch accepts at most 20 requests
    access_token: str = ""              # set via env var REMINDERS_ACCESS_TOKEN

    def __post_init__(self):
        self.access_token = self.access_token or os.environ.get(ACCESS_TOKEN_ENV, "")


# ===================================================================
# 6. Output Directory
# ===================================================================

@dataclass
class OutputConfig:
    """Where exported .eml files and run reports are written."""
    eml_dir: str = "output/eml"
    report_dir: str = "output/reports"
    log_file: str = ""

    def resolve(self, rel_path: str) -> Path:
        p = Path(rel_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p

    def ensure_dirs(self) -> None:
        """Create output directories if they don't exist."""
        for d in [self.eml_dir, self.report_dir]:
            self.resolve(d).mkdir(parents=True, exist_ok=True)
        if self.log_file:
            self.resolve(self.log_file).parent.mkdir(parents=True, exist_ok=True)


# ===================================================================
# Master Config
# ===================================================================

@dataclass
class RemindersConfig:
    """Top-level configuration container for the reminder generator."""
    column_aliases: ColumnAliases = field(default_factory=ColumnAliases)
    aging: AgingConfig = field(default_factory=AgingConfig)
    templates: TemplateSettings = field(default_factory=TemplateSettings)
    sender: SenderInfo = field(default_factory=SenderInfo)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    output: OutputConfig = field(default_factory=OutputConfig)


# ===================================================================
# YAML Loading
# ===================================================================

def _apply_yaml_to_config(cfg: RemindersConfig, data: dict) -> None:
    """Apply a parsed YAML dict onto a RemindersConfig instance."""

    # --- aging buckets are a list of specs, not a flat section ---
    aging = data.get("aging")
    if isinstance(aging, dict):
        if "buckets" in aging:
            cfg.aging.buckets = [
                AgingBucketSpec(
                    label=str(b["label"]),
                    min_days=b.get("min_days"),
                    max_days=b.get("max_days"),
                )
                for b in aging["buckets"]
            ]
        if "top_n" in aging:
            cfg.aging.top_n = int(aging["top_n"])

    # --- simple sub-configs ---
    _section_map = {
        "column_aliases": cfg.column_aliases,
        "templates": cfg.templates,
        "sender": cfg.sender,
        "dispatch": cfg.dispatch,
        "output": cfg.output,
    }

    for section_key, section_obj in _section_map.items():
        if section_key in data and isinstance(data[section_key], dict):
            for attr, val in data[section_key].items():
                if hasattr(section_obj, attr):
                    setattr(section_obj, attr, val)


def get_config(yaml_path: Optional[str | Path] = None) -> RemindersConfig:
    """Build a RemindersConfig, optionally overlaying values from a YAML file.

    Args:
        yaml_path: Path to a config.yaml file.  If None, looks for the
                   default config.yaml at the project root.  If that file
                   doesn't exist, returns pure defaults.

    Returns:
        Fully populated RemindersConfig instance.

    Raises:
        FileNotFoundError: If an explicit yaml_path does not exist.
    """
    cfg = RemindersConfig()

    if yaml_path is not None and not Path(yaml_path).exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    path = Path(yaml_path) if yaml_path else DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        _apply_yaml_to_config(cfg, data)

    return cfg
