"""
Configuration management (SSOT).

This module defines ALL configuration for the receipt reconciliation engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Every ledger operation runs inside one scope (owning account)
- OCR is only used when an API key is configured
- Mailbox polling is only started when IMAP credentials are present
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class StorageConfig:
    """Where the ledger database and receipt images live."""

    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.db"))
    uploads_dir: Path = field(default_factory=lambda: Path("data/uploads"))


@dataclass
class StatementConfig:
    """Column layout of imported statement files.

    Columns are looked up by (case-insensitive) header name. When a header
    is missing the positional default of the bank export is used:
    Status,Date,Description,Debit,Credit,Member Name
    """

    status_column: str = "status"
    date_column: str = "date"
    description_column: str = "description"
    debit_column: str = "debit"
    credit_column: str = "credit"
    member_column: str = "member name"
    date_format: str = "%m/%d/%Y"


@dataclass
class OCRConfig:
    """Receipt image extraction (Mistral OCR) configuration."""

    api_key: str | None = None
    base_url: str = "https://api.mistral.ai"
    model: str = "mistral-ocr-latest"
    timeout_seconds: int = 60

    @property
    def enabled(self) -> bool:
        """OCR runs only when an API key is configured."""
        return bool(self.api_key)


@dataclass
class MailboxConfig:
    """IMAP mailbox ingestion settings."""

    host: str = "imap.gmail.com"
    port: int = 993
    username: str = ""
    password: str = ""
    folder: str = "INBOX"
    poll_interval_seconds: int = 60
    # Empty list = accept any sender
    allowed_senders: list[str] = field(default_factory=list)
    # Smaller images are usually logos/tracking pixels, not receipts
    min_attachment_bytes: int = 10240
    # Scope that mailbox receipts are filed under (falls back to default_scope)
    scope: str | None = None

    @property
    def enabled(self) -> bool:
        """Polling needs both a username and a password."""
        return bool(self.username and self.password)


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    statement: StatementConfig = field(default_factory=StatementConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    default_scope: str = "default"

    @property
    def mailbox_scope(self) -> str:
        """Scope used for receipts ingested from the mailbox."""
        return self.mailbox.scope or self.default_scope

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.default_scope:
            errors.append("default_scope is required")

        if not str(self.storage.state_db_path):
            errors.append("storage.state_db_path is required")

        if self.ocr.timeout_seconds <= 0:
            errors.append("ocr.timeout_seconds must be positive")

        if self.mailbox.enabled:
            if not self.mailbox.host:
                errors.append("mailbox.host is required when mailbox credentials are set")
            if self.mailbox.poll_interval_seconds <= 0:
                errors.append("mailbox.poll_interval_seconds must be positive")

        if self.mailbox.min_attachment_bytes < 0:
            errors.append("mailbox.min_attachment_bytes must not be negative")

        return errors


def _split_senders(value: str | list[str] | None) -> list[str]:
    """Normalize an allowed-senders value to a list of lowercase addresses."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [s.strip().lower() for s in value if s and s.strip()]


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - RECEIPT_RECON_DB (state database path)
    - RECEIPT_RECON_UPLOADS (receipt image directory)
    - RECEIPT_RECON_SCOPE (default scope)
    - MISTRAL_API_KEY
    - MISTRAL_URL
    - IMAP_HOST
    - IMAP_PORT
    - IMAP_USER
    - IMAP_PASSWORD
    - IMAP_POLL_INTERVAL (seconds)
    - ALLOWED_SENDERS (comma separated)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Storage
    storage_data = data.get("storage", {})
    storage = StorageConfig(
        state_db_path=Path(
            os.environ.get(
                "RECEIPT_RECON_DB", storage_data.get("state_db_path", "data/ledger.db")
            )
        ),
        uploads_dir=Path(
            os.environ.get(
                "RECEIPT_RECON_UPLOADS", storage_data.get("uploads_dir", "data/uploads")
            )
        ),
    )

    # Statement layout
    statement_data = data.get("statement", {})
    defaults = StatementConfig()
    statement = StatementConfig(
        status_column=statement_data.get("status_column", defaults.status_column),
        date_column=statement_data.get("date_column", defaults.date_column),
        description_column=statement_data.get(
            "description_column", defaults.description_column
        ),
        debit_column=statement_data.get("debit_column", defaults.debit_column),
        credit_column=statement_data.get("credit_column", defaults.credit_column),
        member_column=statement_data.get("member_column", defaults.member_column),
        date_format=statement_data.get("date_format", defaults.date_format),
    )

    # OCR
    ocr_data = data.get("ocr", {})
    ocr = OCRConfig(
        api_key=os.environ.get("MISTRAL_API_KEY", ocr_data.get("api_key")) or None,
        base_url=os.environ.get(
            "MISTRAL_URL", ocr_data.get("base_url", "https://api.mistral.ai")
        ),
        model=ocr_data.get("model", "mistral-ocr-latest"),
        timeout_seconds=int(ocr_data.get("timeout_seconds", 60)),
    )

    # Mailbox
    mailbox_data = data.get("mailbox", {})
    poll_interval = mailbox_data.get("poll_interval_seconds", 60)
    poll_interval_env = os.environ.get("IMAP_POLL_INTERVAL", "")
    if poll_interval_env:
        try:
            poll_interval = int(poll_interval_env)
        except ValueError:
            pass  # Keep configured value

    mailbox = MailboxConfig(
        host=os.environ.get("IMAP_HOST", mailbox_data.get("host", "imap.gmail.com")),
        port=int(os.environ.get("IMAP_PORT", mailbox_data.get("port", 993))),
        username=os.environ.get("IMAP_USER", mailbox_data.get("username", "")),
        password=os.environ.get("IMAP_PASSWORD", mailbox_data.get("password", "")),
        folder=mailbox_data.get("folder", "INBOX"),
        poll_interval_seconds=int(poll_interval),
        allowed_senders=_split_senders(
            os.environ.get("ALLOWED_SENDERS", mailbox_data.get("allowed_senders"))
        ),
        min_attachment_bytes=int(mailbox_data.get("min_attachment_bytes", 10240)),
        scope=mailbox_data.get("scope"),
    )

    return Config(
        storage=storage,
        statement=statement,
        ocr=ocr,
        mailbox=mailbox,
        default_scope=os.environ.get("RECEIPT_RECON_SCOPE", data.get("default_scope", "default")),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Receipt reconciliation configuration
#
# Secrets (MISTRAL_API_KEY, IMAP_PASSWORD) are best passed as environment
# variables instead of being written here.

# Scope (owning account) used when a command does not pass --scope
default_scope: "default"

storage:
  state_db_path: "data/ledger.db"         # SQLite ledger
  uploads_dir: "data/uploads"             # Receipt images

# Statement CSV layout (header names, case-insensitive)
statement:
  status_column: "status"
  date_column: "date"
  description_column: "description"
  debit_column: "debit"
  credit_column: "credit"
  member_column: "member name"
  date_format: "%m/%d/%Y"

# Receipt image OCR (disabled unless api_key / MISTRAL_API_KEY is set)
ocr:
  api_key: null
  base_url: "https://api.mistral.ai"
  model: "mistral-ocr-latest"
  timeout_seconds: 60

# Mailbox ingestion (disabled unless username and password are set)
mailbox:
  host: "imap.gmail.com"
  port: 993
  username: ""
  password: ""
  folder: "INBOX"
  poll_interval_seconds: 60
  allowed_senders: []                     # Empty = accept any sender
  min_attachment_bytes: 10240             # Skip logos and tracking pixels
  scope: null                             # Defaults to default_scope
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
