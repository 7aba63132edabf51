"""Tests for configuration loading."""

from pathlib import Path

import pytest

from receipt_recon.config import Config, MailboxConfig, create_default_config, load_config

ENV_VARS = [
    "RECEIPT_RECON_DB",
    "RECEIPT_RECON_UPLOADS",
    "RECEIPT_RECON_SCOPE",
    "MISTRAL_API_KEY",
    "MISTRAL_URL",
    "IMAP_HOST",
    "IMAP_PORT",
    "IMAP_USER",
    "IMAP_PASSWORD",
    "IMAP_POLL_INTERVAL",
    "ALLOWED_SENDERS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.default_scope == "default"
        assert config.storage.state_db_path == Path("data/ledger.db")
        assert not config.ocr.enabled
        assert not config.mailbox.enabled
        assert config.validate() == []

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
default_scope: household
storage:
  state_db_path: /srv/ledger.db
statement:
  date_format: "%Y-%m-%d"
ocr:
  api_key: sk-test
mailbox:
  username: me@example.com
  password: secret
  allowed_senders: [Receipts@Chipotle.com]
  scope: mail
"""
        )

        config = load_config(path)

        assert config.default_scope == "household"
        assert config.storage.state_db_path == Path("/srv/ledger.db")
        assert config.statement.date_format == "%Y-%m-%d"
        assert config.ocr.enabled
        assert config.mailbox.enabled
        assert config.mailbox.allowed_senders == ["receipts@chipotle.com"]
        assert config.mailbox_scope == "mail"

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("default_scope: household\nocr:\n  api_key: from-file\n")
        monkeypatch.setenv("RECEIPT_RECON_SCOPE", "business")
        monkeypatch.setenv("RECEIPT_RECON_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("MISTRAL_API_KEY", "from-env")
        monkeypatch.setenv("IMAP_POLL_INTERVAL", "300")
        monkeypatch.setenv("ALLOWED_SENDERS", "a@x.com, B@y.com")

        config = load_config(path)

        assert config.default_scope == "business"
        assert config.storage.state_db_path == tmp_path / "env.db"
        assert config.ocr.api_key == "from-env"
        assert config.mailbox.poll_interval_seconds == 300
        assert config.mailbox.allowed_senders == ["a@x.com", "b@y.com"]
        assert config.mailbox_scope == "business"

    def test_bad_poll_interval_env_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("IMAP_POLL_INTERVAL", "soon")

        assert load_config(tmp_path / "absent.yaml").mailbox.poll_interval_seconds == 60

    def test_default_config_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert config.default_scope == "default"
        assert config.statement.member_column == "member name"
        assert config.mailbox.scope is None
        assert config.validate() == []


class TestValidate:
    def test_empty_scope(self):
        assert "default_scope is required" in Config(default_scope="").validate()

    def test_mailbox_interval(self):
        config = Config(
            mailbox=MailboxConfig(username="u", password="p", poll_interval_seconds=0)
        )
        assert config.validate() == ["mailbox.poll_interval_seconds must be positive"]

    def test_interval_ignored_when_mailbox_disabled(self):
        config = Config(mailbox=MailboxConfig(poll_interval_seconds=0))
        assert config.validate() == []
