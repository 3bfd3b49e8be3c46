"""
Tests for settings loading and structured logging
"""

import json
import logging

from core_ledger.config import LedgerConfig, reload_config, get_config
from core_ledger.logging_config import (
    JSONFormatter, MaskingTextFormatter, TEXT_FORMAT, log_action, mask_deep,
    mask_sensitive, setup_logging
)


class CollectingHandler(logging.Handler):

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestConfig:

    def test_defaults(self):
        config = LedgerConfig()
        assert config.api_port == 4000
        assert config.default_currency == "NGN"
        assert config.jwt_algorithm == "HS256"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ENVIRONMENT", "production")
        monkeypatch.setenv("LEDGER_DATABASE_URL", "memory://")
        monkeypatch.setenv("LEDGER_AUTH_RATE_LIMIT", "3")

        config = reload_config()
        assert config is get_config()
        assert config.is_production
        assert not config.is_development
        assert config.database_url == "memory://"
        assert config.auth_rate_limit == 3

        monkeypatch.delenv("LEDGER_ENVIRONMENT")
        monkeypatch.delenv("LEDGER_DATABASE_URL")
        monkeypatch.delenv("LEDGER_AUTH_RATE_LIMIT")
        reload_config()


class TestMasking:

    def test_mask_email(self):
        assert mask_sensitive("login for alice@example.com") == "login for al***@example.com"
        assert mask_sensitive("no address here") == "no address here"

    def test_mask_deep(self):
        masked = mask_deep({"email": "bob.smith@example.com", "ids": ["carol@example.org", 3]})
        assert masked == {"email": "bo***@example.com", "ids": ["ca***@example.org", 3]}


class TestStructuredLogging:

    def setup_method(self):
        self.logger = logging.getLogger("test.ledger.actions")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.handler = CollectingHandler()
        self.logger.addHandler(self.handler)

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_log_action_attaches_fields(self):
        log_action(self.logger, "info", "Deposit completed", user_id="c1",
                   action="deposit", resource="ledger", extra={"amount": "10"})

        record = self.handler.records[0]
        assert record.levelno == logging.INFO
        assert record.user_id == "c1"
        assert record.action == "deposit"
        assert record.extra == {"amount": "10"}

    def test_log_action_respects_level(self):
        self.logger.setLevel(logging.WARNING)
        log_action(self.logger, "info", "ignored")
        assert self.handler.records == []

    def test_json_formatter_masks(self):
        log_action(self.logger, "warning", "Failed login for alice@example.com",
                   action="login", extra={"email": "alice@example.com"})

        entry = json.loads(JSONFormatter().format(self.handler.records[0]))
        assert entry["level"] == "WARNING"
        assert entry["message"] == "Failed login for al***@example.com"
        assert entry["extra"] == {"email": "al***@example.com"}
        assert entry["action"] == "login"
        assert "user_id" not in entry

    def test_text_formatter_masks(self):
        self.logger.info("hello alice@example.com")
        line = MaskingTextFormatter(TEXT_FORMAT).format(self.handler.records[0])
        assert "al***@example.com" in line
        assert "alice@" not in line

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", "json", logger_name="test.ledger.setup")
        setup_logging("DEBUG", "text", logger_name="test.ledger.setup")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, MaskingTextFormatter)
        assert logger.level == logging.DEBUG
        assert not logger.propagate
