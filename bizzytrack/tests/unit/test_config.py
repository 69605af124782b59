from __future__ import annotations

import logging

import pytest

from bizzytrack.core.config import get_settings
from bizzytrack.core.logging import configure_logging


def test_defaults() -> None:
    settings = get_settings()
    assert settings.api_key_prefix == "bizzy_"
    assert settings.authz_require_tenant_predicate is True
    assert settings.webhook_signature_tolerance_s == 300
    assert settings.max_page_size >= settings.default_page_size


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./local.db")
    monkeypatch.setenv("DB_POOL_SIZE", "3")
    get_settings.cache_clear()
    settings = get_settings()
    assert settings.database_url == "sqlite+aiosqlite:///./local.db"
    assert settings.db_pool_size == 3


def test_configure_logging_is_idempotent() -> None:
    root = logging.getLogger()
    configure_logging("DEBUG")
    configure_logging("DEBUG")
    named = [handler for handler in root.handlers if handler.get_name() == "bizzytrack"]
    assert len(named) == 1
    assert root.level == logging.DEBUG
    configure_logging("INFO")
    assert root.level == logging.INFO
