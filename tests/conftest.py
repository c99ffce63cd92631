import pytest

from config import get_settings


@pytest.fixture(autouse=True)
def ledger_env(monkeypatch):
    monkeypatch.setenv("LEDGER_DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("LEDGER_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("LEDGER_LOOKAHEAD_MONTHS", "1")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
