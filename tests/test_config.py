import pytest

from certanchor.config import DEV_MASTER_KEY, Settings

ENV_VARS = (
    "CERTANCHOR_ENV", "CERTANCHOR_STORE", "DATABASE_URI", "STORE_FILE", "MASTER_KEY",
    "LEDGER_FINALITY_TIMEOUT", "LEDGER_CONFIRMATION_DELAY", "SESSION_TTL", "LOG_LEVEL", "LOG_JSON", "PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env()
    assert settings.store_backend == "sql"
    assert settings.finality_timeout == 120.0
    assert settings.confirmation_delay == 0.0
    assert settings.master_key == DEV_MASTER_KEY.encode()
    assert settings.session_ttl == 86400
    assert settings.port == 3001


def test_overrides(monkeypatch):
    monkeypatch.setenv("CERTANCHOR_STORE", "FILE")
    monkeypatch.setenv("STORE_FILE", "/tmp/certs.json")
    monkeypatch.setenv("LEDGER_FINALITY_TIMEOUT", "2.5")
    monkeypatch.setenv("LEDGER_CONFIRMATION_DELAY", "never")
    monkeypatch.setenv("MASTER_KEY", "prod-key")
    monkeypatch.setenv("LOG_JSON", "false")

    settings = Settings.from_env()

    assert settings.store_backend == "file"
    assert settings.store_file == "/tmp/certs.json"
    assert settings.finality_timeout == 2.5
    assert settings.confirmation_delay is None
    assert settings.master_key == b"prod-key"
    assert settings.log_json is False


@pytest.mark.parametrize("name,value", [
    ("LEDGER_FINALITY_TIMEOUT", "soon"),
    ("LEDGER_FINALITY_TIMEOUT", "0"),
    ("SESSION_TTL", "1.5"),
    ("CERTANCHOR_STORE", "mongo"),
])
def test_invalid_values_fail_fast(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Settings.from_env()


def test_master_key_required_outside_dev(monkeypatch):
    monkeypatch.setenv("CERTANCHOR_ENV", "prod")
    with pytest.raises(ValueError, match="MASTER_KEY"):
        Settings.from_env()
