import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# ---------------- LOAD SECRETS ----------------
load_dotenv()

DEV_MASTER_KEY = "certanchor-dev-master-key"


def _float(name, default):
    raw = os.getenv(name, default)
    if raw is None or raw.strip().lower() in ("", "none", "never"):
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _int(name, default):
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class Settings:
    env: str = "dev"
    store_backend: str = "sql"
    database_uri: str = "sqlite:///certanchor.db"
    store_file: str = "certanchor_store.json"
    finality_timeout: float = 120.0
    confirmation_delay: Optional[float] = 0.0
    master_key: bytes = DEV_MASTER_KEY.encode()
    session_ttl: int = 86400
    log_level: str = "INFO"
    log_json: bool = True
    port: int = 3001

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.getenv("CERTANCHOR_ENV", "dev")
        master_key = os.getenv("MASTER_KEY")
        if not master_key:
            if env != "dev":
                raise ValueError("MASTER_KEY must be set outside the dev environment")
            master_key = DEV_MASTER_KEY

        backend = os.getenv("CERTANCHOR_STORE", "sql").lower()
        if backend not in ("sql", "file"):
            raise ValueError(f"CERTANCHOR_STORE must be 'sql' or 'file', got {backend!r}")

        finality_timeout = _float("LEDGER_FINALITY_TIMEOUT", "120")
        if finality_timeout is None or finality_timeout <= 0:
            raise ValueError("LEDGER_FINALITY_TIMEOUT must be a positive number")

        return cls(
            env=env,
            store_backend=backend,
            database_uri=os.getenv("DATABASE_URI", "sqlite:///certanchor.db"),
            store_file=os.getenv("STORE_FILE", "certanchor_store.json"),
            finality_timeout=finality_timeout,
            confirmation_delay=_float("LEDGER_CONFIRMATION_DELAY", "0"),
            master_key=master_key.encode(),
            session_ttl=_int("SESSION_TTL", "86400"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=os.getenv("LOG_JSON", "1").lower() not in ("0", "false", "no"),
            port=_int("PORT", "3001"),
        )
