import os
from dataclasses import dataclass

from dotenv import load_dotenv

# A local .env (if any) fills in variables the environment does not set.
load_dotenv()

_TRUTHY = ("1", "true", "yes", "y", "on")
_FALSY = ("0", "false", "no", "n", "off")


def _env_bool(name: str, default: bool) -> bool:
    """Read a yes/no flag; unset or unrecognised values give `default`."""
    v = os.environ.get(name, "").strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


@dataclass(frozen=True)
class Config:
    """Runtime configuration, read from the environment at import time.

    Secrets (AUTH_JWT_SECRET, the bootstrap admin password) belong in the
    environment or a .env file, never in code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: set FINANCE_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: FINANCE_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("FINANCE_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("FINANCE_DB_PATH", "./finance_tracker.sqlite")
    )

    # Where the client-side SessionController / AdminApi reach the backend.
    API_BASE_URL: str = os.environ.get("API_BASE_URL", "http://localhost:8000")
    API_TIMEOUT_SECONDS: float = float(os.environ.get("API_TIMEOUT_SECONDS", "30"))

    # -----------------
    # Auth (JWT)
    # -----------------
    # The default only suits local development.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me")
    AUTH_TOKEN_EXPIRE_MINUTES: int = _env_int("AUTH_TOKEN_EXPIRE_MINUTES", 60)

    # Bootstrap first admin if the users table is empty
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "change_me_now")

    # Password recovery links ("forgot password")
    PASSWORD_RESET_TOKEN_MINUTES: int = _env_int("PASSWORD_RESET_TOKEN_MINUTES", 60)
    PUBLIC_APP_URL: str = os.environ.get("PUBLIC_APP_URL", "http://localhost:5173")

    # -----------------
    # Session controller (client side)
    # -----------------
    LOGIN_MAX_FAILED_ATTEMPTS: int = _env_int("LOGIN_MAX_FAILED_ATTEMPTS", 5)
    LOGIN_BLOCK_MINUTES: int = _env_int("LOGIN_BLOCK_MINUTES", 15)

    # -----------------
    # Login history
    # -----------------
    LOGIN_HISTORY_RETENTION_HOURS: int = _env_int("LOGIN_HISTORY_RETENTION_HOURS", 24)
    PRUNE_LOGIN_HISTORY_ON_STARTUP: bool = _env_bool("PRUNE_LOGIN_HISTORY_ON_STARTUP", True)

    # -----------------
    # CORS
    # -----------------
    # The admin gateway is called from the browser app on another origin, so the
    # default is permissive. Narrow it with a comma-separated list in production.
    CORS_ALLOW_ORIGINS: str = os.environ.get("CORS_ALLOW_ORIGINS", "*")
    GATEWAY_ALLOW_HEADERS: str = os.environ.get(
        "GATEWAY_ALLOW_HEADERS",
        "authorization, x-client-info, apikey, content-type",
    )


def load_config() -> Config:
    return Config()
