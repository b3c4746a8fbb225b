import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load a local .env file if present.
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide secrets via environment variables or a .env file.
    Do not hardcode them in source code.
    """

    # -----------------
    # Database
    # -----------------
    # Preferred: set PIZZA_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: PIZZA_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("PIZZA_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("PIZZA_DB_PATH", "./pizza_service.sqlite")
    )
    DB_CONNECT_TIMEOUT: int = int(os.environ.get("DB_CONNECT_TIMEOUT", "60"))
    DB_POOL_SIZE: int = int(os.environ.get("DB_POOL_SIZE", "10"))

    # Page size for diner order history
    LIST_PER_PAGE: int = int(os.environ.get("LIST_PER_PAGE", "10"))

    # -----------------
    # Auth (JWT)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set AUTH_JWT_SECRET to a strong random value.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me_to_a_long_random_secret")

    # Seeded on first start, when the schema is created.
    AUTH_BOOTSTRAP_ADMIN_NAME: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_NAME", "常用名字")
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "a@jwt.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "admin")

    # -----------------
    # Pizza factory (order fulfilment)
    # -----------------
    FACTORY_URL: str = os.environ.get("FACTORY_URL", "https://pizza-factory.cs329.click")
    FACTORY_API_KEY: str = os.environ.get("FACTORY_API_KEY", "")
    FACTORY_TIMEOUT_SECONDS: int = int(os.environ.get("FACTORY_TIMEOUT_SECONDS", "30"))

    # -----------------
    # HTTP
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
    )

    # Include a "stack" field in error responses. Keep off in production.
    EXPOSE_ERROR_STACK: bool = _env_bool("EXPOSE_ERROR_STACK", False) is True


def load_config() -> Config:
    return Config()
