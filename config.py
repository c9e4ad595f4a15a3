import logging
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    database_url: str
    sql_echo: bool = False
    slot_timezone: str = "UTC"
    log_level: str = "INFO"
    db_connect_retries: int = 3
    db_retry_delay: float = 1.0


def load_settings() -> Settings:
    """Read settings from the environment at startup."""
    database_url = os.environ.get("DATABASE_URL")

    # Fail fast when the database is not configured
    if not database_url:
        raise ValueError("DATABASE_URL is not set. Please check your .env file.")

    return Settings(
        database_url=database_url,
        sql_echo=_env_bool("SQL_ECHO"),
        slot_timezone=os.environ.get("SLOT_TIMEZONE", "UTC"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        db_connect_retries=int(os.environ.get("DB_CONNECT_RETRIES", "3")),
        db_retry_delay=float(os.environ.get("DB_RETRY_DELAY", "1.0")),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def cors_origins() -> list[str]:
    origins = os.environ.get("CORS_ORIGINS", "*")
    return [o.strip() for o in origins.split(",") if o.strip()]
