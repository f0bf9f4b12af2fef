# reassignment_billing/core/config.py
import os
from typing import List
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _database_uri() -> str:
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    # MySQL when the shared creds are configured, SQLite file otherwise
    host = os.getenv("MYSQL_HOST")
    if not host:
        return "sqlite:///./reassignment_billing.db"

    driver = os.getenv("DB_DRIVER", "pymysql")
    user = os.getenv("MYSQL_USER", "clinic_user")
    password = os.getenv("MYSQL_PASSWORD", "")
    port = int(os.getenv("MYSQL_PORT", "3306"))
    db_name = os.getenv("MYSQL_DB", "reassignment_billing")
    return (f"mysql+{driver}://{quote_plus(user)}:{quote_plus(password)}"
            f"@{host}:{port}/{db_name}")


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME",
                                  "Reassignment Billing Engine")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- Database ----------
    SQLALCHEMY_DATABASE_URI: str = _database_uri()
    SQLALCHEMY_ECHO: bool = _flag("SQLALCHEMY_ECHO")
    AUTO_CREATE_TABLES: bool = _flag("AUTO_CREATE_TABLES", "true")

    # Retries for transient persistence failures (OperationalError)
    DB_RETRY_ATTEMPTS: int = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BASE_DELAY: float = float(
        os.getenv("DB_RETRY_BASE_DELAY", "0.2") or 0.2)

    # ---------- Clinic clock ----------
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Kolkata")

    # ---------- Billing ----------
    INVOICE_NUMBER_PREFIX: str = os.getenv("INVOICE_NUMBER_PREFIX", "RB-")
    INVOICE_NUMBER_PADDING: int = int(
        os.getenv("INVOICE_NUMBER_PADDING", "6"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
