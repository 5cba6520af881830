# medistock/core/config.py
import os
from typing import List, Optional
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "MediStock QC & Inventory")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "medistock_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "medistock")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "medistock")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # Full URL wins over the MYSQL_* parts (sqlite:// works for local runs)
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL") or None

    SQLALCHEMY_DATABASE_URI: str = DATABASE_URL or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    # admins bypass permission checks unless switched off
    ADMIN_ALL_ACCESS: bool = _flag("ADMIN_ALL_ACCESS", "true")

    # ---------- Workflow ----------
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Kolkata")
    NEAR_EXPIRY_DAYS: int = int(os.getenv("NEAR_EXPIRY_DAYS", "30"))
    CONFLICT_RETRIES: int = int(os.getenv("CONFLICT_RETRIES", "2"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # ---------- Logging ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    SQL_ECHO: bool = _flag("SQL_ECHO")


settings = Settings()
