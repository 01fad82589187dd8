# app/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Pharmacy Stock & Transfer")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "pharmacy_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "pharmacy_stock")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # Full URL wins over the MYSQL_* parts (sqlite for dev/tests)
    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "DATABASE_URL",
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4",
    )
    SQL_ECHO: bool = os.getenv("SQL_ECHO", "false").lower() in {"1", "true", "yes"}

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))

    # ---------- Stock ----------
    ORG_CODE: str = os.getenv("ORG_CODE", "RX")
    DEFAULT_MINIMUM_STOCK: int = int(os.getenv("DEFAULT_MINIMUM_STOCK", "10"))

    # reject: insufficient source stock on receive fails the whole receipt
    # skip:   debit for that line is skipped, credit still happens
    TRANSFER_SHORTAGE_POLICY: str = os.getenv(
        "TRANSFER_SHORTAGE_POLICY", "reject").strip().lower()

    # ---------- Legacy position -> department mapping ----------
    PHARMACY_POSITION_KEYWORDS: List[str] = _split_csv(
        os.getenv("PHARMACY_POSITION_KEYWORDS", "คลัง,pharmacy"))
    ADMIN_POSITION_KEYWORDS: List[str] = _split_csv(
        os.getenv("ADMIN_POSITION_KEYWORDS", "ผู้จัดการ,หัวหน้าแผนก"))

    # ---------- Misc ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Bangkok")


settings = Settings()
