# clinicdesk/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Clinic Desk API")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- Database ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "clinic_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "clinicdesk")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # Full SQLAlchemy URL wins over the MYSQL_* pieces (postgres, sqlite, ...)
    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "DATABASE_URL",
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4",
    )
    SQL_ECHO: bool = _flag("SQL_ECHO")

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")

    # ---------- Logging / locale ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOCAL_TZ: str = os.getenv("LOCAL_TZ", "Asia/Kolkata")

    # ---------- Queue ----------
    QUEUE_MAX_WAITING: int = int(os.getenv("QUEUE_MAX_WAITING", "20"))
    CONSULTATION_MINUTES: int = int(os.getenv("CONSULTATION_MINUTES", "15"))

    # ---------- Dispense report ----------
    DISPENSE_EXPORT_PAGE_SIZE: int = int(
        os.getenv("DISPENSE_EXPORT_PAGE_SIZE", "100"))
    DISPENSE_EXPORT_MAX_PAGES: int = int(
        os.getenv("DISPENSE_EXPORT_MAX_PAGES", "1000"))

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
