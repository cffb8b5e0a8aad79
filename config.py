import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_FILE = "circulation.db"


def _flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Application
    app_name: str = os.getenv("APP_NAME", "Library Circulation Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = _flag("DEBUG")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    # One file shared by every CLI run unless LIBRARY_DB_FILE points elsewhere.
    database_file: str = field(
        default_factory=lambda: os.getenv("LIBRARY_DB_FILE", DEFAULT_DATABASE_FILE)
    )
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "10"))

    # Circulation
    default_loan_days: int = int(os.getenv("DEFAULT_LOAN_DAYS", "14"))


settings = Settings()
