import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("SQLALCHEMY_DATABASE_URL", "sqlite:///./library.db")
    sqlite_busy_timeout: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # 0 disables the periodic overdue sweep
    overdue_sweep_interval: float = float(
        os.getenv("OVERDUE_SWEEP_INTERVAL_SECONDS", "0")
    )


settings = Settings()
