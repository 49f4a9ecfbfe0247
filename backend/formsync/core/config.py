from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache
import os


class Settings(BaseSettings):
    """
    Application settings and configuration
    """

    # Application
    app_name: str = "FormSync Collaboration API"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = int(os.getenv("PORT", "5000"))

    # Environment detection
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Database
    database_url: str = os.getenv(
        "DATABASE_URL",
        "sqlite+aiosqlite:///./formsync.db"
    )
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_echo: bool = False

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "change-this-in-production-please")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Field locking
    lock_lease_seconds: int = 60
    lock_sweep_interval_seconds: int = 30

    # Field value limits
    max_text_length: int = 10000
    max_choice_length: int = 500

    # Socket.IO
    socketio_path: str = "socket.io"
    ping_interval: int = 25
    ping_timeout: int = 60

    # Redis message queue for multi-instance room fan-out (optional)
    redis_url: Optional[str] = os.getenv("REDIS_URL")

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_format: str = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    )
    log_rotation: str = "50 MB"
    log_retention: str = "14 days"
    error_log_dir: Optional[str] = "logs"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ] if os.getenv("ENVIRONMENT", "development") == "production" else ["*"]
    allow_credentials: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Create settings instance with caching
@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings
    """
    return Settings()


settings = get_settings()


def get_database_url() -> str:
    """
    Get database URL, creating the directory of a file-backed SQLite database
    """
    url = get_settings().database_url

    if url.startswith("sqlite") and ":memory:" not in url:
        db_path = url.split(":///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

    return url
