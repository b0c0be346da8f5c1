import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Storage settings
    db_file: str = os.getenv("LIBDASH_DB_FILE", "library.db")
    storage_key: str = os.getenv("LIBDASH_STORAGE_KEY", "library-management-data")
    # "reset" drops the whole document on corruption, "isolate" empties only the bad collections
    corruption_policy: str = os.getenv("LIBDASH_CORRUPTION_POLICY", "reset")

    # Backup settings
    backup_dir: str = os.getenv("LIBDASH_BACKUP_DIR", "backups")
    max_backups: int = int(os.getenv("LIBDASH_MAX_BACKUPS", "24"))

    # Cache settings
    cache_backend: str = os.getenv("CACHE_BACKEND", "memory")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    cache_ttl: int = int(os.getenv("CACHE_TTL", "300"))  # 5 minutes

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Dashboard")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Client settings
    request_retries: int = int(os.getenv("REQUEST_RETRIES", "3"))
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "10"))


settings = Settings()
