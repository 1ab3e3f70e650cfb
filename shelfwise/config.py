import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Persistence: empty means in-memory only
    database_file: str = os.getenv("LIBRARY_DB_FILE", "")
    seed_default_shelves: bool = _env_flag("SEED_DEFAULT_SHELVES", "True")

    # Google Books API settings
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))
    enable_google_books: bool = _env_flag("ENABLE_GOOGLE_BOOKS", "True")

    # Import settings
    goodreads_export_url: Optional[str] = os.getenv("GOODREADS_EXPORT_URL")
    import_timeout: float = float(os.getenv("IMPORT_TIMEOUT", "30"))
    import_skip_duplicates: bool = _env_flag("IMPORT_SKIP_DUPLICATES", "False")

    # Profile settings
    reading_goal: int = int(os.getenv("READING_GOAL", "50"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Shelfwise")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = _env_flag("DEBUG", "False")


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the configured log level to the root logger once."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
