import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    database_name: str = os.getenv("DATABASE_NAME", "local_library")

    # Server
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    # Application
    app_name: str = os.getenv("APP_NAME", "Local Library")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = _flag("DEBUG")


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logger = logging.getLogger("catalog")
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    )
    logger.addHandler(handler)
    logger.setLevel((level or settings.log_level).upper())


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"catalog.{name}")
