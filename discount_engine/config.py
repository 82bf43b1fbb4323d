# discount_engine/config.py
import os
import logging
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from .exceptions import ConfigurationError

load_dotenv()

PROJECT_DIR = Path(__file__).resolve().parent.parent

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Config:
    """Discount engine settings, read once from the environment"""

    # Storage; only needed when the PostgreSQL repository is used
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DB_POOL_MIN_SIZE: int = int(os.getenv("DB_POOL_MIN_SIZE", "2"))
    DB_POOL_MAX_SIZE: int = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
    DB_COMMAND_TIMEOUT: float = float(os.getenv("DB_COMMAND_TIMEOUT", "10"))

    # Money
    CURRENCY_PRECISION: int = int(os.getenv("CURRENCY_PRECISION", "2"))
    CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "$")

    RULE_PAGE_SIZE: int = int(os.getenv("RULE_PAGE_SIZE", "100"))
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = Path(os.getenv("LOG_DIR", str(PROJECT_DIR / "logs")))

    @classmethod
    def require_database_url(cls) -> str:
        if not cls.DATABASE_URL:
            raise ConfigurationError("No DATABASE_URL set in environment")
        return cls.DATABASE_URL


def setup_logging(log_file: str = "discount_engine.log"):
    """File and console logging at the configured level"""
    Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(Config.LOG_DIR / log_file),
            logging.StreamHandler(),
        ]
    )
