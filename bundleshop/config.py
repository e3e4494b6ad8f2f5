# bundleshop/config.py
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from typing import List, Optional

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value.isdigit() else None


class Config:
    """Configuration settings for the shop"""

    # Bot settings
    TELEGRAM_TOKEN: str = os.getenv("TELEGRAM_TOKEN", "")

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Admin settings
    ADMIN_IDS: List[int] = [
        int(id_) for id_ in os.getenv("ADMIN_IDS", "").split(",")
        if id_.strip().isdigit()
    ]

    # Payment gateway
    PAYSTACK_SECRET_KEY: str = os.getenv("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL: str = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
    CLIENT_URL: str = os.getenv("CLIENT_URL", "http://localhost:5173")

    # Supplier
    WIRENET_API_KEY: str = os.getenv("WIRENET_API_KEY", "")
    WIRENET_BASE_URL: str = os.getenv("WIRENET_BASE_URL", "https://wirenet.top/api/v1")
    SUPPLIER_TIMEOUT_SECONDS: int = int(os.getenv("SUPPLIER_TIMEOUT_SECONDS", "30"))

    # Web server
    WEB_HOST: str = os.getenv("WEB_HOST", "0.0.0.0")
    WEB_PORT: int = int(os.getenv("WEB_PORT", "3000"))
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")

    # Reconciliation
    STUCK_AFTER_MINUTES: int = int(os.getenv("STUCK_AFTER_MINUTES", "30"))
    # Unset disables auto-fulfill: orders would otherwise be marked delivered
    # without any confirmation from the supplier.
    AUTO_FULFILL_AFTER_MINUTES: Optional[int] = _optional_int("AUTO_FULFILL_AFTER_MINUTES")
    SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Africa/Accra")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CURRENCY: str = os.getenv("CURRENCY", "GHS")

    # Paths
    LOG_DIR = BASE_DIR / "logs"

    @classmethod
    def validate(cls):
        """Fail fast when required settings are missing"""
        required = {
            "TELEGRAM_TOKEN": cls.TELEGRAM_TOKEN,
            "DATABASE_URL": cls.DATABASE_URL,
            "PAYSTACK_SECRET_KEY": cls.PAYSTACK_SECRET_KEY,
            "WIRENET_API_KEY": cls.WIRENET_API_KEY,
        }
        for name, value in required.items():
            if not value:
                raise ValueError(f"No {name} set in environment")


def setup_logging():
    """Configure logging settings"""
    Config.LOG_DIR.mkdir(exist_ok=True)
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_file = Config.LOG_DIR / "bundleshop.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
