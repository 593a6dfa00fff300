# discount_sync/config.py
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

API_VERSION = os.getenv("API_VERSION", "2025-04")
BASE_URL = os.getenv("BASE_URL")

SHOPIFY_API_SECRET = os.getenv("SHOPIFY_API_SECRET", "")
CRON_SECRET_TOKEN = os.getenv("CRON_SECRET_TOKEN", "")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///discount_sync.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC")
SWEEP_CRON = os.getenv("SWEEP_CRON", "*/5 * * * *")

WEBHOOK_TOPICS = ("discounts/create", "discounts/update", "discounts/delete")


def _ms(name: str, default: int) -> float:
    return int(os.getenv(name, str(default))) / 1000.0


@dataclass(frozen=True)
class SyncConfig:
    max_products_per_batch: int = 10
    rate_limit_delay: float = 0.5     # seconds between product writes
    page_delay: float = 0.5           # seconds between paginated reads
    discount_delay: float = 1.0       # seconds between discounts during initialize

    metafield_namespace: str = "discount_manager"
    metafield_key: str = "active_discounts"
    metafield_type: str = "json"

    products_page_size: int = 250
    discounts_page_size: int = 50

    @classmethod
    def from_env(cls) -> "SyncConfig":
        return cls(
            max_products_per_batch=int(os.getenv("MAX_PRODUCTS_PER_BATCH", "10")),
            rate_limit_delay=_ms("RATE_LIMIT_DELAY", 500),
            page_delay=_ms("PAGE_DELAY", 500),
            discount_delay=_ms("DISCOUNT_DELAY", 1000),
            metafield_namespace=os.getenv("METAFIELD_NAMESPACE", "discount_manager"),
            metafield_key=os.getenv("METAFIELD_KEY", "active_discounts"),
        )
