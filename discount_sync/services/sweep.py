# discount_sync/services/sweep.py
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ..config import SyncConfig
from ..storage.models import utcnow
from ..storage.repository import DiscountRepository
from .factory import build_service_stack, client_for_shop as default_client_for_shop


@dataclass
class SweepResult:
    total_checked: int = 0
    expired: list[str] = field(default_factory=list)
    deactivated: int = 0
    cleaned: int = 0
    cleanup_skipped: int = 0
    errors: int = 0
    shops: int = 0

    def to_dict(self) -> dict:
        return {
            "totalChecked": self.total_checked,
            "expired": list(self.expired),
            "deactivated": self.deactivated,
            "cleaned": self.cleaned,
            "cleanupSkipped": self.cleanup_skipped,
            "errors": self.errors,
            "shops": self.shops,
        }


def sweep_expired_discounts(session_factory, config: SyncConfig | None = None,
                            client_for_shop: Callable | None = None, now: datetime | None = None,
                            logger: logging.Logger | None = None) -> SweepResult:
    """Deactivate every active rule past its end date, one shop at a time.

    A shop without a valid session still gets its rules deactivated locally;
    only the metafield cleanup is skipped (the links stay active so a later
    pass can find the products).
    """
    logger = logger or logging.getLogger(__name__)
    config = config or SyncConfig.from_env()
    now = now or utcnow()
    if client_for_shop is None:
        client_for_shop = lambda shop: default_client_for_shop(session_factory, shop, now=now)

    result = SweepResult()
    by_shop: dict[str, list] = {}
    for rule in DiscountRepository(session_factory).find_expired(now):
        by_shop.setdefault(rule.shop, []).append(rule)
    result.total_checked = sum(len(v) for v in by_shop.values())
    result.shops = len(by_shop)
    logger.info(f"[sweep] {result.total_checked} expired rule(s) across {result.shops} shop(s)")

    for shop, rules in by_shop.items():
        try:
            repo = DiscountRepository(session_factory, shop)
            client = client_for_shop(shop)
            service = build_service_stack(client, shop, session_factory, config, logger) if client else None
            if service is None:
                logger.warning(f"[sweep] {shop}: no valid session, metafield cleanup skipped for {len(rules)} rule(s)")
        except Exception:
            logger.exception(f"[sweep] {shop}: setup failed")
            result.errors += len(rules)
            continue

        for rule in rules:
            try:
                repo.update_by_discount_id(
                    rule.discount_id, status="EXPIRED", is_active=False, products_count=0, last_ran=now
                )
                result.deactivated += 1
                result.expired.append(f"{shop}:{rule.discount_id}")
                if service is None:
                    result.cleanup_skipped += 1
                    continue
                service.remove_from_product_metafields(rule.discount_id)
                result.cleaned += 1
            except Exception:
                logger.exception(f"[sweep] {shop}: {rule.discount_id} failed")
                result.errors += 1

    logger.info(
        f"[sweep] done: deactivated={result.deactivated} cleaned={result.cleaned} "
        f"skipped={result.cleanup_skipped} errors={result.errors}"
    )
    return result
