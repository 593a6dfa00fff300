# discount_sync/services/factory.py
import logging

from ..clients.shopify import AdminClient
from ..config import SyncConfig
from ..storage.repository import (
    DiscountRepository, ProductDiscountRepository, ProductRepository, SessionRepository,
)
from .batch import BatchExecutor
from .discounts import DiscountSyncService
from .metafields import ProductMetafieldService
from .relationships import ProductDiscountService
from .targeting import TargetingResolver


def client_for_shop(session_factory, shop: str, now=None) -> AdminClient | None:
    """AdminClient for ``shop`` if it has a usable session, else None."""
    row = SessionRepository(session_factory).find_valid(shop, now=now)
    if row is None:
        return None
    return AdminClient(shop, row.access_token)


def build_service_stack(client, shop: str, session_factory, config: SyncConfig | None = None,
                        logger: logging.Logger | None = None) -> DiscountSyncService:
    config = config or SyncConfig.from_env()
    discount_repo = DiscountRepository(session_factory, shop)
    product_repo = ProductRepository(session_factory, shop)
    link_repo = ProductDiscountRepository(session_factory, shop)

    executor = BatchExecutor(config, logger=logger)
    metafields = ProductMetafieldService(client, config, executor=executor, logger=logger)
    targeting = TargetingResolver(client, config, logger=logger)
    relationships = ProductDiscountService(product_repo, discount_repo, link_repo, shop, logger=logger)

    return DiscountSyncService(
        client, shop, config,
        discount_repo=discount_repo,
        product_repo=product_repo,
        targeting=targeting,
        metafields=metafields,
        relationships=relationships,
        logger=logger,
    )
