import pytest
from sqlalchemy.pool import StaticPool

from discount_sync.config import SyncConfig
from discount_sync.services.factory import build_service_stack
from discount_sync.storage.db import init_db, make_engine, make_session_factory
from discount_sync.storage.repository import (
    DiscountRepository, ProductDiscountRepository, ProductRepository, SessionRepository,
)

from fakes import SHOP, FakeShopify


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def config():
    return SyncConfig(rate_limit_delay=0, page_delay=0, discount_delay=0, max_products_per_batch=10)


@pytest.fixture
def shopify():
    return FakeShopify(SHOP)


@pytest.fixture
def repos(session_factory):
    class Repos:
        discounts = DiscountRepository(session_factory, SHOP)
        products = ProductRepository(session_factory, SHOP)
        links = ProductDiscountRepository(session_factory, SHOP)
        sessions = SessionRepository(session_factory)
    return Repos


@pytest.fixture
def mirror(repos):
    """Seed the local product mirror with numeric ids; returns {shopify_id: local key}."""
    def _seed(*shopify_ids):
        return {str(i): repos.products.upsert(str(i), title=f"Product {i}").id for i in shopify_ids}
    return _seed


@pytest.fixture
def service(shopify, session_factory, config):
    return build_service_stack(shopify, SHOP, session_factory, config)
