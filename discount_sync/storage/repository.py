# repository.py
from __future__ import annotations
import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func, delete, update
from sqlalchemy.exc import SQLAlchemyError

from ..errors import PersistenceError
from ..utils.ids import normalize_discount_id, product_numeric_id
from .models import DiscountRule, Product, ProductDiscountLink, ShopSession, as_utc, utcnow

logger = logging.getLogger(__name__)


def parse_instant(raw) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        return as_utc(raw)
    try:
        return as_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))
    except ValueError:
        logger.warning(f"[storage] unparseable timestamp {raw!r}")
        return None


class _Repository:
    def __init__(self, session_factory, shop: Optional[str] = None):
        self.session_factory = session_factory
        self.shop = shop

    @contextmanager
    def _tx(self, what: str):
        try:
            with self.session_factory() as s, s.begin():
                yield s
        except SQLAlchemyError as e:
            logger.exception(f"[storage] {what} failed")
            raise PersistenceError(f"{what} failed: {e}") from e

    def _scoped(self, stmt, model):
        return stmt.where(model.shop == self.shop) if self.shop else stmt


# =========================================================
# Discount rules
# =========================================================

class DiscountRepository(_Repository):

    def get(self, key: int) -> Optional[DiscountRule]:
        with self._tx("load discount rule") as s:
            return s.get(DiscountRule, key)

    def find_by_discount_id(self, discount_id) -> Optional[DiscountRule]:
        bare = normalize_discount_id(discount_id)
        with self._tx("find discount rule") as s:
            return s.execute(
                self._scoped(select(DiscountRule).where(DiscountRule.discount_id == bare), DiscountRule)
            ).scalar_one_or_none()

    def list_discount_ids(self) -> set[str]:
        with self._tx("list discount ids") as s:
            return set(s.execute(self._scoped(select(DiscountRule.discount_id), DiscountRule)).scalars())

    def upsert(self, data, is_active: bool, namespace: str = "discount_manager",
               key: str = "active_discounts") -> DiscountRule:
        """Insert or refresh the rule for ``data.id`` (ExtractedDiscountData)."""
        fields = {
            "discount_type": data.discount_type,
            "title": data.title,
            "status": data.status,
            "is_active": is_active,
            "start_date": parse_instant(data.starts_at),
            "end_date": parse_instant(data.ends_at),
            "value": json.dumps(data.to_dict()),
            "value_display": data.value.display_value,
            "value_kind": data.value.kind.value,
            "metafield_namespace": namespace,
            "metafield_key": key,
        }
        with self._tx("upsert discount rule") as s:
            row = s.execute(
                select(DiscountRule).where(DiscountRule.shop == self.shop, DiscountRule.discount_id == data.id)
            ).scalar_one_or_none()
            if row is None:
                row = DiscountRule(shop=self.shop, discount_id=data.id, products_count=0, **fields)
                s.add(row)
            else:
                for k, v in fields.items():
                    setattr(row, k, v)
            s.flush()
            return row

    def update_by_discount_id(self, discount_id, **fields) -> Optional[DiscountRule]:
        bare = normalize_discount_id(discount_id)
        with self._tx("update discount rule") as s:
            row = s.execute(
                self._scoped(select(DiscountRule).where(DiscountRule.discount_id == bare), DiscountRule)
            ).scalar_one_or_none()
            if row is None:
                return None
            for k, v in fields.items():
                setattr(row, k, v)
            return row

    def deactivate_by_discount_id(self, discount_id, status: str = "DELETED") -> Optional[DiscountRule]:
        return self.update_by_discount_id(discount_id, is_active=False, status=status)

    def update_products_count(self, key: int, count: int, last_ran: Optional[datetime] = None):
        with self._tx("update products count") as s:
            s.execute(
                update(DiscountRule).where(DiscountRule.id == key)
                .values(products_count=count, last_ran=last_ran or utcnow())
            )

    def find_expired(self, now: Optional[datetime] = None) -> List[DiscountRule]:
        """Active rules whose end date has passed. Unscoped repos see every shop."""
        now = as_utc(now) or utcnow()
        with self._tx("find expired rules") as s:
            stmt = select(DiscountRule).where(
                DiscountRule.is_active.is_(True),
                DiscountRule.end_date.is_not(None),
                DiscountRule.end_date < now,
            ).order_by(DiscountRule.shop, DiscountRule.id)
            return list(s.execute(self._scoped(stmt, DiscountRule)).scalars())


# =========================================================
# Product mirror
# =========================================================

class ProductRepository(_Repository):

    def get(self, key: int) -> Optional[Product]:
        with self._tx("load product") as s:
            return s.get(Product, key)

    def find_by_shopify_ids(self, shopify_ids: Iterable) -> Dict[str, Product]:
        bare = {product_numeric_id(p) for p in shopify_ids}
        if not bare:
            return {}
        with self._tx("find products") as s:
            rows = s.execute(
                self._scoped(select(Product).where(Product.shopify_id.in_(bare)), Product)
            ).scalars()
            return {p.shopify_id: p for p in rows}

    def upsert(self, shopify_id, title: str = "", handle: Optional[str] = None,
               status: Optional[str] = None) -> Product:
        bare = product_numeric_id(shopify_id)
        with self._tx("upsert product") as s:
            row = s.execute(
                select(Product).where(Product.shop == self.shop, Product.shopify_id == bare)
            ).scalar_one_or_none()
            if row is None:
                row = Product(shop=self.shop, shopify_id=bare)
                s.add(row)
            row.title = title
            row.handle = handle
            row.status = status
            s.flush()
            return row

    def set_active_discounts(self, key: int, payload: str):
        with self._tx("write product active_discounts") as s:
            s.execute(update(Product).where(Product.id == key).values(active_discounts=payload))


# =========================================================
# Product <-> discount links
# =========================================================

class ProductDiscountRepository(_Repository):

    def find(self, product_key: int, discount_key: int) -> Optional[ProductDiscountLink]:
        with self._tx("find link") as s:
            return s.execute(
                select(ProductDiscountLink).where(
                    ProductDiscountLink.product_id == product_key,
                    ProductDiscountLink.discount_id == discount_key,
                )
            ).scalar_one_or_none()

    def create(self, product_key: int, discount_key: int, is_active: bool = True) -> ProductDiscountLink:
        with self._tx("create link") as s:
            link = ProductDiscountLink(product_id=product_key, discount_id=discount_key,
                                       shop=self.shop, is_active=is_active)
            s.add(link)
            s.flush()
            return link

    def create_many(self, pairs: List[tuple[int, int]]) -> int:
        if not pairs:
            return 0
        with self._tx("bulk create links") as s:
            s.add_all([
                ProductDiscountLink(product_id=p, discount_id=d, shop=self.shop, is_active=True)
                for p, d in pairs
            ])
        return len(pairs)

    def set_active(self, link_ids: Iterable[int], is_active: bool) -> int:
        ids = list(link_ids)
        if not ids:
            return 0
        with self._tx("update link state") as s:
            res = s.execute(
                update(ProductDiscountLink).where(ProductDiscountLink.id.in_(ids))
                .values(is_active=is_active, updated_at=utcnow())
            )
            return res.rowcount or 0

    def delete(self, link_id: int) -> bool:
        with self._tx("delete link") as s:
            res = s.execute(delete(ProductDiscountLink).where(ProductDiscountLink.id == link_id))
            return bool(res.rowcount)

    def find_by_product(self, product_key: int, active_only: bool = False) -> List[ProductDiscountLink]:
        stmt = select(ProductDiscountLink).where(ProductDiscountLink.product_id == product_key)
        if active_only:
            stmt = stmt.where(ProductDiscountLink.is_active.is_(True))
        with self._tx("links by product") as s:
            return list(s.execute(stmt.order_by(ProductDiscountLink.id)).unique().scalars())

    def find_by_discount(self, discount_key: int, active_only: bool = False) -> List[ProductDiscountLink]:
        stmt = select(ProductDiscountLink).where(ProductDiscountLink.discount_id == discount_key)
        if active_only:
            stmt = stmt.where(ProductDiscountLink.is_active.is_(True))
        with self._tx("links by discount") as s:
            return list(s.execute(stmt.order_by(ProductDiscountLink.id)).unique().scalars())

    def find_all(self, active_only: bool = False) -> List[ProductDiscountLink]:
        stmt = self._scoped(select(ProductDiscountLink), ProductDiscountLink)
        if active_only:
            stmt = stmt.where(ProductDiscountLink.is_active.is_(True))
        with self._tx("list links") as s:
            return list(s.execute(stmt.order_by(ProductDiscountLink.id)).unique().scalars())

    def count_active_for_discount(self, discount_key: int) -> int:
        with self._tx("count links") as s:
            return s.execute(
                select(func.count()).select_from(ProductDiscountLink).where(
                    ProductDiscountLink.discount_id == discount_key,
                    ProductDiscountLink.is_active.is_(True),
                )
            ).scalar_one()

    def active_rules_for_product(self, product_key: int) -> List[DiscountRule]:
        with self._tx("active rules for product") as s:
            return list(s.execute(
                select(DiscountRule)
                .join(ProductDiscountLink, ProductDiscountLink.discount_id == DiscountRule.id)
                .where(ProductDiscountLink.product_id == product_key, ProductDiscountLink.is_active.is_(True))
                .order_by(ProductDiscountLink.id)
            ).unique().scalars())

    def statistics(self) -> Dict[str, int]:
        base = self._scoped(
            select(ProductDiscountLink.product_id, ProductDiscountLink.discount_id, ProductDiscountLink.is_active),
            ProductDiscountLink,
        ).subquery()
        with self._tx("link statistics") as s:
            total = s.execute(select(func.count()).select_from(base)).scalar_one()
            active = s.execute(
                select(func.count()).select_from(base).where(base.c.is_active.is_(True))
            ).scalar_one()
            products = s.execute(
                select(func.count(func.distinct(base.c.product_id))).where(base.c.is_active.is_(True))
            ).scalar_one()
            discounts = s.execute(
                select(func.count(func.distinct(base.c.discount_id))).where(base.c.is_active.is_(True))
            ).scalar_one()
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "products_with_discounts": products,
            "discounts_with_products": discounts,
        }

    def active_counts(self, column: str, keys: Iterable[int]) -> Dict[int, int]:
        keys = list(keys)
        col = getattr(ProductDiscountLink, column)
        counts = {k: 0 for k in keys}
        if not keys:
            return counts
        with self._tx("link counts") as s:
            rows = s.execute(
                select(col, func.count()).where(col.in_(keys), ProductDiscountLink.is_active.is_(True))
                .group_by(col)
            ).all()
        counts.update({k: n for k, n in rows})
        return counts


# =========================================================
# Shop sessions
# =========================================================

class SessionRepository(_Repository):

    @staticmethod
    def is_valid(row: Optional[ShopSession], now: Optional[datetime] = None) -> bool:
        if row is None or not (row.access_token or "").strip():
            return False
        expires = as_utc(row.expires)
        return expires is None or expires > (as_utc(now) or utcnow())

    def find_valid(self, shop: str, now: Optional[datetime] = None) -> Optional[ShopSession]:
        with self._tx("load shop session") as s:
            rows = list(s.execute(
                select(ShopSession).where(ShopSession.shop == shop)
                .order_by(ShopSession.is_online, ShopSession.id)
            ).scalars())
        for row in rows:
            if self.is_valid(row, now):
                return row
        return None

    def save(self, shop: str, access_token: str, scope: str = "", expires: Optional[datetime] = None,
             is_online: bool = False) -> ShopSession:
        sid = f"{'online' if is_online else 'offline'}_{shop}"
        with self._tx("save shop session") as s:
            row = s.get(ShopSession, sid)
            if row is None:
                row = ShopSession(id=sid, shop=shop)
                s.add(row)
            row.access_token = access_token
            row.scope = scope
            row.expires = expires
            row.is_online = is_online
            return row
