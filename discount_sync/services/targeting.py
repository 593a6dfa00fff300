# discount_sync/services/targeting.py
import logging
from dataclasses import dataclass, field

from ..config import SyncConfig
from ..errors import UpstreamError
from ..utils.ids import discount_id_candidates, is_valid_discount_id
from .batch import IntervalGate
from .extractor import BXGY_TYPES, SUPPORTED_TYPES


@dataclass
class DiscountTargeting:
    applies_to_all_products: bool = False
    product_ids: list[str] = field(default_factory=list)
    collection_ids: list[str] = field(default_factory=list)
    not_found: bool = False

    @classmethod
    def missing(cls) -> "DiscountTargeting":
        return cls(not_found=True)

    @property
    def is_empty(self) -> bool:
        return not (self.applies_to_all_products or self.product_ids or self.collection_ids)


def _dedupe(ids) -> list[str]:
    seen, out = set(), []
    for i in ids:
        if i and i not in seen:
            seen.add(i)
            out.append(i)
    return out


def targeting_from_discount(discount: dict) -> DiscountTargeting:
    """Collect targeting from customerGets and, for bxgy, customerBuys."""
    t = DiscountTargeting()
    clauses = [discount.get("customerGets")]
    if discount.get("__typename") in BXGY_TYPES:
        clauses.append(discount.get("customerBuys"))

    for clause in clauses:
        items = (clause or {}).get("items") or {}
        if items.get("allItems") is True:
            t.applies_to_all_products = True
        for e in ((items.get("products") or {}).get("edges") or []):
            t.product_ids.append((e.get("node") or {}).get("id"))
        for e in ((items.get("collections") or {}).get("edges") or []):
            t.collection_ids.append((e.get("node") or {}).get("id"))

    t.product_ids = _dedupe(t.product_ids)
    t.collection_ids = _dedupe(t.collection_ids)
    return t


class TargetingResolver:
    def __init__(self, client, config: SyncConfig, page_gate: IntervalGate | None = None,
                 logger: logging.Logger | None = None):
        self.client = client
        self.config = config
        self.page_gate = page_gate if page_gate is not None else IntervalGate(config.page_delay)
        self.logger = logger or logging.getLogger(__name__)

    def get_discount_targeting(self, discount_id) -> DiscountTargeting:
        if not is_valid_discount_id(discount_id):
            self.logger.warning(f"[targeting] invalid discount id {discount_id!r}")
            return DiscountTargeting.missing()

        for gid in discount_id_candidates(discount_id):
            try:
                node = self.client.fetch_discount_node(gid)
            except UpstreamError as e:
                self.logger.debug(f"[targeting] candidate {gid} failed: {e}")
                continue
            discount = (node or {}).get("discount") or {}
            typename = discount.get("__typename")
            if typename not in SUPPORTED_TYPES:
                continue
            t = targeting_from_discount(discount)
            self.logger.debug(
                f"[targeting] {gid} ({typename}): all={t.applies_to_all_products} "
                f"products={len(t.product_ids)} collections={len(t.collection_ids)}"
            )
            return t

        self.logger.warning(f"[targeting] discount {discount_id} not found under any candidate id")
        return DiscountTargeting.missing()

    def get_affected_products(self, discount_id) -> list[str]:
        return self.products_for(self.get_discount_targeting(discount_id))

    def products_for(self, t: DiscountTargeting) -> list[str]:
        if t.not_found:
            return []
        if t.applies_to_all_products:
            return self.get_all_product_ids()
        if t.product_ids:
            return list(t.product_ids)
        if t.collection_ids:
            return self.get_products_from_collections(t.collection_ids)
        return []

    def _paginate(self, fetch) -> list[str]:
        out: list[str] = []
        after = None
        self.page_gate.reset()
        while True:
            self.page_gate.wait()
            ids, has_next, after = fetch(after)
            out.extend(ids)
            if not has_next or not after:
                return out

    def get_all_product_ids(self) -> list[str]:
        size = self.config.products_page_size
        try:
            ids = self._paginate(lambda after: self.client.list_product_ids(first=size, after=after))
        except UpstreamError as e:
            self.logger.error(f"[targeting] listing products failed: {e}")
            return []
        self.logger.info(f"[targeting] catalog has {len(ids)} products")
        return _dedupe(ids)

    def get_products_from_collections(self, collection_ids) -> list[str]:
        size = self.config.products_page_size
        out: list[str] = []
        for cid in _dedupe(collection_ids):
            try:
                out.extend(self._paginate(
                    lambda after, cid=cid: self.client.list_collection_product_ids(cid, first=size, after=after)
                ))
            except UpstreamError as e:
                self.logger.error(f"[targeting] collection {cid} expansion failed: {e}")
        result = _dedupe(out)
        self.logger.info(f"[targeting] {len(collection_ids)} collection(s) expanded to {len(result)} products")
        return result
