# discount_sync/services/relationships.py
"""Local product <-> discount link table.

Single-pair operations follow a strict state machine (absent / active /
inactive) and raise on misuse. Bulk operations are upsert-or-reactivate and
never raise for an individual pair; everything lands in BulkOperationResult.

Every mutation rebuilds ``products.active_discounts`` for the touched
products and ``discount_rules.products_count`` for the touched discounts.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import DuplicateRelationshipError, NotFoundError, SyncError
from ..storage.models import utcnow
from .extractor import SCHEMA_VERSION
from .metafields import encode_annotation


@dataclass
class BulkOperationResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: list[dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.errors == 0

    def fail(self, product_key, discount_key, error):
        self.errors += 1
        self.error_details.append({"productId": product_key, "discountId": discount_key, "error": str(error)})

    def merge(self, other: "BulkOperationResult") -> "BulkOperationResult":
        return BulkOperationResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
            error_details=self.error_details + other.error_details,
        )

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "errorDetails": list(self.error_details),
            "success": self.success,
        }


@dataclass
class RelationshipStatistics:
    total: int = 0
    active: int = 0
    inactive: int = 0
    products_with_discounts: int = 0
    discounts_with_products: int = 0


def _annotation_entry(rule) -> dict:
    try:
        body = json.loads(rule.value) if rule.value else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict) or not body:
        body = {"id": rule.discount_id, "title": rule.title, "status": rule.status}
    return {"schemaVersion": SCHEMA_VERSION, **body}


class ProductDiscountService:
    def __init__(self, product_repo, discount_repo, link_repo, shop: str,
                 logger: logging.Logger | None = None):
        self.products = product_repo
        self.discounts = discount_repo
        self.links = link_repo
        self.shop = shop
        self.logger = logger or logging.getLogger(__name__)

    # =========================================================
    # Bookkeeping
    # =========================================================

    def sync_with_product_metafields(self, product_key: int):
        """Rebuild the product's local active_discounts mirror from active links."""
        rules = self.links.active_rules_for_product(product_key)
        self.products.set_active_discounts(product_key, encode_annotation([_annotation_entry(r) for r in rules]))

    def refresh_discount_count(self, discount_key: int):
        self.discounts.update_products_count(discount_key, self.links.count_active_for_discount(discount_key), utcnow())

    def _after_change(self, product_keys: Iterable[int], discount_keys: Iterable[int]):
        for pk in sorted(set(product_keys)):
            self.sync_with_product_metafields(pk)
        for dk in sorted(set(discount_keys)):
            self.refresh_discount_count(dk)

    def _after_bulk_change(self, product_keys, discount_keys, result: BulkOperationResult):
        try:
            self._after_change(product_keys, discount_keys)
        except SyncError as e:
            self.logger.error(f"[relationships] bookkeeping after bulk change failed: {e}")
            result.fail(None, None, e)

    # =========================================================
    # Single pair
    # =========================================================

    def create_relationship(self, product_key: int, discount_key: int):
        if self.products.get(product_key) is None:
            raise NotFoundError(f"Product {product_key} not found")
        if self.discounts.get(discount_key) is None:
            raise NotFoundError(f"Discount rule {discount_key} not found")

        existing = self.links.find(product_key, discount_key)
        if existing is not None and existing.is_active:
            raise DuplicateRelationshipError(
                f"Product {product_key} is already linked to discount {discount_key}"
            )
        if existing is not None:
            self.links.set_active([existing.id], True)
            link = self.links.find(product_key, discount_key)
        else:
            link = self.links.create(product_key, discount_key)
        self._after_change([product_key], [discount_key])
        return link

    def remove_relationship(self, product_key: int, discount_key: int) -> bool:
        existing = self.links.find(product_key, discount_key)
        if existing is None:
            return False
        self.links.delete(existing.id)
        self._after_change([product_key], [discount_key])
        return True

    def toggle_relationship(self, product_key: int, discount_key: int) -> bool:
        """Returns True when the pair ends up linked."""
        existing = self.links.find(product_key, discount_key)
        if existing is not None and existing.is_active:
            self.remove_relationship(product_key, discount_key)
            return False
        self.create_relationship(product_key, discount_key)
        return True

    # =========================================================
    # Bulk
    # =========================================================

    def create_bulk_relationships(self, pairs) -> BulkOperationResult:
        result = BulkOperationResult()
        staged: list[tuple[int, int]] = []
        reactivate: list[int] = []
        reactivated_pairs: list[tuple[int, int]] = []
        seen: set[tuple[int, int]] = set()
        known_products: dict[int, bool] = {}
        known_discounts: dict[int, bool] = {}

        for product_key, discount_key in pairs:
            pair = (product_key, discount_key)
            if pair in seen:
                result.skipped += 1
                continue
            seen.add(pair)
            try:
                existing = self.links.find(product_key, discount_key)
                if existing is not None:
                    if existing.is_active:
                        result.skipped += 1
                    else:
                        reactivate.append(existing.id)
                        reactivated_pairs.append(pair)
                    continue
                if product_key not in known_products:
                    known_products[product_key] = self.products.get(product_key) is not None
                if not known_products[product_key]:
                    result.fail(product_key, discount_key, NotFoundError(f"Product {product_key} not found"))
                    continue
                if discount_key not in known_discounts:
                    known_discounts[discount_key] = self.discounts.get(discount_key) is not None
                if not known_discounts[discount_key]:
                    result.fail(product_key, discount_key, NotFoundError(f"Discount rule {discount_key} not found"))
                    continue
                staged.append(pair)
            except SyncError as e:
                result.fail(product_key, discount_key, e)

        if staged:
            try:
                result.created += self.links.create_many(staged)
            except SyncError as e:
                self.logger.error(f"[relationships] bulk insert of {len(staged)} links failed: {e}")
                for p, d in staged:
                    result.fail(p, d, e)
                staged = []
        if reactivate:
            try:
                result.updated += self.links.set_active(reactivate, True)
            except SyncError as e:
                self.logger.error(f"[relationships] reactivating {len(reactivate)} links failed: {e}")
                result.fail(None, None, e)
                reactivated_pairs = []

        touched = staged + reactivated_pairs
        if result.created or result.updated:
            self._after_bulk_change([p for p, _ in touched], [d for _, d in touched], result)

        self.logger.info(
            f"[relationships] bulk create: {result.created} created, {result.updated} reactivated, "
            f"{result.skipped} skipped, {result.errors} errors"
        )
        return result

    def remove_bulk_relationships(self, pairs) -> BulkOperationResult:
        result = BulkOperationResult()
        deactivate: list[int] = []
        touched: list[tuple[int, int]] = []

        for product_key, discount_key in pairs:
            try:
                existing = self.links.find(product_key, discount_key)
            except SyncError as e:
                result.fail(product_key, discount_key, e)
                continue
            if existing is None or not existing.is_active or existing.id in deactivate:
                result.skipped += 1
                continue
            deactivate.append(existing.id)
            touched.append((product_key, discount_key))

        if deactivate:
            try:
                result.updated += self.links.set_active(deactivate, False)
            except SyncError as e:
                self.logger.error(f"[relationships] deactivating {len(deactivate)} links failed: {e}")
                result.fail(None, None, e)
                touched = []
        if touched:
            self._after_bulk_change([p for p, _ in touched], [d for _, d in touched], result)

        self.logger.info(f"[relationships] bulk remove: {result.updated} deactivated, {result.skipped} skipped")
        return result

    def sync_product_discounts(self, product_key: int, discount_keys) -> BulkOperationResult:
        current = {l.discount_id for l in self.links.find_by_product(product_key, active_only=True)}
        desired = set(discount_keys)
        added = self.create_bulk_relationships([(product_key, d) for d in sorted(desired - current)])
        removed = self.remove_bulk_relationships([(product_key, d) for d in sorted(current - desired)])
        return added.merge(removed)

    def sync_discount_products(self, discount_key: int, product_keys) -> BulkOperationResult:
        current = {l.product_id for l in self.links.find_by_discount(discount_key, active_only=True)}
        desired = set(product_keys)
        added = self.create_bulk_relationships([(p, discount_key) for p in sorted(desired - current)])
        removed = self.remove_bulk_relationships([(p, discount_key) for p in sorted(current - desired)])
        return added.merge(removed)

    # =========================================================
    # Activation by side
    # =========================================================

    def _set_links(self, links, is_active: bool) -> int:
        ids = [l.id for l in links if l.is_active != is_active]
        if not ids:
            return 0
        n = self.links.set_active(ids, is_active)
        self._after_change([l.product_id for l in links], [l.discount_id for l in links])
        return n

    def activate_product_discounts(self, product_key: int) -> int:
        return self._set_links(self.links.find_by_product(product_key), True)

    def deactivate_product_discounts(self, product_key: int) -> int:
        return self._set_links(self.links.find_by_product(product_key), False)

    def activate_discount_products(self, discount_key: int) -> int:
        return self._set_links(self.links.find_by_discount(discount_key), True)

    def deactivate_discount_products(self, discount_key: int) -> int:
        return self._set_links(self.links.find_by_discount(discount_key), False)

    # =========================================================
    # Queries
    # =========================================================

    def get_product_discounts(self, product_key: int, active_only: bool = True):
        return self.links.find_by_product(product_key, active_only=active_only)

    def get_discount_products(self, discount_key: int, active_only: bool = False):
        return self.links.find_by_discount(discount_key, active_only=active_only)

    def get_active_relationships(self):
        return self.links.find_all(active_only=True)

    def get_relationship_statistics(self) -> RelationshipStatistics:
        return RelationshipStatistics(**self.links.statistics())

    def get_product_discount_counts(self, product_keys) -> dict[int, int]:
        return self.links.active_counts("product_id", product_keys)

    def get_discount_product_counts(self, discount_keys) -> dict[int, int]:
        return self.links.active_counts("discount_id", discount_keys)
