# discount_sync/services/discounts.py
import logging
from dataclasses import dataclass, field

from ..config import SyncConfig
from ..errors import UpstreamError
from ..utils.ids import (
    discount_id_candidates, normalize_discount_id, payload_discount_id, product_numeric_id,
    to_product_gid, validate_discount_id, validate_webhook_payload,
)
from .batch import BatchResult, IntervalGate
from .extractor import (
    SUPPORTED_TYPES, ExtractedDiscountData,
    extract_from_full_details, extract_from_list_node, extract_from_webhook_payload,
)
from .relationships import BulkOperationResult
from .targeting import DiscountTargeting


@dataclass
class DiscountSyncResult:
    discount_id: str
    status: str = ""
    is_active: bool = False
    affected_products: int = 0
    metafields: BatchResult | None = None
    relationships: BulkOperationResult | None = None
    skipped_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "discountId": self.discount_id,
            "status": self.status,
            "isActive": self.is_active,
            "affectedProducts": self.affected_products,
            "metafields": self.metafields.to_dict() if self.metafields else None,
            "relationships": self.relationships.to_dict() if self.relationships else None,
            "skippedReason": self.skipped_reason,
        }


@dataclass
class InitializationResult:
    success: bool = True
    total_found: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    error: str | None = None
    error_details: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "totalFound": self.total_found,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "error": self.error,
            "errorDetails": list(self.error_details),
        }


def _merge_batches(a: BatchResult, b: BatchResult) -> BatchResult:
    return BatchResult(
        success_count=a.success_count + b.success_count,
        failure_count=a.failure_count + b.failure_count,
        errors=a.errors + b.errors,
        succeeded=a.succeeded + b.succeeded,
    )


class DiscountSyncService:
    """Discount lifecycle use cases for one shop.

    create / update / delete are driven by webhooks; initialize by an operator
    or cron. Every upstream write goes through the BatchExecutor owned by the
    metafield service, so pacing is shared across a whole use case.
    """

    def __init__(self, client, shop: str, config: SyncConfig, discount_repo, product_repo,
                 targeting, metafields, relationships, discount_gate: IntervalGate | None = None,
                 page_gate: IntervalGate | None = None, logger: logging.Logger | None = None):
        self.client = client
        self.shop = shop
        self.config = config
        self.discounts = discount_repo
        self.products = product_repo
        self.targeting = targeting
        self.metafields = metafields
        self.relationships = relationships
        self.discount_gate = discount_gate if discount_gate is not None else IntervalGate(config.discount_delay)
        self.page_gate = page_gate if page_gate is not None else IntervalGate(config.page_delay)
        self.logger = logger or logging.getLogger(__name__)

    # =========================================================
    # Upstream reads
    # =========================================================

    def fetch_full_discount_details(self, discount_id) -> dict | None:
        """Probe candidate gids until one resolves to a supported discount.

        Returns ``{"node_id": ..., "discount": {...}}`` or None.
        """
        candidates = discount_id_candidates(discount_id)
        for gid in candidates:
            try:
                node = self.client.fetch_discount_node(gid)
            except UpstreamError as e:
                self.logger.debug(f"[discounts] candidate {gid} failed: {e}")
                continue
            discount = (node or {}).get("discount") or {}
            if discount.get("__typename") in SUPPORTED_TYPES:
                self.logger.debug(f"[discounts] resolved {gid} as {discount['__typename']}")
                return {"node_id": node.get("id") or gid, "discount": discount}
        self.logger.warning(f"[discounts] no candidate resolved for {discount_id}: {candidates}")
        return None

    def get_discount_from_shopify(self, discount_id) -> ExtractedDiscountData | None:
        details = self.fetch_full_discount_details(discount_id)
        if details is None:
            return None
        data = extract_from_full_details(details["discount"], node_id=details["node_id"])
        data.id = normalize_discount_id(discount_id)
        return data

    def get_all_discounts_from_shopify(self) -> list[ExtractedDiscountData]:
        out: list[ExtractedDiscountData] = []
        after = None
        page = 0
        self.page_gate.reset()
        while True:
            self.page_gate.wait()
            page += 1
            try:
                nodes, has_next, after = self.client.list_discount_nodes(
                    first=self.config.discounts_page_size, after=after
                )
            except UpstreamError as e:
                if page == 1:
                    raise
                self.logger.error(f"[discounts] listing page {page} failed, stopping: {e}")
                break
            for node in nodes:
                typename = ((node or {}).get("discount") or {}).get("__typename")
                if typename not in SUPPORTED_TYPES:
                    self.logger.debug(f"[discounts] ignoring {node.get('id')} ({typename})")
                    continue
                out.append(extract_from_list_node(node))
            if not has_next or not after:
                break
        self.logger.info(f"[discounts] {self.shop}: {len(out)} supported discounts upstream")
        return out

    def _extract(self, payload: dict) -> ExtractedDiscountData:
        raw_id = payload.get("admin_graphql_api_id") or payload.get("id")
        data = self.get_discount_from_shopify(raw_id)
        if data is None:
            self.logger.warning(f"[discounts] falling back to webhook payload for {raw_id}")
            data = extract_from_webhook_payload(payload)
        # keep the id stable whatever node answered
        data.id = payload_discount_id(payload)
        return data

    # =========================================================
    # Product side effects
    # =========================================================

    def _chunks(self, ids: list[str]):
        size = max(1, self.config.max_products_per_batch)
        for i in range(0, len(ids), size):
            yield ids[i:i + size]

    def _annotate(self, product_ids: list[str], data: ExtractedDiscountData) -> BatchResult:
        result = BatchResult()
        for chunk in self._chunks(product_ids):
            result = _merge_batches(result, self.metafields.update_multiple_product_metafields(chunk, data))
        return result

    def _strip(self, product_ids: list[str], discount_id: str) -> BatchResult:
        result = BatchResult()
        for chunk in self._chunks(product_ids):
            result = _merge_batches(result, self.metafields.remove_discount_from_multiple_products(chunk, discount_id))
        return result

    def update_affected_product_metafields(self, rule, data: ExtractedDiscountData,
                                           targeting: DiscountTargeting | None = None) -> DiscountSyncResult:
        out = DiscountSyncResult(discount_id=data.id, status=data.status, is_active=True)
        prior = self.relationships.get_discount_products(rule.id, active_only=False)

        if prior:
            # targeting changes after first link are not picked up here
            product_ids = [to_product_gid(l.product.shopify_id) for l in prior]
            self.logger.info(f"[discounts] {data.id}: reusing {len(prior)} existing link(s)")
        else:
            t = targeting if targeting is not None else self.targeting.get_discount_targeting(data.id)
            product_ids = self.targeting.products_for(t)

        out.affected_products = len(product_ids)
        if not product_ids:
            self.logger.info(f"[discounts] {data.id}: no products targeted")
            self.relationships.refresh_discount_count(rule.id)
            return out

        out.metafields = self._annotate(product_ids, data)
        out.relationships = self.create_product_discount_relationships(rule, out.metafields.succeeded)
        if out.metafields.failure_count:
            self.logger.warning(
                f"[discounts] {data.id}: {out.metafields.failure_count} of "
                f"{out.metafields.total_processed} product writes failed"
            )
        return out

    def create_product_discount_relationships(self, rule, product_ids: list[str]) -> BulkOperationResult:
        mirror = self.products.find_by_shopify_ids(product_ids)
        missing = [p for p in product_ids if product_numeric_id(p) not in mirror]
        if missing:
            self.logger.debug(f"[discounts] {len(missing)} product(s) not in local mirror, not linked")
        pairs = [(mirror[product_numeric_id(p)].id, rule.id) for p in product_ids if product_numeric_id(p) in mirror]
        result = self.relationships.create_bulk_relationships(pairs)
        self.relationships.refresh_discount_count(rule.id)
        return result

    def remove_from_product_metafields(self, discount_id) -> BatchResult | None:
        """Strip the discount from products it is actively linked to, then
        deactivate exactly the links whose product was cleaned."""
        rule = self.discounts.find_by_discount_id(discount_id)
        if rule is None:
            self.logger.warning(f"[discounts] no local rule for {discount_id}, nothing to clean")
            return None

        links = self.relationships.get_discount_products(rule.id, active_only=True)
        if not links:
            self.relationships.refresh_discount_count(rule.id)
            return BatchResult()

        by_gid = {to_product_gid(l.product.shopify_id): l.product_id for l in links}
        result = self._strip(list(by_gid), rule.discount_id)
        cleaned = [(by_gid[gid], rule.id) for gid in result.succeeded if gid in by_gid]
        self.relationships.remove_bulk_relationships(cleaned)
        self.relationships.refresh_discount_count(rule.id)
        self.logger.info(
            f"[discounts] {rule.discount_id}: removed from {result.success_count} product(s), "
            f"{result.failure_count} failed"
        )
        return result

    # =========================================================
    # Event use cases
    # =========================================================

    def _process_upsert(self, payload: dict, event: str) -> DiscountSyncResult:
        validate_webhook_payload(payload)
        data = self._extract(payload)
        self.logger.info(f"[discounts] {event} {self.shop} {data.id} '{data.title}' status={data.status}")

        if not data.is_active:
            known = event == "update" and self.discounts.find_by_discount_id(data.id) is not None
            self.discounts.upsert(data, is_active=False, namespace=self.config.metafield_namespace,
                                  key=self.config.metafield_key)
            if not known:
                return DiscountSyncResult(discount_id=data.id, status=data.status, skipped_reason="inactive")
            # no longer live upstream: take it off the products it was on
            out = DiscountSyncResult(discount_id=data.id, status=data.status)
            out.metafields = self.remove_from_product_metafields(data.id)
            out.affected_products = out.metafields.total_processed if out.metafields else 0
            return out

        rule = self.discounts.upsert(data, is_active=True, namespace=self.config.metafield_namespace,
                                     key=self.config.metafield_key)
        return self.update_affected_product_metafields(rule, data)

    def process_discount_create(self, payload: dict) -> DiscountSyncResult:
        return self._process_upsert(payload, "create")

    def process_discount_update(self, payload: dict) -> DiscountSyncResult:
        return self._process_upsert(payload, "update")

    def process_discount_delete(self, payload: dict) -> DiscountSyncResult:
        validate_webhook_payload(payload)
        discount_id = payload_discount_id(payload)
        rule = self.discounts.deactivate_by_discount_id(discount_id, status="DELETED")
        if rule is None:
            self.logger.warning(f"[discounts] delete for unknown discount {discount_id} on {self.shop}")
            return DiscountSyncResult(discount_id=discount_id, status="DELETED", skipped_reason="unknown")

        self.logger.info(f"[discounts] delete {self.shop} {discount_id}")
        out = DiscountSyncResult(discount_id=discount_id, status="DELETED")
        out.metafields = self.remove_from_product_metafields(discount_id)
        out.affected_products = out.metafields.total_processed if out.metafields else 0
        return out

    # =========================================================
    # Backfill
    # =========================================================

    def initialize_all_discounts(self) -> InitializationResult:
        result = InitializationResult()
        try:
            discounts = self.get_all_discounts_from_shopify()
            known = self.discounts.list_discount_ids()
        except Exception as e:
            self.logger.exception(f"[discounts] initialize {self.shop} failed before processing")
            result.success = False
            result.error = str(e)
            return result

        result.total_found = len(discounts)
        self.discount_gate.reset()
        for data in discounts:
            if data.id in known:
                result.skipped += 1
                continue
            if not data.is_active:
                self.logger.debug(f"[discounts] skipping {data.id}, status {data.status}")
                result.skipped += 1
                continue

            self.discount_gate.wait()
            try:
                validate_discount_id(data.id)
                t = self.targeting.get_discount_targeting(data.id)
                if t.not_found:
                    self.logger.warning(f"[discounts] skipping {data.id}, targeting could not be resolved")
                    result.skipped += 1
                    continue
                rule = self.discounts.upsert(data, is_active=True, namespace=self.config.metafield_namespace,
                                             key=self.config.metafield_key)
                self.update_affected_product_metafields(rule, data, targeting=t)
                known.add(data.id)
                result.processed += 1
            except Exception as e:
                self.logger.exception(f"[discounts] initialize {data.id} failed")
                result.errors += 1
                result.error_details.append({"discountId": data.id, "error": str(e)})

        self.logger.info(
            f"[discounts] initialize {self.shop}: found={result.total_found} processed={result.processed} "
            f"skipped={result.skipped} errors={result.errors}"
        )
        return result
