# discount_sync/services/metafields.py
"""Read-merge-write of the per-product ``active_discounts`` metafield.

The stored value is a JSON list of discount entries, one per discount id
(see ``ExtractedDiscountData.to_annotation``). ``decode_annotation`` and
``encode_annotation`` are the only places that touch the raw string.
"""
import json
import logging

from ..config import SyncConfig
from ..errors import UpstreamError, ValidationError
from ..utils.ids import is_valid_discount_id, is_valid_product_id, normalize_discount_id, to_product_gid
from .batch import BatchExecutor, BatchResult
from .extractor import ExtractedDiscountData

_log = logging.getLogger(__name__)


def decode_annotation(raw, logger: logging.Logger | None = None) -> list[dict]:
    logger = logger or _log
    if raw in (None, ""):
        return []
    try:
        entries = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError as e:
        logger.warning(f"[metafields] unreadable annotation, treating as empty: {e}")
        return []
    if not isinstance(entries, list):
        logger.warning(f"[metafields] annotation is {type(entries).__name__}, not a list; treating as empty")
        return []
    return [e for e in entries if isinstance(e, dict)]


def encode_annotation(entries: list[dict]) -> str:
    return json.dumps(entries, separators=(",", ":"))


def _entry_id(entry: dict) -> str:
    return normalize_discount_id(entry.get("id"))


class ProductMetafieldService:
    def __init__(self, client, config: SyncConfig, executor: BatchExecutor | None = None,
                 logger: logging.Logger | None = None):
        self.client = client
        self.config = config
        self.logger = logger or _log
        self.executor = executor or BatchExecutor(config, logger=self.logger)

    def get_product_metafield(self, product_id: str) -> str | None:
        return self.client.get_product_metafield_value(
            to_product_gid(product_id), self.config.metafield_namespace, self.config.metafield_key
        )

    def read_entries(self, product_id: str) -> list[dict]:
        return decode_annotation(self.get_product_metafield(product_id), self.logger)

    def _write(self, product_id: str, entries: list[dict]) -> bool:
        errs = self.client.set_product_metafield(
            to_product_gid(product_id),
            self.config.metafield_namespace,
            self.config.metafield_key,
            self.config.metafield_type,
            encode_annotation(entries),
        )
        if errs:
            self.logger.error(f"[metafields] {product_id} userErrors: {'; '.join(e.get('message', '') for e in errs)}")
            return False
        return True

    def update_product_metafield(self, product_id: str, discount_data: ExtractedDiscountData) -> bool:
        if not is_valid_product_id(product_id) or not discount_data or not discount_data.id:
            self.logger.warning(f"[metafields] skipping update, bad input for {product_id!r}")
            return False
        target = normalize_discount_id(discount_data.id)
        try:
            entries = self.read_entries(product_id)
            kept = [e for e in entries if _entry_id(e) != target]
            kept.append(discount_data.to_annotation())
            ok = self._write(product_id, kept)
        except UpstreamError as e:
            self.logger.error(f"[metafields] update {product_id} / {target} failed: {e}")
            return False
        if ok:
            self.logger.debug(f"[metafields] {product_id} now carries {len(kept)} discount(s)")
        return ok

    def remove_discount_from_product(self, product_id: str, discount_id) -> bool:
        if not is_valid_product_id(product_id) or not is_valid_discount_id(discount_id):
            self.logger.warning(f"[metafields] skipping removal, bad input {product_id!r} / {discount_id!r}")
            return False
        target = normalize_discount_id(discount_id)
        try:
            entries = self.read_entries(product_id)
            kept = [e for e in entries if _entry_id(e) != target]
            if len(kept) == len(entries):
                self.logger.debug(f"[metafields] {product_id} has no entry for {target}, nothing to write")
                return True
            return self._write(product_id, kept)
        except UpstreamError as e:
            self.logger.error(f"[metafields] remove {target} from {product_id} failed: {e}")
            return False

    # ---------------- bulk ----------------

    def update_multiple_product_metafields(self, product_ids, discount_data: ExtractedDiscountData) -> BatchResult:
        return self.executor.run(
            product_ids, lambda pid: self.update_product_metafield(pid, discount_data), label="metafields:update"
        )

    def remove_discount_from_multiple_products(self, product_ids, discount_id) -> BatchResult:
        if not is_valid_discount_id(discount_id):
            raise ValidationError(f"Invalid discount id: {discount_id!r}")
        return self.executor.run(
            product_ids, lambda pid: self.remove_discount_from_product(pid, discount_id), label="metafields:remove"
        )
