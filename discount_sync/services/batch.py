# discount_sync/services/batch.py
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from ..config import SyncConfig
from ..errors import ValidationError
from ..utils.ids import validate_product_ids


class IntervalGate:
    """Fixed-interval pacer: ``wait()`` blocks until ``interval`` seconds have
    passed since the previous call returned. ``IntervalGate(0)`` never sleeps.
    """

    def __init__(self, interval: float, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.interval = max(0.0, float(interval))
        self._sleep = sleep
        self._clock = clock
        self._last: float | None = None

    def wait(self):
        if self.interval <= 0:
            return
        if self._last is not None:
            remaining = self.interval - (self._clock() - self._last)
            if remaining > 0:
                self._sleep(remaining)
        self._last = self._clock()

    def reset(self):
        self._last = None


@dataclass
class BatchResult:
    success_count: int = 0
    failure_count: int = 0
    errors: list[dict] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> dict:
        return {
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "totalProcessed": self.total_processed,
            "errors": list(self.errors),
        }


class BatchExecutor:
    def __init__(self, config: SyncConfig, gate: IntervalGate | None = None,
                 logger: logging.Logger | None = None):
        self.config = config
        self.gate = gate if gate is not None else IntervalGate(config.rate_limit_delay)
        self.logger = logger or logging.getLogger(__name__)

    def run(self, product_ids, operation: Callable[[str], bool], label: str = "batch") -> BatchResult:
        result = BatchResult()
        try:
            ids = validate_product_ids(product_ids)
        except ValidationError as e:
            self.logger.warning(f"[{label}] rejected product id list: {e}")
            for pid in (product_ids if isinstance(product_ids, (list, tuple)) else []):
                result.failure_count += 1
                result.errors.append({"productId": str(pid), "error": str(e)})
            return result

        limit = self.config.max_products_per_batch
        if limit and len(ids) > limit:
            self.logger.warning(f"[{label}] {len(ids)} products requested, processing first {limit}")
            ids = ids[:limit]

        for pid in ids:
            self.gate.wait()
            try:
                ok = operation(pid)
            except Exception as e:
                self.logger.error(f"[{label}] {pid} failed: {e}")
                result.failure_count += 1
                result.errors.append({"productId": pid, "error": str(e)})
                continue
            if ok:
                result.success_count += 1
                result.succeeded.append(pid)
            else:
                result.failure_count += 1
                result.errors.append({"productId": pid, "error": "operation returned False"})

        self.logger.info(
            f"[{label}] done: {result.success_count} ok, {result.failure_count} failed of {result.total_processed}"
        )
        return result
