# discount_sync/routes/webhooks.py
import json
import logging
import threading
import time
from flask import Blueprint, abort, current_app, request

from ..errors import ValidationError
from ..services.factory import build_service_stack
from ..utils.ids import validate_webhook_payload
from ..utils.security import verify_webhook_hmac

bp = Blueprint("webhooks", __name__)
logger = logging.getLogger(__name__)


class DeliveryLog:
    """Remembers recent webhook delivery ids so Shopify retries are acknowledged without re-running."""

    def __init__(self, ttl: float = 600, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._ids: dict[str, float] = {}
        self._lock = threading.Lock()

    def is_duplicate(self, delivery_id: str) -> bool:
        if not delivery_id:
            return False
        now = self.clock()
        with self._lock:
            self._ids = {k: t for k, t in self._ids.items() if now - t <= self.ttl}
            if delivery_id in self._ids:
                return True
            self._ids[delivery_id] = now
            return False


deliveries = DeliveryLog()


def _run(label: str, work):
    app = current_app._get_current_object()

    def worker():
        with app.app_context():
            try:
                work()
            except Exception:
                logger.exception(f"[webhooks] {label} failed")

    if app.config.get("WEBHOOK_INLINE"):
        worker()
    else:
        threading.Thread(target=worker, daemon=True).start()


def _handle(event: str):
    raw = verify_webhook_hmac(current_app.config["SHOPIFY_API_SECRET"])
    shop = request.headers.get("X-Shopify-Shop-Domain", "")
    if not shop:
        abort(400)

    delivery_id = request.headers.get("X-Shopify-Webhook-Id", "")
    if delivery_id and deliveries.is_duplicate(f"{shop}:{delivery_id}"):
        return "OK", 200

    try:
        payload = json.loads(raw.decode("utf-8")) if raw else {}
        validate_webhook_payload(payload)
    except (ValueError, ValidationError) as e:
        logger.warning(f"[webhooks] discounts/{event} from {shop} rejected: {e}")
        return {"error": str(e)}, 400

    client = current_app.config["CLIENT_FOR_SHOP"](shop)
    if client is None:
        logger.warning(f"[webhooks] discounts/{event} from {shop}: no valid session, ignoring")
        return "OK", 200

    logger.info(f"[webhooks] discounts/{event} from {shop} id={payload.get('admin_graphql_api_id') or payload.get('id')}")
    service = build_service_stack(client, shop, current_app.config["SESSION_FACTORY"],
                                  current_app.config["SYNC_CONFIG"])
    handler = {
        "create": service.process_discount_create,
        "update": service.process_discount_update,
        "delete": service.process_discount_delete,
    }[event]
    _run(f"discounts/{event} {shop}", lambda: handler(payload))
    return "OK", 200


@bp.post("/create")
def discount_created():
    return _handle("create")


@bp.post("/update")
def discount_updated():
    return _handle("update")


@bp.post("/delete")
def discount_deleted():
    return _handle("delete")
