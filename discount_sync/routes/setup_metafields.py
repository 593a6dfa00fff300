# discount_sync/routes/setup_metafields.py
import logging
from flask import Blueprint, current_app

from ..config import SyncConfig
from ..errors import UpstreamError

bp = Blueprint("setup_metafields", __name__)
logger = logging.getLogger(__name__)

_DUPLICATE_MARKERS = ("already been taken", "already exists")


def active_discounts_definition(config: SyncConfig) -> dict:
    return {
        "name": "Active discounts",
        "namespace": config.metafield_namespace,
        "key": config.metafield_key,
        "type": config.metafield_type,
        "description": "Discounts currently applied to this product, maintained by discount sync",
        "ownerType": "PRODUCT",
    }


def ensure_definition(client, config: SyncConfig) -> dict:
    """Create the product metafield definition; an existing one counts as success."""
    definition = active_discounts_definition(config)
    result = {"namespace": definition["namespace"], "key": definition["key"]}
    try:
        block = client.create_metafield_definition(definition)
    except UpstreamError as e:
        return {**result, "status": "error", "message": str(e)}

    created = block.get("createdDefinition")
    if created:
        return {**result, "status": "created", "id": created.get("id")}

    message = "; ".join(e.get("message", "") for e in block.get("userErrors") or [])
    if any(marker in message.lower() for marker in _DUPLICATE_MARKERS):
        return {**result, "status": "exists"}
    return {**result, "status": "error", "message": message or str(block)}


@bp.get("/<shop>")
def setup_shop(shop: str):
    client = current_app.config["CLIENT_FOR_SHOP"](shop)
    if client is None:
        return {"error": f"No valid session for {shop}"}, 404
    result = ensure_definition(client, current_app.config["SYNC_CONFIG"])
    logger.info(f"[metafields] {shop} definition {result['namespace']}.{result['key']}: {result['status']}")
    return result, (502 if result["status"] == "error" else 200)
