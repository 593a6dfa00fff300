# discount_sync/routes/register.py
import logging
from flask import Blueprint, current_app
import requests
from ..clients.shopify import admin_base, rest_headers
from ..config import WEBHOOK_TOPICS
from ..storage.repository import SessionRepository

bp = Blueprint("register", __name__)
logger = logging.getLogger(__name__)

TIMEOUT = 20


def _subscribe(base: str, headers: dict, topic: str, address: str, current: list[dict]) -> str:
    """Make exactly one ``topic`` subscription point at ``address``.

    Returns one of ok / updated / created, or ``failed: <reason>``.
    """
    if any(w.get("address") == address for w in current):
        return "ok"

    if current:
        # repoint instead of stacking a second subscription on the same topic
        hook_id = current[0]["id"]
        method, url = requests.put, f"{base}/webhooks/{hook_id}.json"
        body = {"webhook": {"id": hook_id, "address": address, "format": "json"}}
        done = "updated"
    else:
        method, url = requests.post, f"{base}/webhooks.json"
        body = {"webhook": {"topic": topic, "address": address, "format": "json"}}
        done = "created"

    try:
        r = method(url, headers=headers, json=body, timeout=TIMEOUT)
    except requests.RequestException as e:
        return f"failed: {e}"
    if r.status_code not in (200, 201, 202):
        return f"failed: {r.status_code} {r.text}"
    return done


@bp.get("/<shop>")
def register_shop(shop: str):
    base_url = current_app.config.get("BASE_URL")
    if not base_url:
        return {"error": "BASE_URL is not configured"}, 500
    session = SessionRepository(current_app.config["SESSION_FACTORY"]).find_valid(shop)
    if session is None:
        return {"error": f"No valid session for {shop}"}, 404

    base = admin_base(shop)
    headers = rest_headers(session.access_token)
    try:
        listing = requests.get(f"{base}/webhooks.json", headers=headers, timeout=TIMEOUT)
        listing.raise_for_status()
        existing = listing.json().get("webhooks", [])
    except requests.RequestException as e:
        logger.error(f"[register] {shop}: listing webhooks failed: {e}")
        return {"error": f"Could not list webhooks: {e}"}, 502

    results = {}
    for topic in WEBHOOK_TOPICS:
        current = [w for w in existing if w.get("topic") == topic]
        results[topic] = _subscribe(base, headers, topic, f"{base_url}/webhooks/{topic}", current)
        logger.info(f"[register] {shop} {topic}: {results[topic]}")

    failed = any(v.startswith("failed") for v in results.values())
    return {"shop": shop, "webhooks": results}, (502 if failed else 200)
