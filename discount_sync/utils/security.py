# discount_sync/utils/security.py
import base64
import hashlib
import hmac
from flask import abort, request


def shopify_signature(secret: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 of ``body``, as sent in X-Shopify-Hmac-Sha256."""
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def verify_webhook_hmac(secret: str) -> bytes:
    """Abort 401 unless the request body carries a valid Shopify signature; returns the raw body."""
    body = request.get_data()
    sent = request.headers.get("X-Shopify-Hmac-Sha256", "")
    if not secret or not hmac.compare_digest(shopify_signature(secret, body), sent):
        abort(401)
    return body


def verify_cron_token(token: str) -> None:
    sent = request.headers.get("Authorization", "")
    if not token or not hmac.compare_digest(sent, f"Bearer {token}"):
        abort(401)
