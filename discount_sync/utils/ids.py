# discount_sync/utils/ids.py
"""Discount / product identifier helpers.

Shopify hands out discount ids in several shapes: bare numbers from REST
webhooks, ``gid://shopify/DiscountAutomaticNode/123`` from GraphQL, and
sometimes a gid whose subtype doesn't match the node that actually answers
``discountNode(id:)``. Everything here is pure string work.
"""
import re

from ..errors import ValidationError

GID_PREFIX = "gid://shopify/"

CANDIDATE_SUBTYPES = ("DiscountAutomaticNode", "DiscountCodeNode", "DiscountNode")

KNOWN_STATUSES = ("ACTIVE", "EXPIRED", "DISABLED", "SCHEDULED")

_OPAQUE_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_DIGITS = re.compile(r"^\d+$")


def normalize_discount_id(raw) -> str:
    if raw is None:
        return ""
    s = str(raw).strip()
    if not s:
        return ""
    if "/" in s:
        s = s.rstrip("/").rsplit("/", 1)[-1]
    return s.split("?", 1)[0]


def discount_id_candidates(raw) -> list[str]:
    """Ordered gids to probe with ``discountNode(id:)``.

    Automatic, code and generic node first, then the input as given, then the
    bare id. Duplicates are dropped keeping first position.
    """
    original = "" if raw is None else str(raw).strip()
    bare = normalize_discount_id(original)
    if not bare:
        return []

    out: list[str] = []
    for c in [f"{GID_PREFIX}{sub}/{bare}" for sub in CANDIDATE_SUBTYPES] + [original, bare]:
        if c and c not in out:
            out.append(c)
    return out


def product_numeric_id(raw) -> str:
    return normalize_discount_id(raw)


def to_product_gid(raw) -> str:
    s = str(raw).strip()
    if s.startswith(GID_PREFIX):
        return s
    return f"{GID_PREFIX}Product/{s}"


# =========================================================
# Validation
# =========================================================

def is_valid_discount_id(raw) -> bool:
    if raw is None:
        return False
    s = str(raw).strip()
    if not s:
        return False
    if s.startswith(GID_PREFIX):
        return bool(normalize_discount_id(s))
    return bool(_DIGITS.match(s) or _OPAQUE_ID.match(s))


def is_valid_product_id(raw) -> bool:
    if raw is None:
        return False
    s = str(raw).strip()
    if s.startswith(f"{GID_PREFIX}Product/"):
        return bool(_DIGITS.match(normalize_discount_id(s)))
    return bool(_DIGITS.match(s))


def validate_discount_id(raw) -> str:
    if not is_valid_discount_id(raw):
        raise ValidationError(f"Invalid discount id: {raw!r}")
    return str(raw).strip()


def validate_product_ids(product_ids) -> list[str]:
    if not isinstance(product_ids, (list, tuple)) or not product_ids:
        raise ValidationError("Product ids must be a non-empty list")
    bad = [p for p in product_ids if not is_valid_product_id(p)]
    if bad:
        raise ValidationError(f"Invalid product ids: {bad[:5]}")
    return [str(p).strip() for p in product_ids]


def validate_webhook_payload(payload) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be an object")
    pid = payload.get("id")
    gid = payload.get("admin_graphql_api_id")
    if pid in (None, "") and not gid:
        raise ValidationError("Webhook payload has neither id nor admin_graphql_api_id")
    if pid not in (None, "") and not is_valid_discount_id(pid):
        raise ValidationError(f"Invalid discount id in payload: {pid!r}")
    if gid and not is_valid_discount_id(gid):
        raise ValidationError(f"Invalid admin_graphql_api_id in payload: {gid!r}")
    status = payload.get("status")
    if status and str(status).upper() not in KNOWN_STATUSES:
        raise ValidationError(f"Unknown discount status: {status!r}")
    return payload


def payload_discount_id(payload: dict) -> str:
    return normalize_discount_id(payload.get("admin_graphql_api_id") or payload.get("id"))
