# discount_sync/services/extractor.py
"""Normalize whatever discount shape Shopify returned.

Three inputs are accepted and all produce the same ExtractedDiscountData:

* the ``discount`` object from ``discountNode(id:)`` (full details)
* a ``discounts/*`` webhook body (id, title, status, created_at only)
* a ``discountNodes`` list node (``{"id": ..., "discount": {...}}``)
"""
from dataclasses import dataclass, field
from enum import Enum

from ..utils.ids import normalize_discount_id

SCHEMA_VERSION = 1

UNTITLED = "Untitled Discount"

BASIC_TYPES = ("DiscountCodeBasic", "DiscountAutomaticBasic")
BXGY_TYPES = ("DiscountCodeBxgy", "DiscountAutomaticBxgy")
SUPPORTED_TYPES = BASIC_TYPES + BXGY_TYPES


class ValueKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    BXGY = "bxgy"
    UNKNOWN = "unknown"


@dataclass
class DiscountValue:
    kind: ValueKind = ValueKind.UNKNOWN
    display_value: str = "Unknown"
    percentage: float | None = None
    amount: str | None = None
    currency_code: str | None = None
    buy_quantity: int | None = None
    get_quantity: int | None = None

    def to_dict(self) -> dict:
        out = {"kind": self.kind.value, "displayValue": self.display_value}
        if self.kind is ValueKind.PERCENTAGE:
            out["percentage"] = self.percentage
        elif self.kind is ValueKind.FIXED_AMOUNT:
            out.update(amount=self.amount, currencyCode=self.currency_code)
        elif self.kind is ValueKind.BXGY:
            out.update(buyQuantity=self.buy_quantity, getQuantity=self.get_quantity,
                       percentage=self.percentage, amount=self.amount, currencyCode=self.currency_code)
        return out

    @classmethod
    def from_dict(cls, d: dict | None) -> "DiscountValue":
        d = d or {}
        try:
            kind = ValueKind(d.get("kind") or d.get("type") or "unknown")
        except ValueError:
            kind = ValueKind.UNKNOWN
        return cls(
            kind=kind,
            display_value=d.get("displayValue") or "Unknown",
            percentage=d.get("percentage"),
            amount=d.get("amount"),
            currency_code=d.get("currencyCode"),
            buy_quantity=d.get("buyQuantity"),
            get_quantity=d.get("getQuantity"),
        )


@dataclass
class ExtractedDiscountData:
    id: str
    title: str = UNTITLED
    code: str = ""
    value: DiscountValue = field(default_factory=DiscountValue)
    status: str = "ACTIVE"
    starts_at: str | None = None
    ends_at: str | None = None
    discount_type: str = "automatic"
    summary: str = ""
    typename: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "code": self.code,
            "value": self.value.to_dict(),
            "status": self.status,
            "startsAt": self.starts_at,
            "endsAt": self.ends_at,
            "discountType": self.discount_type,
            "summary": self.summary,
        }

    def to_annotation(self) -> dict:
        """Entry written into the product's active_discounts list."""
        return {"schemaVersion": SCHEMA_VERSION, **self.to_dict()}

    @classmethod
    def from_dict(cls, d: dict) -> "ExtractedDiscountData":
        return cls(
            id=normalize_discount_id(d.get("id")),
            title=d.get("title") or UNTITLED,
            code=d.get("code") or "",
            value=DiscountValue.from_dict(d.get("value")),
            status=(d.get("status") or "ACTIVE").upper(),
            starts_at=d.get("startsAt"),
            ends_at=d.get("endsAt"),
            discount_type=d.get("discountType") or "automatic",
            summary=d.get("summary") or "",
        )


# =========================================================
# Value parsing
# =========================================================

def _fmt_number(x) -> str:
    try:
        f = float(x)
    except (TypeError, ValueError):
        return str(x)
    return str(int(f)) if f.is_integer() else f"{f:g}"


def _percent(raw) -> float | None:
    if raw is None:
        return None
    try:
        p = float(raw)
    except (TypeError, ValueError):
        return None
    # Admin API reports 0.15 for 15%
    return round(p * 100, 4) if 0 <= p <= 1 else p


def _money(block: dict | None) -> tuple[str | None, str | None]:
    block = block or {}
    amount = block.get("amount")
    if isinstance(amount, dict):
        return amount.get("amount"), amount.get("currencyCode")
    return amount, block.get("currencyCode")


def _parse_basic_value(value: dict) -> DiscountValue:
    typename = value.get("__typename")
    if typename == "DiscountPercentage":
        p = _percent(value.get("percentage"))
        return DiscountValue(ValueKind.PERCENTAGE, f"{_fmt_number(p)}%", percentage=p)
    if typename == "DiscountAmount":
        amount, currency = _money(value)
        display = f"{_fmt_number(amount or 0)} {currency or ''}".strip()
        return DiscountValue(ValueKind.FIXED_AMOUNT, display, amount=amount, currency_code=currency)
    return DiscountValue()


def _parse_bxgy_value(gets: dict, buys: dict) -> DiscountValue:
    gets_value = gets.get("value") or {}
    buys_value = buys.get("value") or {}
    dv = DiscountValue(ValueKind.BXGY)

    if buys_value.get("__typename") == "DiscountQuantity":
        dv.buy_quantity = _to_int(buys_value.get("quantity"))
    get_qty = (gets_value.get("quantity") or {}).get("quantity")
    dv.get_quantity = _to_int(get_qty)

    effect = gets_value.get("effect") or {}
    if effect.get("__typename") == "DiscountPercentage":
        dv.percentage = _percent(effect.get("percentage"))
    elif effect.get("__typename") == "DiscountAmount":
        dv.amount, dv.currency_code = _money(effect)

    if dv.percentage is not None and dv.percentage >= 100:
        reward = "free"
    elif dv.percentage is not None:
        reward = f"{_fmt_number(dv.percentage)}% off"
    elif dv.amount is not None:
        reward = f"{_fmt_number(dv.amount)} {dv.currency_code or ''} off".replace("  ", " ")
    else:
        reward = "discounted"
    buy = f"Buy {dv.buy_quantity}" if dv.buy_quantity else "Buy"
    get = f"get {dv.get_quantity}" if dv.get_quantity else "get"
    dv.display_value = f"{buy}, {get} {reward}"
    return dv


def _to_int(x) -> int | None:
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


def _title(raw_title, code, summary, value: DiscountValue) -> str:
    for candidate in (raw_title, code, summary):
        if candidate and str(candidate).strip():
            return str(candidate).strip()
    if value.kind is not ValueKind.UNKNOWN and value.display_value:
        if value.kind is ValueKind.BXGY:
            return value.display_value
        return f"{value.display_value} off"
    return UNTITLED


# =========================================================
# Extraction
# =========================================================

def extract_from_full_details(discount: dict, node_id: str | None = None) -> ExtractedDiscountData:
    discount = discount or {}
    typename = discount.get("__typename") or ""
    edges = ((discount.get("codes") or {}).get("edges")) or []
    code = ((edges[0] or {}).get("node") or {}).get("code", "") if edges else ""

    gets = discount.get("customerGets") or {}
    if typename in BXGY_TYPES:
        value = _parse_bxgy_value(gets, discount.get("customerBuys") or {})
    else:
        value = _parse_basic_value(gets.get("value") or {})

    if code or typename.startswith("DiscountCode"):
        discount_type = "code"
    else:
        discount_type = "automatic"

    return ExtractedDiscountData(
        id=normalize_discount_id(node_id or discount.get("id")),
        title=_title(discount.get("title"), code, discount.get("summary"), value),
        code=code or "",
        value=value,
        status=(discount.get("status") or "ACTIVE").upper(),
        starts_at=discount.get("startsAt"),
        ends_at=discount.get("endsAt"),
        discount_type=discount_type,
        summary=discount.get("summary") or "",
        typename=typename,
    )


def extract_from_webhook_payload(payload: dict) -> ExtractedDiscountData:
    payload = payload or {}
    value = DiscountValue()
    raw_id = payload.get("admin_graphql_api_id") or payload.get("id")
    discount_type = "code" if "DiscountCode" in str(raw_id or "") else "automatic"
    return ExtractedDiscountData(
        id=normalize_discount_id(raw_id),
        title=_title(payload.get("title"), None, None, value),
        code="",
        value=value,
        status=(payload.get("status") or "ACTIVE").upper(),
        starts_at=payload.get("starts_at") or payload.get("created_at"),
        ends_at=payload.get("ends_at") or None,
        discount_type=discount_type,
    )


def extract_from_list_node(node: dict) -> ExtractedDiscountData:
    node = node or {}
    return extract_from_full_details(node.get("discount") or {}, node_id=node.get("id"))
