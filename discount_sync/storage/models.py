# models.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Text,
    UniqueConstraint, Index, ForeignKey
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# ========== Tenant credentials (written by the OAuth flow) ==========

class ShopSession(Base):
    __tablename__ = "shop_sessions"
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    shop: Mapped[str] = mapped_column(String(255), index=True)
    access_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False)
    expires: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# ========== Product mirror (owned by product sync) ==========

class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), index=True)
    # bare numeric Shopify id
    shopify_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(512), default="")
    handle: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    # JSON list mirroring the product's active_discounts metafield
    active_discounts: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    links: Mapped[List["ProductDiscountLink"]] = relationship(
        back_populates="product", cascade="all,delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("shop", "shopify_id", name="uq_products_shop_shopify_id"),
    )


# ========== Discount rules ==========

class DiscountRule(Base):
    __tablename__ = "discount_rules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), index=True)
    # normalized bare id, never a gid
    discount_id: Mapped[str] = mapped_column(String(128), index=True)
    discount_type: Mapped[str] = mapped_column(String(16), default="automatic")  # "code" | "automatic"
    title: Mapped[str] = mapped_column(String(512), default="")
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE", index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    # serialized ExtractedDiscountData
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    value_display: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    value_kind: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    products_count: Mapped[int] = mapped_column(Integer, default=0)
    last_ran: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    metafield_namespace: Mapped[str] = mapped_column(String(64), default="discount_manager")
    metafield_key: Mapped[str] = mapped_column(String(64), default="active_discounts")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    links: Mapped[List["ProductDiscountLink"]] = relationship(
        back_populates="discount", cascade="all,delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("shop", "discount_id", name="uq_discount_rules_shop_discount_id"),
    )


# ========== Product <-> discount links ==========

class ProductDiscountLink(Base):
    __tablename__ = "product_discounts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    discount_id: Mapped[int] = mapped_column(ForeignKey("discount_rules.id", ondelete="CASCADE"), index=True)
    shop: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    product: Mapped["Product"] = relationship(back_populates="links", lazy="joined")
    discount: Mapped["DiscountRule"] = relationship(back_populates="links", lazy="joined")

    __table_args__ = (
        UniqueConstraint("product_id", "discount_id", name="uq_product_discounts_pair"),
        Index("ix_product_discounts_shop_active", "shop", "is_active"),
    )


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes; everything we store is UTC
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
