from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base
from backend.app.db.models.core_types import (
    PRODUCTS,
    PRODUCT_COMPONENTS,
    PACKAGING_RECORDS,
    PACKAGING_ITEMS,
    AUDIT_LOGS,
    ProductType,
    AuditStatus,
)


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- CATALOGUE ----------
class Product(Base):
    __tablename__ = PRODUCTS
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    barcode: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    sku_code: Mapped[str | None] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[ProductType] = mapped_column(
        Enum(ProductType, name="product_type"),
        default=ProductType.single,
        nullable=False,
    )
    price: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), default=0, nullable=False)
    # Significatif uniquement pour les produits "single"
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (CheckConstraint("stock_quantity >= 0", name="ck_product_stock_nonneg"),)


class ProductComponent(Base):
    """Recette d'un bundle : parent (bundle) -> enfant, à une quantité fixe."""

    __tablename__ = PRODUCT_COMPONENTS
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    parent_product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    child_product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        UniqueConstraint("parent_product_id", "child_product_id", name="uq_component_parent_child"),
        CheckConstraint("quantity >= 1", name="ck_component_qty_pos"),
    )


# ---------- PACKAGING ----------
class PackagingRecord(Base):
    __tablename__ = PACKAGING_RECORDS
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    packaging_date: Mapped[date] = mapped_column(Date, nullable=False)
    waybill_number: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("packaging_date", "waybill_number", name="uq_packaging_date_waybill"),
    )


class PackagingItem(Base):
    # Pas de FK : les items orphelins doivent rester nettoyables après suppression du record
    __tablename__ = PACKAGING_ITEMS
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    packaging_record_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    product_barcode: Mapped[str] = mapped_column(String(64), nullable=False)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- AUDIT ----------
class AuditLog(Base):
    __tablename__ = AUDIT_LOGS
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_email: Mapped[str | None] = mapped_column(String(255))
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64))
    action_details: Mapped[str | None] = mapped_column(Text)
    status: Mapped[AuditStatus] = mapped_column(Enum(AuditStatus, name="audit_status"), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    user_agent: Mapped[str | None] = mapped_column(String(512))
    session_id: Mapped[str | None] = mapped_column(String(128))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_resource", "resource_type", "resource_id"),)
