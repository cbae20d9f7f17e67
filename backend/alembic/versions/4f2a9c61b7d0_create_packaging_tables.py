"""create products, bundles, packaging and audit tables

Revision ID: 4f2a9c61b7d0
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4f2a9c61b7d0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

product_type = sa.Enum("single", "bundle", name="product_type")
audit_status = sa.Enum("success", "failure", name="audit_status")


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("barcode", sa.String(64), nullable=False, unique=True),
        sa.Column("sku_code", sa.String(64)),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", product_type, nullable=False, server_default="single"),
        sa.Column("price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("stock_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        # Le stock ne descend jamais sous zéro (clamp côté moteur + garde-fou SQL)
        sa.CheckConstraint("stock_quantity >= 0", name="ck_product_stock_nonneg"),
    )

    op.create_table(
        "product_components",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("parent_product_id", sa.String(36), nullable=False, index=True),
        sa.Column("child_product_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.UniqueConstraint("parent_product_id", "child_product_id", name="uq_component_parent_child"),
        sa.CheckConstraint("quantity >= 1", name="ck_component_qty_pos"),
    )

    op.create_table(
        "packaging_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("packaging_date", sa.Date, nullable=False),
        sa.Column("waybill_number", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("packaging_date", "waybill_number", name="uq_packaging_date_waybill"),
    )

    # Pas de FK vers packaging_records : les items orphelins restent nettoyables
    op.create_table(
        "packaging_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("packaging_record_id", sa.String(36), nullable=False, index=True),
        sa.Column("product_barcode", sa.String(64), nullable=False),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("user_email", sa.String(255)),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=False),
        sa.Column("resource_id", sa.String(64)),
        sa.Column("action_details", sa.Text),
        sa.Column("status", audit_status, nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("user_agent", sa.String(512)),
        sa.Column("session_id", sa.String(128)),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_resource", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("packaging_items")
    op.drop_table("packaging_records")
    op.drop_table("product_components")
    op.drop_table("products")
    audit_status.drop(op.get_bind(), checkfirst=True)
    product_type.drop(op.get_bind(), checkfirst=True)
