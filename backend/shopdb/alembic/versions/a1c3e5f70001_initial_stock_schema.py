"""Initial workshop stock schema.

Revision ID: a1c3e5f70001
Revises:
Create Date: 2025-03-03 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "a1c3e5f70001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return bool(insp.has_table(table_name))


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("full_name", sa.String(255), nullable=False),
            sa.Column("role", sa.String(32), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )
        op.create_index("ix_users_email", "users", ["email"])
        op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    if not _table_exists("idempotency_keys"):
        op.create_table(
            "idempotency_keys",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("scope", sa.String(128), nullable=False),
            sa.Column("key", sa.String(128), nullable=False),
            sa.Column("payload_hash", sa.String(64), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        )
        op.create_index("ix_idempotency_keys_scope", "idempotency_keys", ["scope"])

    if not _table_exists("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("entity_type", sa.String(64), nullable=False),
            sa.Column("entity_id", sa.String(64), nullable=False),
            sa.Column("action", sa.String(64), nullable=False),
            sa.Column("summary", sa.String(255), nullable=True),
            sa.Column("actor_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("before", sa.JSON(), nullable=True),
            sa.Column("after", sa.JSON(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
        )
        op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
        op.create_index("ix_audit_events_action", "audit_events", ["action"])
        op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
        op.create_index("ix_audit_events_actor_time", "audit_events", ["actor_user_id", "occurred_at"])

    if not _table_exists("suppliers"):
        op.create_table(
            "suppliers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("phone", sa.String(64), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("name", name="uq_suppliers_name"),
        )

    if not _table_exists("parts"):
        op.create_table(
            "parts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("part_number", sa.String(64), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("opening_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("cost_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("sell_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("reorder_threshold", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("reorder_quantity", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("auto_reorder", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("location", sa.String(64), nullable=True),
            sa.Column("barcode", sa.String(64), nullable=True),
            sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("part_number", name="uq_parts_part_number"),
            sa.UniqueConstraint("barcode", name="uq_parts_barcode"),
            sa.CheckConstraint("quantity >= 0", name="ck_parts_quantity_non_negative"),
            sa.CheckConstraint("opening_quantity >= 0", name="ck_parts_opening_quantity_non_negative"),
        )
        op.create_index("ix_parts_name", "parts", ["name"])
        op.create_index("ix_parts_supplier_id", "parts", ["supplier_id"])

    if not _table_exists("inventory_transactions"):
        op.create_table(
            "inventory_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("transaction_type", sa.String(16), nullable=False),
            sa.Column("quantity_delta", sa.Integer(), nullable=False),
            sa.Column("quantity_after", sa.Integer(), nullable=False),
            sa.Column("reference_type", sa.String(32), nullable=False),
            sa.Column("reference_id", sa.String(64), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("idempotency_key", sa.String(160), nullable=True),
            sa.Column("actor_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("idempotency_key", name="uq_inventory_transactions_idempotency"),
            sa.CheckConstraint("quantity_delta <> 0", name="ck_inventory_transactions_delta_non_zero"),
        )
        op.create_index("ix_inventory_transactions_part_time", "inventory_transactions", ["part_id", "created_at"])
        op.create_index(
            "ix_inventory_transactions_reference",
            "inventory_transactions",
            ["reference_type", "reference_id"],
        )
        op.create_index("ix_inventory_transactions_transaction_type", "inventory_transactions", ["transaction_type"])

    if not _table_exists("work_orders"):
        op.create_table(
            "work_orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("wo_number", sa.String(32), nullable=False),
            sa.Column("customer_name", sa.String(255), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False),
            sa.Column(
                "created_by_user_id",
                sa.String(36),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            *_timestamps(),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint("wo_number", name="uq_work_orders_wo_number"),
        )
        op.create_index("ix_work_orders_status", "work_orders", ["status"])

    if not _table_exists("work_order_part_lines"):
        op.create_table(
            "work_order_part_lines",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "work_order_id",
                sa.Integer(),
                sa.ForeignKey("work_orders.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("work_order_id", "part_id", name="uq_work_order_part_lines_wo_part"),
            sa.CheckConstraint("quantity > 0", name="ck_work_order_part_lines_quantity_positive"),
        )

    if not _table_exists("purchase_orders"):
        op.create_table(
            "purchase_orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("po_number", sa.String(32), nullable=False),
            sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=True),
            sa.Column("status", sa.String(32), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("idempotency_key", sa.String(128), nullable=True),
            sa.Column(
                "created_by_user_id",
                sa.String(36),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "received_by_user_id",
                sa.String(36),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("po_number", name="uq_purchase_orders_po_number"),
            sa.UniqueConstraint("idempotency_key", name="uq_purchase_orders_idempotency"),
        )
        op.create_index("ix_purchase_orders_supplier_status", "purchase_orders", ["supplier_id", "status"])

    if not _table_exists("purchase_order_items"):
        op.create_table(
            "purchase_order_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "purchase_order_id",
                sa.Integer(),
                sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("quantity_ordered", sa.Integer(), nullable=False),
            sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False),
            sa.Column("total_cost", sa.Numeric(12, 2), nullable=False),
            sa.UniqueConstraint("purchase_order_id", "part_id", name="uq_purchase_order_items_po_part"),
            sa.CheckConstraint("quantity_ordered > 0", name="ck_purchase_order_items_quantity_positive"),
        )

    if not _table_exists("parts_requests"):
        op.create_table(
            "parts_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="SET NULL"), nullable=True),
            sa.Column("part_description", sa.String(255), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("source", sa.String(16), nullable=False),
            sa.Column("status", sa.String(16), nullable=False),
            sa.Column(
                "work_order_id",
                sa.Integer(),
                sa.ForeignKey("work_orders.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column(
                "purchase_order_id",
                sa.Integer(),
                sa.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column(
                "requested_by_user_id",
                sa.String(36),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            *_timestamps(),
            sa.CheckConstraint("quantity > 0", name="ck_parts_requests_quantity_positive"),
        )
        op.create_index("ix_parts_requests_part_status", "parts_requests", ["part_id", "status"])

    if not _table_exists("sales"):
        op.create_table(
            "sales",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("sale_number", sa.String(32), nullable=False),
            sa.Column("customer_name", sa.String(255), nullable=True),
            sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
            sa.Column("tax", sa.Numeric(12, 2), nullable=False),
            sa.Column("total", sa.Numeric(12, 2), nullable=False),
            sa.Column("idempotency_key", sa.String(128), nullable=True),
            sa.Column(
                "created_by_user_id",
                sa.String(36),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
            sa.UniqueConstraint("idempotency_key", name="uq_sales_idempotency"),
        )

    if not _table_exists("sale_lines"):
        op.create_table(
            "sale_lines",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("sale_id", sa.Integer(), sa.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
            sa.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        )


def downgrade() -> None:
    for table_name in (
        "sale_lines",
        "sales",
        "parts_requests",
        "purchase_order_items",
        "purchase_orders",
        "work_order_part_lines",
        "work_orders",
        "inventory_transactions",
        "parts",
        "suppliers",
        "audit_events",
        "idempotency_keys",
        "users",
    ):
        if _table_exists(table_name):
            op.drop_table(table_name)
