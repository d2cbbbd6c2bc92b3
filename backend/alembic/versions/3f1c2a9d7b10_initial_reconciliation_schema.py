"""initial reconciliation schema (articles, flights, BCP, BL, écarts, audit)

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy stocke le NOM des membres d'enum (pas la valeur)
ARTICLE_TYPE = sa.Enum("meal", "beverage", "consumable", "semi_consumable", "equipment", name="article_type")
ORDER_STATUS = sa.Enum("draft", "sent", "confirmed", "cancelled", name="order_status")
DELIVERY_STATUS = sa.Enum("pending", "received", "validated", "rejected", name="delivery_status")
DISCREPANCY_TYPE = sa.Enum(
    "quantity_higher",
    "quantity_lower",
    "article_missing",
    "article_extra",
    "price_different",
    "quality_non_conforming",
    name="discrepancy_type",
)
DISCREPANCY_STATUS = sa.Enum("pending", "in_progress", "resolved", "accepted", "rejected", name="discrepancy_status")

MONEY = sa.Numeric(14, 3)
TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "articles",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("type", ARTICLE_TYPE, nullable=False),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("supplier", sa.String(128)),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("unit_price >= 0", name="ck_article_unit_price_nonneg"),
    )

    op.create_table(
        "flights",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("flight_number", sa.String(16), nullable=False),
        sa.Column("flight_date", sa.Date(), nullable=False),
        sa.Column("origin", sa.String(64)),
        sa.Column("destination", sa.String(64)),
        sa.Column("aircraft", sa.String(16)),
        sa.Column("zone", sa.String(32)),
        sa.Column("estimated_passengers", sa.Integer()),
        sa.UniqueConstraint("flight_number", "flight_date", name="uq_flight_number_date"),
        sa.CheckConstraint("estimated_passengers IS NULL OR estimated_passengers > 0", name="ck_flight_pax_pos"),
    )

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("number", sa.String(64), nullable=False, unique=True),
        sa.Column("flight_id", sa.BigInteger(), sa.ForeignKey("flights.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("ordered_at", TS, nullable=False),
        sa.Column("supplier", sa.String(128), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
    )
    op.create_index("ix_purchase_orders_flight_id", "purchase_orders", ["flight_id"])

    op.create_table(
        "purchase_order_lines",
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("article_id", sa.BigInteger(), sa.ForeignKey("articles.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("qty_ordered", sa.Integer(), nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("line_amount", MONEY, nullable=False),
        sa.CheckConstraint("qty_ordered > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )

    op.create_table(
        "delivery_notes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("number", sa.String(64), nullable=False, unique=True),
        sa.Column("flight_id", sa.BigInteger(), sa.ForeignKey("flights.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("purchase_order_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT")),
        sa.Column("delivered_at", TS, nullable=False),
        sa.Column("supplier", sa.String(128), nullable=False),
        sa.Column("status", DELIVERY_STATUS, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("validated_at", TS),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_delivery_notes_flight_id", "delivery_notes", ["flight_id"])
    op.create_index("ix_delivery_notes_purchase_order_id", "delivery_notes", ["purchase_order_id"])

    op.create_table(
        "delivery_note_lines",
        sa.Column(
            "delivery_note_id",
            sa.BigInteger(),
            sa.ForeignKey("delivery_notes.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("article_id", sa.BigInteger(), sa.ForeignKey("articles.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("qty_delivered", sa.Integer(), nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("line_amount", MONEY, nullable=False),
        sa.CheckConstraint("qty_delivered > 0", name="ck_bl_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_bl_line_unit_price_nonneg"),
    )

    op.create_table(
        "discrepancies",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "delivery_note_id",
            sa.BigInteger(),
            sa.ForeignKey("delivery_notes.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("purchase_order_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="SET NULL")),
        sa.Column("article_id", sa.BigInteger(), sa.ForeignKey("articles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("type", DISCREPANCY_TYPE, nullable=False),
        sa.Column("qty_ordered", sa.Integer(), nullable=False),
        sa.Column("qty_delivered", sa.Integer(), nullable=False),
        sa.Column("qty_delta", sa.Integer(), nullable=False),
        sa.Column("ordered_unit_price", MONEY),
        sa.Column("delivered_unit_price", MONEY),
        sa.Column("amount_delta", MONEY, nullable=False),
        sa.Column("status", DISCREPANCY_STATUS, nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("corrective_action", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("closed_at", TS),
        sa.CheckConstraint("qty_delta = qty_delivered - qty_ordered", name="ck_discrepancy_qty_delta"),
        sa.UniqueConstraint("delivery_note_id", "article_id", name="uq_discrepancy_note_article"),
    )
    op.create_index("ix_discrepancies_delivery_note_id", "discrepancies", ["delivery_note_id"])
    op.create_index("ix_discrepancies_status_created", "discrepancies", ["status", "created_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("actor", sa.String(128)),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("meta", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_discrepancies_status_created", table_name="discrepancies")
    op.drop_index("ix_discrepancies_delivery_note_id", table_name="discrepancies")
    op.drop_table("discrepancies")
    op.drop_table("delivery_note_lines")
    op.drop_index("ix_delivery_notes_purchase_order_id", table_name="delivery_notes")
    op.drop_index("ix_delivery_notes_flight_id", table_name="delivery_notes")
    op.drop_table("delivery_notes")
    op.drop_table("purchase_order_lines")
    op.drop_index("ix_purchase_orders_flight_id", table_name="purchase_orders")
    op.drop_table("purchase_orders")
    op.drop_table("flights")
    op.drop_table("articles")

    bind = op.get_bind()
    for enum_type in (DISCREPANCY_STATUS, DISCREPANCY_TYPE, DELIVERY_STATUS, ORDER_STATUS, ARTICLE_TYPE):
        enum_type.drop(bind, checkfirst=True)
