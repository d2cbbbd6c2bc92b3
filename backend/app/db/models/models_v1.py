from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, BigIntPK, Money
from backend.app.db.models.core_types import (
    ArticleType,
    OrderStatus,
    DeliveryStatus,
    DiscrepancyType,
    DiscrepancyStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA ----------
class Article(Base):
    __tablename__ = "articles"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[ArticleType] = mapped_column(Enum(ArticleType, name="article_type"), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="UNIT", nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    supplier: Mapped[str | None] = mapped_column(String(128))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (CheckConstraint("unit_price >= 0", name="ck_article_unit_price_nonneg"),)


class Flight(Base):
    __tablename__ = "flights"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    flight_number: Mapped[str] = mapped_column(String(16), nullable=False)
    flight_date: Mapped[date] = mapped_column(Date, nullable=False)
    origin: Mapped[str | None] = mapped_column(String(64))
    destination: Mapped[str | None] = mapped_column(String(64))
    aircraft: Mapped[str | None] = mapped_column(String(16))
    zone: Mapped[str | None] = mapped_column(String(32))
    estimated_passengers: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint("flight_number", "flight_date", name="uq_flight_number_date"),
        CheckConstraint("estimated_passengers IS NULL OR estimated_passengers > 0", name="ck_flight_pax_pos"),
    )


# ---------- BCP (bon de commande prévisionnel) ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    flight_id: Mapped[int] = mapped_column(ForeignKey("flights.id", ondelete="RESTRICT"), nullable=False, index=True)
    ordered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    supplier: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.draft,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    total_amount: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    flight: Mapped[Flight] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_no",
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    order_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id", ondelete="CASCADE"), primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="RESTRICT"), primary_key=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    order: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    article: Mapped[Article] = relationship()

    __table_args__ = (
        CheckConstraint("qty_ordered > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )


# ---------- BL (bon de livraison) ----------
class DeliveryNote(Base):
    __tablename__ = "delivery_notes"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    flight_id: Mapped[int] = mapped_column(ForeignKey("flights.id", ondelete="RESTRICT"), nullable=False, index=True)
    purchase_order_id: Mapped[int | None] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        index=True,
    )
    delivered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    supplier: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_status"),
        default=DeliveryStatus.pending,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    total_amount: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Verrou optimiste: deux validations concurrentes -> StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    flight: Mapped[Flight] = relationship()
    purchase_order: Mapped[PurchaseOrder | None] = relationship()
    lines: Mapped[list["DeliveryNoteLine"]] = relationship(
        back_populates="delivery_note",
        cascade="all, delete-orphan",
        order_by="DeliveryNoteLine.line_no",
    )
    discrepancies: Mapped[list["Discrepancy"]] = relationship(
        back_populates="delivery_note",
        cascade="all, delete-orphan",
        order_by="Discrepancy.article_id",
    )

    __mapper_args__ = {"version_id_col": version}


class DeliveryNoteLine(Base):
    __tablename__ = "delivery_note_lines"
    delivery_note_id: Mapped[int] = mapped_column(
        ForeignKey("delivery_notes.id", ondelete="CASCADE"),
        primary_key=True,
    )
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="RESTRICT"), primary_key=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_delivered: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    delivery_note: Mapped[DeliveryNote] = relationship(back_populates="lines")
    article: Mapped[Article] = relationship()

    __table_args__ = (
        CheckConstraint("qty_delivered > 0", name="ck_bl_line_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_bl_line_unit_price_nonneg"),
    )


# ---------- ÉCARTS ----------
class Discrepancy(Base):
    __tablename__ = "discrepancies"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    delivery_note_id: Mapped[int] = mapped_column(
        ForeignKey("delivery_notes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    purchase_order_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_orders.id", ondelete="SET NULL"))
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="RESTRICT"), nullable=False)

    type: Mapped[DiscrepancyType] = mapped_column(Enum(DiscrepancyType, name="discrepancy_type"), nullable=False)
    qty_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_delivered: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    ordered_unit_price: Mapped[Decimal | None] = mapped_column(Money)
    delivered_unit_price: Mapped[Decimal | None] = mapped_column(Money)
    amount_delta: Mapped[Decimal] = mapped_column(Money, nullable=False)

    status: Mapped[DiscrepancyStatus] = mapped_column(
        Enum(DiscrepancyStatus, name="discrepancy_status"),
        default=DiscrepancyStatus.pending,
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text)
    corrective_action: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    delivery_note: Mapped[DeliveryNote] = relationship(back_populates="discrepancies")
    article: Mapped[Article] = relationship()

    __table_args__ = (
        CheckConstraint("qty_delta = qty_delivered - qty_ordered", name="ck_discrepancy_qty_delta"),
        UniqueConstraint("delivery_note_id", "article_id", name="uq_discrepancy_note_article"),
        Index("ix_discrepancies_status_created", "status", "created_at"),
    )


# ---------- AUDIT ----------
class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor: Mapped[str | None] = mapped_column(String(128))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    meta: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)
