"""
Registre des BCP (bons de commande prévisionnels).

Aucun commit ici: l'appelant (endpoint, script) décide de la transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderLine, DeliveryNote
from backend.app.db.models.core_types import OrderStatus, DeliveryStatus
from backend.services import audit
from backend.services.errors import Conflict, InvalidState, NotFound
from backend.services.ledger import (
    LineInput,
    check_number,
    get_flight,
    next_number,
    require_text,
    sync_lines,
    validate_lines,
)
from backend.services.transitions import ORDER_TRANSITIONS, EDITABLE_ORDER_STATUSES, ensure_transition

logger = logging.getLogger(__name__)

ORDER_PREFIX = "BCP"


def get_order(db: Session, order_id: int, *, for_update: bool = False) -> PurchaseOrder:
    if for_update:
        order = (
            db.execute(
                select(PurchaseOrder)
                .where(PurchaseOrder.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one_or_none()
        )
    else:
        order = db.get(PurchaseOrder, order_id)
    if not order:
        raise NotFound(f"Purchase order {order_id} not found")
    return order


def _ensure_not_reconciled(db: Session, order: PurchaseOrder) -> None:
    """Un BCP déjà rapproché (BL lié VALIDATED) ne bouge plus: ses écarts s'appuient sur ses lignes."""
    validated = db.execute(
        select(DeliveryNote.number)
        .where(DeliveryNote.purchase_order_id == order.id, DeliveryNote.status == DeliveryStatus.validated)
        .limit(1)
    ).scalar_one_or_none()
    if validated is not None:
        raise InvalidState(f"Purchase order {order.number} was reconciled by delivery note {validated}")


def list_orders(
    db: Session,
    *,
    status: OrderStatus | None = None,
    supplier: str | None = None,
    flight_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
) -> Sequence[PurchaseOrder]:
    stmt = select(PurchaseOrder).order_by(PurchaseOrder.id.desc())

    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if supplier:
        stmt = stmt.where(PurchaseOrder.supplier == supplier)
    if flight_id is not None:
        stmt = stmt.where(PurchaseOrder.flight_id == flight_id)
    if date_from is not None:
        stmt = stmt.where(PurchaseOrder.ordered_at >= date_from)
    if date_to is not None:
        stmt = stmt.where(PurchaseOrder.ordered_at <= date_to)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(PurchaseOrder.number.ilike(pattern), PurchaseOrder.supplier.ilike(pattern)))

    return db.execute(stmt).scalars().all()


def create_order(
    db: Session,
    *,
    flight_id: int,
    supplier: str,
    lines: Sequence[LineInput],
    number: str | None = None,
    ordered_at: datetime | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> PurchaseOrder:
    supplier = require_text(supplier, "supplier")
    flight = get_flight(db, flight_id)
    cleaned = validate_lines(db, lines)

    if number is not None:
        number = check_number(number, ORDER_PREFIX, flight)
        exists = db.execute(select(PurchaseOrder.id).where(PurchaseOrder.number == number)).scalar_one_or_none()
        if exists:
            raise Conflict(f"Purchase order number {number} already exists")
    else:
        number = next_number(db, PurchaseOrder, ORDER_PREFIX, flight, ordered_at)

    order = PurchaseOrder(
        number=number,
        flight_id=flight.id,
        supplier=supplier,
        status=OrderStatus.draft,
        notes=notes,
    )
    if ordered_at is not None:
        order.ordered_at = ordered_at
    order.total_amount = sync_lines(order.lines, cleaned, PurchaseOrderLine, "qty_ordered")
    db.add(order)

    # Deux créations simultanées peuvent générer le même numéro
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(f"Purchase order number {number} already exists") from exc

    audit.log_action(db, action="create", entity_type="purchase_order", entity_id=order.id, actor=actor,
                     meta={"number": order.number, "total_amount": order.total_amount})
    logger.info("BCP %s created (%d lines, total=%s)", order.number, len(order.lines), order.total_amount)
    return order


def update_order(
    db: Session,
    order_id: int,
    *,
    supplier: str | None = None,
    notes: str | None = None,
    ordered_at: datetime | None = None,
    flight_id: int | None = None,
    lines: Sequence[LineInput] | None = None,
    actor: str | None = None,
) -> PurchaseOrder:
    order = get_order(db, order_id, for_update=True)
    if order.status not in EDITABLE_ORDER_STATUSES:
        raise InvalidState(f"Purchase order {order.number} is {order.status.value}; only DRAFT orders can be edited")
    _ensure_not_reconciled(db, order)

    if supplier is not None:
        order.supplier = require_text(supplier, "supplier")
    if notes is not None:
        order.notes = notes
    if ordered_at is not None:
        order.ordered_at = ordered_at
    if flight_id is not None:
        order.flight_id = get_flight(db, flight_id).id
    if lines is not None:
        cleaned = validate_lines(db, lines)
        order.total_amount = sync_lines(order.lines, cleaned, PurchaseOrderLine, "qty_ordered")

    db.flush()
    audit.log_action(db, action="update", entity_type="purchase_order", entity_id=order.id, actor=actor,
                     meta={"total_amount": order.total_amount})
    return order


def change_order_status(
    db: Session,
    order_id: int,
    new_status: OrderStatus,
    *,
    actor: str | None = None,
) -> PurchaseOrder:
    order = get_order(db, order_id, for_update=True)
    previous = order.status
    ensure_transition(ORDER_TRANSITIONS, previous, new_status, entity=f"Purchase order {order.number}")
    if new_status == OrderStatus.cancelled:
        _ensure_not_reconciled(db, order)

    order.status = new_status
    db.flush()

    audit.log_action(db, action="status", entity_type="purchase_order", entity_id=order.id, actor=actor,
                     meta={"from": previous.value, "to": new_status.value})
    logger.info("BCP %s: %s -> %s", order.number, previous.value, new_status.value)
    return order


def delete_order(db: Session, order_id: int, *, actor: str | None = None) -> None:
    order = get_order(db, order_id, for_update=True)
    if order.status not in EDITABLE_ORDER_STATUSES:
        raise InvalidState(f"Purchase order {order.number} is {order.status.value}; only DRAFT orders can be deleted")

    bound = db.execute(
        select(DeliveryNote.id).where(DeliveryNote.purchase_order_id == order.id).limit(1)
    ).scalar_one_or_none()
    if bound is not None:
        raise InvalidState(f"Purchase order {order.number} is referenced by a delivery note")

    audit.log_action(db, action="delete", entity_type="purchase_order", entity_id=order.id, actor=actor,
                     meta={"number": order.number})
    db.delete(order)
    db.flush()
    logger.info("BCP %s deleted", order.number)
