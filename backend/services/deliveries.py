"""
Registre des BL (bons de livraison).

La validation d'un BL est one-shot: statut VALIDATED + génération des écarts
dans la même transaction. Deux validations concurrentes du même BL:
    - verrou ligne FOR UPDATE NOWAIT (PostgreSQL) -> Conflict immédiat
    - compteur de version (UPDATE ... WHERE version = ?) -> Conflict
Une validation rejouée après commit -> InvalidState.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.app.db.models.models_v1 import DeliveryNote, DeliveryNoteLine, PurchaseOrder
from backend.app.db.models.core_types import DeliveryStatus
from backend.services import audit
from backend.services.errors import Conflict, InvalidState, NotFound, ValidationError
from backend.services.ledger import (
    LineInput,
    check_number,
    get_flight,
    next_number,
    quantize,
    require_text,
    sync_lines,
    validate_lines,
)
from backend.services.reconciliation import reconcile_delivery
from backend.services.transitions import (
    DELIVERY_TRANSITIONS,
    EDITABLE_DELIVERY_STATUSES,
    DELETABLE_DELIVERY_STATUSES,
    ensure_transition,
)

logger = logging.getLogger(__name__)

DELIVERY_PREFIX = "BL"

# PostgreSQL lock_not_available
LOCK_NOT_AVAILABLE = "55P03"

# update_delivery: champ non fourni
UNCHANGED = object()


def _is_lock_contention(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


def get_delivery(db: Session, delivery_id: int) -> DeliveryNote:
    note = db.get(DeliveryNote, delivery_id)
    if not note:
        raise NotFound(f"Delivery note {delivery_id} not found")
    return note


def _lock_delivery(db: Session, delivery_id: int) -> DeliveryNote:
    try:
        note = (
            db.execute(
                select(DeliveryNote)
                .where(DeliveryNote.id == delivery_id)
                .with_for_update(nowait=True)
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one_or_none()
        )
    except OperationalError as exc:
        if not _is_lock_contention(exc):
            raise
        db.rollback()
        raise Conflict(f"Delivery note {delivery_id} is being processed by another request") from exc

    if not note:
        raise NotFound(f"Delivery note {delivery_id} not found")
    return note


def _get_order_for_binding(db: Session, purchase_order_id: int | None, flight_id: int) -> PurchaseOrder | None:
    if purchase_order_id is None:
        return None
    order = db.get(PurchaseOrder, purchase_order_id)
    if not order:
        raise NotFound(f"Purchase order {purchase_order_id} not found")
    if order.flight_id != flight_id:
        raise ValidationError(
            f"Purchase order {order.number} belongs to flight {order.flight_id}, not {flight_id}"
        )
    return order


def list_deliveries(
    db: Session,
    *,
    status: DeliveryStatus | None = None,
    supplier: str | None = None,
    flight_id: int | None = None,
    purchase_order_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
) -> Sequence[DeliveryNote]:
    stmt = select(DeliveryNote).order_by(DeliveryNote.id.desc())

    if status is not None:
        stmt = stmt.where(DeliveryNote.status == status)
    if supplier:
        stmt = stmt.where(DeliveryNote.supplier == supplier)
    if flight_id is not None:
        stmt = stmt.where(DeliveryNote.flight_id == flight_id)
    if purchase_order_id is not None:
        stmt = stmt.where(DeliveryNote.purchase_order_id == purchase_order_id)
    if date_from is not None:
        stmt = stmt.where(DeliveryNote.delivered_at >= date_from)
    if date_to is not None:
        stmt = stmt.where(DeliveryNote.delivered_at <= date_to)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(DeliveryNote.number.ilike(pattern), DeliveryNote.supplier.ilike(pattern)))

    return db.execute(stmt).scalars().all()


def create_delivery(
    db: Session,
    *,
    flight_id: int,
    supplier: str,
    lines: Sequence[LineInput],
    purchase_order_id: int | None = None,
    number: str | None = None,
    delivered_at: datetime | None = None,
    notes: str | None = None,
    status: DeliveryStatus = DeliveryStatus.pending,
    actor: str | None = None,
) -> DeliveryNote:
    if status not in (DeliveryStatus.pending, DeliveryStatus.received):
        raise ValidationError("A delivery note is created PENDING or RECEIVED")

    supplier = require_text(supplier, "supplier")
    flight = get_flight(db, flight_id)
    order = _get_order_for_binding(db, purchase_order_id, flight.id)
    cleaned = validate_lines(db, lines)

    if number is not None:
        number = check_number(number, DELIVERY_PREFIX, flight)
        exists = db.execute(select(DeliveryNote.id).where(DeliveryNote.number == number)).scalar_one_or_none()
        if exists:
            raise Conflict(f"Delivery note number {number} already exists")
    else:
        number = next_number(db, DeliveryNote, DELIVERY_PREFIX, flight, delivered_at)

    note = DeliveryNote(
        number=number,
        flight_id=flight.id,
        purchase_order_id=order.id if order else None,
        supplier=supplier,
        status=status,
        notes=notes,
    )
    if delivered_at is not None:
        note.delivered_at = delivered_at
    note.total_amount = sync_lines(note.lines, cleaned, DeliveryNoteLine, "qty_delivered")
    db.add(note)

    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(f"Delivery note number {number} already exists") from exc

    audit.log_action(db, action="create", entity_type="delivery_note", entity_id=note.id, actor=actor,
                     meta={"number": note.number, "purchase_order_id": note.purchase_order_id})
    logger.info("BL %s created (%d lines, total=%s)", note.number, len(note.lines), note.total_amount)
    return note


def update_delivery(
    db: Session,
    delivery_id: int,
    *,
    supplier: str | None = None,
    notes: str | None = None,
    delivered_at: datetime | None = None,
    purchase_order_id: int | None | object = UNCHANGED,
    lines: Sequence[LineInput] | None = None,
    actor: str | None = None,
) -> DeliveryNote:
    """purchase_order_id: UNCHANGED (défaut) garde le lien, None le retire."""
    note = _lock_delivery(db, delivery_id)
    if note.status not in EDITABLE_DELIVERY_STATUSES:
        raise InvalidState(f"Delivery note {note.number} is {note.status.value} and can no longer be edited")

    if supplier is not None:
        note.supplier = require_text(supplier, "supplier")
    if notes is not None:
        note.notes = notes
    if delivered_at is not None:
        note.delivered_at = delivered_at
    if purchase_order_id is not UNCHANGED:
        note.purchase_order = _get_order_for_binding(db, purchase_order_id, note.flight_id)
    if lines is not None:
        cleaned = validate_lines(db, lines)
        note.total_amount = sync_lines(note.lines, cleaned, DeliveryNoteLine, "qty_delivered")

    try:
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        raise Conflict(f"Delivery note {delivery_id} was modified concurrently") from exc

    audit.log_action(db, action="update", entity_type="delivery_note", entity_id=note.id, actor=actor,
                     meta={"total_amount": note.total_amount})
    return note


def validate_delivery(
    db: Session,
    delivery_id: int,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
    actor: str | None = None,
) -> DeliveryNote:
    """
    PENDING/RECEIVED -> VALIDATED + rapprochement avec le BCP lié.

    Tout-ou-rien: en cas d'erreur le flush n'a rien laissé en session
    (rollback), le BL reste dans son statut d'origine.
    """
    note = _lock_delivery(db, delivery_id)

    # un BL déjà validé reste InvalidState, même avec une version périmée
    ensure_transition(DELIVERY_TRANSITIONS, note.status, DeliveryStatus.validated, entity=f"Delivery note {note.number}")
    if expected_version is not None and note.version != expected_version:
        raise Conflict(
            f"Delivery note {note.number} is at version {note.version}, expected {expected_version}"
        )

    now = now or datetime.now(timezone.utc)
    previous = note.status
    note.status = DeliveryStatus.validated
    note.validated_at = now

    try:
        discrepancies = reconcile_delivery(db, note, now=now)
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        raise Conflict(f"Delivery note {delivery_id} was validated concurrently") from exc

    audit.log_action(db, action="validate", entity_type="delivery_note", entity_id=note.id, actor=actor,
                     meta={"from": previous.value, "discrepancies": len(discrepancies)})
    logger.info("BL %s validated, %d discrepancies", note.number, len(discrepancies))
    return note


def reject_delivery(db: Session, delivery_id: int, *, reason: str | None = None, actor: str | None = None) -> DeliveryNote:
    note = _lock_delivery(db, delivery_id)
    previous = note.status
    ensure_transition(DELIVERY_TRANSITIONS, previous, DeliveryStatus.rejected, entity=f"Delivery note {note.number}")

    note.status = DeliveryStatus.rejected
    if reason:
        note.notes = f"{note.notes}\n{reason}" if note.notes else reason

    try:
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        raise Conflict(f"Delivery note {delivery_id} was modified concurrently") from exc

    audit.log_action(db, action="reject", entity_type="delivery_note", entity_id=note.id, actor=actor,
                     meta={"from": previous.value, "reason": reason})
    logger.info("BL %s rejected", note.number)
    return note


def change_delivery_status(
    db: Session,
    delivery_id: int,
    new_status: DeliveryStatus,
    *,
    expected_version: int | None = None,
    reason: str | None = None,
    actor: str | None = None,
) -> DeliveryNote:
    if new_status == DeliveryStatus.validated:
        return validate_delivery(db, delivery_id, expected_version=expected_version, actor=actor)
    if new_status == DeliveryStatus.rejected:
        return reject_delivery(db, delivery_id, reason=reason, actor=actor)

    note = _lock_delivery(db, delivery_id)
    previous = note.status
    ensure_transition(DELIVERY_TRANSITIONS, previous, new_status, entity=f"Delivery note {note.number}")
    note.status = new_status

    try:
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        raise Conflict(f"Delivery note {delivery_id} was modified concurrently") from exc

    audit.log_action(db, action="status", entity_type="delivery_note", entity_id=note.id, actor=actor,
                     meta={"from": previous.value, "to": new_status.value})
    logger.info("BL %s: %s -> %s", note.number, previous.value, new_status.value)
    return note


def delete_delivery(db: Session, delivery_id: int, *, actor: str | None = None) -> None:
    note = _lock_delivery(db, delivery_id)
    if note.status not in DELETABLE_DELIVERY_STATUSES:
        raise InvalidState(f"Delivery note {note.number} is {note.status.value} and cannot be deleted")

    audit.log_action(db, action="delete", entity_type="delivery_note", entity_id=note.id, actor=actor,
                     meta={"number": note.number})
    db.delete(note)
    db.flush()
    logger.info("BL %s deleted", note.number)


def compare_with_order(db: Session, delivery_id: int) -> dict:
    """Comparaison des totaux BL / BCP (en-tête uniquement, pas ligne à ligne)."""
    note = get_delivery(db, delivery_id)
    order = note.purchase_order
    delivery_total = quantize(note.total_amount)
    if order is None:
        return {
            "delivery_note_id": note.id,
            "purchase_order_id": None,
            "delivery_total": delivery_total,
            "order_total": None,
            "difference": None,
        }

    order_total = quantize(order.total_amount)
    return {
        "delivery_note_id": note.id,
        "purchase_order_id": order.id,
        "delivery_total": delivery_total,
        "order_total": order_total,
        "difference": quantize(delivery_total - order_total),
    }
