from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_actor
from backend.app.db.models.core_types import DeliveryStatus
from backend.app.schemas.delivery_note import DeliveryComparison, DeliveryNoteRead, DeliveryNoteSummary
from backend.services import deliveries
from backend.services.errors import ValidationError
from backend.services.ledger import LineInput

router = APIRouter(prefix="/delivery-notes")


class DeliveryLineIn(BaseModel):
    article_id: int
    qty_delivered: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class DeliveryCreate(BaseModel):
    flight_id: int
    supplier: str = Field(min_length=1, max_length=128)
    purchase_order_id: int | None = None
    number: str | None = Field(default=None, min_length=1, max_length=64)
    delivered_at: datetime | None = None
    notes: str | None = None
    status: DeliveryStatus = DeliveryStatus.pending
    lines: list[DeliveryLineIn] = Field(default_factory=list)


class DeliveryUpdate(BaseModel):
    supplier: str | None = Field(default=None, min_length=1, max_length=128)
    purchase_order_id: int | None = None
    delivered_at: datetime | None = None
    notes: str | None = None
    lines: list[DeliveryLineIn] | None = None


class DeliveryStatusChange(BaseModel):
    status: DeliveryStatus
    reason: str | None = None


class DeliveryReject(BaseModel):
    reason: str | None = None


def _line_inputs(lines: list[DeliveryLineIn] | None) -> list[LineInput] | None:
    if lines is None:
        return None
    return [LineInput(article_id=ln.article_id, quantity=ln.qty_delivered, unit_price=ln.unit_price) for ln in lines]


def _parse_if_match(if_match: str | None) -> int | None:
    """If-Match: "3" ou 3 -> version attendue du BL."""
    if if_match is None or not if_match.strip():
        return None
    raw = if_match.strip().removeprefix("W/").strip('"')
    if not raw.isdigit():
        raise ValidationError("If-Match must carry the delivery note version")
    return int(raw)


@router.get("", response_model=list[DeliveryNoteSummary])
def list_deliveries(
    status: DeliveryStatus | None = None,
    supplier: str | None = None,
    flight_id: int | None = None,
    purchase_order_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    return deliveries.list_deliveries(
        db,
        status=status,
        supplier=supplier,
        flight_id=flight_id,
        purchase_order_id=purchase_order_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )


@router.get("/{delivery_id}", response_model=DeliveryNoteRead)
def get_delivery(delivery_id: int, db: Session = Depends(get_db)):
    return deliveries.get_delivery(db, delivery_id)


@router.get("/{delivery_id}/comparison", response_model=DeliveryComparison)
def compare_with_order(delivery_id: int, db: Session = Depends(get_db)):
    return deliveries.compare_with_order(db, delivery_id)


@router.post("", response_model=DeliveryNoteRead)
def create_delivery(payload: DeliveryCreate, db: Session = Depends(get_db), actor: str | None = Depends(get_actor)):
    note = deliveries.create_delivery(
        db,
        flight_id=payload.flight_id,
        supplier=payload.supplier,
        purchase_order_id=payload.purchase_order_id,
        number=payload.number,
        delivered_at=payload.delivered_at,
        notes=payload.notes,
        status=payload.status,
        lines=_line_inputs(payload.lines),
        actor=actor,
    )
    db.commit()
    db.refresh(note)
    return note


@router.put("/{delivery_id}", response_model=DeliveryNoteRead)
def update_delivery(
    delivery_id: int,
    payload: DeliveryUpdate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    note = deliveries.update_delivery(
        db,
        delivery_id,
        supplier=payload.supplier,
        # "purchase_order_id": null retire le lien, champ absent = inchangé
        purchase_order_id=(
            payload.purchase_order_id if "purchase_order_id" in payload.model_fields_set else deliveries.UNCHANGED
        ),
        delivered_at=payload.delivered_at,
        notes=payload.notes,
        lines=_line_inputs(payload.lines),
        actor=actor,
    )
    db.commit()
    db.refresh(note)
    return note


@router.post("/{delivery_id}/status", response_model=DeliveryNoteRead)
def change_delivery_status(
    delivery_id: int,
    payload: DeliveryStatusChange,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
    if_match: str | None = Header(default=None, alias="If-Match"),
):
    note = deliveries.change_delivery_status(
        db,
        delivery_id,
        payload.status,
        expected_version=_parse_if_match(if_match),
        reason=payload.reason,
        actor=actor,
    )
    db.commit()
    db.refresh(note)
    return note


@router.post("/{delivery_id}/validate", response_model=DeliveryNoteRead)
def validate_delivery(
    delivery_id: int,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
    if_match: str | None = Header(default=None, alias="If-Match"),
):
    note = deliveries.validate_delivery(db, delivery_id, expected_version=_parse_if_match(if_match), actor=actor)
    db.commit()
    db.refresh(note)
    return note


@router.post("/{delivery_id}/reject", response_model=DeliveryNoteRead)
def reject_delivery(
    delivery_id: int,
    payload: DeliveryReject | None = None,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    note = deliveries.reject_delivery(db, delivery_id, reason=payload.reason if payload else None, actor=actor)
    db.commit()
    db.refresh(note)
    return note


@router.delete("/{delivery_id}")
def delete_delivery(delivery_id: int, db: Session = Depends(get_db), actor: str | None = Depends(get_actor)):
    deliveries.delete_delivery(db, delivery_id, actor=actor)
    db.commit()
    return {"ok": True}
