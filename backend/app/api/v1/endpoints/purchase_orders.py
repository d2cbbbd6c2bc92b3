from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_actor
from backend.app.db.models.core_types import OrderStatus
from backend.app.schemas.purchase_order import PurchaseOrderRead, PurchaseOrderSummary
from backend.services import orders
from backend.services.ledger import LineInput

router = APIRouter(prefix="/purchase-orders")


class OrderLineIn(BaseModel):
    article_id: int
    qty_ordered: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class OrderCreate(BaseModel):
    flight_id: int
    supplier: str = Field(min_length=1, max_length=128)
    number: str | None = Field(default=None, min_length=1, max_length=64)
    ordered_at: datetime | None = None
    notes: str | None = None
    lines: list[OrderLineIn] = Field(default_factory=list)


class OrderUpdate(BaseModel):
    flight_id: int | None = None
    supplier: str | None = Field(default=None, min_length=1, max_length=128)
    ordered_at: datetime | None = None
    notes: str | None = None
    lines: list[OrderLineIn] | None = None


class OrderStatusChange(BaseModel):
    status: OrderStatus


def _line_inputs(lines: list[OrderLineIn] | None) -> list[LineInput] | None:
    if lines is None:
        return None
    return [LineInput(article_id=ln.article_id, quantity=ln.qty_ordered, unit_price=ln.unit_price) for ln in lines]


@router.get("", response_model=list[PurchaseOrderSummary])
def list_orders(
    status: OrderStatus | None = None,
    supplier: str | None = None,
    flight_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    return orders.list_orders(
        db,
        status=status,
        supplier=supplier,
        flight_id=flight_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )


@router.get("/{order_id}", response_model=PurchaseOrderRead)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return orders.get_order(db, order_id)


@router.post("", response_model=PurchaseOrderRead)
def create_order(payload: OrderCreate, db: Session = Depends(get_db), actor: str | None = Depends(get_actor)):
    order = orders.create_order(
        db,
        flight_id=payload.flight_id,
        supplier=payload.supplier,
        number=payload.number,
        ordered_at=payload.ordered_at,
        notes=payload.notes,
        lines=_line_inputs(payload.lines),
        actor=actor,
    )
    db.commit()
    db.refresh(order)
    return order


@router.put("/{order_id}", response_model=PurchaseOrderRead)
def update_order(
    order_id: int,
    payload: OrderUpdate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    order = orders.update_order(
        db,
        order_id,
        flight_id=payload.flight_id,
        supplier=payload.supplier,
        ordered_at=payload.ordered_at,
        notes=payload.notes,
        lines=_line_inputs(payload.lines),
        actor=actor,
    )
    db.commit()
    db.refresh(order)
    return order


@router.post("/{order_id}/status", response_model=PurchaseOrderRead)
def change_order_status(
    order_id: int,
    payload: OrderStatusChange,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    order = orders.change_order_status(db, order_id, payload.status, actor=actor)
    db.commit()
    db.refresh(order)
    return order


@router.delete("/{order_id}")
def delete_order(order_id: int, db: Session = Depends(get_db), actor: str | None = Depends(get_actor)):
    orders.delete_order(db, order_id, actor=actor)
    db.commit()
    return {"ok": True}
