from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import DeliveryStatus


class DeliveryNoteLineRead(BaseModel):
    article_id: int
    line_no: int
    qty_delivered: int
    unit_price: Decimal
    line_amount: Decimal

    class Config:
        from_attributes = True


class DeliveryNoteSummary(BaseModel):
    id: int
    number: str
    flight_id: int
    purchase_order_id: int | None = None
    supplier: str
    status: DeliveryStatus
    delivered_at: datetime
    total_amount: Decimal  # READ ONLY: somme des lignes
    version: int

    class Config:
        from_attributes = True


class DeliveryNoteRead(DeliveryNoteSummary):
    notes: str | None = None
    validated_at: datetime | None = None
    created_at: datetime
    lines: list[DeliveryNoteLineRead]


class DeliveryComparison(BaseModel):
    delivery_note_id: int
    purchase_order_id: int | None = None
    delivery_total: Decimal
    order_total: Decimal | None = None
    difference: Decimal | None = None
