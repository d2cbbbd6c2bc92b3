from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import OrderStatus


class PurchaseOrderLineRead(BaseModel):
    article_id: int
    line_no: int
    qty_ordered: int
    unit_price: Decimal
    line_amount: Decimal

    class Config:
        from_attributes = True


class PurchaseOrderSummary(BaseModel):
    id: int
    number: str
    flight_id: int
    supplier: str
    status: OrderStatus
    ordered_at: datetime
    total_amount: Decimal  # READ ONLY: somme des lignes

    class Config:
        from_attributes = True


class PurchaseOrderRead(PurchaseOrderSummary):
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    lines: list[PurchaseOrderLineRead]
