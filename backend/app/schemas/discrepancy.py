from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import DiscrepancyStatus, DiscrepancyType


class DiscrepancyRead(BaseModel):
    id: int
    delivery_note_id: int
    purchase_order_id: int | None = None
    article_id: int
    type: DiscrepancyType
    qty_ordered: int
    qty_delivered: int
    qty_delta: int
    ordered_unit_price: Decimal | None = None
    delivered_unit_price: Decimal | None = None
    amount_delta: Decimal
    status: DiscrepancyStatus
    description: str | None = None
    corrective_action: str | None = None
    notes: str | None = None
    rejection_reason: str | None = None
    created_at: datetime
    closed_at: datetime | None = None

    class Config:
        from_attributes = True


class StatisticsBucket(BaseModel):
    total: int
    by_status: dict[str, int]
    pending: int
    in_progress: int
    resolved: int
    financial_impact: Decimal
    net_amount: Decimal


class StatisticsGroup(StatisticsBucket):
    key: str


class DiscrepancyStatistics(StatisticsBucket):
    groups: list[StatisticsGroup] | None = None
