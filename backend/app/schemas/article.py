from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import ArticleType


class ArticleRead(BaseModel):
    id: int
    code: str
    name: str
    description: str | None = None
    type: ArticleType
    unit: str
    unit_price: Decimal
    supplier: str | None = None
    active: bool

    class Config:
        from_attributes = True
