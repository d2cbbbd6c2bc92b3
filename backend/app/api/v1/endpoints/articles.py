from __future__ import annotations

from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Article
from backend.app.db.models.core_types import ArticleType
from backend.app.schemas.article import ArticleRead

router = APIRouter(prefix="/articles")


class ArticleCreate(BaseModel):
    code: str = Field(pattern=r"^[A-Z]{2,3}[0-9]{3,4}$")
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    type: ArticleType
    unit: str = Field(default="UNIT", min_length=1, max_length=32)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    supplier: str | None = Field(default=None, max_length=128)
    active: bool = True


@router.get("", response_model=list[ArticleRead])
def list_articles(
    type: ArticleType | None = None,
    active: bool | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(Article).order_by(Article.code)
    if type is not None:
        stmt = stmt.where(Article.type == type)
    if active is not None:
        stmt = stmt.where(Article.active == active)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Article.code.ilike(pattern), Article.name.ilike(pattern)))
    return db.execute(stmt).scalars().all()


@router.get("/{article_id}", response_model=ArticleRead)
def get_article(article_id: int, db: Session = Depends(get_db)):
    article = db.get(Article, article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return article


@router.post("", response_model=ArticleRead)
def create_article(payload: ArticleCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Article).where(Article.code == payload.code)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Article code already exists")

    article = Article(**payload.model_dump())
    db.add(article)
    db.commit()
    db.refresh(article)
    return article
