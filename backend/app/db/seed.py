from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Article, Flight
from backend.app.db.models.core_types import ArticleType

logger = logging.getLogger(__name__)

DEMO_ARTICLES = [
    ("REP001", "Plateau repas Economy", ArticleType.meal, "UNIT", Decimal("12.500")),
    ("REP002", "Plateau repas Business", ArticleType.meal, "UNIT", Decimal("38.000")),
    ("BOI001", "Eau minérale 33cl", ArticleType.beverage, "UNIT", Decimal("0.650")),
    ("CON001", "Kit couverts", ArticleType.consumable, "PACK", Decimal("0.900")),
]


def run_seed(db: Session | None = None) -> None:
    own_session = db is None
    if own_session:
        db = SessionLocal()
    try:
        # 1) Catalogue articles
        for code, name, type_, unit, price in DEMO_ARTICLES:
            if not db.scalar(select(Article).where(Article.code == code)):
                db.add(Article(code=code, name=name, type=type_, unit=unit, unit_price=price, supplier="NewRest"))

        # 2) Vol de démo
        flight = db.scalar(
            select(Flight).where(Flight.flight_number == "TU712", Flight.flight_date == date(2026, 3, 1))
        )
        if not flight:
            db.add(
                Flight(
                    flight_number="TU712",
                    flight_date=date(2026, 3, 1),
                    origin="Tunis",
                    destination="Paris",
                    aircraft="A320",
                    zone="Europe",
                    estimated_passengers=150,
                )
            )
        db.commit()
        logger.info("SEED OK: %d articles, flight=TU712", len(DEMO_ARTICLES))
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    from backend.app.core.logging import setup_logging

    setup_logging()
    run_seed()
