import os
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from backend.app.api.deps import get_db
from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Base, Article, Flight
from backend.app.db.models.core_types import ArticleType
from backend.services import deliveries, orders
from backend.services.ledger import LineInput


@pytest.fixture(scope="function")
def engine():
    """
    Base isolée par test.

    SQLite en mémoire par défaut; TEST_DATABASE_URL pour viser un PostgreSQL
    jetable (le schéma est créé puis supprimé).
    """
    url = os.getenv("TEST_DATABASE_URL")
    if url:
        eng = create_engine(url, pool_pre_ping=True)
    else:
        eng = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    session = SessionLocal(bind=engine)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(engine):
    from backend.app.main import app

    def override_get_db():
        db = SessionLocal(bind=engine)
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


# ---------- master data ----------
@pytest.fixture
def flight(db_session) -> Flight:
    f = Flight(
        flight_number="TU712",
        flight_date=date(2026, 3, 1),
        origin="Tunis",
        destination="Paris",
        aircraft="A320",
        zone="Europe",
        estimated_passengers=150,
    )
    db_session.add(f)
    db_session.commit()
    return f


@pytest.fixture
def articles(db_session) -> dict[str, Article]:
    rows = {
        "A": Article(code="REP001", name="Plateau Economy", type=ArticleType.meal, unit_price=Decimal("2.000")),
        "B": Article(code="BOI001", name="Eau 33cl", type=ArticleType.beverage, unit_price=Decimal("3.000")),
        "C": Article(code="CON001", name="Kit couverts", type=ArticleType.consumable, unit_price=Decimal("0.500")),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


@pytest.fixture
def make_order(db_session, flight):
    def _make(lines, **kwargs):
        kwargs.setdefault("supplier", "NewRest")
        order = orders.create_order(
            db_session,
            flight_id=flight.id,
            lines=[LineInput(a.id, qty, Decimal(price)) for a, qty, price in lines],
            **kwargs,
        )
        db_session.commit()
        return order

    return _make


@pytest.fixture
def make_delivery(db_session, flight):
    def _make(lines, order=None, **kwargs):
        kwargs.setdefault("supplier", "NewRest")
        note = deliveries.create_delivery(
            db_session,
            flight_id=flight.id,
            purchase_order_id=order.id if order is not None else None,
            lines=[LineInput(a.id, qty, Decimal(price)) for a, qty, price in lines],
            **kwargs,
        )
        db_session.commit()
        return note

    return _make
