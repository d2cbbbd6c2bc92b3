from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select, func

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Article, Base, DeliveryNote, Discrepancy, Flight
from backend.app.db.models.core_types import ArticleType, DeliveryStatus, DiscrepancyStatus, DiscrepancyType
from backend.services import deliveries, orders
from backend.services.errors import Conflict, InvalidState, NotFound, ValidationError
from backend.services.ledger import LineInput


def _count_discrepancies(db, note_id):
    return db.execute(
        select(func.count(Discrepancy.id)).where(Discrepancy.delivery_note_id == note_id)
    ).scalar_one()


def test_validate_generates_discrepancies(db_session, articles, make_order, make_delivery):
    """
    GIVEN
    - BCP: 100 x A @ 2.00
    - BL lié: 90 x A @ 2.00, 5 x B @ 3.00 (non commandé)

    THEN
    - BL VALIDATED
    - 2 écarts PENDING: QUANTITY_LOWER (-10 / -20.000) et ARTICLE_EXTRA (+5 / +15.000)
    """
    a, b = articles["A"], articles["B"]
    order = make_order([(a, 100, "2.00")])
    note = make_delivery([(a, 90, "2.00"), (b, 5, "3.00")], order=order)

    deliveries.validate_delivery(db_session, note.id, actor="controleur")
    db_session.commit()

    assert note.status == DeliveryStatus.validated
    assert note.validated_at is not None

    rows = db_session.execute(
        select(Discrepancy).where(Discrepancy.delivery_note_id == note.id).order_by(Discrepancy.article_id)
    ).scalars().all()
    assert [(d.article_id, d.type, d.qty_delta, d.amount_delta) for d in rows] == [
        (a.id, DiscrepancyType.quantity_lower, -10, Decimal("-20.000")),
        (b.id, DiscrepancyType.article_extra, 5, Decimal("15.000")),
    ]
    assert {d.status for d in rows} == {DiscrepancyStatus.pending}
    assert {d.purchase_order_id for d in rows} == {order.id}


def test_exact_delivery_validates_without_discrepancy(db_session, articles, make_order, make_delivery):
    a = articles["A"]
    order = make_order([(a, 10, "2.00")])
    note = make_delivery([(a, 10, "2.000")], order=order)

    deliveries.validate_delivery(db_session, note.id)
    db_session.commit()

    assert note.status == DeliveryStatus.validated
    assert _count_discrepancies(db_session, note.id) == 0


def test_validate_twice_is_refused_and_keeps_discrepancies(db_session, articles, make_order, make_delivery):
    a = articles["A"]
    order = make_order([(a, 100, "2.00")])
    note = make_delivery([(a, 90, "2.00")], order=order)

    deliveries.validate_delivery(db_session, note.id)
    db_session.commit()

    with pytest.raises(InvalidState):
        deliveries.validate_delivery(db_session, note.id)
    assert _count_discrepancies(db_session, note.id) == 1


def test_delivery_without_order_validates_with_no_discrepancy(db_session, articles, make_delivery):
    note = make_delivery([(articles["A"], 3, "2.00")])

    deliveries.validate_delivery(db_session, note.id)
    db_session.commit()

    assert note.status == DeliveryStatus.validated
    assert _count_discrepancies(db_session, note.id) == 0


def test_stale_version_conflicts(db_session, articles, make_order, make_delivery):
    a = articles["A"]
    order = make_order([(a, 1, "1")])
    note = make_delivery([(a, 1, "1")], order=order)
    assert note.version == 1

    with pytest.raises(Conflict):
        deliveries.validate_delivery(db_session, note.id, expected_version=7)
    db_session.rollback()
    assert deliveries.get_delivery(db_session, note.id).status == DeliveryStatus.pending

    deliveries.validate_delivery(db_session, note.id, expected_version=1)
    db_session.commit()
    assert note.version == 2


def test_reject_is_terminal(db_session, articles, make_delivery):
    note = make_delivery([(articles["A"], 1, "1")], notes="palette abîmée")

    deliveries.reject_delivery(db_session, note.id, reason="température hors norme")
    db_session.commit()

    assert note.status == DeliveryStatus.rejected
    assert note.notes == "palette abîmée\ntempérature hors norme"
    with pytest.raises(InvalidState):
        deliveries.validate_delivery(db_session, note.id)
    with pytest.raises(InvalidState):
        deliveries.change_delivery_status(db_session, note.id, DeliveryStatus.received)


def test_pending_received_then_validated(db_session, articles, make_delivery):
    note = make_delivery([(articles["A"], 1, "1")])

    deliveries.change_delivery_status(db_session, note.id, DeliveryStatus.received)
    deliveries.change_delivery_status(db_session, note.id, DeliveryStatus.validated)
    db_session.commit()

    assert note.status == DeliveryStatus.validated
    with pytest.raises(InvalidState):
        deliveries.change_delivery_status(db_session, note.id, DeliveryStatus.pending)


def test_create_refuses_terminal_status(db_session, flight, articles):
    with pytest.raises(ValidationError):
        deliveries.create_delivery(
            db_session,
            flight_id=flight.id,
            supplier="NewRest",
            lines=[LineInput(articles["A"].id, 1, Decimal("1"))],
            status=DeliveryStatus.validated,
        )


def test_unknown_order_binding(db_session, flight, articles):
    with pytest.raises(NotFound):
        deliveries.create_delivery(
            db_session,
            flight_id=flight.id,
            supplier="NewRest",
            purchase_order_id=31337,
            lines=[LineInput(articles["A"].id, 1, Decimal("1"))],
        )


def test_update_before_and_after_validation(db_session, articles, make_order, make_delivery):
    a, b = articles["A"], articles["B"]
    order = make_order([(a, 10, "2.00")])
    note = make_delivery([(a, 8, "2.00")])

    deliveries.update_delivery(
        db_session,
        note.id,
        purchase_order_id=order.id,
        lines=[LineInput(a.id, 10, Decimal("2.00")), LineInput(b.id, 1, Decimal("3.00"))],
    )
    db_session.commit()
    assert note.purchase_order_id == order.id
    assert note.total_amount == Decimal("23.000")

    deliveries.validate_delivery(db_session, note.id)
    db_session.commit()

    with pytest.raises(InvalidState):
        deliveries.update_delivery(db_session, note.id, notes="correction")


def test_delete_rules(db_session, articles, make_delivery):
    kept = make_delivery([(articles["A"], 1, "1")])
    dropped = make_delivery([(articles["A"], 1, "1")])

    deliveries.delete_delivery(db_session, dropped.id)
    db_session.commit()
    with pytest.raises(NotFound):
        deliveries.get_delivery(db_session, dropped.id)

    deliveries.validate_delivery(db_session, kept.id)
    db_session.commit()
    with pytest.raises(InvalidState):
        deliveries.delete_delivery(db_session, kept.id)


def test_compare_with_order(db_session, articles, make_order, make_delivery):
    a = articles["A"]
    order = make_order([(a, 100, "2.00")])
    note = make_delivery([(a, 90, "2.00")], order=order)
    orphan = make_delivery([(a, 1, "2.00")])

    cmp = deliveries.compare_with_order(db_session, note.id)
    assert cmp["order_total"] == Decimal("200.000")
    assert cmp["delivery_total"] == Decimal("180.000")
    assert cmp["difference"] == Decimal("-20.000")

    cmp = deliveries.compare_with_order(db_session, orphan.id)
    assert cmp["purchase_order_id"] is None
    assert cmp["difference"] is None


def test_list_deliveries_by_order(db_session, articles, make_order, make_delivery):
    order = make_order([(articles["A"], 1, "1")])
    bound = make_delivery([(articles["A"], 1, "1")], order=order)
    make_delivery([(articles["A"], 1, "1")])

    assert [n.id for n in deliveries.list_deliveries(db_session, purchase_order_id=order.id)] == [bound.id]
    assert len(deliveries.list_deliveries(db_session, status=DeliveryStatus.pending)) == 2


def test_replayed_validation_with_old_version_is_invalid_state(db_session, articles, make_order, make_delivery):
    a = articles["A"]
    order = make_order([(a, 10, "2.00")])
    note = make_delivery([(a, 9, "2.00")], order=order)

    deliveries.validate_delivery(db_session, note.id, expected_version=1)
    db_session.commit()

    with pytest.raises(InvalidState):
        deliveries.validate_delivery(db_session, note.id, expected_version=1)
    assert _count_discrepancies(db_session, note.id) == 1


def test_unbind_order(db_session, articles, make_order, make_delivery):
    a = articles["A"]
    order = make_order([(a, 10, "2.00")])
    note = make_delivery([(a, 10, "2.00")], order=order)

    # sans purchase_order_id: lien inchangé
    deliveries.update_delivery(db_session, note.id, notes="quai 3")
    db_session.commit()
    assert note.purchase_order_id == order.id

    deliveries.update_delivery(db_session, note.id, purchase_order_id=None)
    db_session.commit()
    assert note.purchase_order_id is None

    deliveries.validate_delivery(db_session, note.id)
    db_session.commit()
    assert _count_discrepancies(db_session, note.id) == 0


def test_binding_an_order_of_another_flight_is_refused(db_session, flight, articles, make_delivery):
    other = Flight(flight_number="TU214", flight_date=date(2026, 3, 2))
    db_session.add(other)
    db_session.flush()
    foreign = orders.create_order(db_session, flight_id=other.id, supplier="NewRest",
                                  lines=[LineInput(articles["A"].id, 1, Decimal("1"))])
    db_session.commit()

    with pytest.raises(ValidationError):
        deliveries.create_delivery(db_session, flight_id=flight.id, supplier="NewRest",
                                   purchase_order_id=foreign.id,
                                   lines=[LineInput(articles["A"].id, 1, Decimal("1"))])

    note = make_delivery([(articles["A"], 1, "1")])
    with pytest.raises(ValidationError):
        deliveries.update_delivery(db_session, note.id, purchase_order_id=foreign.id)


def test_manual_delivery_number(db_session, flight, articles):
    lines = [LineInput(articles["A"].id, 1, Decimal("1"))]

    with pytest.raises(ValidationError):
        deliveries.create_delivery(db_session, flight_id=flight.id, supplier="NewRest",
                                   number="BCP-TU712-20260301-001", lines=lines)

    note = deliveries.create_delivery(db_session, flight_id=flight.id, supplier="NewRest",
                                      number="BL-TU712-20260301-007", lines=lines)
    assert note.number == "BL-TU712-20260301-007"


# ---------- validation concurrente (deux sessions) ----------
@pytest.fixture
def file_engine(tmp_path):
    """SQLite fichier: deux sessions = deux connexions distinctes."""
    eng = create_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


def test_concurrent_validation_conflicts(file_engine, monkeypatch):
    """
    GIVEN
    - un BL (A x8) lié à un BCP (A x10)
    - une seconde session valide et commite le même BL pendant la première validation

    THEN
    - la première validation -> Conflict
    - BL VALIDATED une seule fois (version 2), 1 seul écart
    """
    setup = SessionLocal(bind=file_engine)
    flight = Flight(flight_number="TU712", flight_date=date(2026, 3, 1))
    article = Article(code="REP001", name="Plateau Economy", type=ArticleType.meal)
    setup.add_all([flight, article])
    setup.flush()
    order = orders.create_order(setup, flight_id=flight.id, supplier="NewRest",
                                lines=[LineInput(article.id, 10, Decimal("2.00"))])
    note = deliveries.create_delivery(setup, flight_id=flight.id, supplier="NewRest",
                                      purchase_order_id=order.id,
                                      lines=[LineInput(article.id, 8, Decimal("2.00"))])
    setup.commit()
    note_id = note.id
    setup.close()

    real_reconcile = deliveries.reconcile_delivery

    def reconcile_after_concurrent_commit(db, note, *, now):
        monkeypatch.setattr(deliveries, "reconcile_delivery", real_reconcile)
        other = SessionLocal(bind=file_engine)
        try:
            deliveries.validate_delivery(other, note_id)
            other.commit()
        finally:
            other.close()
        return real_reconcile(db, note, now=now)

    monkeypatch.setattr(deliveries, "reconcile_delivery", reconcile_after_concurrent_commit)

    first = SessionLocal(bind=file_engine)
    try:
        with pytest.raises(Conflict):
            deliveries.validate_delivery(first, note_id)
    finally:
        first.close()

    check = SessionLocal(bind=file_engine)
    try:
        stored = check.get(DeliveryNote, note_id)
        assert stored.status == DeliveryStatus.validated
        assert stored.version == 2
        assert _count_discrepancies(check, note_id) == 1
    finally:
        check.close()
