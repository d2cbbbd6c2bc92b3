from decimal import Decimal

import pytest


API = "/v1"


@pytest.fixture
def catalog(client):
    flight = client.post(f"{API}/flights", json={"flight_number": "tu712", "flight_date": "2026-03-01"})
    assert flight.status_code == 200, flight.text

    ids = {}
    for key, code, type_, price in (("A", "REP001", "MEAL", "2.00"), ("B", "BOI001", "BEVERAGE", "3.00")):
        r = client.post(
            f"{API}/articles",
            json={"code": code, "name": f"Article {code}", "type": type_, "unit_price": price},
        )
        assert r.status_code == 200, r.text
        ids[key] = r.json()["id"]
    return flight.json(), ids


def _order(client, flight_id, lines):
    r = client.post(
        f"{API}/purchase-orders",
        json={
            "flight_id": flight_id,
            "supplier": "NewRest",
            "lines": [{"article_id": a, "qty_ordered": q, "unit_price": p} for a, q, p in lines],
        },
        headers={"X-Actor": "planner"},
    )
    assert r.status_code == 200, r.text
    return r.json()


def _delivery(client, flight_id, lines, order_id=None):
    r = client.post(
        f"{API}/delivery-notes",
        json={
            "flight_id": flight_id,
            "supplier": "NewRest",
            "purchase_order_id": order_id,
            "lines": [{"article_id": a, "qty_delivered": q, "unit_price": p} for a, q, p in lines],
        },
    )
    assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    r = client.get(f"{API}/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_reconciliation_flow(client, catalog):
    """
    GIVEN
    - BCP 100 x A @ 2.00
    - BL lié 90 x A @ 2.00 + 5 x B @ 3.00

    THEN
    - validation -> 2 écarts, résolution d'un écart visible dans les stats
    """
    flight, ids = catalog
    assert flight["flight_number"] == "TU712"

    order = _order(client, flight["id"], [(ids["A"], 100, "2.00")])
    assert order["status"] == "DRAFT"
    assert order["number"] == "BCP-TU712-20260301-001"
    assert Decimal(str(order["total_amount"])) == Decimal("200")

    note = _delivery(client, flight["id"], [(ids["A"], 90, "2.00"), (ids["B"], 5, "3.00")], order["id"])
    assert note["status"] == "PENDING"
    assert note["version"] == 1

    cmp = client.get(f"{API}/delivery-notes/{note['id']}/comparison").json()
    assert Decimal(str(cmp["difference"])) == Decimal("-5")

    r = client.post(f"{API}/delivery-notes/{note['id']}/validate", headers={"If-Match": '"1"'})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "VALIDATED"
    assert r.json()["version"] == 2

    r = client.get(f"{API}/discrepancies", params={"delivery_note_id": note["id"]})
    rows = sorted(r.json(), key=lambda d: d["article_id"])
    assert [(d["type"], d["qty_delta"]) for d in rows] == [("QUANTITY_LOWER", -10), ("ARTICLE_EXTRA", 5)]
    assert Decimal(str(rows[0]["amount_delta"])) == Decimal("-20")

    r = client.post(
        f"{API}/discrepancies/{rows[0]['id']}/resolve",
        json={"corrective_action": "Avoir fournisseur"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "RESOLVED"

    stats = client.get(f"{API}/discrepancies/statistics", params={"group_by": "flight"}).json()
    assert stats["total"] == 2
    assert stats["resolved"] == 1
    assert stats["pending"] == 1
    assert Decimal(str(stats["financial_impact"])) == Decimal("35")
    assert [g["key"] for g in stats["groups"]] == ["TU712 2026-03-01"]


def test_domain_errors_are_typed(client, catalog):
    flight, ids = catalog

    r = client.get(f"{API}/purchase-orders/999")
    assert r.status_code == 404
    assert r.json()["kind"] == "not_found"

    r = client.post(
        f"{API}/purchase-orders",
        json={"flight_id": flight["id"], "supplier": "NewRest", "lines": [{"article_id": 999, "qty_ordered": 1, "unit_price": "1"}]},
    )
    assert r.status_code == 404
    assert r.json() == {"kind": "not_found", "detail": "Article not found: 999"}

    r = client.post(
        f"{API}/purchase-orders",
        json={"flight_id": flight["id"], "supplier": "NewRest", "lines": [{"article_id": ids["A"], "qty_ordered": 0, "unit_price": "1"}]},
    )
    assert r.status_code == 422
    assert r.json()["kind"] == "validation_error"

    r = client.post(
        f"{API}/purchase-orders",
        json={
            "flight_id": flight["id"],
            "supplier": "NewRest",
            "lines": [
                {"article_id": ids["A"], "qty_ordered": 1, "unit_price": "1"},
                {"article_id": ids["A"], "qty_ordered": 2, "unit_price": "1"},
            ],
        },
    )
    assert r.status_code == 400
    assert r.json()["kind"] == "validation_error"


def test_validation_conflicts_and_terminal_state(client, catalog):
    flight, ids = catalog
    order = _order(client, flight["id"], [(ids["A"], 10, "2.00")])
    note = _delivery(client, flight["id"], [(ids["A"], 10, "2.00")], order["id"])
    url = f"{API}/delivery-notes/{note['id']}/validate"

    r = client.post(url, headers={"If-Match": "pas-un-numero"})
    assert r.status_code == 400
    assert r.json()["kind"] == "validation_error"

    r = client.post(url, headers={"If-Match": 'W/"5"'})
    assert r.status_code == 409
    assert r.json()["kind"] == "conflict"

    assert client.post(url).status_code == 200

    r = client.post(url)
    assert r.status_code == 409
    assert r.json()["kind"] == "invalid_state"

    # rejeu avec la version vue avant validation: toujours invalid_state, pas conflict
    r = client.post(url, headers={"If-Match": '"1"'})
    assert r.status_code == 409
    assert r.json()["kind"] == "invalid_state"

    r = client.put(f"{API}/delivery-notes/{note['id']}", json={"notes": "trop tard"})
    assert r.status_code == 409
    assert r.json()["kind"] == "invalid_state"

    assert client.get(f"{API}/discrepancies", params={"delivery_note_id": note["id"]}).json() == []


def test_order_lifecycle_over_http(client, catalog):
    flight, ids = catalog
    order = _order(client, flight["id"], [(ids["A"], 1, "1")])
    url = f"{API}/purchase-orders/{order['id']}"

    r = client.put(url, json={"lines": [{"article_id": ids["B"], "qty_ordered": 2, "unit_price": "3"}]})
    assert r.status_code == 200, r.text
    assert [ln["article_id"] for ln in r.json()["lines"]] == [ids["B"]]

    assert client.post(f"{url}/status", json={"status": "SENT"}).json()["status"] == "SENT"

    r = client.delete(url)
    assert r.status_code == 409
    assert r.json()["kind"] == "invalid_state"

    r = client.post(f"{url}/status", json={"status": "DRAFT"})
    assert r.status_code == 409


def test_unbind_delivery_over_http(client, catalog):
    flight, ids = catalog
    order = _order(client, flight["id"], [(ids["A"], 1, "1")])
    note = _delivery(client, flight["id"], [(ids["A"], 1, "1")], order["id"])
    url = f"{API}/delivery-notes/{note['id']}"

    r = client.put(url, json={"notes": "quai 3"})
    assert r.json()["purchase_order_id"] == order["id"]

    r = client.put(url, json={"purchase_order_id": None})
    assert r.status_code == 200, r.text
    assert r.json()["purchase_order_id"] is None


def test_reject_delivery_over_http(client, catalog):
    flight, ids = catalog
    note = _delivery(client, flight["id"], [(ids["A"], 1, "1")])

    r = client.post(f"{API}/delivery-notes/{note['id']}/reject", json={"reason": "chaîne du froid rompue"})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "REJECTED"

    r = client.delete(f"{API}/delivery-notes/{note['id']}")
    assert r.json() == {"ok": True}


def test_duplicate_master_data(client, catalog):
    r = client.post(f"{API}/flights", json={"flight_number": "TU712", "flight_date": "2026-03-01"})
    assert r.status_code == 409

    r = client.post(f"{API}/articles", json={"code": "REP001", "name": "x", "type": "MEAL"})
    assert r.status_code == 409

    r = client.post(f"{API}/articles", json={"code": "bad", "name": "x", "type": "MEAL"})
    assert r.status_code == 422
