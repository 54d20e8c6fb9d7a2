from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from psycopg import errors as pg_errors

from kioskpos.app import main, sales_processor
from kioskpos.app.routers import inventory as inventory_router
from kioskpos.app.routers import purchases as purchases_router
from kioskpos.app.routers import reports as reports_router
from kioskpos.app.routers import sales as sales_router
from kioskpos.tests.fakedb import BIZ, T0, USER


HEADERS = {"X-Business-Id": BIZ, "X-User-Id": USER}


@pytest.fixture
def client(db, monkeypatch):
    for mod in (sales_router, inventory_router, purchases_router, reports_router):
        monkeypatch.setattr(mod, "get_conn", db.connect)
    return TestClient(main.app)


def test_post_sale_returns_receipt(db, client):
    item = db.add_item(stock=10)
    db.add_batch(item, 5, 10, T0)

    res = client.post(
        "/sales",
        headers=HEADERS,
        json={
            "lines": [{"item_id": item, "quantity": "7", "sell_price": "20"}],
            "payment_method": "CASH",
            "cash_received": "150",
        },
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert Decimal(str(body["total_amount"])) == Decimal("140")
    assert Decimal(str(body["change"])) == Decimal("10")
    allocs = body["lines"][0]["allocations"]
    assert [a["cost_source"] for a in allocs] == ["batch", "last_batch"]
    assert body["lines"][0]["state"] == "stock_decremented"
    assert res.headers["X-Request-Id"]


def test_post_sale_without_payment_method_is_400(db, client):
    item = db.add_item()
    res = client.post("/sales", headers=HEADERS, json={"lines": [{"item_id": item, "quantity": 1, "sell_price": 1}]})
    assert res.status_code == 400
    assert res.json()["detail"] == "payment method is required"
    assert db.t["sales"] == []


def test_post_sale_unknown_item_is_404(client):
    res = client.post(
        "/sales",
        headers=HEADERS,
        json={
            "lines": [{"item_id": "88888888-8888-8888-8888-888888888888", "quantity": 1, "sell_price": 1}],
            "payment_method": "cash",
        },
    )
    assert res.status_code == 404


def test_post_sale_unknown_payment_method_is_422(db, client):
    item = db.add_item()
    res = client.post(
        "/sales",
        headers=HEADERS,
        json={"lines": [{"item_id": item, "quantity": 1, "sell_price": 1}], "payment_method": "barter"},
    )
    assert res.status_code == 422


@pytest.mark.parametrize(
    "headers",
    [{}, {"X-Business-Id": "not-a-uuid"}, {"X-Business-Id": BIZ, "X-User-Id": "nope"}],
)
def test_tenant_headers_are_validated(client, headers):
    res = client.get("/inventory/batches", params={"item_id": BIZ}, headers=headers)
    assert res.status_code == 400


def test_get_sale_roundtrip(db, client):
    item = db.add_item()
    sale = client.post(
        "/sales",
        headers=HEADERS,
        json={"lines": [{"item_id": item, "quantity": 2, "sell_price": 3}], "payment_method": "mpesa"},
    ).json()

    res = client.get(f"/sales/{sale['sale_id']}", headers=HEADERS)
    assert res.status_code == 200
    assert len(res.json()["items"]) == 1

    missing = client.get("/sales/99999999-9999-9999-9999-999999999999", headers=HEADERS)
    assert missing.status_code == 404


def test_batches_create_and_list(db, client):
    item = db.add_item()

    created = client.post(
        "/inventory/batches",
        headers=HEADERS,
        json={"item_id": item, "quantity": 4, "buy_price_per_unit": "2.5", "received_at": T0.isoformat()},
    )
    assert created.status_code == 200, created.text

    listed = client.get("/inventory/batches", params={"item_id": item}, headers=HEADERS).json()["batches"]
    assert [b["id"] for b in listed] == [created.json()["id"]]


def test_restock_and_adjust(db, client):
    item = db.add_item(stock=1)

    assert client.post(
        "/inventory/restock", headers=HEADERS, json={"item_id": item, "quantity": 5, "buy_price_per_unit": 2}
    ).status_code == 200
    res = client.post("/inventory/adjust", headers=HEADERS, json={"item_id": item, "delta": -2, "reason": "Theft"})

    assert res.status_code == 200, res.text
    assert Decimal(str(res.json()["difference"])) == Decimal("-2")
    assert db.item(item)["current_stock"] == 4


def test_adjust_zero_delta_is_400(db, client):
    item = db.add_item(stock=1)
    res = client.post("/inventory/adjust", headers=HEADERS, json={"item_id": item, "delta": 0, "reason": "theft"})
    assert res.status_code == 400


def test_stock_take_reports_each_line(db, client):
    a = db.add_item(stock=3)
    b = db.add_item(stock=2)

    res = client.post(
        "/inventory/stock-take",
        headers=HEADERS,
        json={"lines": [{"item_id": a, "actual_quantity": 5}, {"item_id": b, "actual_quantity": 2}]},
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["adjustments"] == 1
    assert [Decimal(str(l["difference"])) for l in body["lines"]] == [Decimal("2"), Decimal("0")]


def test_confirm_breakdown_route(db, client):
    pid = db.add_purchase()
    pi = db.add_purchase_item(pid)
    item = db.add_item()

    res = client.post(
        f"/purchases/{pid}/breakdowns",
        headers=HEADERS,
        json={"purchase_item_id": pi, "item_id": item, "usable_quantity": 10, "buy_price_per_unit": 3},
    )

    assert res.status_code == 200, res.text
    assert res.json()["purchase_status"] == "complete"


def test_profit_report_route(db, client):
    item = db.add_item()
    db.add_batch(item, 10, 2, T0 - timedelta(days=1))
    client.post(
        "/sales",
        headers=HEADERS,
        json={"lines": [{"item_id": item, "quantity": 3, "sell_price": 5}], "payment_method": "cash"},
    )

    res = client.get(
        "/reports/profit",
        headers=HEADERS,
        params={"start": "2000-01-01", "end": "2100-01-01", "group_by": "item", "item_ids": item},
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert Decimal(str(body["totals"]["profit"])) == Decimal("9")
    assert body["groups"][0]["key"] == item


def test_profit_report_rejects_unknown_grouping(client):
    res = client.get(
        "/reports/profit", headers=HEADERS, params={"start": "2024-01-01", "end": "2024-01-31", "group_by": "week"}
    )
    assert res.status_code == 400


def test_health_reports_db_state(client, monkeypatch):
    monkeypatch.setattr(main, "_db_health", lambda: (False, "boom"))
    res = client.get("/health")
    assert res.status_code == 503
    assert res.json()["db"] == "down"

    monkeypatch.setattr(main, "_db_health", lambda: (True, None))
    assert client.get("/health").json()["status"] == "ok"


def test_post_sale_accepts_uppercase_item_id(db, client):
    item = db.add_item(stock=2)

    res = client.post(
        "/sales",
        headers=HEADERS,
        json={"lines": [{"item_id": item.upper(), "quantity": 1, "sell_price": 4}], "payment_method": "cash"},
    )

    assert res.status_code == 200, res.text
    assert res.json()["lines"][0]["item_id"] == item
    assert db.item(item)["current_stock"] == 1


@pytest.mark.parametrize(
    "path,body",
    [
        ("/sales", {"lines": [{"item_id": "apples", "quantity": 1, "sell_price": 1}], "payment_method": "cash"}),
        ("/inventory/adjust", {"item_id": "apples", "delta": 1, "reason": "theft"}),
        ("/inventory/batches", {"item_id": "apples", "quantity": 1, "buy_price_per_unit": 1}),
    ],
)
def test_malformed_item_id_is_422(db, client, path, body):
    res = client.post(path, headers=HEADERS, json=body)
    assert res.status_code == 422
    assert db.t["sales"] == [] and db.t["inventory_batches"] == []


def test_malformed_path_id_is_400(client, monkeypatch):
    def _cast_error(cur, ctx, sale_id):
        raise pg_errors.InvalidTextRepresentation('invalid input syntax for type uuid: "abc"')

    monkeypatch.setattr(sales_processor, "get_sale", _cast_error)
    res = client.get("/sales/abc", headers=HEADERS)

    assert res.status_code == 400
    assert res.json()["detail"] == "invalid value"


def test_create_purchase_then_break_it_down(db, client):
    onions = db.add_item()

    created = client.post(
        "/purchases",
        headers=HEADERS,
        json={
            "supplier_name": "Wakulima market",
            "purchase_date": T0.isoformat(),
            "items": [{"item_name": "sack of onions", "amount": "1200"}],
        },
    )
    assert created.status_code == 200, created.text
    body = created.json()
    assert Decimal(str(body["total_amount"])) == Decimal("1200")
    assert db.row("purchases", body["purchase_id"])["status"] == "pending"

    res = client.post(
        f"/purchases/{body['purchase_id']}/breakdowns",
        headers=HEADERS,
        json={
            "purchase_item_id": body["purchase_item_ids"][0],
            "item_id": onions,
            "usable_quantity": 40,
            "buy_price_per_unit": 30,
        },
    )
    assert res.status_code == 200, res.text
    assert res.json()["purchase_status"] == "complete"
    assert db.item(onions)["current_stock"] == 40


def test_create_purchase_without_items_is_400(db, client):
    res = client.post("/purchases", headers=HEADERS, json={"supplier_name": "x", "items": []})
    assert res.status_code == 400
    assert db.t["purchases"] == []
