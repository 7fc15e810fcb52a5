import datetime

from bson import ObjectId

import stock
from conftest import add_product, product_stock
from database import MONTHLY_STOCK


def _entry(kind, qty, day="2026-03-05", **extra):
    return {"date": day, "type": kind, "quantity": qty, **extra}


def test_recalculate_floors_balance_at_zero():
    doc = {
        "carryForward": 5,
        "stockDetails": [
            {"type": "SOLD", "quantity": 8},
            {"type": "ADDED", "quantity": 10, "usedStock": 2},
            {"type": "ADJUSTMENT", "quantity": -3},
        ],
    }
    stock.recalculate(doc)
    assert [e["balance"] for e in doc["stockDetails"]] == [0, 8, 5]
    assert doc["closingBalance"] == 5
    assert doc["totalStockAdded"] == 10
    assert doc["totalUsedStock"] == 13


def test_expire_entries_books_unsold_remainder():
    doc = {
        "carryForward": 0,
        "stockDetails": [
            {
                "type": "ADDED",
                "quantity": 10,
                "usedStock": 4,
                "expiredStock": 0,
                "damageStock": 1,
                "expireDate": datetime.datetime(2026, 3, 10),
            },
        ],
    }
    assert not stock.expire_entries(doc, datetime.date(2026, 3, 10))
    assert stock.expire_entries(doc, datetime.date(2026, 3, 11))
    stock.recalculate(doc)
    assert doc["stockDetails"][0]["expiredStock"] == 5
    assert doc["closingBalance"] == 0


def test_entries_sync_product_stock(client, db, theater_id, admin_headers):
    p = add_product(db, theater_id, "Popcorn", 100, stock=0)
    url = f"/api/theater-stock/{theater_id}/{p['_id']}"

    r = client.post(url, json=_entry("ADDED", 10), headers=admin_headers)
    assert r.status_code == 201
    assert r.json()["data"]["currentStock"] == 10

    r = client.post(url, json=_entry("SOLD", 3, "2026-03-06"), headers=admin_headers)
    assert r.json()["data"]["currentStock"] == 7
    assert product_stock(db, p["_id"]) == 7

    sold_id = r.json()["data"]["entry"]["id"]
    r = client.put(f"{url}/{sold_id}", json=_entry("SOLD", 4, "2026-03-06"), headers=admin_headers)
    assert r.json()["data"]["currentStock"] == 6

    r = client.delete(f"{url}/{sold_id}", headers=admin_headers)
    assert r.json()["data"]["currentStock"] == 10
    assert product_stock(db, p["_id"]) == 10


def test_first_month_opens_with_existing_stock_and_carries_forward(client, db, theater_id, admin_headers):
    p = add_product(db, theater_id, "Cola", 50, stock=4)
    url = f"/api/theater-stock/{theater_id}/{p['_id']}"

    client.post(url, json=_entry("ADDED", 6, "2026-01-20"), headers=admin_headers)
    r = client.post(url, json=_entry("DAMAGED", 2, "2026-02-02"), headers=admin_headers)

    assert r.json()["data"]["statistics"]["openingBalance"] == 10
    assert r.json()["data"]["currentStock"] == 8
    feb = db[MONTHLY_STOCK].find_one({"productId": p["_id"], "monthNumber": 2})
    assert feb["carryForward"] == 10
    assert feb["month"] == "February"


def test_earlier_month_edit_flows_into_later_months(client, db, theater_id, admin_headers):
    p = add_product(db, theater_id, "Cola", 50, stock=0)
    url = f"/api/theater-stock/{theater_id}/{p['_id']}"

    jan = client.post(url, json=_entry("ADDED", 5, "2026-01-10"), headers=admin_headers).json()["data"]["entry"]
    client.post(url, json=_entry("SOLD", 1, "2026-02-10"), headers=admin_headers)

    r = client.put(f"{url}/{jan['id']}", json=_entry("ADDED", 9, "2026-01-10"), headers=admin_headers)
    assert r.json()["data"]["currentStock"] == 8
    assert product_stock(db, p["_id"]) == 8


def test_rejects_bad_entries(client, db, theater_id, admin_headers):
    p = add_product(db, theater_id, "Cola", 50)
    url = f"/api/theater-stock/{theater_id}/{p['_id']}"

    r = client.post(url, json=_entry("SOLD", -2), headers=admin_headers)
    assert r.json()["code"] == "INVALID_QUANTITY"

    r = client.post(url, json=_entry("STOLEN", 2), headers=admin_headers)
    assert r.status_code == 400

    r = client.post(f"/api/theater-stock/{theater_id}/{ObjectId()}", json=_entry("ADDED", 2), headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["code"] == "PRODUCT_NOT_FOUND"

    entry = client.post(url, json=_entry("ADDED", 2), headers=admin_headers).json()["data"]["entry"]
    r = client.put(f"{url}/{entry['id']}", json=_entry("ADDED", 2, "2026-04-01"), headers=admin_headers)
    assert r.json()["code"] == "ENTRY_MONTH_MISMATCH"


def test_get_reports_requested_month(client, db, theater_id, admin_headers):
    p = add_product(db, theater_id, "Cola", 50, stock=0)
    url = f"/api/theater-stock/{theater_id}/{p['_id']}"
    client.post(url, json=_entry("ADDED", 3, "2026-03-01"), headers=admin_headers)

    r = client.get(url, params={"year": 2026, "month": 3}, headers=admin_headers)

    data = r.json()["data"]
    assert data["period"] == {"year": 2026, "month": 3, "monthName": "March"}
    assert len(data["entries"]) == 1
    assert data["product"]["name"] == "Cola"


def test_ledger_keeps_stock_taken_by_orders(client, db, theater_id, admin_headers):
    p = add_product(db, theater_id, "Popcorn", 100, stock=10)
    url = f"/api/theater-stock/{theater_id}/{p['_id']}"
    client.post(url, json=_entry("ADDED", 5), headers=admin_headers)
    assert product_stock(db, p["_id"]) == 15

    r = client.post("/api/orders/theater", json={"theaterId": str(theater_id), "items": [{"productId": str(p["_id"]), "quantity": 3}]})
    assert r.status_code == 201
    assert product_stock(db, p["_id"]) == 12

    client.get(url, params={"year": 2026, "month": 3}, headers=admin_headers)
    assert product_stock(db, p["_id"]) == 12

    r = client.post(url, json=_entry("ADDED", 1, "2026-03-06"), headers=admin_headers)
    assert r.json()["data"]["currentStock"] == 13
    assert r.json()["data"]["ledgerBalance"] == 16
    assert product_stock(db, p["_id"]) == 13


def test_expiry_found_on_refresh_moves_product_stock(client, db, theater_id, admin_headers):
    p = add_product(db, theater_id, "Samosa", 30, stock=0)
    url = f"/api/theater-stock/{theater_id}/{p['_id']}"
    client.post(url, json=_entry("ADDED", 4, "2026-03-01", expireDate="2999-12-31"), headers=admin_headers)
    client.post("/api/orders/theater", json={"theaterId": str(theater_id), "items": [{"productId": str(p["_id"]), "quantity": 1}]})
    assert product_stock(db, p["_id"]) == 3

    assert stock.refresh_ledger(db, theater_id, p["_id"], today=datetime.date(3000, 1, 1)) == 0
    assert product_stock(db, p["_id"]) == 0
