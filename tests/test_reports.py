import csv
import io
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from auth import THEATER_STAFF
from conftest import add_category, add_product, add_user, auth_header
from database import REPORT_ACCESS_LOGS
from reports import CSV_HEADER, apply_scope, local_time, orders_csv
from roles import role_store


@pytest.fixture
def sales(client, db, theater_id):
    snacks = add_category(db, theater_id, "Snacks")
    drinks = add_category(db, theater_id, "Drinks")
    popcorn = add_product(db, theater_id, "Popcorn", 100, category_id=snacks["_id"])
    cola = add_product(db, theater_id, "Cola", 50, category_id=drinks["_id"])
    for pid, qty in ((popcorn["_id"], 2), (cola["_id"], 1)):
        client.post(
            "/api/orders/theater",
            json={"theaterId": str(theater_id), "items": [{"productId": str(pid), "quantity": qty}]},
        )
    return {"snacks": snacks, "drinks": drinks}


def _staff(db, theater_id, **data_access):
    role = role_store(db).push(
        theater_id, {"name": "Reporter", "permissions": [{"page": "reports", "pageName": "reports", "hasAccess": True}]}
    )
    user = add_user(db, "reporter", THEATER_STAFF, theater_id, roleId=role["_id"], dataAccess=data_access)
    return auth_header(THEATER_STAFF, theater_id, user_id=user["_id"], username="reporter")


def test_local_time_uses_india_time():
    assert local_time(datetime(2026, 1, 1, 20, 0, tzinfo=timezone.utc)) == "02/01/2026, 01:30:00 AM"


def test_orders_csv_layout():
    order = {
        "orderNumber": "ORD-20260101-0001",
        "createdAt": datetime(2026, 1, 1, 6, 30, tzinfo=timezone.utc),
        "customerInfo": {"name": "Asha"},
        "items": [
            {"name": "Popcorn", "quantity": 2, "categoryName": "Snacks"},
            {"name": "Cola", "quantity": 1, "categoryName": "Drinks"},
        ],
        "pricing": {"total": 295},
        "status": "pending",
        "payment": {"method": "upi"},
    }
    text = orders_csv([order], "FULL REPORT", "admin")
    rows = list(csv.reader(io.StringIO(text)))

    assert rows[0] == ["Report: FULL REPORT"]
    assert rows[1] == ["Generated by: admin"]
    assert rows[3] == ["Total Orders: 1"]
    assert rows[4] == ["Total Revenue: ₹295.00"]
    assert rows[5] == []
    assert rows[6] == CSV_HEADER
    assert rows[7] == [
        "ORD-20260101-0001",
        "01/01/2026, 12:00:00 PM",
        "Asha",
        "Popcorn (2); Cola (1)",
        "Snacks; Drinks",
        "₹295.00",
        "pending",
        "upi",
    ]
    assert text.splitlines()[6].startswith('"Order ID","Date"')


def test_apply_scope_filters_by_assignment():
    staff_id = ObjectId()
    cat = ObjectId()
    orders = [
        {"items": [{"categoryId": cat}], "staffInfo": {"staffId": staff_id}, "section": "Gold"},
        {"items": [{"categoryId": ObjectId()}], "staffInfo": {"staffId": staff_id}, "section": "Gold"},
        {"items": [{"categoryId": cat}], "staffInfo": None, "section": "Gold"},
        {"items": [{"categoryId": cat}], "staffInfo": {"staffId": staff_id}, "section": "Silver"},
    ]
    scope = {
        "type": "user_specific",
        "userId": str(staff_id),
        "filters": {"assignedCategories": [str(cat)], "assignedSections": ["Gold"], "trackByProcessor": True},
    }
    assert apply_scope(orders, scope) == orders[:1]
    assert apply_scope(orders, {"type": "full", "filters": {}}) == orders


def test_full_report_json_and_audit(client, db, theater_id, admin_headers, sales):
    r = client.get(f"/api/reports/full-report/{theater_id}", headers=admin_headers)

    assert r.status_code == 200
    summary = r.json()["data"]["summary"]
    assert summary["totalOrders"] == 2
    assert summary["totalRevenue"] == 295
    assert summary["statusBreakdown"] == {"pending": 2}
    assert summary["categoryBreakdown"]["Snacks"] == {"count": 1, "revenue": 200, "items": 2}

    log = db[REPORT_ACCESS_LOGS].find_one()
    assert log["reportType"] == "FULL_REPORT"
    assert log["recordsAccessed"] == 2


def test_full_report_csv(client, theater_id, admin_headers, sales):
    r = client.get(f"/api/reports/full-report/{theater_id}", params={"format": "csv"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment" in r.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(r.text)))
    assert rows[6] == CSV_HEADER
    assert len(rows) == 9


def test_full_report_is_admin_only(client, db, theater_id, sales):
    r = client.get(f"/api/reports/full-report/{theater_id}", headers=_staff(db, theater_id))
    assert r.status_code == 403


def test_my_sales_applies_user_assignments(client, db, theater_id, sales):
    headers = _staff(db, theater_id, assignedCategories=[sales["drinks"]["_id"]])
    r = client.get(f"/api/reports/my-sales/{theater_id}", headers=headers)

    assert r.status_code == 200
    data = r.json()["data"]
    assert data["reportType"] == "USER_SPECIFIC_REPORT"
    assert data["summary"]["totalOrders"] == 1
    assert data["orders"][0]["items"][0]["name"] == "Cola"

    stats = client.get(f"/api/reports/my-stats/{theater_id}", headers=headers).json()["stats"]
    assert stats == {"myOrders": 1, "myRevenue": 59, "myCategories": ["Drinks"]}


def test_my_sales_without_page_access(client, theater_id):
    r = client.get(f"/api/reports/my-sales/{theater_id}", headers=auth_header(THEATER_STAFF, theater_id))
    assert r.status_code == 403
    assert r.json()["code"] == "ACCESS_DENIED"


def test_inactive_user_has_no_data_access(client, db, theater_id, sales):
    headers = _staff(db, theater_id)
    db["users"].update_one({"username": "reporter"}, {"$set": {"isActive": False}})
    r = client.get(f"/api/reports/my-sales/{theater_id}", headers=headers)
    # page access still resolves through the role; the data scope refuses
    assert r.status_code == 403
    assert r.json()["code"] == "NO_DATA_ACCESS"
