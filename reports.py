"""
Sales reports.

The full report is for theater admins and covers every order of a theater.
``my-sales`` and ``my-stats`` narrow the orders to what the caller's user
record allows (assigned categories, products, sections, orders they
processed and an access window). Every report download is written to
``report_access_logs``.
"""
import csv
import datetime
import io
import logging
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from pymongo.database import Database

from auth import SUPER_ADMIN, THEATER_ADMIN, is_admin, require_theater_access
from database import REPORT_ACCESS_LOGS, USERS, as_utc, get_db, oid, require_oid, to_str_id, utcnow
from errors import ApiError
from orders import theater_orders
from roles import require_page_access

logger = logging.getLogger(__name__)

REPORTS_PAGE = "reports"
REPORT_TZ = ZoneInfo("Asia/Kolkata")
CSV_HEADER = ["Order ID", "Date", "Customer", "Items", "Category", "Total", "Status", "Payment Method"]

router = APIRouter(prefix="/api/reports", tags=["reports"])


# -----------------------------
# Data scope
# -----------------------------

def user_data_scope(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    if is_admin(user):
        return {"type": "full", "userId": user.get("userId"), "userName": user.get("username"), "filters": {}}

    doc = db[USERS].find_one({"_id": oid(user.get("userId"))})
    if not doc or not doc.get("isActive", True):
        raise ApiError(403, "Access denied", code="NO_DATA_ACCESS")
    access = doc.get("dataAccess") or {}
    return {
        "type": "user_specific",
        "userId": str(doc["_id"]),
        "userName": doc.get("username"),
        "userEmail": doc.get("email"),
        "filters": {
            "assignedCategories": [str(c) for c in access.get("assignedCategories", [])],
            "assignedProducts": [str(p) for p in access.get("assignedProducts", [])],
            "assignedSections": list(access.get("assignedSections", [])),
            "trackByProcessor": bool(access.get("trackByProcessor")),
            "accessStartDate": access.get("accessStartDate"),
            "accessEndDate": access.get("accessEndDate"),
        },
    }


def _in_window(order: Dict[str, Any], start: Optional[datetime.datetime], end: Optional[datetime.datetime]) -> bool:
    created = as_utc(order.get("createdAt"))
    if created is None:
        return start is None and end is None
    if start and created < start:
        return False
    if end and created > end:
        return False
    return True


def apply_scope(orders: List[Dict[str, Any]], scope: Dict[str, Any]) -> List[Dict[str, Any]]:
    if scope["type"] != "user_specific":
        return orders
    f = scope["filters"]
    categories = set(f.get("assignedCategories") or [])
    products = set(f.get("assignedProducts") or [])
    sections = set(f.get("assignedSections") or [])

    out = []
    for order in orders:
        items = order.get("items", [])
        if categories and not any(str(i.get("categoryId")) in categories for i in items):
            continue
        if products and not any(str(i.get("productId")) in products for i in items):
            continue
        if sections and order.get("section") not in sections:
            continue
        if f.get("trackByProcessor"):
            staff = order.get("staffInfo") or {}
            if str(staff.get("staffId")) != scope["userId"]:
                continue
        if f.get("accessStartDate") and f.get("accessEndDate"):
            if not _in_window(order, as_utc(f["accessStartDate"]), as_utc(f["accessEndDate"])):
                continue
        out.append(order)
    return out


def _date_range(start: Optional[datetime.date], end: Optional[datetime.date]):
    lo = datetime.datetime.combine(start, datetime.time.min, tzinfo=datetime.timezone.utc) if start else None
    hi = datetime.datetime.combine(end, datetime.time.max, tzinfo=datetime.timezone.utc) if end else None
    return lo, hi


# -----------------------------
# Summaries and CSV
# -----------------------------

def summarize(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    total_revenue = round(sum((o.get("pricing") or {}).get("total", 0) for o in orders), 2)
    status_breakdown: Dict[str, int] = {}
    category_breakdown: Dict[str, Dict[str, Any]] = {}
    for order in orders:
        status = order.get("status") or "unknown"
        status_breakdown[status] = status_breakdown.get(status, 0) + 1
        for item in order.get("items", []):
            name = item.get("categoryName") or "Uncategorized"
            row = category_breakdown.setdefault(name, {"count": 0, "revenue": 0, "items": 0})
            row["count"] += 1
            row["revenue"] = round(row["revenue"] + item.get("totalPrice", 0), 2)
            row["items"] += item.get("quantity", 0)
    return {
        "totalOrders": len(orders),
        "totalRevenue": total_revenue,
        "avgOrderValue": round(total_revenue / len(orders), 2) if orders else 0,
        "completedOrders": status_breakdown.get("completed", 0),
        "pendingOrders": status_breakdown.get("pending", 0),
        "statusBreakdown": status_breakdown,
        "categoryBreakdown": category_breakdown,
    }


def local_time(value: Optional[datetime.datetime]) -> str:
    value = as_utc(value)
    if value is None:
        return ""
    return value.astimezone(REPORT_TZ).strftime("%d/%m/%Y, %I:%M:%S %p")


def orders_csv(orders: List[Dict[str, Any]], report_name: str, generated_by: str) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    total = sum((o.get("pricing") or {}).get("total", 0) for o in orders)
    writer.writerow([f"Report: {report_name}"])
    writer.writerow([f"Generated by: {generated_by}"])
    writer.writerow([f"Generated at: {local_time(utcnow())}"])
    writer.writerow([f"Total Orders: {len(orders)}"])
    writer.writerow([f"Total Revenue: ₹{total:.2f}"])
    writer.writerow([])
    writer.writerow(CSV_HEADER)
    for order in orders:
        items = order.get("items", [])
        customer = order.get("customerInfo") or {}
        writer.writerow([
            order.get("orderNumber") or str(order.get("_id")),
            local_time(order.get("createdAt")),
            customer.get("name") or customer.get("phone") or "Guest",
            "; ".join(f"{i.get('name')} ({i.get('quantity')})" for i in items) or "N/A",
            "; ".join(i["categoryName"] for i in items if i.get("categoryName")) or "N/A",
            f"₹{(order.get('pricing') or {}).get('total', 0):.2f}",
            order.get("status") or "unknown",
            (order.get("payment") or {}).get("method") or "N/A",
        ])
    return buffer.getvalue()


def log_access(db: Database, request: Request, user: Dict[str, Any], report_type: str, theater_id, filters, orders) -> None:
    db[REPORT_ACCESS_LOGS].insert_one({
        "userId": oid(user.get("userId")),
        "username": user.get("username"),
        "role": user.get("role"),
        "reportType": report_type,
        "theaterId": theater_id,
        "filters": filters,
        "recordsAccessed": len(orders),
        "totalRevenue": round(sum((o.get("pricing") or {}).get("total", 0) for o in orders), 2),
        "accessedAt": utcnow(),
        "ipAddress": request.client.host if request.client else None,
        "userAgent": request.headers.get("user-agent"),
    })
    logger.info("%s downloaded %s for theater %s (%d orders)", user.get("username"), report_type, theater_id, len(orders))


def _csv_response(text: str, filename: str) -> Response:
    return Response(
        content=text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _stamp() -> int:
    return int(utcnow().timestamp() * 1000)


# -----------------------------
# Routes
# -----------------------------
@router.get("/full-report/{theater_id}")
def full_report(
    theater_id: str,
    request: Request,
    start_date: Optional[datetime.date] = Query(None, alias="startDate"),
    end_date: Optional[datetime.date] = Query(None, alias="endDate"),
    format: str = Query("json", pattern="^(json|csv)$"),
    user: Dict[str, Any] = Depends(require_page_access(REPORTS_PAGE)),
    db: Database = Depends(get_db),
):
    if user.get("role") not in (SUPER_ADMIN, THEATER_ADMIN):
        raise ApiError(403, "Theater admin access required", code="ACCESS_DENIED")
    _id = require_oid(theater_id, "theaterId")
    require_theater_access(user, _id)

    lo, hi = _date_range(start_date, end_date)
    orders = [o for o in theater_orders(db, _id) if _in_window(o, lo, hi)]
    filters = {"startDate": lo, "endDate": hi}
    log_access(db, request, user, "FULL_REPORT", _id, filters, orders)

    if format == "csv":
        return _csv_response(orders_csv(orders, "FULL REPORT", user.get("username")), f"full_report_{theater_id}_{_stamp()}.csv")
    return {
        "success": True,
        "data": {
            "reportType": "FULL_REPORT",
            "generatedBy": user.get("username") or user.get("userId"),
            "generatedAt": utcnow(),
            "theater": theater_id,
            "dateRange": {"startDate": start_date, "endDate": end_date},
            "summary": summarize(orders),
            "orders": to_str_id(orders),
        },
    }


@router.get("/my-sales/{theater_id}")
def my_sales(
    theater_id: str,
    request: Request,
    start_date: Optional[datetime.date] = Query(None, alias="startDate"),
    end_date: Optional[datetime.date] = Query(None, alias="endDate"),
    format: str = Query("json", pattern="^(json|csv)$"),
    user: Dict[str, Any] = Depends(require_page_access(REPORTS_PAGE)),
    db: Database = Depends(get_db),
):
    _id = require_oid(theater_id, "theaterId")
    require_theater_access(user, _id)
    scope = user_data_scope(db, user)

    lo, hi = _date_range(start_date, end_date)
    orders = [o for o in apply_scope(theater_orders(db, _id), scope) if _in_window(o, lo, hi)]
    report_type = "FULL_REPORT" if scope["type"] == "full" else "USER_SPECIFIC_REPORT"
    log_access(db, request, user, report_type, _id, {**scope["filters"], "startDate": lo, "endDate": hi}, orders)

    if format == "csv":
        name = scope.get("userName") or "User Report"
        return _csv_response(orders_csv(orders, name, user.get("username")), f"sales_report_{name}_{_stamp()}.csv")
    return {
        "success": True,
        "data": {
            "reportType": report_type,
            "generatedBy": user.get("username") or user.get("userId"),
            "generatedAt": utcnow(),
            "theater": theater_id,
            "userId": scope.get("userId"),
            "userName": scope.get("userName"),
            "appliedFilters": scope["filters"],
            "dataAccessType": scope["type"],
            "dateRange": {"startDate": start_date, "endDate": end_date},
            "summary": summarize(orders),
            "orders": to_str_id(orders),
        },
    }


@router.get("/my-stats/{theater_id}")
def my_stats(
    theater_id: str,
    user: Dict[str, Any] = Depends(require_page_access(REPORTS_PAGE)),
    db: Database = Depends(get_db),
):
    _id = require_oid(theater_id, "theaterId")
    require_theater_access(user, _id)
    scope = user_data_scope(db, user)
    orders = apply_scope(theater_orders(db, _id), scope)
    categories = sorted({i["categoryName"] for o in orders for i in o.get("items", []) if i.get("categoryName")})
    return {
        "success": True,
        "stats": {
            "myOrders": len(orders),
            "myRevenue": round(sum((o.get("pricing") or {}).get("total", 0) for o in orders), 2),
            "myCategories": categories,
        },
    }
