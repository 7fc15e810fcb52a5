"""
Order placement, order listing and status transitions.

Placing an order touches two theater containers: stock is taken from the
product container and the order is appended to the order container. Stock
decrements are guarded (they only apply while enough stock remains) and are
given back if anything later in the flow fails. Order numbers come from an
atomic per-theater, per-day counter.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends, Query, Response
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import CUSTOMER, SUPER_ADMIN, THEATER_ADMIN, THEATER_STAFF, current_user, optional_user, require_theater_access
from database import CATEGORIES, ORDER_COUNTERS, ORDERS, PRODUCTS, THEATERS, as_utc, get_db, oid, require_oid, to_str_id, utcnow
from errors import ApiError
from schemas import OrderCreate, OrderStatusUpdate

logger = logging.getLogger(__name__)

TAX_RATE = 0.18
CURRENCY = "INR"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
STATUS_BUCKETS = (("pending", "pendingOrders"), ("completed", "completedOrders"), ("cancelled", "cancelledOrders"))

router = APIRouter(prefix="/api/orders", tags=["orders"])
dashboard_router = APIRouter(prefix="/api/theater-dashboard", tags=["dashboard"])


# -----------------------------
# Helpers
# -----------------------------

def calculate_pricing(lines: List[Dict[str, Any]]) -> Dict[str, Any]:
    subtotal = sum(line["totalPrice"] for line in lines)
    tax = round(subtotal * TAX_RATE, 2)
    return {
        "subtotal": round(subtotal, 2),
        "taxAmount": tax,
        "total": round(subtotal + tax, 2),
        "currency": CURRENCY,
    }


def next_order_number(db: Database, theater_id: ObjectId, now: Optional[datetime] = None) -> str:
    day = (now or utcnow()).strftime("%Y%m%d")
    query = {"theater": theater_id, "day": day}
    update = {"$inc": {"seq": 1}}
    try:
        counter = db[ORDER_COUNTERS].find_one_and_update(
            query, update, upsert=True, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        # two first-of-the-day orders raced on the upsert; the document exists now
        counter = db[ORDER_COUNTERS].find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    return f"ORD-{day}-{counter['seq']:04d}"


def unit_price(product: Dict[str, Any]) -> float:
    pricing = product.get("pricing") or {}
    price = pricing.get("basePrice")
    if price is None:
        price = product.get("sellingPrice", 0)
    return float(price or 0)


def _take_stock(db: Database, theater_id: ObjectId, product_id: ObjectId, qty: int) -> bool:
    res = db[PRODUCTS].update_one(
        {
            "theater": theater_id,
            "productList": {"$elemMatch": {"_id": product_id, "inventory.currentStock": {"$gte": qty}}},
        },
        {
            "$inc": {"productList.$.inventory.currentStock": -qty},
            "$set": {"productList.$.updatedAt": utcnow()},
        },
    )
    return res.matched_count == 1


def _return_stock(db: Database, theater_id: ObjectId, taken: List[Tuple[ObjectId, int]]) -> None:
    for product_id, qty in taken:
        db[PRODUCTS].update_one(
            {"theater": theater_id, "productList._id": product_id},
            {"$inc": {"productList.$.inventory.currentStock": qty}},
        )
    if taken:
        logger.warning("returned stock for %d line(s) on theater %s", len(taken), theater_id)


def _find_by_idempotency_key(db: Database, theater_id: ObjectId, key: str) -> Optional[Dict[str, Any]]:
    container = db[ORDERS].find_one({"theater": theater_id, "orderList.idempotencyKey": key})
    if not container:
        return None
    for order in container.get("orderList", []):
        if order.get("idempotencyKey") == key:
            return order
    return None


def _category_names(db: Database, theater_id: ObjectId) -> Dict[ObjectId, str]:
    container = db[CATEGORIES].find_one({"theater": theater_id}) or {}
    return {c["_id"]: c.get("name") for c in container.get("categoryList", [])}


def _price_lines(db: Database, theater_id: ObjectId, payload: OrderCreate) -> Tuple[List[Dict[str, Any]], List[Tuple[ObjectId, int, bool]]]:
    container = db[PRODUCTS].find_one({"theater": theater_id})
    if not container or not container.get("productList"):
        raise ApiError(400, "No products found for this theater", code="NO_PRODUCTS")

    products = {p["_id"]: p for p in container["productList"]}
    categories = _category_names(db, theater_id)
    requested: Dict[ObjectId, int] = defaultdict(int)
    lines: List[Dict[str, Any]] = []
    moves: List[Tuple[ObjectId, int, bool]] = []

    for it in payload.items:
        product_id = oid(it.product_id)
        product = products.get(product_id)
        if not product:
            raise ApiError(400, f"Invalid product: {it.product_id}", code="INVALID_PRODUCT")
        if not product.get("isActive", True) or not product.get("isAvailable", True):
            raise ApiError(400, f'Product "{product.get("name")}" is not available', code="PRODUCT_UNAVAILABLE")

        inventory = product.get("inventory") or {}
        track_stock = inventory.get("trackStock", True)
        requested[product_id] += it.quantity
        if track_stock and inventory.get("currentStock", 0) < requested[product_id]:
            raise ApiError(400, f"Insufficient stock for {product.get('name')}", code="INSUFFICIENT_STOCK")

        price = unit_price(product)
        lines.append({
            "_id": ObjectId(),
            "productId": product_id,
            "name": product.get("name"),
            "quantity": it.quantity,
            "unitPrice": price,
            "totalPrice": round(price * it.quantity, 2),
            "categoryId": product.get("categoryId"),
            "categoryName": categories.get(product.get("categoryId")),
        })
        moves.append((product_id, it.quantity, track_stock))
    return lines, moves


# -----------------------------
# Order placement
# -----------------------------

def place_order(db: Database, payload: OrderCreate, user: Optional[Dict[str, Any]] = None) -> Tuple[Dict[str, Any], bool]:
    """Create an order for a theater.

    Returns ``(order, created)``; ``created`` is False when an order with the
    same idempotency key already exists and is returned as-is.
    """
    theater_id = oid(payload.theater_id)
    if payload.idempotency_key:
        existing = _find_by_idempotency_key(db, theater_id, payload.idempotency_key)
        if existing:
            logger.info("replaying order %s for key %s", existing.get("orderNumber"), payload.idempotency_key)
            return existing, False

    lines, moves = _price_lines(db, theater_id, payload)

    taken: List[Tuple[ObjectId, int]] = []
    for product_id, qty, track_stock in moves:
        if not track_stock:
            continue
        if not _take_stock(db, theater_id, product_id, qty):
            _return_stock(db, theater_id, taken)
            name = next((ln["name"] for ln in lines if ln["productId"] == product_id), str(product_id))
            raise ApiError(400, f"Insufficient stock for {name}", code="INSUFFICIENT_STOCK")
        taken.append((product_id, qty))

    try:
        pricing = calculate_pricing(lines)
        now = utcnow()
        customer = payload.customer_info.model_dump() if payload.customer_info else {
            "name": payload.customer_name or "Walk-in Customer"
        }
        order = {
            "_id": ObjectId(),
            "orderNumber": next_order_number(db, theater_id, now),
            "customerInfo": customer,
            "items": lines,
            "pricing": pricing,
            "payment": {"method": payload.payment_method, "status": "pending"},
            "status": "pending",
            "orderType": payload.order_type,
            "staffInfo": None,
            "customerId": None,
            "source": "qr_code",
            "tableNumber": payload.table_number,
            "section": payload.section,
            "specialInstructions": payload.special_instructions or payload.order_notes or "",
            "idempotencyKey": payload.idempotency_key,
            "timestamps": {"placedAt": now},
            "createdAt": now,
            "updatedAt": now,
        }
        if user and user.get("role") == CUSTOMER:
            order["customerId"] = oid(user.get("userId"))
            order["source"] = "online"
        elif user:
            order["staffInfo"] = {
                "staffId": oid(user.get("userId")),
                "username": user.get("username"),
                "role": user.get("role"),
            }
            order["source"] = "staff"

        query: Dict[str, Any] = {"theater": theater_id}
        if payload.idempotency_key:
            query["orderList.idempotencyKey"] = {"$ne": payload.idempotency_key}
        db[ORDERS].update_one({"theater": theater_id}, {"$setOnInsert": {"createdAt": now}}, upsert=True)
        container = db[ORDERS].find_one_and_update(
            query,
            {
                "$push": {"orderList": order},
                "$inc": {
                    "metadata.totalOrders": 1,
                    "metadata.pendingOrders": 1,
                    "metadata.totalRevenue": pricing["total"],
                },
                "$set": {"metadata.lastOrderDate": now, "updatedAt": now},
            },
            return_document=ReturnDocument.AFTER,
        )
    except Exception:
        _return_stock(db, theater_id, taken)
        raise

    if container is None:
        # another request with the same key appended its order first
        _return_stock(db, theater_id, taken)
        existing = _find_by_idempotency_key(db, theater_id, payload.idempotency_key)
        logger.info("replaying order %s for key %s", existing.get("orderNumber"), payload.idempotency_key)
        return existing, False

    saved = next(o for o in container["orderList"] if o["_id"] == order["_id"])
    logger.info(
        "order %s placed for theater %s: %d item(s), total %.2f",
        saved["orderNumber"], theater_id, len(lines), pricing["total"],
    )
    return saved, True


def update_order_status(db: Database, order_id: ObjectId, status: str, user: Dict[str, Any]) -> Dict[str, Any]:
    container = db[ORDERS].find_one({"orderList._id": order_id})
    order = None
    if container:
        order = next((o for o in container.get("orderList", []) if o.get("_id") == order_id), None)
    if not order:
        raise ApiError(404, "Order not found", code="ORDER_NOT_FOUND")
    require_theater_access(user, container["theater"])

    old = order.get("status", "pending")
    now = utcnow()
    update: Dict[str, Any] = {
        "$set": {
            "orderList.$.status": status,
            "orderList.$.timestamps": {**(order.get("timestamps") or {}), f"{status}At": now},
            "orderList.$.updatedAt": now,
            "updatedAt": now,
        }
    }
    counters = {}
    for bucket, key in STATUS_BUCKETS:
        if old == bucket and status != bucket:
            counters[f"metadata.{key}"] = -1
        elif status == bucket and old != bucket:
            counters[f"metadata.{key}"] = 1
    if counters:
        update["$inc"] = counters

    db[ORDERS].update_one({"_id": container["_id"], "orderList._id": order_id}, update)
    logger.info("order %s status %s -> %s by %s", order.get("orderNumber"), old, status, user.get("username"))
    return {"orderId": str(order_id), "status": status, "previousStatus": old, "updatedAt": now}


# -----------------------------
# Queries
# -----------------------------

def theater_orders(db: Database, theater_id: Optional[ObjectId] = None) -> List[Dict[str, Any]]:
    query = {"theater": theater_id} if theater_id else {}
    out: List[Dict[str, Any]] = []
    for container in db[ORDERS].find(query):
        for order in container.get("orderList", []):
            out.append({**order, "theater": container["theater"]})
    out.sort(key=lambda o: as_utc(o.get("createdAt")) or EPOCH, reverse=True)
    return out


def order_stats(orders: List[Dict[str, Any]], since: datetime) -> Dict[str, Any]:
    billable = [o for o in orders if o.get("status") != "cancelled"]
    today = [o for o in orders if (as_utc(o.get("createdAt")) or since) >= since]
    return {
        "orders": {
            "total": len(orders),
            "today": len(today),
            "completed": sum(1 for o in orders if o.get("status") == "completed"),
            "pending": sum(1 for o in orders if o.get("status") in ("pending", "confirmed", "preparing")),
        },
        "revenue": {
            "today": round(sum(o["pricing"]["total"] for o in today if o.get("status") != "cancelled"), 2),
            "total": round(sum(o["pricing"]["total"] for o in billable), 2),
            "currency": CURRENCY,
        },
    }


def _paginate(items: List[Any], page: int, limit: int) -> Dict[str, Any]:
    total = len(items)
    start = (page - 1) * limit
    return {
        "data": to_str_id(items[start:start + limit]),
        "pagination": {"current": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


def _resolve_theater(theater_id: Optional[str], user: Dict[str, Any]) -> ObjectId:
    raw = theater_id or user.get("theaterId")
    if not raw:
        raise ApiError(400, "Theater ID is required", code="THEATER_ID_REQUIRED")
    _id = require_oid(raw, "theaterId")
    require_theater_access(user, _id)
    return _id


def _start_of_day() -> datetime:
    now = utcnow()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


# -----------------------------
# Routes
# -----------------------------
@router.post("/theater", status_code=201)
def create_theater_order(
    payload: OrderCreate,
    response: Response,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    try:
        order, created = place_order(db, payload, user)
    except ApiError:
        raise
    except Exception as e:
        logger.exception("order creation failed for theater %s", payload.theater_id)
        raise ApiError(500, "Failed to create order", message=str(e))
    if not created:
        response.status_code = 200
    return {
        "success": True,
        "message": "Order created successfully" if created else "Order already exists",
        "order": to_str_id(order),
    }


@router.get("/my-orders")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    role = user.get("role")
    if role in (THEATER_STAFF, THEATER_ADMIN):
        orders = theater_orders(db, oid(user.get("theaterId"))) if user.get("theaterId") else []
    elif role == CUSTOMER:
        me = oid(user.get("userId"))
        orders = [o for o in theater_orders(db) if o.get("customerId") == me]
    elif role == SUPER_ADMIN:
        orders = theater_orders(db)
    else:
        orders = []
    return {"success": True, **_paginate(orders, page, limit)}


@router.get("/theater-nested")
def theater_nested(
    theater_id: Optional[str] = Query(None, alias="theaterId"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = _resolve_theater(theater_id, user)
    return {"success": True, **_paginate(theater_orders(db, _id), page, limit)}


@router.get("/theater-stats")
def theater_stats(
    theater_id: Optional[str] = Query(None, alias="theaterId"),
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = _resolve_theater(theater_id, user)
    return {"success": True, "data": order_stats(theater_orders(db, _id), _start_of_day())}


@router.put("/{order_id}/status")
def set_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(order_id, "orderId")
    result = update_order_status(db, _id, payload.status, user)
    return {"success": True, "message": "Order status updated successfully", "data": result}


@dashboard_router.get("/{theater_id}")
def theater_dashboard(theater_id: str, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    _id = require_oid(theater_id, "theaterId")
    require_theater_access(user, _id)
    orders = theater_orders(db, _id)
    stats = order_stats(orders, _start_of_day())
    products = (db[PRODUCTS].find_one({"theater": _id}) or {}).get("productList", [])
    theater = db[THEATERS].find_one({"_id": _id}, {"name": 1, "location": 1})
    return {
        "success": True,
        "stats": {
            "totalOrders": stats["orders"]["total"],
            "todayOrders": stats["orders"]["today"],
            "pendingOrders": stats["orders"]["pending"],
            "todayRevenue": stats["revenue"]["today"],
            "totalRevenue": stats["revenue"]["total"],
            "activeProducts": sum(1 for p in products if p.get("isActive", True)),
            "lowStockProducts": sum(
                1 for p in products
                if (p.get("inventory") or {}).get("trackStock", True)
                and (p.get("inventory") or {}).get("currentStock", 0) <= (p.get("inventory") or {}).get("minStock", 0)
            ),
        },
        "recentOrders": to_str_id(orders[:5]),
        "theater": to_str_id(theater) if theater else None,
    }
