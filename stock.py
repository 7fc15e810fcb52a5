"""
Monthly stock ledger.

One ``monthlystocks`` document per (theater, product, year, month) holds the
month's entries. Balances run from the month's carry-forward (the previous
ledger month's closing balance) and never drop below zero. After every write
the change in the latest closing balance is applied to the product's
``inventory.currentStock``, which orders also draw down directly.
"""
import calendar
import datetime
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database

from auth import current_user, require_theater_access
from database import MONTHLY_STOCK, PRODUCTS, as_utc, get_db, require_oid, to_str_id, utcnow
from errors import ApiError
from schemas import StockEntryIn

logger = logging.getLogger(__name__)

INBOUND_TYPES = ("ADDED", "RETURNED")

router = APIRouter(prefix="/api/theater-stock", tags=["stock"])


def _as_datetime(value: Optional[datetime.date]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)


# -----------------------------
# Balance arithmetic
# -----------------------------

def apply_movement(entry: Dict[str, Any]) -> None:
    """Fill the display columns of an entry from its type and quantity.

    Inbound entries keep the used/damaged/expired amounts recorded against
    them; every other type books its quantity into exactly one column.
    """
    qty = abs(entry.get("quantity", 0))
    kind = entry["type"]
    if kind in INBOUND_TYPES:
        entry["stockAdded"] = qty
        for key in ("usedStock", "expiredStock", "damageStock"):
            entry[key] = entry.get(key) or 0
        return

    entry.update({"stockAdded": 0, "usedStock": 0, "expiredStock": 0, "damageStock": 0})
    if kind == "SOLD":
        entry["usedStock"] = qty
    elif kind == "EXPIRED":
        entry["expiredStock"] = qty
    elif kind == "DAMAGED":
        entry["damageStock"] = qty
    elif kind == "ADJUSTMENT":
        if entry.get("quantity", 0) > 0:
            entry["stockAdded"] = qty
        else:
            entry["usedStock"] = qty


def recalculate(doc: Dict[str, Any]) -> Dict[str, Any]:
    running = max(0, doc.get("carryForward", 0))
    totals = {"totalStockAdded": 0, "totalUsedStock": 0, "totalExpiredStock": 0, "totalDamageStock": 0}
    for entry in doc.get("stockDetails", []):
        apply_movement(entry)
        running = max(0, running + entry["stockAdded"] - entry["usedStock"] - entry["expiredStock"] - entry["damageStock"])
        entry["balance"] = running
        totals["totalStockAdded"] += entry["stockAdded"]
        totals["totalUsedStock"] += entry["usedStock"]
        totals["totalExpiredStock"] += entry["expiredStock"]
        totals["totalDamageStock"] += entry["damageStock"]
    doc.update(totals)
    doc["closingBalance"] = running
    return doc


def expire_entries(doc: Dict[str, Any], today: datetime.date) -> bool:
    """Book the unsold remainder of inbound entries whose expiry date has passed."""
    changed = False
    for entry in doc.get("stockDetails", []):
        expire = as_utc(entry.get("expireDate"))
        if entry.get("type") not in INBOUND_TYPES or expire is None or today <= expire.date():
            continue
        remaining = max(0, abs(entry["quantity"]) - entry.get("usedStock", 0) - entry.get("expiredStock", 0) - entry.get("damageStock", 0))
        if remaining > 0:
            entry["expiredStock"] = entry.get("expiredStock", 0) + remaining
            changed = True
    return changed


# -----------------------------
# Ledger documents
# -----------------------------

def _ledger(db: Database, theater_id: ObjectId, product_id: ObjectId) -> List[Dict[str, Any]]:
    return list(
        db[MONTHLY_STOCK]
        .find({"theaterId": theater_id, "productId": product_id})
        .sort([("year", ASCENDING), ("monthNumber", ASCENDING)])
    )


def _product(db: Database, theater_id: ObjectId, product_id: ObjectId) -> Dict[str, Any]:
    container = db[PRODUCTS].find_one({"theater": theater_id, "productList._id": product_id})
    for product in (container or {}).get("productList", []):
        if product.get("_id") == product_id:
            return product
    raise ApiError(404, "Product not found", code="PRODUCT_NOT_FOUND")


def opening_balance(db: Database, theater_id: ObjectId, product_id: ObjectId, year: int, month: int) -> float:
    previous = db[MONTHLY_STOCK].find_one(
        {
            "theaterId": theater_id,
            "productId": product_id,
            "$or": [{"year": {"$lt": year}}, {"year": year, "monthNumber": {"$lt": month}}],
        },
        sort=[("year", -1), ("monthNumber", -1)],
    )
    if previous:
        return previous.get("closingBalance", 0)
    if db[MONTHLY_STOCK].count_documents({"theaterId": theater_id, "productId": product_id}) == 0:
        # first ledger month opens with whatever the product already holds
        inventory = _product(db, theater_id, product_id).get("inventory") or {}
        return inventory.get("currentStock", 0)
    return 0


def month_doc(db: Database, theater_id: ObjectId, product_id: ObjectId, year: int, month: int) -> Dict[str, Any]:
    carry = opening_balance(db, theater_id, product_id, year, month)
    now = utcnow()
    return db[MONTHLY_STOCK].find_one_and_update(
        {"theaterId": theater_id, "productId": product_id, "year": year, "monthNumber": month},
        {
            "$setOnInsert": {
                "month": calendar.month_name[month],
                "carryForward": carry,
                "stockDetails": [],
                "totalStockAdded": 0,
                "totalUsedStock": 0,
                "totalExpiredStock": 0,
                "totalDamageStock": 0,
                "closingBalance": carry,
                "createdAt": now,
            }
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _save(db: Database, doc: Dict[str, Any]) -> None:
    doc["updatedAt"] = utcnow()
    db[MONTHLY_STOCK].replace_one({"_id": doc["_id"]}, doc)


def latest_close(db: Database, theater_id: ObjectId, product_id: ObjectId) -> float:
    doc = db[MONTHLY_STOCK].find_one(
        {"theaterId": theater_id, "productId": product_id},
        sort=[("year", -1), ("monthNumber", -1)],
    )
    return doc.get("closingBalance", 0) if doc else 0


def refresh_ledger(
    db: Database,
    theater_id: ObjectId,
    product_id: ObjectId,
    today: Optional[datetime.date] = None,
    before: Optional[float] = None,
) -> float:
    """Expire stale stock, rebuild the carry-forward chain and move the product
    stock by however much the latest closing balance changed.

    ``before`` is the latest closing balance ahead of the caller's own write;
    without it only changes made here (expiry, carry-forward repair) count.
    Returns the latest closing balance.
    """
    today = today or utcnow().date()
    docs = _ledger(db, theater_id, product_id)
    if not docs:
        return 0
    if before is None:
        before = docs[-1].get("closingBalance", 0)

    previous_close = None
    for doc in docs:
        expired = expire_entries(doc, today)
        carry_changed = previous_close is not None and doc.get("carryForward") != previous_close
        if carry_changed:
            doc["carryForward"] = previous_close
        if expired or carry_changed:
            recalculate(doc)
            _save(db, doc)
        previous_close = doc.get("closingBalance", 0)

    adjust_product_stock(db, theater_id, product_id, previous_close - before)
    return previous_close


def adjust_product_stock(db: Database, theater_id: ObjectId, product_id: ObjectId, delta: float) -> None:
    # orders take stock without a ledger entry; only the ledger's own change moves it
    if not delta:
        return
    now = utcnow()
    db[PRODUCTS].update_one(
        {"theater": theater_id, "productList._id": product_id},
        {"$inc": {"productList.$.inventory.currentStock": delta}, "$set": {"productList.$.updatedAt": now, "updatedAt": now}},
    )
    db[PRODUCTS].update_one(
        {"theater": theater_id, "productList": {"$elemMatch": {"_id": product_id, "inventory.currentStock": {"$lt": 0}}}},
        {"$set": {"productList.$.inventory.currentStock": 0}},
    )


def product_stock(db: Database, theater_id: ObjectId, product_id: ObjectId) -> float:
    return (_product(db, theater_id, product_id).get("inventory") or {}).get("currentStock", 0)


def _entry_doc(payload: StockEntryIn) -> Dict[str, Any]:
    return {
        "date": _as_datetime(payload.date),
        "type": payload.type,
        "quantity": payload.quantity,
        "usedStock": payload.used_stock,
        "damageStock": payload.damage_stock,
        "expiredStock": 0,
        "expireDate": _as_datetime(payload.expire_date),
        "batchNumber": payload.batch_number,
        "notes": payload.notes,
    }


def _check_quantity(payload: StockEntryIn) -> None:
    if payload.quantity == 0 or (payload.quantity < 0 and payload.type != "ADJUSTMENT"):
        raise ApiError(400, "Quantity must be greater than 0", code="INVALID_QUANTITY")


def _summary(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "entries": to_str_id(doc.get("stockDetails", [])),
        "currentStock": doc.get("closingBalance", 0),
        "statistics": {
            "totalAdded": doc.get("totalStockAdded", 0),
            "totalSold": doc.get("totalUsedStock", 0),
            "totalExpired": doc.get("totalExpiredStock", 0),
            "totalDamaged": doc.get("totalDamageStock", 0),
            "openingBalance": doc.get("carryForward", 0),
            "closingBalance": doc.get("closingBalance", 0),
        },
        "period": {"year": doc["year"], "month": doc["monthNumber"], "monthName": doc.get("month")},
    }


def _ids(theater_id: str, product_id: str, user: Dict[str, Any]):
    t_id = require_oid(theater_id, "theaterId")
    p_id = require_oid(product_id, "productId")
    require_theater_access(user, t_id)
    return t_id, p_id


def _doc_with_entry(db: Database, theater_id: ObjectId, product_id: ObjectId, entry_id: ObjectId) -> Dict[str, Any]:
    doc = db[MONTHLY_STOCK].find_one({"theaterId": theater_id, "productId": product_id, "stockDetails._id": entry_id})
    if not doc:
        raise ApiError(404, "Stock entry not found", code="ENTRY_NOT_FOUND")
    return doc


# -----------------------------
# Routes
# -----------------------------
@router.get("/{theater_id}/{product_id}")
def get_monthly_stock(
    theater_id: str,
    product_id: str,
    year: Optional[int] = Query(None, ge=2000),
    month: Optional[int] = Query(None, ge=1, le=12),
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    t_id, p_id = _ids(theater_id, product_id, user)
    product = _product(db, t_id, p_id)
    today = utcnow().date()
    refresh_ledger(db, t_id, p_id, today)
    doc = month_doc(db, t_id, p_id, year or today.year, month or today.month)
    return {
        "success": True,
        "data": {**_summary(doc), "product": {"id": str(p_id), "name": product.get("name")}},
    }


@router.post("/{theater_id}/{product_id}", status_code=201)
def add_stock_entry(
    theater_id: str,
    product_id: str,
    payload: StockEntryIn,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    t_id, p_id = _ids(theater_id, product_id, user)
    _product(db, t_id, p_id)
    _check_quantity(payload)

    doc = month_doc(db, t_id, p_id, payload.date.year, payload.date.month)
    before = latest_close(db, t_id, p_id)
    entry = {"_id": ObjectId(), **_entry_doc(payload)}
    doc.setdefault("stockDetails", []).append(entry)
    recalculate(doc)
    _save(db, doc)
    balance = refresh_ledger(db, t_id, p_id, before=before)
    logger.info("stock %s %s for product %s, balance %s", payload.type, payload.quantity, p_id, balance)
    return {
        "success": True,
        "message": "Stock entry added successfully",
        "data": {
            **_summary(doc),
            "entry": to_str_id(entry),
            "currentStock": product_stock(db, t_id, p_id),
            "ledgerBalance": balance,
        },
    }


@router.put("/{theater_id}/{product_id}/{entry_id}")
def update_stock_entry(
    theater_id: str,
    product_id: str,
    entry_id: str,
    payload: StockEntryIn,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    t_id, p_id = _ids(theater_id, product_id, user)
    e_id = require_oid(entry_id, "entryId")
    _check_quantity(payload)
    doc = _doc_with_entry(db, t_id, p_id, e_id)
    before = latest_close(db, t_id, p_id)
    if (payload.date.year, payload.date.month) != (doc["year"], doc["monthNumber"]):
        raise ApiError(400, "Entry date must stay within its month", code="ENTRY_MONTH_MISMATCH")

    entry = next(e for e in doc["stockDetails"] if e["_id"] == e_id)
    entry.update(_entry_doc(payload))
    recalculate(doc)
    _save(db, doc)
    balance = refresh_ledger(db, t_id, p_id, before=before)
    return {
        "success": True,
        "message": "Stock entry updated successfully",
        "data": {"entry": to_str_id(entry), "currentStock": product_stock(db, t_id, p_id), "ledgerBalance": balance},
    }


@router.delete("/{theater_id}/{product_id}/{entry_id}")
def delete_stock_entry(
    theater_id: str,
    product_id: str,
    entry_id: str,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    t_id, p_id = _ids(theater_id, product_id, user)
    e_id = require_oid(entry_id, "entryId")
    doc = _doc_with_entry(db, t_id, p_id, e_id)
    before = latest_close(db, t_id, p_id)
    doc["stockDetails"] = [e for e in doc["stockDetails"] if e["_id"] != e_id]
    recalculate(doc)
    _save(db, doc)
    balance = refresh_ledger(db, t_id, p_id, before=before)
    return {
        "success": True,
        "message": "Stock entry deleted successfully",
        "data": {"currentStock": product_stock(db, t_id, p_id), "ledgerBalance": balance},
    }
