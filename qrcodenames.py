"""
QR code names: the seat/section labels printed on a theater's QR codes.
"""
import io
import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import qrcode
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pymongo.database import Database

from auth import current_user, require_theater_access
from config import settings
from containers import ContainerStore
from database import QR_NAMES, THEATERS, get_db, oid, require_oid, to_str_id
from errors import ApiError
from schemas import QRNameIn, QRNameUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/qrcodenames", tags=["qrcodenames"])


def qr_name_store(db: Database) -> ContainerStore:
    return ContainerStore(db, QR_NAMES, "qrNameList", "QRNames", "QR name")


def normalize_name(qr_name: str, seat_class: str) -> str:
    name = f"{qr_name}_{seat_class}".lower()
    name = re.sub(r"\s+", "_", name)
    return re.sub(r"[^a-z0-9_-]", "", name)


def _reject_duplicate(store: ContainerStore, theater_id, normalized: str, skip_id=None) -> None:
    for item in store.items(theater_id, is_active=True):
        if item.get("_id") != skip_id and item.get("normalizedName") == normalized:
            raise ApiError(
                409,
                "A QR code name with this name and seat class already exists",
                code="DUPLICATE_QR_CODE_NAME",
            )


def menu_url(theater_id, item: Dict[str, Any]) -> str:
    query = urlencode({"qrName": item.get("qrName", ""), "seat": item.get("seatClass", "")})
    return f"{settings.frontend_url.rstrip('/')}/menu/{theater_id}?{query}"


def render_qr_png(data: str) -> bytes:
    img = qrcode.make(data)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def _listing(db: Database, store: ContainerStore, theater_id, items) -> Dict[str, Any]:
    theater = db[THEATERS].find_one({"_id": theater_id}, {"name": 1, "location": 1})
    return {
        "qrCodeNames": to_str_id(items),
        "theater": to_str_id(theater) if theater else None,
        "metadata": store.metadata_for(store.find(theater_id)),
    }


@router.get("")
def list_qr_names(
    theater_id: Optional[str] = Query(None, alias="theaterId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    q: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Database = Depends(get_db),
):
    if not theater_id:
        raise ApiError(400, "Theater ID is required", code="THEATER_ID_REQUIRED")
    _id = require_oid(theater_id, "theaterId")
    store = qr_name_store(db)
    items = store.items(_id, is_active=is_active)
    if q:
        needle = q.lower()
        items = [i for i in items if needle in i.get("qrName", "").lower() or needle in i.get("seatClass", "").lower()]
    if limit:
        items = items[:limit]
    return {"success": True, "data": _listing(db, store, _id, items)}


@router.get("/{qr_name_id}")
def get_qr_name(qr_name_id: str, db: Database = Depends(get_db)):
    _id = require_oid(qr_name_id, "id")
    _, item = qr_name_store(db).get_item(_id)
    return {"success": True, "data": to_str_id(item)}


@router.get("/{qr_name_id}/qrcode.png")
def qr_code_image(qr_name_id: str, db: Database = Depends(get_db)):
    _id = require_oid(qr_name_id, "id")
    container, item = qr_name_store(db).get_item(_id)
    png = render_qr_png(menu_url(container["theater"], item))
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="{item.get("normalizedName", "qr")}.png"'},
    )


@router.post("", status_code=201)
def create_qr_name(payload: QRNameIn, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    theater_id = oid(payload.theater_id)
    require_theater_access(user, theater_id)
    store = qr_name_store(db)
    normalized = normalize_name(payload.qr_name, payload.seat_class)
    _reject_duplicate(store, theater_id, normalized)

    fields = payload.model_dump(by_alias=True, exclude={"theater_id"})
    item = store.push(theater_id, {**fields, "normalizedName": normalized})
    logger.info("QR name %s created for theater %s", normalized, theater_id)
    items = store.items(theater_id)
    return {
        "success": True,
        "message": "QR name created successfully",
        "data": {**_listing(db, store, theater_id, items), "created": to_str_id(item)},
    }


@router.put("/{qr_name_id}")
def update_qr_name(
    qr_name_id: str,
    payload: QRNameUpdate,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(qr_name_id, "id")
    store = qr_name_store(db)
    container, item = store.get_item(_id)
    require_theater_access(user, container["theater"])

    fields = {k: v.strip() if isinstance(v, str) else v for k, v in payload.model_dump(by_alias=True, exclude_unset=True).items()}
    if "qrName" in fields or "seatClass" in fields:
        normalized = normalize_name(fields.get("qrName", item.get("qrName", "")), fields.get("seatClass", item.get("seatClass", "")))
        _reject_duplicate(store, container["theater"], normalized, skip_id=_id)
        fields["normalizedName"] = normalized
    updated = store.update(_id, fields)
    return {"success": True, "message": "QR name updated successfully", "data": to_str_id(updated)}


@router.delete("/{qr_name_id}")
def delete_qr_name(
    qr_name_id: str,
    permanent: bool = False,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(qr_name_id, "id")
    store = qr_name_store(db)
    container, _ = store.get_item(_id)
    require_theater_access(user, container["theater"])
    if permanent:
        store.remove(_id)
        return {"success": True, "message": "QR name permanently deleted"}
    item = store.deactivate(_id)
    return {"success": True, "message": "QR name deactivated", "data": to_str_id(item)}


@router.patch("/{qr_name_id}/restore")
def restore_qr_name(qr_name_id: str, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    _id = require_oid(qr_name_id, "id")
    store = qr_name_store(db)
    container, _ = store.get_item(_id)
    require_theater_access(user, container["theater"])
    item = store.restore(_id)
    return {"success": True, "message": "QR name restored", "data": to_str_id(item)}
