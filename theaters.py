import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pymongo.database import Database

from auth import SUPER_ADMIN, current_user, require_super_admin
from database import THEATERS, get_db, oid, to_str_id, utcnow
from roles import create_default_theater_admin_role
from schemas import TheaterIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/theaters", tags=["theaters"])


@router.get("")
def list_theaters(user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    query: Dict[str, Any] = {}
    if user.get("role") != SUPER_ADMIN:
        query["_id"] = oid(user.get("theaterId"))
    docs = list(db[THEATERS].find(query).sort("name", 1))
    return {"success": True, "data": to_str_id(docs)}


@router.post("", status_code=201)
def create_theater(
    payload: TheaterIn,
    user: Dict[str, Any] = Depends(require_super_admin),
    db: Database = Depends(get_db),
):
    now = utcnow()
    doc = {**payload.model_dump(by_alias=True), "isActive": True, "createdAt": now, "updatedAt": now}
    res = db[THEATERS].insert_one(doc)
    role = create_default_theater_admin_role(db, res.inserted_id, payload.name)
    logger.info("theater %s (%s) created by %s", payload.name, res.inserted_id, user.get("username"))
    return {
        "success": True,
        "message": "Theater created successfully",
        "data": {**to_str_id(doc), "defaultRole": to_str_id(role)},
    }
