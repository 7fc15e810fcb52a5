"""
Application-wide settings stored in the ``settings`` collection, plus the
public logo proxy used as the site favicon.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import optional_user
from database import SETTINGS, get_db, utcnow
from schemas import GeneralSettings, GeneralSettingsUpdate

logger = logging.getLogger(__name__)

LOGO_TIMEOUT = 10.0
LOGO_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

router = APIRouter(prefix="/api/settings", tags=["settings"])


def load_general(db: Database) -> GeneralSettings:
    doc = db[SETTINGS].find_one({"type": "general"}) or {}
    return GeneralSettings.model_validate(doc.get("generalConfig") or {})


def fetch_logo(url: str) -> Tuple[bytes, str]:
    resp = httpx.get(url, timeout=LOGO_TIMEOUT, follow_redirects=True)
    resp.raise_for_status()
    return resp.content, resp.headers.get("content-type", "image/png")


@router.get("/general")
def get_general_settings(
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": load_general(db).model_dump(by_alias=True)}


@router.post("/general")
def update_general_settings(
    payload: GeneralSettingsUpdate,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    changes = payload.model_dump(by_alias=True, exclude_unset=True)
    now = utcnow()
    update: Dict[str, Any] = {"$set": {"lastUpdated": now}, "$inc": {"version": 1}}
    update["$set"].update({f"generalConfig.{k}": v for k, v in changes.items()})
    doc = db[SETTINGS].find_one_and_update(
        {"type": "general"},
        update,
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info(
        "general settings v%s updated by %s: %s",
        doc.get("version"), (user or {}).get("username", "anonymous"), sorted(changes),
    )
    return {
        "success": True,
        "message": "Settings updated successfully",
        "data": GeneralSettings.model_validate(doc.get("generalConfig") or {}).model_dump(by_alias=True),
    }


@router.options("/image/logo")
def logo_preflight():
    return Response(status_code=204, headers={**LOGO_CORS_HEADERS, "Access-Control-Max-Age": "86400"})


@router.get("/image/logo")
def logo(db: Database = Depends(get_db)):
    url = load_general(db).logo_url
    if not url:
        return Response("Logo not configured", status_code=404, media_type="text/plain")
    try:
        content, content_type = fetch_logo(url)
    except httpx.HTTPError as e:
        logger.warning("logo fetch from %s failed: %s", url[:100], e)
        return Response("Logo not found or unavailable", status_code=404, media_type="text/plain")
    return Response(
        content=content,
        media_type=content_type,
        headers={
            **LOGO_CORS_HEADERS,
            "Cache-Control": "public, max-age=3600",
            "Cross-Origin-Resource-Policy": "cross-origin",
        },
    )
