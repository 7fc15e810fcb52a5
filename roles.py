"""
Roles and page-access permissions.

Roles live in the theater's ``roles`` container. Every theater gets one
default "Theater Admin" role granting every registered page except the
super-admin pages; that role can have its permissions and active flag
changed but is otherwise protected.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database

from auth import SUPER_ADMIN, THEATER_ADMIN, current_user, is_admin, require_theater_access
from containers import ContainerStore
from database import PAGE_ACCESS, ROLES, USERS, get_db, oid, require_oid, to_str_id
from errors import ApiError
from schemas import RoleIn, RoleUpdate

logger = logging.getLogger(__name__)

RESTRICTED_PAGES = ("theaters", "add-theater", "user-management", "role-management")
ROLE_ALLOWED_FIELDS = ("permissions", "isActive")

BASIC_THEATER_ADMIN_PAGES = [
    ("dashboard", "/"),
    ("products", "/theater/:theaterId/products"),
    ("categories", "/theater/:theaterId/categories"),
    ("product-types", "/theater/:theaterId/product-types"),
    ("stock", "/theater/:theaterId/stock"),
    ("orders", "/theater/:theaterId/orders"),
    ("pos", "/theater/:theaterId/pos"),
    ("order-history", "/theater/:theaterId/order-history"),
    ("qr-management", "/theater/:theaterId/qr-management"),
    ("settings", "/theater/:theaterId/settings"),
    ("reports", "/theater/:theaterId/reports"),
]

router = APIRouter(prefix="/api/roles", tags=["roles"])


def role_store(db: Database) -> ContainerStore:
    return ContainerStore(db, ROLES, "roleList", "Roles", "Role")


# -----------------------------
# Permission synthesis
# -----------------------------
def basic_theater_admin_permissions() -> List[Dict[str, Any]]:
    return [{"page": p, "pageName": p, "hasAccess": True, "route": r} for p, r in BASIC_THEATER_ADMIN_PAGES]


def default_theater_admin_permissions(db: Database) -> List[Dict[str, Any]]:
    pages = list(db[PAGE_ACCESS].find({"isActive": True}))
    if not pages:
        logger.warning("page registry is empty, using basic theater admin permissions")
        return basic_theater_admin_permissions()
    return [
        {
            "page": p.get("page") or p.get("pageName"),
            "pageName": p.get("pageName"),
            "hasAccess": True,
            "route": p.get("route"),
        }
        for p in pages
        if p.get("pageName") not in RESTRICTED_PAGES
    ]


def create_default_theater_admin_role(db: Database, theater_id, theater_name: str) -> Dict[str, Any]:
    store = role_store(db)
    for role in store.items(theater_id):
        if role.get("isDefault"):
            return role

    permissions = default_theater_admin_permissions(db)
    role = store.push(
        theater_id,
        {
            "name": "Theater Admin",
            "description": (
                f"Default administrator role for {theater_name}. Full access to products, "
                "orders, stock and reports. Cannot be deleted or renamed."
            ),
            "permissions": permissions,
            "isGlobal": False,
            "priority": 1,
            "isDefault": True,
            "canDelete": False,
            "canEdit": False,
        },
    )
    logger.info("default Theater Admin role created for %s with %d pages", theater_id, len(permissions))
    return role


# -----------------------------
# Update / delete rules
# -----------------------------
def validate_role_update(role: Dict[str, Any], update_data: Dict[str, Any]) -> Dict[str, Any]:
    provided = list(update_data.keys())
    if not role.get("isDefault"):
        return {"canUpdate": True, "reason": None, "updateType": "full"}

    if provided and all(f in ROLE_ALLOWED_FIELDS for f in provided):
        return {"canUpdate": True, "reason": None, "updateType": "permissions_only"}

    return {
        "canUpdate": False,
        "reason": (
            "Default Theater Admin role is protected. Only page access permissions can be "
            "updated. Role name, description, and other properties cannot be modified."
        ),
        "updateType": "restricted",
        "allowedFields": list(ROLE_ALLOWED_FIELDS),
        "blockedFields": [f for f in provided if f not in ROLE_ALLOWED_FIELDS],
        "providedFields": provided,
    }


def can_delete_role(role: Dict[str, Any]) -> Dict[str, Any]:
    if role.get("isDefault") and not role.get("canDelete", False):
        return {
            "canDelete": False,
            "reason": "Cannot delete default Theater Admin role. This role is automatically created and protected.",
        }
    return {"canDelete": True, "reason": None}


def has_page_access(db: Database, user: Dict[str, Any], page: str) -> bool:
    if is_admin(user):
        return True
    user_doc = db[USERS].find_one({"_id": oid(user.get("userId"))})
    role_id = oid(user_doc.get("roleId")) if user_doc else None
    if role_id is None:
        return False
    container = role_store(db).find_by_item(role_id)
    if not container:
        return False
    for role in container.get("roleList", []):
        if role.get("_id") != role_id or not role.get("isActive", True):
            continue
        return any(
            p.get("hasAccess") and page in (p.get("page"), p.get("pageName"))
            for p in role.get("permissions", [])
        )
    return False


def require_page_access(page: str):
    def dependency(user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
        if not has_page_access(db, user, page):
            raise ApiError(403, f"Access to {page} denied", code="ACCESS_DENIED")
        return user

    return dependency


def _require_role_admin(user: Dict[str, Any], theater_id) -> None:
    if user.get("role") not in (SUPER_ADMIN, THEATER_ADMIN):
        raise ApiError(403, "Access denied", code="ACCESS_DENIED")
    require_theater_access(user, theater_id)


# -----------------------------
# Routes
# -----------------------------
@router.get("")
def list_roles(
    theater_id: str = Query(..., alias="theaterId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(theater_id, "theaterId")
    require_theater_access(user, _id)
    store = role_store(db)
    roles = store.items(_id, is_active=is_active)
    return {
        "success": True,
        "data": {"roles": to_str_id(roles), "metadata": store.metadata_for(store.find(_id))},
    }


@router.post("", status_code=201)
def create_role(payload: RoleIn, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    theater_id = oid(payload.theater_id)
    _require_role_admin(user, theater_id)
    store = role_store(db)
    if any(r.get("name", "").lower() == payload.name.lower() and r.get("isActive", True) for r in store.items(theater_id)):
        raise ApiError(400, "Role name already exists in this theater", code="DUPLICATE_ROLE")
    fields = payload.model_dump(by_alias=True, exclude={"theater_id"})
    role = store.push(theater_id, {**fields, "isGlobal": False, "isDefault": False, "canDelete": True, "canEdit": True})
    return {"success": True, "message": "Role created successfully", "data": to_str_id(role)}


@router.post("/default/{theater_id}")
def ensure_default_role(theater_id: str, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    _id = require_oid(theater_id, "theaterId")
    _require_role_admin(user, _id)
    role = create_default_theater_admin_role(db, _id, theater_id)
    return {"success": True, "data": to_str_id(role)}


@router.put("/{role_id}")
def update_role(
    role_id: str,
    payload: RoleUpdate,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(role_id, "roleId")
    store = role_store(db)
    container, role = store.get_item(_id)
    _require_role_admin(user, container["theater"])

    update_data = payload.model_dump(by_alias=True, exclude_unset=True)
    verdict = validate_role_update(role, update_data)
    if not verdict["canUpdate"]:
        logger.warning("blocked update of default role %s: %s", role_id, verdict["blockedFields"])
        raise ApiError(
            403,
            verdict["reason"],
            code="PROTECTED_ROLE",
            allowedFields=verdict["allowedFields"],
            blockedFields=verdict["blockedFields"],
            providedFields=verdict["providedFields"],
        )
    known = {f.alias or name for name, f in RoleUpdate.model_fields.items()}
    updated = store.update(_id, {k: v for k, v in update_data.items() if k in known})
    return {
        "success": True,
        "message": "Role updated successfully",
        "updateType": verdict["updateType"],
        "data": to_str_id(updated),
    }


@router.delete("/{role_id}")
def delete_role(
    role_id: str,
    permanent: bool = False,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(role_id, "roleId")
    store = role_store(db)
    container, role = store.get_item(_id)
    _require_role_admin(user, container["theater"])

    verdict = can_delete_role(role)
    if not verdict["canDelete"]:
        raise ApiError(403, verdict["reason"], code="PROTECTED_ROLE")
    if permanent:
        store.remove(_id)
        return {"success": True, "message": "Role permanently deleted"}
    role = store.deactivate(_id)
    return {"success": True, "message": "Role deactivated", "data": to_str_id(role)}


@router.patch("/{role_id}/restore")
def restore_role(role_id: str, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    _id = require_oid(role_id, "roleId")
    store = role_store(db)
    container, _ = store.get_item(_id)
    _require_role_admin(user, container["theater"])
    role = store.restore(_id)
    return {"success": True, "message": "Role restored", "data": to_str_id(role)}
