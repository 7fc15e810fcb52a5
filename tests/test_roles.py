from bson import ObjectId

from auth import THEATER_STAFF
from conftest import add_user, auth_header
from database import PAGE_ACCESS
from roles import (
    BASIC_THEATER_ADMIN_PAGES,
    can_delete_role,
    create_default_theater_admin_role,
    has_page_access,
    role_store,
    validate_role_update,
)


def test_default_role_accepts_only_permission_updates():
    role = {"isDefault": True}

    ok = validate_role_update(role, {"permissions": [], "isActive": True})
    assert ok["canUpdate"] and ok["updateType"] == "permissions_only"

    blocked = validate_role_update(role, {"name": "Boss", "permissions": []})
    assert not blocked["canUpdate"]
    assert blocked["blockedFields"] == ["name"]
    assert blocked["allowedFields"] == ["permissions", "isActive"]
    assert blocked["providedFields"] == ["name", "permissions"]

    assert validate_role_update({"isDefault": False}, {"name": "Boss"})["updateType"] == "full"


def test_default_role_cannot_be_deleted():
    assert can_delete_role({"isDefault": True, "canDelete": False})["canDelete"] is False
    assert can_delete_role({"isDefault": False})["canDelete"] is True


def test_default_role_falls_back_to_basic_pages(db, theater_id):
    role = create_default_theater_admin_role(db, theater_id, "Galaxy")
    assert role["isDefault"] is True
    assert role["priority"] == 1
    assert len(role["permissions"]) == len(BASIC_THEATER_ADMIN_PAGES)
    assert "Galaxy" in role["description"]


def test_default_role_skips_super_admin_pages(db, theater_id):
    db[PAGE_ACCESS].insert_many([
        {"page": "orders", "pageName": "orders", "route": "/orders", "isActive": True},
        {"page": "theaters", "pageName": "theaters", "route": "/theaters", "isActive": True},
        {"page": "old", "pageName": "old", "route": "/old", "isActive": False},
    ])
    role = create_default_theater_admin_role(db, theater_id, "Galaxy")
    assert [p["pageName"] for p in role["permissions"]] == ["orders"]


def test_default_role_creation_is_idempotent(db, theater_id):
    first = create_default_theater_admin_role(db, theater_id, "Galaxy")
    second = create_default_theater_admin_role(db, theater_id, "Galaxy")
    assert first["_id"] == second["_id"]
    assert len(role_store(db).items(theater_id)) == 1


def test_update_default_role_over_http(client, db, theater_id, admin_headers):
    role = create_default_theater_admin_role(db, theater_id, "Galaxy")

    r = client.put(f"/api/roles/{role['_id']}", json={"name": "Renamed", "permissions": []}, headers=admin_headers)
    assert r.status_code == 403
    assert r.json()["code"] == "PROTECTED_ROLE"
    assert r.json()["blockedFields"] == ["name"]

    perms = [{"page": "orders", "pageName": "orders", "hasAccess": True, "route": "/orders"}]
    r = client.put(f"/api/roles/{role['_id']}", json={"permissions": perms}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["updateType"] == "permissions_only"
    assert r.json()["data"]["name"] == "Theater Admin"
    assert len(r.json()["data"]["permissions"]) == 1

    r = client.delete(f"/api/roles/{role['_id']}", headers=admin_headers)
    assert r.status_code == 403


def test_custom_role_lifecycle(client, theater_id, admin_headers):
    r = client.post(
        "/api/roles",
        json={"theaterId": str(theater_id), "name": "Cashier", "permissions": [{"page": "pos"}]},
        headers=admin_headers,
    )
    assert r.status_code == 201
    role_id = r.json()["data"]["id"]

    r = client.post("/api/roles", json={"theaterId": str(theater_id), "name": "cashier"}, headers=admin_headers)
    assert r.json()["code"] == "DUPLICATE_ROLE"

    r = client.put(f"/api/roles/{role_id}", json={"name": "Head Cashier", "priority": 5}, headers=admin_headers)
    assert r.json()["data"]["name"] == "Head Cashier"

    assert client.delete(f"/api/roles/{role_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/roles/{role_id}", headers=admin_headers).json()["code"] == "ALREADY_INACTIVE"
    assert client.patch(f"/api/roles/{role_id}/restore", headers=admin_headers).status_code == 200

    listing = client.get("/api/roles", params={"theaterId": str(theater_id)}, headers=admin_headers).json()
    assert listing["data"]["metadata"]["activeRoles"] == 1


def test_staff_cannot_manage_roles(client, theater_id):
    r = client.post(
        "/api/roles",
        json={"theaterId": str(theater_id), "name": "Cashier"},
        headers=auth_header(THEATER_STAFF, theater_id),
    )
    assert r.status_code == 403


def test_page_access_follows_role_permissions(db, theater_id):
    role = role_store(db).push(
        theater_id,
        {"name": "Cashier", "permissions": [{"page": "orders", "pageName": "orders", "hasAccess": True}]},
    )
    user = add_user(db, "cashier", theater_id=theater_id, roleId=role["_id"])
    claims = {"userId": str(user["_id"]), "role": THEATER_STAFF, "theaterId": str(theater_id)}

    assert has_page_access(db, claims, "orders")
    assert not has_page_access(db, claims, "reports")
    assert not has_page_access(db, {"userId": str(ObjectId()), "role": THEATER_STAFF}, "orders")
