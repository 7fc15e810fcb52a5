import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import SUPER_ADMIN, THEATER_ADMIN, THEATER_STAFF, hash_password, issue_token
from catalog import category_store, product_store
from database import USERS, get_db
from main import app


@pytest.fixture
def db():
    return mongomock.MongoClient()["theater_canteen_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def theater_id():
    return ObjectId()


def auth_header(role=THEATER_ADMIN, theater_id=None, user_id=None, username="admin"):
    token = issue_token({"_id": user_id or ObjectId(), "username": username, "role": role, "theaterId": theater_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(theater_id):
    return auth_header(THEATER_ADMIN, theater_id)


@pytest.fixture
def super_headers():
    return auth_header(SUPER_ADMIN, username="root")


def add_user(db, username, role=THEATER_STAFF, theater_id=None, password="secret", **extra):
    doc = {
        "username": username,
        "passwordHash": hash_password(password),
        "role": role,
        "theaterId": theater_id,
        "isActive": True,
        **extra,
    }
    doc["_id"] = db[USERS].insert_one(doc).inserted_id
    return doc


def add_category(db, theater_id, name="Snacks"):
    return category_store(db).push(theater_id, {"name": name, "description": "", "sortOrder": 0})


def add_product(db, theater_id, name, price, stock=10, track_stock=True, category_id=None, **extra):
    return product_store(db).push(
        theater_id,
        {
            "name": name,
            "description": "",
            "categoryId": category_id,
            "pricing": {"basePrice": price, "currency": "INR"},
            "inventory": {"currentStock": stock, "trackStock": track_stock, "minStock": 0, "unit": "piece"},
            "isAvailable": True,
            **extra,
        },
    )


def product_stock(db, product_id):
    _, product = product_store(db).get_item(product_id)
    return product["inventory"]["currentStock"]
