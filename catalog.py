"""
Catalogue routes: categories, product types and products.

Categories and product types share one router shape built by
``crud_router``; products add pricing, inventory and a category check.
"""
import logging
import re
from typing import Any, Dict, Optional, Type

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from pymongo.database import Database

from auth import current_user, optional_user, require_theater_access
from containers import ContainerStore
from database import CATEGORIES, PRODUCT_TYPES, PRODUCTS, get_db, oid, require_oid, to_str_id
from errors import ApiError
from schemas import CategoryIn, CategoryUpdate, ProductIn, ProductTypeIn, ProductTypeUpdate, ProductUpdate

logger = logging.getLogger(__name__)


def category_store(db: Database) -> ContainerStore:
    return ContainerStore(db, CATEGORIES, "categoryList", "Categories", "Category")


def product_type_store(db: Database) -> ContainerStore:
    return ContainerStore(db, PRODUCT_TYPES, "productTypeList", "ProductTypes", "Product type")


def product_store(db: Database) -> ContainerStore:
    return ContainerStore(db, PRODUCTS, "productList", "Products", "Product")


def _reject_duplicate_name(store: ContainerStore, theater_id, name: str, skip_id=None) -> None:
    for item in store.items(theater_id, is_active=True):
        if item.get("_id") != skip_id and item.get("name", "").lower() == name.lower():
            raise ApiError(400, f"{store.noun} name already exists in this theater", code="DUPLICATE_NAME")


def crud_router(
    prefix: str,
    make_store,
    create_model: Type[BaseModel],
    update_model: Type[BaseModel],
    result_key: str,
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[result_key])

    @router.get("")
    def list_items(
        theater_id: str = Query(..., alias="theaterId"),
        is_active: Optional[bool] = Query(None, alias="isActive"),
        db: Database = Depends(get_db),
    ):
        _id = require_oid(theater_id, "theaterId")
        store = make_store(db)
        container = store.find(_id)
        return {
            "success": True,
            "data": {
                result_key: to_str_id(store.items(_id, is_active=is_active)),
                "metadata": store.metadata_for(container),
            },
        }

    @router.post("", status_code=201)
    def create_item(
        payload: create_model,
        user: Dict[str, Any] = Depends(current_user),
        db: Database = Depends(get_db),
    ):
        theater_id = oid(payload.theater_id)
        require_theater_access(user, theater_id)
        store = make_store(db)
        _reject_duplicate_name(store, theater_id, payload.name)
        item = store.push(theater_id, payload.model_dump(by_alias=True, exclude={"theater_id"}))
        return {"success": True, "message": f"{store.noun} created successfully", "data": to_str_id(item)}

    @router.put("/{item_id}")
    def update_item(
        item_id: str,
        payload: update_model,
        user: Dict[str, Any] = Depends(current_user),
        db: Database = Depends(get_db),
    ):
        _id = require_oid(item_id, "id")
        store = make_store(db)
        container, _ = store.get_item(_id)
        require_theater_access(user, container["theater"])
        fields = payload.model_dump(by_alias=True, exclude_unset=True)
        if fields.get("name"):
            _reject_duplicate_name(store, container["theater"], fields["name"], skip_id=_id)
        item = store.update(_id, fields)
        return {"success": True, "message": f"{store.noun} updated successfully", "data": to_str_id(item)}

    @router.delete("/{item_id}")
    def delete_item(
        item_id: str,
        permanent: bool = False,
        user: Dict[str, Any] = Depends(current_user),
        db: Database = Depends(get_db),
    ):
        _id = require_oid(item_id, "id")
        store = make_store(db)
        container, _ = store.get_item(_id)
        require_theater_access(user, container["theater"])
        if permanent:
            store.remove(_id)
            return {"success": True, "message": f"{store.noun} permanently deleted"}
        item = store.deactivate(_id)
        return {"success": True, "message": f"{store.noun} deactivated", "data": to_str_id(item)}

    @router.patch("/{item_id}/restore")
    def restore_item(
        item_id: str,
        user: Dict[str, Any] = Depends(current_user),
        db: Database = Depends(get_db),
    ):
        _id = require_oid(item_id, "id")
        store = make_store(db)
        container, _ = store.get_item(_id)
        require_theater_access(user, container["theater"])
        item = store.restore(_id)
        return {"success": True, "message": f"{store.noun} restored", "data": to_str_id(item)}

    return router


categories_router = crud_router(
    "/api/theater-categories", category_store, CategoryIn, CategoryUpdate, "categories"
)
product_types_router = crud_router(
    "/api/theater-product-types", product_type_store, ProductTypeIn, ProductTypeUpdate, "productTypes"
)


# -----------------------------
# Products
# -----------------------------
products_router = APIRouter(prefix="/api/theater-products", tags=["products"])


def _product_fields(db: Database, theater_id, fields: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(fields)
    refs = (
        ("categoryId", category_store(db), "INVALID_CATEGORY"),
        ("productTypeId", product_type_store(db), "INVALID_PRODUCT_TYPE"),
    )
    for key, store, code in refs:
        if out.get(key) is None:
            continue
        ref = oid(out[key])
        if not any(i.get("_id") == ref for i in store.items(theater_id)):
            raise ApiError(400, f"{store.noun} does not belong to this theater", code=code)
        out[key] = ref
    return out


@products_router.get("")
def list_products(
    theater_id: str = Query(..., alias="theaterId"),
    category_id: Optional[str] = Query(None, alias="categoryId"),
    q: Optional[str] = Query(None, description="Search by name or description"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(theater_id, "theaterId")
    store = product_store(db)
    # anonymous callers (the QR menu) only ever see sellable products
    if user is None:
        is_active = True
    products = store.items(_id, is_active=is_active)
    if category_id:
        cat = oid(category_id)
        products = [p for p in products if p.get("categoryId") == cat]
    if q:
        pattern = re.compile(re.escape(q), re.IGNORECASE)
        products = [p for p in products if pattern.search(p.get("name", "")) or pattern.search(p.get("description", ""))]
    return {
        "success": True,
        "data": {"products": to_str_id(products), "metadata": store.metadata_for(store.find(_id))},
    }


@products_router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    _id = require_oid(product_id, "productId")
    _, product = product_store(db).get_item(_id)
    return {"success": True, "data": to_str_id(product)}


@products_router.post("", status_code=201)
def create_product(payload: ProductIn, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    theater_id = oid(payload.theater_id)
    require_theater_access(user, theater_id)
    store = product_store(db)
    _reject_duplicate_name(store, theater_id, payload.name)
    fields = _product_fields(db, theater_id, payload.model_dump(by_alias=True, exclude={"theater_id"}))
    product = store.push(theater_id, fields)
    return {"success": True, "message": "Product created successfully", "data": to_str_id(product)}


@products_router.put("/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(product_id, "productId")
    store = product_store(db)
    container, _ = store.get_item(_id)
    theater_id = container["theater"]
    require_theater_access(user, theater_id)
    fields = payload.model_dump(by_alias=True, exclude_unset=True)
    if fields.get("name"):
        _reject_duplicate_name(store, theater_id, fields["name"], skip_id=_id)
    product = store.update(_id, _product_fields(db, theater_id, fields))
    return {"success": True, "message": "Product updated successfully", "data": to_str_id(product)}


@products_router.delete("/{product_id}")
def delete_product(
    product_id: str,
    permanent: bool = False,
    user: Dict[str, Any] = Depends(current_user),
    db: Database = Depends(get_db),
):
    _id = require_oid(product_id, "productId")
    store = product_store(db)
    container, _ = store.get_item(_id)
    require_theater_access(user, container["theater"])
    if permanent:
        store.remove(_id)
        return {"success": True, "message": "Product permanently deleted"}
    product = store.deactivate(_id)
    return {"success": True, "message": "Product deactivated", "data": to_str_id(product)}


@products_router.patch("/{product_id}/restore")
def restore_product(product_id: str, user: Dict[str, Any] = Depends(current_user), db: Database = Depends(get_db)):
    _id = require_oid(product_id, "productId")
    store = product_store(db)
    container, _ = store.get_item(_id)
    require_theater_access(user, container["theater"])
    product = store.restore(_id)
    return {"success": True, "message": "Product restored", "data": to_str_id(product)}
