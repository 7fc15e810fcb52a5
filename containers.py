"""
Theater-scoped container documents.

Each entity type keeps one document per theater with an embedded array of
items, e.g. ``{"theater": ObjectId, "categoryList": [...], "metadata": {...}}``.
``ContainerStore`` wraps the mechanical operations every CRUD router needs:
lazy upsert on first insert, positional updates, soft delete / restore,
permanent removal and the metadata recount that follows each write.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from config import settings
from database import utcnow
from errors import ApiError

logger = logging.getLogger(__name__)


class ContainerStore:
    def __init__(
        self,
        db: Database,
        collection: str,
        list_field: str,
        label: str,
        noun: str,
        max_items: Optional[int] = None,
    ):
        self.collection = db[collection]
        self.list_field = list_field
        self.label = label
        self.noun = noun
        self.max_items = max_items if max_items is not None else settings.max_container_items

    # -----------------------------
    # Reads
    # -----------------------------
    def find(self, theater_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"theater": theater_id})

    def find_by_item(self, item_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({f"{self.list_field}._id": item_id})

    def items(self, theater_id: ObjectId, is_active: Optional[bool] = None) -> list:
        container = self.find(theater_id)
        items = list(container.get(self.list_field, [])) if container else []
        if is_active is not None:
            items = [i for i in items if bool(i.get("isActive", True)) == is_active]
        return items

    def get_item(self, item_id: ObjectId) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        container = self.find_by_item(item_id)
        if not container:
            raise ApiError(404, f"{self.noun} not found", code="NOT_FOUND")
        for item in container.get(self.list_field, []):
            if item.get("_id") == item_id:
                return container, item
        raise ApiError(404, f"{self.noun} not found", code="NOT_FOUND")

    def empty_metadata(self) -> Dict[str, int]:
        return {f"total{self.label}": 0, f"active{self.label}": 0, f"inactive{self.label}": 0}

    def metadata_for(self, container: Optional[Dict[str, Any]]) -> Dict[str, int]:
        if not container:
            return self.empty_metadata()
        items = container.get(self.list_field, [])
        active = sum(1 for i in items if i.get("isActive", True))
        return {
            f"total{self.label}": len(items),
            f"active{self.label}": active,
            f"inactive{self.label}": len(items) - active,
        }

    # -----------------------------
    # Writes
    # -----------------------------
    def push(self, theater_id: ObjectId, item: Dict[str, Any]) -> Dict[str, Any]:
        existing = self.find(theater_id)
        if existing and len(existing.get(self.list_field, [])) >= self.max_items:
            raise ApiError(
                400,
                f"{self.noun} limit of {self.max_items} reached for this theater",
                code="CONTAINER_FULL",
            )

        now = utcnow()
        doc = {"_id": ObjectId(), "isActive": True, **item, "createdAt": now, "updatedAt": now}
        container = self.collection.find_one_and_update(
            {"theater": theater_id},
            {
                "$push": {self.list_field: doc},
                "$set": {"updatedAt": now},
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        self._store_metadata(theater_id, container)
        logger.info("%s %s added for theater %s", self.noun, doc["_id"], theater_id)
        return container[self.list_field][-1]

    def update(self, item_id: ObjectId, fields: Dict[str, Any]) -> Dict[str, Any]:
        container, _ = self.get_item(item_id)
        now = utcnow()
        update = {f"{self.list_field}.$.{k}": v for k, v in fields.items()}
        update[f"{self.list_field}.$.updatedAt"] = now
        update["updatedAt"] = now
        self.collection.update_one(
            {"_id": container["_id"], f"{self.list_field}._id": item_id},
            {"$set": update},
        )
        container = self.collection.find_one({"_id": container["_id"]})
        if "isActive" in fields:
            self._store_metadata(container["theater"], container)
        return self._pick(container, item_id)

    def deactivate(self, item_id: ObjectId) -> Dict[str, Any]:
        _, item = self.get_item(item_id)
        if not item.get("isActive", True):
            raise ApiError(400, f"{self.noun} is already inactive", code="ALREADY_INACTIVE")
        return self.update(item_id, {"isActive": False})

    def restore(self, item_id: ObjectId) -> Dict[str, Any]:
        _, item = self.get_item(item_id)
        if item.get("isActive", True):
            raise ApiError(400, f"{self.noun} is already active", code="ALREADY_ACTIVE")
        return self.update(item_id, {"isActive": True})

    def remove(self, item_id: ObjectId) -> Dict[str, Any]:
        container, item = self.get_item(item_id)
        self.collection.update_one(
            {"_id": container["_id"]},
            {"$pull": {self.list_field: {"_id": item_id}}, "$set": {"updatedAt": utcnow()}},
        )
        container = self.collection.find_one({"_id": container["_id"]})
        self._store_metadata(container["theater"], container)
        logger.info("%s %s permanently removed", self.noun, item_id)
        return item

    def _store_metadata(self, theater_id: ObjectId, container: Dict[str, Any]) -> None:
        metadata = self.metadata_for(container)
        self.collection.update_one({"theater": theater_id}, {"$set": {"metadata": metadata}})
        container["metadata"] = metadata

    def _pick(self, container: Dict[str, Any], item_id: ObjectId) -> Dict[str, Any]:
        for item in container.get(self.list_field, []):
            if item.get("_id") == item_id:
                return item
        raise ApiError(404, f"{self.noun} not found", code="NOT_FOUND")
