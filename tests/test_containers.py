import pytest
from bson import ObjectId

from containers import ContainerStore
from errors import ApiError


@pytest.fixture
def store(db):
    return ContainerStore(db, "categories", "categoryList", "Categories", "Category")


def test_push_upserts_a_single_container(store, db, theater_id):
    store.push(theater_id, {"name": "Snacks"})
    store.push(theater_id, {"name": "Drinks"})

    docs = list(db["categories"].find({"theater": theater_id}))
    assert len(docs) == 1
    assert [c["name"] for c in docs[0]["categoryList"]] == ["Snacks", "Drinks"]
    assert docs[0]["metadata"] == {"totalCategories": 2, "activeCategories": 2, "inactiveCategories": 0}


def test_containers_are_scoped_per_theater(store, db, theater_id):
    store.push(theater_id, {"name": "Snacks"})
    store.push(ObjectId(), {"name": "Snacks"})
    assert db["categories"].count_documents({}) == 2
    assert len(store.items(theater_id)) == 1


def test_soft_delete_and_restore_are_not_repeatable(store, db, theater_id):
    item = store.push(theater_id, {"name": "Snacks"})

    store.deactivate(item["_id"])
    with pytest.raises(ApiError) as exc:
        store.deactivate(item["_id"])
    assert exc.value.code == "ALREADY_INACTIVE"
    assert store.find(theater_id)["metadata"]["inactiveCategories"] == 1

    store.restore(item["_id"])
    with pytest.raises(ApiError) as exc:
        store.restore(item["_id"])
    assert exc.value.code == "ALREADY_ACTIVE"
    assert store.find(theater_id)["metadata"] == {
        "totalCategories": 1,
        "activeCategories": 1,
        "inactiveCategories": 0,
    }


def test_update_sets_fields_in_place(store, theater_id):
    first = store.push(theater_id, {"name": "Snacks", "sortOrder": 0})
    second = store.push(theater_id, {"name": "Drinks", "sortOrder": 1})

    updated = store.update(second["_id"], {"name": "Beverages"})

    assert updated["name"] == "Beverages"
    assert updated["sortOrder"] == 1
    assert store.items(theater_id)[0]["name"] == "Snacks"
    assert store.items(theater_id)[0]["_id"] == first["_id"]


def test_remove_pulls_the_item(store, theater_id):
    keep = store.push(theater_id, {"name": "Snacks"})
    gone = store.push(theater_id, {"name": "Drinks"})

    store.remove(gone["_id"])

    assert [i["_id"] for i in store.items(theater_id)] == [keep["_id"]]
    assert store.find(theater_id)["metadata"]["totalCategories"] == 1
    with pytest.raises(ApiError) as exc:
        store.get_item(gone["_id"])
    assert exc.value.status_code == 404


def test_push_refuses_past_the_size_bound(db, theater_id):
    small = ContainerStore(db, "categories", "categoryList", "Categories", "Category", max_items=2)
    small.push(theater_id, {"name": "a"})
    small.push(theater_id, {"name": "b"})
    with pytest.raises(ApiError) as exc:
        small.push(theater_id, {"name": "c"})
    assert exc.value.code == "CONTAINER_FULL"
    assert len(small.items(theater_id)) == 2
