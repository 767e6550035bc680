"""Tests for the JSON file persistence service and the store running on it."""

from __future__ import annotations

import importlib
import json
from pathlib import Path

import pytest

local_backend = importlib.import_module("qbuilder.local_backend")
persistence = importlib.import_module("qbuilder.persistence")
store_module = importlib.import_module("qbuilder.store")
models = importlib.import_module("qbuilder.models")


@pytest.fixture
def backend(tmp_path: Path):
    return local_backend.LocalBackend(tmp_path / "data" / "store.json")


def test_insert_assigns_ids_and_timestamps(backend) -> None:
    first = backend.insert("sections", {"name": "One", "order_index": 0})
    second = backend.insert("sections", {"name": "Two", "order_index": 1})

    assert (first["id"], second["id"]) == (1, 2)
    assert first["created_at"] and first["updated_at"]
    with backend.path.open("r", encoding="utf-8") as handle:
        stored = json.load(handle)
    assert [row["name"] for row in stored["sections"]] == ["One", "Two"]


def test_select_orders_and_limits(backend) -> None:
    for name, order in (("b", 1), ("c", 2), ("a", 0)):
        backend.insert("sections", {"name": name, "order_index": order})

    assert [row["name"] for row in backend.select("sections")] == ["a", "b", "c"]
    latest = backend.select("sections", descending=True, limit=1)
    assert [row["name"] for row in latest] == ["c"]


def test_update_unknown_record_raises(backend) -> None:
    with pytest.raises(persistence.PersistenceError):
        backend.update("questions", 7, {"text": "missing"})


def test_delete_many_and_upsert(backend) -> None:
    ids = [backend.insert("questions", {"text": str(n), "order_index": n})["id"] for n in range(3)]

    backend.delete_many("questions", ids[:2])
    backend.upsert("questions", [{"id": ids[2], "order_index": 9}, {"text": "new", "order_index": 1}])

    rows = backend.select("questions")
    assert [(row["text"], row["order_index"]) for row in rows] == [("new", 1), ("2", 9)]
    assert rows[0]["id"] == ids[2] + 1


def test_unknown_table_is_rejected(backend) -> None:
    with pytest.raises(persistence.PersistenceError):
        backend.select("answers")


def test_corrupt_file_raises_persistence_error(backend) -> None:
    backend.path.parent.mkdir(parents=True)
    backend.path.write_text("{not json", encoding="utf-8")

    with pytest.raises(persistence.PersistenceError):
        backend.select("sections")


def test_subscription_fires_until_released(backend) -> None:
    events = []
    subscription = backend.subscribe("sections", events.append)

    backend.insert("sections", {"name": "One", "order_index": 0})
    backend.insert("questions", {"text": "ignored", "order_index": 0})
    subscription.unsubscribe()
    subscription.unsubscribe()
    backend.insert("sections", {"name": "Two", "order_index": 1})

    assert events == ["sections"]


def test_store_round_trip_with_live_updates(backend) -> None:
    """Local writes trigger reloads without duplicating cached records."""

    store = store_module.QuestionnaireStore(backend)
    store.load()
    unsubscribe = store.subscribe_to_changes()

    section = store.create_section("General")
    parent = store.create_question(
        models.new_question_payload(section["id"], "Do you smoke?", "yesno")
    )
    child = store.create_question(
        models.new_question_payload(
            section["id"],
            "How many per day?",
            "number",
            parent_id=parent["id"],
            condition={"parent_value": "yes", "action": "show"},
        )
    )

    assert [q["id"] for q in store.state.questions] == [parent["id"], child["id"]]
    tree = store.tree
    assert tree[0]["questions"][0]["children"][0]["text"] == "How many per day?"

    store.delete_question(parent["id"])
    assert store.state.questions == ()
    assert backend.select("questions") == []

    unsubscribe()
    backend.insert("sections", {"name": "Unseen", "order_index": 5})
    assert [s["name"] for s in store.state.sections] == ["General"]


def test_delete_section_keeps_cache_consistent_without_cascade(backend) -> None:
    store = store_module.QuestionnaireStore(backend)
    section = store.create_section("Temp")
    store.create_question(models.new_question_payload(section["id"], "Q"))

    store.delete_section(section["id"])

    assert store.state.questions == ()
    assert len(backend.select("questions")) == 1
