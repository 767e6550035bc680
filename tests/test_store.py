"""Tests for the questionnaire store against a recording fake service."""

from __future__ import annotations

import importlib
import threading

import pytest

store_module = importlib.import_module("qbuilder.store")
persistence = importlib.import_module("qbuilder.persistence")
tree_module = importlib.import_module("qbuilder.tree")


class DummySubscription:
    def __init__(self, service, table):
        self.service = service
        self.table = table

    def unsubscribe(self):
        self.service.unsubscribed.append(self.table)


class DummyService:
    """In-memory service recording every call made by the store."""

    def __init__(self, sections=None, questions=None):
        self.tables = {
            "sections": [dict(row) for row in sections or []],
            "questions": [dict(row) for row in questions or []],
        }
        self.calls = []
        self.fail_on = set()
        self.callbacks = {}
        self.unsubscribed = []
        self._next_id = 100
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)
        if call[0] in self.fail_on or (call[0], call[1]) in self.fail_on:
            raise persistence.PersistenceError(f"{call[0]} failed", table=call[1], operation=call[0])

    def select(self, table, *, order_by="order_index", descending=False, limit=None):
        self._record("select", table)
        rows = sorted(self.tables[table], key=lambda row: row.get(order_by, 0), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [dict(row) for row in rows]

    def insert(self, table, row):
        self._record("insert", table, dict(row))
        self._next_id += 1
        record = dict(row, id=self._next_id, created_at="now")
        self.tables[table].append(record)
        return dict(record)

    def update(self, table, record_id, changes):
        self._record("update", table, record_id, dict(changes))
        for row in self.tables[table]:
            if row["id"] == record_id:
                row.update(changes)
                return dict(row)
        raise persistence.PersistenceError("missing", table=table, operation="update")

    def delete(self, table, record_id):
        self._record("delete", table, record_id)
        self.tables[table] = [row for row in self.tables[table] if row["id"] != record_id]

    def delete_many(self, table, ids):
        ids = list(ids)
        self._record("delete_many", table, ids)
        self.tables[table] = [row for row in self.tables[table] if row["id"] not in ids]

    def upsert(self, table, rows):
        self._record("upsert", table, [dict(row) for row in rows])
        for row in rows:
            for existing in self.tables[table]:
                if existing["id"] == row["id"]:
                    existing.update(row)
        return rows

    def subscribe(self, table, callback):
        self._record("subscribe", table)
        self.callbacks[table] = callback
        return DummySubscription(self, table)


SECTIONS = [
    {"id": 1, "name": "B", "order_index": 1},
    {"id": 2, "name": "A", "order_index": 0},
]
QUESTIONS = [
    {"id": 10, "section_id": 1, "parent_id": None, "order_index": 0, "text": "Root"},
    {"id": 11, "section_id": 1, "parent_id": 10, "order_index": 0, "text": "Child"},
    {"id": 12, "section_id": 1, "parent_id": None, "order_index": 1, "text": "Second"},
    {"id": 13, "section_id": 1, "parent_id": 11, "order_index": 0, "text": "Grandchild"},
    {"id": 20, "section_id": 2, "parent_id": None, "order_index": 0, "text": "Other"},
]


@pytest.fixture
def service():
    return DummyService(SECTIONS, QUESTIONS)


@pytest.fixture
def store(service):
    instance = store_module.QuestionnaireStore(service)
    instance.load()
    service.calls.clear()
    return instance


def test_load_populates_state_and_tree(service) -> None:
    store = store_module.QuestionnaireStore(service)
    seen = []
    store.subscribe(seen.append)

    state = store.load()

    assert [s["id"] for s in state.sections] == [2, 1]
    assert len(state.questions) == len(QUESTIONS)
    assert state.loading is False and state.error is None
    assert seen[0].sections == ()
    assert seen[1].loading is True
    assert [section["name"] for section in store.tree] == ["A", "B"]
    section_b = store.tree[1]
    assert [q["id"] for q in section_b["questions"]] == [10, 12]
    assert [q["id"] for q in section_b["questions"][0]["children"]] == [11]


def test_load_failure_keeps_previous_cache(store, service) -> None:
    previous = store.state
    service.fail_on.add(("select", "questions"))

    with pytest.raises(persistence.PersistenceError):
        store.load()

    state = store.state
    assert state.sections == previous.sections
    assert state.questions == previous.questions
    assert state.loading is False
    assert state.error == "select failed"


def test_reload_is_idempotent(store) -> None:
    first = store.state
    store.load()
    store.load()

    assert store.state.questions == first.questions
    assert len(store.state.sections) == 2


def test_create_section_uses_next_order_index(store, service) -> None:
    record = store.create_section("C", "Third")

    assert service.calls[0] == ("select", "sections")
    inserted = service.calls[1][2]
    assert inserted["order_index"] == 2
    assert inserted["name"] == "C"
    assert inserted["description"] == "Third"
    assert "updated_at" in inserted
    assert store.state.sections[-1] == record


def test_create_first_section_starts_at_zero() -> None:
    service = DummyService()
    store = store_module.QuestionnaireStore(service)

    store.create_section("Only")

    assert service.calls[1][2]["order_index"] == 0


def test_update_section_replaces_cached_row(store) -> None:
    record = store.update_section(1, {"name": "Renamed"})

    assert record["name"] == "Renamed"
    assert next(s for s in store.state.sections if s["id"] == 1)["name"] == "Renamed"


def test_delete_section_drops_its_questions(store, service) -> None:
    store.delete_section(1)

    assert service.calls == [("delete", "sections", 1)]
    assert [s["id"] for s in store.state.sections] == [2]
    assert [q["id"] for q in store.state.questions] == [20]


def test_create_question_appends_and_closes_form(store) -> None:
    store.select_question({"section_id": 2, "parent_id": None}, "create")

    record = store.create_question({"section_id": 2, "text": "New", "type": "text", "order_index": 1})

    state = store.state
    assert state.questions[-1] == record
    assert state.selected_question is None
    assert state.edit_mode is None


def test_update_question_ignores_children_and_closes_form(store, service) -> None:
    node = tree_module.find_question_by_id(store.tree[1]["questions"], 10)
    store.select_question(node, "edit")

    store.update_question(10, dict(node, text="Edited"))

    sent = service.calls[0][3]
    assert "children" not in sent
    assert next(q for q in store.state.questions if q["id"] == 10)["text"] == "Edited"
    assert store.state.edit_mode is None


def test_delete_question_targets_whole_subtree_in_one_call(store, service) -> None:
    deleted = store.delete_question(10)

    assert sorted(deleted) == [10, 11, 13]
    assert [call[0] for call in service.calls] == ["delete_many"]
    assert sorted(service.calls[0][2]) == [10, 11, 13]
    assert sorted(q["id"] for q in store.state.questions) == [12, 20]


def test_failed_mutation_leaves_cache_untouched(store, service) -> None:
    before = store.state
    service.fail_on.add("delete_many")

    with pytest.raises(persistence.PersistenceError):
        store.delete_question(10)

    assert store.state == before


def test_reorder_questions_updates_sequentially_then_reloads(store, service) -> None:
    store.reorder_questions(1, [12, 10])

    updates = [call for call in service.calls if call[0] == "update"]
    assert [(call[2], call[3]["order_index"]) for call in updates] == [(12, 0), (10, 1)]
    assert sorted(service.calls[-2:]) == [("select", "questions"), ("select", "sections")]
    assert [q["id"] for q in store.tree[1]["questions"]] == [12, 10]


def test_reorder_sections_uses_single_upsert(store, service) -> None:
    store.reorder_sections([1, 2])

    upserts = [call for call in service.calls if call[0] == "upsert"]
    assert len(upserts) == 1
    assert [(row["id"], row["order_index"]) for row in upserts[0][2]] == [(1, 0), (2, 1)]
    assert [section["id"] for section in store.tree] == [1, 2]


def test_move_question_reparents_and_reloads(store, service) -> None:
    store.move_question(12, 10, 1)

    assert service.calls[0][:3] == ("update", "questions", 12)
    assert service.calls[0][3]["parent_id"] == 10
    root = tree_module.find_question_by_id(store.tree[1]["questions"], 10)
    assert [child["id"] for child in root["children"]] == [11, 12]


def test_move_question_below_itself_is_rejected(store, service) -> None:
    with pytest.raises(tree_module.TreeStructureError):
        store.move_question(10, 13, 1)

    assert service.calls == []


def test_move_question_to_other_section_carries_its_subtree(store, service) -> None:
    store.move_question(10, None, 2)

    updates = [call for call in service.calls if call[0] == "update"]
    assert updates[0][2] == 10
    assert updates[0][3]["section_id"] == 2 and updates[0][3]["parent_id"] is None
    assert sorted(call[2] for call in updates[1:]) == [11, 13]
    assert all(set(call[3]) == {"section_id", "updated_at"} for call in updates[1:])

    other = store.tree[0]
    moved = tree_module.find_question_by_id(other["questions"], 10)
    assert [child["id"] for child in moved["children"]] == [11]
    assert [child["id"] for child in moved["children"][0]["children"]] == [13]
    assert [q["id"] for q in store.tree[1]["questions"]] == [12]
    tree_module.validate_question_graph(store.state.questions)


def test_move_question_under_parent_from_another_section_is_rejected(store, service) -> None:
    with pytest.raises(tree_module.TreeStructureError):
        store.move_question(20, 10, 2)
    with pytest.raises(tree_module.TreeStructureError):
        store.move_question(20, 99, 2)

    assert service.calls == []


def test_select_question_is_local_only(store, service) -> None:
    state = store.select_question({"id": 10}, "edit")

    assert state.selected_question == {"id": 10}
    assert state.edit_mode == "edit"
    assert service.calls == []
    with pytest.raises(ValueError):
        store.select_question(None, "delete")


def test_subscribers_can_unsubscribe(store) -> None:
    seen = []
    unsubscribe = store.subscribe(seen.append)
    store.select_question(None)
    unsubscribe()
    store.select_question(None)

    assert len(seen) == 2


def test_change_feed_reloads_and_releases_both_tables(store, service) -> None:
    unsubscribe = store.subscribe_to_changes()
    assert set(service.callbacks) == {"sections", "questions"}

    service.tables["sections"].append({"id": 3, "name": "External", "order_index": 5})
    service.callbacks["sections"]("sections")

    assert [s["name"] for s in store.tree][-1] == "External"

    unsubscribe()
    assert sorted(service.unsubscribed) == ["questions", "sections"]


def test_change_feed_failure_is_recorded_not_raised(store, service) -> None:
    store.subscribe_to_changes()
    service.fail_on.add("select")

    service.callbacks["questions"]("questions")

    assert store.state.error == "select failed"
    assert store.state.loading is False
