"""Stateful questionnaire store sitting between the UI and persistence.

The store caches the flat ``sections`` and ``questions`` collections, performs
every write through a :class:`~qbuilder.persistence.PersistenceService`, and
publishes immutable :class:`StoreState` snapshots to its observers. The nested
tree is never stored; it is rebuilt from the flat collections on demand.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from qbuilder.models import (
    EDIT_MODES,
    QUESTIONS_TABLE,
    SECTIONS_TABLE,
    next_order_index,
    utc_timestamp,
)
from qbuilder.persistence import PersistenceError, PersistenceService
from qbuilder.tree import (
    TreeStructureError,
    build_questionnaire_tree,
    collect_descendant_ids,
    is_ancestor,
)

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Listener = Callable[["StoreState"], None]

UNKNOWN_ERROR_MESSAGE = "Unknown error"


def _merge_record(records: Tuple[Record, ...], record: Record) -> Tuple[Record, ...]:
    """Replace the entry sharing ``record``'s id, or append ``record``."""

    record_id = record.get("id")
    if any(existing.get("id") == record_id for existing in records):
        return tuple(record if existing.get("id") == record_id else existing for existing in records)
    return records + (record,)


@dataclass(frozen=True)
class StoreState:
    """Snapshot of everything the editor needs to render."""

    sections: Tuple[Record, ...] = ()
    questions: Tuple[Record, ...] = ()
    loading: bool = False
    error: Optional[str] = None
    selected_question: Optional[Record] = None
    edit_mode: Optional[str] = None


class QuestionnaireStore:
    """Owns the cached questionnaire state and its persistence round-trips."""

    def __init__(self, service: PersistenceService) -> None:
        self.service = service
        self._state = StoreState()
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    # -- observers -----------------------------------------------------

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def tree(self) -> List[Record]:
        """The nested section/question tree derived from the current state."""

        state = self._state
        return build_questionnaire_tree(state.sections, state.questions)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and call it with the current state.

        Returns a callable that removes the listener again.
        """

        with self._lock:
            self._listeners.append(listener)
        listener(self._state)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _update(self, transform: Callable[[StoreState], StoreState]) -> StoreState:
        with self._lock:
            self._state = transform(self._state)
            state = self._state
            listeners = list(self._listeners)
        for listener in listeners:
            listener(state)
        return state

    # -- loading -------------------------------------------------------

    def load(self) -> StoreState:
        """Replace the cache with the service's current sections and questions."""

        self._update(lambda state: replace(state, loading=True, error=None))

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="qbuilder-load") as pool:
            sections_future = pool.submit(self.service.select, SECTIONS_TABLE)
            questions_future = pool.submit(self.service.select, QUESTIONS_TABLE)
            try:
                sections = sections_future.result()
                questions = questions_future.result()
            except Exception as error:
                message = str(error) or UNKNOWN_ERROR_MESSAGE
                logger.error("Loading questionnaire failed: %s", message)
                self._update(lambda state: replace(state, loading=False, error=message))
                raise

        logger.info("Loaded %d sections and %d questions", len(sections), len(questions))
        return self._update(
            lambda state: replace(
                state,
                sections=tuple(sections or ()),
                questions=tuple(questions or ()),
                loading=False,
            )
        )

    # -- sections ------------------------------------------------------

    def create_section(self, name: str, description: Optional[str] = None) -> Record:
        """Create a section after the current last one."""

        latest = self.service.select(SECTIONS_TABLE, descending=True, limit=1)
        record = self.service.insert(
            SECTIONS_TABLE,
            {
                "name": name,
                "description": description,
                "order_index": next_order_index(latest),
                "updated_at": utc_timestamp(),
            },
        )
        self._update(lambda state: replace(state, sections=_merge_record(state.sections, record)))
        return record

    def update_section(self, section_id: int, changes: Mapping[str, Any]) -> Record:
        """Apply a partial update to a section."""

        payload = dict(changes)
        payload["updated_at"] = utc_timestamp()
        record = self.service.update(SECTIONS_TABLE, section_id, payload)
        self._update(
            lambda state: replace(
                state,
                sections=tuple(
                    record if section.get("id") == section_id else section
                    for section in state.sections
                ),
            )
        )
        return record

    def delete_section(self, section_id: int) -> None:
        """Delete a section and drop its questions from the cache."""

        self.service.delete(SECTIONS_TABLE, section_id)
        self._update(
            lambda state: replace(
                state,
                sections=tuple(s for s in state.sections if s.get("id") != section_id),
                questions=tuple(
                    q for q in state.questions if q.get("section_id") != section_id
                ),
            )
        )

    def reorder_sections(self, ordered_ids: Sequence[int]) -> StoreState:
        """Persist a new section order in one batch and reload."""

        timestamp = utc_timestamp()
        rows = [
            {"id": section_id, "order_index": index, "updated_at": timestamp}
            for index, section_id in enumerate(ordered_ids)
        ]
        self.service.upsert(SECTIONS_TABLE, rows)
        return self.load()

    # -- questions -----------------------------------------------------

    def create_question(self, question: Mapping[str, Any]) -> Record:
        """Insert a question and close the edit form."""

        payload = dict(question)
        payload["updated_at"] = utc_timestamp()
        record = self.service.insert(QUESTIONS_TABLE, payload)
        self._update(
            lambda state: replace(
                state,
                questions=_merge_record(state.questions, record),
                selected_question=None,
                edit_mode=None,
            )
        )
        return record

    def update_question(self, question_id: int, changes: Mapping[str, Any]) -> Record:
        """Apply a partial update to a question and close the edit form."""

        payload = dict(changes)
        payload.pop("children", None)
        payload["updated_at"] = utc_timestamp()
        record = self.service.update(QUESTIONS_TABLE, question_id, payload)
        self._update(
            lambda state: replace(
                state,
                questions=tuple(
                    record if question.get("id") == question_id else question
                    for question in state.questions
                ),
                selected_question=None,
                edit_mode=None,
            )
        )
        return record

    def delete_question(self, question_id: int) -> List[int]:
        """Delete a question together with all of its descendants.

        Returns the ids that were deleted.
        """

        targets = collect_descendant_ids(self._state.questions, question_id)
        self.service.delete_many(QUESTIONS_TABLE, targets)
        removed = set(targets)
        self._update(
            lambda state: replace(
                state,
                questions=tuple(q for q in state.questions if q.get("id") not in removed),
                selected_question=None,
            )
        )
        return targets

    def reorder_questions(self, section_id: int, ordered_ids: Sequence[int]) -> StoreState:
        """Give ``ordered_ids`` consecutive order indexes, one request each, then reload."""

        logger.debug("Reordering %d questions in section %s", len(ordered_ids), section_id)
        for index, question_id in enumerate(ordered_ids):
            self.service.update(
                QUESTIONS_TABLE,
                question_id,
                {"order_index": index, "updated_at": utc_timestamp()},
            )
        return self.load()

    def move_question(
        self, question_id: int, new_parent_id: Optional[int], new_section_id: int
    ) -> StoreState:
        """Re-parent a question (and its subtree) and reload.

        The new parent must live in ``new_section_id``. When the section
        changes, every descendant follows the moved question into it.
        """

        questions = self._state.questions
        if new_parent_id is not None:
            parent = next((q for q in questions if q.get("id") == new_parent_id), None)
            if parent is None:
                raise TreeStructureError(f"Parent question {new_parent_id} does not exist.")
            if parent.get("section_id") != new_section_id:
                raise TreeStructureError(
                    f"Parent question {new_parent_id} is not in section {new_section_id}."
                )
            if is_ancestor(questions, question_id, new_parent_id):
                raise TreeStructureError(
                    f"Question {question_id} cannot be moved below itself."
                )

        timestamp = utc_timestamp()
        self.service.update(
            QUESTIONS_TABLE,
            question_id,
            {
                "parent_id": new_parent_id,
                "section_id": new_section_id,
                "updated_at": timestamp,
            },
        )
        descendants = collect_descendant_ids(questions, question_id)[1:]
        moved = [
            q.get("id")
            for q in questions
            if q.get("id") in descendants and q.get("section_id") != new_section_id
        ]
        for descendant_id in moved:
            self.service.update(
                QUESTIONS_TABLE,
                descendant_id,
                {"section_id": new_section_id, "updated_at": timestamp},
            )
        if moved:
            logger.debug("Moved %d descendants of %s to section %s", len(moved), question_id, new_section_id)
        return self.load()

    def select_question(self, question: Optional[Record], mode: Optional[str] = None) -> StoreState:
        """Mark ``question`` as selected for the edit form."""

        if mode is not None and mode not in EDIT_MODES:
            raise ValueError(f"Unsupported edit mode: {mode!r}")
        return self._update(
            lambda state: replace(state, selected_question=question, edit_mode=mode)
        )

    # -- change feed ---------------------------------------------------

    def _on_external_change(self, table: str) -> None:
        logger.info("External change on %s, reloading", table)
        try:
            self.load()
        except PersistenceError:
            # Already recorded in ``state.error`` by ``load``.
            logger.warning("Reload after change on %s failed", table)

    def subscribe_to_changes(self) -> Callable[[], None]:
        """Reload whenever either table changes; returns the unsubscribe handle."""

        subscriptions = [
            self.service.subscribe(SECTIONS_TABLE, self._on_external_change),
            self.service.subscribe(QUESTIONS_TABLE, self._on_external_change),
        ]

        def _unsubscribe() -> None:
            for subscription in subscriptions:
                subscription.unsubscribe()

        return _unsubscribe
