"""Build and reshape the nested section/question tree.

Questions arrive from the persistence service as flat rows linked through
``parent_id``. The helpers here group those rows into nested nodes ordered by
``order_index`` and provide pure find/update/remove operations on the result.
Nodes are shallow copies of the input rows, so callers can keep using the flat
collections as the single source of truth.
"""

from __future__ import annotations

import numbers
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

Record = Mapping[str, Any]
Node = Dict[str, Any]


class TreeStructureError(ValueError):
    """Raised when ``parent_id`` links do not describe a valid tree."""


def _order_key(record: Record) -> float:
    value = record.get("order_index")
    if isinstance(value, bool):
        return 0
    if isinstance(value, numbers.Real):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0
    return 0


def _parent_of(record: Record) -> Optional[int]:
    # A falsy parent_id (None, 0, "") marks a root question.
    return record.get("parent_id") or None


def _children_index(questions: Iterable[Record]) -> Dict[Optional[int], List[Record]]:
    """Group ``questions`` by parent id, each group stably sorted by order."""

    index: Dict[Optional[int], List[Record]] = {}
    for question in questions:
        index.setdefault(_parent_of(question), []).append(question)
    for parent_id, group in index.items():
        index[parent_id] = sorted(group, key=_order_key)
    return index


def _expand(
    index: Mapping[Optional[int], List[Record]],
    parent_id: Optional[int],
    ancestors: tuple,
) -> List[Node]:
    nodes: List[Node] = []
    for question in index.get(parent_id, []):
        question_id = question.get("id")
        if question_id in ancestors:
            raise TreeStructureError(
                f"Question {question_id} is its own ancestor (parent_id cycle)."
            )
        node = dict(question)
        node["children"] = _expand(index, question_id, ancestors + (question_id,))
        nodes.append(node)
    return nodes


def build_question_tree(
    questions: Iterable[Record], parent_id: Optional[int] = None
) -> List[Node]:
    """Return the ordered nodes below ``parent_id`` with their descendants.

    ``None`` selects the root questions (absent or falsy ``parent_id``).
    Raises :class:`TreeStructureError` if a ``parent_id`` cycle is reached.
    """

    parent_id = parent_id or None
    ancestors = (parent_id,) if parent_id is not None else ()
    return _expand(_children_index(questions), parent_id, ancestors)


def build_questionnaire_tree(
    sections: Iterable[Record],
    questions: Iterable[Record],
    *,
    strict: bool = False,
) -> List[Node]:
    """Return sections ordered by ``order_index`` with their question trees.

    With ``strict`` the flat questions are checked by
    :func:`validate_question_graph` first, so dangling or cross-section
    parents fail instead of silently dropping out of the tree.
    """

    question_list = list(questions)
    if strict:
        validate_question_graph(question_list)

    by_section: Dict[Any, List[Record]] = {}
    for question in question_list:
        by_section.setdefault(question.get("section_id"), []).append(question)

    tree: List[Node] = []
    for section in sorted(sections, key=_order_key):
        node = dict(section)
        node["questions"] = build_question_tree(by_section.get(section.get("id"), []))
        tree.append(node)
    return tree


def validate_question_graph(questions: Sequence[Record]) -> None:
    """Raise :class:`TreeStructureError` for invalid ``parent_id`` links.

    Detects parents that do not exist, parents that belong to another
    section, and cycles.
    """

    by_id = {question.get("id"): question for question in questions}

    for question in questions:
        parent_id = _parent_of(question)
        if parent_id is None:
            continue
        parent = by_id.get(parent_id)
        if parent is None:
            raise TreeStructureError(
                f"Question {question.get('id')} references missing parent {parent_id}."
            )
        if parent.get("section_id") != question.get("section_id"):
            raise TreeStructureError(
                f"Question {question.get('id')} and its parent {parent_id} "
                "belong to different sections."
            )

    for question in questions:
        seen = {question.get("id")}
        parent_id = _parent_of(question)
        while parent_id is not None:
            if parent_id in seen:
                raise TreeStructureError(
                    f"Question {question.get('id')} is part of a parent_id cycle."
                )
            seen.add(parent_id)
            parent_id = _parent_of(by_id[parent_id])


def collect_descendant_ids(questions: Iterable[Record], question_id: int) -> List[int]:
    """Return ``question_id`` followed by the ids of all of its descendants."""

    index = _children_index(questions)
    collected: List[int] = [question_id]
    seen = {question_id}
    pending = [question_id]
    while pending:
        current = pending.pop()
        for child in index.get(current, []):
            child_id = child.get("id")
            if child_id in seen:
                continue
            seen.add(child_id)
            collected.append(child_id)
            pending.append(child_id)
    return collected


def is_ancestor(questions: Iterable[Record], ancestor_id: int, question_id: Optional[int]) -> bool:
    """Return ``True`` if ``ancestor_id`` is ``question_id`` or one of its ancestors."""

    by_id = {question.get("id"): question for question in questions}
    seen = set()
    current = question_id
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        record = by_id.get(current)
        current = _parent_of(record) if record is not None else None
    return False


def flatten_questions(tree: Iterable[Node]) -> List[Node]:
    """Return every node of ``tree`` in pre-order."""

    flat: List[Node] = []

    def _traverse(nodes: Iterable[Node]) -> None:
        for node in nodes:
            flat.append(node)
            children = node.get("children")
            if children:
                _traverse(children)

    _traverse(tree)
    return flat


def find_question_by_id(tree: Iterable[Node], question_id: int) -> Optional[Node]:
    """Return the first node (pre-order) whose ``id`` equals ``question_id``."""

    for node in tree:
        if node.get("id") == question_id:
            return node
        children = node.get("children")
        if children:
            found = find_question_by_id(children, question_id)
            if found is not None:
                return found
    return None


def update_question_in_tree(tree: Iterable[Node], updated: Mapping[str, Any]) -> List[Node]:
    """Return a copy of ``tree`` with the node matching ``updated['id']`` replaced.

    The replacement keeps the existing node's children; any ``children``
    carried by ``updated`` are ignored.
    """

    result: List[Node] = []
    for node in tree:
        if node.get("id") == updated.get("id"):
            replacement = dict(updated)
            replacement["children"] = node.get("children", [])
            result.append(replacement)
        elif node.get("children"):
            copy = dict(node)
            copy["children"] = update_question_in_tree(node["children"], updated)
            result.append(copy)
        else:
            result.append(node)
    return result


def remove_question_from_tree(tree: Iterable[Node], question_id: int) -> List[Node]:
    """Return a copy of ``tree`` without any node whose ``id`` is ``question_id``."""

    result: List[Node] = []
    for node in tree:
        if node.get("id") == question_id:
            continue
        copy = dict(node)
        copy["children"] = remove_question_from_tree(node.get("children") or [], question_id)
        result.append(copy)
    return result
