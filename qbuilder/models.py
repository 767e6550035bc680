"""Record shapes and defaults shared by the builder, store, and editor."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

SECTIONS_TABLE = "sections"
QUESTIONS_TABLE = "questions"

QUESTION_TYPES = [
    "text",
    "textarea",
    "select",
    "checkbox",
    "radio",
    "yesno",
    "number",
    "date",
    "message",
    "group",
]
QUESTION_TYPE_LABELS = {
    "text": "Free text",
    "textarea": "Multi-line text",
    "select": "Single select",
    "checkbox": "Multi select",
    "radio": "Single choice",
    "yesno": "Yes/No",
    "number": "Number",
    "date": "Date",
    "message": "Message",
    "group": "Group",
}
OPTION_TYPES = {"select", "checkbox", "radio"}
# Types that display content but never collect an answer.
NON_ANSWER_TYPES = {"message", "group"}

EDIT_MODES = ("create", "edit")


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


def question_type_label(question_type: Any) -> str:
    """Return a human-friendly label for ``question_type``."""

    if not isinstance(question_type, str):
        return ""
    return QUESTION_TYPE_LABELS.get(question_type, question_type)


def option_values(options: Any) -> List[str]:
    """Return the option values stored in a question's ``options`` payload.

    Accepts plain strings or ``{"value": ..., "label": ...}`` mappings.
    """

    if isinstance(options, Mapping):
        options = options.get("choices")
    if not isinstance(options, list):
        return []

    values: List[str] = []
    for option in options:
        if isinstance(option, Mapping):
            option = option.get("value", option.get("label"))
        if option is None:
            continue
        text = str(option).strip()
        if text:
            values.append(text)
    return values


def next_order_index(records: Iterable[Mapping[str, Any]]) -> int:
    """Return one more than the highest ``order_index`` in ``records``.

    Empty collections start at ``0``.
    """

    indexes = [
        record.get("order_index")
        for record in records
        if isinstance(record.get("order_index"), int)
    ]
    if not indexes:
        return 0
    return max(indexes) + 1


def new_question_payload(
    section_id: int,
    text: str,
    question_type: str = "text",
    *,
    parent_id: Optional[int] = None,
    options: Any = None,
    condition: Optional[Dict[str, Any]] = None,
    order_index: int = 0,
    is_required: bool = False,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an insert payload for the ``questions`` table."""

    if question_type not in QUESTION_TYPES:
        raise ValueError(f"Unsupported question type: {question_type!r}")

    return {
        "section_id": section_id,
        "parent_id": parent_id,
        "text": text,
        "type": question_type,
        "options": options if question_type in OPTION_TYPES else None,
        "condition": condition or None,
        "order_index": order_index,
        "is_required": bool(is_required) and question_type not in NON_ANSWER_TYPES,
        "notes": notes or None,
    }
