"""Preview a section as respondents would see it, conditions included."""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict

import streamlit as st

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from Home import get_store, render_sidebar
from qbuilder.conditions import visible_questions
from qbuilder.models import NON_ANSWER_TYPES, option_values
from qbuilder.tree import flatten_questions
from qbuilder.ui_theme import apply_app_theme, page_header

PREVIEW_ANSWERS_STATE_KEY = "preview_answers"
PREVIEW_SECTION_STATE_KEY = "preview_section"
YES_NO_OPTIONS = ["yes", "no"]


def _index_of(options: list, value: Any) -> Any:
    return options.index(value) if value in options else None


def render_preview_question(question: Dict[str, Any], answers: Dict[int, Any]) -> None:
    """Render the input widget for ``question`` and record its answer."""

    question_id = question["id"]
    question_type = question.get("type", "text")
    label = question.get("text") or f"Question {question_id}"
    if question.get("is_required") and question_type not in NON_ANSWER_TYPES:
        label = f"{label} *"
    widget_key = f"preview_question_{question_id}"
    current = answers.get(question_id)
    options = option_values(question.get("options"))

    if question_type == "message":
        st.info(label)
        return
    if question_type == "group":
        st.markdown(f"#### {label}")
        return

    if question_type == "textarea":
        value = st.text_area(label, value=current or "", key=widget_key)
    elif question_type == "select":
        value = st.selectbox(label, options=options, index=_index_of(options, current), key=widget_key)
    elif question_type == "radio":
        value = st.radio(label, options=options, index=_index_of(options, current), key=widget_key)
    elif question_type == "checkbox":
        value = st.multiselect(
            label,
            options=options,
            default=[item for item in (current or []) if item in options],
            key=widget_key,
        )
    elif question_type == "yesno":
        value = st.radio(
            label,
            options=YES_NO_OPTIONS,
            index=_index_of(YES_NO_OPTIONS, current),
            horizontal=True,
            key=widget_key,
        )
    elif question_type == "number":
        value = st.number_input(label, value=current, key=widget_key)
    elif question_type == "date":
        picked = st.date_input(
            label,
            value=date.fromisoformat(current) if current else None,
            key=widget_key,
        )
        value = picked.isoformat() if picked else None
    else:
        value = st.text_input(label, value=current or "", key=widget_key)

    if question.get("notes"):
        st.caption(question["notes"])
    answers[question_id] = value


def main() -> None:
    """Render the preview page."""

    apply_app_theme(page_title="Questionnaire preview", page_icon="👀")
    page_header(
        "Questionnaire preview",
        "Answer questions to check which follow-up questions appear.",
        icon="👀",
    )

    store = get_store()
    render_sidebar(store)
    tree = store.tree
    if not tree:
        st.info("Add sections in the editor to preview them here.")
        return

    section_ids = [section["id"] for section in tree]
    selected_id = st.session_state.get(PREVIEW_SECTION_STATE_KEY)
    if selected_id not in section_ids:
        selected_id = section_ids[0]
    names = {section["id"]: section.get("name", "") for section in tree}
    selected_id = st.radio(
        "Section",
        options=section_ids,
        index=section_ids.index(selected_id),
        format_func=lambda value: names.get(value, str(value)),
        horizontal=True,
    )
    st.session_state[PREVIEW_SECTION_STATE_KEY] = selected_id
    section = next(section for section in tree if section["id"] == selected_id)

    answers: Dict[int, Any] = st.session_state.setdefault(PREVIEW_ANSWERS_STATE_KEY, {})
    questions = section.get("questions") or []
    if not questions:
        st.info("This section has no questions yet.")
        return

    if section.get("description"):
        st.caption(section["description"])

    shown = set()
    for question in visible_questions(questions, answers):
        render_preview_question(question, answers)
        shown.add(question["id"])

    # Answers of hidden questions must not keep their children visible.
    for question in flatten_questions(questions):
        if question["id"] not in shown:
            answers.pop(question["id"], None)
    st.session_state[PREVIEW_ANSWERS_STATE_KEY] = answers

    with st.expander("Debug: current answers"):
        st.json({str(key): value for key, value in answers.items()})


if __name__ == "__main__":
    main()
