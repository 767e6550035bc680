"""Authenticated editor page for managing sections and nested questions."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import streamlit as st

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from Home import app_secrets, get_store, render_sidebar
from qbuilder.conditions import (
    CONDITION_ACTIONS,
    condition_rule,
    describe_condition,
    generate_condition,
)
from qbuilder.config import verify_password
from qbuilder.models import (
    NON_ANSWER_TYPES,
    OPTION_TYPES,
    QUESTION_TYPES,
    new_question_payload,
    option_values,
    question_type_label,
)
from qbuilder.persistence import PersistenceError
from qbuilder.store import QuestionnaireStore
from qbuilder.tree import TreeStructureError, flatten_questions, is_ancestor
from qbuilder.ui_theme import apply_app_theme, page_header, section_card, tree_node_label

AUTH_STATE_KEY = "editor_auth"
NO_PARENT_LABEL = "— Section root —"
ACTION_LABELS = {"show": "Show when parent answer equals", "hide": "Hide when parent answer equals"}
EDITOR_ERRORS = (PersistenceError, TreeStructureError, ValueError)


def _rerun_app() -> None:
    """Trigger a Streamlit rerun using the available API."""

    if hasattr(st, "rerun"):
        st.rerun()
    elif hasattr(st, "experimental_rerun"):
        st.experimental_rerun()


def require_authentication() -> None:
    """Enforce a minimal password gate when a password hash is configured."""

    if st.session_state.get(AUTH_STATE_KEY):
        return

    stored_hash = app_secrets().get("editor_password_hash", "")
    if not stored_hash:
        st.caption("No editor password configured; editing is open to everyone.")
        return

    password = st.text_input("Password", type="password")
    if not password:
        st.stop()

    if verify_password(password, stored_hash):
        st.session_state[AUTH_STATE_KEY] = True
        return

    st.error("Incorrect password.")
    st.stop()


def parse_options(raw: str) -> Optional[List[str]]:
    """Split one option per line, dropping blanks; ``None`` when empty."""

    options = [line.strip() for line in raw.splitlines() if line.strip()]
    return options or None


def move_id(ids: Sequence[int], target: int, offset: int) -> Optional[List[int]]:
    """Return ``ids`` with ``target`` moved by ``offset`` places, or ``None``."""

    ordered = list(ids)
    try:
        current_index = ordered.index(target)
    except ValueError:
        return None

    target_index = current_index + offset
    if not 0 <= target_index < len(ordered):
        return None

    ordered[current_index], ordered[target_index] = ordered[target_index], ordered[current_index]
    return ordered


def parent_choices(
    questions: Sequence[Dict[str, Any]],
    section_id: int,
    exclude_id: Optional[int] = None,
) -> List[Tuple[Optional[int], str]]:
    """Return ``(id, label)`` pairs of valid parents inside ``section_id``.

    ``exclude_id`` and its descendants are left out so a question can never be
    placed below itself.
    """

    choices: List[Tuple[Optional[int], str]] = [(None, NO_PARENT_LABEL)]
    for question in questions:
        if question.get("section_id") != section_id:
            continue
        if exclude_id is not None and is_ancestor(questions, exclude_id, question.get("id")):
            continue
        if question.get("type") == "message":
            continue
        choices.append((question.get("id"), f"#{question.get('id')} {question.get('text', '')}"))
    return choices


def condition_from_inputs(parent_id: Optional[int], parent_value: str, action: str) -> Optional[Dict[str, Any]]:
    """Build a condition payload from the form inputs, if one applies."""

    if parent_id is None or not parent_value.strip():
        return None
    return generate_condition(parent_value.strip(), action)


def condition_for_save(
    stored: Any, parent_id: Optional[int], parent_value: str, action: str
) -> Optional[Dict[str, Any]]:
    """Keep ``stored`` when the form still shows its rule, otherwise rebuild it."""

    rule = condition_rule(stored)
    if parent_id is not None and rule is not None:
        expected, stored_action = rule
        if str(expected) == parent_value.strip() and stored_action == action:
            return stored
    return condition_from_inputs(parent_id, parent_value, action)


def _run(action: Any, success: Optional[str] = None) -> bool:
    """Execute a store action, reporting failures in the page."""

    try:
        action()
    except EDITOR_ERRORS as error:
        st.error(str(error))
        return False
    if success:
        st.toast(success)
    return True


def render_section_form(store: QuestionnaireStore) -> None:
    """Render the form to create a new section."""

    with section_card("Add section", "Sections group questions and appear in order.") as card:
        form = card.form("add_section", clear_on_submit=True)
        with form:
            name = st.text_input("Section name")
            description = st.text_area("Description", height=80)
            submitted = st.form_submit_button("Create section", type="primary")
        if submitted:
            if not name.strip():
                st.error("A section needs a name.")
            elif _run(
                lambda: store.create_section(name.strip(), description.strip() or None),
                "Section created.",
            ):
                _rerun_app()


def render_question_node(
    store: QuestionnaireStore,
    section: Dict[str, Any],
    node: Dict[str, Any],
    siblings: Sequence[int],
    depth: int,
) -> None:
    """Render one question row with its actions, then its children."""

    question_id = node["id"]
    meta_parts = [question_type_label(node.get("type"))]
    if node.get("is_required"):
        meta_parts.append("required")
    summary = describe_condition(node.get("condition"))
    if summary:
        meta_parts.append(summary)

    cols = st.columns([6, 0.6, 0.6, 1, 1.2, 1])
    cols[0].markdown(
        tree_node_label(node.get("text") or f"Question {question_id}", " · ".join(meta_parts), depth),
        unsafe_allow_html=True,
    )
    index = siblings.index(question_id)
    if cols[1].button("▲", key=f"up_{question_id}", disabled=index == 0, help="Move up"):
        ordered = move_id(siblings, question_id, -1)
        if ordered and _run(lambda: store.reorder_questions(section["id"], ordered)):
            _rerun_app()
    if cols[2].button(
        "▼", key=f"down_{question_id}", disabled=index == len(siblings) - 1, help="Move down"
    ):
        ordered = move_id(siblings, question_id, 1)
        if ordered and _run(lambda: store.reorder_questions(section["id"], ordered)):
            _rerun_app()
    if cols[3].button("Edit", key=f"edit_{question_id}"):
        store.select_question(node, "edit")
        _rerun_app()
    if cols[4].button(
        "Add child",
        key=f"child_{question_id}",
        disabled=node.get("type") in {"message"},
    ):
        store.select_question({"section_id": section["id"], "parent_id": question_id}, "create")
        _rerun_app()
    if cols[5].button("Delete", key=f"delete_{question_id}", help="Deletes the question and its children"):
        if _run(lambda: store.delete_question(question_id), "Question deleted."):
            _rerun_app()

    children = node.get("children") or []
    child_ids = [child["id"] for child in children]
    for child in children:
        render_question_node(store, section, child, child_ids, depth + 1)


def render_section(
    store: QuestionnaireStore,
    section: Dict[str, Any],
    section_ids: Sequence[int],
) -> None:
    """Render a section expander with its settings and question tree."""

    section_id = section["id"]
    questions = section.get("questions") or []
    total = len(flatten_questions(questions))
    with st.expander(f"{section.get('name', 'Section')} ({total} questions)", expanded=True):
        if section.get("description"):
            st.caption(section["description"])

        cols = st.columns([1, 1, 1.6, 1.4, 4])
        index = section_ids.index(section_id)
        if cols[0].button("▲", key=f"section_up_{section_id}", disabled=index == 0):
            ordered = move_id(section_ids, section_id, -1)
            if ordered and _run(lambda: store.reorder_sections(ordered)):
                _rerun_app()
        if cols[1].button(
            "▼", key=f"section_down_{section_id}", disabled=index == len(section_ids) - 1
        ):
            ordered = move_id(section_ids, section_id, 1)
            if ordered and _run(lambda: store.reorder_sections(ordered)):
                _rerun_app()
        if cols[2].button("Add question", key=f"add_question_{section_id}", type="primary"):
            store.select_question({"section_id": section_id, "parent_id": None}, "create")
            _rerun_app()
        if cols[3].button("Delete section", key=f"delete_section_{section_id}"):
            if _run(lambda: store.delete_section(section_id), "Section deleted."):
                _rerun_app()

        with st.popover("Rename / describe"):
            form = st.form(f"edit_section_{section_id}")
            with form:
                name = st.text_input("Section name", value=section.get("name", ""))
                description = st.text_area("Description", value=section.get("description") or "")
                submitted = st.form_submit_button("Save section")
            if submitted and _run(
                lambda: store.update_section(
                    section_id, {"name": name.strip(), "description": description.strip() or None}
                ),
                "Section saved.",
            ):
                _rerun_app()

        if not questions:
            st.info("No questions in this section yet.")
            return

        root_ids = [node["id"] for node in questions]
        for node in questions:
            render_question_node(store, section, node, root_ids, 0)


def render_question_form(store: QuestionnaireStore) -> None:
    """Render the create/edit form for the selected question."""

    state = store.state
    selected = state.selected_question or {}
    mode = state.edit_mode
    sections = list(state.sections)
    if not sections:
        return

    is_edit = mode == "edit"
    question_id = selected.get("id") if is_edit else None
    section_ids = [section["id"] for section in sections]
    section_names = {section["id"]: section.get("name", "") for section in sections}
    current_section = selected.get("section_id", section_ids[0])

    title = f"Edit question #{question_id}" if is_edit else "New question"
    with section_card(title, "Set the prompt, answer type, and display condition.") as card:
        section_id = card.selectbox(
            "Section",
            options=section_ids,
            index=section_ids.index(current_section) if current_section in section_ids else 0,
            format_func=lambda value: section_names.get(value, str(value)),
            disabled=not is_edit,
            key=f"question_form_section_{question_id}",
        )
        choices = parent_choices(state.questions, section_id, exclude_id=question_id)
        choice_ids = [choice_id for choice_id, _ in choices]
        choice_labels = dict(choices)
        current_parent = selected.get("parent_id")
        parent_id = card.selectbox(
            "Parent question",
            options=choice_ids,
            index=choice_ids.index(current_parent) if current_parent in choice_ids else 0,
            format_func=lambda value: choice_labels.get(value, str(value)),
            key=f"question_form_parent_{question_id}",
        )

        form = card.form(f"question_form_{question_id}")
        with form:
            text = st.text_area("Question text", value=selected.get("text", ""), height=80)
            current_type = selected.get("type", "text")
            question_type = st.selectbox(
                "Answer type",
                options=QUESTION_TYPES,
                index=QUESTION_TYPES.index(current_type) if current_type in QUESTION_TYPES else 0,
                format_func=question_type_label,
            )
            raw_options = st.text_area(
                "Options (one per line)",
                value="\n".join(option_values(selected.get("options"))),
                help=f"Used by {', '.join(sorted(question_type_label(t) for t in OPTION_TYPES))} questions.",
            )
            is_required = st.checkbox(
                "Response required",
                value=bool(selected.get("is_required")),
                help="Ignored for message and group questions.",
            )
            notes = st.text_area("Notes", value=selected.get("notes") or "", height=68)

            stored_condition = selected.get("condition")
            current_value, current_action = condition_rule(stored_condition) or ("", "show")
            st.markdown("**Display condition**")
            col_action, col_value = st.columns([2, 3])
            action = col_action.selectbox(
                "Rule",
                options=list(CONDITION_ACTIONS),
                index=list(CONDITION_ACTIONS).index(current_action),
                format_func=lambda value: ACTION_LABELS[value],
            )
            parent_value = col_value.text_input(
                "Parent answer",
                value=str(current_value),
                help="Leave blank to always show this question. Only applies below a parent.",
            )

            col_save, col_cancel = st.columns(2)
            saved = col_save.form_submit_button("Save question", type="primary")
            cancelled = col_cancel.form_submit_button("Cancel")

        if cancelled:
            store.select_question(None)
            _rerun_app()
        if not saved:
            return
        if not text.strip():
            st.error("A question needs text.")
            return

        options = parse_options(raw_options) if question_type in OPTION_TYPES else None
        if question_type in OPTION_TYPES and not options:
            st.error("Add at least one option for this answer type.")
            return

        fields = {
            "text": text.strip(),
            "type": question_type,
            "options": options,
            "condition": condition_for_save(stored_condition, parent_id, parent_value, action),
            "is_required": is_required and question_type not in NON_ANSWER_TYPES,
            "notes": notes.strip() or None,
        }

        if is_edit:
            moved = parent_id != selected.get("parent_id") or section_id != selected.get("section_id")

            def _save() -> None:
                if moved:
                    store.move_question(question_id, parent_id, section_id)
                store.update_question(question_id, fields)

            ok = _run(_save, "Question saved.")
        else:
            sibling_orders = [
                question.get("order_index", 0)
                for question in state.questions
                if question.get("section_id") == section_id
                and question.get("parent_id") == parent_id
            ]
            order_index = max(sibling_orders) + 1 if sibling_orders else 0

            def _create() -> None:
                payload = new_question_payload(
                    section_id,
                    fields["text"],
                    question_type,
                    parent_id=parent_id,
                    options=options,
                    condition=fields["condition"],
                    order_index=order_index,
                    is_required=is_required,
                    notes=fields["notes"],
                )
                store.create_question(payload)

            ok = _run(_create, "Question created.")
        if ok:
            _rerun_app()


def main() -> None:
    """Render the questionnaire editor page."""

    apply_app_theme(page_title="Questionnaire editor", page_icon="🛠️")
    require_authentication()
    page_header(
        "Questionnaire editor",
        "Build sections and nested questions. Changes are saved immediately.",
        icon="🛠️",
    )

    store = get_store()
    render_sidebar(store)

    tree = store.tree
    col_tree, col_form = st.columns([3, 2])
    with col_tree:
        if not tree:
            st.info("No sections defined yet. Add one below.")
        section_ids = [section["id"] for section in tree]
        for section in tree:
            render_section(store, section, section_ids)
        st.divider()
        render_section_form(store)

    with col_form:
        if store.state.edit_mode:
            render_question_form(store)
        else:
            st.info("Select a question to edit, or add a new one from a section.")


if __name__ == "__main__":
    main()
