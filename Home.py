"""Streamlit home screen summarising the questionnaire sections."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Dict

import streamlit as st

from qbuilder.config import configure_logging, get_backend
from qbuilder.overview import questions_frame, sections_frame
from qbuilder.persistence import PersistenceError
from qbuilder.store import QuestionnaireStore
from qbuilder.ui_theme import apply_app_theme, page_header

# The pages import ``get_store`` and ``app_secrets`` from this module. Keep the
# signatures stable so every page shares one store per session.
STORE_STATE_KEY = "questionnaire_store"
LIVE_UPDATES_STATE_KEY = "questionnaire_live_updates"


def app_secrets() -> Mapping:
    """Return Streamlit secrets as a plain mapping (empty when unset)."""

    try:
        return st.secrets.to_dict()
    except Exception:  # pragma: no cover - no secrets file configured
        return {}


def get_store() -> QuestionnaireStore:
    """Return the session's questionnaire store, loading it on first use."""

    store = st.session_state.get(STORE_STATE_KEY)
    if isinstance(store, QuestionnaireStore):
        return store

    configure_logging()
    store = QuestionnaireStore(get_backend(app_secrets(), os.environ))
    st.session_state[STORE_STATE_KEY] = store
    try:
        store.load()
    except PersistenceError as error:
        st.error(f"Could not load the questionnaire: {error}")
    return store


def set_live_updates(store: QuestionnaireStore, enabled: bool) -> None:
    """Start or stop reloading the store when the database changes."""

    unsubscribe = st.session_state.get(LIVE_UPDATES_STATE_KEY)
    if enabled and unsubscribe is None:
        st.session_state[LIVE_UPDATES_STATE_KEY] = store.subscribe_to_changes()
    elif not enabled and unsubscribe is not None:
        unsubscribe()
        st.session_state.pop(LIVE_UPDATES_STATE_KEY, None)


def render_sidebar(store: QuestionnaireStore) -> None:
    """Render the reload and live-update controls shared by every page."""

    with st.sidebar:
        if st.button("Reload from database", use_container_width=True):
            try:
                store.load()
            except PersistenceError as error:
                st.error(f"Reload failed: {error}")
        live = st.toggle(
            "Live updates",
            value=st.session_state.get(LIVE_UPDATES_STATE_KEY) is not None,
            help="Reload automatically when sections or questions change elsewhere.",
        )
        set_live_updates(store, live)

        state = store.state
        if state.loading:
            st.caption("Loading…")
        if state.error:
            st.error(state.error)


def _metrics(tree: Any) -> Dict[str, int]:
    frame = sections_frame(tree)
    return {
        "sections": len(frame),
        "questions": int(frame["Total questions"].sum()) if not frame.empty else 0,
    }


def main() -> None:
    """Render the home screen."""

    apply_app_theme(page_title="Questionnaire builder", page_icon="🗂️")
    page_header(
        "Questionnaire builder",
        "Organise sections and nested questions with conditional display.",
        icon="🗂️",
    )

    store = get_store()
    render_sidebar(store)
    tree = store.tree
    counts = _metrics(tree)

    metric_col1, metric_col2 = st.columns(2)
    metric_col1.metric("Sections", counts["sections"] or "0")
    metric_col2.metric("Questions", counts["questions"] or "0")

    if not tree:
        st.info("No sections yet. Open the editor to create the first one.")
        st.page_link("pages/01_Editor.py", label="Open editor", icon="🛠️")
        return

    st.markdown("#### Sections")
    st.dataframe(sections_frame(tree), hide_index=True, use_container_width=True)

    st.markdown("#### Questions")
    st.dataframe(questions_frame(tree), hide_index=True, use_container_width=True)

    st.page_link("pages/01_Editor.py", label="Edit questionnaire", icon="🛠️")
    st.page_link("pages/02_Preview.py", label="Preview questionnaire", icon="👀")


if __name__ == "__main__":
    main()
