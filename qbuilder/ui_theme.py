"""Shared visual identity for the Streamlit pages."""

from __future__ import annotations

from contextlib import contextmanager
from html import escape as html_escape
from typing import Any, Iterator, Optional

import streamlit as st


_THEME_CSS = """
<style>
:root {
    --qb-accent: #0F766E;
    --qb-accent-soft: #CCFBF1;
    --qb-surface: rgba(255, 255, 255, 0.94);
    --qb-border: rgba(15, 118, 110, 0.22);
    --qb-shadow: 0 14px 32px rgba(15, 23, 42, 0.07);
    --qb-text: #1F2933;
    --qb-muted: #52606D;
}

html, body {
    font-family: "Inter", "Segoe UI", system-ui, -apple-system, sans-serif;
    color: var(--qb-text);
}

[data-testid="stAppViewContainer"] {
    background: linear-gradient(180deg, #F0FDFA 0%, #FFFFFF 60%);
}

.block-container {
    padding-top: 2.25rem;
    padding-bottom: 3.5rem;
}

.app-header {
    display: flex;
    align-items: center;
    gap: 1.25rem;
    padding: 1.5rem 1.75rem;
    background: var(--qb-surface);
    border-radius: 1.25rem;
    border: 1px solid var(--qb-border);
    box-shadow: var(--qb-shadow);
    margin-bottom: 1.75rem;
}

.app-header__icon {
    font-size: 2.5rem;
    line-height: 1;
}

.app-header__title {
    margin: 0;
    font-size: 2rem;
    font-weight: 700;
}

.app-header__subtitle {
    margin: 0.25rem 0 0 0;
    color: var(--qb-muted);
}

.app-section-card {
    padding: 0.25rem 0 0.75rem 0;
}

.app-section-card__description {
    margin-top: -0.35rem;
    margin-bottom: 1rem;
    color: var(--qb-muted);
}

.tree-node {
    border-left: 3px solid var(--qb-accent-soft);
    padding-left: 0.6rem;
}

.tree-node__meta {
    font-size: 0.85rem;
    color: var(--qb-muted);
}
</style>
"""


def apply_app_theme(page_title: str, page_icon: Optional[str] = None) -> None:
    """Set up consistent page configuration and inject the shared CSS theme."""

    st.set_page_config(
        page_title=page_title,
        page_icon=page_icon,
        layout="wide",
        initial_sidebar_state="expanded",
    )
    st.markdown(_THEME_CSS, unsafe_allow_html=True)


def page_header(title: str, subtitle: Optional[str] = None, icon: Optional[str] = None) -> None:
    """Render a header block with a title, subtitle, and optional icon."""

    icon_markup = f"<span class='app-header__icon'>{icon}</span>" if icon else ""
    subtitle_markup = (
        f"<p class='app-header__subtitle'>{html_escape(subtitle)}</p>" if subtitle else ""
    )
    st.markdown(
        f"""
        <div class="app-header">
            {icon_markup}
            <div>
                <h1 class="app-header__title">{html_escape(title)}</h1>
                {subtitle_markup}
            </div>
        </div>
        """,
        unsafe_allow_html=True,
    )


@contextmanager
def section_card(
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Iterator[Any]:
    """Render a container with an optional title and description."""

    container = st.container()
    container.markdown("<div class='app-section-card'>", unsafe_allow_html=True)
    if title:
        container.markdown(f"### {title}")
    if description:
        container.markdown(
            f"<p class='app-section-card__description'>{html_escape(description)}</p>",
            unsafe_allow_html=True,
        )
    try:
        yield container
    finally:
        container.markdown("</div>", unsafe_allow_html=True)


def tree_node_label(text: str, meta: str = "", depth: int = 0) -> str:
    """Return HTML for a question row indented to ``depth``."""

    indent = depth * 1.5
    meta_markup = f"<div class='tree-node__meta'>{html_escape(meta)}</div>" if meta else ""
    return (
        f"<div class='tree-node' style='margin-left:{indent}rem'>"
        f"<strong>{html_escape(text)}</strong>{meta_markup}</div>"
    )
