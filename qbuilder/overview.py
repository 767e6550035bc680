"""Tabular summaries of the questionnaire tree."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

import pandas as pd

from qbuilder.conditions import describe_condition
from qbuilder.models import question_type_label
from qbuilder.tree import flatten_questions

QUESTION_COLUMNS = ("Section", "Depth", "ID", "Question", "Type", "Required", "Condition")
SECTION_COLUMNS = ("ID", "Section", "Description", "Root questions", "Total questions")


def _with_depth(nodes: Iterable[Dict[str, Any]], depth: int = 0) -> Iterable[tuple]:
    for node in nodes:
        yield depth, node
        yield from _with_depth(node.get("children") or [], depth + 1)


def questions_frame(tree: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """Return one row per question, sections in order and questions in pre-order."""

    rows: List[Dict[str, Any]] = []
    for section in tree:
        for depth, node in _with_depth(section.get("questions") or []):
            rows.append(
                {
                    "Section": section.get("name", ""),
                    "Depth": depth,
                    "ID": node.get("id"),
                    "Question": ("    " * depth) + str(node.get("text") or ""),
                    "Type": question_type_label(node.get("type")),
                    "Required": "Yes" if node.get("is_required") else "No",
                    "Condition": describe_condition(node.get("condition")),
                }
            )
    return pd.DataFrame(rows, columns=list(QUESTION_COLUMNS))


def sections_frame(tree: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """Return one row per section with its question counts."""

    rows = [
        {
            "ID": section.get("id"),
            "Section": section.get("name", ""),
            "Description": section.get("description") or "",
            "Root questions": len(section.get("questions") or []),
            "Total questions": len(flatten_questions(section.get("questions") or [])),
        }
        for section in tree
    ]
    return pd.DataFrame(rows, columns=list(SECTION_COLUMNS))
