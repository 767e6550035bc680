"""Tests for editor page helper utilities."""

from __future__ import annotations

import importlib.util
from pathlib import Path
import sys

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

MODULE_PATH = REPO_ROOT / "pages" / "01_Editor.py"
SPEC = importlib.util.spec_from_file_location("editor_module", MODULE_PATH)
if SPEC is None or SPEC.loader is None:  # pragma: no cover - defensive
    raise RuntimeError("Could not load editor module for testing.")
EDITOR = importlib.util.module_from_spec(SPEC)
SPEC.loader.exec_module(EDITOR)


@pytest.mark.parametrize(
    "ids,target,offset,expected",
    [
        ([1, 2, 3], 2, -1, [2, 1, 3]),
        ([1, 2, 3], 2, 1, [1, 3, 2]),
        ([1, 2, 3], 1, -1, None),
        ([1, 2, 3], 3, 1, None),
        ([1, 2, 3], 9, 1, None),
    ],
)
def test_move_id(ids, target, offset, expected) -> None:
    assert EDITOR.move_id(ids, target, offset) == expected


def test_parse_options_drops_blank_lines() -> None:
    assert EDITOR.parse_options("yes\n\n no \n") == ["yes", "no"]
    assert EDITOR.parse_options("  \n") is None


def test_parent_choices_exclude_own_subtree_and_other_sections() -> None:
    questions = [
        {"id": 1, "section_id": 1, "parent_id": None, "text": "A"},
        {"id": 2, "section_id": 1, "parent_id": 1, "text": "B"},
        {"id": 3, "section_id": 1, "parent_id": None, "text": "C"},
        {"id": 4, "section_id": 2, "parent_id": None, "text": "D"},
        {"id": 5, "section_id": 1, "parent_id": None, "text": "Note", "type": "message"},
    ]

    choices = EDITOR.parent_choices(questions, 1, exclude_id=1)

    assert [choice_id for choice_id, _ in choices] == [None, 3]
    assert choices[0][1] == EDITOR.NO_PARENT_LABEL


def test_condition_from_inputs_requires_parent_and_value() -> None:
    assert EDITOR.condition_from_inputs(None, "yes", "show") is None
    assert EDITOR.condition_from_inputs(4, "  ", "show") is None
    assert EDITOR.condition_from_inputs(4, " yes ", "hide") == {"parent_value": "yes", "action": "hide"}


def test_condition_for_save_keeps_untouched_legacy_condition() -> None:
    stored = {"if": {"parent_value": "yes"}, "then": "hide"}

    assert EDITOR.condition_for_save(stored, 4, "yes", "hide") is stored
    assert EDITOR.condition_for_save(stored, 4, "no", "hide") == {"parent_value": "no", "action": "hide"}
    assert EDITOR.condition_for_save(stored, 4, "yes", "show") == {"parent_value": "yes", "action": "show"}
    assert EDITOR.condition_for_save(stored, 4, "", "hide") is None
    assert EDITOR.condition_for_save(stored, None, "yes", "hide") is None
    assert EDITOR.condition_for_save(None, 4, "yes", "show") == {"parent_value": "yes", "action": "show"}
