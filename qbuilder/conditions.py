"""Display conditions linking a question to its parent's answer."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple

CONDITION_ACTIONS = ("show", "hide")


def _has_value(value: Any) -> bool:
    return value is not None and value != ""


def _matches(parent_answer: Any, expected: Any) -> bool:
    """Strict equality: ``True`` never matches ``1``."""

    if isinstance(parent_answer, bool) != isinstance(expected, bool):
        return False
    return parent_answer == expected


def generate_condition(parent_value: Any, action: str = "show") -> Dict[str, Any]:
    """Return the canonical condition payload for ``parent_value``."""

    if action not in CONDITION_ACTIONS:
        raise ValueError(f"Unsupported condition action: {action!r}")
    return {"parent_value": parent_value, "action": action}


def evaluate_condition(condition: Any, parent_answer: Any = None) -> bool:
    """Return whether a question with ``condition`` should be visible.

    Two payload shapes are understood::

        {"parent_value": "yes", "action": "show" | "hide"}
        {"if": {"parent_value": "yes"}, "then": "show" | "hide"}

    Anything else, including a missing condition, leaves the question visible.
    """

    rule = condition_rule(condition)
    if rule is None:
        return True
    expected, action = rule
    matches = _matches(parent_answer, expected)
    return matches if action == "show" else not matches


def is_question_visible(question: Mapping[str, Any], answers: Mapping[Any, Any]) -> bool:
    """Evaluate ``question``'s condition against its direct parent's answer."""

    parent_id = question.get("parent_id")
    parent_answer = answers.get(parent_id) if parent_id is not None else None
    return evaluate_condition(question.get("condition"), parent_answer)


def visible_questions(
    nodes: Iterable[Mapping[str, Any]], answers: Mapping[Any, Any]
) -> Iterator[Mapping[str, Any]]:
    """Yield visible nodes in pre-order, skipping the subtree of hidden ones."""

    for node in nodes:
        if not is_question_visible(node, answers):
            continue
        yield node
        yield from visible_questions(node.get("children") or [], answers)


def condition_rule(condition: Any) -> Optional[Tuple[Any, str]]:
    """Return ``(parent_value, action)`` for either condition shape.

    ``None`` means the condition is missing or has no expected value.
    """

    if not isinstance(condition, Mapping):
        return None
    if _has_value(condition.get("parent_value")):
        action = "hide" if condition.get("action") == "hide" else "show"
        return condition["parent_value"], action
    clause = condition.get("if")
    if isinstance(clause, Mapping) and _has_value(clause.get("parent_value")):
        action = "show" if condition.get("then") == "show" else "hide"
        return clause["parent_value"], action
    return None


def describe_condition(condition: Any) -> str:
    """Return a short sentence describing ``condition`` or ``""``."""

    rule = condition_rule(condition)
    if rule is None:
        return ""
    expected, action = rule
    verb = "Shown" if action == "show" else "Hidden"
    return f"{verb} when parent answer is {expected!r}"
