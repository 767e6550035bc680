"""Library helpers for the questionnaire builder application."""

from .conditions import condition_rule, evaluate_condition, generate_condition  # noqa: F401
from .persistence import PersistenceError  # noqa: F401
from .store import QuestionnaireStore, StoreState  # noqa: F401
from .tree import (  # noqa: F401
    TreeStructureError,
    build_question_tree,
    build_questionnaire_tree,
    find_question_by_id,
    flatten_questions,
    remove_question_from_tree,
    update_question_in_tree,
)
