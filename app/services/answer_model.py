"""
Answer Model Service
Answer shape validation, click capture and correctness evaluation per question type
FILE: app/services/answer_model.py
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.models.questions import AnswerKey, AnswerValue


class AnswerShapeError(Exception):
    """Answer value does not match the question's type tag"""
    pass


class UnknownQuestionTypeError(Exception):
    """A question variant outside the closed set reached the engine"""
    pass


def _option_ids(question) -> set:
    return {o.id for o in question.options}


def validate_answer(question, value: Any) -> Optional[str]:
    """
    Check that `value` has the shape required by the question type

    Args:
        question: Any question variant
        value: Candidate answer value

    Returns:
        None if the value is acceptable, otherwise a rejection reason
    """
    match question.type:
        case "mcq_single":
            if not isinstance(value, str):
                return "mcq_single expects a single option id"
            if value not in _option_ids(question):
                return f"Unknown option '{value}'"
            return None
        case "mcq_multiple":
            if not isinstance(value, (set, frozenset)):
                return "mcq_multiple expects a set of option ids"
            if not all(isinstance(v, str) for v in value):
                return "mcq_multiple option ids must be strings"
            unknown = set(value) - _option_ids(question)
            if unknown:
                return f"Unknown options {sorted(unknown)}"
            return None
        case "true_false":
            if not isinstance(value, bool):
                return "true_false expects a boolean"
            return None
        case "numerical":
            if not isinstance(value, str):
                return "numerical expects the raw text as entered"
            return None
        case "essay":
            if not isinstance(value, str):
                return "essay expects free text"
            return None
        case _:
            raise UnknownQuestionTypeError(f"Unhandled question type: {question.type}")


def normalize_answer(question, value: AnswerValue) -> AnswerValue:
    """Freeze mutable sets so stored answers can't be changed behind the engine's back"""
    if question.type == "mcq_multiple" and isinstance(value, set):
        return frozenset(value)
    return value


def apply_click(question, current: Optional[AnswerValue], option_id: str) -> AnswerValue:
    """
    Apply an option click to the current answer

    mcq_single and true_false replace the prior selection,
    mcq_multiple toggles membership of the clicked option.
    """
    match question.type:
        case "mcq_single":
            return option_id
        case "mcq_multiple":
            selected = set(current) if isinstance(current, (set, frozenset)) else set()
            if option_id in selected:
                selected.discard(option_id)
            else:
                selected.add(option_id)
            return frozenset(selected)
        case "true_false":
            if option_id not in ("true", "false"):
                raise AnswerShapeError(f"true_false has no option '{option_id}'")
            return option_id == "true"
        case "numerical" | "essay":
            raise AnswerShapeError(f"{question.type} questions are not answered by clicking")
        case _:
            raise UnknownQuestionTypeError(f"Unhandled question type: {question.type}")


def coerce_wire_value(question, raw: Any) -> Any:
    """
    Convert a JSON-decoded value to the engine's answer shape

    JSON has no sets, so mcq_multiple arrives as a list; true_false may
    arrive as "true"/"false". Anything else is passed through unchanged
    and left for validate_answer to judge.
    """
    if question.type == "mcq_multiple" and isinstance(raw, list):
        # Nested lists/objects are unhashable; leave them for validate_answer
        if all(isinstance(v, str) for v in raw):
            return frozenset(raw)
        return raw
    if question.type == "true_false" and isinstance(raw, str) and raw.lower() in ("true", "false"):
        return raw.lower() == "true"
    return raw


def word_count(text: str) -> int:
    """Whitespace-delimited token count, derived on demand"""
    return len(text.split())


def is_answered(question, value: Optional[AnswerValue]) -> bool:
    """An empty selection or blank text counts as not answered"""
    if value is None:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (set, frozenset, list)):
        return len(value) > 0
    if isinstance(value, str):
        return value.strip() != ""
    return False


def _parse_number(text: str) -> Optional[Decimal]:
    """Finite decimal or None; NaN/sNaN/Infinity never compare as answers"""
    try:
        number = Decimal(str(text).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def evaluate(question, value: Optional[AnswerValue], key: AnswerKey) -> bool:
    """
    Compare an answer against a correctness reference

    Unanswered questions are never correct. Numerical answers compare as
    parsed numbers; essays compare as whitespace/case-normalised text.
    """
    if not is_answered(question, value):
        return False

    correct = key.correct
    match question.type:
        case "mcq_single":
            return value == correct
        case "mcq_multiple":
            expected = frozenset(correct) if isinstance(correct, (set, frozenset, list)) else frozenset([correct])
            return frozenset(value) == expected
        case "true_false":
            if isinstance(correct, str):
                correct = correct.strip().lower() == "true"
            return value is correct
        case "numerical":
            given = _parse_number(value)
            expected = _parse_number(correct)
            if given is None or expected is None:
                return False
            return given == expected
        case "essay":
            if not isinstance(correct, str):
                return False
            return " ".join(value.lower().split()) == " ".join(correct.lower().split())
        case _:
            raise UnknownQuestionTypeError(f"Unhandled question type: {question.type}")
