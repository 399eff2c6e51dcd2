"""
Scoring Service
Server-side scoring of finished attempts
FILE: app/services/scoring_service.py
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.services.answer_model import evaluate, is_answered
from app.services.question_source import key_from_document, question_from_document

logger = logging.getLogger(__name__)


@dataclass
class ExamScore:
    score: float
    total_marks: float
    correct: int
    wrong: int
    answered: int

    @property
    def percentage(self) -> float:
        return compute_percentage(self.score, self.total_marks)


def compute_percentage(part: float, whole: float) -> float:
    """Percentage rounded to two places; zero when there is nothing to score"""
    return round((part / whole) * 100, 2) if whole > 0 else 0.0


def score_exam(
    question_docs: List[Dict[str, Any]],
    section_docs: Dict[str, Dict[str, Any]],
    answers: Dict[str, Any],
    exam_negative_marking: float = 0.0,
) -> ExamScore:
    """
    Score exam answers against the stored references

    Marks per question fall back to the section default, then 1. Wrong
    answers lose the section's negative marking (or the exam-wide one);
    unanswered questions cost nothing. The final score never drops below 0.

    Args:
        question_docs: Stored question documents, references included
        section_docs: Section documents keyed by sectionId
        answers: questionId -> answer value as submitted
        exam_negative_marking: Exam-wide penalty per wrong answer

    Returns:
        ExamScore with score, total marks and correct/wrong counts
    """
    score = 0.0
    total = 0.0
    correct = wrong = answered = 0

    for doc in question_docs:
        section = section_docs.get(str(doc.get("sectionId")), {})
        marks = doc.get("marks") or section.get("defaultMarksPerQuestion") or 1
        section_negative = section.get("negativeMarking")
        negative = section_negative if section_negative is not None else (exam_negative_marking or 0)
        total += marks

        question = question_from_document(doc)
        value = answers.get(question.id)
        if not is_answered(question, value):
            continue

        answered += 1
        key = key_from_document(doc)
        if key is not None and evaluate(question, value, key):
            correct += 1
            score += marks
        else:
            wrong += 1
            score -= negative

    score = max(0.0, score)
    logger.debug(f"📊 Exam scored: {score}/{total} ({correct} correct, {wrong} wrong)")
    return ExamScore(score=score, total_marks=total, correct=correct, wrong=wrong, answered=answered)


def practice_percentage(correct: int, total: int) -> float:
    return compute_percentage(correct, total)


def answer_to_document(value: Any) -> Optional[Any]:
    """Store sets as sorted lists; everything else as-is"""
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return value
