"""
Test doubles and question-set builders for the session engine tests.
"""
from typing import List, Optional

from app.models.questions import (
    AnswerKey,
    EssayQuestion,
    McqMultipleQuestion,
    McqSingleQuestion,
    NumericalQuestion,
    Option,
    QuestionItem,
    TrueFalseQuestion,
)
from app.models.session import AttemptSummary, QuestionSet, Section, SessionResults


class FakeClock:
    """Monotonic clock advanced by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeQuestionSource:
    def __init__(self, question_set: Optional[QuestionSet] = None, error: Optional[Exception] = None):
        self.question_set = question_set
        self.error = error
        self.calls = []

    async def generate_session_questions(self, target_id, scope_id, subject_context, user_id, mode):
        self.calls.append((target_id, scope_id, subject_context, user_id, mode))
        if self.error is not None:
            raise self.error
        return self.question_set


class FakePersistence:
    """Records every call; complete_session can be told to fail N times"""

    def __init__(self, fail_complete: int = 0, fail_create: bool = False, fail_record: bool = False):
        self.fail_complete = fail_complete
        self.fail_create = fail_create
        self.fail_record = fail_record
        self.created = []
        self.recorded = []
        self.completed: List[AttemptSummary] = []

    async def create_session(self, user_id, target_id, context_id, mode):
        if self.fail_create:
            raise RuntimeError("database unavailable")
        self.created.append((user_id, target_id, context_id, mode))
        return f"session_test{len(self.created)}"

    async def record_attempt(self, session_id, question_id, user_id, value, time_spent_seconds):
        if self.fail_record:
            raise RuntimeError("write failed")
        self.recorded.append({
            "session_id": session_id,
            "question_id": question_id,
            "value": value,
            "time_spent_seconds": time_spent_seconds,
        })
        return {"ack": True}

    async def complete_session(self, summary: AttemptSummary) -> SessionResults:
        self.completed.append(summary)
        if self.fail_complete > 0:
            self.fail_complete -= 1
            raise RuntimeError("scoring service unavailable")
        correct = summary.correct or 0
        return SessionResults(
            session_id=summary.session_id,
            total=summary.total,
            answered=summary.answered,
            correct=correct,
            wrong=summary.wrong or 0,
            skipped=summary.skipped,
            elapsed_seconds=summary.elapsed_seconds,
            late=summary.late,
            percentage=round(correct / summary.total * 100, 2) if summary.total else 0.0,
        )


def mcq(qid: str, section_id: Optional[str] = None, multiple: bool = False):
    cls = McqMultipleQuestion if multiple else McqSingleQuestion
    return cls(
        id=qid,
        section_id=section_id,
        prompt=f"Prompt {qid}",
        options=[Option(id=o, text=o.upper()) for o in ("a", "b", "c", "d")],
    )


def build_exam_set(
    section_limits=(60, None),
    questions_per_section: int = 2,
    overall: Optional[int] = 120,
    allow_continue: bool = False,
) -> QuestionSet:
    sections = [
        Section(id=f"sec{i + 1}", name=f"Section {i + 1}", ordinal=i, time_limit_seconds=limit)
        for i, limit in enumerate(section_limits)
    ]
    items = [
        QuestionItem.for_exam(mcq(f"s{i + 1}q{j + 1}", section_id=s.id))
        for i, s in enumerate(sections)
        for j in range(questions_per_section)
    ]
    return QuestionSet(
        sections=sections,
        items=items,
        allow_continue_after_time_up=allow_continue,
        overall_duration_seconds=overall,
    )


def build_practice_set(duration: Optional[int] = None) -> QuestionSet:
    items = [
        QuestionItem.for_practice(mcq("q1"), AnswerKey(correct="b", explanation="B is right")),
        QuestionItem.for_practice(mcq("q2", multiple=True), AnswerKey(correct=frozenset({"a", "c"}))),
        QuestionItem.for_practice(TrueFalseQuestion(id="q3", prompt="Water boils at 100C"), AnswerKey(correct=True)),
        QuestionItem.for_practice(NumericalQuestion(id="q4", prompt="g?"), AnswerKey(correct="9.81")),
        QuestionItem.for_practice(EssayQuestion(id="q5", prompt="Name it"), AnswerKey(correct="Photosynthesis")),
    ]
    return QuestionSet(
        sections=[Section(id="practice", name="Practice", ordinal=0)],
        items=items,
        overall_duration_seconds=duration,
    )


