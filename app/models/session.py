"""
Assessment Session Models
In-memory state of one practice or exam attempt
FILE: app/models/session.py
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.models.questions import AnswerKey, AnswerValue, QuestionItem


SessionMode = Literal["practice", "exam"]
FinalizeReason = Literal["explicit", "auto", "timeout", "time_up_finish"]


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    IN_PROGRESS = "in_progress"
    TIME_UP = "time_up"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"
    SETUP_ERROR = "setup_error"
    ABANDONED = "abandoned"


TERMINAL_STATUSES = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.SETUP_ERROR,
    SessionStatus.ABANDONED,
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Section(BaseModel):
    """Ordered, independently lockable partition of the question set"""
    id: str
    name: str
    ordinal: int = Field(..., ge=0)
    time_limit_seconds: Optional[int] = Field(None, gt=0)
    locked: bool = False
    completed_at: Optional[datetime] = None


class NavigatorState(BaseModel):
    """Which section/question the learner is looking at"""
    section_id: str
    question_index: int = Field(default=0, ge=0)


class Answer(BaseModel):
    question_id: str
    value: AnswerValue
    answered_at: datetime = Field(default_factory=utcnow)


class SessionConfig(BaseModel):
    """Everything the UI supplies to start an attempt"""
    mode: SessionMode
    target_id: str = Field(..., min_length=1, description="Subtopic id (practice) or exam id (exam)")
    scope_id: Optional[str] = Field(None, description="University / institution scope")
    subject_context: Optional[str] = Field(None, description="Subject the target belongs to")
    user_id: str = Field(..., min_length=1)


class QuestionSet(BaseModel):
    """What the Question Source hands back for one attempt"""
    sections: List[Section]
    items: List[QuestionItem]
    allow_continue_after_time_up: bool = False
    overall_duration_seconds: Optional[int] = Field(None, gt=0)


class Attempt(BaseModel):
    """
    Session/Attempt record owned by exactly one SessionController.

    overall_deadline is in the controller's monotonic clock and is fixed at
    start; it is None for practice sessions without a time limit.
    """
    id: str
    mode: SessionMode
    target_id: str
    user_id: str
    sections: List[Section]
    started_at: datetime = Field(default_factory=utcnow)
    started_clock: float = 0.0
    overall_deadline: Optional[float] = None
    late_flag: bool = False
    status: SessionStatus = SessionStatus.INITIALIZING
    allow_continue_after_time_up: bool = False


class AnswerResult(BaseModel):
    """Outcome of recordAnswer; rejections are local and non-fatal"""
    accepted: bool
    question_id: str
    reason: Optional[str] = None


class CheckResult(BaseModel):
    """Practice-mode check outcome, the only place a reference is revealed"""
    question_id: str
    answered: bool
    is_correct: bool
    key: AnswerKey


class AttemptSummary(BaseModel):
    """
    Aggregated payload submitted to completeSession.

    Built once when Finalizing is first entered and reused verbatim by retry().
    correct/wrong are None in exam mode: the scoring service decides them.
    """
    session_id: str
    user_id: str
    mode: SessionMode
    reason: FinalizeReason
    total: int
    answered: int
    correct: Optional[int] = None
    wrong: Optional[int] = None
    skipped: int
    elapsed_seconds: int
    late: bool = False
    answers: Dict[str, AnswerValue] = Field(default_factory=dict)


class SessionResults(BaseModel):
    """Results payload rendered once the attempt is Completed"""
    session_id: str
    total: int
    answered: int
    correct: int
    wrong: int
    skipped: int
    elapsed_seconds: int
    late: bool = False
    score: Optional[float] = None
    total_marks: Optional[float] = None
    percentage: float = 0.0


class Notice(BaseModel):
    """Non-blocking message for the UI (toasts, warnings, rejections)"""
    level: Literal["info", "warning", "success", "error"] = "info"
    message: str
    created_at: datetime = Field(default_factory=utcnow)
