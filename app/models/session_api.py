"""
Session API Request/Response Models
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class StartSessionRequest(BaseModel):
    """Request model for starting a practice or exam attempt"""
    mode: Literal["practice", "exam"] = Field(..., description="Attempt mode")
    targetId: str = Field(..., min_length=1, description="Subtopic ID (practice) or exam ID (exam)")
    userId: str = Field(..., min_length=1, description="Learner ID")
    scopeId: Optional[str] = Field(None, description="University / institution scope")
    subjectId: Optional[str] = Field(None, description="Subject the target belongs to")

    class Config:
        json_schema_extra = {
            "example": {
                "mode": "practice",
                "targetId": "subtopic_kinematics",
                "userId": "user_123",
                "scopeId": "uni_01",
                "subjectId": "physics"
            }
        }


class RecordAnswerRequest(BaseModel):
    """Answer value in wire form: option id, list of option ids, boolean or text"""
    questionId: str = Field(..., min_length=1)
    value: Any = Field(..., description="Answer value matching the question type")

    class Config:
        json_schema_extra = {
            "example": {
                "questionId": "q_101",
                "value": ["a", "c"]
            }
        }


class ClickOptionRequest(BaseModel):
    questionId: str = Field(..., min_length=1)
    optionId: str = Field(..., min_length=1)


class NavigateRequest(BaseModel):
    index: int = Field(..., ge=0, description="Question index within the section")
    sectionId: Optional[str] = Field(None, description="Defaults to the active section")


class CheckAnswerRequest(BaseModel):
    questionId: str = Field(..., min_length=1)


class AnswerResponse(BaseModel):
    """Outcome of an answer write; rejections are non-fatal"""
    accepted: bool
    questionId: str
    reason: Optional[str] = None
    answer: Optional[Any] = None


class CheckResponse(BaseModel):
    """Practice check result with the revealed reference"""
    questionId: str
    answered: bool
    isCorrect: bool
    correctAnswer: Any
    explanation: Optional[str] = None
    explanationUrl: Optional[str] = None


class OptionView(BaseModel):
    id: str
    text: str


class QuestionView(BaseModel):
    """Public view of a question; never carries the reference"""
    questionId: str
    type: str
    sectionId: str
    index: int
    prompt: str
    mediaUrl: Optional[str] = None
    passageId: Optional[str] = None
    marks: float
    difficulty: str
    options: Optional[List[OptionView]] = None
    answer: Optional[Any] = None
    checked: bool = False
    wordCount: Optional[int] = None


class SectionView(BaseModel):
    sectionId: str
    name: str
    ordinal: int
    timeLimitSeconds: Optional[int] = None
    locked: bool
    active: bool
    completedAt: Optional[datetime] = None
    questionCount: int
    answeredCount: int


class PaletteEntry(BaseModel):
    questionId: str
    sectionId: str
    index: int
    answered: bool
    checked: bool


class NavigatorView(BaseModel):
    sectionId: str
    questionIndex: int


class SessionSnapshot(BaseModel):
    """Client-visible state of a running or finished attempt"""
    sessionId: str
    mode: Literal["practice", "exam"]
    targetId: str
    status: str
    lateFlag: bool = False
    allowContinueAfterTimeUp: bool = False
    overallRemainingSeconds: Optional[int] = None
    sectionRemainingSeconds: Optional[int] = None
    elapsedSeconds: int = 0
    navigator: NavigatorView
    currentQuestion: Optional[QuestionView] = None
    sections: List[SectionView] = Field(default_factory=list)
    palette: List[PaletteEntry] = Field(default_factory=list)
    answers: Dict[str, Any] = Field(default_factory=dict)
    answeredCount: int = 0
    totalQuestions: int = 0
    progressPercentage: float = 0.0
    checks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    notices: List[Dict[str, Any]] = Field(default_factory=list)
    results: Optional[Dict[str, Any]] = None
    lastError: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "sessionId": "session_3f2a9c1b7d4e",
                "mode": "exam",
                "targetId": "exam_midterm",
                "status": "in_progress",
                "overallRemainingSeconds": 3540,
                "sectionRemainingSeconds": 1140,
                "navigator": {"sectionId": "sec_1", "questionIndex": 0},
                "answeredCount": 1,
                "totalQuestions": 40
            }
        }


class ErrorResponse(BaseModel):
    detail: str
    returnTo: Optional[str] = None
