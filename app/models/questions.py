"""
Question Models
Closed set of question variants and the sealed correctness reference
FILE: app/models/questions.py
"""
from typing import Annotated, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, Field, PrivateAttr, TypeAdapter, field_validator


QuestionType = Literal["mcq_single", "mcq_multiple", "true_false", "numerical", "essay"]
Difficulty = Literal["easy", "medium", "hard"]

# Answer value shapes, one per question type:
#   mcq_single -> str, mcq_multiple -> frozenset[str], true_false -> bool,
#   numerical -> str (raw), essay -> str
AnswerValue = Union[bool, str, FrozenSet[str]]


class KeyNotRevealedError(Exception):
    """Raised when a sealed correctness reference is read before check"""
    pass


class Option(BaseModel):
    """Selectable option of a choice question"""
    id: str = Field(..., min_length=1, description="Option identifier (a, b, c ...)")
    text: str = Field(..., description="Option label shown to the learner")


class QuestionBase(BaseModel):
    """Fields shared by every question variant"""
    id: str = Field(..., min_length=1, description="Question identifier")
    section_id: Optional[str] = Field(None, description="Owning section (exam mode)")
    prompt: str = Field(..., description="Question text")
    media_url: Optional[str] = Field(None, description="Optional image/media attachment")
    passage_id: Optional[str] = Field(None, description="Linked reading passage")
    marks: float = Field(default=1.0, ge=0, description="Marks awarded when correct")
    difficulty: Difficulty = Field(default="medium", description="Question difficulty")


class McqSingleQuestion(QuestionBase):
    type: Literal["mcq_single"] = "mcq_single"
    options: List[Option] = Field(..., min_length=2)

    @field_validator("options")
    @classmethod
    def validate_unique_option_ids(cls, v: List[Option]) -> List[Option]:
        ids = [o.id for o in v]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate option ids: {ids}")
        return v


class McqMultipleQuestion(McqSingleQuestion):
    type: Literal["mcq_multiple"] = "mcq_multiple"


class TrueFalseQuestion(QuestionBase):
    type: Literal["true_false"] = "true_false"
    options: List[Option] = Field(
        default_factory=lambda: [Option(id="true", text="True"), Option(id="false", text="False")]
    )


class NumericalQuestion(QuestionBase):
    type: Literal["numerical"] = "numerical"


class EssayQuestion(QuestionBase):
    type: Literal["essay"] = "essay"


Question = Annotated[
    Union[
        McqSingleQuestion,
        McqMultipleQuestion,
        TrueFalseQuestion,
        NumericalQuestion,
        EssayQuestion,
    ],
    Field(discriminator="type"),
]

question_adapter = TypeAdapter(Question)


class AnswerKey(BaseModel):
    """
    Correctness reference for a practice question

    `correct` uses the answer shape of the question type: an option id,
    a set of option ids, a boolean, or reference text/number as a string.
    """
    correct: AnswerValue
    explanation: Optional[str] = None
    explanation_url: Optional[str] = None


class QuestionItem(BaseModel):
    """
    A question as held by a running session.

    SECURITY: the correctness reference is a private attribute. It is never
    part of model_dump()/JSON output and reveal() refuses to hand it out
    until the item has been checked. Exam items cannot carry one at all.
    """
    question: Question
    checked: bool = False

    _key: Optional[AnswerKey] = PrivateAttr(default=None)

    @classmethod
    def for_exam(cls, question) -> "QuestionItem":
        return cls(question=question)

    @classmethod
    def for_practice(cls, question, key: Optional[AnswerKey]) -> "QuestionItem":
        item = cls(question=question)
        item._key = key
        return item

    @property
    def id(self) -> str:
        return self.question.id

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def mark_checked(self) -> None:
        self.checked = True

    def reveal(self) -> AnswerKey:
        """Return the correctness reference; only legal after check"""
        if not self.checked:
            raise KeyNotRevealedError(f"Question {self.id} has not been checked")
        if self._key is None:
            raise KeyNotRevealedError(f"Question {self.id} carries no correctness reference")
        return self._key

    def sealed_key(self) -> Optional[AnswerKey]:
        """Engine-internal read used for practice scoring at finalize"""
        return self._key
