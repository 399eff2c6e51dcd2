"""
Question Source Service
Builds the question set for a practice or exam attempt from MongoDB
FILE: app/services/question_source.py
"""
import logging
import random
from typing import Any, Dict, List, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.config import settings
from app.models.questions import AnswerKey, QuestionItem, question_adapter
from app.models.session import QuestionSet, Section, SessionMode

logger = logging.getLogger(__name__)

PRACTICE_SECTION_ID = "practice"


class QuestionSourceError(Exception):
    """Base exception for question source errors"""
    pass


class ExamNotFoundError(QuestionSourceError):
    """Exam id does not exist"""
    pass


class QuestionSource(Protocol):
    async def generate_session_questions(
        self,
        target_id: str,
        scope_id: Optional[str],
        subject_context: Optional[str],
        user_id: str,
        mode: SessionMode,
    ) -> QuestionSet:
        ...


def question_from_document(doc: Dict[str, Any], section_id: Optional[str] = None):
    """
    Map a stored question document to its question variant

    SECURITY: only public fields are copied; correctAnswer/explanation are
    read separately by key_from_document.
    """
    data = {
        "id": str(doc["questionId"]),
        "type": doc.get("type", "mcq_single"),
        "section_id": section_id if section_id is not None else doc.get("sectionId"),
        "prompt": doc.get("prompt", ""),
        "media_url": doc.get("mediaUrl"),
        "passage_id": doc.get("passageId"),
        "marks": doc.get("marks") or 1.0,
        "difficulty": doc.get("difficulty", "medium"),
    }
    if doc.get("options") is not None and data["type"] != "true_false":
        data["options"] = [{"id": str(o["id"]), "text": o.get("text", "")} for o in doc["options"]]
    return question_adapter.validate_python(data)


def key_from_document(doc: Dict[str, Any]) -> Optional[AnswerKey]:
    """Read the correctness reference of a stored question, if it has one"""
    correct = doc.get("correctAnswer")
    if correct is None:
        return None

    question_type = doc.get("type", "mcq_single")
    if question_type == "mcq_multiple":
        correct = frozenset(str(c) for c in correct)
    elif question_type == "true_false" and not isinstance(correct, bool):
        correct = str(correct).strip().lower() == "true"
    else:
        correct = str(correct)

    return AnswerKey(
        correct=correct,
        explanation=doc.get("explanation"),
        explanation_url=doc.get("explanationUrl"),
    )


class MongoQuestionSource:
    """
    Question Source backed by MongoDB

    Practice sets are sampled per difficulty from the subtopic's question
    pool, skipping questions the learner already answered correctly.
    Exam sets follow the exam's section order and are built without any
    correctness reference.
    """

    def __init__(self, db: AsyncIOMotorDatabase, rng: Optional[random.Random] = None):
        self.db = db
        self.questions = db[settings.questions_collection]
        self.exams = db[settings.exams_collection]
        self.sections = db[settings.exam_sections_collection]
        self.rules = db[settings.practice_rules_collection]
        self.attempts = db[settings.attempts_collection]
        self.rng = rng or random.Random()

    async def generate_session_questions(
        self,
        target_id: str,
        scope_id: Optional[str],
        subject_context: Optional[str],
        user_id: str,
        mode: SessionMode,
    ) -> QuestionSet:
        if mode == "exam":
            return await self._exam_set(target_id)
        return await self._practice_set(target_id, scope_id, subject_context, user_id)

    # ========================================================================
    # PRACTICE
    # ========================================================================

    async def get_practice_rules(
        self,
        scope_id: Optional[str],
        subject_context: Optional[str]
    ) -> Dict[str, Any]:
        """Practice rules for a scope/subject pair, falling back to defaults"""
        defaults = {
            "mcqCountPerSession": settings.practice_question_count,
            "easyPercentage": settings.practice_easy_percentage,
            "mediumPercentage": settings.practice_medium_percentage,
            "hardPercentage": settings.practice_hard_percentage,
            "timeLimitMinutes": None,
        }
        if not scope_id or not subject_context:
            return defaults

        rule = await self.rules.find_one({"scopeId": scope_id, "subjectId": subject_context})
        if not rule:
            logger.debug(f"No practice rule for scope={scope_id} subject={subject_context}, using defaults")
            return defaults

        rule.pop("_id", None)
        return {**defaults, **{k: v for k, v in rule.items() if v is not None}}

    @staticmethod
    def difficulty_counts(total: int, easy_pct: int, medium_pct: int) -> Dict[str, int]:
        """Split `total` by percentage; hard takes whatever rounding leaves"""
        easy = round(total * easy_pct / 100)
        medium = round(total * medium_pct / 100)
        hard = max(0, total - easy - medium)
        return {"easy": easy, "medium": medium, "hard": hard}

    async def _mastered_question_ids(self, user_id: str) -> List[str]:
        return await self.attempts.distinct("questionId", {"userId": user_id, "isCorrect": True})

    async def _practice_set(
        self,
        subtopic_id: str,
        scope_id: Optional[str],
        subject_context: Optional[str],
        user_id: str,
    ) -> QuestionSet:
        try:
            rules = await self.get_practice_rules(scope_id, subject_context)
            counts = self.difficulty_counts(
                rules["mcqCountPerSession"],
                rules["easyPercentage"],
                rules["mediumPercentage"],
            )
            excluded = await self._mastered_question_ids(user_id)

            docs: List[Dict[str, Any]] = []
            for difficulty, count in counts.items():
                if count <= 0:
                    continue
                pool = await self.questions.find({
                    "subtopicId": subtopic_id,
                    "difficulty": difficulty,
                    "isActive": True,
                    "questionId": {"$nin": excluded},
                }).to_list(length=None)
                self.rng.shuffle(pool)
                docs.extend(pool[:count])

            self.rng.shuffle(docs)

        except Exception as e:
            logger.error(f"❌ Failed to build practice set for subtopic {subtopic_id}: {e}")
            raise QuestionSourceError(f"Failed to load practice questions: {str(e)}")

        items = [
            QuestionItem.for_practice(
                question_from_document(doc, section_id=PRACTICE_SECTION_ID),
                key_from_document(doc),
            )
            for doc in docs
        ]
        time_limit = rules.get("timeLimitMinutes")

        logger.info(
            f"📚 Practice set for subtopic {subtopic_id}: {len(items)} questions "
            f"(target {counts}, excluded {len(excluded)} mastered)"
        )

        return QuestionSet(
            sections=[Section(id=PRACTICE_SECTION_ID, name="Practice", ordinal=0)],
            items=items,
            allow_continue_after_time_up=False,
            overall_duration_seconds=int(time_limit * 60) if time_limit else None,
        )

    # ========================================================================
    # EXAM
    # ========================================================================

    async def _exam_set(self, exam_id: str) -> QuestionSet:
        exam = await self.exams.find_one({"examId": exam_id})
        if not exam:
            logger.warning(f"⚠️ Exam not found: {exam_id}")
            raise ExamNotFoundError(f"Exam not found: {exam_id}")

        try:
            section_docs = await self.sections.find(
                {"examId": exam_id}
            ).sort("orderIndex", 1).to_list(length=None)

            section_ids = [str(s["sectionId"]) for s in section_docs]
            question_docs = await self.questions.find({
                "sectionId": {"$in": section_ids},
                "isActive": {"$ne": False},
            }).sort("orderIndex", 1).to_list(length=None)

        except Exception as e:
            logger.error(f"❌ Failed to load exam {exam_id}: {e}")
            raise QuestionSourceError(f"Failed to load exam questions: {str(e)}")

        sections = [
            Section(
                id=str(doc["sectionId"]),
                name=doc.get("name", f"Section {idx + 1}"),
                ordinal=idx,
                time_limit_seconds=int(doc["sectionDurationMinutes"] * 60)
                if doc.get("sectionDurationMinutes") else None,
            )
            for idx, doc in enumerate(section_docs)
        ]
        items = [QuestionItem.for_exam(question_from_document(doc)) for doc in question_docs]
        duration = exam.get("totalDurationMinutes")

        logger.info(
            f"📝 Exam set for {exam_id}: {len(sections)} sections, {len(items)} questions"
        )

        return QuestionSet(
            sections=sections,
            items=items,
            allow_continue_after_time_up=bool(exam.get("allowContinueAfterTimeUp", False)),
            overall_duration_seconds=int(duration * 60) if duration else None,
        )
