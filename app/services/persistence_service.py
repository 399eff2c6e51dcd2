"""
Persistence Service
Session records, per-question attempts and idempotent completion in MongoDB
FILE: app/services/persistence_service.py
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.config import settings
from app.models.session import AttemptSummary, SessionMode, SessionResults
from app.services.answer_model import evaluate
from app.services.question_source import key_from_document, question_from_document
from app.services.scoring_service import answer_to_document, practice_percentage, score_exam

logger = logging.getLogger(__name__)


class PersistenceServiceError(Exception):
    """Base exception for persistence service errors"""
    pass


class SessionCreateError(PersistenceServiceError):
    pass


class CompleteSessionError(PersistenceServiceError):
    pass


class PersistenceService(Protocol):
    async def create_session(
        self,
        user_id: str,
        target_id: str,
        context_id: Optional[str],
        mode: SessionMode,
    ) -> str:
        ...

    async def record_attempt(
        self,
        session_id: str,
        question_id: str,
        user_id: str,
        value: Any,
        time_spent_seconds: int,
    ) -> Dict[str, Any]:
        ...

    async def complete_session(self, summary: AttemptSummary) -> SessionResults:
        ...


def _results_from_document(doc: Dict[str, Any]) -> SessionResults:
    return SessionResults(
        session_id=doc["sessionId"],
        total=doc.get("totalQuestions", 0),
        answered=doc.get("answeredQuestions", 0),
        correct=doc.get("correctAnswers", 0),
        wrong=doc.get("wrongAnswers", 0),
        skipped=doc.get("skippedQuestions", 0),
        elapsed_seconds=doc.get("timeSpentSeconds", 0),
        late=doc.get("isLate", False),
        score=doc.get("score"),
        total_marks=doc.get("totalMarks"),
        percentage=doc.get("scorePercentage") or 0.0,
    )


class MongoPersistenceService:
    """
    Persistence/Scoring Service backed by MongoDB

    completeSession is idempotent per session id: the completing update only
    matches a session that is not yet completed, and a repeated call returns
    the stored results instead of writing again.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.sessions = db[settings.sessions_collection]
        self.attempts = db[settings.attempts_collection]
        self.questions = db[settings.questions_collection]
        self.exams = db[settings.exams_collection]
        self.sections = db[settings.exam_sections_collection]
        self.streaks = db[settings.streaks_collection]

    async def create_session(
        self,
        user_id: str,
        target_id: str,
        context_id: Optional[str],
        mode: SessionMode,
    ) -> str:
        """
        Create the session record for a new attempt

        Returns:
            The new session id

        Raises:
            SessionCreateError: If the insert fails
        """
        session_id = f"session_{uuid.uuid4().hex[:12]}"
        doc = {
            "sessionId": session_id,
            "userId": user_id,
            "targetId": target_id,
            "contextId": context_id,
            "sessionType": mode,
            "status": "in_progress",
            "isCompleted": False,
            "startedAt": datetime.now(timezone.utc),
            "completedAt": None,
            "totalQuestions": 0,
            "correctAnswers": 0,
            "wrongAnswers": 0,
            "skippedQuestions": 0,
            "timeSpentSeconds": 0,
        }

        try:
            await self.sessions.insert_one(doc)
            logger.info(f"✅ Created {mode} session: {session_id} for user {user_id} (target {target_id})")
            return session_id

        except Exception as e:
            logger.error(f"❌ Failed to create session for target {target_id}: {e}")
            raise SessionCreateError(f"Failed to create session: {str(e)}")

    async def record_attempt(
        self,
        session_id: str,
        question_id: str,
        user_id: str,
        value: Any,
        time_spent_seconds: int,
    ) -> Dict[str, Any]:
        """
        Record one checked practice answer and update question statistics

        Returns:
            Acknowledgement with the server-side correctness verdict
        """
        try:
            doc = await self.questions.find_one({"questionId": question_id})
            if not doc:
                raise ValueError(f"Question not found: {question_id}")

            key = key_from_document(doc)
            is_correct = key is not None and evaluate(question_from_document(doc), value, key)

            await self.attempts.insert_one({
                "sessionId": session_id,
                "questionId": question_id,
                "userId": user_id,
                "selectedValue": answer_to_document(value),
                "isCorrect": is_correct,
                "timeSpentSeconds": time_spent_seconds,
                "attemptedAt": datetime.now(timezone.utc),
            })

            increments = {"timesAttempted": 1}
            if is_correct:
                increments["timesCorrect"] = 1
            await self.questions.update_one({"questionId": question_id}, {"$inc": increments})

            logger.info(
                f"✅ Recorded attempt - Session: {session_id}, Question: {question_id}, "
                f"Result: {'✓' if is_correct else '✗'}"
            )
            return {"ack": True, "isCorrect": is_correct}

        except ValueError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to record attempt for session {session_id}: {e}")
            raise PersistenceServiceError(f"Failed to record attempt: {str(e)}")

    async def complete_session(self, summary: AttemptSummary) -> SessionResults:
        """
        Score and close a session

        Exam attempts are scored here from the stored references; practice
        attempts arrive with their correct/wrong counts already aggregated.

        Raises:
            CompleteSessionError: If the session is missing or the write fails
        """
        try:
            existing = await self.sessions.find_one({"sessionId": summary.session_id})
            if not existing:
                raise CompleteSessionError(f"Session not found: {summary.session_id}")

            if existing.get("isCompleted"):
                logger.warning(f"⚠️ Session {summary.session_id} is already completed, returning stored result")
                return _results_from_document(existing)

            if summary.mode == "exam":
                update = await self._score_exam_update(existing["targetId"], summary)
            else:
                correct = summary.correct or 0
                update = {
                    "correctAnswers": correct,
                    "wrongAnswers": summary.wrong or 0,
                    "score": float(correct),
                    "totalMarks": float(summary.total),
                    "scorePercentage": practice_percentage(correct, summary.total),
                }

            update.update({
                "status": "completed",
                "isCompleted": True,
                "completedAt": datetime.now(timezone.utc),
                "finalizeReason": summary.reason,
                "totalQuestions": summary.total,
                "answeredQuestions": summary.answered,
                "skippedQuestions": summary.skipped,
                "timeSpentSeconds": summary.elapsed_seconds,
                "isLate": summary.late,
                "answers": {qid: answer_to_document(v) for qid, v in summary.answers.items()},
            })

            result = await self.sessions.update_one(
                {"sessionId": summary.session_id, "isCompleted": False},
                {"$set": update}
            )

            if result.matched_count == 0:
                # Completed concurrently by an earlier submission of the same payload
                stored = await self.sessions.find_one({"sessionId": summary.session_id})
                return _results_from_document(stored)

        except CompleteSessionError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to complete session {summary.session_id}: {e}")
            raise CompleteSessionError(f"Failed to complete session: {str(e)}")

        await self.update_streak(summary.user_id)

        logger.info(
            f"🏁 Session {summary.session_id} completed - "
            f"{update['correctAnswers']}/{summary.total} correct, {update['scorePercentage']}%"
        )
        return _results_from_document({"sessionId": summary.session_id, **update})

    async def _score_exam_update(self, exam_id: str, summary: AttemptSummary) -> Dict[str, Any]:
        exam = await self.exams.find_one({"examId": exam_id}) or {}
        section_docs = await self.sections.find({"examId": exam_id}).to_list(length=None)
        sections = {str(s["sectionId"]): s for s in section_docs}
        question_docs = await self.questions.find({
            "sectionId": {"$in": list(sections.keys())},
            "isActive": {"$ne": False},
        }).to_list(length=None)

        scored = score_exam(
            question_docs,
            sections,
            summary.answers,
            exam_negative_marking=exam.get("negativeMarking") or 0.0,
        )
        return {
            "correctAnswers": scored.correct,
            "wrongAnswers": scored.wrong,
            "score": scored.score,
            "totalMarks": scored.total_marks,
            "scorePercentage": scored.percentage,
        }

    async def update_streak(self, user_id: str) -> None:
        """Record today's date in the learner's streak; failures are only logged"""
        try:
            today = datetime.now(timezone.utc).date().isoformat()
            await self.streaks.update_one(
                {"userId": user_id, "streakDate": today},
                {"$setOnInsert": {"userId": user_id, "streakDate": today}},
                upsert=True
            )
        except Exception as e:
            logger.error(f"❌ Error updating streak for {user_id}: {e}")
