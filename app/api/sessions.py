"""
Assessment Session API Routes
"""
import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.session import SessionConfig
from app.models.session_api import (
    AnswerResponse,
    CheckAnswerRequest,
    CheckResponse,
    ClickOptionRequest,
    ErrorResponse,
    NavigateRequest,
    RecordAnswerRequest,
    SessionSnapshot,
    StartSessionRequest,
)
from app.services.answer_model import coerce_wire_value
from app.services.persistence_service import MongoPersistenceService
from app.services.question_source import MongoQuestionSource
from app.services.scoring_service import answer_to_document
from app.services.section_manager import SectionError, SectionNotFoundError
from app.services.session_controller import (
    InvalidTransitionError,
    NavigationRejectedError,
    QuestionNotFoundError,
    SessionController,
    SetupError,
)
from app.services.session_registry import (
    SessionNotFoundError,
    SessionRegistry,
    get_session_registry,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["Sessions"])


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

async def get_db() -> AsyncIOMotorDatabase:
    """Dependency to get MongoDB database instance"""
    from app.db.mongodb import get_database
    return get_database()


def get_question_source(db: AsyncIOMotorDatabase = Depends(get_db)) -> MongoQuestionSource:
    return MongoQuestionSource(db=db)


def get_persistence_service(db: AsyncIOMotorDatabase = Depends(get_db)) -> MongoPersistenceService:
    return MongoPersistenceService(db=db)


def get_controller_factory(
    source: MongoQuestionSource = Depends(get_question_source),
    persistence: MongoPersistenceService = Depends(get_persistence_service)
) -> Callable[[], SessionController]:
    """Dependency returning a factory for fresh controllers (one per attempt)"""
    return lambda: SessionController(question_source=source, persistence=persistence)


def get_registry() -> SessionRegistry:
    return get_session_registry()


async def load_controller(session_id: str, registry: SessionRegistry) -> SessionController:
    """Look up a live controller and bring its clocks up to date"""
    try:
        controller = registry.get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    await controller.tick()
    return controller


def _conflict(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# ============================================================================
# START / STATE
# ============================================================================

@router.post(
    "/start",
    response_model=SessionSnapshot,
    status_code=status.HTTP_201_CREATED,
    responses={
        422: {"description": "No questions available or session could not be created", "model": ErrorResponse},
        500: {"description": "Internal server error"}
    },
    summary="Start a practice or exam attempt",
    description="""
    Start a new attempt for a learner.

    **Workflow:**
    1. Loads the question set (practice: sampled by difficulty mix, exam: ordered sections)
    2. Creates the session record
    3. Arms the overall and section clocks and returns the first question

    On failure nothing is created and the response tells the client to return to the catalog.
    """
)
async def start_session(
    request: StartSessionRequest,
    factory: Callable[[], SessionController] = Depends(get_controller_factory),
    registry: SessionRegistry = Depends(get_registry)
) -> SessionSnapshot:
    """
    Start a new attempt

    Example:
        POST /api/sessions/start
        {
            "mode": "exam",
            "targetId": "exam_midterm",
            "userId": "user_123"
        }
    """
    registry.cleanup_expired()
    controller = factory()

    try:
        await controller.start(SessionConfig(
            mode=request.mode,
            target_id=request.targetId.strip(),
            scope_id=request.scopeId,
            subject_context=request.subjectId,
            user_id=request.userId.strip(),
        ))

    except SetupError as e:
        logger.warning(f"⚠️ Session setup failed for {request.mode} {request.targetId}: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"detail": str(e), "returnTo": e.return_to}
        )

    except Exception as e:
        logger.error(f"Unexpected error starting session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while starting the session"
        )

    registry.add(controller)
    return SessionSnapshot(**controller.snapshot())


@router.get(
    "/{session_id}",
    response_model=SessionSnapshot,
    summary="Get session state",
    description="Current status, clocks, navigator, answers and results of an attempt"
)
async def get_session_state(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry)
) -> SessionSnapshot:
    controller = await load_controller(session_id, registry)
    return SessionSnapshot(**controller.snapshot())


# ============================================================================
# ANSWERS
# ============================================================================

@router.post(
    "/{session_id}/answers",
    response_model=AnswerResponse,
    summary="Record an answer",
    description="Last write wins. Rejected answers return accepted=false with a reason."
)
async def record_answer(
    session_id: str,
    request: RecordAnswerRequest,
    registry: SessionRegistry = Depends(get_registry)
) -> AnswerResponse:
    controller = await load_controller(session_id, registry)

    try:
        question = controller.get_question(request.questionId)
    except QuestionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    result = controller.record_answer(request.questionId, coerce_wire_value(question, request.value))
    return AnswerResponse(
        accepted=result.accepted,
        questionId=result.question_id,
        reason=result.reason,
        answer=answer_to_document(controller.current_answer(request.questionId)),
    )


@router.post(
    "/{session_id}/answers/click",
    response_model=AnswerResponse,
    summary="Click an option",
    description="Replaces the selection for single choice and true/false, toggles it for multiple choice"
)
async def click_option(
    session_id: str,
    request: ClickOptionRequest,
    registry: SessionRegistry = Depends(get_registry)
) -> AnswerResponse:
    controller = await load_controller(session_id, registry)

    try:
        controller.get_question(request.questionId)
    except QuestionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    result = controller.click_option(request.questionId, request.optionId)
    return AnswerResponse(
        accepted=result.accepted,
        questionId=result.question_id,
        reason=result.reason,
        answer=answer_to_document(controller.current_answer(request.questionId)),
    )


@router.post(
    "/{session_id}/check",
    response_model=CheckResponse,
    summary="Check a practice answer",
    description="Practice mode only. Reveals the correct answer and explanation for one question."
)
async def check_answer(
    session_id: str,
    request: CheckAnswerRequest,
    registry: SessionRegistry = Depends(get_registry)
) -> CheckResponse:
    controller = await load_controller(session_id, registry)

    try:
        result = await controller.check_answer(request.questionId)

    except QuestionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except InvalidTransitionError as e:
        raise _conflict(e)

    return CheckResponse(
        questionId=result.question_id,
        answered=result.answered,
        isCorrect=result.is_correct,
        correctAnswer=answer_to_document(result.key.correct),
        explanation=result.key.explanation,
        explanationUrl=result.key.explanation_url,
    )


# ============================================================================
# NAVIGATION & SECTIONS
# ============================================================================

@router.post(
    "/{session_id}/navigate",
    response_model=SessionSnapshot,
    summary="Navigate to a question",
    description="Only questions of the active, unlocked section can be opened"
)
async def navigate(
    session_id: str,
    request: NavigateRequest,
    registry: SessionRegistry = Depends(get_registry)
) -> SessionSnapshot:
    controller = await load_controller(session_id, registry)

    try:
        controller.navigate(request.index, section_id=request.sectionId)
    except NavigationRejectedError as e:
        raise _conflict(e)

    return SessionSnapshot(**controller.snapshot())


@router.post(
    "/{session_id}/sections/{section_id}/finish",
    response_model=SessionSnapshot,
    summary="Finish a section",
    description="""
    Lock the active section and move to the next one.
    Finishing the last section submits the attempt. Finishing an already
    locked section is a no-op.
    """
)
async def finish_section(
    session_id: str,
    section_id: str,
    registry: SessionRegistry = Depends(get_registry)
) -> SessionSnapshot:
    controller = await load_controller(session_id, registry)

    try:
        await controller.finish_section(section_id)

    except SectionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except (SectionError, InvalidTransitionError) as e:
        raise _conflict(e)

    return SessionSnapshot(**controller.snapshot())


# ============================================================================
# TIME UP / FINALIZE
# ============================================================================

@router.post(
    "/{session_id}/time-up/continue",
    response_model=SessionSnapshot,
    summary="Continue after time up",
    description="Resume the attempt after the overall clock ran out; the attempt is marked late"
)
async def continue_after_time_up(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry)
) -> SessionSnapshot:
    controller = await load_controller(session_id, registry)

    try:
        controller.continue_after_time_up()
    except InvalidTransitionError as e:
        raise _conflict(e)

    return SessionSnapshot(**controller.snapshot())


@router.post(
    "/{session_id}/finalize",
    response_model=SessionSnapshot,
    summary="Submit the attempt",
    description="""
    Submit the attempt for scoring. Safe to call more than once: only the
    first call submits. If scoring fails the status becomes `error` and
    `/retry` resubmits the same aggregated payload.
    """
)
async def finalize(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry)
) -> SessionSnapshot:
    controller = await load_controller(session_id, registry)
    await controller.finish_now()
    return SessionSnapshot(**controller.snapshot())


@router.post(
    "/{session_id}/retry",
    response_model=SessionSnapshot,
    summary="Retry a failed submission"
)
async def retry_finalize(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry)
) -> SessionSnapshot:
    controller = await load_controller(session_id, registry)

    try:
        await controller.retry()
    except InvalidTransitionError as e:
        raise _conflict(e)

    return SessionSnapshot(**controller.snapshot())


@router.delete(
    "/{session_id}",
    summary="Leave the attempt",
    description="Stops the clocks and discards the attempt without submitting it"
)
async def abandon_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry)
):
    controller = await load_controller(session_id, registry)

    try:
        controller.abandon()
    except InvalidTransitionError as e:
        raise _conflict(e)

    registry.remove(session_id)
    return {
        "sessionId": session_id,
        "status": controller.status.value,
        "message": "Session closed"
    }
