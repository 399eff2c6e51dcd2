"""
Session Controller
Top-level state machine driving one practice or exam attempt
FILE: app/services/session_controller.py
"""
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional

from app.core.config import settings
from app.models.questions import AnswerValue, QuestionItem
from app.models.session import (
    Answer,
    AnswerResult,
    Attempt,
    AttemptSummary,
    CheckResult,
    FinalizeReason,
    NavigatorState,
    Notice,
    SessionConfig,
    SessionStatus,
    TERMINAL_STATUSES,
)
from app.services.answer_model import (
    AnswerShapeError,
    apply_click,
    evaluate,
    is_answered,
    normalize_answer,
    validate_answer,
    word_count,
)
from app.services.finalization_service import FinalizationCoordinator
from app.services.scoring_service import answer_to_document, compute_percentage
from app.services.section_manager import FinishOutcome, SectionError, SectionManager
from app.services.timer_service import TickDriver, TickResult, TimerSubsystem

logger = logging.getLogger(__name__)

MAX_NOTICES = 20


class SessionControllerError(Exception):
    """Base exception for session controller errors"""
    pass


class SetupError(SessionControllerError):
    """The attempt could not be started; the learner goes back to the catalog"""

    def __init__(self, message: str, return_to: str = "catalog"):
        super().__init__(message)
        self.return_to = return_to


class NavigationRejectedError(SessionControllerError):
    pass


class InvalidTransitionError(SessionControllerError):
    """Operation not allowed in the current state or mode"""
    pass


class QuestionNotFoundError(SessionControllerError):
    pass


class SessionController:
    """
    Owns exactly one attempt from start() to a terminal state.

    All state changes happen synchronously before the first await of a
    handler; the tick driver and HTTP-driven events share one event loop.
    """

    def __init__(
        self,
        question_source,
        persistence,
        clock: Callable[[], float] = time.monotonic,
        tick_interval: Optional[float] = None,
        auto_tick: Optional[bool] = None,
        warning_thresholds: Optional[List[int]] = None,
    ):
        self.question_source = question_source
        self.persistence = persistence
        self._clock = clock
        self._tick_interval = tick_interval if tick_interval is not None else settings.tick_interval_seconds
        self._auto_tick = auto_tick if auto_tick is not None else settings.auto_tick_enabled
        self._warning_thresholds = sorted(
            warning_thresholds if warning_thresholds is not None else settings.time_warning_thresholds,
            reverse=True,
        )

        self.attempt: Optional[Attempt] = None
        self.sections: Optional[SectionManager] = None
        self.timers: Optional[TimerSubsystem] = None
        self.navigator: Optional[NavigatorState] = None
        self.coordinator: Optional[FinalizationCoordinator] = None
        self.driver: Optional[TickDriver] = None

        self._status = SessionStatus.INITIALIZING
        self._items: Dict[str, QuestionItem] = {}
        self._answers: Dict[str, Answer] = {}
        self._checks: Dict[str, CheckResult] = {}
        self._shown_at: Dict[str, float] = {}
        self._warned: set = set()
        self.notices: List[Notice] = []

    # ========================================================================
    # STATE
    # ========================================================================

    @property
    def status(self) -> SessionStatus:
        return self.attempt.status if self.attempt else self._status

    @property
    def session_id(self) -> Optional[str]:
        return self.attempt.id if self.attempt else None

    def _notify(self, message: str, level: str = "info") -> None:
        self.notices.append(Notice(level=level, message=message))
        del self.notices[:-MAX_NOTICES]

    def _require_attempt(self) -> Attempt:
        if self.attempt is None:
            raise InvalidTransitionError("Session has not been started")
        return self.attempt

    def _item(self, question_id: str) -> QuestionItem:
        item = self._items.get(question_id)
        if item is None:
            raise QuestionNotFoundError(f"Question not found: {question_id}")
        return item

    def get_question(self, question_id: str):
        """Public question variant (never the reference)"""
        return self._item(question_id).question

    def _current_items(self) -> List[QuestionItem]:
        return self.sections.questions_in(self.navigator.section_id)

    def _mark_shown(self) -> None:
        items = self._current_items()
        if items and self.navigator.question_index < len(items):
            self._shown_at[items[self.navigator.question_index].id] = self._clock()

    # ========================================================================
    # START
    # ========================================================================

    async def start(self, config: SessionConfig) -> Attempt:
        """
        Fetch the question set, create the attempt and arm the timers

        Raises:
            SetupError: empty or unreachable question set, or createSession failure.
                No partial session is left behind.
        """
        if self._status != SessionStatus.INITIALIZING or self.attempt is not None:
            raise InvalidTransitionError("Session already started")

        try:
            question_set = await self.question_source.generate_session_questions(
                target_id=config.target_id,
                scope_id=config.scope_id,
                subject_context=config.subject_context,
                user_id=config.user_id,
                mode=config.mode,
            )
        except Exception as e:
            self._status = SessionStatus.SETUP_ERROR
            logger.error(f"❌ Failed to load questions for {config.mode} {config.target_id}: {e}")
            raise SetupError(f"Could not load questions: {str(e)}")

        if not question_set.items:
            self._status = SessionStatus.SETUP_ERROR
            logger.warning(f"⚠️ No questions available for {config.mode} {config.target_id}")
            raise SetupError("No questions are available for this selection")

        try:
            sections = SectionManager(question_set.sections, question_set.items)
        except SectionError as e:
            self._status = SessionStatus.SETUP_ERROR
            logger.error(f"❌ Invalid section layout for {config.target_id}: {e}")
            raise SetupError(f"Invalid question set: {str(e)}")

        try:
            session_id = await self.persistence.create_session(
                user_id=config.user_id,
                target_id=config.target_id,
                context_id=config.subject_context,
                mode=config.mode,
            )
        except Exception as e:
            self._status = SessionStatus.SETUP_ERROR
            logger.error(f"❌ createSession failed for {config.target_id}: {e}")
            raise SetupError(f"Could not create the session: {str(e)}")

        now = self._clock()
        duration = question_set.overall_duration_seconds

        self.sections = sections
        self._items = {item.id: item for item in question_set.items}
        self.attempt = Attempt(
            id=session_id,
            mode=config.mode,
            target_id=config.target_id,
            user_id=config.user_id,
            sections=sections.sections,
            started_clock=now,
            overall_deadline=now + duration if duration else None,
            allow_continue_after_time_up=question_set.allow_continue_after_time_up,
        )

        self.timers = TimerSubsystem(self._clock)
        self.timers.arm_overall(self.attempt.overall_deadline)
        # A 5-minute exam gets no "10 minutes remaining" warning
        self._warned = {t for t in self._warning_thresholds if duration and t >= duration}
        active = sections.active
        self.timers.arm_section(active.id, active.time_limit_seconds)
        self.navigator = NavigatorState(section_id=active.id, question_index=0)
        self._mark_shown()

        self.coordinator = FinalizationCoordinator(
            self.attempt,
            self.persistence,
            build_summary=self._build_summary,
            on_enter_finalizing=self._teardown,
        )
        self.attempt.status = SessionStatus.IN_PROGRESS

        if self._auto_tick:
            self.driver = TickDriver(self.tick, self._tick_interval)
            self.driver.start()

        logger.info(
            f"✅ Session {session_id} started ({config.mode}) - "
            f"{len(self._items)} questions in {len(sections.sections)} section(s), "
            f"duration {duration or 'unlimited'}s"
        )
        return self.attempt

    # ========================================================================
    # ANSWERS
    # ========================================================================

    def _reject(self, question_id: str, reason: str) -> AnswerResult:
        logger.debug(f"Answer rejected for {question_id}: {reason}")
        self._notify(reason, level="warning")
        return AnswerResult(accepted=False, question_id=question_id, reason=reason)

    def record_answer(self, question_id: str, value: Any) -> AnswerResult:
        """
        Store an answer (last write wins)

        Rejections are non-fatal and returned as AnswerResult(accepted=False).
        """
        if self.status != SessionStatus.IN_PROGRESS:
            return self._reject(question_id, f"Answers are not accepted while {self.status.value}")

        item = self._items.get(question_id)
        if item is None:
            return self._reject(question_id, f"Unknown question {question_id}")

        section = self.sections.section_of(question_id)
        if section.locked:
            return self._reject(question_id, f"Section {section.name} is locked")
        if self.sections.active is None or section.id != self.sections.active.id:
            return self._reject(question_id, f"Section {section.name} is not the active section")
        if item.checked:
            return self._reject(question_id, "Question has already been checked")

        reason = validate_answer(item.question, value)
        if reason is not None:
            return self._reject(question_id, reason)

        self._answers[question_id] = Answer(
            question_id=question_id,
            value=normalize_answer(item.question, value),
        )
        return AnswerResult(accepted=True, question_id=question_id)

    def click_option(self, question_id: str, option_id: str) -> AnswerResult:
        """Replace (single, true/false) or toggle (multiple) the selection"""
        item = self._items.get(question_id)
        if item is None:
            return self._reject(question_id, f"Unknown question {question_id}")

        try:
            value = apply_click(item.question, self.current_answer(question_id), option_id)
        except AnswerShapeError as e:
            return self._reject(question_id, str(e))

        return self.record_answer(question_id, value)

    def current_answer(self, question_id: str) -> Optional[AnswerValue]:
        answer = self._answers.get(question_id)
        return answer.value if answer else None

    # ========================================================================
    # NAVIGATION & SECTIONS
    # ========================================================================

    def navigate(self, index: int, section_id: Optional[str] = None) -> NavigatorState:
        """
        Move to a question of the active section

        Raises:
            NavigationRejectedError: not in progress, locked/inactive section or bad index
        """
        if self.status != SessionStatus.IN_PROGRESS:
            raise NavigationRejectedError(f"Cannot navigate while {self.status.value}")

        target_id = section_id or self.navigator.section_id
        try:
            section = self.sections.get(target_id)
        except SectionError as e:
            raise NavigationRejectedError(str(e))

        if section.locked:
            raise NavigationRejectedError(f"Section {section.name} is locked")
        if self.sections.active is None or section.id != self.sections.active.id:
            raise NavigationRejectedError(f"Section {section.name} is not the active section")

        count = len(self.sections.questions_in(section.id))
        if index < 0 or index >= count:
            raise NavigationRejectedError(f"Question index {index} out of range (0-{count - 1})")

        self.navigator = NavigatorState(section_id=section.id, question_index=index)
        self._mark_shown()
        return self.navigator

    async def finish_section(self, section_id: str) -> FinishOutcome:
        """
        Lock a section and move on; finishing the last one finalizes ('auto')

        Raises:
            SectionNotActiveError: section is neither locked nor active
            InvalidTransitionError: session is not in progress
        """
        self._require_attempt()
        if self.status != SessionStatus.IN_PROGRESS:
            if self.sections.is_locked(section_id):
                return FinishOutcome(finished=None, next_section=self.sections.active, already_locked=True)
            raise InvalidTransitionError(f"Cannot finish a section while {self.status.value}")

        outcome = self.sections.finish(section_id)
        if outcome.already_locked:
            return outcome

        if outcome.next_section is not None:
            nxt = outcome.next_section
            self.timers.arm_section(nxt.id, nxt.time_limit_seconds)
            self.navigator = NavigatorState(section_id=nxt.id, question_index=0)
            self._mark_shown()
            self._notify(f"{outcome.finished.name} submitted, now on {nxt.name}")
            return outcome

        self.timers.stop_section()
        await self.request_finalize("auto")
        return outcome

    # ========================================================================
    # PRACTICE CHECK
    # ========================================================================

    async def check_answer(self, question_id: str) -> CheckResult:
        """
        Practice only: evaluate the current answer and reveal the reference

        A second check returns the first result without recording again.
        recordAttempt failures are reported as a notice, never raised.
        """
        attempt = self._require_attempt()
        if attempt.mode != "practice":
            raise InvalidTransitionError("Answers can only be checked in practice mode")
        if self.status != SessionStatus.IN_PROGRESS:
            raise InvalidTransitionError(f"Cannot check answers while {self.status.value}")

        item = self._item(question_id)
        if item.checked:
            return self._checks[question_id]
        if not item.has_key:
            raise InvalidTransitionError(f"Question {question_id} has no reference to check against")

        value = self.current_answer(question_id)
        answered = is_answered(item.question, value)
        is_correct = evaluate(item.question, value, item.sealed_key())
        item.mark_checked()
        key = item.reveal()
        result = CheckResult(
            question_id=question_id,
            answered=answered,
            is_correct=is_correct,
            key=key,
        )
        self._checks[question_id] = result

        if answered:
            shown_at = self._shown_at.get(question_id, attempt.started_clock)
            time_spent = max(0, math.ceil(self._clock() - shown_at))
            try:
                await self.persistence.record_attempt(
                    session_id=attempt.id,
                    question_id=question_id,
                    user_id=attempt.user_id,
                    value=value,
                    time_spent_seconds=time_spent,
                )
            except Exception as e:
                logger.warning(f"⚠️ recordAttempt failed for {question_id} in {attempt.id}: {e}")
                self._notify("Your answer could not be saved, it still counts for this session", level="warning")

        return result

    # ========================================================================
    # TIME UP / FINALIZE
    # ========================================================================

    def continue_after_time_up(self) -> None:
        """TimeUp -> InProgress with the late flag set, when the exam allows it"""
        attempt = self._require_attempt()
        if attempt.status != SessionStatus.TIME_UP:
            raise InvalidTransitionError(f"Cannot continue while {attempt.status.value}")
        if not attempt.allow_continue_after_time_up:
            raise InvalidTransitionError("This exam does not allow continuing after time is up")

        attempt.late_flag = True
        attempt.status = SessionStatus.IN_PROGRESS
        self.timers.resume_section()
        self._notify("Continuing after time up, this attempt will be marked late", level="warning")
        logger.info(f"⚠️ Session {attempt.id} continued after time up (late)")

    async def request_finalize(self, reason: FinalizeReason) -> bool:
        """Idempotent; only the first trigger submits"""
        if self.coordinator is None:
            return False
        return await self.coordinator.request(reason)

    async def finish_now(self) -> bool:
        """Explicit finish, or Finish Now from the time-up prompt"""
        reason: FinalizeReason = "time_up_finish" if self.status == SessionStatus.TIME_UP else "explicit"
        return await self.request_finalize(reason)

    async def retry(self) -> bool:
        self._require_attempt()
        if self.status != SessionStatus.ERROR:
            raise InvalidTransitionError(f"Nothing to retry while {self.status.value}")
        return await self.coordinator.retry()

    def abandon(self) -> bool:
        """
        Leave the attempt without submitting

        Returns:
            True if the attempt moved to Abandoned, False if it was already terminal
        """
        attempt = self._require_attempt()
        if attempt.status in TERMINAL_STATUSES or attempt.status == SessionStatus.ERROR:
            return False
        if attempt.status == SessionStatus.FINALIZING:
            raise InvalidTransitionError("Session is being submitted and cannot be abandoned")

        attempt.status = SessionStatus.ABANDONED
        self._teardown()
        logger.info(f"🚪 Session {attempt.id} abandoned")
        return True

    def _teardown(self) -> None:
        if self.timers is not None:
            self.timers.teardown()
        if self.driver is not None:
            self.driver.stop()

    # ========================================================================
    # TICK
    # ========================================================================

    async def tick(self) -> Optional[TickResult]:
        """
        Recompute both clocks and dispatch expiries

        Overall expiry moves to TimeUp and suspends the section clock; without
        allowContinueAfterTimeUp the attempt is finalized ('timeout') at once.
        A section expiry finishes that section.
        """
        if self.attempt is None or self.status not in (SessionStatus.IN_PROGRESS, SessionStatus.TIME_UP):
            return None

        result = self.timers.tick()
        if result is None:
            return None

        if self.status == SessionStatus.IN_PROGRESS:
            self._check_warnings(result.overall_remaining)

        if result.overall_expired and self.status == SessionStatus.IN_PROGRESS:
            attempt = self.attempt
            attempt.status = SessionStatus.TIME_UP
            self.timers.suspend_section()
            logger.info(f"⏱️ Time up for session {attempt.id}")
            if attempt.allow_continue_after_time_up:
                self._notify("Time is up. Continue (marked late) or finish now", level="warning")
            else:
                self._notify("Time is up, submitting your attempt", level="warning")
                await self.request_finalize("timeout")
            return result

        if result.expired_section_id and self.status == SessionStatus.IN_PROGRESS:
            logger.info(f"⏱️ Section time up: {result.expired_section_id}")
            try:
                await self.finish_section(result.expired_section_id)
            except SectionError as e:
                logger.error(f"❌ Failed to finish expired section {result.expired_section_id}: {e}")

        return result

    def _check_warnings(self, remaining: Optional[int]) -> None:
        if remaining is None or remaining <= 0:
            return
        crossed = [t for t in self._warning_thresholds if remaining <= t and t not in self._warned]
        if not crossed:
            return
        self._warned.update(crossed)
        lowest = min(crossed)
        minutes = lowest // 60
        label = f"{minutes} minute{'s' if minutes != 1 else ''}" if minutes else f"{lowest} seconds"
        self._notify(f"{label} remaining", level="warning")

    # ========================================================================
    # AGGREGATION & SNAPSHOT
    # ========================================================================

    def elapsed_seconds(self) -> int:
        if self.attempt is None:
            return 0
        return max(0, int(self._clock() - self.attempt.started_clock))

    def _build_summary(self, reason: FinalizeReason) -> AttemptSummary:
        attempt = self.attempt
        answers: Dict[str, AnswerValue] = {}
        correct = 0
        for qid, item in self._items.items():
            value = self.current_answer(qid)
            if not is_answered(item.question, value):
                continue
            answers[qid] = value
            if attempt.mode == "practice":
                key = item.sealed_key()
                if key is not None and evaluate(item.question, value, key):
                    correct += 1

        total = len(self._items)
        answered = len(answers)
        practice = attempt.mode == "practice"
        return AttemptSummary(
            session_id=attempt.id,
            user_id=attempt.user_id,
            mode=attempt.mode,
            reason=reason,
            total=total,
            answered=answered,
            correct=correct if practice else None,
            wrong=answered - correct if practice else None,
            skipped=total - answered,
            elapsed_seconds=self.elapsed_seconds(),
            late=attempt.late_flag,
            answers=answers,
        )

    def _question_view(self, item: QuestionItem, index: int) -> Dict[str, Any]:
        question = item.question
        value = self.current_answer(item.id)
        view = {
            "questionId": question.id,
            "type": question.type,
            "sectionId": self.sections.section_of(item.id).id,
            "index": index,
            "prompt": question.prompt,
            "mediaUrl": question.media_url,
            "passageId": question.passage_id,
            "marks": question.marks,
            "difficulty": question.difficulty,
            "options": [o.model_dump() for o in getattr(question, "options", None) or []] or None,
            "answer": answer_to_document(value),
            "checked": item.checked,
            "wordCount": word_count(value) if question.type == "essay" and isinstance(value, str) else None,
        }
        return view

    def snapshot(self) -> Dict[str, Any]:
        """
        Client-visible state of the attempt

        SECURITY: references appear only through results of explicit checks.
        """
        attempt = self._require_attempt()
        items = self._current_items()
        current = None
        if attempt.status in (SessionStatus.IN_PROGRESS, SessionStatus.TIME_UP) and items:
            idx = min(self.navigator.question_index, len(items) - 1)
            current = self._question_view(items[idx], idx)

        active = self.sections.active
        section_views = []
        palette = []
        for section in self.sections.sections:
            section_items = self.sections.questions_in(section.id)
            answered_here = 0
            for idx, item in enumerate(section_items):
                answered = is_answered(item.question, self.current_answer(item.id))
                answered_here += int(answered)
                palette.append({
                    "questionId": item.id,
                    "sectionId": section.id,
                    "index": idx,
                    "answered": answered,
                    "checked": item.checked,
                })
            section_views.append({
                "sectionId": section.id,
                "name": section.name,
                "ordinal": section.ordinal,
                "timeLimitSeconds": section.time_limit_seconds,
                "locked": section.locked,
                "active": active is not None and active.id == section.id,
                "completedAt": section.completed_at,
                "questionCount": len(section_items),
                "answeredCount": answered_here,
            })

        total = len(self._items)
        answered_count = sum(1 for p in palette if p["answered"])
        coordinator = self.coordinator
        results = coordinator.results if coordinator else None

        return {
            "sessionId": attempt.id,
            "mode": attempt.mode,
            "targetId": attempt.target_id,
            "status": attempt.status.value,
            "lateFlag": attempt.late_flag,
            "allowContinueAfterTimeUp": attempt.allow_continue_after_time_up,
            "overallRemainingSeconds": self.timers.overall_remaining() if not self.timers.torn_down else None,
            "sectionRemainingSeconds": self.timers.section_remaining() if not self.timers.torn_down else None,
            "elapsedSeconds": self.elapsed_seconds(),
            "navigator": {
                "sectionId": self.navigator.section_id,
                "questionIndex": self.navigator.question_index,
            },
            "currentQuestion": current,
            "sections": section_views,
            "palette": palette,
            "answers": {qid: answer_to_document(a.value) for qid, a in self._answers.items()},
            "answeredCount": answered_count,
            "totalQuestions": total,
            "progressPercentage": compute_percentage(answered_count, total),
            "checks": {qid: check.model_dump() for qid, check in self._checks.items()},
            "notices": [n.model_dump() for n in self.notices],
            "results": results.model_dump() if results else None,
            "lastError": coordinator.last_error if coordinator else None,
        }
