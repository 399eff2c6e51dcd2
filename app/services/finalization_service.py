"""
Finalization Service
Single-flight, idempotent submission of a finished attempt
FILE: app/services/finalization_service.py
"""
import asyncio
import logging
from typing import Callable, Optional

from app.models.session import (
    Attempt,
    AttemptSummary,
    FinalizeReason,
    SessionResults,
    SessionStatus,
)

logger = logging.getLogger(__name__)

FINALIZABLE_STATUSES = frozenset({SessionStatus.IN_PROGRESS, SessionStatus.TIME_UP})


class FinalizationCoordinator:
    """
    Guarantees an attempt is submitted to completeSession exactly once.

    The guard is the attempt status itself: the first caller that moves it
    from InProgress/TimeUp to Finalizing does the work, every other caller
    sees Finalizing (or a terminal state) and returns. The status move
    happens before the first await, so on a single event loop two triggers
    in the same tick cannot both pass.

    The aggregated payload is built once, when Finalizing is first entered,
    and retry() resubmits exactly that payload. The guard reopens only on
    failure (Error -> Finalizing via retry), never after success.
    """

    def __init__(
        self,
        attempt: Attempt,
        persistence,
        build_summary: Callable[[FinalizeReason], AttemptSummary],
        on_enter_finalizing: Optional[Callable[[], None]] = None,
    ):
        self.attempt = attempt
        self.persistence = persistence
        self._build_summary = build_summary
        self._on_enter_finalizing = on_enter_finalizing
        self.payload: Optional[AttemptSummary] = None
        self.results: Optional[SessionResults] = None
        self.last_error: Optional[str] = None
        self.submissions = 0
        self._inflight: Optional[asyncio.Future] = None

    async def request(self, reason: FinalizeReason) -> bool:
        """
        Try to finalize the attempt

        Returns:
            True if this call performed the submission and it succeeded,
            False if another trigger already owns (or finished) finalization
            or the submission failed (status is then Error).
        """
        if self.attempt.status not in FINALIZABLE_STATUSES:
            logger.debug(
                f"Finalize ({reason}) ignored for session {self.attempt.id}: "
                f"status is {self.attempt.status.value}"
            )
            return False

        # Aggregate before the flip so a failing aggregation leaves the guard open
        payload = self._build_summary(reason)

        self.attempt.status = SessionStatus.FINALIZING
        self.payload = payload
        if self._on_enter_finalizing is not None:
            self._on_enter_finalizing()

        logger.info(
            f"🏁 Finalizing session {self.attempt.id} ({reason}) - "
            f"answered {self.payload.answered}/{self.payload.total}, "
            f"skipped {self.payload.skipped}, elapsed {self.payload.elapsed_seconds}s"
        )
        return await self._submit()

    async def retry(self) -> bool:
        """Resubmit the stored payload after a failed finalize"""
        if self.attempt.status != SessionStatus.ERROR or self.payload is None:
            logger.debug(
                f"Retry ignored for session {self.attempt.id}: status is {self.attempt.status.value}"
            )
            return False

        self.attempt.status = SessionStatus.FINALIZING
        logger.info(f"🔁 Retrying finalize for session {self.attempt.id}")
        return await self._submit()

    async def _submit(self) -> bool:
        # The submission runs in its own task; a cancelled caller (closed
        # request, navigation) must not abandon an in-flight finalize.
        self._inflight = asyncio.ensure_future(self._complete(self.payload))
        return await asyncio.shield(self._inflight)

    async def _complete(self, payload: AttemptSummary) -> bool:
        self.submissions += 1
        try:
            results = await self.persistence.complete_session(payload)
        except Exception as e:
            self.last_error = str(e)
            self.attempt.status = SessionStatus.ERROR
            logger.error(f"❌ Finalize failed for session {payload.session_id}: {e}")
            return False

        self.results = results
        self.last_error = None
        self.attempt.status = SessionStatus.COMPLETED
        logger.info(
            f"✅ Session completed: {payload.session_id} - "
            f"{results.correct}/{results.total} correct ({results.percentage:.1f}%)"
        )
        return True
