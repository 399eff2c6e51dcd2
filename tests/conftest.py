"""
Shared fixtures: a controllable clock and in-memory collaborators.
"""
from typing import Optional

import pytest

from app.models.session import QuestionSet, SessionConfig
from app.services.session_controller import SessionController
from tests.factories import FakeClock, FakePersistence, FakeQuestionSource


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def exam_config():
    return SessionConfig(mode="exam", target_id="exam_1", user_id="user_1")


@pytest.fixture
def practice_config():
    return SessionConfig(
        mode="practice",
        target_id="subtopic_1",
        scope_id="uni_1",
        subject_context="physics",
        user_id="user_1",
    )


@pytest.fixture
def make_controller(clock, persistence):
    """Factory building a controller over a given question set (no background ticking)"""

    def _make(question_set: Optional[QuestionSet] = None, source=None, store=None, **kwargs):
        kwargs.setdefault("warning_thresholds", [600, 60])
        return SessionController(
            question_source=source or FakeQuestionSource(question_set),
            persistence=store or persistence,
            clock=clock,
            auto_tick=False,
            **kwargs,
        )

    return _make
