"""
Tests for the /api/sessions endpoints.
"""
import pytest
from fastapi.testclient import TestClient

from app.api.sessions import get_controller_factory, get_registry
from app.main import app as application
from app.services.session_controller import SessionController
from app.services.session_registry import SessionRegistry
from tests.factories import FakePersistence, FakeQuestionSource, build_exam_set, build_practice_set

EXAM_START = {"mode": "exam", "targetId": "exam_1", "userId": "user_1"}
PRACTICE_START = {
    "mode": "practice",
    "targetId": "subtopic_1",
    "userId": "user_1",
    "scopeId": "uni_1",
    "subjectId": "physics",
}


@pytest.fixture
def registry(clock):
    return SessionRegistry(ttl_seconds=3600, clock=clock)


@pytest.fixture
def make_client(registry, clock, persistence):
    """Client whose controllers use in-memory collaborators and the fake clock"""

    def _make(question_set, store=None):
        def factory():
            return SessionController(
                question_source=FakeQuestionSource(question_set),
                persistence=store or persistence,
                clock=clock,
                auto_tick=False,
            )

        application.dependency_overrides[get_controller_factory] = lambda: factory
        application.dependency_overrides[get_registry] = lambda: registry
        return TestClient(application)

    yield _make
    application.dependency_overrides.clear()


class TestStartSession:
    """Tests for POST /api/sessions/start."""

    def test_start_exam(self, make_client, registry):
        client = make_client(build_exam_set())
        response = client.post("/api/sessions/start", json=EXAM_START)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "in_progress"
        assert data["sessionId"] in registry
        assert data["overallRemainingSeconds"] == 120
        assert data["sectionRemainingSeconds"] == 60
        assert data["navigator"] == {"sectionId": "sec1", "questionIndex": 0}
        assert data["currentQuestion"]["questionId"] == "s1q1"
        assert len(data["currentQuestion"]["options"]) == 4

        # Sensitive info verification
        assert "correctAnswer" not in data["currentQuestion"]
        assert data["checks"] == {}

    def test_start_without_questions(self, make_client, registry):
        client = make_client(build_exam_set(questions_per_section=0))
        response = client.post("/api/sessions/start", json=EXAM_START)

        assert response.status_code == 422
        assert response.json()["detail"]["returnTo"] == "catalog"
        assert len(registry) == 0

    def test_start_when_create_fails(self, make_client):
        client = make_client(build_exam_set(), store=FakePersistence(fail_create=True))
        response = client.post("/api/sessions/start", json=EXAM_START)
        assert response.status_code == 422

    def test_start_validates_request(self, make_client):
        client = make_client(build_exam_set())
        response = client.post("/api/sessions/start", json={"mode": "quiz", "targetId": "x", "userId": "u"})
        assert response.status_code == 422


class TestAnswers:
    """Tests for answer, click and check endpoints."""

    def test_record_and_read_back(self, make_client):
        client = make_client(build_practice_set())
        session_id = client.post("/api/sessions/start", json=PRACTICE_START).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/answers", json={"questionId": "q2", "value": ["c", "a"]})
        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["answer"] == ["a", "c"]

        state = client.get(f"/api/sessions/{session_id}").json()
        assert state["answers"]["q2"] == ["a", "c"]
        assert state["answeredCount"] == 1

    def test_rejected_answer_is_not_an_error(self, make_client):
        client = make_client(build_practice_set())
        session_id = client.post("/api/sessions/start", json=PRACTICE_START).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/answers", json={"questionId": "q1", "value": "z"})
        assert response.status_code == 200
        assert response.json()["accepted"] is False
        assert response.json()["reason"]

    def test_nested_value_is_rejected_not_500(self, make_client):
        client = make_client(build_practice_set())
        session_id = client.post("/api/sessions/start", json=PRACTICE_START).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/answers", json={"questionId": "q2", "value": [["a"]]})
        assert response.status_code == 200
        assert response.json()["accepted"] is False
        assert response.json()["answer"] is None

    def test_unknown_question(self, make_client):
        client = make_client(build_practice_set())
        session_id = client.post("/api/sessions/start", json=PRACTICE_START).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/answers", json={"questionId": "q9", "value": "a"})
        assert response.status_code == 404

    def test_click_true_false(self, make_client):
        client = make_client(build_practice_set())
        session_id = client.post("/api/sessions/start", json=PRACTICE_START).json()["sessionId"]

        response = client.post(
            f"/api/sessions/{session_id}/answers/click",
            json={"questionId": "q3", "optionId": "false"}
        )
        assert response.json()["accepted"] is True
        assert response.json()["answer"] is False

    def test_check_reveals_reference(self, make_client, persistence):
        client = make_client(build_practice_set())
        session_id = client.post("/api/sessions/start", json=PRACTICE_START).json()["sessionId"]
        client.post(f"/api/sessions/{session_id}/answers/click", json={"questionId": "q1", "optionId": "a"})

        response = client.post(f"/api/sessions/{session_id}/check", json={"questionId": "q1"})
        assert response.status_code == 200
        data = response.json()
        assert data["isCorrect"] is False
        assert data["correctAnswer"] == "b"
        assert data["explanation"] == "B is right"
        assert len(persistence.recorded) == 1

    def test_check_in_exam_is_conflict(self, make_client):
        client = make_client(build_exam_set())
        session_id = client.post("/api/sessions/start", json=EXAM_START).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/check", json={"questionId": "s1q1"})
        assert response.status_code == 409


class TestNavigationAndSections:

    def test_navigate(self, make_client):
        client = make_client(build_exam_set())
        session_id = client.post("/api/sessions/start", json=EXAM_START).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/navigate", json={"index": 1})
        assert response.status_code == 200
        assert response.json()["currentQuestion"]["questionId"] == "s1q2"

        response = client.post(f"/api/sessions/{session_id}/navigate", json={"index": 7})
        assert response.status_code == 409

    def test_finish_sections(self, make_client, clock, persistence):
        client = make_client(build_exam_set())
        session_id = client.post("/api/sessions/start", json=EXAM_START).json()["sessionId"]

        assert client.post(f"/api/sessions/{session_id}/sections/sec2/finish").status_code == 409
        assert client.post(f"/api/sessions/{session_id}/sections/sec9/finish").status_code == 404

        clock.advance(30)
        data = client.post(f"/api/sessions/{session_id}/sections/sec1/finish").json()
        assert data["navigator"]["sectionId"] == "sec2"
        assert data["overallRemainingSeconds"] == 90
        assert data["sections"][0]["locked"] is True

        # Finishing a locked section again is a no-op
        assert client.post(f"/api/sessions/{session_id}/sections/sec1/finish").status_code == 200

        data = client.post(f"/api/sessions/{session_id}/sections/sec2/finish").json()
        assert data["status"] == "completed"
        assert data["results"]["total"] == 4
        assert len(persistence.completed) == 1


class TestFinalize:

    def test_finalize_is_idempotent(self, make_client, persistence):
        client = make_client(build_practice_set())
        session_id = client.post("/api/sessions/start", json=PRACTICE_START).json()["sessionId"]
        client.post(f"/api/sessions/{session_id}/answers", json={"questionId": "q1", "value": "b"})

        first = client.post(f"/api/sessions/{session_id}/finalize").json()
        second = client.post(f"/api/sessions/{session_id}/finalize").json()

        assert first["status"] == "completed"
        assert first["results"]["correct"] == 1
        assert second["results"] == first["results"]
        assert len(persistence.completed) == 1

    def test_error_then_retry(self, make_client):
        store = FakePersistence(fail_complete=1)
        client = make_client(build_exam_set(), store=store)
        session_id = client.post("/api/sessions/start", json=EXAM_START).json()["sessionId"]

        data = client.post(f"/api/sessions/{session_id}/finalize").json()
        assert data["status"] == "error"
        assert data["lastError"] == "scoring service unavailable"

        data = client.post(f"/api/sessions/{session_id}/retry").json()
        assert data["status"] == "completed"
        assert len(store.completed) == 2

        assert client.post(f"/api/sessions/{session_id}/retry").status_code == 409

    def test_time_up_continue(self, make_client, clock):
        client = make_client(build_exam_set(section_limits=(None, None), allow_continue=True))
        session_id = client.post("/api/sessions/start", json=EXAM_START).json()["sessionId"]

        clock.advance(121)
        state = client.get(f"/api/sessions/{session_id}").json()
        assert state["status"] == "time_up"
        assert state["overallRemainingSeconds"] == 0

        data = client.post(f"/api/sessions/{session_id}/time-up/continue").json()
        assert data["status"] == "in_progress"
        assert data["lateFlag"] is True

        assert client.post(f"/api/sessions/{session_id}/time-up/continue").status_code == 409


class TestAbandon:

    def test_abandon_removes_session(self, make_client, registry, persistence):
        client = make_client(build_exam_set())
        session_id = client.post("/api/sessions/start", json=EXAM_START).json()["sessionId"]

        response = client.delete(f"/api/sessions/{session_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "abandoned"
        assert session_id not in registry
        assert persistence.completed == []

        assert client.get(f"/api/sessions/{session_id}").status_code == 404
