"""
Tests for server-side exam scoring and question document mapping.
"""
import pytest

from app.models.questions import McqMultipleQuestion, TrueFalseQuestion
from app.services.question_source import MongoQuestionSource, key_from_document, question_from_document
from app.services.scoring_service import answer_to_document, compute_percentage, score_exam


def question_doc(qid, correct, section_id="sec1", qtype="mcq_single", marks=None):
    doc = {
        "questionId": qid,
        "type": qtype,
        "sectionId": section_id,
        "prompt": f"Prompt {qid}",
        "options": [{"id": o, "text": o.upper()} for o in ("a", "b", "c", "d")],
        "correctAnswer": correct,
        "explanation": f"Why {qid}",
    }
    if marks is not None:
        doc["marks"] = marks
    return doc


@pytest.fixture
def sections():
    return {
        "sec1": {"sectionId": "sec1", "defaultMarksPerQuestion": 2, "negativeMarking": 0.5},
        "sec2": {"sectionId": "sec2"},
    }


class TestScoreExam:

    def test_marks_and_negative_marking(self, sections):
        docs = [
            question_doc("q1", "a"),
            question_doc("q2", "b"),
            question_doc("q3", "c", marks=4),
            question_doc("q4", "d", section_id="sec2"),
        ]
        answers = {"q1": "a", "q2": "c", "q4": "d"}

        scored = score_exam(docs, sections, answers, exam_negative_marking=1.0)

        # q1 +2, q2 -0.5 (section rule), q3 unanswered, q4 +1 (default marks)
        assert scored.score == 2.5
        assert scored.total_marks == 9
        assert scored.correct == 2
        assert scored.wrong == 1
        assert scored.answered == 3
        assert scored.percentage == compute_percentage(2.5, 9)

    def test_exam_wide_negative_marking_applies_without_section_rule(self, sections):
        docs = [question_doc("q4", "d", section_id="sec2"), question_doc("q5", "a", section_id="sec2")]
        scored = score_exam(docs, sections, {"q4": "a", "q5": "a"}, exam_negative_marking=0.25)
        assert scored.score == 0.75

    def test_score_never_negative(self, sections):
        docs = [question_doc("q1", "a"), question_doc("q2", "b")]
        scored = score_exam(docs, sections, {"q1": "d", "q2": "d"})
        assert scored.score == 0.0
        assert scored.wrong == 2

    def test_multiple_choice_from_stored_list(self, sections):
        docs = [question_doc("q1", ["a", "c"], qtype="mcq_multiple")]
        scored = score_exam(docs, sections, {"q1": ["c", "a"]})
        assert scored.correct == 1

    def test_nothing_to_score(self):
        scored = score_exam([], {}, {})
        assert scored.percentage == 0.0


class TestDocumentMapping:

    def test_question_from_document_drops_reference(self):
        question = question_from_document(question_doc("q1", ["a", "b"], qtype="mcq_multiple"))
        assert isinstance(question, McqMultipleQuestion)
        assert "correctAnswer" not in question.model_dump_json()
        assert "Why q1" not in question.model_dump_json()

    def test_true_false_ignores_stored_options(self):
        doc = question_doc("q1", "true", qtype="true_false")
        question = question_from_document(doc, section_id="practice")
        assert isinstance(question, TrueFalseQuestion)
        assert question.section_id == "practice"
        assert key_from_document(doc).correct is True

    def test_key_from_document(self):
        key = key_from_document(question_doc("q1", ["c", "a"], qtype="mcq_multiple"))
        assert key.correct == frozenset({"a", "c"})
        assert key.explanation == "Why q1"

    def test_missing_reference(self):
        doc = question_doc("q1", None)
        assert key_from_document(doc) is None

    def test_answer_to_document(self):
        assert answer_to_document(frozenset({"b", "a"})) == ["a", "b"]
        assert answer_to_document(True) is True
        assert answer_to_document(None) is None


class TestDifficultyCounts:

    def test_default_mix(self):
        assert MongoQuestionSource.difficulty_counts(10, 40, 40) == {"easy": 4, "medium": 4, "hard": 2}

    def test_hard_takes_remainder(self):
        counts = MongoQuestionSource.difficulty_counts(7, 40, 40)
        assert sum(counts.values()) == 7
