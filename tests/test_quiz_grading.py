"""Tests for grading quiz sessions."""

import pytest

from learning_engine.quiz import (
    IncompleteSubmissionError,
    QuizDefinition,
    create_quiz_session,
    find_missing_answers,
    grade_quiz_session,
    normalize_quiz_payload,
    validate_submission,
)

THREE_QUESTIONS = {
    "questions": [
        {"id": "Q1", "prompt": "One", "options": ["a", "b", "c"], "correctIndex": 0},
        {"id": "Q2", "prompt": "Two", "options": ["a", "b", "c"], "correctIndex": 1},
        {"id": "Q3", "prompt": "Three", "options": ["a", "b", "c"], "correctIndex": 2},
    ]
}


@pytest.fixture
def three_question_session():
    return create_quiz_session(normalize_quiz_payload(THREE_QUESTIONS), "m1:u1:100")


class TestGradeQuizSession:
    def test_all_correct_scores_100_and_passes(self, three_question_session):
        result = grade_quiz_session(three_question_session, {"Q1": "A", "Q2": "B", "Q3": "C"}, 70)

        assert result.score_percent == 100
        assert result.correct_answers == 3
        assert result.total_questions == 3
        assert result.passed is True

    def test_all_wrong_scores_0_and_fails(self, three_question_session):
        result = grade_quiz_session(three_question_session, {"Q1": "B", "Q2": "C", "Q3": "A"}, 70)

        assert result.score_percent == 0
        assert result.correct_answers == 0
        assert result.passed is False

    def test_two_of_three_below_70_threshold(self, three_question_session):
        result = grade_quiz_session(three_question_session, {"Q1": "A", "Q2": "B", "Q3": "A"}, 70)

        assert result.score_percent == 67
        assert result.passed is False

    def test_two_of_three_passes_60_threshold(self, three_question_session):
        result = grade_quiz_session(three_question_session, {"Q1": "A", "Q2": "B", "Q3": "A"}, 60)

        assert result.score_percent == 67
        assert result.passed is True

    def test_missing_answer_counts_as_incorrect(self, three_question_session):
        result = grade_quiz_session(three_question_session, {"Q1": "A"}, 30)

        assert result.correct_answers == 1
        assert result.score_percent == 33
        assert result.passed is True

    def test_threshold_is_inclusive(self, three_question_session):
        result = grade_quiz_session(three_question_session, {"Q1": "A", "Q2": "B", "Q3": "A"}, 67)

        assert result.passed is True

    def test_score_rounds_half_up(self):
        definition = normalize_quiz_payload(
            {
                "questions": [
                    {"id": f"Q{i}", "prompt": "p", "options": ["a", "b"], "correctIndex": 0}
                    for i in range(8)
                ]
            }
        )
        session = create_quiz_session(definition, "round")

        result = grade_quiz_session(session, {"Q0": "A"}, 50)

        # 1/8 = 12.5%
        assert result.score_percent == 13

    def test_grading_ignores_display_order(self):
        definition = normalize_quiz_payload(THREE_QUESTIONS)
        answers = {"Q1": "A", "Q2": "B", "Q3": "A"}

        scores = {
            grade_quiz_session(create_quiz_session(definition, f"seed-{n}"), answers, 70).score_percent
            for n in range(25)
        }

        assert scores == {67}

    def test_zero_questions_never_divides_by_zero(self):
        session = create_quiz_session(QuizDefinition(questions=[]), "empty")

        result = grade_quiz_session(session, {}, 0)

        assert result.score_percent == 0
        assert result.correct_answers == 0
        assert result.total_questions == 0
        assert result.passed is False

    @pytest.mark.parametrize("threshold", [-1, 101, 50.5, True])
    def test_threshold_out_of_range_is_rejected(self, three_question_session, threshold):
        with pytest.raises(ValueError):
            grade_quiz_session(three_question_session, {}, threshold)

    def test_regrading_is_idempotent(self, three_question_session):
        answers = {"Q1": "A", "Q2": "C", "Q3": "C"}

        assert grade_quiz_session(three_question_session, answers, 70) == grade_quiz_session(
            three_question_session, answers, 70
        )


class TestSubmissionCompleteness:
    def test_missing_answers_are_listed_in_authoring_order(self):
        definition = normalize_quiz_payload(THREE_QUESTIONS)

        assert find_missing_answers(definition, {"Q2": "B"}) == ["Q1", "Q3"]

    def test_blank_answers_count_as_missing(self):
        definition = normalize_quiz_payload(THREE_QUESTIONS)

        assert find_missing_answers(definition, {"Q1": " ", "Q2": "B", "Q3": "C"}) == ["Q1"]

    def test_validate_submission_raises_with_ids(self):
        definition = normalize_quiz_payload(THREE_QUESTIONS)

        with pytest.raises(IncompleteSubmissionError) as excinfo:
            validate_submission(definition, {"Q1": "A"})

        assert excinfo.value.missing_question_ids == ["Q2", "Q3"]

    def test_complete_submission_passes_validation(self):
        definition = normalize_quiz_payload(THREE_QUESTIONS)

        validate_submission(definition, {"Q1": "A", "Q2": "B", "Q3": "C"})


class TestEndToEndScenario:
    def test_two_question_quiz_with_one_wrong_answer(self):
        """Given Q1(correct=A), Q2(correct=B) and seed m1:u1:100, one right answer fails at 70."""
        definition = normalize_quiz_payload(
            {
                "questions": [
                    {
                        "id": "Q1",
                        "prompt": "First",
                        "options": [{"id": "A", "label": "a"}, {"id": "B", "label": "b"}, {"id": "C", "label": "c"}],
                        "correctOptionId": "A",
                    },
                    {
                        "id": "Q2",
                        "prompt": "Second",
                        "options": [{"id": "A", "label": "a"}, {"id": "B", "label": "b"}, {"id": "C", "label": "c"}],
                        "correctOptionId": "B",
                    },
                ]
            }
        )

        session = create_quiz_session(definition, "m1:u1:100")
        result = grade_quiz_session(session, {"Q1": "A", "Q2": "C"}, 70)

        assert sorted(session.question_order) == ["Q1", "Q2"]
        assert result.correct_answers == 1
        assert result.total_questions == 2
        assert result.score_percent == 50
        assert result.passed is False
