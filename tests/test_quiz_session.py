"""Tests for seeded quiz sessions: determinism, decorrelation and stream order."""

from collections import Counter

import pytest

from conftest import QUIZ_PAYLOAD
from learning_engine.quiz import (
    QuizDefinition,
    build_quiz_seed,
    create_quiz_session,
    normalize_quiz_payload,
    ordered_questions,
)
from learning_engine.shuffle import SeededRandom, seed_to_state


def _definition(question_count: int = 6, option_count: int = 4) -> QuizDefinition:
    return normalize_quiz_payload(
        {
            "questions": [
                {
                    "id": f"Q{i}",
                    "prompt": f"Question {i}",
                    "options": [f"Option {i}.{j}" for j in range(option_count)],
                    "correctIndex": 0,
                }
                for i in range(1, question_count + 1)
            ]
        }
    )


class TestSeededRandom:
    def test_same_seed_same_stream(self):
        a = SeededRandom("m1:u1:100")
        b = SeededRandom("m1:u1:100")

        assert [a.next_uint32() for _ in range(20)] == [b.next_uint32() for _ in range(20)]

    def test_values_are_32_bit(self):
        rng = SeededRandom("range-check")

        for _ in range(500):
            assert 0 <= rng.next_uint32() <= 0xFFFFFFFF

    def test_below_stays_in_bounds(self):
        rng = SeededRandom("bounds")

        for bound in (1, 2, 3, 7, 100):
            for _ in range(200):
                assert 0 <= rng.below(bound) < bound

    def test_below_rejects_non_positive_bound(self):
        with pytest.raises(ValueError):
            SeededRandom("x").below(0)

    def test_state_comes_from_sha256_prefix(self):
        # sha256("") starts with e3b0c442
        assert seed_to_state("") == 0xE3B0C442

    def test_shuffled_is_a_permutation_and_leaves_input_alone(self):
        items = list(range(10))

        result = SeededRandom("perm").shuffled(items)

        assert sorted(result) == items
        assert items == list(range(10))


class TestCreateQuizSession:
    """Sessions are reproducible from their seed and differ across seeds."""

    def test_same_seed_yields_identical_orderings(self):
        definition = normalize_quiz_payload(QUIZ_PAYLOAD)

        first = create_quiz_session(definition, "m1:u1:100")
        second = create_quiz_session(definition, "m1:u1:100")

        assert first.question_order == second.question_order
        assert first.option_order_by_question == second.option_order_by_question

    def test_orderings_are_permutations_of_authored_ids(self):
        definition = _definition()

        session = create_quiz_session(definition, "perm-check")

        assert sorted(session.question_order) == sorted(q.id for q in definition.questions)
        for question in definition.questions:
            assert sorted(session.option_order_by_question[question.id]) == sorted(
                o.id for o in question.options
            )

    def test_stream_is_consumed_questions_first_then_options_in_authoring_order(self):
        definition = _definition(question_count=4, option_count=3)
        seed = "documented-order"

        session = create_quiz_session(definition, seed)

        rng = SeededRandom(seed)
        expected_questions = rng.shuffled([q.id for q in definition.questions])
        expected_options = {
            q.id: rng.shuffled([o.id for o in q.options]) for q in definition.questions
        }
        assert session.question_order == expected_questions
        assert session.option_order_by_question == expected_options

    def test_distinct_seeds_decorrelate_question_order(self):
        """Statistical check: over many seeds, consecutive sessions rarely match."""
        definition = _definition(question_count=6)
        orders = [
            tuple(create_quiz_session(definition, build_quiz_seed("m1", "u1", token)).question_order)
            for token in range(300)
        ]

        differing = sum(1 for a, b in zip(orders, orders[1:]) if a != b)
        assert differing / (len(orders) - 1) > 0.95
        assert len(set(orders)) > 150

    def test_authoring_order_is_not_preserved_by_default(self):
        definition = _definition(question_count=6)
        authored = tuple(q.id for q in definition.questions)

        unchanged = sum(
            1
            for token in range(300)
            if tuple(create_quiz_session(definition, f"m1:u1:{token}").question_order) == authored
        )

        assert unchanged < 10

    def test_correct_option_position_spreads_across_slots(self):
        definition = _definition(question_count=1, option_count=4)

        positions = Counter(
            create_quiz_session(definition, f"m1:u{user}:1").option_order_by_question["Q1"].index("A")
            for user in range(400)
        )

        assert set(positions) == {0, 1, 2, 3}
        assert min(positions.values()) > 50

    def test_different_learners_get_independent_sessions(self):
        definition = _definition(question_count=6)

        orders = {
            tuple(create_quiz_session(definition, build_quiz_seed("m1", f"user-{n}", 100)).question_order)
            for n in range(50)
        }

        assert len(orders) > 40

    def test_record_excludes_definition(self):
        session = create_quiz_session(normalize_quiz_payload(QUIZ_PAYLOAD), "m1:u1:100")

        record = session.to_record()

        assert set(record) == {"seed", "question_order", "option_order_by_question"}
        assert record["seed"] == "m1:u1:100"

    def test_empty_definition_gives_empty_session(self):
        session = create_quiz_session(QuizDefinition(questions=[]), "seed")

        assert session.question_order == []
        assert session.option_order_by_question == {}


class TestBuildQuizSeed:
    def test_seed_joins_module_user_and_token(self):
        assert build_quiz_seed("m1", "u1", 100) == "m1:u1:100"

    def test_default_token_is_epoch_millis(self):
        module_id, user_id, token = build_quiz_seed(7, 9).split(":")

        assert (module_id, user_id) == ("7", "9")
        assert token.isdigit() and len(token) >= 13


class TestOrderedQuestions:
    def test_view_follows_session_order_with_labels(self):
        definition = normalize_quiz_payload(QUIZ_PAYLOAD)
        session = create_quiz_session(definition, "m1:u1:100")

        view = ordered_questions(session)

        assert [q["id"] for q in view] == session.question_order
        for question in view:
            assert [o["id"] for o in question["options"]] == session.option_order_by_question[question["id"]]
            assert all(o["label"] for o in question["options"])
        assert "correct_option_id" not in view[0]

    def test_reveal_adds_answer_and_explanation(self):
        session = create_quiz_session(normalize_quiz_payload(QUIZ_PAYLOAD), "m1:u1:100")

        view = {q["id"]: q for q in ordered_questions(session, reveal=True)}

        assert view["Q1"]["correct_option_id"] == "A"
        assert view["Q1"]["explanation"].startswith("The charity holds legal title")
        assert view["Q2"]["correct_option_id"] == "B"
        assert view["Q2"]["explanation"] is None
