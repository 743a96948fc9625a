"""Quiz session engine: payload normalization, seeded sessions and grading.

The engine is stateless. Callers own attempt history and seeds and pass them
back in on every call, so the same seed and definition always rebuild the
session a learner saw.
"""

import json
import logging
import string
import time
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import BaseModel, ConfigDict, model_validator

from learning_engine.shuffle import SeededRandom
from learning_engine.utils import percent, validate_pass_threshold

logger = logging.getLogger(__name__)

MAX_OPTIONS = 6
OPTION_IDS = string.ascii_uppercase


class IncompleteSubmissionError(ValueError):
    """Raised by callers that refuse to grade a submission with unanswered questions."""

    def __init__(self, missing_question_ids: List[str]):
        self.missing_question_ids = list(missing_question_ids)
        super().__init__(
            "Answers are missing for questions: " + ", ".join(self.missing_question_ids)
        )


class QuizOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str


class QuizQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    prompt: str
    options: List[QuizOption]
    correct_option_id: str
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def _check_options(self) -> "QuizQuestion":
        if len(self.options) < 2:
            raise ValueError(f"Question {self.id} needs at least 2 options")
        option_ids = [option.id for option in self.options]
        if len(option_ids) != len(set(option_ids)):
            raise ValueError(f"Question {self.id} has duplicate option ids")
        if option_ids.count(self.correct_option_id) != 1:
            raise ValueError(f"Question {self.id} must have exactly one correct option")
        return self


class QuizDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    questions: List[QuizQuestion]

    @model_validator(mode="after")
    def _check_question_ids(self) -> "QuizDefinition":
        question_ids = [question.id for question in self.questions]
        if len(question_ids) != len(set(question_ids)):
            raise ValueError("Quiz has duplicate question ids")
        return self

    def question_map(self) -> Dict[str, QuizQuestion]:
        return {question.id: question for question in self.questions}


class QuizSession(BaseModel):
    """Presentation order derived from a seed.

    ``definition`` is kept so the session can be graded without looking the
    quiz up again; it is not part of the stored record.
    """

    model_config = ConfigDict(frozen=True)

    seed: str
    question_order: List[str]
    option_order_by_question: Dict[str, List[str]]
    definition: QuizDefinition

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"definition"})


class QuizResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score_percent: int
    correct_answers: int
    total_questions: int
    passed: bool


# ===================== NORMALIZATION =====================


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _clean_id(value: Any) -> Optional[str]:
    """Like ``_clean_str`` but also accepts integer ids from stored JSON."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return _clean_str(value)


def _unique_id(base: str, taken: Set[str]) -> str:
    """Return ``base``, suffixed ``-2``, ``-3``... until it is not in ``taken``."""
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in row:
            return row[key]
    return None


def _normalize_options(raw_options: Any):
    """Return ``(options, option_id_by_raw_index)`` for one question.

    Options without an id get the letter of their raw index, unless an
    authored option already uses it.
    """
    options: List[QuizOption] = []
    id_by_index: Dict[int, str] = {}
    if not isinstance(raw_options, list):
        return options, id_by_index

    raw_options = raw_options[:MAX_OPTIONS]
    taken = {
        _clean_id(raw.get("id")) for raw in raw_options if isinstance(raw, Mapping)
    } - {None}

    seen = set()
    for index, raw in enumerate(raw_options):
        if isinstance(raw, str):
            option_id, label = None, _clean_str(raw)
        elif isinstance(raw, Mapping):
            option_id = _clean_id(raw.get("id"))
            label = _clean_str(_first(raw, "label", "text"))
        else:
            continue
        if label is None:
            continue
        if option_id is None:
            option_id = _unique_id(OPTION_IDS[index], taken)
        if option_id in seen:
            continue
        seen.add(option_id)
        options.append(QuizOption(id=option_id, label=label))
        id_by_index[index] = option_id
    return options, id_by_index


def _resolve_correct_option(row: Mapping[str, Any], options, id_by_index) -> Optional[str]:
    explicit = _clean_id(_first(row, "correctOptionId", "correct_option_id"))
    if explicit is not None and any(option.id == explicit for option in options):
        return explicit

    index = _first(row, "correctIndex", "correct_index")
    if isinstance(index, int) and not isinstance(index, bool):
        return id_by_index.get(index)
    return None


def _normalize_question(raw: Mapping[str, Any], question_id: str) -> Optional[QuizQuestion]:
    prompt = _clean_str(_first(raw, "prompt", "text", "question"))
    if prompt is None:
        return None

    options, id_by_index = _normalize_options(raw.get("options"))
    if len(options) < 2:
        return None
    correct_option_id = _resolve_correct_option(raw, options, id_by_index)
    if correct_option_id is None:
        return None

    return QuizQuestion(
        id=question_id,
        prompt=prompt,
        options=options,
        correct_option_id=correct_option_id,
        explanation=_clean_str(raw.get("explanation")),
    )


def _raw_questions(raw: Any):
    """Return ``(title, question_list)`` from a stored payload, or None."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if isinstance(raw, list):
        return "", raw
    if not isinstance(raw, Mapping):
        return None
    questions = raw.get("questions")
    title = raw.get("title") if isinstance(raw.get("title"), str) else ""
    return title.strip(), questions if isinstance(questions, list) else []


def normalize_quiz_payload(raw: Any) -> Optional[QuizDefinition]:
    """Turn a stored quiz payload into a validated definition.

    Malformed questions and options are dropped. Missing ids are generated
    from authoring position, suffixed when an authored id already uses them,
    so they are stable across calls. Integer ids are read as strings. Returns None
    when no usable question remains; callers must not render a quiz then.
    """
    parsed = _raw_questions(raw)
    if parsed is None:
        return None
    title, raw_questions = parsed

    # Generated ids must not collide with any authored one
    taken = {
        _clean_id(item.get("id")) for item in raw_questions if isinstance(item, Mapping)
    } - {None}

    questions: List[QuizQuestion] = []
    seen_ids = set()
    for position, item in enumerate(raw_questions, start=1):
        if not isinstance(item, Mapping):
            continue
        question_id = _clean_id(item.get("id")) or _unique_id(f"q-{position}", taken)
        question = _normalize_question(item, question_id)
        if question is None or question.id in seen_ids:
            continue
        seen_ids.add(question.id)
        questions.append(question)

    dropped = len(raw_questions) - len(questions)
    if dropped:
        logger.debug("Dropped %d malformed quiz questions", dropped)
    if not questions:
        return None
    return QuizDefinition(title=title, questions=questions)


def is_quiz_payload_ready(raw: Any) -> bool:
    """True when every authored question survives normalization."""
    parsed = _raw_questions(raw)
    if parsed is None or not parsed[1]:
        return False
    definition = normalize_quiz_payload(raw)
    return definition is not None and len(definition.questions) == len(parsed[1])


# ===================== SESSIONS =====================


def build_quiz_seed(module_id: Any, user_id: Any, freshness: Optional[Any] = None) -> str:
    """Compose a seed from module, user and a freshness token (epoch ms by default)."""
    if freshness is None:
        freshness = int(time.time() * 1000)
    return f"{module_id}:{user_id}:{freshness}"


def create_quiz_session(definition: QuizDefinition, seed: str) -> QuizSession:
    """Derive question and option order for ``seed``.

    The stream is consumed questions first, then the options of every
    question in authoring order.
    """
    rng = SeededRandom(seed)
    question_order = rng.shuffled([question.id for question in definition.questions])
    option_order_by_question = {
        question.id: rng.shuffled([option.id for option in question.options])
        for question in definition.questions
    }
    return QuizSession(
        seed=seed,
        question_order=question_order,
        option_order_by_question=option_order_by_question,
        definition=definition,
    )


def ordered_questions(session: QuizSession, reveal: bool = False) -> List[Dict[str, Any]]:
    """Questions and options laid out exactly as the session presents them.

    With ``reveal`` each question also carries its correct option and
    explanation, for review after grading.
    """
    by_id = session.definition.question_map()
    view = []
    for question_id in session.question_order:
        question = by_id[question_id]
        labels = {option.id: option.label for option in question.options}
        item = {
            "id": question.id,
            "prompt": question.prompt,
            "options": [
                {"id": option_id, "label": labels[option_id]}
                for option_id in session.option_order_by_question[question_id]
            ],
        }
        if reveal:
            item["correct_option_id"] = question.correct_option_id
            item["explanation"] = question.explanation
        view.append(item)
    return view


# ===================== GRADING =====================


def find_missing_answers(definition: QuizDefinition, answers: Mapping[str, Any]) -> List[str]:
    return [
        question.id
        for question in definition.questions
        if not _clean_str(answers.get(question.id))
    ]


def validate_submission(definition: QuizDefinition, answers: Mapping[str, Any]) -> None:
    """Reject submissions with unanswered questions before grading.

    Raises:
        IncompleteSubmissionError: If any question has no answer
    """
    missing = find_missing_answers(definition, answers)
    if missing:
        raise IncompleteSubmissionError(missing)


def grade_quiz_session(
    session: QuizSession, answers: Mapping[str, Any], pass_threshold: int
) -> QuizResult:
    """Grade ``answers`` (question id -> option id) against the session's quiz.

    Unanswered questions count as incorrect. Display order plays no part.
    """
    validate_pass_threshold(pass_threshold)
    questions = session.definition.questions
    total = len(questions)
    if total == 0:
        return QuizResult(score_percent=0, correct_answers=0, total_questions=0, passed=False)

    correct = sum(1 for question in questions if answers.get(question.id) == question.correct_option_id)
    score = percent(correct, total)
    return QuizResult(
        score_percent=score,
        correct_answers=correct,
        total_questions=total,
        passed=score >= pass_threshold,
    )
