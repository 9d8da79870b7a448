"""Scoring engine: pure functions over stored answers and an answer key.

Nothing here touches the database, so a re-score from stored answers always
reproduces the stored result.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Sequence

LETTERS = "ABCDEFGHIJ"

BANGLA_TO_ENGLISH = {
    "ক": "A",
    "খ": "B",
    "গ": "C",
    "ঘ": "D",
    "ঙ": "E",
    "চ": "F",
    "ছ": "G",
    "জ": "H",
    "ঝ": "I",
    "ঞ": "J",
}

# (minimum percentage, grade), highest first
GRADE_SCALE = (
    (80, "A+"),
    (70, "A"),
    (60, "A-"),
    (50, "B+"),
    (40, "B"),
    (33, "C"),
)


def normalize_option_label(label: Optional[str]) -> Optional[str]:
    """Map a Bangla or lowercase option label to its English capital letter.

    Returns ``None`` for anything that is not a single option label.
    """
    if label is None:
        return None
    label = label.strip()
    if label in BANGLA_TO_ENGLISH:
        return BANGLA_TO_ENGLISH[label]
    if len(label) == 1 and label.upper() in LETTERS:
        return label.upper()
    return None


def letter_to_index(letter: str) -> int:
    return LETTERS.index(letter)


def index_to_letter(index: int) -> str:
    return LETTERS[index]


@dataclass(frozen=True)
class MarkingScheme:
    per_question_mark: float = 1.0
    has_negative_mark: bool = False
    negative_mark: float = 0.0
    score_floor: Optional[float] = 0.0

    @classmethod
    def from_exam(cls, exam) -> "MarkingScheme":
        return cls(
            per_question_mark=exam.per_question_mark,
            has_negative_mark=exam.has_negative_mark,
            negative_mark=exam.negative_mark or 0.0,
            score_floor=exam.score_floor,
        )

    @property
    def places(self) -> int:
        """Decimal places implied by the marks (0.25 -> 2)."""
        exponents = [
            Decimal(str(self.per_question_mark)).normalize().as_tuple().exponent,
            Decimal(str(self.negative_mark)).normalize().as_tuple().exponent,
        ]
        return max([0] + [-e for e in exponents if isinstance(e, int)])


@dataclass(frozen=True)
class AnswerRecord:
    selected_option: Optional[str]


@dataclass(frozen=True)
class ScoreResult:
    score: float
    correct_answers: int
    wrong_answers: int
    skipped_questions: int
    total_questions: int


def is_correct(selected: Optional[str], key: Optional[str]) -> Optional[bool]:
    """``None`` for a skipped question, otherwise the verdict."""
    if selected is None:
        return None
    return key is not None and selected == key


def advance_streak(current: int, best: int, verdict: Optional[bool]) -> tuple[int, int]:
    """Apply one answer event to (current, best).

    A cleared selection (``None``) leaves both untouched. ``best`` never drops.
    """
    if verdict is None:
        return current, best
    current = current + 1 if verdict else 0
    return current, max(best, current)


def compute_streaks(verdicts: Iterable[Optional[bool]]) -> tuple[int, int]:
    """Return (current, best) after replaying answer events in order."""
    current = best = 0
    for verdict in verdicts:
        current, best = advance_streak(current, best, verdict)
    return current, best


def score(
    question_order: Sequence[int],
    answer_key: Mapping[int, str],
    answers: Mapping[int, AnswerRecord],
    scheme: MarkingScheme,
) -> ScoreResult:
    """Score one attempt. ``answer_key`` must already use the attempt's letters."""
    correct = wrong = skipped = 0
    for qid in question_order:
        record = answers.get(qid)
        verdict = is_correct(record.selected_option if record else None, answer_key.get(qid))
        if verdict is None:
            skipped += 1
        elif verdict:
            correct += 1
        else:
            wrong += 1

    raw = Decimal(correct) * Decimal(str(scheme.per_question_mark))
    if scheme.has_negative_mark:
        raw -= Decimal(wrong) * Decimal(str(scheme.negative_mark))
    if scheme.score_floor is not None:
        raw = max(raw, Decimal(str(scheme.score_floor)))
    quantum = Decimal(1).scaleb(-scheme.places)
    final = raw.quantize(quantum, rounding=ROUND_HALF_UP)

    return ScoreResult(
        score=float(final),
        correct_answers=correct,
        wrong_answers=wrong,
        skipped_questions=skipped,
        total_questions=len(question_order),
    )


def total_marks_for(exam, question_count: int) -> float:
    if exam.total_marks:
        return float(exam.total_marks)
    return float(question_count) * float(exam.per_question_mark)


def percentage(value: float, total_marks: float) -> float:
    if not total_marks:
        return 0.0
    pct = Decimal(str(value)) / Decimal(str(total_marks)) * 100
    return float(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def grade_for(pct: float) -> str:
    """Convert percentage to letter grade."""
    for minimum, grade in GRADE_SCALE:
        if pct >= minimum:
            return grade
    return "F"
