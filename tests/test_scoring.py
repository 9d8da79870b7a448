"""Tests for the pure scoring engine."""

import pytest

from examhub.services.scoring import (
    AnswerRecord,
    MarkingScheme,
    advance_streak,
    compute_streaks,
    grade_for,
    normalize_option_label,
    percentage,
    score,
)

ORDER = [1, 2, 3, 4]
KEY = {1: "A", 2: "B", 3: "C", 4: "D"}


def answers(*selections):
    return {qid: AnswerRecord(selected_option=sel) for qid, sel in zip(ORDER, selections) if sel is not None}


class TestScore:
    def test_negative_marking_example(self):
        # Given: correct, wrong, skipped, correct with 0.25 negative marking
        scheme = MarkingScheme(per_question_mark=1, has_negative_mark=True, negative_mark=0.25)

        # When
        result = score(ORDER, KEY, answers("A", "C", None, "D"), scheme)

        # Then
        assert result.correct_answers == 2
        assert result.wrong_answers == 1
        assert result.skipped_questions == 1
        assert result.score == 1.75

    def test_rescoring_is_deterministic(self):
        scheme = MarkingScheme(per_question_mark=1, has_negative_mark=True, negative_mark=0.25)
        stored = answers("A", "C", None, "D")

        assert score(ORDER, KEY, stored, scheme) == score(ORDER, KEY, stored, scheme)

    def test_no_negative_marking_ignores_wrong_answers(self):
        result = score(ORDER, KEY, answers("A", "C", "A", "D"), MarkingScheme())
        assert result.score == 2.0
        assert result.wrong_answers == 2

    def test_score_is_floored_at_zero_by_default(self):
        scheme = MarkingScheme(has_negative_mark=True, negative_mark=0.5)
        result = score(ORDER, KEY, answers("B", "A", "A", "A"), scheme)
        assert result.score == 0.0

    def test_floor_can_be_disabled(self):
        scheme = MarkingScheme(has_negative_mark=True, negative_mark=0.5, score_floor=None)
        result = score(ORDER, KEY, answers("B", "A", "A", "A"), scheme)
        assert result.score == -2.0

    def test_answers_outside_the_paper_are_ignored(self):
        stored = answers("A", "B", "C", "D")
        stored[99] = AnswerRecord(selected_option="A")

        result = score(ORDER, KEY, stored, MarkingScheme())

        assert result.correct_answers == 4
        assert result.total_questions == 4

    def test_empty_attempt(self):
        result = score(ORDER, KEY, {}, MarkingScheme())
        assert result.score == 0.0
        assert result.skipped_questions == 4


class TestStreaks:
    def test_streak_follows_answer_events(self):
        # Given: correct, correct, wrong, correct, then the wrong one fixed
        verdicts = [True, True, False, True, True]

        # When
        current, best = compute_streaks(verdicts)

        # Then: the fix extends the live run, it does not rewrite history
        assert (current, best) == (2, 2)

    def test_cleared_selection_changes_nothing(self):
        assert advance_streak(3, 4, None) == (3, 4)
        assert compute_streaks([True, None, True]) == (2, 2)

    def test_best_never_drops(self):
        assert advance_streak(4, 4, False) == (0, 4)
        assert advance_streak(1, 4, True) == (2, 4)

    def test_compute_streaks(self):
        assert compute_streaks([True, True, False, True]) == (1, 2)
        assert compute_streaks([]) == (0, 0)


class TestLabelsAndGrades:
    @pytest.mark.parametrize(
        "label, expected",
        [("A", "A"), ("b", "B"), (" c ", "C"), ("ক", "A"), ("ঘ", "D"), ("Z", None), ("AB", None), (None, None)],
    )
    def test_normalize_option_label(self, label, expected):
        assert normalize_option_label(label) == expected

    @pytest.mark.parametrize(
        "pct, grade",
        [(80, "A+"), (79.99, "A"), (70, "A"), (60, "A-"), (50, "B+"), (40, "B"), (33, "C"), (32.99, "F")],
    )
    def test_grade_scale(self, pct, grade):
        assert grade_for(pct) == grade

    def test_percentage(self):
        assert percentage(3, 5) == 60.0
        assert percentage(1.75, 4) == 43.75
        assert percentage(1, 0) == 0.0

    def test_precision_follows_marks(self):
        assert MarkingScheme(per_question_mark=1, negative_mark=0.25).places == 2
        assert MarkingScheme(per_question_mark=2, negative_mark=0.5).places == 1
        assert MarkingScheme().places == 0
