"""Attempt lifecycle: start, answer, activity, submit, sweep and result.

An attempt row only ever leaves ``in_progress`` through a compare-and-set
UPDATE, so exactly one caller finalizes it and answers cannot land after it.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from examhub.config import settings
from examhub.errors import (
    AlreadyAttempted,
    AttemptFinalized,
    AttemptNotFinalized,
    AttemptNotFound,
    ExamHasNoQuestions,
    ExamHubError,
    ExamNotOngoing,
    Forbidden,
    InvalidOption,
    QuestionNotFound,
    QuestionNotInAttempt,
    ValidationFailed,
)
from examhub.models import (
    FINALIZED_STATUSES,
    AttemptActivityLog,
    AttemptAnswer,
    AttemptStatus,
    Exam,
    ExamAttempt,
    ExamStatus,
    SubmissionType,
)
from examhub.services import catalog_service, scoring
from examhub.services.question_order import (
    assemble_paper,
    attempt_answer_key,
    displayed_answer,
    displayed_options,
)
from examhub.utils import seconds_between, utcnow

logger = logging.getLogger(__name__)

IN_PROGRESS = AttemptStatus.IN_PROGRESS.value

SUBMIT_REASONS = ("Manual", "TimeUp", "TabSwitch")

ACTIVITY_SEVERITY = {
    "tab_switch": "medium",
    "window_blur": "low",
    "copy_attempt": "medium",
    "paste_attempt": "medium",
    "right_click": "low",
    "fullscreen_exit": "medium",
    "devtools_attempt": "high",
}


@dataclass
class AttemptOwner:
    """Who is acting on an attempt: a public participant or a student."""

    participant_id: Optional[int] = None
    student_id: Optional[int] = None

    def owns(self, attempt: ExamAttempt) -> bool:
        if attempt.participant_id is not None:
            return self.participant_id == attempt.participant_id
        return attempt.student_id is not None and self.student_id == attempt.student_id


@dataclass
class AnswerOutcome:
    question_id: int
    selected_option: Optional[str]
    is_correct: Optional[bool]
    current_streak: int
    best_streak: int
    answered_count: int


@dataclass
class ActivityOutcome:
    activity_type: str
    tab_switch_count: int
    status: str
    auto_submitted: bool


@dataclass
class SweepReport:
    finalized: int = 0
    abandoned: int = 0
    failed: int = 0


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _load_attempt(session: Session, attempt_id: int) -> ExamAttempt:
    attempt = session.get(ExamAttempt, attempt_id)
    if not attempt:
        raise AttemptNotFound()
    return attempt


def _load_owned(session: Session, attempt_id: int, owner: AttemptOwner) -> ExamAttempt:
    attempt = _load_attempt(session, attempt_id)
    if not owner.owns(attempt):
        raise Forbidden("You do not have access to this attempt")
    return attempt


def _answers(session: Session, attempt_id: int, refresh: bool = False) -> List[AttemptAnswer]:
    stmt = select(AttemptAnswer).where(AttemptAnswer.attempt_id == attempt_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    return list(session.exec(stmt).all())


def _answer_records(answers: List[AttemptAnswer]) -> Dict[int, scoring.AnswerRecord]:
    return {
        a.question_id: scoring.AnswerRecord(selected_option=a.selected_option)
        for a in answers
    }


def _attempt_questions(session: Session, attempt: ExamAttempt) -> list:
    by_id = catalog_service.get_questions_by_id(session, attempt.question_order)
    return [by_id[qid] for qid in attempt.question_order if qid in by_id]


def _remaining_seconds(attempt: ExamAttempt, now: datetime) -> int:
    if attempt.status != IN_PROGRESS or attempt.deadline_at is None:
        return 0
    return seconds_between(now, attempt.deadline_at)


def _past_deadline(attempt: ExamAttempt, now: datetime) -> bool:
    return attempt.deadline_at is not None and now >= attempt.deadline_at


def _summary(attempt: ExamAttempt, exam: Exam) -> dict:
    total_marks = scoring.total_marks_for(exam, attempt.total_questions)
    pct = attempt.percentage or 0.0
    return {
        "attempt_id": attempt.id,
        "exam_id": attempt.exam_id,
        "exam_title": exam.title,
        "status": attempt.status,
        "submission_type": attempt.submission_type,
        "score": attempt.score,
        "total_marks": total_marks,
        "correct_answers": attempt.correct_answers,
        "wrong_answers": attempt.wrong_answers,
        "skipped_questions": attempt.skipped_questions,
        "total_questions": attempt.total_questions,
        "percentage": attempt.percentage,
        "grade": scoring.grade_for(pct),
        "passed": pct >= settings.PASS_PERCENTAGE,
        "start_time": attempt.start_time,
        "end_time": attempt.end_time,
        "duration_seconds": attempt.duration_seconds,
        "current_streak": attempt.current_streak,
        "best_streak": attempt.best_streak,
        "tab_switch_count": attempt.tab_switch_count,
    }


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


def start_student_attempt(
    session: Session, exam_id: int, student_id: int, now: Optional[datetime] = None
) -> ExamAttempt:
    now = now or utcnow()
    catalog_service.get_student(session, student_id)
    exam = catalog_service.get_exam(session, exam_id)
    if catalog_service.exam_status(exam, now) != ExamStatus.ONGOING:
        raise ExamNotOngoing()
    questions = catalog_service.get_questions(session, exam_id)
    if not questions:
        raise ExamHasNoQuestions()

    existing = session.exec(
        select(ExamAttempt.id)
        .where(ExamAttempt.exam_id == exam_id)
        .where(ExamAttempt.student_id == student_id)
        .where(ExamAttempt.status != AttemptStatus.ABANDONED.value)
    ).first()
    if existing is not None:
        raise AlreadyAttempted()

    attempt = ExamAttempt(
        exam_id=exam_id,
        student_id=student_id,
        status=IN_PROGRESS,
        start_time=now,
        deadline_at=now + timedelta(minutes=exam.duration_minutes),
        last_activity_at=now,
        total_questions=len(questions),
        created_at=now,
    )
    try:
        session.add(attempt)
        session.flush()
        paper = assemble_paper(attempt.id, questions, exam.has_shuffle, exam.has_random)
        attempt.question_order = paper.question_order
        attempt.option_orders = paper.option_orders
        session.add(attempt)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyAttempted()

    session.refresh(attempt)
    logger.info("Student %s started exam %s (attempt %s)", student_id, exam_id, attempt.id)
    return attempt


# ---------------------------------------------------------------------------
# finalization
# ---------------------------------------------------------------------------


def finalize_attempt(
    session: Session,
    attempt: ExamAttempt,
    submission_type: SubmissionType,
    now: Optional[datetime] = None,
) -> ExamAttempt:
    """Finalize and score ``attempt`` exactly once.

    A caller that loses the compare-and-set gets the already stored result.
    """
    now = now or utcnow()
    status = (
        AttemptStatus.SUBMITTED if submission_type == SubmissionType.MANUAL else AttemptStatus.AUTO_SUBMITTED
    )
    end_time = now
    if submission_type == SubmissionType.AUTO_TIME_UP and attempt.deadline_at is not None:
        end_time = min(now, attempt.deadline_at)
    duration = seconds_between(attempt.start_time, end_time) if attempt.start_time else 0

    claimed = session.exec(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt.id)
        .where(ExamAttempt.status == IN_PROGRESS)
        .values(
            status=status.value,
            submission_type=submission_type.value,
            end_time=end_time,
            duration_seconds=duration,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        session.rollback()
        session.refresh(attempt)
        logger.info("Attempt %s already finalized as %s", attempt.id, attempt.submission_type)
        return attempt

    session.refresh(attempt)
    exam = catalog_service.get_exam(session, attempt.exam_id)
    questions = _attempt_questions(session, attempt)
    answer_key = attempt_answer_key(attempt.option_orders, questions)
    result = scoring.score(
        attempt.question_order,
        answer_key,
        _answer_records(_answers(session, attempt.id, refresh=True)),
        scoring.MarkingScheme.from_exam(exam),
    )

    attempt.score = result.score
    attempt.correct_answers = result.correct_answers
    attempt.wrong_answers = result.wrong_answers
    attempt.skipped_questions = result.skipped_questions
    attempt.total_questions = result.total_questions
    attempt.percentage = scoring.percentage(
        result.score, scoring.total_marks_for(exam, result.total_questions)
    )
    session.add(attempt)
    session.commit()
    session.refresh(attempt)

    logger.info(
        "Attempt %s finalized (%s): score %s, %s%%",
        attempt.id,
        attempt.submission_type,
        attempt.score,
        attempt.percentage,
    )
    return attempt


def _finalize_if_overdue(session: Session, attempt: ExamAttempt, now: datetime) -> bool:
    if attempt.status == IN_PROGRESS and _past_deadline(attempt, now):
        finalize_attempt(session, attempt, SubmissionType.AUTO_TIME_UP, now)
        return True
    return False


# ---------------------------------------------------------------------------
# in-progress operations
# ---------------------------------------------------------------------------


def get_attempt_paper(
    session: Session, attempt_id: int, owner: AttemptOwner, now: Optional[datetime] = None
) -> dict:
    """The attempt's questions in attempt order, without the answer key."""
    now = now or utcnow()
    attempt = _load_owned(session, attempt_id, owner)
    _finalize_if_overdue(session, attempt, now)

    exam = catalog_service.get_exam(session, attempt.exam_id)
    selected = {a.question_id: a.selected_option for a in _answers(session, attempt.id)}
    questions = []
    for number, question in enumerate(_attempt_questions(session, attempt), start=1):
        questions.append(
            {
                "number": number,
                "question_id": question.id,
                "question_text": question.question_text,
                "options": displayed_options(attempt.option_orders, question),
                "selected_option": selected.get(question.id),
                "subject": question.subject,
                "is_math": question.is_math,
            }
        )

    return {
        "attempt_id": attempt.id,
        "exam_id": exam.id,
        "exam_title": exam.title,
        "status": attempt.status,
        "submission_type": attempt.submission_type,
        "remaining_seconds": _remaining_seconds(attempt, now),
        "deadline_at": attempt.deadline_at,
        "tab_switch_count": attempt.tab_switch_count,
        "current_streak": attempt.current_streak,
        "best_streak": attempt.best_streak,
        "answered_count": sum(1 for v in selected.values() if v is not None),
        "total_questions": len(questions),
        "questions": questions,
    }


def _touch(session: Session, attempt: ExamAttempt, now: datetime, **values) -> None:
    """Claim the in-progress row for this write or raise ``AttemptFinalized``."""
    result = session.exec(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt.id)
        .where(ExamAttempt.status == IN_PROGRESS)
        .values(last_activity_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise AttemptFinalized()
    session.refresh(attempt)


def record_answer(
    session: Session,
    attempt_id: int,
    owner: AttemptOwner,
    question_id: int,
    option: Optional[str],
    time_spent_seconds: int = 0,
    now: Optional[datetime] = None,
) -> AnswerOutcome:
    """Save (or clear, with ``option=None``) the selection for one question."""
    now = now or utcnow()
    attempt = _load_owned(session, attempt_id, owner)
    if attempt.status != IN_PROGRESS:
        raise AttemptFinalized()
    if _finalize_if_overdue(session, attempt, now):
        raise AttemptFinalized("Time is up. Your exam has been submitted.")

    if question_id not in attempt.question_order:
        raise QuestionNotInAttempt()
    if time_spent_seconds is not None and time_spent_seconds < 0:
        raise ValidationFailed("Time spent cannot be negative")

    questions = _attempt_questions(session, attempt)
    question = next((q for q in questions if q.id == question_id), None)
    if question is None:
        raise QuestionNotFound()
    letter = None
    if option is not None:
        letter = scoring.normalize_option_label(option)
        if letter is None or scoring.letter_to_index(letter) >= len(question.options):
            raise InvalidOption()

    _touch(session, attempt, now, answer_seq=ExamAttempt.answer_seq + 1)

    verdict = scoring.is_correct(letter, displayed_answer(attempt.option_orders, question))
    answer = session.exec(
        select(AttemptAnswer)
        .where(AttemptAnswer.attempt_id == attempt.id)
        .where(AttemptAnswer.question_id == question_id)
    ).first()
    if answer is None:
        answer = AttemptAnswer(attempt_id=attempt.id, question_id=question_id)
    answer.selected_option = letter
    answer.is_correct = verdict
    answer.time_spent_seconds = time_spent_seconds or 0
    answer.sequence = attempt.answer_seq
    answer.answered_at = now
    session.add(answer)

    # the touch above holds the row, so the stored streak is current
    attempt.current_streak, attempt.best_streak = scoring.advance_streak(
        attempt.current_streak, attempt.best_streak, verdict
    )
    session.add(attempt)
    session.flush()
    answers = _answers(session, attempt.id)
    session.commit()

    return AnswerOutcome(
        question_id=question_id,
        selected_option=letter,
        is_correct=verdict,
        current_streak=attempt.current_streak,
        best_streak=attempt.best_streak,
        answered_count=sum(1 for a in answers if a.selected_option is not None),
    )


def record_activity(
    session: Session,
    attempt_id: int,
    owner: AttemptOwner,
    activity_type: str,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> ActivityOutcome:
    """Log suspicious client activity. Tab switches past the limit auto-submit."""
    now = now or utcnow()
    if activity_type not in ACTIVITY_SEVERITY:
        raise ValidationFailed(f"Unknown activity type: {activity_type}")

    attempt = _load_owned(session, attempt_id, owner)
    if attempt.status != IN_PROGRESS:
        raise AttemptFinalized()
    if _finalize_if_overdue(session, attempt, now):
        raise AttemptFinalized("Time is up. Your exam has been submitted.")

    if activity_type == "tab_switch":
        _touch(session, attempt, now, tab_switch_count=ExamAttempt.tab_switch_count + 1)
    else:
        _touch(session, attempt, now)

    session.add(
        AttemptActivityLog(
            attempt_id=attempt.id,
            exam_id=attempt.exam_id,
            activity_type=activity_type,
            severity=ACTIVITY_SEVERITY[activity_type],
            activity_metadata=json.dumps(metadata) if metadata else None,
            timestamp=now,
        )
    )
    session.commit()

    auto_submitted = False
    if activity_type == "tab_switch" and attempt.tab_switch_count > settings.TAB_SWITCH_LIMIT:
        logger.warning(
            "Attempt %s exceeded tab switch limit (%s), auto-submitting",
            attempt.id,
            attempt.tab_switch_count,
        )
        finalize_attempt(session, attempt, SubmissionType.AUTO_TAB_SWITCH, now)
        auto_submitted = attempt.submission_type == SubmissionType.AUTO_TAB_SWITCH.value

    return ActivityOutcome(
        activity_type=activity_type,
        tab_switch_count=attempt.tab_switch_count,
        status=attempt.status,
        auto_submitted=auto_submitted,
    )


def submit_attempt(
    session: Session,
    attempt_id: int,
    owner: AttemptOwner,
    reason: str = "Manual",
    now: Optional[datetime] = None,
) -> dict:
    """Finalize on the participant's request. Repeated calls return the same result."""
    now = now or utcnow()
    if reason not in SUBMIT_REASONS:
        raise ValidationFailed(f"Unknown submit reason: {reason}")

    attempt = _load_owned(session, attempt_id, owner)
    if attempt.status == IN_PROGRESS:
        if _past_deadline(attempt, now):
            submission_type = SubmissionType.AUTO_TIME_UP
        elif reason == "TimeUp":
            skew = timedelta(seconds=settings.CLOCK_SKEW_TOLERANCE_SECONDS)
            if now < attempt.deadline_at - skew:
                logger.info("Early time-up claim on attempt %s recorded as manual", attempt.id)
                submission_type = SubmissionType.MANUAL
            else:
                submission_type = SubmissionType.AUTO_TIME_UP
        elif reason == "TabSwitch":
            submission_type = SubmissionType.AUTO_TAB_SWITCH
        else:
            submission_type = SubmissionType.MANUAL
        finalize_attempt(session, attempt, submission_type, now)
    elif attempt.status not in FINALIZED_STATUSES:
        raise AttemptFinalized()

    exam = catalog_service.get_exam(session, attempt.exam_id)
    return _summary(attempt, exam)


def sweep_overdue_attempts(session: Session, now: Optional[datetime] = None) -> SweepReport:
    """Close attempts whose deadline passed while the client was gone."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=settings.SWEEP_GRACE_SECONDS)
    overdue = session.exec(
        select(ExamAttempt)
        .where(ExamAttempt.status == IN_PROGRESS)
        .where(ExamAttempt.deadline_at < cutoff)
    ).all()

    report = SweepReport()
    for attempt in overdue:
        answered = any(a.selected_option is not None for a in _answers(session, attempt.id))
        if answered:
            try:
                finalize_attempt(session, attempt, SubmissionType.AUTO_TIME_UP, now)
            except ExamHubError:
                session.rollback()
                logger.exception("Could not finalize overdue attempt %s", attempt.id)
                report.failed += 1
                continue
            if attempt.submission_type == SubmissionType.AUTO_TIME_UP.value:
                report.finalized += 1
            continue

        result = session.exec(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt.id)
            .where(ExamAttempt.status == IN_PROGRESS)
            .values(status=AttemptStatus.ABANDONED.value, end_time=attempt.deadline_at)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        report.abandoned += result.rowcount

    if overdue:
        logger.info(
            "Sweep checked %d attempts (%d finalized, %d abandoned, %d failed)",
            len(overdue),
            report.finalized,
            report.abandoned,
            report.failed,
        )
    return report


def get_attempt_result(session: Session, attempt_id: int, owner: AttemptOwner) -> dict:
    """Score breakdown plus a per-question review. Finalized attempts only."""
    attempt = _load_owned(session, attempt_id, owner)
    if attempt.status not in FINALIZED_STATUSES:
        raise AttemptNotFinalized()

    exam = catalog_service.get_exam(session, attempt.exam_id)
    answers = {a.question_id: a for a in _answers(session, attempt.id)}
    review = []
    for number, question in enumerate(_attempt_questions(session, attempt), start=1):
        answer = answers.get(question.id)
        selected = answer.selected_option if answer else None
        correct = displayed_answer(attempt.option_orders, question)
        review.append(
            {
                "number": number,
                "question_id": question.id,
                "question_text": question.question_text,
                "options": displayed_options(attempt.option_orders, question),
                "correct_option": correct,
                "selected_option": selected,
                "is_correct": scoring.is_correct(selected, correct),
                "explanation": question.explanation,
                "time_spent_seconds": answer.time_spent_seconds if answer else 0,
            }
        )

    result = _summary(attempt, exam)
    result["review"] = review
    return result
