"""Merit list for one exam, built on read from finalized attempts."""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from examhub.models import FINALIZED_STATUSES, ExamAttempt, Participant, Student
from examhub.services import catalog_service, ranking, scoring
from examhub.utils import mask_phone, round_half_up


@dataclass
class MeritEntry:
    attempt_id: int
    name: str
    class_name: Optional[str]
    institution: Optional[str]
    phone: Optional[str]
    score: float
    total_marks: float
    percentage: float
    grade: str
    duration_seconds: Optional[int]
    end_time: Optional[datetime]
    submission_type: Optional[str]
    rank: int = 0
    percentile: float = 0.0


def get_merit_list(session: Session, exam_id: int, public_only: bool = True) -> dict:
    """Ranked finalized attempts of an exam with summary figures.

    Public participants' phones are masked to their last four digits.
    """
    exam = catalog_service.get_exam(session, exam_id)

    stmt = (
        select(ExamAttempt, Participant, Student)
        .outerjoin(Participant, ExamAttempt.participant_id == Participant.id)
        .outerjoin(Student, ExamAttempt.student_id == Student.id)
        .where(ExamAttempt.exam_id == exam_id)
        .where(ExamAttempt.status.in_(FINALIZED_STATUSES))
    )
    if public_only:
        stmt = stmt.where(ExamAttempt.participant_id.is_not(None))

    entries = []
    for attempt, participant, student in session.exec(stmt).all():
        person = participant or student
        entries.append(
            MeritEntry(
                attempt_id=attempt.id,
                name=person.name if person else "Unknown",
                class_name=person.class_name if person else None,
                institution=participant.college if participant else (student.institution if student else None),
                phone=mask_phone(participant.phone) if participant else None,
                score=attempt.score or 0.0,
                total_marks=scoring.total_marks_for(exam, attempt.total_questions),
                percentage=attempt.percentage or 0.0,
                grade=scoring.grade_for(attempt.percentage or 0.0),
                duration_seconds=attempt.duration_seconds,
                end_time=attempt.end_time,
                submission_type=attempt.submission_type,
            )
        )

    ranked = ranking.assign_ranks(entries, ranking.merit_sort_key)
    for entry in ranked:
        entry.percentile = ranking.percentile(entry.rank, len(ranked))

    average = sum(e.percentage for e in ranked) / len(ranked) if ranked else 0.0
    return {
        "exam_id": exam.id,
        "title": exam.title,
        "total_participants": len(ranked),
        "average_percentage": round_half_up(average),
        "highest_score": ranked[0].score if ranked else None,
        "entries": [asdict(e) for e in ranked],
    }
