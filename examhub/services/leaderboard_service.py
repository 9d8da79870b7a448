"""Student leaderboards aggregated from finalized attempts."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, select

from examhub.config import settings
from examhub.errors import ValidationFailed
from examhub.models import FINALIZED_STATUSES, ExamAttempt, LeaderboardSnapshot, Student
from examhub.services import ranking
from examhub.utils import round_half_up, utcnow

logger = logging.getLogger(__name__)

VARIANTS = ("overall", "weekly", "streak")


@dataclass
class LeaderboardEntry:
    student_id: int
    name: str
    class_name: Optional[str]
    batch: Optional[str]
    institution: Optional[str]
    total_score: float
    exams_taken: int
    correct_answers: int
    total_questions: int
    average_percentage: float
    best_streak: int
    xp: int
    rank: int = 0
    previous_rank: Optional[int] = None


def _scope_key(class_name: Optional[str], batch: Optional[str]) -> str:
    parts = []
    if class_name:
        parts.append(f"class:{class_name}")
    if batch:
        parts.append(f"batch:{batch}")
    return "|".join(parts) or "all"


def _aggregate(
    session: Session,
    variant: str,
    class_name: Optional[str],
    batch: Optional[str],
    now: datetime,
) -> List[LeaderboardEntry]:
    stmt = (
        select(
            Student.id,
            Student.name,
            Student.class_name,
            Student.batch,
            Student.institution,
            func.coalesce(func.sum(ExamAttempt.score), 0.0),
            func.count(ExamAttempt.id),
            func.coalesce(func.sum(ExamAttempt.correct_answers), 0),
            func.coalesce(func.sum(ExamAttempt.total_questions), 0),
            func.coalesce(func.avg(ExamAttempt.percentage), 0.0),
            func.coalesce(func.max(ExamAttempt.best_streak), 0),
        )
        .join(Student, ExamAttempt.student_id == Student.id)
        .where(ExamAttempt.status.in_(FINALIZED_STATUSES))
        .group_by(Student.id, Student.name, Student.class_name, Student.batch, Student.institution)
    )
    if variant == "weekly":
        since = now - timedelta(days=settings.LEADERBOARD_WEEK_DAYS)
        stmt = stmt.where(ExamAttempt.end_time >= since)
    if class_name:
        stmt = stmt.where(Student.class_name == class_name)
    if batch:
        stmt = stmt.where(Student.batch == batch)

    entries = []
    for row in session.exec(stmt).all():
        sid, name, cls, bat, inst, total, exams, correct, questions, avg_pct, streak = row
        total = round_half_up(float(total))
        entries.append(
            LeaderboardEntry(
                student_id=sid,
                name=name,
                class_name=cls,
                batch=bat,
                institution=inst,
                total_score=total,
                exams_taken=int(exams),
                correct_answers=int(correct),
                total_questions=int(questions),
                average_percentage=round_half_up(float(avg_pct)),
                best_streak=int(streak),
                xp=int(round(total * settings.XP_PER_POINT)),
            )
        )

    key = ranking.streak_sort_key if variant == "streak" else ranking.overall_sort_key
    return ranking.assign_ranks(entries, key)


def _previous_ranks(session: Session, variant: str, scope_key: str) -> Dict[int, int]:
    latest = session.exec(
        select(func.max(LeaderboardSnapshot.taken_at))
        .where(LeaderboardSnapshot.variant == variant)
        .where(LeaderboardSnapshot.scope_key == scope_key)
    ).one()
    if latest is None:
        return {}
    rows = session.exec(
        select(LeaderboardSnapshot)
        .where(LeaderboardSnapshot.variant == variant)
        .where(LeaderboardSnapshot.scope_key == scope_key)
        .where(LeaderboardSnapshot.taken_at == latest)
    ).all()
    return {row.student_id: row.rank for row in rows}


def get_leaderboard(
    session: Session,
    variant: str = "overall",
    student_id: Optional[int] = None,
    class_name: Optional[str] = None,
    batch: Optional[str] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Top entries of a leaderboard variant plus the caller's own standing.

    ``previous_rank`` comes from the last stored snapshot; reading never
    writes one.
    """
    if variant not in VARIANTS:
        raise ValidationFailed(f"Unknown leaderboard variant: {variant}")
    now = now or utcnow()
    limit = limit or settings.LEADERBOARD_DEFAULT_LIMIT
    if limit < 1:
        raise ValidationFailed("Limit must be positive")

    ranked = _aggregate(session, variant, class_name, batch, now)
    previous = _previous_ranks(session, variant, _scope_key(class_name, batch))
    for entry in ranked:
        entry.previous_rank = previous.get(entry.student_id)

    me = None
    if student_id is not None:
        me = next((asdict(e) for e in ranked if e.student_id == student_id), None)

    return {
        "variant": variant,
        "class_name": class_name,
        "batch": batch,
        "total": len(ranked),
        "entries": [asdict(e) for e in ranked[:limit]],
        "me": me,
    }


def refresh_leaderboard_snapshots(session: Session, now: Optional[datetime] = None) -> int:
    """Replace stored ranks for every variant, globally and per class."""
    now = now or utcnow()
    classes = session.exec(
        select(Student.class_name).where(Student.class_name.is_not(None)).distinct()
    ).all()
    scopes = [None] + sorted(c for c in classes if c)

    written = 0
    for variant in VARIANTS:
        for class_name in scopes:
            scope_key = _scope_key(class_name, None)
            ranked = _aggregate(session, variant, class_name, None, now)
            session.exec(
                delete(LeaderboardSnapshot)
                .where(LeaderboardSnapshot.variant == variant)
                .where(LeaderboardSnapshot.scope_key == scope_key)
            )
            for entry in ranked:
                session.add(
                    LeaderboardSnapshot(
                        variant=variant,
                        scope_key=scope_key,
                        student_id=entry.student_id,
                        rank=entry.rank,
                        taken_at=now,
                    )
                )
            written += len(ranked)
    session.commit()
    logger.info("Refreshed leaderboard snapshots (%d rows)", written)
    return written
