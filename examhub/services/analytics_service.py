"""Per-exam statistics for administrators."""

from collections import Counter
from typing import Dict, List

from sqlmodel import Session, select

from examhub.config import settings
from examhub.models import FINALIZED_STATUSES, AttemptActivityLog, AttemptStatus, ExamAttempt
from examhub.services import catalog_service
from examhub.utils import round_half_up

DISTRIBUTION_BUCKETS = ((0, 20), (21, 40), (41, 60), (61, 80), (81, 100))


def _attempts(session: Session, exam_id: int) -> List[ExamAttempt]:
    return list(session.exec(select(ExamAttempt).where(ExamAttempt.exam_id == exam_id)).all())


def get_score_distribution(session: Session, exam_id: int) -> Dict[str, int]:
    """Count finalized attempts per percentage bucket ("0-20" ... "81-100")."""
    distribution = {f"{low}-{high}": 0 for low, high in DISTRIBUTION_BUCKETS}
    for attempt in _attempts(session, exam_id):
        if attempt.status not in FINALIZED_STATUSES:
            continue
        # negative marking without a floor can go below zero
        pct = min(max(round_half_up(attempt.percentage or 0.0, 0), 0), 100)
        for low, high in DISTRIBUTION_BUCKETS:
            if low <= pct <= high:
                distribution[f"{low}-{high}"] += 1
                break
    return distribution


def get_anti_cheat_summary(session: Session, exam_id: int) -> dict:
    logs = session.exec(select(AttemptActivityLog).where(AttemptActivityLog.exam_id == exam_id)).all()
    by_type = Counter(log.activity_type for log in logs)
    by_severity = Counter(log.severity for log in logs)
    return {
        "total_events": len(logs),
        "flagged_attempts": len({log.attempt_id for log in logs}),
        "by_type": dict(by_type),
        "by_severity": dict(by_severity),
    }


def get_exam_stats(session: Session, exam_id: int) -> dict:
    exam = catalog_service.get_exam(session, exam_id)
    attempts = _attempts(session, exam_id)
    completed = [a for a in attempts if a.status in FINALIZED_STATUSES]
    percentages = [a.percentage or 0.0 for a in completed]
    durations = [a.duration_seconds for a in completed if a.duration_seconds is not None]
    passed = [p for p in percentages if p >= settings.PASS_PERCENTAGE]

    return {
        "exam_id": exam.id,
        "title": exam.title,
        "total_attempts": len(attempts),
        "completed": len(completed),
        "in_progress": sum(1 for a in attempts if a.status == AttemptStatus.IN_PROGRESS.value),
        "abandoned": sum(1 for a in attempts if a.status == AttemptStatus.ABANDONED.value),
        "average_percentage": round_half_up(sum(percentages) / len(percentages)) if percentages else 0.0,
        "highest_percentage": max(percentages) if percentages else 0.0,
        "lowest_percentage": min(percentages) if percentages else 0.0,
        "pass_rate": round_half_up(len(passed) / len(completed) * 100, 1) if completed else 0.0,
        "average_duration_minutes": round_half_up(sum(durations) / len(durations) / 60) if durations else 0.0,
        "tab_switch_violations": sum(1 for a in attempts if a.tab_switch_count > 0),
        "score_distribution": get_score_distribution(session, exam_id),
        "anti_cheat": get_anti_cheat_summary(session, exam_id),
    }
