"""Endpoints for enrolled students: exam attempts, merit lists and leaderboards."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from examhub.database import get_session
from examhub.services import attempt_service, leaderboard_service, merit_service
from examhub.services.attempt_service import AttemptOwner

router = APIRouter()


class AnswerIn(BaseModel):
    student_id: int
    question_id: int
    option: Optional[str] = None
    time_spent_seconds: int = 0


class ActivityIn(BaseModel):
    student_id: int
    activity_type: str
    metadata: Optional[dict] = None


class SubmitIn(BaseModel):
    student_id: int
    reason: str = "Manual"


@router.post("/exams/{exam_id}/attempts")
def api_start_attempt(exam_id: int, student_id: int = Query(...), session: Session = Depends(get_session)):
    attempt = attempt_service.start_student_attempt(session, exam_id, student_id)
    return {
        "attempt_id": attempt.id,
        "exam_id": attempt.exam_id,
        "status": attempt.status,
        "deadline_at": attempt.deadline_at,
        "total_questions": attempt.total_questions,
    }


@router.get("/attempts/{attempt_id}")
def api_get_paper(attempt_id: int, student_id: int = Query(...), session: Session = Depends(get_session)):
    return attempt_service.get_attempt_paper(session, attempt_id, AttemptOwner(student_id=student_id))


@router.post("/attempts/{attempt_id}/answers")
def api_answer(attempt_id: int, payload: AnswerIn = Body(...), session: Session = Depends(get_session)):
    outcome = attempt_service.record_answer(
        session,
        attempt_id,
        AttemptOwner(student_id=payload.student_id),
        question_id=payload.question_id,
        option=payload.option,
        time_spent_seconds=payload.time_spent_seconds,
    )
    return asdict(outcome)


@router.post("/attempts/{attempt_id}/activity")
def api_activity(attempt_id: int, payload: ActivityIn = Body(...), session: Session = Depends(get_session)):
    outcome = attempt_service.record_activity(
        session,
        attempt_id,
        AttemptOwner(student_id=payload.student_id),
        activity_type=payload.activity_type,
        metadata=payload.metadata,
    )
    return asdict(outcome)


@router.post("/attempts/{attempt_id}/submit")
def api_submit(attempt_id: int, payload: SubmitIn = Body(...), session: Session = Depends(get_session)):
    return attempt_service.submit_attempt(
        session, attempt_id, AttemptOwner(student_id=payload.student_id), reason=payload.reason
    )


@router.get("/attempts/{attempt_id}/result")
def api_result(attempt_id: int, student_id: int = Query(...), session: Session = Depends(get_session)):
    return attempt_service.get_attempt_result(session, attempt_id, AttemptOwner(student_id=student_id))


@router.get("/exams/{exam_id}/merit")
def api_merit(exam_id: int, session: Session = Depends(get_session)):
    return merit_service.get_merit_list(session, exam_id, public_only=False)


@router.get("/leaderboard")
def api_leaderboard(
    variant: str = Query("overall"),
    student_id: Optional[int] = Query(None),
    class_name: Optional[str] = Query(None),
    batch: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    session: Session = Depends(get_session),
):
    return leaderboard_service.get_leaderboard(
        session,
        variant=variant,
        student_id=student_id,
        class_name=class_name,
        batch=batch,
        limit=limit,
    )
