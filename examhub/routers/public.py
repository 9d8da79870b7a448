"""Public exam endpoints: phone verification, registration and attempts."""

from dataclasses import asdict
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from sqlmodel import Session

from examhub.database import get_session
from examhub.deps import get_sms_sender
from examhub.errors import ExamNotPublic
from examhub.services import (
    attempt_service,
    catalog_service,
    merit_service,
    otp_service,
    registry_service,
)
from examhub.services.attempt_service import AttemptOwner
from examhub.utils import utcnow

router = APIRouter()

BASE_DIR = Path(__file__).resolve().parent.parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


# --- Request schemas ---


class SendOtpIn(BaseModel):
    phone: str


class VerifyOtpIn(BaseModel):
    phone: str
    code: str


class RegisterIn(BaseModel):
    name: str
    class_name: str
    phone: str
    college: str
    email: Optional[str] = None
    verified: bool = False
    otp_code: Optional[str] = None


class AnswerIn(BaseModel):
    participant_id: int
    question_id: int
    option: Optional[str] = None
    time_spent_seconds: int = 0


class ActivityIn(BaseModel):
    participant_id: int
    activity_type: str
    metadata: Optional[dict] = None


class SubmitIn(BaseModel):
    participant_id: int
    reason: str = "Manual"


def exam_summary(exam, now=None) -> dict:
    return {
        "exam_id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "duration_minutes": exam.duration_minutes,
        "total_marks": exam.total_marks,
        "per_question_mark": exam.per_question_mark,
        "has_negative_mark": exam.has_negative_mark,
        "negative_mark": exam.negative_mark,
        "subjects": exam.subjects,
        "start_date": exam.start_date,
        "end_date": exam.end_date,
        "status": catalog_service.exam_status(exam, now or utcnow()).value,
    }


# --- OTP ---


@router.post("/otp/send")
def api_send_otp(
    payload: SendOtpIn = Body(...),
    session: Session = Depends(get_session),
    sender=Depends(get_sms_sender),
):
    dispatch = otp_service.send_code(session, payload.phone, sender)
    return {
        "ok": True,
        "resend_after_seconds": dispatch.resend_after_seconds,
        "expires_in_seconds": dispatch.expires_in_seconds,
    }


@router.post("/otp/verify")
def api_verify_otp(payload: VerifyOtpIn = Body(...), session: Session = Depends(get_session)):
    otp_service.verify_code(session, payload.phone, payload.code)
    return {"ok": True}


# --- Exams & registration ---


@router.get("/class-options")
def api_class_options(session: Session = Depends(get_session)):
    return {"options": catalog_service.get_class_options(session)}


@router.get("/exams/{exam_id}")
def api_get_exam(exam_id: int, session: Session = Depends(get_session)):
    exam = catalog_service.get_exam(session, exam_id)
    if not exam.is_public:
        raise ExamNotPublic()
    summary = exam_summary(exam)
    summary["total_questions"] = len(catalog_service.get_questions(session, exam_id))
    return summary


@router.post("/exams/{exam_id}/register")
def api_register(exam_id: int, payload: RegisterIn = Body(...), session: Session = Depends(get_session)):
    registration = registry_service.register_participant(
        session,
        exam_id,
        name=payload.name,
        class_name=payload.class_name,
        phone=payload.phone,
        college=payload.college,
        email=payload.email,
        verified=payload.verified,
        otp_code=payload.otp_code,
    )
    return {"participant_id": registration.participant_id, "attempt_id": registration.attempt_id}


# --- Attempts ---


@router.get("/attempts/{attempt_id}")
def api_get_paper(attempt_id: int, participant_id: int = Query(...), session: Session = Depends(get_session)):
    return attempt_service.get_attempt_paper(session, attempt_id, AttemptOwner(participant_id=participant_id))


@router.post("/attempts/{attempt_id}/answers")
def api_answer(attempt_id: int, payload: AnswerIn = Body(...), session: Session = Depends(get_session)):
    outcome = attempt_service.record_answer(
        session,
        attempt_id,
        AttemptOwner(participant_id=payload.participant_id),
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
        AttemptOwner(participant_id=payload.participant_id),
        activity_type=payload.activity_type,
        metadata=payload.metadata,
    )
    return asdict(outcome)


@router.post("/attempts/{attempt_id}/submit")
def api_submit(attempt_id: int, payload: SubmitIn = Body(...), session: Session = Depends(get_session)):
    return attempt_service.submit_attempt(
        session, attempt_id, AttemptOwner(participant_id=payload.participant_id), reason=payload.reason
    )


@router.get("/attempts/{attempt_id}/result")
def api_result(attempt_id: int, participant_id: int = Query(...), session: Session = Depends(get_session)):
    return attempt_service.get_attempt_result(session, attempt_id, AttemptOwner(participant_id=participant_id))


# --- Merit list ---


@router.get("/exams/{exam_id}/merit")
def api_merit(exam_id: int, session: Session = Depends(get_session)):
    return merit_service.get_merit_list(session, exam_id, public_only=True)


@router.get("/exams/{exam_id}/merit/print")
def api_merit_print(request: Request, exam_id: int, session: Session = Depends(get_session)):
    merit = merit_service.get_merit_list(session, exam_id, public_only=True)
    return templates.TemplateResponse(
        request,
        "merit/print.html",
        {"merit": merit, "generated_at": utcnow()},
    )
