"""Minimal seeding and reporting endpoints for administrators."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session

from examhub.database import get_session
from examhub.services import analytics_service, catalog_service
from examhub.tasks import run_maintenance

router = APIRouter()


class CreateExamIn(BaseModel):
    title: str
    duration_minutes: int
    description: Optional[str] = None
    total_marks: Optional[float] = None
    per_question_mark: float = 1.0
    has_negative_mark: bool = False
    negative_mark: float = 0.0
    score_floor: Optional[float] = 0.0
    has_shuffle: bool = False
    has_random: bool = False
    is_public: bool = False
    requires_phone_verification: bool = True
    subjects: List[str] = []
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class CreateQuestionIn(BaseModel):
    question_text: str
    options: List[str]
    answer: str
    explanation: Optional[str] = None
    subject: Optional[str] = None
    chapter: Optional[str] = None
    is_math: bool = False
    position: Optional[int] = None


class CreateStudentIn(BaseModel):
    student_code: str
    name: str
    class_name: Optional[str] = None
    batch: Optional[str] = None
    institution: Optional[str] = None
    phone: Optional[str] = None


@router.post("/exams")
def api_create_exam(payload: CreateExamIn = Body(...), session: Session = Depends(get_session)):
    exam = catalog_service.create_exam(session, **payload.model_dump())
    return {"exam_id": exam.id, "title": exam.title, "duration_minutes": exam.duration_minutes}


@router.post("/exams/{exam_id}/questions")
def api_add_question(exam_id: int, payload: CreateQuestionIn = Body(...), session: Session = Depends(get_session)):
    question = catalog_service.add_question(session, exam_id, **payload.model_dump())
    return {
        "question_id": question.id,
        "exam_id": question.exam_id,
        "position": question.position,
        "answer": question.answer,
    }


@router.post("/students")
def api_create_student(payload: CreateStudentIn = Body(...), session: Session = Depends(get_session)):
    student = catalog_service.create_student(session, **payload.model_dump())
    return {"student_id": student.id, "student_code": student.student_code, "name": student.name}


@router.get("/exams/{exam_id}/stats")
def api_exam_stats(exam_id: int, session: Session = Depends(get_session)):
    return analytics_service.get_exam_stats(session, exam_id)


@router.post("/maintenance/run")
def api_run_maintenance(session: Session = Depends(get_session)):
    return run_maintenance(session, refresh_snapshots=True)
