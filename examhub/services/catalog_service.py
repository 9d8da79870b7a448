"""Read access to exams, questions and students, plus minimal seeding writes."""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, select

from examhub.config import settings
from examhub.errors import ExamNotFound, StudentNotFound, ValidationFailed
from examhub.models import Exam, ExamStatus, MCQQuestion, Student
from examhub.services.scoring import LETTERS, index_to_letter, normalize_option_label
from examhub.utils import sanitize_question_text, sanitize_text, utcnow

logger = logging.getLogger(__name__)

MCQ_QUESTION_MAX_LENGTH = 1000
MCQ_OPTION_MAX_LENGTH = 500
MIN_OPTIONS = 2
MAX_OPTIONS = len(LETTERS)


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise ExamNotFound()
    return exam


def get_questions(session: Session, exam_id: int) -> List[MCQQuestion]:
    stmt = (
        select(MCQQuestion)
        .where(MCQQuestion.exam_id == exam_id)
        .order_by(MCQQuestion.position, MCQQuestion.id)
    )
    return list(session.exec(stmt).all())


def get_questions_by_id(session: Session, question_ids: Sequence[int]) -> Dict[int, MCQQuestion]:
    if not question_ids:
        return {}
    rows = session.exec(select(MCQQuestion).where(MCQQuestion.id.in_(list(question_ids)))).all()
    return {q.id: q for q in rows}


def get_answer_key(session: Session, exam_id: int) -> Dict[int, str]:
    """Question id -> canonical letter, in the exam's own option order."""
    return {q.id: q.answer for q in get_questions(session, exam_id)}


def exam_status(exam: Exam, now: Optional[datetime] = None) -> ExamStatus:
    """Derive the exam status from its date window. Missing bounds are open."""
    now = now or utcnow()
    if exam.start_date and now < exam.start_date:
        return ExamStatus.UPCOMING
    if exam.end_date and now > exam.end_date:
        return ExamStatus.COMPLETED
    return ExamStatus.ONGOING


def get_class_options(session: Session) -> List[str]:
    """Configured classes followed by any other class already used by students."""
    options = list(settings.CLASS_OPTIONS)
    used = session.exec(
        select(Student.class_name).where(Student.class_name.is_not(None)).distinct()
    ).all()
    for name in sorted(used):
        if name and name not in options:
            options.append(name)
    return options


def create_exam(
    session: Session,
    title: str,
    duration_minutes: int,
    description: Optional[str] = None,
    total_marks: Optional[float] = None,
    per_question_mark: float = 1.0,
    has_negative_mark: bool = False,
    negative_mark: float = 0.0,
    score_floor: Optional[float] = 0.0,
    has_shuffle: bool = False,
    has_random: bool = False,
    is_public: bool = False,
    requires_phone_verification: bool = True,
    subjects: Optional[List[str]] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Exam:
    title = sanitize_text(title)
    if not title:
        raise ValidationFailed("Title is required")
    if duration_minutes < 1:
        raise ValidationFailed("Duration must be at least 1 minute")
    if per_question_mark <= 0:
        raise ValidationFailed("Per question mark must be positive")
    if has_negative_mark and negative_mark < 0:
        raise ValidationFailed("Negative mark cannot be negative")
    if start_date and end_date and end_date <= start_date:
        raise ValidationFailed("End date must be after start date")

    exam = Exam(
        title=title,
        description=sanitize_text(description) if description else None,
        duration_minutes=duration_minutes,
        total_marks=total_marks,
        per_question_mark=per_question_mark,
        has_negative_mark=has_negative_mark,
        negative_mark=negative_mark if has_negative_mark else 0.0,
        score_floor=score_floor,
        has_shuffle=has_shuffle,
        has_random=has_random,
        is_public=is_public,
        requires_phone_verification=requires_phone_verification,
        subjects=[sanitize_text(s) for s in subjects or []],
        start_date=start_date,
        end_date=end_date,
    )
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Created exam %s (%s)", exam.id, exam.title)
    return exam


def _validate_mcq_inputs(question_text: str, options: List[str]) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if not question_text:
        errors["question_text"] = "Question text is required."
    elif len(question_text) > MCQ_QUESTION_MAX_LENGTH:
        errors["question_text"] = f"Question text must be at most {MCQ_QUESTION_MAX_LENGTH} characters."

    if len(options) < MIN_OPTIONS or len(options) > MAX_OPTIONS:
        errors["options"] = f"A question needs between {MIN_OPTIONS} and {MAX_OPTIONS} options."
    elif any(not opt for opt in options):
        errors["options"] = "All options must be provided and non-empty."
    elif any(len(opt) > MCQ_OPTION_MAX_LENGTH for opt in options):
        errors["options"] = f"Options must be at most {MCQ_OPTION_MAX_LENGTH} characters."
    elif len({opt.lower() for opt in options}) != len(options):
        errors["options"] = "Options must be unique."

    return errors


def canonical_answer(answer: str, options: List[str]) -> str:
    """Resolve a letter, Bangla label or option text to the canonical letter."""
    letter = normalize_option_label(answer)
    if letter is not None:
        if LETTERS.index(letter) >= len(options):
            raise ValidationFailed("Correct option must be one of the listed options.")
        return letter

    wanted = " ".join((answer or "").split()).lower()
    for index, option in enumerate(options):
        if option.lower() == wanted:
            return index_to_letter(index)
    raise ValidationFailed("Correct option must be one of the listed options.")


def add_question(
    session: Session,
    exam_id: int,
    question_text: str,
    options: List[str],
    answer: str,
    explanation: Optional[str] = None,
    subject: Optional[str] = None,
    chapter: Optional[str] = None,
    is_math: bool = False,
    position: Optional[int] = None,
) -> MCQQuestion:
    get_exam(session, exam_id)

    question_clean = sanitize_question_text(question_text)
    options_clean = [sanitize_text(opt) for opt in options or []]
    errors = _validate_mcq_inputs(question_clean, options_clean)
    if errors:
        raise ValidationFailed("; ".join(errors.values()))

    if position is None:
        current_max = session.exec(
            select(func.max(MCQQuestion.position)).where(MCQQuestion.exam_id == exam_id)
        ).one()
        position = (current_max or 0) + 1

    question = MCQQuestion(
        exam_id=exam_id,
        position=position,
        question_text=question_clean,
        options=options_clean,
        answer=canonical_answer(answer, options_clean),
        explanation=sanitize_question_text(explanation) if explanation else None,
        subject=subject,
        chapter=chapter,
        is_math=is_math,
    )
    session.add(question)
    session.commit()
    session.refresh(question)
    return question


def create_student(
    session: Session,
    student_code: str,
    name: str,
    class_name: Optional[str] = None,
    batch: Optional[str] = None,
    institution: Optional[str] = None,
    phone: Optional[str] = None,
) -> Student:
    student_code = sanitize_text(student_code)
    name = sanitize_text(name)
    if not student_code or not name:
        raise ValidationFailed("Student code and name are required")

    existing = session.exec(select(Student).where(Student.student_code == student_code)).first()
    if existing:
        raise ValidationFailed(f"Student code {student_code} already exists")

    student = Student(
        student_code=student_code,
        name=name,
        class_name=sanitize_text(class_name) if class_name else None,
        batch=sanitize_text(batch) if batch else None,
        institution=sanitize_text(institution) if institution else None,
        phone=phone,
    )
    session.add(student)
    session.commit()
    session.refresh(student)
    return student


def get_student(session: Session, student_id: int) -> Student:
    student = session.get(Student, student_id)
    if not student:
        raise StudentNotFound()
    return student
