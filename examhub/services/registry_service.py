"""Public participant registration: one verified phone, one attempt per exam."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from examhub.errors import (
    AlreadyRegistered,
    CodeAlreadyUsed,
    ExamHasNoQuestions,
    ExamNotOngoing,
    ExamNotPublic,
    PhoneNotVerified,
)
from examhub.models import AttemptStatus, ExamAttempt, ExamStatus, Participant
from examhub.services import catalog_service, otp_service
from examhub.services.question_order import assemble_paper
from examhub.utils import mask_phone, sanitize_text, utcnow
from examhub.validators import normalize_phone, validate_email, validate_registration_fields

logger = logging.getLogger(__name__)


@dataclass
class Registration:
    participant_id: int
    attempt_id: int


def _is_verified(session: Session, phone: str, otp_code: Optional[str], now: datetime) -> bool:
    if otp_code:
        try:
            otp_service.verify_code(session, phone, otp_code, now=now)
        except CodeAlreadyUsed:
            # a parallel request for this phone may have consumed the same code
            if not otp_service.has_recent_verification(session, phone, now=now):
                raise
        return True
    return otp_service.has_recent_verification(session, phone, now=now)


def register_participant(
    session: Session,
    exam_id: int,
    name: str,
    class_name: str,
    phone: str,
    college: str,
    email: Optional[str] = None,
    verified: bool = False,
    otp_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Registration:
    """Register a phone for a public exam and open its attempt.

    ``verified`` is what the client believes; the server only accepts a
    verification it has recorded itself (or an inline ``otp_code``).
    """
    now = now or utcnow()

    name = sanitize_text(name)
    class_name = sanitize_text(class_name)
    college = sanitize_text(college)
    validate_registration_fields(name, class_name, college)
    phone = normalize_phone(phone)
    email = validate_email(email)

    exam = catalog_service.get_exam(session, exam_id)
    if not exam.is_public:
        raise ExamNotPublic()
    if catalog_service.exam_status(exam, now) != ExamStatus.ONGOING:
        raise ExamNotOngoing()
    questions = catalog_service.get_questions(session, exam_id)
    if not questions:
        raise ExamHasNoQuestions()

    existing = session.exec(
        select(Participant.id).where(Participant.exam_id == exam_id).where(Participant.phone == phone)
    ).first()
    if existing is not None:
        logger.info("Duplicate registration for exam %s from %s", exam_id, mask_phone(phone))
        raise AlreadyRegistered()

    phone_verified = _is_verified(session, phone, otp_code, now)
    if exam.requires_phone_verification and not phone_verified:
        raise PhoneNotVerified()
    if verified and not phone_verified:
        logger.info("Ignoring unconfirmed client verification for %s", mask_phone(phone))

    participant = Participant(
        exam_id=exam_id,
        name=name,
        class_name=class_name,
        phone=phone,
        college=college,
        email=email,
        verified=phone_verified,
        created_at=now,
    )
    try:
        session.add(participant)
        session.flush()

        attempt = ExamAttempt(
            exam_id=exam_id,
            participant_id=participant.id,
            status=AttemptStatus.IN_PROGRESS.value,
            start_time=now,
            deadline_at=now + timedelta(minutes=exam.duration_minutes),
            last_activity_at=now,
            total_questions=len(questions),
            created_at=now,
        )
        session.add(attempt)
        session.flush()

        paper = assemble_paper(attempt.id, questions, exam.has_shuffle, exam.has_random)
        attempt.question_order = paper.question_order
        attempt.option_orders = paper.option_orders
        session.add(attempt)
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.info("Concurrent registration for exam %s from %s", exam_id, mask_phone(phone))
        raise AlreadyRegistered()

    logger.info(
        "Registered participant %s for exam %s (attempt %s)", participant.id, exam_id, attempt.id
    )
    return Registration(participant_id=participant.id, attempt_id=attempt.id)
