"""SQLModel models for the public exam participation service."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from examhub.utils import utcnow


class AttemptStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"
    ABANDONED = "abandoned"


FINALIZED_STATUSES = (AttemptStatus.SUBMITTED.value, AttemptStatus.AUTO_SUBMITTED.value)


class SubmissionType(str, Enum):
    MANUAL = "Manual"
    AUTO_TIME_UP = "Auto-TimeUp"
    AUTO_TAB_SWITCH = "Auto-TabSwitch"


class ExamStatus(str, Enum):
    UPCOMING = "Upcoming"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"


# ===================== EXAM CONFIGURATION (read-only for attempts) =====================


class Exam(SQLModel, table=True):
    """Exam configuration. Status is derived from the date window, never stored."""

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    duration_minutes: int
    total_marks: Optional[float] = None  # defaults to questions * per_question_mark
    per_question_mark: float = Field(default=1.0)
    has_negative_mark: bool = Field(default=False)
    negative_mark: float = Field(default=0.0)
    score_floor: Optional[float] = Field(default=0.0)  # None disables the floor
    has_shuffle: bool = Field(default=False)  # question order per attempt
    has_random: bool = Field(default=False)  # option order per attempt
    is_public: bool = Field(default=False)
    requires_phone_verification: bool = Field(default=True)
    subjects: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class MCQQuestion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    position: int = Field(default=0)
    question_text: str
    options: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    answer: str  # canonical option letter (A, B, C, ...)
    explanation: Optional[str] = None
    subject: Optional[str] = None
    chapter: Optional[str] = None
    is_math: bool = Field(default=False)


class Student(SQLModel, table=True):
    """Enrolled student record used for private exams and leaderboards."""

    __table_args__ = (UniqueConstraint("student_code", name="uq_student_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    student_code: str
    name: str
    class_name: Optional[str] = Field(default=None, index=True)
    batch: Optional[str] = None
    institution: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ===================== PUBLIC PARTICIPATION =====================


class Participant(SQLModel, table=True):
    """Anonymous exam-taker identified by a verified phone number."""

    __table_args__ = (
        UniqueConstraint("exam_id", "phone", name="uq_participant_exam_phone"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    name: str
    class_name: str
    phone: str  # normalized 01XXXXXXXXX
    college: str
    email: Optional[str] = None
    verified: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class OtpChallenge(SQLModel, table=True):
    """One-time phone verification code. Only the hash of the code is stored."""

    id: Optional[int] = Field(default=None, primary_key=True)
    phone: str = Field(index=True)
    code_hash: str
    issued_at: datetime = Field(default_factory=utcnow)
    resend_available_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime] = None
    superseded: bool = Field(default=False)
    delivery_failed: bool = Field(default=False)
    attempts_remaining: int = Field(default=5)


# ===================== ATTEMPTS =====================


class ExamAttempt(SQLModel, table=True):
    """One participant's (or student's) timed run through one exam."""

    __table_args__ = (
        Index(
            "uq_attempt_exam_participant",
            "exam_id",
            "participant_id",
            unique=True,
            sqlite_where=text("status != 'abandoned'"),
            postgresql_where=text("status != 'abandoned'"),
        ),
        Index(
            "uq_attempt_exam_student",
            "exam_id",
            "student_id",
            unique=True,
            sqlite_where=text("status != 'abandoned'"),
            postgresql_where=text("status != 'abandoned'"),
        ),
        Index("ix_attempt_status_deadline", "status", "deadline_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    participant_id: Optional[int] = Field(default=None, foreign_key="participant.id")
    student_id: Optional[int] = Field(default=None, foreign_key="student.id", index=True)
    status: str = Field(default=AttemptStatus.NOT_STARTED.value)
    submission_type: Optional[str] = None  # set only at finalization

    # per-attempt view of the shared question bank
    question_order: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    option_orders: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    start_time: Optional[datetime] = None
    deadline_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    last_activity_at: Optional[datetime] = None
    answer_seq: int = Field(default=0)
    tab_switch_count: int = Field(default=0)
    current_streak: int = Field(default=0)
    best_streak: int = Field(default=0)

    # written once at finalization
    total_questions: int = Field(default=0)
    score: Optional[float] = None
    correct_answers: Optional[int] = None
    wrong_answers: Optional[int] = None
    skipped_questions: Optional[int] = None
    percentage: Optional[float] = None

    created_at: datetime = Field(default_factory=utcnow)


class AttemptAnswer(SQLModel, table=True):
    """Latest selection for one question within an attempt."""

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id", index=True)
    question_id: int = Field(foreign_key="mcqquestion.id")
    selected_option: Optional[str] = None  # letter as displayed to this attempt
    is_correct: Optional[bool] = None
    time_spent_seconds: int = Field(default=0)
    sequence: int = Field(default=0)
    answered_at: datetime = Field(default_factory=utcnow)


class AttemptActivityLog(SQLModel, table=True):
    """Suspicious activity reported by the exam client."""

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id", index=True)
    exam_id: int = Field(foreign_key="exam.id")
    activity_type: str  # tab_switch, window_blur, copy_attempt, paste_attempt, ...
    severity: str = Field(default="low")  # low, medium, high
    activity_metadata: Optional[str] = None  # JSON string
    timestamp: datetime = Field(default_factory=utcnow)


# ===================== RANKINGS =====================


class LeaderboardSnapshot(SQLModel, table=True):
    """Periodic copy of leaderboard ranks, used only for rank-change display."""

    id: Optional[int] = Field(default=None, primary_key=True)
    variant: str = Field(index=True)
    scope_key: str = Field(default="all")
    student_id: int = Field(foreign_key="student.id")
    rank: int
    taken_at: datetime = Field(default_factory=utcnow)
