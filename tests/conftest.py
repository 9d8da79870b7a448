from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

import examhub.models  # noqa: F401
from examhub.config import settings
from examhub.database import get_session
from examhub.deps import get_sms_sender
from examhub.main import app
from examhub.services import catalog_service, otp_service
from examhub.utils import utcnow

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool keeps every connection on the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TABLES_IN_DELETE_ORDER = (
    "attemptactivitylog",
    "attemptanswer",
    "leaderboardsnapshot",
    "examattempt",
    "participant",
    "otpchallenge",
    "mcqquestion",
    "student",
    "exam",
)

# correct letters for the five questions of the standard exam fixture
ANSWER_KEY = ["A", "B", "C", "D", "A"]


class FakeSmsSender:
    """Captures outgoing messages instead of calling the gateway."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.messages = []

    def send(self, phone: str, message: str) -> bool:
        self.messages.append((phone, message))
        return self.deliver

    @property
    def last_code(self) -> str:
        return self.messages[-1][1].split()[-1]


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield
    with Session(test_engine) as session:
        for table in TABLES_IN_DELETE_ORDER:
            session.exec(text(f"DELETE FROM {table}"))
        session.commit()


@pytest.fixture(autouse=True)
def fast_code_hashing(monkeypatch):
    """Keep OTP hashing cheap; the scheme is the same, only the rounds differ."""
    monkeypatch.setattr(settings, "OTP_HASH_ROUNDS", 1000)


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def sms_sender():
    return FakeSmsSender()


@pytest.fixture
def client(sms_sender):
    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_sms_sender] = lambda: sms_sender
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_exam(session: Session, question_count: int = 5, **overrides):
    now = utcnow()
    params = dict(
        title="Physics Model Test",
        duration_minutes=10,
        is_public=True,
        start_date=now - timedelta(hours=1),
        end_date=now + timedelta(days=1),
    )
    params.update(overrides)
    exam = catalog_service.create_exam(session, **params)
    for index in range(question_count):
        catalog_service.add_question(
            session,
            exam.id,
            question_text=f"Question {index + 1}?",
            options=[f"Q{index + 1} option {n}" for n in range(1, 5)],
            answer=ANSWER_KEY[index % len(ANSWER_KEY)],
            explanation=f"Explanation {index + 1}",
        )
    return exam


def verify_phone(session: Session, sender: FakeSmsSender, phone: str, now=None):
    otp_service.send_code(session, phone, sender, now=now)
    return otp_service.verify_code(session, phone, sender.last_code, now=now)


@pytest.fixture
def public_exam(session):
    """Ongoing public exam: 10 minutes, 5 questions, no negative marking."""
    return make_exam(session)


@pytest.fixture
def student(session):
    return catalog_service.create_student(
        session, student_code="S-1001", name="Rahim Uddin", class_name="HSC", batch="2026"
    )
