"""Races against a file-backed database: registrations, code requests and double submits."""

import threading

import pytest
from sqlmodel import Session, SQLModel, select

from conftest import ANSWER_KEY, FakeSmsSender, make_exam, verify_phone
from examhub.database import build_engine
from examhub.errors import AlreadyRegistered, RateLimited
from examhub.models import ExamAttempt, OtpChallenge, Participant
from examhub.services import attempt_service, otp_service
from examhub.services.attempt_service import AttemptOwner
from examhub.services.registry_service import register_participant

PHONE = "01799999999"
WORKERS = 6


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


def run_concurrently(target, count=WORKERS):
    barrier = threading.Barrier(count)
    outcomes = [None] * count

    def worker(index):
        barrier.wait()
        try:
            outcomes[index] = ("ok", target())
        except Exception as exc:  # collected for assertions below
            outcomes[index] = ("error", exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


class TestConcurrentRegistration:
    def test_exactly_one_registration_wins(self, file_engine):
        with Session(file_engine) as session:
            exam = make_exam(session)
            exam_id = exam.id
            verify_phone(session, FakeSmsSender(), PHONE)

        def register():
            with Session(file_engine) as session:
                return register_participant(
                    session, exam_id, name="Race Runner", class_name="HSC", phone=PHONE, college="Dhaka College"
                )

        outcomes = run_concurrently(register)

        successes = [value for kind, value in outcomes if kind == "ok"]
        failures = [value for kind, value in outcomes if kind == "error"]
        assert len(successes) == 1
        assert len(failures) == WORKERS - 1
        assert all(isinstance(exc, AlreadyRegistered) for exc in failures)

        with Session(file_engine) as session:
            assert len(session.exec(select(Participant)).all()) == 1
            assert len(session.exec(select(ExamAttempt)).all()) == 1

    def test_same_inline_code_from_parallel_requests(self, file_engine):
        sender = FakeSmsSender()
        with Session(file_engine) as session:
            exam_id = make_exam(session).id
            otp_service.send_code(session, PHONE, sender)
        code = sender.last_code

        def register():
            with Session(file_engine) as session:
                return register_participant(
                    session,
                    exam_id,
                    name="Race Runner",
                    class_name="HSC",
                    phone=PHONE,
                    college="Dhaka College",
                    otp_code=code,
                )

        outcomes = run_concurrently(register)

        failures = [value for kind, value in outcomes if kind == "error"]
        assert len([kind for kind, _ in outcomes if kind == "ok"]) == 1
        assert [type(exc) for exc in failures] == [AlreadyRegistered] * (WORKERS - 1)

        with Session(file_engine) as session:
            assert len(session.exec(select(Participant)).all()) == 1


class TestConcurrentCodeRequests:
    def test_one_sms_per_cooldown(self, file_engine):
        sender = FakeSmsSender()

        def send():
            with Session(file_engine) as session:
                return otp_service.send_code(session, PHONE, sender)

        outcomes = run_concurrently(send)

        failures = [value for kind, value in outcomes if kind == "error"]
        assert len([kind for kind, _ in outcomes if kind == "ok"]) == 1
        assert [type(exc) for exc in failures] == [RateLimited] * (WORKERS - 1)
        assert len(sender.messages) == 1

        with Session(file_engine) as session:
            assert len(session.exec(select(OtpChallenge)).all()) == 1


class TestConcurrentSubmit:
    def test_racing_submits_finalize_once(self, file_engine):
        with Session(file_engine) as session:
            exam = make_exam(session, requires_phone_verification=False)
            registration = register_participant(
                session, exam.id, name="Race Runner", class_name="HSC", phone=PHONE, college="Dhaka College"
            )
            owner = AttemptOwner(participant_id=registration.participant_id)
            attempt = session.get(ExamAttempt, registration.attempt_id)
            for qid, letter in zip(attempt.question_order[:2], ANSWER_KEY):
                attempt_service.record_answer(session, attempt.id, owner, qid, letter)
            attempt_id = attempt.id

        reasons = ["Manual", "TimeUp"] * (WORKERS // 2)
        lock = threading.Lock()

        def submit():
            with lock:
                reason = reasons.pop()
            with Session(file_engine) as session:
                return attempt_service.submit_attempt(session, attempt_id, owner, reason)

        outcomes = run_concurrently(submit)

        assert all(kind == "ok" for kind, _ in outcomes), outcomes
        results = [value for _, value in outcomes]
        assert {r["score"] for r in results} == {2.0}
        assert len({(r["submission_type"], r["end_time"]) for r in results}) == 1

        with Session(file_engine) as session:
            stored = session.get(ExamAttempt, attempt_id)
            assert stored.status == "submitted"
            assert stored.score == 2.0
