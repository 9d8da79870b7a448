"""Catalog helpers, input validators and the SMS gateway client."""

from datetime import timedelta

import httpx
import pytest

from examhub import sms
from examhub.errors import ValidationFailed
from examhub.models import Exam, ExamStatus
from examhub.services import catalog_service
from examhub.utils import mask_phone, utcnow
from examhub.validators import normalize_phone, validate_email


class TestExamStatus:
    def test_window(self):
        now = utcnow()
        exam = Exam(title="T", duration_minutes=10, start_date=now - timedelta(hours=1), end_date=now + timedelta(hours=1))
        assert catalog_service.exam_status(exam, now) == ExamStatus.ONGOING
        assert catalog_service.exam_status(exam, now - timedelta(hours=2)) == ExamStatus.UPCOMING
        assert catalog_service.exam_status(exam, now + timedelta(hours=2)) == ExamStatus.COMPLETED

    def test_open_bounds(self):
        assert catalog_service.exam_status(Exam(title="T", duration_minutes=10)) == ExamStatus.ONGOING


class TestCatalog:
    def test_questions_keep_position_order(self, session):
        exam = catalog_service.create_exam(session, title="Order", duration_minutes=5)
        second = catalog_service.add_question(session, exam.id, "Second?", ["x", "y"], "A", position=2)
        first = catalog_service.add_question(session, exam.id, "First?", ["x", "y"], "B", position=1)

        assert [q.id for q in catalog_service.get_questions(session, exam.id)] == [first.id, second.id]
        assert catalog_service.get_answer_key(session, exam.id) == {first.id: "B", second.id: "A"}

    def test_answer_letter_must_exist(self, session):
        exam = catalog_service.create_exam(session, title="Letters", duration_minutes=5)
        with pytest.raises(ValidationFailed):
            catalog_service.add_question(session, exam.id, "Two options?", ["x", "y"], "C")

    def test_question_markup_is_limited(self, session):
        exam = catalog_service.create_exam(session, title="Markup", duration_minutes=5)
        question = catalog_service.add_question(
            session, exam.id, "<b>Bold</b> <script>alert(1)</script>H<sub>2</sub>O?", ["a", "b"], "A"
        )
        assert "<script>" not in question.question_text
        assert "<b>Bold</b>" in question.question_text
        assert "<sub>2</sub>" in question.question_text

    def test_invalid_exam_settings(self, session):
        with pytest.raises(ValidationFailed):
            catalog_service.create_exam(session, title="", duration_minutes=5)
        with pytest.raises(ValidationFailed):
            catalog_service.create_exam(session, title="Zero", duration_minutes=0)

    def test_class_options_include_used_classes(self, session):
        catalog_service.create_student(session, student_code="S-9", name="Tania", class_name="Class 9")
        options = catalog_service.get_class_options(session)
        assert options[0] == "SSC"
        assert "Class 9" in options


class TestValidators:
    @pytest.mark.parametrize(
        "raw", ["01711111111", "+8801711111111", "8801711111111", "017-1111 1111", "০১৭১১১১১১১১"]
    )
    def test_phone_normalization(self, raw):
        assert normalize_phone(raw) == "01711111111"

    @pytest.mark.parametrize("raw", ["", "1711111111", "0171111111", "021111111111", "01711abc111"])
    def test_bad_phones(self, raw):
        with pytest.raises(ValidationFailed):
            normalize_phone(raw)

    def test_email(self):
        assert validate_email("  Someone@Example.COM ") == "someone@example.com"
        assert validate_email("") is None
        with pytest.raises(ValidationFailed):
            validate_email("someone@")

    def test_mask_phone(self):
        assert mask_phone("01711112345") == "*******2345"
        assert mask_phone("") == ""


class TestSmsGateway:
    def test_gateway_number_format(self):
        assert sms.format_gateway_number("01711111111") == "8801711111111"
        assert sms.format_gateway_number("+8801711111111") == "8801711111111"

    def test_successful_send(self, monkeypatch):
        calls = []

        def fake_get(url, params=None, timeout=None):
            calls.append((url, params, timeout))
            return httpx.Response(200, text="202")

        monkeypatch.setattr(sms.httpx, "get", fake_get)
        sender = sms.BulkSmsSender("http://sms.example/api", "key-1", sender_id="EXAM", timeout=3)

        assert sender.send("01711111111", "Your code is 123456") is True
        url, params, timeout = calls[0]
        assert params["number"] == "8801711111111"
        assert params["senderid"] == "EXAM"
        assert timeout == 3

    def test_gateway_error_code(self, monkeypatch):
        monkeypatch.setattr(sms.httpx, "get", lambda *a, **k: httpx.Response(200, text="1007"))
        sender = sms.BulkSmsSender("http://sms.example/api", "key-1")
        assert sender.send("01711111111", "hi") is False

    def test_network_failure(self, monkeypatch):
        def boom(*args, **kwargs):
            raise httpx.ConnectTimeout("timed out")

        monkeypatch.setattr(sms.httpx, "get", boom)
        sender = sms.BulkSmsSender("http://sms.example/api", "key-1")
        assert sender.send("01711111111", "hi") is False

    def test_development_sender_without_key(self, monkeypatch):
        monkeypatch.setattr(sms.settings, "SMS_API_KEY", "")
        assert isinstance(sms.build_sms_sender(), sms.LoggingSmsSender)
