"""OTP send/verify rules: cooldown, rate limit, expiry, single use."""

from datetime import timedelta

import pytest
from sqlmodel import select

from conftest import FakeSmsSender
from examhub.config import settings
from examhub.errors import (
    CodeAlreadyUsed,
    CodeExpired,
    InvalidCode,
    RateLimited,
    SmsDeliveryFailed,
    TooManyAttempts,
    ValidationFailed,
)
from examhub.models import OtpChallenge
from examhub.services import otp_service
from examhub.utils import utcnow

PHONE = "01711111111"


def wrong_code(code: str) -> str:
    return "1" * len(code) if code != "1" * len(code) else "2" * len(code)


class TestSendCode:
    def test_send_stores_only_a_hash(self, session, sms_sender):
        dispatch = otp_service.send_code(session, "+880 1711-111111", sms_sender)

        assert dispatch.phone == PHONE
        assert dispatch.resend_after_seconds == 60
        code = sms_sender.last_code
        assert len(code) == 6 and code.isdigit()
        challenge = session.exec(select(OtpChallenge)).one()
        assert challenge.code_hash != code
        assert challenge.code_hash.startswith("$pbkdf2-sha256$")

    def test_invalid_phone_rejected(self, session, sms_sender):
        with pytest.raises(ValidationFailed):
            otp_service.send_code(session, "12345", sms_sender)
        assert sms_sender.messages == []

    def test_resend_cooldown(self, session, sms_sender):
        now = utcnow()
        otp_service.send_code(session, PHONE, sms_sender, now=now)

        with pytest.raises(RateLimited) as exc_info:
            otp_service.send_code(session, PHONE, sms_sender, now=now + timedelta(seconds=20))
        assert 0 < exc_info.value.retry_after <= 40

        # After the cooldown a new code may be sent
        otp_service.send_code(session, PHONE, sms_sender, now=now + timedelta(seconds=61))
        assert len(sms_sender.messages) == 2

    def test_send_window_limit(self, session, sms_sender):
        start = utcnow()
        for i in range(settings.OTP_MAX_SENDS_PER_WINDOW):
            otp_service.send_code(session, PHONE, sms_sender, now=start + timedelta(seconds=61 * i))

        with pytest.raises(RateLimited):
            otp_service.send_code(
                session, PHONE, sms_sender, now=start + timedelta(seconds=61 * settings.OTP_MAX_SENDS_PER_WINDOW)
            )

    def test_new_code_supersedes_previous(self, session, sms_sender):
        now = utcnow()
        otp_service.send_code(session, PHONE, sms_sender, now=now)
        first_code = sms_sender.last_code
        otp_service.send_code(session, PHONE, sms_sender, now=now + timedelta(seconds=61))
        second_code = sms_sender.last_code

        if first_code != second_code:
            with pytest.raises(InvalidCode):
                otp_service.verify_code(session, PHONE, first_code, now=now + timedelta(seconds=62))
        otp_service.verify_code(session, PHONE, second_code, now=now + timedelta(seconds=63))

    def test_delivery_failure_does_not_start_cooldown(self, session):
        failing = FakeSmsSender(deliver=False)
        with pytest.raises(SmsDeliveryFailed):
            otp_service.send_code(session, PHONE, failing)

        challenge = session.exec(select(OtpChallenge)).one()
        assert challenge.delivery_failed is True
        assert challenge.superseded is True

        # immediate retry is allowed
        working = FakeSmsSender()
        otp_service.send_code(session, PHONE, working)
        assert len(working.messages) == 1


class TestVerifyCode:
    def test_code_is_single_use(self, session, sms_sender):
        now = utcnow()
        otp_service.send_code(session, PHONE, sms_sender, now=now)
        code = sms_sender.last_code

        otp_service.verify_code(session, PHONE, code, now=now + timedelta(seconds=5))

        with pytest.raises(CodeAlreadyUsed):
            otp_service.verify_code(session, PHONE, code, now=now + timedelta(seconds=6))

    def test_expired_code(self, session, sms_sender):
        now = utcnow()
        otp_service.send_code(session, PHONE, sms_sender, now=now)

        with pytest.raises(CodeExpired):
            otp_service.verify_code(
                session, PHONE, sms_sender.last_code, now=now + timedelta(seconds=settings.OTP_TTL_SECONDS + 1)
            )

    def test_wrong_code_exhausts_attempts(self, session, sms_sender):
        now = utcnow()
        otp_service.send_code(session, PHONE, sms_sender, now=now)
        code = sms_sender.last_code

        for _ in range(settings.OTP_MAX_VERIFY_ATTEMPTS):
            with pytest.raises(InvalidCode):
                otp_service.verify_code(session, PHONE, wrong_code(code), now=now)

        # even the right code is refused now
        with pytest.raises(TooManyAttempts):
            otp_service.verify_code(session, PHONE, code, now=now)

    def test_bangla_digits_accepted(self, session, sms_sender):
        otp_service.send_code(session, PHONE, sms_sender)
        bangla = sms_sender.last_code.translate(str.maketrans("0123456789", "০১২৩৪৫৬৭৮৯"))
        otp_service.verify_code(session, PHONE, bangla)

    def test_bad_format(self, session, sms_sender):
        otp_service.send_code(session, PHONE, sms_sender)
        with pytest.raises(ValidationFailed):
            otp_service.verify_code(session, PHONE, "12ab")

    def test_no_challenge(self, session):
        with pytest.raises(InvalidCode):
            otp_service.verify_code(session, PHONE, "123456")


class TestVerificationWindow:
    def test_recent_verification(self, session, sms_sender):
        now = utcnow()
        assert not otp_service.has_recent_verification(session, PHONE, now=now)

        otp_service.send_code(session, PHONE, sms_sender, now=now)
        otp_service.verify_code(session, PHONE, sms_sender.last_code, now=now)

        assert otp_service.has_recent_verification(session, PHONE, now=now + timedelta(minutes=5))
        later = now + timedelta(seconds=settings.OTP_VERIFICATION_TTL_SECONDS + 1)
        assert not otp_service.has_recent_verification(session, PHONE, now=later)

    def test_prune_removes_old_challenges(self, session, sms_sender):
        old = utcnow() - timedelta(days=2)
        otp_service.send_code(session, PHONE, sms_sender, now=old)
        otp_service.send_code(session, "01822222222", sms_sender)

        assert otp_service.prune_expired_challenges(session) == 1
        assert len(session.exec(select(OtpChallenge)).all()) == 1
