"""Phone verification through one-time codes sent by SMS."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, update
from sqlmodel import Session, select

from examhub.auth_utils import generate_otp, hash_code, verify_code_hash
from examhub.config import settings
from examhub.errors import (
    CodeAlreadyUsed,
    CodeExpired,
    InvalidCode,
    RateLimited,
    SmsDeliveryFailed,
    TooManyAttempts,
)
from examhub.models import OtpChallenge
from examhub.utils import mask_phone, seconds_between, utcnow
from examhub.validators import normalize_code, normalize_phone

logger = logging.getLogger(__name__)


@dataclass
class OtpDispatch:
    phone: str
    resend_after_seconds: int
    expires_in_seconds: int


def _latest_challenge(session: Session, phone: str) -> Optional[OtpChallenge]:
    stmt = (
        select(OtpChallenge)
        .where(OtpChallenge.phone == phone)
        .order_by(OtpChallenge.issued_at.desc(), OtpChallenge.id.desc())
    )
    return session.exec(stmt).first()


def _check_send_limits(session: Session, phone: str, now: datetime) -> None:
    delivered = (
        select(OtpChallenge)
        .where(OtpChallenge.phone == phone)
        .where(OtpChallenge.delivery_failed == False)  # noqa: E712
    )

    latest = session.exec(delivered.order_by(OtpChallenge.issued_at.desc(), OtpChallenge.id.desc())).first()
    if latest and latest.resend_available_at > now:
        wait = seconds_between(now, latest.resend_available_at) or 1
        raise RateLimited(f"Please wait {wait} seconds before requesting another code", retry_after=wait)

    window_start = now - timedelta(seconds=settings.OTP_SEND_WINDOW_SECONDS)
    recent = session.exec(
        delivered.where(OtpChallenge.issued_at > window_start).order_by(OtpChallenge.issued_at)
    ).all()
    if len(recent) >= settings.OTP_MAX_SENDS_PER_WINDOW:
        oldest = recent[0].issued_at
        wait = seconds_between(now, oldest + timedelta(seconds=settings.OTP_SEND_WINDOW_SECONDS)) or 1
        raise RateLimited("Too many codes requested. Please try again later.", retry_after=wait)


def send_code(session: Session, phone: str, sender, now: Optional[datetime] = None) -> OtpDispatch:
    """Issue a new code for ``phone`` and dispatch it.

    Any earlier unconsumed challenge for the phone is superseded. When the
    SMS gateway fails the new challenge is marked failed and no cooldown
    starts, so the user can retry immediately.
    """
    now = now or utcnow()
    phone = normalize_phone(phone)

    # the supersede write comes first so concurrent sends for one phone
    # check the limits one at a time
    session.exec(
        update(OtpChallenge)
        .where(OtpChallenge.phone == phone)
        .where(OtpChallenge.consumed_at.is_(None))
        .where(OtpChallenge.superseded == False)  # noqa: E712
        .values(superseded=True)
    )
    try:
        _check_send_limits(session, phone, now)
    except RateLimited:
        session.rollback()
        raise

    code = generate_otp(settings.OTP_LENGTH)
    challenge = OtpChallenge(
        phone=phone,
        code_hash=hash_code(code),
        issued_at=now,
        resend_available_at=now + timedelta(seconds=settings.OTP_RESEND_COOLDOWN_SECONDS),
        expires_at=now + timedelta(seconds=settings.OTP_TTL_SECONDS),
        attempts_remaining=settings.OTP_MAX_VERIFY_ATTEMPTS,
    )
    session.add(challenge)
    session.commit()
    session.refresh(challenge)

    delivered = sender.send(phone, settings.OTP_MESSAGE_TEMPLATE.format(code=code))
    if not delivered:
        challenge.delivery_failed = True
        challenge.superseded = True
        session.add(challenge)
        session.commit()
        logger.warning("OTP delivery failed for %s", mask_phone(phone))
        raise SmsDeliveryFailed()

    logger.info("OTP sent to %s", mask_phone(phone))
    return OtpDispatch(
        phone=phone,
        resend_after_seconds=settings.OTP_RESEND_COOLDOWN_SECONDS,
        expires_in_seconds=settings.OTP_TTL_SECONDS,
    )


def verify_code(session: Session, phone: str, code: str, now: Optional[datetime] = None) -> OtpChallenge:
    """Consume the live challenge for ``phone`` if ``code`` matches it."""
    now = now or utcnow()
    phone = normalize_phone(phone)
    code = normalize_code(code, settings.OTP_LENGTH)

    live = session.exec(
        select(OtpChallenge)
        .where(OtpChallenge.phone == phone)
        .where(OtpChallenge.superseded == False)  # noqa: E712
        .where(OtpChallenge.delivery_failed == False)  # noqa: E712
        .where(OtpChallenge.consumed_at.is_(None))
        .order_by(OtpChallenge.issued_at.desc(), OtpChallenge.id.desc())
    ).first()

    if live is None:
        latest = _latest_challenge(session, phone)
        if latest is not None and latest.consumed_at is not None:
            raise CodeAlreadyUsed()
        raise InvalidCode()

    if live.attempts_remaining <= 0:
        raise TooManyAttempts()
    if now > live.expires_at:
        raise CodeExpired()

    if not verify_code_hash(code, live.code_hash):
        session.exec(
            update(OtpChallenge)
            .where(OtpChallenge.id == live.id)
            .where(OtpChallenge.attempts_remaining > 0)
            .values(attempts_remaining=OtpChallenge.attempts_remaining - 1)
        )
        session.commit()
        logger.info("Wrong OTP entered for %s", mask_phone(phone))
        raise InvalidCode()

    result = session.exec(
        update(OtpChallenge)
        .where(OtpChallenge.id == live.id)
        .where(OtpChallenge.consumed_at.is_(None))
        .values(consumed_at=now)
    )
    session.commit()
    if result.rowcount != 1:
        raise CodeAlreadyUsed()

    session.refresh(live)
    logger.info("Phone %s verified", mask_phone(phone))
    return live


def has_recent_verification(session: Session, phone: str, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    phone = normalize_phone(phone)
    cutoff = now - timedelta(seconds=settings.OTP_VERIFICATION_TTL_SECONDS)
    stmt = (
        select(OtpChallenge.id)
        .where(OtpChallenge.phone == phone)
        .where(OtpChallenge.consumed_at.is_not(None))
        .where(OtpChallenge.consumed_at >= cutoff)
    )
    return session.exec(stmt).first() is not None


def prune_expired_challenges(session: Session, now: Optional[datetime] = None) -> int:
    """Delete challenges that can no longer affect sending, verifying or registering."""
    now = now or utcnow()
    keep_seconds = max(
        settings.OTP_TTL_SECONDS,
        settings.OTP_SEND_WINDOW_SECONDS,
        settings.OTP_VERIFICATION_TTL_SECONDS,
    )
    cutoff = now - timedelta(seconds=keep_seconds)
    result = session.exec(delete(OtpChallenge).where(OtpChallenge.issued_at < cutoff))
    session.commit()
    if result.rowcount:
        logger.info("Pruned %d expired OTP challenges", result.rowcount)
    return result.rowcount or 0
