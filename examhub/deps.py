"""Shared FastAPI dependencies for database access and collaborators."""

from examhub.sms import build_sms_sender


def get_sms_sender():
    """Return the SMS dispatcher used for verification codes."""
    return build_sms_sender()
