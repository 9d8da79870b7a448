"""SMS dispatch for verification codes."""

import logging
import re

import httpx

from examhub.config import settings
from examhub.utils import mask_phone

logger = logging.getLogger(__name__)

# Response codes returned by the gateway; anything but 202 is a failure
SMS_ERROR_CODES = {
    "202": "SMS Submitted Successfully",
    "1001": "Invalid Number",
    "1002": "Sender ID not correct/Sender ID is disabled",
    "1003": "Please Required all fields/Contact Your System Administrator",
    "1005": "Internal Error",
    "1006": "Balance Validity Not Available",
    "1007": "Balance Insufficient",
    "1011": "User ID not found",
    "1031": "Your Account Not Verified, Please Contact Administrator",
    "1032": "IP Not whitelisted",
}


def format_gateway_number(phone: str) -> str:
    """Convert a local number (01XXXXXXXXX) to the 880 international form."""
    digits = re.sub(r"[^\d]", "", phone)
    if digits.startswith("0"):
        digits = digits[1:]
    if not digits.startswith("880"):
        digits = f"880{digits}"
    return digits


class BulkSmsSender:
    """Sends text messages through a BulkSMS style HTTP GET API."""

    def __init__(self, api_url: str, api_key: str, sender_id: str = "", timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout

    def send(self, phone: str, message: str) -> bool:
        params = {
            "api_key": self.api_key,
            "type": "text",
            "number": format_gateway_number(phone),
            "message": message,
        }
        if self.sender_id.strip():
            params["senderid"] = self.sender_id

        try:
            response = httpx.get(self.api_url, params=params, timeout=self.timeout)
        except httpx.HTTPError as exc:
            logger.warning("SMS gateway request failed for %s: %s", mask_phone(phone), exc)
            return False

        code = response.text.strip()
        if response.status_code == 200 and code == "202":
            return True

        logger.warning(
            "SMS gateway rejected message for %s: %s (%s)",
            mask_phone(phone),
            code,
            SMS_ERROR_CODES.get(code, "unknown response"),
        )
        return False


class LoggingSmsSender:
    """Development sender: writes the message to the log instead of sending it."""

    def send(self, phone: str, message: str) -> bool:
        logger.info("SMS to %s: %s", phone, message)
        return True


def build_sms_sender():
    if not settings.SMS_API_KEY:
        return LoggingSmsSender()
    return BulkSmsSender(
        settings.SMS_API_URL,
        settings.SMS_API_KEY,
        sender_id=settings.SMS_SENDER_ID,
        timeout=settings.SMS_TIMEOUT_SECONDS,
    )
