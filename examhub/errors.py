"""Typed failures raised by the services and rendered by the API layer.

Every kind carries a stable ``code`` so the client can map it to its own
message ("you've already taken this exam" vs. "request a new code").
"""

from typing import Optional


class ExamHubError(ValueError):
    code = "error"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


# --- validation ---


class ValidationFailed(ExamHubError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid input."


class QuestionNotInAttempt(ExamHubError):
    code = "question_not_in_attempt"
    status_code = 422
    default_message = "This question is not part of the attempt."


class InvalidOption(ExamHubError):
    code = "invalid_option"
    status_code = 422
    default_message = "Selected option does not exist for this question."


# --- lookups ---


class ExamNotFound(ExamHubError):
    code = "exam_not_found"
    status_code = 404
    default_message = "Exam not found"


class AttemptNotFound(ExamHubError):
    code = "attempt_not_found"
    status_code = 404
    default_message = "Exam attempt not found"


class StudentNotFound(ExamHubError):
    code = "student_not_found"
    status_code = 404
    default_message = "Student not found"


class QuestionNotFound(ExamHubError):
    code = "question_not_found"
    status_code = 404
    default_message = "Question not found"


# --- exam availability ---


class ExamNotPublic(ExamHubError):
    code = "exam_not_public"
    status_code = 403
    default_message = "This exam is not available for public access"


class ExamNotOngoing(ExamHubError):
    code = "exam_not_ongoing"
    status_code = 409
    default_message = "Exam is not available at this time"


class ExamHasNoQuestions(ExamHubError):
    code = "exam_has_no_questions"
    status_code = 409
    default_message = "No questions in this exam"


# --- conflicts ---


class AlreadyRegistered(ExamHubError):
    code = "already_registered"
    status_code = 409
    default_message = "You have already attempted this exam"


class AlreadyAttempted(ExamHubError):
    code = "already_attempted"
    status_code = 409
    default_message = "Exam is already attempted"


# --- authorization ---


class Forbidden(ExamHubError):
    code = "forbidden"
    status_code = 403
    default_message = "Access denied"


class PhoneNotVerified(ExamHubError):
    code = "phone_not_verified"
    status_code = 403
    default_message = "Please verify your phone number before registering"


# --- attempt state ---


class AttemptFinalized(ExamHubError):
    code = "attempt_finalized"
    status_code = 409
    default_message = "Exam is not in progress"


class AttemptNotFinalized(ExamHubError):
    code = "attempt_not_finalized"
    status_code = 409
    default_message = "Exam is not completed yet"


# --- OTP ---


class RateLimited(ExamHubError):
    code = "rate_limited"
    status_code = 429
    default_message = "Please wait before requesting another code"

    def __init__(self, message: Optional[str] = None, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 0)


class CodeExpired(ExamHubError):
    code = "code_expired"
    status_code = 400
    default_message = "Verification code has expired. Please request a new one."


class InvalidCode(ExamHubError):
    code = "invalid_code"
    status_code = 400
    default_message = "Invalid verification code"


class CodeAlreadyUsed(ExamHubError):
    code = "code_already_used"
    status_code = 400
    default_message = "This verification code has already been used"


class TooManyAttempts(ExamHubError):
    code = "too_many_attempts"
    status_code = 429
    default_message = "Too many incorrect attempts. Please request a new code."


class SmsDeliveryFailed(ExamHubError):
    code = "sms_delivery_failed"
    status_code = 502
    default_message = "Could not send the verification code. Please try again."
