"""OTP generation and hashing utilities."""

import secrets

from passlib.context import CryptContext

from examhub.config import settings

# pbkdf2 keeps passlib free of the bcrypt backend's 72-byte quirks
CODE_CONTEXT = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def generate_otp(length: int = 6) -> str:
    """Generate a numeric OTP code with no leading-zero ambiguity."""
    low = 10 ** (length - 1)
    return f"{secrets.randbelow(9 * low) + low:0{length}d}"


def hash_code(plain_code: str) -> str:
    """Hash a verification code for storage."""
    context = CODE_CONTEXT.copy(pbkdf2_sha256__rounds=settings.OTP_HASH_ROUNDS)
    return context.hash(plain_code)


def verify_code_hash(plain_code: str, code_hash: str) -> bool:
    """Verify a plaintext code against its stored hash."""
    return CODE_CONTEXT.verify(plain_code, code_hash)
