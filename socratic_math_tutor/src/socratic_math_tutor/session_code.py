"""
Session code utilities.

Session codes are 6 characters drawn from A-Z and 0-9 (e.g. AB12CD).
"""

import re
import secrets
import string

SESSION_CODE_LENGTH = 6
SESSION_CODE_ALPHABET = string.ascii_uppercase + string.digits
_SESSION_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")


def generate_session_code() -> str:
    """Generate a random 6-character alphanumeric session code."""
    return "".join(secrets.choice(SESSION_CODE_ALPHABET) for _ in range(SESSION_CODE_LENGTH))


def validate_session_code(code) -> bool:
    """True only for strings of exactly 6 uppercase alphanumerics."""
    if not code or not isinstance(code, str):
        return False
    return bool(_SESSION_CODE_RE.match(code))
