"""Format check for user-entered one-time codes."""

from __future__ import annotations

import re

OTP_LENGTH = 6

# ASCII digits only: \d would also accept other Unicode decimal digits.
_OTP_RE = re.compile(r"[0-9]{%d}" % OTP_LENGTH)


def is_valid_format(code: str) -> bool:
    """True iff *code* is exactly six ASCII decimal digits."""
    if not isinstance(code, str):
        return False
    return _OTP_RE.fullmatch(code) is not None


def mask_code(code: str) -> str:
    """Log-safe rendering of a code: first two characters, rest hidden."""
    return f"{code[:2]}****"
