"""
Time-based one-time passwords (RFC 6238, HMAC-SHA1, 30s step, 6 digits).

Thin wrapper over pyotp. Shared secrets are base32 strings as used by
authenticator apps; spaces and lowercase are tolerated.
"""

from __future__ import annotations

import re
import time

import pyotp

STEP_SECONDS = 30
DIGITS = 6

_BASE32 = re.compile(r"^[A-Z2-7]+=*$")


def _totp(secret: str) -> pyotp.TOTP:
    cleaned = secret.replace(" ", "").upper()
    if not cleaned or not _BASE32.match(cleaned):
        raise ValueError("TOTP secret is empty or not base32")
    return pyotp.TOTP(cleaned, digits=DIGITS, interval=STEP_SECONDS)


def generate_totp(secret: str, at: float | None = None) -> str:
    """Return the 6-digit code for the step containing ``at`` (default: now)."""
    return _totp(secret).at(int(time.time() if at is None else at))


def verify_totp(secret: str, code: str, window: int = 1, at: float | None = None) -> bool:
    """Accept ``code`` if it matches any step within ±``window`` of ``at``."""
    code = code.strip().replace(" ", "")
    if len(code) != DIGITS or not code.isdigit():
        return False
    return _totp(secret).verify(
        code, for_time=int(time.time() if at is None else at), valid_window=window
    )


def generate_totp_secret() -> str:
    """Random base32 shared secret (160 bits)."""
    return pyotp.random_base32()


def provisioning_uri(secret: str, name: str = "vault", issuer: str = "ganesh") -> str:
    """``otpauth://`` URI for enrolling ``secret`` in an authenticator app."""
    return _totp(secret).provisioning_uri(name=name, issuer_name=issuer)
