"""
TOTP - Time-based one-time codes (RFC 6238 over RFC 4226 HOTP).

Accepts a raw base32 secret or an otpauth:// URI.
"""

import base64
import binascii
import hashlib
import hmac
import struct
import time
from urllib.parse import parse_qs, urlparse

from tokenhub.exceptions import InvalidTotpSecretError
from tokenhub.models.domain import TotpCode

DEFAULT_STEP = 30
DEFAULT_DIGITS = 6


def decode_base32_secret(secret: str) -> bytes:
    """Decode a base32 secret; whitespace, case and padding are ignored."""
    cleaned = "".join(secret.split()).upper().rstrip("=")
    if not cleaned:
        raise InvalidTotpSecretError("TOTP secret is empty")
    cleaned += "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(cleaned)
    except (binascii.Error, ValueError) as e:
        raise InvalidTotpSecretError("Invalid base32 secret") from e


def hotp(key: bytes, counter: int, digits: int = DEFAULT_DIGITS) -> str:
    """HMAC-SHA1 one-time password for a counter value."""
    digest = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    binary = struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF
    return str(binary % (10**digits)).zfill(digits)


def _parse_uri(uri: str) -> tuple[str, int, int]:
    params = parse_qs(urlparse(uri).query)
    secret = params.get("secret", [""])[0]
    if not secret:
        raise InvalidTotpSecretError("otpauth URI has no secret parameter")
    try:
        step = int(params.get("period", [DEFAULT_STEP])[0])
        digits = int(params.get("digits", [DEFAULT_DIGITS])[0])
    except ValueError as e:
        raise InvalidTotpSecretError("otpauth URI has a non-numeric period or digits") from e
    if step <= 0 or not 1 <= digits <= 10:
        raise InvalidTotpSecretError("otpauth URI has an invalid period or digits")
    return secret, step, digits


def generate_totp(
    secret_or_uri: str,
    at: float | None = None,
    step: int = DEFAULT_STEP,
    digits: int = DEFAULT_DIGITS,
) -> TotpCode:
    """
    Derive the current code.

    URI parameters (period, digits) override the step and digits arguments.
    """
    secret = secret_or_uri.strip()
    if secret.lower().startswith("otpauth://"):
        secret, step, digits = _parse_uri(secret)

    key = decode_base32_secret(secret)
    now = time.time() if at is None else at
    counter = int(now // step)
    return TotpCode(
        code=hotp(key, counter, digits),
        remaining_seconds=step - int(now) % step,
    )
