"""
Offline license keys: PW-{TIER}-{DURATION}-{BATCH}-{CHECKSUM}

Example: PW-PRO-12M-X7Z9-A1B2

The checksum is a 32-bit rolling hash (h = h*31 + code unit, signed
wrap-around) over "{tier}-{duration}-{batch}-{LICENSE_SALT}", rendered as
the last four uppercase hex digits of |h|. It catches typos and casual
forgery only: the salt ships with every client, so anyone who reads it can
mint keys. Keys must stay byte-for-byte compatible with keys already sold.
"""

from __future__ import annotations

import hmac
import re
import secrets
import string
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel

from common.log import get_logger


LICENSE_PREFIX = "PW"
LICENSE_SALT = "POCKETWALL_SECURE_SALT_2024_v1"

TIERS_MAP = {
    "STR": "starter",
    "PRO": "pro",
    "ELT": "elite",
}
REVERSE_TIERS_MAP = {v: k for k, v in TIERS_MAP.items()}

DURATIONS = ("1M", "3M", "6M", "12M")
DEFAULT_DURATION = "12M"
LIFETIME_DURATION = "99Y"

BATCH_LENGTH = 4
BATCH_ALPHABET = string.ascii_uppercase + string.digits

_DURATION_RE = re.compile(r"^([1-9][0-9]{0,2})([MY])$")

logger = get_logger(__name__)


class LicenseError(ValueError):
    """Base error for license handling."""


class ValidationErrorCode(str, Enum):
    INVALID_FORMAT = "InvalidFormat"
    INVALID_PREFIX = "InvalidPrefix"
    UNKNOWN_TIER = "UnknownTier"
    INVALID_CHECKSUM = "InvalidChecksum"


class LicenseValidation(BaseModel):
    is_valid: bool
    tier: Optional[str] = None
    duration: Optional[str] = None
    error: Optional[ValidationErrorCode] = None


@dataclass(frozen=True)
class LicenseKey:
    tier_code: str
    duration: str
    batch_id: str
    checksum: str
    prefix: str = LICENSE_PREFIX

    @property
    def tier(self) -> Optional[str]:
        return TIERS_MAP.get(self.tier_code)

    def __str__(self) -> str:
        return f"{self.prefix}-{self.tier_code}-{self.duration}-{self.batch_id}-{self.checksum}"


def duration_months(duration: str) -> int:
    """Months covered by a duration code: 12M -> 12, 99Y -> 1188."""
    m = _DURATION_RE.match(duration.strip().upper()) if isinstance(duration, str) else None
    if not m:
        raise LicenseError(f"Invalid duration: {duration!r}")
    n = int(m.group(1))
    return n if m.group(2) == "M" else n * 12


def _to_int32(n: int) -> int:
    n &= 0xFFFFFFFF
    return n - 0x1_0000_0000 if n & 0x8000_0000 else n


def _code_units(s: str) -> Iterator[int]:
    # UTF-16 code units, so non-ASCII input hashes the same as in the desktop client
    raw = s.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(raw), 2):
        yield raw[i] | (raw[i + 1] << 8)


def compute_checksum(tier_code: str, duration: str, batch_id: str, *, salt: str = LICENSE_SALT) -> str:
    data = f"{tier_code}-{duration}-{batch_id}-{salt}"
    h = 0
    for unit in _code_units(data):
        h = _to_int32(h * 31 + unit)
    return format(abs(h), "X").rjust(4, "0")[-4:]


def _random_batch() -> str:
    return "".join(secrets.choice(BATCH_ALPHABET) for _ in range(BATCH_LENGTH))


def generate(tier: str, duration: str = DEFAULT_DURATION) -> str:
    """Mint a key for `tier` ("starter" | "pro" | "elite") valid for `duration`."""
    tier_code = REVERSE_TIERS_MAP.get(tier.strip().lower()) if isinstance(tier, str) else None
    if not tier_code:
        raise LicenseError(f"Invalid tier: {tier!r}")
    duration = duration.strip().upper()
    duration_months(duration)

    batch_id = _random_batch()
    checksum = compute_checksum(tier_code, duration, batch_id)
    return str(LicenseKey(tier_code=tier_code, duration=duration, batch_id=batch_id, checksum=checksum))


def validate(key: object) -> LicenseValidation:
    """Check a key's shape and checksum. Never raises."""
    if not key or not isinstance(key, str):
        return LicenseValidation(is_valid=False, error=ValidationErrorCode.INVALID_FORMAT)

    parts = key.strip().upper().split("-")
    if len(parts) != 5:
        return LicenseValidation(is_valid=False, error=ValidationErrorCode.INVALID_FORMAT)

    prefix, tier_code, duration, batch_id, checksum = parts
    if prefix != LICENSE_PREFIX:
        return LicenseValidation(is_valid=False, error=ValidationErrorCode.INVALID_PREFIX)
    if tier_code not in TIERS_MAP:
        return LicenseValidation(is_valid=False, error=ValidationErrorCode.UNKNOWN_TIER)

    expected = compute_checksum(tier_code, duration, batch_id)
    if not hmac.compare_digest(checksum.encode("utf-8"), expected.encode("ascii")):
        return LicenseValidation(is_valid=False, error=ValidationErrorCode.INVALID_CHECKSUM)

    return LicenseValidation(is_valid=True, tier=TIERS_MAP[tier_code], duration=duration)


def parse(key: str) -> LicenseKey:
    """Validate and split a key; LicenseError (with a generic message) if invalid."""
    result = validate(key)
    if not result.is_valid:
        logger.info("license_key_rejected", reason=result.error.value if result.error else None)
        raise LicenseError("Invalid license key")
    _, tier_code, duration, batch_id, checksum = key.strip().upper().split("-")
    return LicenseKey(tier_code=tier_code, duration=duration, batch_id=batch_id, checksum=checksum)
