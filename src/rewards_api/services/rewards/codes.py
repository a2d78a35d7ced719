"""One-time redemption code generation and structural checks."""

from __future__ import annotations

import hashlib
import re
import secrets
import string
from datetime import datetime
from enum import Enum
from uuid import UUID

import httpx

from rewards_api.core.clock import utcnow
from rewards_api.core.settings import Settings, get_settings


QR_CODE_PATTERN = re.compile(r"REDEEM-[A-F0-9]{16}-\d+")
ALPHANUMERIC_CODE_PATTERN = re.compile(r"[A-Z0-9]{4}-[A-Z0-9]{4,}-[A-Z0-9]+")

_ALPHABET = string.ascii_uppercase + string.digits
_BASE36 = string.digits + string.ascii_uppercase
_WHITESPACE = re.compile(r"\s+")


class CodeType(str, Enum):
    QR = "qr"
    ALPHANUMERIC = "alphanumeric"


def _timestamp_ms(now: datetime | None) -> int:
    return int((now or utcnow()).timestamp() * 1000)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_qr_code(
    redemption_id: UUID | str,
    account_id: UUID | str,
    business_id: UUID | str,
    *,
    now: datetime | None = None,
) -> str:
    """Return ``REDEEM-{16 hex}-{epoch ms}`` seeded with a random nonce."""

    timestamp = _timestamp_ms(now)
    nonce = secrets.token_hex(16)
    digest = hashlib.sha256(
        f"{redemption_id}:{account_id}:{business_id}:{timestamp}:{nonce}".encode("utf-8")
    ).hexdigest()
    return f"REDEEM-{digest[:16].upper()}-{timestamp}"


def generate_alphanumeric_code(redemption_id: UUID | str, *, now: datetime | None = None) -> str:
    """Return a typeable ``XXXX-XXXXXX-TS36`` code for online rewards."""

    prefix = str(redemption_id).replace("-", "")[:4].upper()
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"{prefix}-{random_part}-{_to_base36(_timestamp_ms(now))}"


def generate_validation_token(redemption_id: UUID | str, code: str, *, now: datetime | None = None) -> str:
    return hashlib.sha256(f"{redemption_id}:{code}:{_timestamp_ms(now)}".encode("utf-8")).hexdigest()


def normalize_code(code: str) -> str:
    return _WHITESPACE.sub("", code or "").upper()


def is_valid_code_format(code: str, code_type: CodeType) -> bool:
    pattern = QR_CODE_PATTERN if code_type is CodeType.QR else ALPHANUMERIC_CODE_PATTERN
    return pattern.fullmatch(code) is not None


def detect_code_type(code: str) -> CodeType | None:
    """Classify a normalized code, or ``None`` when it matches neither format."""

    if is_valid_code_format(code, CodeType.QR):
        return CodeType.QR
    if is_valid_code_format(code, CodeType.ALPHANUMERIC):
        return CodeType.ALPHANUMERIC
    return None


def qr_image_url(code: str, *, settings: Settings | None = None) -> str:
    """Link to the external renderer that turns a code into a QR image."""

    cfg = settings or get_settings()
    url = httpx.URL(
        cfg.qr_render_base_url,
        params={
            "size": f"{cfg.qr_render_size}x{cfg.qr_render_size}",
            "data": code,
            "ecc": cfg.qr_render_error_correction,
        },
    )
    return str(url)


__all__ = [
    "ALPHANUMERIC_CODE_PATTERN",
    "CodeType",
    "QR_CODE_PATTERN",
    "detect_code_type",
    "generate_alphanumeric_code",
    "generate_qr_code",
    "generate_validation_token",
    "is_valid_code_format",
    "normalize_code",
    "qr_image_url",
]
