from __future__ import annotations

import hashlib
import math
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    normalized = normalize_utc(expires_at)
    if normalized is None:
        return True
    return now >= normalized


def seconds_remaining(expires_at: Optional[datetime], now: datetime) -> int:
    normalized = normalize_utc(expires_at)
    if normalized is None:
        return 0
    return max(0, math.floor((normalized - now).total_seconds()))


def normalize_email(raw: str) -> str:
    return str(raw).strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def generate_token(num_bytes: int) -> str:
    return secrets.token_hex(num_bytes)


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()
