from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Optional

SESSION_COOKIE_NAME = "quizroster_session"
ROLE_MENTOR = "mentor"
ROLE_STUDENT = "student"
ROLES = frozenset({ROLE_MENTOR, ROLE_STUDENT})


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str

    @property
    def is_mentor(self) -> bool:
        return self.role == ROLE_MENTOR

    @property
    def is_student(self) -> bool:
        return self.role == ROLE_STUDENT


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str, secret_key: str) -> bytes:
    return hmac.new(
        secret_key.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256
    ).digest()


def create_session_token(
    user_id: str,
    role: str,
    secret_key: str,
    *,
    ttl_seconds: int,
    now: Optional[int] = None,
) -> str:
    if role not in ROLES:
        raise ValueError(f"unknown role: {role}")
    issued_at = now if now is not None else int(time.time())
    payload = {
        "sub": user_id,
        "role": role,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    payload_b64 = _b64url_encode(payload_json)
    return f"{payload_b64}.{_b64url_encode(_sign(payload_b64, secret_key))}"


def decode_session_token(
    token: str, secret_key: str, *, now: Optional[int] = None
) -> Optional[Principal]:
    try:
        payload_b64, signature_b64 = token.split(".", 1)
    except ValueError:
        return None

    try:
        actual_signature = _b64url_decode(signature_b64)
        expected_signature = _sign(payload_b64, secret_key)
    except (ValueError, TypeError, UnicodeEncodeError):
        return None
    if not hmac.compare_digest(actual_signature, expected_signature):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_b64))
        user_id = payload["sub"]
        role = payload["role"]
        expires_at = int(payload["exp"])
    except (KeyError, ValueError, TypeError, json.JSONDecodeError):
        return None

    if not isinstance(user_id, str) or not user_id or role not in ROLES:
        return None

    current = now if now is not None else int(time.time())
    if expires_at < current:
        return None
    return Principal(user_id=user_id, role=role)


def token_from_authorization(header_value: Optional[str]) -> str:
    if not header_value:
        return ""
    scheme, _, credentials = header_value.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return credentials.strip()
