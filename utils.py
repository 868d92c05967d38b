from __future__ import annotations

import hashlib
import json
import secrets
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


_DEFAULT_HTTP_STATUS = {
    "BAD_REQUEST": 400,
    "AUTH_INVALID": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "RATE_LIMITED": 429,
    "INTERNAL": 500,
}


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int | None = None):
        super().__init__(message)
        self.code = str(code or "INTERNAL").upper()
        self.message = str(message or "")
        self.http_status = int(http_status or _DEFAULT_HTTP_STATUS.get(self.code, 400))

    def __repr__(self) -> str:
        return f"ApiError({self.code!r}, {self.message!r}, http_status={self.http_status})"


@dataclass(frozen=True)
class AuthContext:
    valid: bool
    userId: Any
    email: str
    role: str
    expiresAt: str
    organizationId: Optional[int] = None


PUBLIC_AUTH = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def ok(data: Any) -> tuple[dict[str, Any], int]:
    return {"ok": True, "data": data}, 200


def err(code: str, message: str, http_status: int = 500) -> tuple[dict[str, Any], int]:
    return {"ok": False, "error": {"code": code, "message": message}}, http_status


def iso_utc_now() -> str:
    return to_iso_utc(datetime.now(timezone.utc))


def to_iso_utc(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    dt = value.astimezone(timezone.utc)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime; None on failure."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


def new_access_token(nbytes: int = 18) -> str:
    return secrets.token_urlsafe(nbytes)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def normalize_role(role: Any) -> str:
    return str(role or "").upper().strip()


def safe_json_string(value: Any, default: str = "null") -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return default


def safe_json_loads(raw: Any, default: Any = None) -> Any:
    s = str(raw or "").strip()
    if not s:
        return default
    try:
        return json.loads(s)
    except ValueError:
        return default


def as_int(value: Any, default: int | None = None) -> int | None:
    """Strict int coercion: bools are rejected, numeric strings are accepted."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_json_body(raw: bytes | str | None) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    s = raw.strip()
    if not s:
        return {}
    try:
        body = json.loads(s)
    except ValueError:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return body


_REDACT_KEYS = {"password", "currentpassword", "newpassword", "token", "sessiontoken"}


def redact_for_audit(data: Any) -> Any:
    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***"
            else:
                out[k] = redact_for_audit(v)
        return out
    if isinstance(data, list):
        return [redact_for_audit(x) for x in data]
    return data


def now_monotonic() -> float:
    return time.monotonic()


class SimpleRateLimiter:
    """Sliding-window limiter keyed by an arbitrary string (client IP, email, ...)."""

    def __init__(self, max_events: int, window_seconds: float):
        self.max_events = max(1, int(max_events))
        self.window_seconds = float(window_seconds)
        self._events: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = now_monotonic()
        cutoff = now - self.window_seconds
        with self._lock:
            q = self._events.setdefault(str(key or ""), deque())
            while q and q[0] <= cutoff:
                q.popleft()
            if len(q) >= self.max_events:
                return False
            q.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
