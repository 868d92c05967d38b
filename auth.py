from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from cache_layer import cached
from storage.base import Storage
from utils import ApiError, AuthContext, PUBLIC_AUTH, iso_utc_now, new_access_token, new_uuid, normalize_role, parse_datetime_maybe, sha256_hex, to_iso_utc


ROLES = ("ADMIN", "RECRUITER", "INTERVIEWER")

STAFF = ["ADMIN", "RECRUITER", "INTERVIEWER"]
EDITORS = ["ADMIN", "RECRUITER"]


PUBLIC_ACTIONS = {
    "LOGIN",
    "SELF_REGISTER",
    "TEST_SESSION_GET",
    "TEST_SESSION_START",
    "TEST_SESSION_SUBMIT",
}


STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "LOGIN": ["PUBLIC"],
    "SELF_REGISTER": ["PUBLIC"],
    "LOGOUT": STAFF,
    "GET_ME": STAFF,
    "USERS_LIST": ["ADMIN"],
    "USER_CREATE": ["ADMIN"],
    "USER_UPDATE": ["ADMIN"],
    # Tests and questions
    "TESTS_LIST": STAFF,
    "TEST_GET": STAFF,
    "TEST_CREATE": EDITORS,
    "TEST_UPDATE": EDITORS,
    "TEST_DELETE": EDITORS,
    "QUESTIONS_LIST": STAFF,
    "QUESTION_CREATE": EDITORS,
    "QUESTION_UPDATE": EDITORS,
    "QUESTION_DELETE": EDITORS,
    "QUESTIONS_REORDER": EDITORS,
    # Candidates
    "CANDIDATES_LIST": STAFF,
    "CANDIDATE_GET": STAFF,
    "CANDIDATE_CREATE": EDITORS,
    # Sessions (staff side)
    "SESSION_CREATE": EDITORS,
    "SESSIONS_LIST": STAFF,
    "SESSIONS_BY_TEST": STAFF,
    "SESSIONS_BY_CANDIDATE": STAFF,
    "SESSION_DETAIL": STAFF,
    # Candidate side, authorized by the session token itself
    "TEST_SESSION_GET": ["PUBLIC"],
    "TEST_SESSION_START": ["PUBLIC"],
    "TEST_SESSION_SUBMIT": ["PUBLIC"],
    # Dashboard
    "DASHBOARD_STATS": STAFF,
    "RECENT_ACTIVITY": STAFF,
    "AUDIT_LOG_LIST": ["ADMIN"],
}


_PERMS_NAMESPACE = "RBAC_PERMISSIONS"


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def issue_session_token(store: Storage, *, user: dict[str, Any], session_ttl_minutes: int) -> dict[str, str]:
    token = "ST-" + new_access_token(32)
    now = datetime.now(timezone.utc)
    expires_at = to_iso_utc(now + timedelta(minutes=session_ttl_minutes))

    store.create_login_session(
        {
            "sessionId": "SES-" + new_uuid(),
            "tokenHash": sha256_hex(token),
            "userId": user["id"],
            "organizationId": user["organizationId"],
            "role": normalize_role(user.get("role")),
            "issuedAt": to_iso_utc(now),
            "expiresAt": expires_at,
        }
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def revoke_session_token(store: Storage, token: Any) -> bool:
    if not token or not isinstance(token, str):
        return False
    return store.revoke_login_session(sha256_hex(token), iso_utc_now())


def validate_session_token(store: Storage, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return PUBLIC_AUTH

    ses = store.get_login_session(sha256_hex(token))
    if not ses:
        return PUBLIC_AUTH

    exp_dt = parse_datetime_maybe(ses.get("expiresAt"))
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return PUBLIC_AUTH
    if ses.get("revokedAt"):
        return PUBLIC_AUTH

    org_id = ses.get("organizationId")
    usr = store.get_user(org_id, ses.get("userId"))
    if not usr:
        return PUBLIC_AUTH
    if not usr.get("active"):
        raise ApiError("FORBIDDEN", "User is disabled", http_status=403)

    # Role changes take effect immediately, without re-login.
    return AuthContext(
        valid=True,
        userId=usr["id"],
        email=str(usr.get("email") or ""),
        role=normalize_role(usr.get("role")),
        expiresAt=str(ses.get("expiresAt") or ""),
        organizationId=org_id,
    )


def assert_permission(role: str, action: str) -> None:
    role_u = normalize_role(role)
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if not allowed:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")

    if not role_u:
        raise ApiError("AUTH_INVALID", "Login required")
    if role_u not in ROLES:
        raise ApiError("FORBIDDEN", f"Inactive or unknown role: {role_u}")
    if role_u not in allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}")


def permissions_for_role(role: str) -> dict[str, Any]:
    role_u = normalize_role(role)
    if not role_u:
        raise ApiError("AUTH_INVALID", "Login required")

    def _compute() -> dict[str, Any]:
        actions = sorted(
            a for a, roles in STATIC_RBAC_PERMISSIONS.items() if a not in PUBLIC_ACTIONS and role_u in roles
        )
        return {"role": role_u, "actions": actions}

    return cached(_PERMS_NAMESPACE, role_u, _compute)


def role_or_public(auth: AuthContext | None) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return str(auth.role or "")
