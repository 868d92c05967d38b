from __future__ import annotations

from flask import g

from actions.helpers import append_audit, looks_like_email, org_of, public_user, require_id, require_str
from auth import ROLES, issue_session_token, permissions_for_role, revoke_session_token
from passwords import hash_password, verify_password
from utils import ApiError, AuthContext, iso_utc_now, normalize_role


def _login_payload(store, cfg, user: dict) -> dict:
    issued = issue_session_token(store, user=user, session_ttl_minutes=cfg.SESSION_TTL_MINUTES)
    org = store.get_organization(user["organizationId"]) or {}
    return {
        "sessionToken": issued["sessionToken"],
        "expiresAt": issued["expiresAt"],
        "user": public_user(user),
        "organization": {"id": org.get("id"), "name": org.get("name") or ""},
    }


def login(data, auth: AuthContext | None, store, cfg):
    ident = str((data or {}).get("username") or (data or {}).get("email") or "").strip()
    password = (data or {}).get("password")
    if not ident or not password:
        raise ApiError("BAD_REQUEST", "Missing username or password")

    user = store.get_user_by_username(ident) or store.find_user_by_email(ident)
    if not user or not verify_password(str(password), user.get("passwordHash") or ""):
        raise ApiError("AUTH_INVALID", "Invalid username or password")
    if not user.get("active"):
        raise ApiError("FORBIDDEN", "User is disabled")

    store.update_user_last_login(user["organizationId"], user["id"], iso_utc_now())
    out = _login_payload(store, cfg, user)
    append_audit(
        store,
        auth=None,
        organizationId=user["organizationId"],
        entityType="USER",
        entityId=user["id"],
        action="LOGIN",
    )
    return out


def _assert_identity_free(store, username: str, email: str) -> None:
    if store.get_user_by_username(username):
        raise ApiError("CONFLICT", "Username already in use")
    if store.find_user_by_email(email):
        raise ApiError("CONFLICT", "Email already in use")


def self_register(data, auth: AuthContext | None, store, cfg):
    if not cfg.ALLOW_SELF_REGISTER:
        raise ApiError("FORBIDDEN", "Self registration is disabled")

    org_name = require_str(data, "organizationName", "organization name", max_len=200)
    username = require_str(data, "username", max_len=100)
    email = require_str(data, "email", max_len=254).lower()
    full_name = require_str(data, "fullName", "full name", max_len=200)
    if not looks_like_email(email):
        raise ApiError("BAD_REQUEST", "Invalid email")
    password_hash = hash_password((data or {}).get("password"))

    _assert_identity_free(store, username, email)

    org = store.create_organization({"name": org_name})
    user = store.create_user(
        org["id"],
        {
            "username": username,
            "email": email,
            "fullName": full_name,
            "passwordHash": password_hash,
            "role": "ADMIN",
        },
    )
    append_audit(
        store,
        auth=None,
        organizationId=org["id"],
        entityType="ORGANIZATION",
        entityId=org["id"],
        action="SELF_REGISTER",
        meta={"username": username},
    )
    return _login_payload(store, cfg, user)


def logout(data, auth: AuthContext | None, store, cfg):
    revoked = revoke_session_token(store, g.get("session_token"))
    append_audit(store, auth=auth, entityType="USER", entityId=auth.userId if auth else "", action="LOGOUT")
    return {"revoked": revoked}


def get_me(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    user = store.get_user(org_id, auth.userId)
    if not user:
        raise ApiError("AUTH_INVALID", "Login required")
    org = store.get_organization(org_id) or {}
    return {
        "user": public_user(user),
        "organization": {"id": org.get("id"), "name": org.get("name") or ""},
        "permissions": permissions_for_role(auth.role),
        "expiresAt": auth.expiresAt,
    }


def _role_arg(value) -> str:
    role = normalize_role(value)
    if role not in ROLES:
        raise ApiError("BAD_REQUEST", f"Invalid role: {value}")
    return role


def users_list(data, auth: AuthContext | None, store, cfg):
    return {"items": [public_user(u) for u in store.get_all_users(org_of(auth))]}


def user_create(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    username = require_str(data, "username", max_len=100)
    email = require_str(data, "email", max_len=254).lower()
    if not looks_like_email(email):
        raise ApiError("BAD_REQUEST", "Invalid email")
    role = _role_arg((data or {}).get("role") or "RECRUITER")
    password_hash = hash_password((data or {}).get("password"))

    _assert_identity_free(store, username, email)

    user = store.create_user(
        org_id,
        {
            "username": username,
            "email": email,
            "fullName": str((data or {}).get("fullName") or "").strip(),
            "passwordHash": password_hash,
            "role": role,
        },
    )
    append_audit(store, auth=auth, entityType="USER", entityId=user["id"], action="USER_CREATE", meta={"role": role})
    return public_user(user)


def user_update(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    user_id = require_id(data, "userId")

    changes: dict = {}
    if "fullName" in (data or {}):
        changes["fullName"] = str(data.get("fullName") or "").strip()
    if "role" in (data or {}):
        changes["role"] = _role_arg(data.get("role"))
    if "active" in (data or {}):
        if not isinstance(data.get("active"), bool):
            raise ApiError("BAD_REQUEST", "active must be a boolean")
        changes["active"] = data["active"]
    if "password" in (data or {}):
        changes["passwordHash"] = hash_password(data.get("password"))

    if user_id == auth.userId and (changes.get("active") is False or changes.get("role", "ADMIN") != "ADMIN"):
        raise ApiError("BAD_REQUEST", "Admins cannot demote or disable themselves")

    user = store.update_user(org_id, user_id, changes)
    if not user:
        raise ApiError("NOT_FOUND", "User not found")

    append_audit(
        store,
        auth=auth,
        entityType="USER",
        entityId=user_id,
        action="USER_UPDATE",
        meta={k: v for k, v in changes.items() if k != "passwordHash"},
    )
    return public_user(user)
