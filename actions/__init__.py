from __future__ import annotations

from typing import Any, Callable

from actions import auth_actions, candidates, dashboard, public_test, questions, sessions, tests_admin
from utils import ApiError, AuthContext


Handler = Callable[..., Any]


HANDLERS: dict[str, Handler] = {
    "LOGIN": auth_actions.login,
    "SELF_REGISTER": auth_actions.self_register,
    "LOGOUT": auth_actions.logout,
    "GET_ME": auth_actions.get_me,
    "USERS_LIST": auth_actions.users_list,
    "USER_CREATE": auth_actions.user_create,
    "USER_UPDATE": auth_actions.user_update,
    "TESTS_LIST": tests_admin.tests_list,
    "TEST_GET": tests_admin.test_get,
    "TEST_CREATE": tests_admin.test_create,
    "TEST_UPDATE": tests_admin.test_update,
    "TEST_DELETE": tests_admin.test_delete,
    "QUESTIONS_LIST": questions.questions_list,
    "QUESTION_CREATE": questions.question_create,
    "QUESTION_UPDATE": questions.question_update,
    "QUESTION_DELETE": questions.question_delete,
    "QUESTIONS_REORDER": questions.questions_reorder,
    "CANDIDATES_LIST": candidates.candidates_list,
    "CANDIDATE_GET": candidates.candidate_get,
    "CANDIDATE_CREATE": candidates.candidate_create,
    "SESSION_CREATE": sessions.session_create,
    "SESSIONS_LIST": sessions.sessions_list,
    "SESSIONS_BY_TEST": sessions.sessions_by_test,
    "SESSIONS_BY_CANDIDATE": sessions.sessions_by_candidate,
    "SESSION_DETAIL": sessions.session_detail,
    "TEST_SESSION_GET": public_test.test_session_get,
    "TEST_SESSION_START": public_test.test_session_start,
    "TEST_SESSION_SUBMIT": public_test.test_session_submit,
    "DASHBOARD_STATS": dashboard.dashboard_stats,
    "RECENT_ACTIVITY": dashboard.recent_activity,
    "AUDIT_LOG_LIST": dashboard.audit_log_list,
}


def dispatch(action: str, data: Any, auth: AuthContext | None, store, cfg) -> Any:
    fn = HANDLERS.get(str(action or "").upper().strip())
    if fn is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action}")
    if data is not None and not isinstance(data, dict):
        raise ApiError("BAD_REQUEST", "data must be an object")
    return fn(data or {}, auth, store, cfg)
