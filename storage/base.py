"""
Tenant-scoped storage interface.

Every accessor that reads or writes organization-owned data takes the
organization id as its first argument and behaves as if rows owned by other
organizations do not exist: lookups return ``None``, listings omit them,
updates and deletes report not-found. Callers cannot tell "unknown id" from
"someone else's id".

The only organization-agnostic entry points are lookups keyed by globally
unique values used before an organization context exists: the candidate
access token, login identifiers (username/email) and login-session hashes.

Records cross this boundary as plain dicts with camelCase keys, the same
shape the API serializes. Backends never hand out references to their
internal state.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from utils import as_int


SESSION_PENDING = "pending"
SESSION_IN_PROGRESS = "in_progress"
SESSION_COMPLETED = "completed"
SESSION_STATUSES = (SESSION_PENDING, SESSION_IN_PROGRESS, SESSION_COMPLETED)

DEFAULT_PASSING_SCORE = 70

TEST_FIELDS = ("name", "description", "createdBy", "timeLimit", "isActive", "passingScore")
# Position is not writable here: create appends, reorder_questions renumbers.
QUESTION_FIELDS = ("content", "type", "options", "correctAnswer", "points")
CANDIDATE_FIELDS = ("name", "email", "position")
USER_FIELDS = ("fullName", "role", "active", "passwordHash")

Record = dict[str, Any]


def pick(data: dict[str, Any] | None, fields: Iterable[str]) -> dict[str, Any]:
    src = data or {}
    return {k: src[k] for k in fields if k in src}


def prepare_test(data: dict[str, Any]) -> dict[str, Any]:
    out = pick(data, TEST_FIELDS)
    out.setdefault("description", None)
    out.setdefault("createdBy", None)
    out.setdefault("timeLimit", None)
    if out.get("isActive") is None:
        out["isActive"] = True
    if out.get("passingScore") is None:
        out["passingScore"] = DEFAULT_PASSING_SCORE
    return out


def prepare_question(data: dict[str, Any]) -> dict[str, Any]:
    out = pick(data, QUESTION_FIELDS)
    out["type"] = out.get("type") or "multiple_choice"
    out["options"] = list(out.get("options") or [])
    out.setdefault("correctAnswer", None)
    out["points"] = as_int(out.get("points"), None) or 1
    return out


def prepare_candidate(data: dict[str, Any]) -> dict[str, Any]:
    out = pick(data, CANDIDATE_FIELDS)
    out.setdefault("position", None)
    return out


def is_exact_permutation(existing_ids: Iterable[int], ordered_ids: list[Any]) -> bool:
    """True when ordered_ids names every existing id exactly once and nothing else."""
    existing = set(existing_ids)
    if len(ordered_ids) != len(existing):
        return False
    seen: set[int] = set()
    for raw in ordered_ids:
        qid = as_int(raw)
        if qid is None or qid not in existing or qid in seen:
            return False
        seen.add(qid)
    return True


def activity_date(session: Record) -> str:
    return str(session.get("completedAt") or session.get("startedAt") or session.get("createdAt") or "")


class Storage(ABC):
    # Organizations

    @abstractmethod
    def create_organization(self, data: dict[str, Any]) -> Record: ...

    @abstractmethod
    def get_organization(self, org_id: int) -> Optional[Record]: ...

    # Users

    @abstractmethod
    def create_user(self, org_id: int, data: dict[str, Any]) -> Record: ...

    @abstractmethod
    def get_user(self, org_id: int, user_id: int) -> Optional[Record]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[Record]: ...

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[Record]: ...

    @abstractmethod
    def get_all_users(self, org_id: int) -> list[Record]: ...

    @abstractmethod
    def update_user(self, org_id: int, user_id: int, data: dict[str, Any]) -> Optional[Record]: ...

    @abstractmethod
    def update_user_last_login(self, org_id: int, user_id: int, at: str) -> None: ...

    # Tests

    @abstractmethod
    def get_all_tests(self, org_id: int) -> list[Record]: ...

    @abstractmethod
    def get_test(self, org_id: int, test_id: int) -> Optional[Record]: ...

    @abstractmethod
    def create_test(self, org_id: int, data: dict[str, Any]) -> Record: ...

    @abstractmethod
    def update_test(self, org_id: int, test_id: int, data: dict[str, Any]) -> Optional[Record]: ...

    @abstractmethod
    def delete_test(self, org_id: int, test_id: int) -> bool:
        """Hard delete of the test together with its questions."""

    # Questions

    @abstractmethod
    def get_questions_by_test_id(self, org_id: int, test_id: int) -> list[Record]:
        """Questions of the test ordered by their position."""

    @abstractmethod
    def get_question(self, org_id: int, question_id: int) -> Optional[Record]: ...

    @abstractmethod
    def create_question(self, org_id: int, test_id: int, data: dict[str, Any]) -> Optional[Record]:
        """None when the test is not visible to org_id."""

    @abstractmethod
    def update_question(self, org_id: int, question_id: int, data: dict[str, Any]) -> Optional[Record]: ...

    @abstractmethod
    def delete_question(self, org_id: int, question_id: int) -> bool: ...

    @abstractmethod
    def delete_questions_by_test_id(self, org_id: int, test_id: int) -> int: ...

    @abstractmethod
    def reorder_questions(self, org_id: int, test_id: int, ordered_ids: list[Any]) -> bool:
        """All-or-nothing: assigns order 1..N following ordered_ids, or changes nothing."""

    # Candidates

    @abstractmethod
    def get_all_candidates(self, org_id: int) -> list[Record]: ...

    @abstractmethod
    def get_candidate(self, org_id: int, candidate_id: int) -> Optional[Record]: ...

    @abstractmethod
    def get_candidate_by_email(self, org_id: int, email: str) -> Optional[Record]: ...

    @abstractmethod
    def create_candidate(self, org_id: int, data: dict[str, Any]) -> Record: ...

    # Test sessions

    @abstractmethod
    def get_all_test_sessions(self, org_id: int) -> list[Record]: ...

    @abstractmethod
    def get_test_sessions_by_test_id(self, org_id: int, test_id: int) -> list[Record]: ...

    @abstractmethod
    def get_test_sessions_by_candidate_id(self, org_id: int, candidate_id: int) -> list[Record]: ...

    @abstractmethod
    def get_test_session(self, org_id: int, session_id: int) -> Optional[Record]: ...

    @abstractmethod
    def get_test_session_by_token(self, token: str) -> Optional[Record]: ...

    @abstractmethod
    def create_test_session(self, org_id: int, data: dict[str, Any]) -> Record: ...

    @abstractmethod
    def start_test_session(self, org_id: int, session_id: int, started_at: str) -> Optional[Record]:
        """
        pending -> in_progress, stamping startedAt.

        A session already in progress is returned unchanged. Returns None when
        the session is missing or already completed.
        """

    @abstractmethod
    def complete_test_session(
        self, org_id: int, session_id: int, answers: list[dict[str, Any]], result: dict[str, Any]
    ) -> Optional[Record]:
        """
        Atomic transition to completed.

        Writes the answers and the result fields (score, percentScore, passed,
        completedAt) only if the session is not completed yet. Returns None when
        another caller already completed it (or it does not exist); in that case
        nothing is written.
        """

    # Answers

    @abstractmethod
    def get_candidate_answers_by_session_id(self, org_id: int, session_id: int) -> list[Record]: ...

    # Login sessions (organization-agnostic, keyed by token hash)

    @abstractmethod
    def create_login_session(self, data: dict[str, Any]) -> Record: ...

    @abstractmethod
    def get_login_session(self, token_hash: str) -> Optional[Record]: ...

    @abstractmethod
    def revoke_login_session(self, token_hash: str, at: str) -> bool: ...

    # Audit

    @abstractmethod
    def append_audit(self, org_id: Optional[int], entry: dict[str, Any]) -> None: ...

    @abstractmethod
    def get_audit_log(self, org_id: int, limit: int = 50) -> list[Record]: ...

    # Dashboard

    def get_test_stats(self, org_id: int) -> dict[str, int]:
        tests = self.get_all_tests(org_id)
        sessions = self.get_all_test_sessions(org_id)
        return {
            "totalTests": len(tests),
            "activeTests": sum(1 for t in tests if t.get("isActive")),
            "totalCandidates": len(self.get_all_candidates(org_id)),
            "pendingSessions": sum(1 for s in sessions if s.get("status") == SESSION_PENDING),
            "inProgressSessions": sum(1 for s in sessions if s.get("status") == SESSION_IN_PROGRESS),
            "completedSessions": sum(1 for s in sessions if s.get("status") == SESSION_COMPLETED),
        }

    def get_recent_activity(self, org_id: int, limit: int = 5) -> list[dict[str, Any]]:
        tests = {t["id"]: t for t in self.get_all_tests(org_id)}
        candidates = {c["id"]: c for c in self.get_all_candidates(org_id)}
        items = []
        for s in self.get_all_test_sessions(org_id):
            test = tests.get(s.get("testId"))
            cand = candidates.get(s.get("candidateId"))
            if not test or not cand:
                continue
            items.append(
                {
                    "sessionId": s["id"],
                    "candidateName": cand.get("name") or "",
                    "testName": test.get("name") or "",
                    "status": s.get("status") or "",
                    "date": activity_date(s),
                }
            )
        items.sort(key=lambda x: x["date"], reverse=True)
        return items[: max(0, int(limit))]

    # Unit of work

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    def close(self) -> None:
        pass
