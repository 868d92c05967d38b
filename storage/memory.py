from __future__ import annotations

import copy
import itertools
import threading
from typing import Any, Optional

from storage.base import (
    SESSION_COMPLETED,
    SESSION_IN_PROGRESS,
    SESSION_PENDING,
    TEST_FIELDS,
    QUESTION_FIELDS,
    USER_FIELDS,
    Record,
    Storage,
    is_exact_permutation,
    pick,
    prepare_candidate,
    prepare_question,
    prepare_test,
)
from utils import iso_utc_now, normalize_role


class MemStorage(Storage):
    """
    Process-local backend for development and tests.

    All state lives in dicts guarded by a single re-entrant lock, so every
    mutation (including the session status transitions) is serialized.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._orgs: dict[int, Record] = {}
        self._users: dict[int, Record] = {}
        self._tests: dict[int, Record] = {}
        self._questions: dict[int, Record] = {}
        self._candidates: dict[int, Record] = {}
        self._sessions: dict[int, Record] = {}
        self._answers: dict[tuple[int, int], Record] = {}
        self._login_sessions: dict[str, Record] = {}
        self._audit: list[Record] = []
        self._ids = {name: itertools.count(1) for name in ("org", "user", "test", "question", "candidate", "session")}

    def _next_id(self, name: str) -> int:
        return next(self._ids[name])

    @staticmethod
    def _out(record: Optional[Record]) -> Optional[Record]:
        return copy.deepcopy(record) if record is not None else None

    @staticmethod
    def _owned(record: Optional[Record], org_id: int) -> Optional[Record]:
        if record is None or record.get("organizationId") != org_id:
            return None
        return record

    def _list(self, table: dict[Any, Record], org_id: int, **match: Any) -> list[Record]:
        out = []
        for rec in table.values():
            if rec.get("organizationId") != org_id:
                continue
            if any(rec.get(k) != v for k, v in match.items()):
                continue
            out.append(copy.deepcopy(rec))
        return out

    # Organizations

    def create_organization(self, data: dict[str, Any]) -> Record:
        with self._lock:
            org = {"id": self._next_id("org"), "name": str((data or {}).get("name") or ""), "createdAt": iso_utc_now()}
            self._orgs[org["id"]] = org
            return self._out(org)

    def get_organization(self, org_id: int) -> Optional[Record]:
        with self._lock:
            return self._out(self._orgs.get(org_id))

    # Users

    def create_user(self, org_id: int, data: dict[str, Any]) -> Record:
        with self._lock:
            user = {
                "id": self._next_id("user"),
                "organizationId": org_id,
                "username": str(data.get("username") or ""),
                "email": str(data.get("email") or "").lower(),
                "fullName": str(data.get("fullName") or ""),
                "passwordHash": str(data.get("passwordHash") or ""),
                "role": normalize_role(data.get("role")) or "RECRUITER",
                "active": bool(data.get("active", True)),
                "lastLoginAt": "",
                "createdAt": iso_utc_now(),
            }
            self._users[user["id"]] = user
            return self._out(user)

    def get_user(self, org_id: int, user_id: int) -> Optional[Record]:
        with self._lock:
            return self._out(self._owned(self._users.get(user_id), org_id))

    def get_user_by_username(self, username: str) -> Optional[Record]:
        with self._lock:
            return self._out(next((u for u in self._users.values() if u["username"] == username), None))

    def find_user_by_email(self, email: str) -> Optional[Record]:
        e = str(email or "").strip().lower()
        with self._lock:
            return self._out(next((u for u in self._users.values() if u["email"] == e), None))

    def get_all_users(self, org_id: int) -> list[Record]:
        with self._lock:
            return self._list(self._users, org_id)

    def update_user(self, org_id: int, user_id: int, data: dict[str, Any]) -> Optional[Record]:
        with self._lock:
            user = self._owned(self._users.get(user_id), org_id)
            if user is None:
                return None
            changes = pick(data, USER_FIELDS)
            if "role" in changes:
                changes["role"] = normalize_role(changes["role"])
            user.update(changes)
            return self._out(user)

    def update_user_last_login(self, org_id: int, user_id: int, at: str) -> None:
        with self._lock:
            user = self._owned(self._users.get(user_id), org_id)
            if user is not None:
                user["lastLoginAt"] = at

    # Tests

    def get_all_tests(self, org_id: int) -> list[Record]:
        with self._lock:
            return sorted(self._list(self._tests, org_id), key=lambda t: t["id"])

    def get_test(self, org_id: int, test_id: int) -> Optional[Record]:
        with self._lock:
            return self._out(self._owned(self._tests.get(test_id), org_id))

    def create_test(self, org_id: int, data: dict[str, Any]) -> Record:
        with self._lock:
            test = {"id": self._next_id("test"), "organizationId": org_id, **prepare_test(data), "createdAt": iso_utc_now()}
            self._tests[test["id"]] = test
            return self._out(test)

    def update_test(self, org_id: int, test_id: int, data: dict[str, Any]) -> Optional[Record]:
        with self._lock:
            test = self._owned(self._tests.get(test_id), org_id)
            if test is None:
                return None
            test.update(pick(data, TEST_FIELDS))
            return self._out(test)

    def delete_test(self, org_id: int, test_id: int) -> bool:
        with self._lock:
            if self._owned(self._tests.get(test_id), org_id) is None:
                return False
            self.delete_questions_by_test_id(org_id, test_id)
            del self._tests[test_id]
            return True

    # Questions

    def get_questions_by_test_id(self, org_id: int, test_id: int) -> list[Record]:
        with self._lock:
            return sorted(self._list(self._questions, org_id, testId=test_id), key=lambda q: (q["order"], q["id"]))

    def get_question(self, org_id: int, question_id: int) -> Optional[Record]:
        with self._lock:
            return self._out(self._owned(self._questions.get(question_id), org_id))

    def create_question(self, org_id: int, test_id: int, data: dict[str, Any]) -> Optional[Record]:
        with self._lock:
            if self._owned(self._tests.get(test_id), org_id) is None:
                return None
            fields = prepare_question(data)
            siblings = [q["order"] for q in self._questions.values() if q["testId"] == test_id]
            fields["order"] = max(siblings, default=0) + 1
            question = {"id": self._next_id("question"), "testId": test_id, "organizationId": org_id, **fields}
            self._questions[question["id"]] = question
            return self._out(question)

    def update_question(self, org_id: int, question_id: int, data: dict[str, Any]) -> Optional[Record]:
        with self._lock:
            question = self._owned(self._questions.get(question_id), org_id)
            if question is None:
                return None
            question.update(copy.deepcopy(pick(data, QUESTION_FIELDS)))
            return self._out(question)

    def delete_question(self, org_id: int, question_id: int) -> bool:
        with self._lock:
            if self._owned(self._questions.get(question_id), org_id) is None:
                return False
            del self._questions[question_id]
            return True

    def delete_questions_by_test_id(self, org_id: int, test_id: int) -> int:
        with self._lock:
            ids = [qid for qid, q in self._questions.items() if q["testId"] == test_id and q["organizationId"] == org_id]
            for qid in ids:
                del self._questions[qid]
            return len(ids)

    def reorder_questions(self, org_id: int, test_id: int, ordered_ids: list[Any]) -> bool:
        with self._lock:
            if self._owned(self._tests.get(test_id), org_id) is None:
                return False
            existing = [q["id"] for q in self._questions.values() if q["testId"] == test_id and q["organizationId"] == org_id]
            if not is_exact_permutation(existing, ordered_ids):
                return False
            for position, qid in enumerate(ordered_ids, start=1):
                self._questions[int(qid)]["order"] = position
            return True

    # Candidates

    def get_all_candidates(self, org_id: int) -> list[Record]:
        with self._lock:
            return sorted(self._list(self._candidates, org_id), key=lambda c: c["id"])

    def get_candidate(self, org_id: int, candidate_id: int) -> Optional[Record]:
        with self._lock:
            return self._out(self._owned(self._candidates.get(candidate_id), org_id))

    def get_candidate_by_email(self, org_id: int, email: str) -> Optional[Record]:
        e = str(email or "").strip().lower()
        with self._lock:
            return next(iter(self._list(self._candidates, org_id, email=e)), None)

    def create_candidate(self, org_id: int, data: dict[str, Any]) -> Record:
        with self._lock:
            fields = prepare_candidate(data)
            fields["email"] = str(fields.get("email") or "").strip().lower()
            cand = {"id": self._next_id("candidate"), "organizationId": org_id, **fields, "createdAt": iso_utc_now()}
            self._candidates[cand["id"]] = cand
            return self._out(cand)

    # Test sessions

    def get_all_test_sessions(self, org_id: int) -> list[Record]:
        with self._lock:
            return sorted(self._list(self._sessions, org_id), key=lambda s: s["id"])

    def get_test_sessions_by_test_id(self, org_id: int, test_id: int) -> list[Record]:
        with self._lock:
            return sorted(self._list(self._sessions, org_id, testId=test_id), key=lambda s: s["id"])

    def get_test_sessions_by_candidate_id(self, org_id: int, candidate_id: int) -> list[Record]:
        with self._lock:
            return sorted(self._list(self._sessions, org_id, candidateId=candidate_id), key=lambda s: s["id"])

    def get_test_session(self, org_id: int, session_id: int) -> Optional[Record]:
        with self._lock:
            return self._out(self._owned(self._sessions.get(session_id), org_id))

    def get_test_session_by_token(self, token: str) -> Optional[Record]:
        with self._lock:
            return self._out(next((s for s in self._sessions.values() if s["token"] == token), None))

    def create_test_session(self, org_id: int, data: dict[str, Any]) -> Record:
        with self._lock:
            session = {
                "id": self._next_id("session"),
                "organizationId": org_id,
                "testId": data["testId"],
                "candidateId": data["candidateId"],
                "token": data["token"],
                "status": SESSION_PENDING,
                "startedAt": None,
                "completedAt": None,
                "score": None,
                "percentScore": None,
                "passed": None,
                "expiresAt": data.get("expiresAt") or None,
                "createdAt": iso_utc_now(),
            }
            self._sessions[session["id"]] = session
            return self._out(session)

    def start_test_session(self, org_id: int, session_id: int, started_at: str) -> Optional[Record]:
        with self._lock:
            session = self._owned(self._sessions.get(session_id), org_id)
            if session is None or session["status"] == SESSION_COMPLETED:
                return None
            if session["status"] == SESSION_PENDING:
                session["status"] = SESSION_IN_PROGRESS
                session["startedAt"] = started_at
            return self._out(session)

    def complete_test_session(
        self, org_id: int, session_id: int, answers: list[dict[str, Any]], result: dict[str, Any]
    ) -> Optional[Record]:
        with self._lock:
            session = self._owned(self._sessions.get(session_id), org_id)
            if session is None or session["status"] == SESSION_COMPLETED:
                return None
            for ans in answers:
                key = (session_id, int(ans["questionId"]))
                self._answers[key] = {
                    "sessionId": session_id,
                    "questionId": key[1],
                    "answer": copy.deepcopy(ans.get("answer")),
                    "answerText": copy.deepcopy(ans.get("answerText")),
                    "isCorrect": bool(ans.get("isCorrect")),
                    "points": int(ans.get("points") or 0),
                }
            session.update(
                {
                    "status": SESSION_COMPLETED,
                    "completedAt": result["completedAt"],
                    "score": int(result["score"]),
                    "percentScore": int(result["percentScore"]),
                    "passed": bool(result["passed"]),
                }
            )
            return self._out(session)

    # Answers

    def get_candidate_answers_by_session_id(self, org_id: int, session_id: int) -> list[Record]:
        with self._lock:
            if self._owned(self._sessions.get(session_id), org_id) is None:
                return []
            rows = [copy.deepcopy(a) for (sid, _), a in self._answers.items() if sid == session_id]
            return sorted(rows, key=lambda a: a["questionId"])

    # Login sessions

    def create_login_session(self, data: dict[str, Any]) -> Record:
        with self._lock:
            rec = {**copy.deepcopy(data), "revokedAt": ""}
            self._login_sessions[rec["tokenHash"]] = rec
            return self._out(rec)

    def get_login_session(self, token_hash: str) -> Optional[Record]:
        with self._lock:
            return self._out(self._login_sessions.get(token_hash))

    def revoke_login_session(self, token_hash: str, at: str) -> bool:
        with self._lock:
            rec = self._login_sessions.get(token_hash)
            if rec is None or rec.get("revokedAt"):
                return False
            rec["revokedAt"] = at
            return True

    # Audit

    def append_audit(self, org_id: Optional[int], entry: dict[str, Any]) -> None:
        with self._lock:
            self._audit.append({**copy.deepcopy(entry), "organizationId": org_id})

    def get_audit_log(self, org_id: int, limit: int = 50) -> list[Record]:
        with self._lock:
            rows = [copy.deepcopy(e) for e in self._audit if e.get("organizationId") == org_id]
        return list(reversed(rows))[: max(0, int(limit))]
