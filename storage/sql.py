from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from models import AuditLog, Candidate, CandidateAnswer, LoginSession, Organization, Question, Test, TestSession, User
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
from utils import as_int, iso_utc_now, new_uuid, normalize_role, safe_json_loads, safe_json_string


def _org_to_dict(o: Organization) -> Record:
    return {"id": o.id, "name": o.name or "", "createdAt": o.createdAt or ""}


def _user_to_dict(u: User) -> Record:
    return {
        "id": u.id,
        "organizationId": u.organizationId,
        "username": u.username or "",
        "email": u.email or "",
        "fullName": u.fullName or "",
        "passwordHash": u.passwordHash or "",
        "role": u.role or "",
        "active": bool(u.active),
        "lastLoginAt": u.lastLoginAt or "",
        "createdAt": u.createdAt or "",
    }


def _test_to_dict(t: Test) -> Record:
    return {
        "id": t.id,
        "organizationId": t.organizationId,
        "name": t.name or "",
        "description": t.description,
        "createdBy": t.createdBy,
        "timeLimit": t.timeLimit,
        "isActive": bool(t.isActive),
        "passingScore": t.passingScore,
        "createdAt": t.createdAt or "",
    }


def _question_to_dict(q: Question) -> Record:
    return {
        "id": q.id,
        "testId": q.testId,
        "organizationId": q.organizationId,
        "content": q.content or "",
        "type": q.type or "",
        "options": safe_json_loads(q.optionsJson, []),
        "correctAnswer": safe_json_loads(q.correctAnswerJson, None),
        "points": q.points,
        "order": q.order,
    }


def _candidate_to_dict(c: Candidate) -> Record:
    return {
        "id": c.id,
        "organizationId": c.organizationId,
        "name": c.name or "",
        "email": c.email or "",
        "position": c.position,
        "createdAt": c.createdAt or "",
    }


def _session_to_dict(s: TestSession) -> Record:
    return {
        "id": s.id,
        "organizationId": s.organizationId,
        "testId": s.testId,
        "candidateId": s.candidateId,
        "token": s.token,
        "status": s.status,
        "startedAt": s.startedAt,
        "completedAt": s.completedAt,
        "score": s.score,
        "percentScore": s.percentScore,
        "passed": s.passed,
        "expiresAt": s.expiresAt,
        "createdAt": s.createdAt or "",
    }


def _answer_to_dict(a: CandidateAnswer) -> Record:
    return {
        "sessionId": a.sessionId,
        "questionId": a.questionId,
        "answer": safe_json_loads(a.answerJson, None),
        "answerText": safe_json_loads(a.answerTextJson, None),
        "isCorrect": bool(a.isCorrect),
        "points": a.points or 0,
    }


def _login_session_to_dict(ls: LoginSession) -> Record:
    return {
        "sessionId": ls.sessionId,
        "tokenHash": ls.tokenHash,
        "userId": ls.userId,
        "organizationId": ls.organizationId,
        "role": ls.role or "",
        "issuedAt": ls.issuedAt or "",
        "expiresAt": ls.expiresAt or "",
        "revokedAt": ls.revokedAt or "",
    }


def _audit_to_dict(a: AuditLog) -> Record:
    return {
        "logId": a.logId,
        "organizationId": a.organizationId,
        "entityType": a.entityType or "",
        "entityId": a.entityId or "",
        "action": a.action or "",
        "actorUserId": a.actorUserId or "",
        "actorRole": a.actorRole or "",
        "at": a.at or "",
        "correlationId": a.correlationId or "",
        "meta": safe_json_loads(a.metaJson, {}),
    }


def _apply_question_fields(row: Question, fields: dict[str, Any]) -> None:
    for key, value in fields.items():
        if key == "options":
            row.optionsJson = safe_json_string(list(value or []), "[]")
        elif key == "correctAnswer":
            row.correctAnswerJson = safe_json_string(value)
        else:
            setattr(row, key, value)


class SqlStorage(Storage):
    """
    Relational backend over a SQLAlchemy session.

    The storage flushes but never commits; the request handler owns the
    transaction and calls commit()/rollback() once per request.
    """

    def __init__(self, db: Session):
        self.db = db

    def _owned(self, model, org_id: int, row_id: Any):
        rid = as_int(row_id)
        if rid is None:
            return None
        return self.db.execute(
            select(model).where(model.id == rid, model.organizationId == org_id)
        ).scalars().first()

    # Organizations

    def create_organization(self, data: dict[str, Any]) -> Record:
        org = Organization(name=str((data or {}).get("name") or ""), createdAt=iso_utc_now())
        self.db.add(org)
        self.db.flush()
        return _org_to_dict(org)

    def get_organization(self, org_id: int) -> Optional[Record]:
        org = self.db.get(Organization, org_id)
        return _org_to_dict(org) if org else None

    # Users

    def create_user(self, org_id: int, data: dict[str, Any]) -> Record:
        user = User(
            organizationId=org_id,
            username=str(data.get("username") or ""),
            email=str(data.get("email") or "").lower(),
            fullName=str(data.get("fullName") or ""),
            passwordHash=str(data.get("passwordHash") or ""),
            role=normalize_role(data.get("role")) or "RECRUITER",
            active=bool(data.get("active", True)),
            lastLoginAt="",
            createdAt=iso_utc_now(),
        )
        self.db.add(user)
        self.db.flush()
        return _user_to_dict(user)

    def get_user(self, org_id: int, user_id: int) -> Optional[Record]:
        user = self._owned(User, org_id, user_id)
        return _user_to_dict(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[Record]:
        user = self.db.execute(select(User).where(User.username == str(username or ""))).scalars().first()
        return _user_to_dict(user) if user else None

    def find_user_by_email(self, email: str) -> Optional[Record]:
        e = str(email or "").strip().lower()
        user = self.db.execute(select(User).where(User.email == e)).scalars().first()
        return _user_to_dict(user) if user else None

    def get_all_users(self, org_id: int) -> list[Record]:
        rows = self.db.execute(select(User).where(User.organizationId == org_id).order_by(User.id.asc())).scalars().all()
        return [_user_to_dict(u) for u in rows]

    def update_user(self, org_id: int, user_id: int, data: dict[str, Any]) -> Optional[Record]:
        user = self._owned(User, org_id, user_id)
        if user is None:
            return None
        for key, value in pick(data, USER_FIELDS).items():
            setattr(user, key, normalize_role(value) if key == "role" else value)
        self.db.flush()
        return _user_to_dict(user)

    def update_user_last_login(self, org_id: int, user_id: int, at: str) -> None:
        self.db.execute(update(User).where(User.id == user_id, User.organizationId == org_id).values(lastLoginAt=at))

    # Tests

    def get_all_tests(self, org_id: int) -> list[Record]:
        rows = self.db.execute(select(Test).where(Test.organizationId == org_id).order_by(Test.id.asc())).scalars().all()
        return [_test_to_dict(t) for t in rows]

    def get_test(self, org_id: int, test_id: int) -> Optional[Record]:
        test = self._owned(Test, org_id, test_id)
        return _test_to_dict(test) if test else None

    def create_test(self, org_id: int, data: dict[str, Any]) -> Record:
        test = Test(organizationId=org_id, createdAt=iso_utc_now(), **prepare_test(data))
        self.db.add(test)
        self.db.flush()
        return _test_to_dict(test)

    def update_test(self, org_id: int, test_id: int, data: dict[str, Any]) -> Optional[Record]:
        test = self._owned(Test, org_id, test_id)
        if test is None:
            return None
        for key, value in pick(data, TEST_FIELDS).items():
            setattr(test, key, value)
        self.db.flush()
        return _test_to_dict(test)

    def delete_test(self, org_id: int, test_id: int) -> bool:
        test = self._owned(Test, org_id, test_id)
        if test is None:
            return False
        self.delete_questions_by_test_id(org_id, test.id)
        self.db.delete(test)
        self.db.flush()
        return True

    # Questions

    def get_questions_by_test_id(self, org_id: int, test_id: int) -> list[Record]:
        rows = self.db.execute(
            select(Question)
            .where(Question.organizationId == org_id, Question.testId == test_id)
            .order_by(Question.order.asc(), Question.id.asc())
        ).scalars().all()
        return [_question_to_dict(q) for q in rows]

    def get_question(self, org_id: int, question_id: int) -> Optional[Record]:
        q = self._owned(Question, org_id, question_id)
        return _question_to_dict(q) if q else None

    def create_question(self, org_id: int, test_id: int, data: dict[str, Any]) -> Optional[Record]:
        test = self._owned(Test, org_id, test_id)
        if test is None:
            return None
        fields = prepare_question(data)
        current = self.db.execute(select(func.max(Question.order)).where(Question.testId == test.id)).scalar()
        fields["order"] = int(current or 0) + 1
        row = Question(testId=test.id, organizationId=org_id)
        _apply_question_fields(row, fields)
        self.db.add(row)
        self.db.flush()
        return _question_to_dict(row)

    def update_question(self, org_id: int, question_id: int, data: dict[str, Any]) -> Optional[Record]:
        row = self._owned(Question, org_id, question_id)
        if row is None:
            return None
        _apply_question_fields(row, pick(data, QUESTION_FIELDS))
        self.db.flush()
        return _question_to_dict(row)

    def delete_question(self, org_id: int, question_id: int) -> bool:
        row = self._owned(Question, org_id, question_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True

    def delete_questions_by_test_id(self, org_id: int, test_id: int) -> int:
        res = self.db.execute(
            delete(Question).where(Question.organizationId == org_id, Question.testId == test_id)
        )
        return int(res.rowcount or 0)

    def reorder_questions(self, org_id: int, test_id: int, ordered_ids: list[Any]) -> bool:
        test = self._owned(Test, org_id, test_id)
        if test is None:
            return False
        rows = self.db.execute(
            select(Question)
            .where(Question.organizationId == org_id, Question.testId == test.id)
            .with_for_update()
        ).scalars().all()
        by_id = {q.id: q for q in rows}
        if not is_exact_permutation(by_id.keys(), ordered_ids):
            return False
        for position, qid in enumerate(ordered_ids, start=1):
            by_id[int(qid)].order = position
        self.db.flush()
        return True

    # Candidates

    def get_all_candidates(self, org_id: int) -> list[Record]:
        rows = self.db.execute(
            select(Candidate).where(Candidate.organizationId == org_id).order_by(Candidate.id.asc())
        ).scalars().all()
        return [_candidate_to_dict(c) for c in rows]

    def get_candidate(self, org_id: int, candidate_id: int) -> Optional[Record]:
        c = self._owned(Candidate, org_id, candidate_id)
        return _candidate_to_dict(c) if c else None

    def get_candidate_by_email(self, org_id: int, email: str) -> Optional[Record]:
        e = str(email or "").strip().lower()
        c = self.db.execute(
            select(Candidate).where(Candidate.organizationId == org_id, Candidate.email == e)
        ).scalars().first()
        return _candidate_to_dict(c) if c else None

    def create_candidate(self, org_id: int, data: dict[str, Any]) -> Record:
        fields = prepare_candidate(data)
        fields["email"] = str(fields.get("email") or "").strip().lower()
        c = Candidate(organizationId=org_id, createdAt=iso_utc_now(), **fields)
        self.db.add(c)
        self.db.flush()
        return _candidate_to_dict(c)

    # Test sessions

    def _sessions_where(self, org_id: int, *criteria) -> list[Record]:
        rows = self.db.execute(
            select(TestSession).where(TestSession.organizationId == org_id, *criteria).order_by(TestSession.id.asc())
        ).scalars().all()
        return [_session_to_dict(s) for s in rows]

    def get_all_test_sessions(self, org_id: int) -> list[Record]:
        return self._sessions_where(org_id)

    def get_test_sessions_by_test_id(self, org_id: int, test_id: int) -> list[Record]:
        return self._sessions_where(org_id, TestSession.testId == test_id)

    def get_test_sessions_by_candidate_id(self, org_id: int, candidate_id: int) -> list[Record]:
        return self._sessions_where(org_id, TestSession.candidateId == candidate_id)

    def get_test_session(self, org_id: int, session_id: int) -> Optional[Record]:
        s = self._owned(TestSession, org_id, session_id)
        return _session_to_dict(s) if s else None

    def get_test_session_by_token(self, token: str) -> Optional[Record]:
        s = self.db.execute(select(TestSession).where(TestSession.token == str(token or ""))).scalars().first()
        return _session_to_dict(s) if s else None

    def create_test_session(self, org_id: int, data: dict[str, Any]) -> Record:
        s = TestSession(
            organizationId=org_id,
            testId=data["testId"],
            candidateId=data["candidateId"],
            token=data["token"],
            status=SESSION_PENDING,
            expiresAt=data.get("expiresAt") or None,
            createdAt=iso_utc_now(),
        )
        self.db.add(s)
        self.db.flush()
        return _session_to_dict(s)

    def _reload_session(self, org_id: int, session_id: int) -> Optional[Record]:
        s = self.db.execute(
            select(TestSession)
            .where(TestSession.id == session_id, TestSession.organizationId == org_id)
            .execution_options(populate_existing=True)
        ).scalars().first()
        return _session_to_dict(s) if s else None

    def start_test_session(self, org_id: int, session_id: int, started_at: str) -> Optional[Record]:
        self.db.execute(
            update(TestSession)
            .where(
                TestSession.id == session_id,
                TestSession.organizationId == org_id,
                TestSession.status == SESSION_PENDING,
            )
            .values(status=SESSION_IN_PROGRESS, startedAt=started_at)
            .execution_options(synchronize_session=False)
        )
        current = self._reload_session(org_id, session_id)
        if current is None or current["status"] == SESSION_COMPLETED:
            return None
        return current

    def complete_test_session(
        self, org_id: int, session_id: int, answers: list[dict[str, Any]], result: dict[str, Any]
    ) -> Optional[Record]:
        # Conditional update first: only the caller that flips the status writes answers.
        res = self.db.execute(
            update(TestSession)
            .where(
                TestSession.id == session_id,
                TestSession.organizationId == org_id,
                TestSession.status != SESSION_COMPLETED,
            )
            .values(
                status=SESSION_COMPLETED,
                completedAt=result["completedAt"],
                score=int(result["score"]),
                percentScore=int(result["percentScore"]),
                passed=bool(result["passed"]),
            )
            .execution_options(synchronize_session=False)
        )
        if int(res.rowcount or 0) != 1:
            return None

        for ans in answers:
            self.db.add(
                CandidateAnswer(
                    sessionId=session_id,
                    questionId=int(ans["questionId"]),
                    answerJson=safe_json_string(ans.get("answer")),
                    answerTextJson=safe_json_string(ans.get("answerText")),
                    isCorrect=bool(ans.get("isCorrect")),
                    points=int(ans.get("points") or 0),
                )
            )
        self.db.flush()
        return self._reload_session(org_id, session_id)

    # Answers

    def get_candidate_answers_by_session_id(self, org_id: int, session_id: int) -> list[Record]:
        if self._owned(TestSession, org_id, session_id) is None:
            return []
        rows = self.db.execute(
            select(CandidateAnswer)
            .where(CandidateAnswer.sessionId == session_id)
            .order_by(CandidateAnswer.questionId.asc())
        ).scalars().all()
        return [_answer_to_dict(a) for a in rows]

    # Login sessions

    def create_login_session(self, data: dict[str, Any]) -> Record:
        ls = LoginSession(
            sessionId=str(data.get("sessionId") or new_uuid()),
            tokenHash=str(data["tokenHash"]),
            userId=data["userId"],
            organizationId=data["organizationId"],
            role=str(data.get("role") or ""),
            issuedAt=str(data.get("issuedAt") or iso_utc_now()),
            expiresAt=str(data.get("expiresAt") or ""),
            revokedAt="",
        )
        self.db.add(ls)
        self.db.flush()
        return _login_session_to_dict(ls)

    def get_login_session(self, token_hash: str) -> Optional[Record]:
        ls = self.db.execute(select(LoginSession).where(LoginSession.tokenHash == token_hash)).scalars().first()
        return _login_session_to_dict(ls) if ls else None

    def revoke_login_session(self, token_hash: str, at: str) -> bool:
        res = self.db.execute(
            update(LoginSession)
            .where(LoginSession.tokenHash == token_hash, LoginSession.revokedAt == "")
            .values(revokedAt=at)
            .execution_options(synchronize_session=False)
        )
        return int(res.rowcount or 0) == 1

    # Audit

    def append_audit(self, org_id: Optional[int], entry: dict[str, Any]) -> None:
        self.db.add(
            AuditLog(
                logId=str(entry.get("logId") or new_uuid()),
                organizationId=org_id,
                entityType=str(entry.get("entityType") or ""),
                entityId=str(entry.get("entityId") or ""),
                action=str(entry.get("action") or ""),
                actorUserId=str(entry.get("actorUserId") or ""),
                actorRole=str(entry.get("actorRole") or ""),
                at=str(entry.get("at") or iso_utc_now()),
                correlationId=str(entry.get("correlationId") or ""),
                metaJson=safe_json_string(entry.get("meta") or {}, "{}"),
            )
        )

    def get_audit_log(self, org_id: int, limit: int = 50) -> list[Record]:
        rows = self.db.execute(
            select(AuditLog)
            .where(AuditLog.organizationId == org_id)
            .order_by(AuditLog.at.desc())
            .limit(max(0, int(limit)))
        ).scalars().all()
        return [_audit_to_dict(a) for a in rows]

    # Unit of work

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        self.db.close()
