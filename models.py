from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, PrimaryKeyConstraint, String, Text, UniqueConstraint

from db import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organizationId = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    # Login happens before the organization is known, so both are global.
    username = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    fullName = Column(Text, nullable=False, default="")
    passwordHash = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, default="RECRUITER", index=True)
    active = Column(Boolean, nullable=False, default=True)
    lastLoginAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")


class Test(Base):
    __tablename__ = "tests"
    __test__ = False

    id = Column(Integer, primary_key=True, autoincrement=True)
    organizationId = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=True)
    createdBy = Column(Integer, nullable=True)
    timeLimit = Column(Integer, nullable=True)
    isActive = Column(Boolean, nullable=False, default=True)
    passingScore = Column(Integer, nullable=False, default=70)
    createdAt = Column(Text, nullable=False, default="")


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (Index("ix_questions_org_test", "organizationId", "testId"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    testId = Column(Integer, ForeignKey("tests.id"), nullable=False, index=True)
    organizationId = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    content = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False, default="multiple_choice")
    optionsJson = Column(Text, nullable=False, default="[]")
    correctAnswerJson = Column(Text, nullable=False, default="null")
    points = Column(Integer, nullable=False, default=1)
    order = Column(Integer, nullable=False, default=1)


class Candidate(Base):
    __tablename__ = "candidates"
    __table_args__ = (UniqueConstraint("organizationId", "email", name="uq_candidates_org_email"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    organizationId = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False)
    position = Column(Text, nullable=True)
    createdAt = Column(Text, nullable=False, default="")


class TestSession(Base):
    __tablename__ = "test_sessions"
    __test__ = False
    __table_args__ = (Index("ix_test_sessions_org_status", "organizationId", "status"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    organizationId = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    testId = Column(Integer, nullable=False, index=True)
    candidateId = Column(Integer, nullable=False, index=True)
    token = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="pending")  # pending|in_progress|completed
    startedAt = Column(Text, nullable=True)
    completedAt = Column(Text, nullable=True)
    score = Column(Integer, nullable=True)
    percentScore = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=True)
    expiresAt = Column(Text, nullable=True)
    createdAt = Column(Text, nullable=False, default="")


class CandidateAnswer(Base):
    __tablename__ = "candidate_answers"
    __table_args__ = (PrimaryKeyConstraint("sessionId", "questionId", name="pk_candidate_answers"),)

    sessionId = Column(Integer, ForeignKey("test_sessions.id"), nullable=False)
    questionId = Column(Integer, nullable=False)
    answerJson = Column(Text, nullable=False, default="null")
    answerTextJson = Column(Text, nullable=True)
    isCorrect = Column(Boolean, nullable=False, default=False)
    points = Column(Integer, nullable=False, default=0)


class LoginSession(Base):
    __tablename__ = "login_sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    userId = Column(Integer, nullable=False, index=True)
    organizationId = Column(Integer, nullable=False)
    role = Column(String, nullable=False, default="")
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    organizationId = Column(Integer, nullable=True, index=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    actorUserId = Column(String, nullable=False, default="", index=True)
    actorRole = Column(String, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    correlationId = Column(String, nullable=False, default="")
    metaJson = Column(Text, nullable=False, default="{}")
