from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


Base = declarative_base()

# Bound by init_engine(); importable before the app is created.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

engine: Engine | None = None


def init_engine(database_url: str, *, create_tables: bool = True) -> Engine:
    global engine

    url = str(database_url or "").strip()
    kwargs: dict = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in {"sqlite://", "sqlite+pysqlite://"}:
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)
    SessionLocal.configure(bind=engine)

    if create_tables:
        import models  # noqa: F401  (registers tables on Base.metadata)

        Base.metadata.create_all(engine)
    return engine


def drop_all() -> None:
    if engine is not None:
        Base.metadata.drop_all(engine)


def ping_db() -> bool:
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
