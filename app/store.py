from __future__ import annotations

import logging

from flask import Flask, current_app

import db
from config import Config
from storage import MemStorage, SqlStorage, Storage


log = logging.getLogger(__name__)


def init_store(app: Flask, cfg: Config) -> None:
    if cfg.STORAGE_BACKEND == "memory":
        app.extensions["memory_store"] = MemStorage()
        log.info("storage backend=memory")
        return
    db.init_engine(cfg.DATABASE_URL)
    log.info("storage backend=sql")


def open_store() -> Storage:
    """A store for one request. The caller commits or rolls back, then closes it."""
    mem = current_app.extensions.get("memory_store")
    if mem is not None:
        return mem
    return SqlStorage(db.SessionLocal())


def store_ready() -> bool:
    if current_app.extensions.get("memory_store") is not None:
        return True
    return db.ping_db()
