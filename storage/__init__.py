from storage.base import (
    SESSION_COMPLETED,
    SESSION_IN_PROGRESS,
    SESSION_PENDING,
    SESSION_STATUSES,
    Storage,
)
from storage.memory import MemStorage
from storage.sql import SqlStorage

__all__ = [
    "SESSION_COMPLETED",
    "SESSION_IN_PROGRESS",
    "SESSION_PENDING",
    "SESSION_STATUSES",
    "MemStorage",
    "SqlStorage",
    "Storage",
]
