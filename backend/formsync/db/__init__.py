from .database import (
    AsyncSessionLocal,
    check_database_connection,
    close_db,
    create_engine_for_url,
    create_session_factory,
    engine,
    init_db,
)
from .store import CollaborationStore, FieldInfo, GroupContext, LockRecord, ReleasedLock

__all__ = [
    "AsyncSessionLocal",
    "engine",
    "create_engine_for_url",
    "create_session_factory",
    "init_db",
    "close_db",
    "check_database_connection",
    "CollaborationStore",
    "GroupContext",
    "FieldInfo",
    "LockRecord",
    "ReleasedLock",
]
