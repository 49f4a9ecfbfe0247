"""
Real-time collaboration engine.

Sessions join a group's room by share code, lock fields, stream field updates
to each other and submit or reset the shared response together.
"""

from .connection_manager import Connection, ConnectionManager
from .events import EventType
from .gate import Identity, IdentityGate
from .handlers import CollaborationHandlers
from .locks import LockTable
from .rooms import RoomDirectory
from .server import CollaborationServer, create_app

__all__ = [
    "Connection",
    "ConnectionManager",
    "EventType",
    "Identity",
    "IdentityGate",
    "CollaborationHandlers",
    "LockTable",
    "RoomDirectory",
    "CollaborationServer",
    "create_app",
]
