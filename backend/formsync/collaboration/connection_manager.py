"""
Connection registry for authenticated Socket.IO sessions.

The registry is the single source of truth for who is in which room on this
process. Room rosters are always derived from it, never cached.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from formsync.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """One authenticated live session."""
    sid: str
    user_id: str
    email: str
    role: str
    connected_at: datetime
    last_activity: Optional[datetime] = None
    rooms: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.last_activity is None:
            self.last_activity = self.connected_at


class ConnectionManager:
    """Tracks live sessions and their room memberships on top of a Socket.IO server."""

    def __init__(self, sio):
        self.sio = sio

        self.connections: Dict[str, Connection] = {}  # sid -> Connection
        self.room_connections: Dict[str, List[str]] = {}  # room -> sids in join order

        self.connection_stats = {
            "total_connections": 0,
            "active_connections": 0,
            "disconnections": 0,
            "message_count": 0,
        }

    def connect(self, sid: str, user_id: str, email: str, role: str) -> Connection:
        """Register a session that passed the identity gate."""
        connection = Connection(sid=sid, user_id=user_id, email=email, role=role, connected_at=utcnow())
        self.connections[sid] = connection

        self.connection_stats["total_connections"] += 1
        self.connection_stats["active_connections"] = len(self.connections)

        logger.info(f"User {email} connected ({sid})")
        return connection

    def disconnect(self, sid: str) -> Optional[Connection]:
        """
        Drop a session from the registry and from every room roster.

        Socket.IO removes the sid from its own rooms; this only updates the
        registry. The returned connection still lists the rooms it was in.
        """
        connection = self.connections.pop(sid, None)
        if connection is None:
            return None

        for room in connection.rooms:
            self._remove_from_room(sid, room)

        self.connection_stats["disconnections"] += 1
        self.connection_stats["active_connections"] = len(self.connections)

        logger.info(f"User {connection.email} disconnected ({sid})")
        return connection

    def get_connection(self, sid: str) -> Optional[Connection]:
        return self.connections.get(sid)

    def touch(self, sid: str):
        connection = self.connections.get(sid)
        if connection:
            connection.last_activity = utcnow()

    async def join_room(self, sid: str, room: str) -> bool:
        """Add a session to a room. Joining twice is a no-op."""
        connection = self.connections.get(sid)
        if connection is None:
            return False

        if room not in connection.rooms:
            connection.rooms.append(room)
            self.room_connections.setdefault(room, []).append(sid)
            await self.sio.enter_room(sid, room)

        logger.debug(f"Connection {sid} joined room {room}")
        return True

    async def leave_room(self, sid: str, room: str) -> bool:
        connection = self.connections.get(sid)
        if connection is None or room not in connection.rooms:
            return False

        connection.rooms.remove(room)
        self._remove_from_room(sid, room)
        await self.sio.leave_room(sid, room)

        logger.debug(f"Connection {sid} left room {room}")
        return True

    def _remove_from_room(self, sid: str, room: str):
        members = self.room_connections.get(room)
        if members is None:
            return
        if sid in members:
            members.remove(sid)
        # Clean up empty rooms
        if not members:
            del self.room_connections[room]

    def is_member(self, sid: str, room: str) -> bool:
        return sid in self.room_connections.get(room, ())

    def room_connections_for(self, room: str) -> List[Connection]:
        return [self.connections[sid] for sid in self.room_connections.get(room, ()) if sid in self.connections]

    def active_members(self, room: str) -> List[str]:
        """Emails of live sessions in the room, one entry per user, in join order."""
        members: List[str] = []
        for connection in self.room_connections_for(room):
            if connection.email not in members:
                members.append(connection.email)
        return members

    def user_in_room(self, user_id: str, room: str) -> bool:
        """Whether any live session of `user_id` is in the room."""
        return any(connection.user_id == user_id for connection in self.room_connections_for(room))

    async def send_to_connection(self, sid: str, event: str, data: Any) -> bool:
        """Emit to one session."""
        try:
            await self.sio.emit(event, data, to=sid)
            self.connection_stats["message_count"] += 1
            return True
        except Exception as e:
            logger.error(f"Error sending {event} to connection {sid}: {e}")
            return False

    async def send_to_room(self, room: str, event: str, data: Any, exclude_sid: Optional[str] = None) -> bool:
        """Emit to every session in a room, optionally skipping one."""
        try:
            await self.sio.emit(event, data, room=room, skip_sid=exclude_sid)
            self.connection_stats["message_count"] += 1
            return True
        except Exception as e:
            logger.error(f"Error sending {event} to room {room}: {e}")
            return False

    def get_statistics(self) -> Dict[str, Any]:
        """Get connection statistics."""
        return {
            **self.connection_stats,
            "active_users": len({connection.user_id for connection in self.connections.values()}),
            "active_rooms": len(self.room_connections),
            "rooms": {room: len(sids) for room, sids in self.room_connections.items()},
        }
