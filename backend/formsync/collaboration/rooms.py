"""
Room directory: maps a group's share code to the live sessions that joined it.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from formsync.core.errors import AuthenticationError, NotFoundError
from formsync.db.store import CollaborationStore, GroupContext

from .connection_manager import Connection, ConnectionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    group: GroupContext
    # False when the user already had another session in the room
    first_session: bool


class RoomDirectory:
    """Group membership over the connection registry; the store decides which groups exist."""

    def __init__(self, store: CollaborationStore, connections: ConnectionManager):
        self.store = store
        self.connections = connections

    def _connection(self, sid: str) -> Connection:
        connection = self.connections.get_connection(sid)
        if connection is None:
            raise AuthenticationError("Authentication error: Session is not registered")
        return connection

    async def join(self, sid: str, group_code: str) -> JoinResult:
        """
        Add a session to a group's room.

        Raises:
            NotFoundError: unknown share code
            InactiveError: group or form deactivated
        """
        connection = self._connection(sid)
        group = await self.store.get_group(group_code)

        first_session = not self.connections.user_in_room(connection.user_id, group.share_code)
        await self.connections.join_room(sid, group.share_code)

        logger.info(f"User {connection.email} joined group {group.share_code} ({group.group_name})")
        return JoinResult(group=group, first_session=first_session)

    async def leave(self, sid: str, group_code: str) -> Optional[bool]:
        """
        Remove a session from a room.

        Returns:
            None if the session was not a member, else whether the user has no
            other session left in the room
        """
        connection = self._connection(sid)
        if not await self.connections.leave_room(sid, group_code):
            return None

        logger.info(f"User {connection.email} left group {group_code}")
        return not self.connections.user_in_room(connection.user_id, group_code)

    def active_members(self, group_code: str) -> List[str]:
        return self.connections.active_members(group_code)

    def require_member(self, sid: str, group_code: str) -> Connection:
        """The session, provided it has joined the room."""
        connection = self._connection(sid)
        if not self.connections.is_member(sid, group_code):
            raise NotFoundError(f"Not a member of group {group_code}", error_code="NOT_IN_GROUP")
        return connection

    async def resolve(self, sid: str, group_code: str) -> Tuple[Connection, GroupContext]:
        """Membership check plus a fresh read of the group, which must still be active."""
        connection = self.require_member(sid, group_code)
        group = await self.store.get_group(group_code)
        return connection, group
