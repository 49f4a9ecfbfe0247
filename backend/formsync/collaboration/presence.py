"""
Presence notifier: membership transitions, rosters, snapshots for joiners and
transient typing/cursor/selection relays.
"""

import logging

from formsync.db.store import CollaborationStore

from .connection_manager import Connection, ConnectionManager
from .events import (
    EventType,
    cursor_updated_event,
    group_info_event,
    selection_updated_event,
    user_joined_event,
    user_left_event,
    user_typing_event,
)
from .locks import LockTable
from .rooms import JoinResult

logger = logging.getLogger(__name__)


class PresenceNotifier:
    def __init__(self, connections: ConnectionManager, locks: LockTable, store: CollaborationStore):
        self.connections = connections
        self.locks = locks
        self.store = store

    async def broadcast_roster(self, group_code: str):
        """Send the authoritative member list to the whole room."""
        members = self.connections.active_members(group_code)
        await self.connections.send_to_room(group_code, EventType.ACTIVE_USERS.value, members)
        logger.debug(f"Active users in {group_code}: {len(members)}")

    async def announce_join(self, connection: Connection, joined: JoinResult):
        """
        Tell the room about a new member, then bring the joiner up to date.

        The joiner always receives group-info, current-locks and form-data-sync,
        even when there are no locks or no draft yet.
        """
        group = joined.group

        if joined.first_session:
            await self.connections.send_to_room(
                group.share_code,
                EventType.USER_JOINED.value,
                user_joined_event(connection.user_id, connection.email, group.share_code, group.group_name),
                exclude_sid=connection.sid,
            )

        await self.broadcast_roster(group.share_code)

        await self.connections.send_to_connection(
            connection.sid,
            EventType.GROUP_INFO.value,
            group_info_event(
                group.share_code,
                group.group_name,
                group.form_title,
                len(self.connections.active_members(group.share_code)),
            ),
        )
        await self.connections.send_to_connection(
            connection.sid, EventType.CURRENT_LOCKS.value, await self.locks.snapshot(group)
        )
        await self.connections.send_to_connection(
            connection.sid, EventType.FORM_DATA_SYNC.value, await self.store.draft_values(group.sharing_code_id)
        )

    async def announce_leave(self, connection: Connection, group_code: str, last_session: bool):
        """user-left only when the user's last session in the room is gone; roster always."""
        if last_session:
            await self.connections.send_to_room(
                group_code,
                EventType.USER_LEFT.value,
                user_left_event(connection.user_id, connection.email),
                exclude_sid=connection.sid,
            )
        await self.broadcast_roster(group_code)

    async def typing(self, connection: Connection, group_code: str, field_id: str, is_typing: bool):
        await self.connections.send_to_room(
            group_code,
            EventType.USER_TYPING.value,
            user_typing_event(field_id, connection.email, is_typing),
            exclude_sid=connection.sid,
        )

    async def cursor(self, connection: Connection, group_code: str, field_id: str, position: int):
        await self.connections.send_to_room(
            group_code,
            EventType.CURSOR_UPDATED.value,
            cursor_updated_event(field_id, position, connection.user_id, connection.email),
            exclude_sid=connection.sid,
        )

    async def selection(self, connection: Connection, group_code: str, field_id: str, start: int, end: int):
        await self.connections.send_to_room(
            group_code,
            EventType.SELECTION_UPDATED.value,
            selection_updated_event(field_id, start, end, connection.user_id, connection.email),
            exclude_sid=connection.sid,
        )
