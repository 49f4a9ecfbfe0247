"""
Socket.IO event handlers for collaborative form filling.
"""

import logging
from typing import Any, Dict, Optional

from formsync.core.errors import CollaborationError, LockConflictError
from formsync.db.store import CollaborationStore

from .broadcaster import UpdateBroadcaster
from .connection_manager import Connection, ConnectionManager
from .events import (
    PAYLOAD_MODELS,
    CursorPayload,
    EventType,
    FieldPayload,
    FieldUpdatePayload,
    FormResetPayload,
    FormSubmitPayload,
    GroupPayload,
    SelectionPayload,
    error_event,
    field_locked_event,
    field_unlocked_event,
    parse_payload,
)
from .gate import Identity, IdentityGate
from .locks import LockTable
from .presence import PresenceNotifier
from .rooms import RoomDirectory
from .submission import SubmissionCoordinator

logger = logging.getLogger(__name__)


class CollaborationHandlers:
    """Routes client events to the collaboration services and maps failures to error events."""

    def __init__(
        self,
        store: CollaborationStore,
        connections: ConnectionManager,
        gate: IdentityGate,
        rooms: RoomDirectory,
        locks: LockTable,
        broadcaster: UpdateBroadcaster,
        presence: PresenceNotifier,
        submission: SubmissionCoordinator,
    ):
        self.store = store
        self.connections = connections
        self.gate = gate
        self.rooms = rooms
        self.locks = locks
        self.broadcaster = broadcaster
        self.presence = presence
        self.submission = submission

        # Event handler registry
        self.handlers: Dict[EventType, callable] = {
            # Room membership
            EventType.JOIN_FORM: self.handle_join_form,
            EventType.LEAVE_FORM: self.handle_leave_form,

            # Field locks
            EventType.LOCK_FIELD: self.handle_lock_field,
            EventType.UNLOCK_FIELD: self.handle_unlock_field,

            # Field values
            EventType.FIELD_UPDATE: self.handle_field_update,

            # Transient presence
            EventType.TYPING_START: self.handle_typing_start,
            EventType.TYPING_STOP: self.handle_typing_stop,
            EventType.CURSOR_MOVE: self.handle_cursor_move,
            EventType.SELECTION_CHANGE: self.handle_selection_change,

            # Submission
            EventType.FORM_SUBMIT: self.handle_form_submit,
            EventType.FORM_RESET: self.handle_form_reset,
        }

        self.stats = {"events_processed": 0, "events_failed": 0}

    async def handle_connect(self, sid: str, environ: Optional[Dict[str, Any]], auth: Optional[Dict[str, Any]]) -> Identity:
        """
        Authenticate a handshake and register the session.

        Raises:
            AuthenticationError: no usable credential; the connection is refused
        """
        identity = await self.gate.authenticate(auth, environ)
        self.connections.connect(sid, identity.user_id, identity.email, identity.role)
        return identity

    async def handle_event(self, sid: str, event_type: EventType, data: Any = None) -> Dict[str, Any]:
        """Route an event to its handler. The return value is the Socket.IO ack."""
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.warning(f"No handler for event type: {event_type}")
            await self._send_error(sid, f"Unknown event type: {event_type}", "UNKNOWN_EVENT")
            return {"ok": False}

        self.connections.touch(sid)
        try:
            payload = parse_payload(PAYLOAD_MODELS[event_type], data)
            await handler(sid, payload)
            self.stats["events_processed"] += 1
            return {"ok": True}

        except LockConflictError as e:
            self.stats["events_failed"] += 1
            await self.connections.send_to_connection(sid, EventType.LOCK_FAILED.value, e.to_payload())
            return {"ok": False, "error": e.to_payload()}

        except CollaborationError as e:
            self.stats["events_failed"] += 1
            logger.warning(f"{event_type.value} from {sid} rejected: {e.message}")
            await self.connections.send_to_connection(sid, EventType.ERROR.value, e.to_payload())
            return {"ok": False, "error": e.to_payload()}

        except Exception as e:
            self.stats["events_failed"] += 1
            logger.exception(f"Error handling event {event_type.value} from {sid}: {e}")
            await self._send_error(sid, f"Failed to process {event_type.value}")
            return {"ok": False}

    async def _send_error(self, sid: str, message: str, code: str = "INTERNAL_ERROR"):
        """Send error message to connection."""
        await self.connections.send_to_connection(sid, EventType.ERROR.value, error_event(message, code))

    # Room membership handlers

    async def handle_join_form(self, sid: str, payload: GroupPayload):
        joined = await self.rooms.join(sid, payload.group_code)
        await self.presence.announce_join(self.connections.get_connection(sid), joined)

    async def handle_leave_form(self, sid: str, payload: GroupPayload):
        connection = self.rooms.require_member(sid, payload.group_code)
        last_session = await self.rooms.leave(sid, payload.group_code)
        await self._after_leave(connection, payload.group_code, last_session)

    async def _after_leave(self, connection: Connection, group_code: str, last_session: bool):
        """
        Release the user's locks in the room once no session of theirs remains,
        then update presence. A failed release leaves the locks to the expiry
        sweeper; presence is updated regardless.
        """
        if last_session:
            try:
                group = await self.store.get_group(group_code, require_active=False)
                released_locks = await self.locks.release_user([group], connection.user_id)
            except CollaborationError as e:
                logger.error(f"Releasing locks of {connection.email} in {group_code} failed: {e.message}")
                released_locks = []

            for released in released_locks:
                await self.connections.send_to_room(
                    released.share_code, EventType.FIELD_UNLOCKED.value, field_unlocked_event(released.field_id)
                )
        await self.presence.announce_leave(connection, group_code, last_session)

    # Field lock handlers

    async def handle_lock_field(self, sid: str, payload: FieldPayload):
        connection, group = await self.rooms.resolve(sid, payload.group_code)
        await self.store.get_field(group.form_id, payload.field_id)

        await self.locks.acquire(group, payload.field_id, connection.user_id)

        # Everyone including the holder learns about the lock
        await self.connections.send_to_room(
            group.share_code,
            EventType.FIELD_LOCKED.value,
            field_locked_event(payload.field_id, connection.user_id, connection.email),
        )

    async def handle_unlock_field(self, sid: str, payload: FieldPayload):
        connection, group = await self.rooms.resolve(sid, payload.group_code)

        if await self.locks.release(group, payload.field_id, connection.user_id):
            await self.connections.send_to_room(
                group.share_code, EventType.FIELD_UNLOCKED.value, field_unlocked_event(payload.field_id)
            )

    # Field value handlers

    async def handle_field_update(self, sid: str, payload: FieldUpdatePayload):
        connection, group = await self.rooms.resolve(sid, payload.group_code)
        await self.broadcaster.field_update(connection, group, payload.field_id, payload.value)

    # Transient presence handlers

    async def handle_typing_start(self, sid: str, payload: FieldPayload):
        connection = self.rooms.require_member(sid, payload.group_code)
        await self.presence.typing(connection, payload.group_code, payload.field_id, True)

    async def handle_typing_stop(self, sid: str, payload: FieldPayload):
        connection = self.rooms.require_member(sid, payload.group_code)
        await self.presence.typing(connection, payload.group_code, payload.field_id, False)

    async def handle_cursor_move(self, sid: str, payload: CursorPayload):
        connection = self.rooms.require_member(sid, payload.group_code)
        await self.presence.cursor(connection, payload.group_code, payload.field_id, payload.position)

    async def handle_selection_change(self, sid: str, payload: SelectionPayload):
        connection = self.rooms.require_member(sid, payload.group_code)
        await self.presence.selection(connection, payload.group_code, payload.field_id, payload.start, payload.end)

    # Submission handlers

    async def handle_form_submit(self, sid: str, payload: FormSubmitPayload):
        connection, group = await self.rooms.resolve(sid, payload.group_code)
        await self.submission.submit(connection, group, payload.form_data, payload.response_id)

    async def handle_form_reset(self, sid: str, payload: FormResetPayload):
        connection, group = await self.rooms.resolve(sid, payload.group_code)
        await self.submission.reset(connection, group)

    # Disconnect

    async def handle_disconnect(self, sid: str):
        """
        Drop the session, release the user's locks in every room they no longer
        have a session in, and update presence. Cleanup failures in one room do
        not stop cleanup of the others.
        """
        connection = self.connections.disconnect(sid)
        if connection is None:
            return

        for group_code in connection.rooms:
            last_session = not self.connections.user_in_room(connection.user_id, group_code)
            try:
                await self._after_leave(connection, group_code, last_session)
            except CollaborationError as e:
                logger.error(f"Cleanup for {connection.email} in {group_code} failed: {e.message}")

    def get_statistics(self) -> Dict[str, Any]:
        return {**self.stats, "pending_updates": self.broadcaster.pending_updates()}
