"""
Update broadcaster: validates, persists and relays field value changes.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, Dict, Tuple

from formsync.db.store import CollaborationStore, GroupContext

from .connection_manager import Connection, ConnectionManager
from .events import EventType, field_updated_event
from .locks import LockTable
from .validation import normalize_value, validate_field_value

logger = logging.getLogger(__name__)


class UpdateBroadcaster:
    """
    Applies `field-update` events.

    Updates to one (group, field) pass through a sequencer so that the order
    in which they are persisted is the order in which they are broadcast.
    Different fields proceed concurrently.
    """

    def __init__(self, store: CollaborationStore, locks: LockTable, connections: ConnectionManager):
        self.store = store
        self.locks = locks
        self.connections = connections

        self._sequencers: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._pending: Dict[Tuple[str, str], int] = defaultdict(int)

    @asynccontextmanager
    async def _sequenced(self, key: Tuple[str, str]):
        lock = self._sequencers.get(key)
        if lock is None:
            lock = self._sequencers[key] = asyncio.Lock()
        self._pending[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._pending[key] -= 1
            if not self._pending[key]:
                del self._pending[key]
                del self._sequencers[key]

    async def field_update(self, connection: Connection, group: GroupContext, field_id: str, raw_value: Any) -> str:
        """
        Validate, persist, then relay one edit to every other member of the room.

        Raises:
            NotFoundError: field does not belong to the group's form
            InvalidValueError: value fails its field's type check
            LockConflictError: another user holds the field
            StorageFailureError: the write failed; nothing is broadcast

        Returns:
            The normalised value that was stored
        """
        field = await self.store.get_field(group.form_id, field_id)
        value = normalize_value(raw_value)
        validate_field_value(field, value)

        async with self._sequenced((group.sharing_code_id, field_id)):
            # Checked inside the sequencer so it reflects every earlier update
            await self.locks.authorize(group, field_id, connection.user_id)

            await self.store.apply_field_update(group, field_id, connection.user_id, value)

            await self.connections.send_to_room(
                group.share_code,
                EventType.FIELD_UPDATED.value,
                field_updated_event(
                    field_id=field_id,
                    value=value,
                    updated_by=connection.email,
                    field_label=field.label,
                    group_name=group.group_name,
                ),
                exclude_sid=connection.sid,
            )

        await self.locks.refresh(group, field_id, connection.user_id)

        logger.info(f"Field {field_id} in {group.share_code} updated by {connection.email}")
        return value

    def pending_updates(self) -> int:
        return sum(self._pending.values())
