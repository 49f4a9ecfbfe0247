"""
Submission coordinator: collaborative submit and reset, broadcast to the whole
group including the member who triggered them.

Any member may submit or reset on behalf of the group; there is no quorum.
"""

import logging
from typing import Any, Dict, Optional

from formsync.core.errors import InvalidValueError
from formsync.db.store import CollaborationStore, GroupContext

from .connection_manager import Connection, ConnectionManager
from .events import EventType, form_reset_event, form_submitted_event
from .validation import normalize_value, validate_field_value

logger = logging.getLogger(__name__)


class SubmissionCoordinator:
    def __init__(self, store: CollaborationStore, connections: ConnectionManager):
        self.store = store
        self.connections = connections

    async def submit(
        self,
        connection: Connection,
        group: GroupContext,
        form_data: Dict[str, Any],
        response_id: Optional[str] = None,
    ) -> str:
        """
        Validate the final values, store them as the group's submitted
        response and notify every member.

        Raises:
            InvalidValueError: unknown field or a value failing its type check
            NotFoundError: `response_id` does not belong to the group

        Returns:
            The submitted response id
        """
        fields = await self.store.get_fields(group.form_id)

        values: Dict[str, str] = {}
        for field_id, raw_value in form_data.items():
            field = fields.get(field_id)
            if field is None:
                raise InvalidValueError("Field not found in this form", field_id=field_id)
            value = normalize_value(raw_value)
            validate_field_value(field, value)
            values[field_id] = value

        response_id = await self.store.finalize_response(group, connection.user_id, values, response_id)

        await self.connections.send_to_room(
            group.share_code,
            EventType.FORM_SUBMITTED_ALL.value,
            form_submitted_event(
                submitted_by=connection.email,
                response_id=response_id,
                form_title=group.form_title,
                group_name=group.group_name,
                form_data=values,
            ),
        )

        logger.info(f"Response {response_id} submitted by {connection.email} for group {group.share_code}")
        return response_id

    async def reset(self, connection: Connection, group: GroupContext) -> Optional[str]:
        """Discard the group's draft and notify every member. Locks are kept."""
        discarded = await self.store.discard_draft(group.sharing_code_id)

        await self.connections.send_to_room(
            group.share_code, EventType.FORM_RESET_ALL.value, form_reset_event(connection.email)
        )

        logger.info(f"Form reset by {connection.email} in group {group.share_code}")
        return discarded
