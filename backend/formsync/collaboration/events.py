"""
Socket.IO event names and payload schemas for collaborative form filling.
"""

from datetime import datetime, timezone
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from formsync.core.errors import InvalidPayloadError


class EventType(str, Enum):
    """Wire names of every event the collaboration server handles or emits."""

    # Connection management
    CONNECT = "connect"
    DISCONNECT = "disconnect"

    # Client -> server
    JOIN_FORM = "join-form"
    LEAVE_FORM = "leave-form"
    LOCK_FIELD = "lock-field"
    UNLOCK_FIELD = "unlock-field"
    FIELD_UPDATE = "field-update"
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"
    CURSOR_MOVE = "cursor-move"
    SELECTION_CHANGE = "selection-change"
    FORM_SUBMIT = "form-submit"
    FORM_RESET = "form-reset"

    # Server -> client
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    ACTIVE_USERS = "active-users"
    GROUP_INFO = "group-info"
    CURRENT_LOCKS = "current-locks"
    FORM_DATA_SYNC = "form-data-sync"
    FIELD_LOCKED = "field-locked"
    FIELD_UNLOCKED = "field-unlocked"
    LOCK_FAILED = "lock-failed"
    FIELD_UPDATED = "field-updated"
    USER_TYPING = "user-typing"
    CURSOR_UPDATED = "cursor-updated"
    SELECTION_UPDATED = "selection-updated"
    FORM_SUBMITTED_ALL = "form-submitted-all"
    FORM_RESET_ALL = "form-reset-all"
    ERROR = "error"


CLIENT_EVENTS = [
    EventType.JOIN_FORM,
    EventType.LEAVE_FORM,
    EventType.LOCK_FIELD,
    EventType.UNLOCK_FIELD,
    EventType.FIELD_UPDATE,
    EventType.TYPING_START,
    EventType.TYPING_STOP,
    EventType.CURSOR_MOVE,
    EventType.SELECTION_CHANGE,
    EventType.FORM_SUBMIT,
    EventType.FORM_RESET,
]

FieldValue = Union[str, int, float, List[Union[str, int, float]], None]


# Inbound payloads

class EventPayload(BaseModel):
    """Base for client payloads. Unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    group_code: str = Field(
        min_length=1,
        max_length=32,
        validation_alias=AliasChoices("groupCode", "shareCode", "group_code"),
    )


class GroupPayload(EventPayload):
    """join-form / leave-form"""


class FieldPayload(EventPayload):
    """lock-field / unlock-field / typing-start / typing-stop"""
    field_id: str = Field(min_length=1, validation_alias=AliasChoices("fieldId", "field_id"))


class FieldUpdatePayload(FieldPayload):
    # Required; an explicit null or "" clears the field
    value: FieldValue = Field(...)


class CursorPayload(FieldPayload):
    position: int = Field(ge=0)


class SelectionPayload(FieldPayload):
    start: int = Field(ge=0)
    end: int = Field(ge=0)


class FormSubmitPayload(EventPayload):
    # Broadcast identity is the authenticated session; this is informational only
    submitted_by: Optional[str] = Field(default=None, validation_alias=AliasChoices("submittedBy", "submitted_by"))
    response_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("responseId", "response_id"))
    form_data: Dict[str, FieldValue] = Field(
        default_factory=dict, validation_alias=AliasChoices("formData", "form_data")
    )


class FormResetPayload(EventPayload):
    reset_by: Optional[str] = Field(default=None, validation_alias=AliasChoices("resetBy", "reset_by"))


PAYLOAD_MODELS: Dict[EventType, Type[EventPayload]] = {
    EventType.JOIN_FORM: GroupPayload,
    EventType.LEAVE_FORM: GroupPayload,
    EventType.LOCK_FIELD: FieldPayload,
    EventType.UNLOCK_FIELD: FieldPayload,
    EventType.FIELD_UPDATE: FieldUpdatePayload,
    EventType.TYPING_START: FieldPayload,
    EventType.TYPING_STOP: FieldPayload,
    EventType.CURSOR_MOVE: CursorPayload,
    EventType.SELECTION_CHANGE: SelectionPayload,
    EventType.FORM_SUBMIT: FormSubmitPayload,
    EventType.FORM_RESET: FormResetPayload,
}

P = TypeVar("P", bound=EventPayload)


def parse_payload(model: Type[P], data: Any) -> P:
    """
    Validate a raw Socket.IO payload against its schema.

    A bare string is accepted as the group code, which is how `join-form` is
    usually sent.

    Raises:
        InvalidPayloadError: payload is missing keys, has unknown keys or wrong types
    """
    if isinstance(data, str):
        data = {"groupCode": data}
    if not isinstance(data, dict):
        raise InvalidPayloadError("Invalid event payload: expected an object")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or 'payload'}: {error['msg']}"
            for error in e.errors()
        )
        raise InvalidPayloadError(f"Invalid event payload: {problems}") from e


# Outbound payloads

def now_millis() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def user_joined_event(user_id: str, email: str, group_code: str, group_name: str) -> Dict[str, Any]:
    return {"userId": user_id, "email": email, "groupCode": group_code, "groupName": group_name}


def user_left_event(user_id: str, email: str) -> Dict[str, Any]:
    return {"userId": user_id, "email": email}


def group_info_event(group_code: str, group_name: str, form_title: str, active_users: int) -> Dict[str, Any]:
    return {
        "shareCode": group_code,
        "groupName": group_name,
        "formTitle": form_title,
        "activeUsers": active_users,
    }


def field_locked_event(field_id: str, user_id: str, user_email: str) -> Dict[str, Any]:
    return {"fieldId": field_id, "userId": user_id, "userEmail": user_email}


def field_unlocked_event(field_id: str) -> Dict[str, Any]:
    return {"fieldId": field_id}


def field_updated_event(
    field_id: str,
    value: str,
    updated_by: str,
    field_label: str,
    group_name: str,
    timestamp: Optional[int] = None,
) -> Dict[str, Any]:
    """Relay of an accepted edit. `timestamp` is epoch milliseconds."""
    return {
        "fieldId": field_id,
        "value": value,
        "updatedBy": updated_by,
        "fieldLabel": field_label,
        "groupName": group_name,
        "timestamp": timestamp if timestamp is not None else now_millis(),
    }


def user_typing_event(field_id: str, user_email: str, is_typing: bool) -> Dict[str, Any]:
    return {"fieldId": field_id, "userEmail": user_email, "isTyping": is_typing}


def cursor_updated_event(field_id: str, position: int, user_id: str, user_email: str) -> Dict[str, Any]:
    return {"fieldId": field_id, "position": position, "userEmail": user_email, "userId": user_id}


def selection_updated_event(field_id: str, start: int, end: int, user_id: str, user_email: str) -> Dict[str, Any]:
    return {"fieldId": field_id, "start": start, "end": end, "userEmail": user_email, "userId": user_id}


def form_submitted_event(
    submitted_by: str,
    response_id: str,
    form_title: str,
    group_name: str,
    form_data: Dict[str, str],
) -> Dict[str, Any]:
    return {
        "submittedBy": submitted_by,
        "responseId": response_id,
        "formTitle": form_title,
        "groupName": group_name,
        "timestamp": now_iso(),
        "formData": form_data,
    }


def form_reset_event(reset_by: str) -> Dict[str, Any]:
    return {"resetBy": reset_by, "timestamp": now_iso()}


def error_event(message: str, code: str = "INTERNAL_ERROR", field_id: Optional[str] = None) -> Dict[str, Any]:
    payload = {"message": message, "code": code}
    if field_id:
        payload["fieldId"] = field_id
    return payload
