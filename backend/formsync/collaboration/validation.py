"""
Value normalisation and per-type validation for field updates.
"""

import math
import re
from typing import Any

from formsync.core.config import get_settings
from formsync.core.errors import InvalidValueError
from formsync.db.store import FieldInfo
from formsync.models import FieldType

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# Decimal notation with an optional exponent, ASCII digits only
NUMBER_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$", re.ASCII)


def normalize_value(value: Any) -> str:
    """
    Canonical string form of a client value. Lists join with commas and the
    result is trimmed; an empty string means the field is cleared.
    """
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = ",".join(str(item).strip() for item in value)
    return str(value).strip()


def validate_field_value(field: FieldInfo, value: str, max_text_length: int = None, max_choice_length: int = None):
    """
    Raises InvalidValueError if `value` is not acceptable for the field's type.
    Empty values are always accepted.
    """
    if not value:
        return

    settings = get_settings()
    max_text_length = max_text_length or settings.max_text_length
    max_choice_length = max_choice_length or settings.max_choice_length

    if field.type == FieldType.EMAIL:
        if not EMAIL_PATTERN.match(value):
            raise InvalidValueError(f"Invalid email address for field '{field.label}'", field_id=field.id)

    elif field.type == FieldType.NUMBER:
        if not NUMBER_PATTERN.match(value):
            raise InvalidValueError(f"Field '{field.label}' must be a number", field_id=field.id)
        if not math.isfinite(float(value)):
            raise InvalidValueError(f"Field '{field.label}' must be a finite number", field_id=field.id)

    elif field.type in (FieldType.TEXT, FieldType.TEXTAREA):
        if len(value) > max_text_length:
            raise InvalidValueError(
                f"Field '{field.label}' exceeds {max_text_length} characters", field_id=field.id
            )

    elif field.type in (FieldType.DROPDOWN, FieldType.RADIO):
        if len(value) > max_choice_length:
            raise InvalidValueError(
                f"Option for field '{field.label}' exceeds {max_choice_length} characters", field_id=field.id
            )

    elif field.type == FieldType.CHECKBOX:
        if any(len(option.strip()) > max_choice_length for option in value.split(",")):
            raise InvalidValueError(
                f"Option for field '{field.label}' exceeds {max_choice_length} characters", field_id=field.id
            )
