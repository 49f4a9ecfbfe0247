from .base import Base, BaseModel, utcnow
from .user import User, UserRole
from .form import Form, FormField, FieldType, SharingCode
from .response import FormResponse, ResponseField, ResponseStatus, FieldLock, FieldContribution

__all__ = [
    "Base",
    "BaseModel",
    "utcnow",
    "User",
    "UserRole",
    "Form",
    "FormField",
    "FieldType",
    "SharingCode",
    "FormResponse",
    "ResponseField",
    "ResponseStatus",
    "FieldLock",
    "FieldContribution",
]
