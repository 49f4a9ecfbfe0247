"""
Form definitions and the sharing codes that open a collaboration group on them.
"""

from enum import Enum

from sqlalchemy import Boolean, Column, ForeignKey, Integer, JSON, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship

from .base import BaseModel, TimestampMixin


class FieldType(str, Enum):
    """Declared kind of a form field; drives value validation."""
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    EMAIL = "EMAIL"
    DROPDOWN = "DROPDOWN"
    TEXTAREA = "TEXTAREA"
    CHECKBOX = "CHECKBOX"
    RADIO = "RADIO"


class Form(BaseModel, TimestampMixin):
    __tablename__ = "forms"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    fields = relationship(
        "FormField",
        back_populates="form",
        order_by="FormField.field_order",
        cascade="all, delete-orphan",
    )
    sharing_codes = relationship("SharingCode", back_populates="form", cascade="all, delete-orphan")


class FormField(BaseModel):
    __tablename__ = "form_fields"

    form_id = Column(String(36), ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String(255), nullable=False)
    type = Column(SQLEnum(FieldType, name="field_type"), nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    options = Column(JSON, default=list, nullable=False)
    field_order = Column(Integer, default=0, nullable=False)

    form = relationship("Form", back_populates="fields")


class SharingCode(BaseModel, TimestampMixin):
    """
    A collaboration group: one share code, one group name, one form.
    """
    __tablename__ = "form_sharing_codes"

    form_id = Column(String(36), ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    share_code = Column(String(32), unique=True, index=True, nullable=False)
    group_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)

    form = relationship("Form", back_populates="sharing_codes")
